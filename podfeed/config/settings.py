"""
PodFeed Configuration System
============================

Simple configuration management with environment variables and Pydantic models.
Environment variables override Field defaults with clear precedence.
"""

from pathlib import Path
from typing import Optional
from enum import Enum

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings

from ..utils.exceptions import ConfigurationError, ErrorCode, ValidationError
from ..utils.validators import validate_file_path


class LogLevel(str, Enum):
    """Available log levels."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class FetchSettings(BaseModel):
    """Conditional fetcher configuration."""
    timeout_seconds: float = Field(default=10.0, gt=0, le=300, description="Wall-clock timeout per fetch attempt")
    max_redirects: int = Field(default=5, ge=0, le=20, description="Redirect hops followed before giving up")
    max_attempts: int = Field(default=2, ge=1, le=5, description="Attempts per feed (first try plus retries)")
    retry_delay_seconds: float = Field(default=2.0, ge=0.0, le=60.0, description="Fixed delay before a retry")
    user_agent: str = Field(default="PodFeed/1.0 (+rss-parser)", description="User-Agent header")
    accept: str = Field(default="application/rss+xml", description="Accept header")


class ProcessingSettings(BaseModel):
    """Aggregation configuration."""
    batch_width: int = Field(default=20, ge=1, le=200, description="Feeds fetched concurrently per chunk")
    recent_episode_limit: int = Field(default=5, ge=1, le=50, description="Episodes kept in each record's recent list")
    episode_window_days: int = Field(default=14, ge=1, le=365, description="Trailing window for the cross-feed episode list")


class OutputSettings(BaseModel):
    """Published output layout."""
    public_root: str = Field(default="static", description="Directory served to the renderer")
    downloads_dir: str = Field(default="static/downloads", description="Staged output directory")
    rss_subdir: str = Field(default="rss", description="Raw feed copies under the downloads directory")
    cover_subdir: str = Field(default="images", description="Cover images under the downloads directory")
    snapshot_path: str = Field(default="static/build_info.json", description="Snapshot document path")

    @field_validator('rss_subdir', 'cover_subdir')
    @classmethod
    def validate_subdir(cls, v):
        """Subdirectories must stay inside the downloads directory."""
        if not v or Path(v).is_absolute() or '..' in Path(v).parts:
            raise ValueError("subdirectory must be a relative path inside downloads_dir")
        return v


class SourceSettings(BaseModel):
    """Feed source catalogue."""
    path: str = Field(default="data/rss.json", description="JSON catalogue of feed sources")


class SocialSettings(BaseModel):
    """Social enrichment collaborator."""
    enabled: bool = Field(default=True, description="Merge social data into feed records")
    data_path: Optional[str] = Field(default=None, description="JSON file with pre-collected social data")


class LoggingSettings(BaseModel):
    """Logging configuration."""
    level: LogLevel = Field(default=LogLevel.INFO, description="Global log level")
    file_path: Optional[str] = Field(default="logs/podfeed.log", description="Log file path")
    max_file_size_mb: int = Field(default=10, ge=1, le=100, description="Max log file size in MB")
    backup_count: int = Field(default=5, ge=1, le=20, description="Number of log backup files")
    structured_logging: bool = Field(default=False, description="Use structured JSON logging")
    console_logging: bool = Field(default=True, description="Enable console logging")


class PodFeedSettings(BaseSettings):
    """Main application settings."""

    fetch: FetchSettings = Field(default_factory=FetchSettings)
    processing: ProcessingSettings = Field(default_factory=ProcessingSettings)
    output: OutputSettings = Field(default_factory=OutputSettings)
    sources: SourceSettings = Field(default_factory=SourceSettings)
    social: SocialSettings = Field(default_factory=SocialSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    app_name: str = Field(default="PodFeed", description="Application name")
    version: str = Field(default="1.0.0", description="Application version")
    debug: bool = Field(default=False, description="Enable debug mode")

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "env_nested_delimiter": "__",
        "env_prefix": "PODFEED_",
        "extra": "ignore",
    }

    @property
    def downloads_path(self) -> Path:
        return Path(self.output.downloads_dir)

    @property
    def rss_path(self) -> Path:
        return self.downloads_path / self.output.rss_subdir

    @property
    def cover_path(self) -> Path:
        return self.downloads_path / self.output.cover_subdir

    @property
    def snapshot_path(self) -> Path:
        return Path(self.output.snapshot_path)

    def validate_configuration(self) -> None:
        """Validate complete configuration."""
        errors = []

        try:
            validate_file_path(self.sources.path, must_exist=True)
        except ValidationError as e:
            errors.append(f"Source catalogue not found: {e}")

        if self.social.enabled and self.social.data_path:
            try:
                validate_file_path(self.social.data_path, must_exist=True)
            except ValidationError as e:
                errors.append(f"Social data file not found: {e}")

        for label, directory in (
            ("downloads", self.downloads_path.parent),
            ("snapshot", self.snapshot_path.parent),
        ):
            try:
                directory.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                errors.append(f"Invalid {label} path: {e}")

        if self.logging.file_path:
            try:
                Path(self.logging.file_path).parent.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                errors.append(f"Invalid log file path: {e}")

        if errors:
            raise ConfigurationError(
                f"Configuration validation failed: {'; '.join(errors)}",
                error_code=ErrorCode.CONFIG_INVALID
            )

    def get_effective_log_level(self) -> str:
        """Get effective log level considering debug mode."""
        if self.debug:
            return "DEBUG"
        return self.logging.level.value


def load_settings() -> PodFeedSettings:
    """Load settings from environment variables and defaults.

    Environment variables override Pydantic Field defaults.

    Returns:
        Loaded settings

    Raises:
        ConfigurationError: If configuration is invalid
    """
    from dotenv import load_dotenv
    load_dotenv()

    try:
        return PodFeedSettings()
    except Exception as e:
        raise ConfigurationError(
            f"Failed to initialize settings: {e}",
            error_code=ErrorCode.CONFIG_INVALID
        ) from e


# Global settings instance
_settings: Optional[PodFeedSettings] = None


def get_settings(reload: bool = False) -> PodFeedSettings:
    """Get global settings instance (singleton pattern).

    Args:
        reload: Force reload of settings

    Returns:
        Global settings instance
    """
    global _settings

    if _settings is None or reload:
        _settings = load_settings()

    return _settings
