"""
PodFeed Custom Exceptions
=========================

Exception hierarchy for PodFeed with error codes, context information
and serialisation for the snapshot error list.

Per-source errors (fetch, parse, missing root) are recoverable: they drop a
single source from the run. Staging and snapshot write errors are fatal:
there is no safe partial state to publish.
"""

import traceback
from typing import Optional, Dict, Any
from enum import Enum


class ErrorCode(str, Enum):
    """Error codes for categorizing exceptions."""

    # Configuration errors (C001-C099)
    CONFIG_INVALID = "C001"
    CONFIG_MISSING = "C002"
    CONFIG_PARSE_ERROR = "C003"

    # Feed ingestion errors (F001-F099)
    FEED_FETCH_TIMEOUT = "F002"
    FEED_PARSE_ERROR = "F003"
    FEED_NETWORK_ERROR = "F004"
    FEED_TOO_MANY_REDIRECTS = "F007"
    FEED_BAD_STATUS = "F008"
    FEED_MISSING_ROOT = "F009"
    FEED_NOT_MODIFIED_WITHOUT_RECORD = "F010"

    # Validation errors (V001-V099)
    VALIDATION_REQUIRED_FIELD = "V001"
    VALIDATION_INVALID_FORMAT = "V002"

    # External collaborator errors (E001-E099)
    EXTERNAL_SERVICE_ERROR = "E001"
    COVER_DOWNLOAD_FAILED = "E004"
    SOCIAL_DATA_FAILED = "E005"

    # Staging and storage errors (S001-S099)
    STAGING_FAILED = "S005"
    SNAPSHOT_WRITE_FAILED = "S006"


class PodFeedError(Exception):
    """Base exception for all PodFeed errors."""

    def __init__(
        self,
        message: str,
        error_code: Optional[ErrorCode] = None,
        context: Optional[Dict[str, Any]] = None,
        user_message: Optional[str] = None,
        recoverable: bool = False,
    ):
        """Initialize PodFeed error.

        Args:
            message: Technical error message for logging
            error_code: Categorized error code
            context: Additional context information
            user_message: User-friendly error message
            recoverable: Whether the run can continue past this error
        """
        super().__init__(message)
        self.error_code = error_code
        self.context = context or {}
        self.user_message = user_message or message
        self.recoverable = recoverable

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "error_code": self.error_code.value if self.error_code else None,
            "error_message": str(self),
            "user_message": self.user_message,
            "context": self.context,
            "recoverable": self.recoverable,
        }

    def __str__(self) -> str:
        """String representation with error code."""
        if self.error_code:
            return f"[{self.error_code.value}] {super().__str__()}"
        return super().__str__()


class ConfigurationError(PodFeedError):
    """Configuration-related errors."""

    def __init__(self, message: str, config_key: Optional[str] = None, **kwargs):
        """Initialize configuration error.

        Args:
            message: Error message
            config_key: Configuration key that caused the error
            **kwargs: Additional arguments for PodFeedError
        """
        context = kwargs.get("context", {})
        if config_key:
            context["config_key"] = config_key

        super().__init__(
            message=message,
            error_code=kwargs.get("error_code", ErrorCode.CONFIG_INVALID),
            context=context,
            user_message=kwargs.get("user_message", f"Configuration error: {message}"),
            **{
                k: v
                for k, v in kwargs.items()
                if k not in ["context", "error_code", "user_message"]
            },
        )


class ValidationError(PodFeedError):
    """Data validation errors."""

    def __init__(self, message: str, field_name: Optional[str] = None, **kwargs):
        context = kwargs.get("context", {})
        if field_name:
            context["field_name"] = field_name

        super().__init__(
            message=message,
            error_code=kwargs.get("error_code", ErrorCode.VALIDATION_INVALID_FORMAT),
            context=context,
            user_message=kwargs.get(
                "user_message", f"Invalid {field_name or 'input'}: {message}"
            ),
            recoverable=kwargs.get("recoverable", False),
            **{
                k: v
                for k, v in kwargs.items()
                if k not in ["context", "error_code", "user_message", "recoverable"]
            },
        )


class FeedError(PodFeedError):
    """Feed ingestion and parsing errors.

    Always recoverable at the run level: the failing source is dropped from
    the snapshot and reported in its error list.
    """

    default_code = ErrorCode.FEED_NETWORK_ERROR

    def __init__(self, message: str, feed_url: Optional[str] = None, **kwargs):
        """Initialize feed error.

        Args:
            message: Error message
            feed_url: Feed URL that caused the error
            **kwargs: Additional arguments for PodFeedError
        """
        context = kwargs.get("context", {})
        if feed_url:
            context["feed_url"] = feed_url
        self.feed_url = feed_url

        super().__init__(
            message=message,
            error_code=kwargs.get("error_code", self.default_code),
            context=context,
            user_message=kwargs.get(
                "user_message", f"Feed processing failed: {message}"
            ),
            recoverable=kwargs.get("recoverable", True),
            **{
                k: v
                for k, v in kwargs.items()
                if k not in ["context", "error_code", "user_message", "recoverable"]
            },
        )


class FeedNetworkError(FeedError):
    """Connection or transport failure."""

    default_code = ErrorCode.FEED_NETWORK_ERROR


class FeedTimeoutError(FeedError):
    """The wall-clock timeout expired before the response completed."""

    default_code = ErrorCode.FEED_FETCH_TIMEOUT


class TooManyRedirectsError(FeedError):
    """The redirect chain exceeded the hop limit."""

    default_code = ErrorCode.FEED_TOO_MANY_REDIRECTS


class BadStatusError(FeedError):
    """Terminal HTTP status (not a followed redirect and not 304)."""

    default_code = ErrorCode.FEED_BAD_STATUS

    def __init__(self, message: str, status: int, feed_url: Optional[str] = None, **kwargs):
        context = kwargs.pop("context", {})
        context["status"] = status
        self.status = status
        super().__init__(message, feed_url=feed_url, context=context, **kwargs)


class FeedParseError(FeedError):
    """Payload is not well-formed enough to parse."""

    default_code = ErrorCode.FEED_PARSE_ERROR


class MissingRootError(FeedError):
    """Well-formed document that is not an RSS feed."""

    default_code = ErrorCode.FEED_MISSING_ROOT


class NotModifiedWithoutRecordError(FeedError):
    """Server answered 304 but there is no previous record to reuse."""

    default_code = ErrorCode.FEED_NOT_MODIFIED_WITHOUT_RECORD


class CollaboratorError(PodFeedError):
    """Failure of an external collaborator (covers, social data)."""

    default_code = ErrorCode.EXTERNAL_SERVICE_ERROR

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message=message,
            error_code=kwargs.get("error_code", self.default_code),
            context=kwargs.get("context", {}),
            user_message=kwargs.get("user_message"),
            recoverable=kwargs.get("recoverable", True),
        )


class CoverDownloadError(CollaboratorError):
    """Cover image could not be downloaded or stored."""

    default_code = ErrorCode.COVER_DOWNLOAD_FAILED


class SocialDataError(CollaboratorError):
    """Social enrichment data could not be obtained."""

    default_code = ErrorCode.SOCIAL_DATA_FAILED


class StagingError(PodFeedError):
    """Output directory could not be staged, committed or restored."""

    def __init__(self, message: str, path: Optional[str] = None, **kwargs):
        context = kwargs.get("context", {})
        if path:
            context["path"] = path

        super().__init__(
            message=message,
            error_code=kwargs.get("error_code", ErrorCode.STAGING_FAILED),
            context=context,
            user_message=kwargs.get("user_message", "Output directory staging failed"),
            recoverable=False,
        )


class SnapshotWriteError(PodFeedError):
    """Snapshot document could not be written durably."""

    def __init__(self, message: str, path: Optional[str] = None, **kwargs):
        context = kwargs.get("context", {})
        if path:
            context["path"] = path

        super().__init__(
            message=message,
            error_code=kwargs.get("error_code", ErrorCode.SNAPSHOT_WRITE_FAILED),
            context=context,
            user_message=kwargs.get("user_message", "Snapshot could not be saved"),
            recoverable=False,
        )


def serialize_error(exception: BaseException) -> Dict[str, Any]:
    """Convert any exception to a JSON-safe cause for the snapshot error list.

    Args:
        exception: Exception to serialise

    Returns:
        Dictionary with name, message and stack, plus code and context for
        PodFeed errors
    """
    data: Dict[str, Any] = {
        "name": type(exception).__name__,
        "message": str(exception),
    }

    if exception.__traceback__ is not None:
        data["stack"] = "".join(
            traceback.format_exception(type(exception), exception, exception.__traceback__)
        )

    if isinstance(exception, PodFeedError):
        data["error_code"] = exception.error_code.value if exception.error_code else None
        data["context"] = exception.context

    if exception.__cause__ is not None:
        data["cause"] = {
            "name": type(exception.__cause__).__name__,
            "message": str(exception.__cause__),
        }

    return data


def is_retryable_error(exception: BaseException) -> bool:
    """Check if an error is worth retrying.

    Args:
        exception: Exception to check

    Returns:
        True if the error is potentially retryable
    """
    if isinstance(exception, PodFeedError):
        return exception.recoverable
    return isinstance(exception, Exception)
