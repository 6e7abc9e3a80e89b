"""
PodFeed Input Validators
========================

Validation utilities for feed URLs, source keys and file paths used while
loading the source catalogue.
"""

import re
from urllib.parse import urlparse, urlunparse
from pathlib import Path

from .exceptions import ValidationError, ErrorCode


class URLValidator:
    """URL validation and sanitization utilities."""

    # Allowed schemes for RSS feeds
    ALLOWED_SCHEMES = {'http', 'https'}

    SUSPICIOUS_PATTERNS = [
        r'javascript:',
        r'data:',
        r'file:',
        r'ftp:',
    ]

    @classmethod
    def validate_feed_url(cls, url: str) -> str:
        """Validate and normalize RSS feed URL.

        Args:
            url: URL to validate

        Returns:
            Normalized URL

        Raises:
            ValidationError: If URL is invalid
        """
        if not url or not isinstance(url, str):
            raise ValidationError(
                "URL is required and must be a string",
                error_code=ErrorCode.VALIDATION_REQUIRED_FIELD,
                field_name="url"
            )

        url = url.strip()

        try:
            parsed = urlparse(url)
        except ValueError as e:
            raise ValidationError(
                f"Invalid URL format: {str(e)}",
                error_code=ErrorCode.VALIDATION_INVALID_FORMAT,
                field_name="url"
            )

        if parsed.scheme.lower() not in cls.ALLOWED_SCHEMES:
            raise ValidationError(
                f"URL scheme must be {' or '.join(sorted(cls.ALLOWED_SCHEMES))}",
                error_code=ErrorCode.VALIDATION_INVALID_FORMAT,
                field_name="url"
            )

        if not parsed.netloc:
            raise ValidationError(
                "URL must include a hostname",
                error_code=ErrorCode.VALIDATION_INVALID_FORMAT,
                field_name="url"
            )

        if cls._has_suspicious_patterns(url):
            raise ValidationError(
                "URL contains suspicious patterns",
                error_code=ErrorCode.VALIDATION_INVALID_FORMAT,
                field_name="url"
            )

        return urlunparse(parsed._replace(
            scheme=parsed.scheme.lower(),
            netloc=parsed.netloc.lower(),
            path=parsed.path or '/',
            fragment=''
        ))

    @classmethod
    def _has_suspicious_patterns(cls, url: str) -> bool:
        """Check for suspicious URL patterns."""
        url_lower = url.lower()
        return any(re.search(pattern, url_lower) for pattern in cls.SUSPICIOUS_PATTERNS)


# Source keys end up in file names (rss/<key>.xml, images/<key>.jpg)
SOURCE_KEY_PATTERN = re.compile(r'^[A-Za-z0-9][A-Za-z0-9_.-]*$')


def validate_source_key(key: str) -> str:
    """Validate a source key.

    Args:
        key: Source identifier from the catalogue

    Returns:
        The key, unchanged

    Raises:
        ValidationError: If the key cannot be used as a file name stem
    """
    if not key or not isinstance(key, str):
        raise ValidationError(
            "Source key is required",
            error_code=ErrorCode.VALIDATION_REQUIRED_FIELD,
            field_name="key"
        )

    if not SOURCE_KEY_PATTERN.match(key) or '..' in key:
        raise ValidationError(
            f"Source key '{key}' must contain only letters, digits, '.', '_' or '-'",
            error_code=ErrorCode.VALIDATION_INVALID_FORMAT,
            field_name="key"
        )

    return key


def validate_file_path(file_path: str, must_exist: bool = False) -> Path:
    """Validate file path.

    Args:
        file_path: File path to validate
        must_exist: Whether the file must already exist

    Returns:
        Validated Path object

    Raises:
        ValidationError: If path is invalid
    """
    if not file_path or not isinstance(file_path, (str, Path)):
        raise ValidationError(
            "File path is required",
            error_code=ErrorCode.VALIDATION_REQUIRED_FIELD,
            field_name="file_path"
        )

    path = Path(file_path)

    if must_exist and not path.exists():
        raise ValidationError(
            f"File does not exist: {file_path}",
            error_code=ErrorCode.VALIDATION_INVALID_FORMAT,
            field_name="file_path"
        )

    return path
