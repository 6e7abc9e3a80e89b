"""
Fallback-chain field extraction.

Some channel fields live in one of several places depending on how the feed
was authored. Each location is an extractor function; extractors are tried
in order and the first non-empty result wins.
"""

import posixpath
from typing import Any, Callable, Optional, Sequence
from urllib.parse import urlsplit, urlunsplit

from ..ingestion.feed_parser import ITUNES_IMAGE_KEY

Extractor = Callable[[Any], Optional[str]]


def _get(mapping: Any, key: str) -> Any:
    if mapping is None or not hasattr(mapping, "get"):
        return None
    return mapping.get(key)


def itunes_image(channel: Any) -> Optional[str]:
    """``<itunes:image href="...">`` as recorded by ``parse_feed``."""
    return _get(channel, ITUNES_IMAGE_KEY)


def image_href(channel: Any) -> Optional[str]:
    """feedparser's ``image.href``: ``<image><url>`` or ``<itunes:image>``, the later one."""
    return _get(_get(channel, "image"), "href")


def media_thumbnail(channel: Any) -> Optional[str]:
    """Channel-level ``<media:thumbnail url="...">``."""
    thumbnails = _get(channel, "media_thumbnail")
    if thumbnails:
        return _get(thumbnails[0], "url")
    return None


def logo(channel: Any) -> Optional[str]:
    """Channel ``logo`` element."""
    return _get(channel, "logo")


COVER_IMAGE_EXTRACTORS: Sequence[Extractor] = (itunes_image, image_href, media_thumbnail, logo)


def first_present(extractors: Sequence[Extractor], document: Any) -> Optional[str]:
    """Return the first non-empty value produced by ``extractors``."""
    for extractor in extractors:
        value = extractor(document)
        if isinstance(value, str):
            value = value.strip()
        if value:
            return value
    return None


def remove_query(url: Optional[str]) -> Optional[str]:
    """Drop query string and fragment from a URL."""
    if not url:
        return None
    parts = urlsplit(url)
    return urlunsplit((parts.scheme, parts.netloc, parts.path, "", ""))


def cover_extension(url: str, default: str = "jpg") -> str:
    """File extension of a cover URL, lower-cased, without the dot."""
    ext = posixpath.splitext(urlsplit(url).path)[1].lstrip(".").lower()
    if not ext or len(ext) > 5 or not ext.isalnum():
        return default
    return ext


def extract_cover_url(channel: Any) -> Optional[str]:
    """Cover image URL of a channel, query string removed."""
    return remove_query(first_present(COVER_IMAGE_EXTRACTORS, channel))
