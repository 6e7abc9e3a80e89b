"""
Feed Parsing
============

Thin layer over feedparser: turns a raw payload into a structural document,
rejects documents that are not RSS, and normalises the item list and dates.
"""

import calendar
import io
import xml.etree.ElementTree as ET
from datetime import datetime, timezone
from typing import Any, List, Optional, Union

import feedparser

from ..utils.exceptions import FeedParseError, MissingRootError

ITUNES_NAMESPACE = "http://www.itunes.com/dtds/podcast-1.0.dtd"

# Key under which parse_feed stores the channel's own <itunes:image> href
ITUNES_IMAGE_KEY = "itunes_image_href"


def parse_feed(raw: Union[str, bytes], feed_url: Optional[str] = None) -> feedparser.FeedParserDict:
    """Parse a raw feed payload.

    Args:
        raw: Feed payload as fetched
        feed_url: Source URL, for error context

    Returns:
        feedparser document

    Raises:
        FeedParseError: If the payload is empty or unparseable
    """
    if raw is None or not raw.strip():
        raise FeedParseError("Empty feed payload", feed_url=feed_url)

    if isinstance(raw, str):
        raw = raw.encode("utf-8")

    # A stream keeps feedparser from treating the payload as a URL or file name
    document = feedparser.parse(io.BytesIO(raw))

    if document.get("bozo") and not document.get("version") and not document.get("entries"):
        cause = document.get("bozo_exception")
        raise FeedParseError(
            f"Feed parse error: {cause or 'Invalid XML structure'}",
            feed_url=feed_url,
        )

    itunes_image = channel_itunes_image(raw)
    if itunes_image and isinstance(document.get("feed"), dict):
        document["feed"][ITUNES_IMAGE_KEY] = itunes_image

    return document


def channel_itunes_image(raw: bytes) -> Optional[str]:
    """``href`` of the channel's ``<itunes:image>``, read from the raw payload.

    feedparser stores ``<itunes:image>`` and ``<image><url>`` in the same
    ``image.href`` and the later element wins, so the iTunes artwork cannot
    be told apart after parsing.
    """
    try:
        root = ET.fromstring(raw)
    except ET.ParseError:
        return None

    channel = root.find("channel")
    if channel is None:
        return None

    image = channel.find(f"{{{ITUNES_NAMESPACE}}}image")
    if image is None:
        return None
    href = image.get("href") or image.findtext("href") or ""
    return href.strip() or None


def require_rss_root(document: feedparser.FeedParserDict, feed_url: Optional[str] = None) -> None:
    """Reject well-formed documents that are not RSS feeds.

    Raises:
        MissingRootError: If the document has no ``<rss>`` root
    """
    version = document.get("version") or ""
    if not version.startswith("rss"):
        raise MissingRootError(
            f"Document has no rss root (detected format: {version or 'unknown'})",
            feed_url=feed_url,
        )


def ensure_list(value: Any) -> List[Any]:
    """Normalise an item collection that may be missing or a bare item."""
    if value is None:
        return []
    if isinstance(value, list):
        return value
    if isinstance(value, tuple):
        return list(value)
    return [value]


def parse_pub_date(entry: Any) -> Optional[datetime]:
    """Publication date of an entry as an aware UTC datetime.

    feedparser normalises dates to UTC ``struct_time`` values.
    """
    for field in ("published_parsed", "updated_parsed"):
        value = entry.get(field) if hasattr(entry, "get") else None
        if value:
            try:
                return datetime.fromtimestamp(calendar.timegm(value), tz=timezone.utc)
            except (ValueError, OverflowError, TypeError):
                continue
    return None
