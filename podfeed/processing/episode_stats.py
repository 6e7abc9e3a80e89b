"""
Episode statistics: durations, file servers and ordering checks.
"""

import math
import re
import statistics
from collections import Counter
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional
from urllib.parse import urlsplit

_CLOCK_PATTERN = re.compile(r'^\d+(:\d{1,2}){0,2}$')


def parse_duration(value: Any) -> Optional[int]:
    """Convert an ``itunes:duration`` value to seconds.

    Accepts ``HH:MM:SS``, ``MM:SS`` and plain seconds (optionally fractional).
    Returns None for anything else.
    """
    if value is None:
        return None
    if isinstance(value, (int, float)):
        return int(value) if math.isfinite(value) and value >= 0 else None

    text = str(value).strip()
    if not text:
        return None

    try:
        number = float(text)
    except ValueError:
        pass
    else:
        # "inf" and "nan" parse as floats
        return int(number) if math.isfinite(number) and number >= 0 else None

    if not _CLOCK_PATTERN.match(text):
        return None

    seconds = 0
    for part in text.split(':'):
        seconds = seconds * 60 + int(part)
    return seconds


def episode_durations(entries: Iterable[Any]) -> List[int]:
    durations = []
    for entry in entries:
        seconds = parse_duration(entry.get("itunes_duration"))
        if seconds:
            durations.append(seconds)
    return durations


def duration_average(entries: Iterable[Any]) -> Optional[int]:
    """Mean episode duration in seconds, or None without durations."""
    durations = episode_durations(entries)
    if not durations:
        return None
    return round(statistics.mean(durations))


def duration_median(entries: Iterable[Any]) -> Optional[int]:
    """Median episode duration in seconds, or None without durations."""
    durations = episode_durations(entries)
    if not durations:
        return None
    return round(statistics.median(durations))


def enclosure_url(entry: Any) -> Optional[str]:
    """URL of the first enclosure of an entry."""
    for enclosure in entry.get("enclosures") or []:
        href = enclosure.get("href") or enclosure.get("url")
        if href:
            return href
    return None


def file_server_breakdown(entries: Iterable[Any]) -> Dict[str, int]:
    """Count enclosure hosts, most common first."""
    hosts = Counter()
    for entry in entries:
        url = enclosure_url(entry)
        if url:
            host = urlsplit(url).hostname
            if host:
                hosts[host] += 1
    return dict(hosts.most_common())


def is_newest_first(dates: List[Optional[datetime]]) -> bool:
    """Check the newest-first convention on the dated items of a feed."""
    known = [d for d in dates if d is not None]
    return all(earlier >= later for earlier, later in zip(known, known[1:]))
