"""
PodFeed Ingestion Module
========================

Feed download and parsing.

This module handles:
- Conditional requests with ETag / Last-Modified validators
- Manual redirect following with a hop limit
- Wall-clock timeout and a single retry per feed
- Parsing payloads and rejecting documents that are not RSS
"""

from .conditional_fetcher import CacheValidators, ConditionalFetcher, FetchResult
from .feed_parser import parse_feed, require_rss_root

__all__ = [
    'CacheValidators',
    'ConditionalFetcher',
    'FetchResult',
    'parse_feed',
    'require_rss_root',
]
