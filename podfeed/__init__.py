"""
PodFeed - Podcast Feed Aggregator
=================================

Ingests many independently hosted podcast RSS feeds and publishes one
consistent snapshot for the site renderer.

Main Components:
- Ingestion: conditional fetching with redirects, timeout and retry
- Scheduler: chunked concurrent execution of per-source pipelines
- Processing: aggregation, statistics and snapshot assembly
- Storage: crash-safe staging of the output directory, atomic snapshot write
- Services: cover image download, social data enrichment
"""

__version__ = "1.0.0"
__author__ = "PodFeed Development Team"
__description__ = "Podcast feed ingestion and aggregation pipeline"

# Core imports for easy access
from .config.settings import get_settings
from .utils.logging import configure_application_logging, get_logger_for_component
from .utils.exceptions import PodFeedError

__all__ = [
    "get_settings",
    "configure_application_logging",
    "get_logger_for_component",
    "PodFeedError",
]
