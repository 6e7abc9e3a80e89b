"""
PodFeed Services
================

External collaborators invoked after aggregation: cover images and social data.
"""

from .cover_downloader import CoverDownloader
from .social_enrichment import (
    NullSocialDataProvider,
    SocialDataProvider,
    StaticSocialDataProvider,
    create_social_provider,
)

__all__ = [
    'CoverDownloader',
    'NullSocialDataProvider',
    'SocialDataProvider',
    'StaticSocialDataProvider',
    'create_social_provider',
]
