"""
PodFeed Processing Module
=========================

Aggregation of per-feed results into the published snapshot and the
orchestration of a complete build.
"""

from .aggregator import AggregationState, FeedAggregator, build_snapshot
from .pipeline import BuildPipeline, BuildResult, run_build

__all__ = [
    'AggregationState',
    'FeedAggregator',
    'build_snapshot',
    'BuildPipeline',
    'BuildResult',
    'run_build',
]
