"""
PodFeed Storage Layer
=====================

Ownership of the output directory for the duration of a run.

This module provides:
- Staging with backup, commit and restore of the published output
- Atomic snapshot writes and read-back of the previous snapshot
"""

from .staging import StagingArea, StagingState, interruption_guard
from .snapshot_writer import PreviousSnapshot, write_snapshot, write_snapshot_async

__all__ = [
    "StagingArea",
    "StagingState",
    "interruption_guard",
    "PreviousSnapshot",
    "write_snapshot",
    "write_snapshot_async",
]
