"""
Snapshot Storage
================

Durable write of the snapshot document and read-back of the previous one.

The write goes to a temporary file in the destination directory which is
flushed, fsynced and then renamed over the target, so readers see either
the old document or the new one and never a partial file.
"""

import asyncio
import json
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from ..models import CacheValidator, EpisodeWindowEntry, FeedRecord, Snapshot
from ..utils.exceptions import SnapshotWriteError
from ..utils.logging import get_logger_for_component

PathLike = Union[str, Path]

logger = get_logger_for_component("snapshot")


def atomic_write_bytes(path: PathLike, data: bytes) -> None:
    """Write ``data`` to ``path`` through a temp file and ``os.replace``.

    Raises:
        OSError: On any filesystem failure; the temp file is removed
    """
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)

    fd, tmp_name = tempfile.mkstemp(
        dir=str(target.parent), prefix=f".{target.name}.", suffix=".tmp"
    )
    try:
        with os.fdopen(fd, "wb") as handle:
            handle.write(data)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_name, target)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise


def write_snapshot(path: PathLike, snapshot: Snapshot) -> Path:
    """Durably publish ``snapshot`` at ``path``.

    Raises:
        SnapshotWriteError: If the document cannot be written
    """
    target = Path(path)
    try:
        atomic_write_bytes(target, snapshot.to_json().encode("utf-8"))
    except OSError as e:
        raise SnapshotWriteError(
            f"Failed to write snapshot: {e}", path=str(target)
        ) from e

    logger.info(
        f"Snapshot written to {target} "
        f"({len(snapshot.channels)} channels, {len(snapshot.errors)} errors)"
    )
    return target


async def write_snapshot_async(path: PathLike, snapshot: Snapshot) -> Path:
    """Run ``write_snapshot`` in a worker thread.

    A worker thread cannot be stopped, so on cancellation the write is
    waited out before ``CancelledError`` is re-raised. The caller's
    staging restore then runs after the final ``os.replace``, never
    concurrently with it.
    """
    write = asyncio.ensure_future(asyncio.to_thread(write_snapshot, path, snapshot))
    try:
        return await asyncio.shield(write)
    except asyncio.CancelledError:
        logger.warning("Cancelled during snapshot write, waiting for the write to finish")
        await asyncio.wait({write})
        if not write.cancelled() and write.exception() is not None:
            logger.error(f"Snapshot write failed during cancellation: {write.exception()}")
        raise


@dataclass
class PreviousSnapshot:
    """What the last published run left behind, for conditional reuse."""

    channels: Dict[str, FeedRecord] = field(default_factory=dict)
    episodes: List[EpisodeWindowEntry] = field(default_factory=list)
    cache_validators: Dict[str, CacheValidator] = field(default_factory=dict)

    @classmethod
    def from_snapshot(cls, snapshot: Snapshot) -> "PreviousSnapshot":
        return cls(
            channels=dict(snapshot.channels),
            episodes=list(snapshot.episodes_in_2weeks),
            cache_validators=dict(snapshot.cache_validators),
        )

    @classmethod
    def load(cls, path: PathLike) -> "PreviousSnapshot":
        """Read the snapshot at ``path``.

        A missing file yields an empty result. An unreadable one is logged
        and also yields an empty result: every feed is then fetched
        unconditionally.
        """
        target = Path(path)
        if not target.exists():
            return cls()

        try:
            data = json.loads(target.read_text(encoding="utf-8"))
            snapshot = Snapshot.model_validate(data)
        except (OSError, ValueError, PydanticValidationError) as e:
            logger.warning(f"Ignoring unreadable previous snapshot {target}: {e}")
            return cls()

        logger.debug(
            f"Loaded previous snapshot: {len(snapshot.channels)} channels, "
            f"{len(snapshot.cache_validators)} cache validators"
        )
        return cls.from_snapshot(snapshot)

    def record(self, key: str) -> Optional[FeedRecord]:
        return self.channels.get(key)

    def episodes_for(self, key: str) -> List[EpisodeWindowEntry]:
        return [entry for entry in self.episodes if entry.key == key]
