"""
Staging Lifecycle
=================

Keeps the published output directory consistent across interrupted runs.

A run starts by setting the previous output aside (``Backed-Up``) when the
previous run published a snapshot, or by clearing partial leftovers
(``Fresh``) when it did not. The run then writes into empty working
directories. On success the backup is removed (``Committed``); on
interruption the partial output is discarded and the backup moved back
(``Restored``), so the renderer never sees a mix of two runs. The published
snapshot file is copied aside with the directory and put back on restore.
"""

import asyncio
import os
import shutil
import signal
from contextlib import contextmanager
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Callable, Iterator, Optional, Sequence, Union

from ..utils.exceptions import StagingError
from ..utils.logging import get_logger_for_component

PathLike = Union[str, Path]

BACKUP_TIMESTAMP_FORMAT = "%Y%m%d-%H%M%S"


class StagingState(str, Enum):
    """Lifecycle states of the output directory."""
    FRESH = "fresh"
    BACKED_UP = "backed_up"
    COMMITTED = "committed"
    RESTORED = "restored"


class StagingArea:
    """Scoped acquisition of the output directory for one run.

    Usage::

        with StagingArea(downloads, snapshot_path, ("rss", "images")) as staging:
            ...  # write into downloads, then the snapshot
        # committed here; restored instead if interrupted
    """

    def __init__(
        self,
        downloads_dir: PathLike,
        snapshot_path: PathLike,
        subdirs: Sequence[str] = (),
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.downloads_dir = Path(downloads_dir)
        self.snapshot_path = Path(snapshot_path)
        self.subdirs = tuple(subdirs)
        self.clock = clock or datetime.now
        self.backup_dir: Optional[Path] = None
        self.snapshot_backup: Optional[Path] = None
        self.state: Optional[StagingState] = None
        self.logger = get_logger_for_component("staging")

    def backup_name(self, moment: datetime) -> Path:
        """Sibling directory holding the previous output during a run."""
        return self._backup_path(self.downloads_dir, moment)

    @staticmethod
    def _backup_path(path: Path, moment: datetime) -> Path:
        stamp = moment.strftime(BACKUP_TIMESTAMP_FORMAT)
        return path.with_name(f"{path.name}(backup {stamp})")

    @property
    def has_backup(self) -> bool:
        return self.backup_dir is not None and self.backup_dir.exists()

    def begin(self) -> StagingState:
        """Prepare empty working directories, backing up published output.

        Raises:
            StagingError: If the directories cannot be moved or created
        """
        if self.state is not None:
            raise StagingError(
                f"Staging already started (state: {self.state.value})",
                path=str(self.downloads_dir),
            )

        try:
            if self.snapshot_path.exists() and self.downloads_dir.exists():
                moment = self.clock()
                backup = self.backup_name(moment)
                snapshot_backup = self._backup_path(self.snapshot_path, moment)
                for path in (backup, snapshot_backup):
                    if path.exists():
                        raise StagingError(
                            f"Backup already exists: {path}", path=str(path)
                        )
                shutil.copy2(self.snapshot_path, snapshot_backup)
                self.snapshot_backup = snapshot_backup
                shutil.move(str(self.downloads_dir), str(backup))
                self.backup_dir = backup
                self.state = StagingState.BACKED_UP
                self.logger.info(f"Created backup {backup}")
            else:
                if self.downloads_dir.exists():
                    self.logger.info(f"Removing partial output {self.downloads_dir}")
                    shutil.rmtree(self.downloads_dir)
                self.state = StagingState.FRESH

            self.downloads_dir.mkdir(parents=True, exist_ok=True)
            for subdir in self.subdirs:
                (self.downloads_dir / subdir).mkdir(parents=True, exist_ok=True)

        except OSError as e:
            raise StagingError(
                f"Failed to prepare output directory: {e}", path=str(self.downloads_dir)
            ) from e

        return self.state

    def commit(self) -> None:
        """Discard the backup once the new snapshot is durable."""
        try:
            if self.has_backup:
                self.logger.info(f"Removing backup {self.backup_dir}")
                shutil.rmtree(self.backup_dir)
            if self.snapshot_backup is not None and self.snapshot_backup.exists():
                self.snapshot_backup.unlink()
        except OSError as e:
            raise StagingError(
                f"Failed to remove backup: {e}", path=str(self.backup_dir)
            ) from e
        self.backup_dir = None
        self.snapshot_backup = None
        self.state = StagingState.COMMITTED

    def restore(self) -> None:
        """Discard partial output and move the backup back in place."""
        if not self.has_backup:
            self.logger.warning("No backup to restore, partial output left in place")
            self.state = StagingState.RESTORED
            return

        self.logger.info(f"Restoring {self.downloads_dir} from {self.backup_dir}")
        try:
            if self.downloads_dir.exists():
                shutil.rmtree(self.downloads_dir)
            shutil.move(str(self.backup_dir), str(self.downloads_dir))
            if self.snapshot_backup is not None and self.snapshot_backup.exists():
                os.replace(self.snapshot_backup, self.snapshot_path)
        except OSError as e:
            raise StagingError(
                f"Failed to restore backup: {e}", path=str(self.backup_dir)
            ) from e
        self.backup_dir = None
        self.snapshot_backup = None
        self.state = StagingState.RESTORED

    def backup_file(self, relative_path: PathLike) -> Optional[Path]:
        """Path of a file in the backup, if it exists."""
        if not self.has_backup:
            return None
        candidate = self.backup_dir / relative_path
        return candidate if candidate.is_file() else None

    def carry_over(self, relative_path: PathLike) -> bool:
        """Copy one file from the backup into the new output.

        Returns:
            True if the file was copied, False if the backup lacks it
        """
        source = self.backup_file(relative_path)
        if source is None:
            return False

        target = self.downloads_dir / relative_path
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(source, target)
        except OSError as e:
            raise StagingError(
                f"Failed to carry over {relative_path}: {e}", path=str(source)
            ) from e
        return True

    def __enter__(self) -> "StagingArea":
        self.begin()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        if exc_type is None:
            self.commit()
            return False

        if issubclass(exc_type, (KeyboardInterrupt, asyncio.CancelledError, SystemExit)):
            self.logger.warning("Run interrupted")
        else:
            self.logger.error(f"Run failed: {exc_val}")

        # Published output must never mix two runs
        self.restore()
        return False


@contextmanager
def interruption_guard(
    task: "asyncio.Task",
    signals: Sequence[signal.Signals] = (signal.SIGINT, signal.SIGTERM),
) -> Iterator[None]:
    """Turn termination signals into cancellation of ``task``.

    Cancellation unwinds through ``StagingArea.__exit__`` so the restore
    path runs before the process exits.
    """
    loop = asyncio.get_running_loop()
    logger = get_logger_for_component("staging")
    installed = []

    def _cancel(signum: signal.Signals) -> None:
        logger.warning(f"Received {signum.name}, cancelling run")
        task.cancel()

    for signum in signals:
        try:
            loop.add_signal_handler(signum, _cancel, signum)
            installed.append(signum)
        except (NotImplementedError, RuntimeError):
            # Not supported on this platform or loop
            logger.debug(f"Cannot install handler for {signum.name}")

    try:
        yield
    finally:
        for signum in installed:
            loop.remove_signal_handler(signum)
