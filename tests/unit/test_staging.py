"""
Unit Tests for the Staging Lifecycle
====================================
"""

import asyncio
from datetime import datetime
from pathlib import Path

import pytest

from podfeed.storage.staging import StagingArea, StagingState
from podfeed.utils.exceptions import ErrorCode, StagingError

FIXED_NOW = datetime(2024, 1, 15, 9, 30, 5)


def tree(root: Path) -> dict:
    """Relative path -> bytes for every file below ``root``."""
    return {
        str(path.relative_to(root)): path.read_bytes()
        for path in sorted(root.rglob("*"))
        if path.is_file()
    }


class TestStagingArea:
    """Test cases for backup, commit and restore."""

    @pytest.fixture(autouse=True)
    def layout(self, tmp_path):
        self.root = tmp_path / "static"
        self.downloads = self.root / "downloads"
        self.snapshot = self.root / "build_info.json"

    def staging(self) -> StagingArea:
        return StagingArea(self.downloads, self.snapshot, ("rss", "images"), clock=lambda: FIXED_NOW)

    def publish_previous_run(self):
        (self.downloads / "rss").mkdir(parents=True)
        (self.downloads / "images").mkdir(parents=True)
        (self.downloads / "rss" / "alpha.xml").write_bytes(b"<rss>old</rss>")
        (self.downloads / "images" / "alpha.jpg").write_bytes(b"\x89old-cover")
        self.snapshot.write_text('{"load_order": ["alpha"]}', encoding="utf-8")

    def test_fresh_start_creates_working_directories(self):
        staging = self.staging()

        state = staging.begin()

        assert state == StagingState.FRESH
        assert (self.downloads / "rss").is_dir()
        assert (self.downloads / "images").is_dir()
        assert staging.backup_dir is None

    def test_fresh_start_removes_partial_leftovers(self):
        (self.downloads / "rss").mkdir(parents=True)
        (self.downloads / "rss" / "stale.xml").write_bytes(b"partial")

        self.staging().begin()

        assert tree(self.downloads) == {}

    def test_marker_moves_output_to_timestamped_backup(self):
        self.publish_previous_run()
        before = tree(self.downloads)
        staging = self.staging()

        state = staging.begin()

        assert state == StagingState.BACKED_UP
        assert staging.backup_dir == self.root / "downloads(backup 20240115-093005)"
        assert tree(staging.backup_dir) == before
        assert tree(self.downloads) == {}
        assert (self.downloads / "rss").is_dir()

    def test_commit_removes_backup(self):
        self.publish_previous_run()
        staging = self.staging()
        staging.begin()
        (self.downloads / "rss" / "alpha.xml").write_bytes(b"<rss>new</rss>")

        staging.commit()

        assert staging.state == StagingState.COMMITTED
        assert sorted(p.name for p in self.root.iterdir()) == ["build_info.json", "downloads"]
        assert (self.downloads / "rss" / "alpha.xml").read_bytes() == b"<rss>new</rss>"

    def test_restore_is_byte_identical(self):
        self.publish_previous_run()
        before = tree(self.root)
        staging = self.staging()
        staging.begin()
        (self.downloads / "rss" / "alpha.xml").write_bytes(b"<rss>half written")
        (self.downloads / "rss" / "beta.xml").write_bytes(b"<rss>new source</rss>")

        staging.restore()

        assert staging.state == StagingState.RESTORED
        assert tree(self.root) == before
        assert not any("backup" in p.name for p in self.root.iterdir())

    def test_restore_puts_back_replaced_snapshot(self):
        self.publish_previous_run()
        before = tree(self.root)
        staging = self.staging()
        staging.begin()
        self.snapshot.write_text('{"load_order": ["beta"]}', encoding="utf-8")

        staging.restore()

        assert tree(self.root) == before

    def test_snapshot_copied_aside_during_run(self):
        self.publish_previous_run()
        staging = self.staging()

        staging.begin()

        assert staging.snapshot_backup == self.root / "build_info.json(backup 20240115-093005)"
        assert staging.snapshot_backup.read_bytes() == self.snapshot.read_bytes()

    def test_restore_without_backup_leaves_output(self):
        staging = self.staging()
        staging.begin()
        (self.downloads / "rss" / "alpha.xml").write_bytes(b"partial")

        staging.restore()

        assert staging.state == StagingState.RESTORED
        assert (self.downloads / "rss" / "alpha.xml").exists()

    def test_carry_over_copies_from_backup(self):
        self.publish_previous_run()
        staging = self.staging()
        staging.begin()

        assert staging.carry_over("rss/alpha.xml") is True
        assert staging.carry_over("images/missing.png") is False
        assert (self.downloads / "rss" / "alpha.xml").read_bytes() == b"<rss>old</rss>"

    def test_carry_over_without_backup(self):
        staging = self.staging()
        staging.begin()

        assert staging.carry_over("rss/alpha.xml") is False

    def test_begin_twice_is_rejected(self):
        staging = self.staging()
        staging.begin()

        with pytest.raises(StagingError):
            staging.begin()

    def test_unusable_output_path_is_fatal(self):
        self.root.mkdir(parents=True)
        # A file where the downloads directory should be created
        blocker = self.root / "blocker"
        blocker.write_text("x")
        staging = StagingArea(blocker / "downloads", self.snapshot, ("rss",))

        with pytest.raises(StagingError) as exc_info:
            staging.begin()

        assert exc_info.value.error_code == ErrorCode.STAGING_FAILED
        assert exc_info.value.recoverable is False


class TestStagingContextManager:
    """Test cases for scoped acquisition."""

    @pytest.fixture(autouse=True)
    def layout(self, tmp_path):
        self.root = tmp_path / "static"
        self.downloads = self.root / "downloads"
        self.snapshot = self.root / "build_info.json"
        (self.downloads / "rss").mkdir(parents=True)
        (self.downloads / "rss" / "alpha.xml").write_bytes(b"<rss>old</rss>")
        self.snapshot.write_text("{}", encoding="utf-8")

    def staging(self) -> StagingArea:
        return StagingArea(self.downloads, self.snapshot, ("rss", "images"))

    def test_success_commits(self):
        with self.staging() as staging:
            (self.downloads / "rss" / "alpha.xml").write_bytes(b"<rss>new</rss>")

        assert staging.state == StagingState.COMMITTED
        assert not any("backup" in p.name for p in self.root.iterdir())

    def test_keyboard_interrupt_restores(self):
        before = tree(self.root)

        with pytest.raises(KeyboardInterrupt):
            with self.staging() as staging:
                (self.downloads / "rss" / "alpha.xml").write_bytes(b"<rss>partial")
                raise KeyboardInterrupt

        assert staging.state == StagingState.RESTORED
        assert tree(self.root) == before

    @pytest.mark.asyncio
    async def test_cancellation_restores(self):
        before = tree(self.root)
        entered = asyncio.Event()

        async def run():
            with self.staging():
                (self.downloads / "rss" / "beta.xml").write_bytes(b"<rss>partial")
                entered.set()
                await asyncio.sleep(10)

        task = asyncio.ensure_future(run())
        await entered.wait()
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

        assert tree(self.root) == before

    def test_fatal_error_restores(self):
        before = tree(self.root)

        with pytest.raises(RuntimeError):
            with self.staging():
                (self.downloads / "rss" / "alpha.xml").write_bytes(b"<rss>partial")
                raise RuntimeError("disk full")

        assert tree(self.root) == before
