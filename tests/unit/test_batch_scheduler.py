"""
Unit Tests for the Batch Scheduler
==================================
"""

import asyncio

import pytest

from podfeed.scheduler.batch_scheduler import BatchScheduler, chunked
from podfeed.utils.exceptions import FeedParseError, StagingError


class TestChunked:

    def test_partitions_in_order(self):
        assert list(chunked(list("abcdefg"), 3)) == [["a", "b", "c"], ["d", "e", "f"], ["g"]]

    def test_empty_input(self):
        assert list(chunked([], 20)) == []

    def test_width_must_be_positive(self):
        with pytest.raises(ValueError):
            list(chunked(["a"], 0))


class TestBatchScheduler:
    """Test cases for chunked concurrent execution."""

    @pytest.mark.asyncio
    async def test_concurrency_never_exceeds_width(self):
        scheduler = BatchScheduler(width=20)
        keys = [f"feed{i}" for i in range(47)]
        active = 0
        peak = 0

        async def pipeline(key):
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            active -= 1

        await scheduler.run(keys, pipeline)

        assert peak == 20
        assert scheduler.max_in_flight == 20
        assert scheduler.chunks_run == 3

    @pytest.mark.asyncio
    async def test_chunk_starts_after_previous_finishes(self):
        scheduler = BatchScheduler(width=2)
        events = []

        async def pipeline(key):
            events.append(("start", key))
            # Later keys finish first inside a chunk
            await asyncio.sleep(0.02 if key in ("a", "c") else 0.001)
            events.append(("end", key))

        await scheduler.run(["a", "b", "c", "d"], pipeline)

        first_chunk_done = max(events.index(("end", "a")), events.index(("end", "b")))
        second_chunk_start = min(events.index(("start", "c")), events.index(("start", "d")))
        assert first_chunk_done < second_chunk_start

    @pytest.mark.asyncio
    async def test_all_pipelines_in_chunk_start_before_any_finishes(self):
        scheduler = BatchScheduler(width=3)
        started = []
        release = asyncio.Event()

        async def pipeline(key):
            started.append(key)
            if len(started) == 3:
                release.set()
            await release.wait()

        await asyncio.wait_for(scheduler.run(["a", "b", "c"], pipeline), timeout=1)

        assert sorted(started) == ["a", "b", "c"]

    @pytest.mark.asyncio
    async def test_failure_does_not_abort_siblings(self):
        scheduler = BatchScheduler(width=5)
        finished = []
        failures = []

        async def pipeline(key):
            await asyncio.sleep(0)
            if key == "bad":
                raise ValueError("broken pipeline")
            finished.append(key)

        def on_error(label, key, exc):
            failures.append((label, key, str(exc)))

        await scheduler.run(["a", "bad", "c"], pipeline, on_error=on_error)

        assert sorted(finished) == ["a", "c"]
        assert failures == [("pipeline", "bad", "broken pipeline")]

    @pytest.mark.asyncio
    async def test_recoverable_error_is_reported(self):
        scheduler = BatchScheduler(width=5)
        failures = []

        async def pipeline(key):
            raise FeedParseError("unexpected payload")

        await scheduler.run(["a"], pipeline, on_error=lambda *args: failures.append(args))

        assert [(label, key) for label, key, _ in failures] == [("pipeline", "a")]

    @pytest.mark.asyncio
    async def test_fatal_error_ends_run(self):
        scheduler = BatchScheduler(width=3)
        finished = []
        failures = []

        async def pipeline(key):
            if key == "broken":
                raise StagingError("Failed to carry over rss/broken.xml")
            await asyncio.sleep(0.5)
            finished.append(key)

        with pytest.raises(StagingError):
            await scheduler.run(
                ["a", "broken", "c", "d"], pipeline,
                on_error=lambda *args: failures.append(args),
            )

        # Siblings are cancelled and later chunks never start
        assert finished == []
        assert failures == []
        assert scheduler.in_flight == 0
        assert scheduler.chunks_run == 0

    @pytest.mark.asyncio
    async def test_cancellation_propagates(self):
        scheduler = BatchScheduler(width=2)

        async def pipeline(key):
            await asyncio.sleep(10)

        task = asyncio.ensure_future(scheduler.run(["a", "b", "c"], pipeline))
        await asyncio.sleep(0.01)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        assert scheduler.chunks_run == 0

    def test_width_must_be_positive(self):
        with pytest.raises(ValueError):
            BatchScheduler(width=0)
