"""
Batch Scheduler
===============

Runs per-source pipelines in fixed-width chunks: chunks run one after the
other, the pipelines inside a chunk run concurrently. A failing pipeline is
reported through ``on_error`` and never aborts its siblings, unless it
raised a non-recoverable ``PodFeedError`` (staging or snapshot failure),
which cancels the chunk and ends the run.
"""

import asyncio
from typing import Awaitable, Callable, Iterator, List, Optional, Sequence, TypeVar

from ..utils.exceptions import PodFeedError
from ..utils.logging import get_logger_for_component

T = TypeVar("T")

Pipeline = Callable[[str], Awaitable[None]]
ErrorHandler = Callable[[str, str, BaseException], None]


def chunked(items: Sequence[T], width: int) -> Iterator[List[T]]:
    """Split ``items`` into consecutive chunks of at most ``width`` elements."""
    if width < 1:
        raise ValueError(f"Chunk width must be positive, got {width}")
    for start in range(0, len(items), width):
        yield list(items[start:start + width])


class BatchScheduler:
    """Chunked concurrent executor for per-source pipelines."""

    def __init__(self, width: int = 20):
        if width < 1:
            raise ValueError(f"Batch width must be positive, got {width}")
        self.width = width
        self.logger = get_logger_for_component("batch_scheduler")

        # Diagnostics
        self.in_flight = 0
        self.max_in_flight = 0
        self.chunks_run = 0

    async def run(
        self,
        keys: Sequence[str],
        pipeline: Pipeline,
        on_error: Optional[ErrorHandler] = None,
    ) -> None:
        """Run ``pipeline(key)`` for every key, one chunk at a time.

        Args:
            keys: Source keys in input order
            pipeline: Coroutine function processing one source
            on_error: Called as ``on_error("pipeline", key, exc)`` for any
                exception escaping a pipeline

        Cancellation, KeyboardInterrupt and non-recoverable PodFeedErrors
        propagate to the caller.
        """
        chunks = list(chunked(keys, self.width))
        self.logger.info(
            f"Scheduling {len(keys)} sources in {len(chunks)} chunks of up to {self.width}"
        )

        for index, chunk in enumerate(chunks, start=1):
            self.logger.debug(f"Chunk {index}/{len(chunks)}: {', '.join(chunk)}")
            tasks = [
                asyncio.ensure_future(self._guarded(key, pipeline, on_error))
                for key in chunk
            ]
            try:
                await asyncio.gather(*tasks)
            except PodFeedError:
                # Fatal for the run: stop the rest of the chunk
                for task in tasks:
                    task.cancel()
                await asyncio.gather(*tasks, return_exceptions=True)
                raise
            self.chunks_run += 1

    async def _guarded(
        self, key: str, pipeline: Pipeline, on_error: Optional[ErrorHandler]
    ) -> None:
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await pipeline(key)
        except PodFeedError as e:
            if not e.recoverable:
                self.logger.error(f"Pipeline for {key} hit a fatal error: {e}")
                raise
            self._report(key, e, on_error)
        except Exception as e:
            self._report(key, e, on_error)
        finally:
            self.in_flight -= 1

    def _report(self, key: str, error: Exception, on_error: Optional[ErrorHandler]) -> None:
        self.logger.error(f"Pipeline for {key} failed: {error}", exc_info=error)
        if on_error is not None:
            on_error("pipeline", key, error)
