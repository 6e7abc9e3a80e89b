"""
Build Pipeline Orchestrator
===========================

Runs one complete build: previous snapshot read-back, staging, chunked
collection of all sources, social enrichment, serial cover downloads and
the atomic snapshot write, with commit or restore of the output directory.
"""

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import AsyncIterator, Callable, Dict, List, Optional, Sequence

import aiohttp

from ..config.settings import PodFeedSettings, get_settings
from ..config.sources import load_sources
from ..ingestion.conditional_fetcher import ConditionalFetcher
from ..models import FeedSource
from ..services.cover_downloader import CoverDownloader
from ..services.social_enrichment import SocialDataProvider, create_social_provider
from ..storage.snapshot_writer import PreviousSnapshot, write_snapshot_async
from ..storage.staging import StagingArea, StagingState, interruption_guard
from ..utils.exceptions import SocialDataError
from ..utils.logging import PerformanceLogger, get_logger_for_component
from .aggregator import (
    AggregationState,
    FeedAggregator,
    apply_social_data,
    build_accounts,
    build_snapshot,
    download_covers,
)


@dataclass
class BuildResult:
    """Summary of one build run."""
    sources_total: int
    channels: int
    errors: int
    episode_count: int
    window_episodes: int
    covers_stored: int
    social_records: int
    snapshot_path: Path
    staging_state: Optional[StagingState]
    elapsed_seconds: float
    error_labels: Dict[str, int] = field(default_factory=dict)
    retry_stats: Dict[str, int] = field(default_factory=dict)

    @property
    def success_rate(self) -> float:
        if self.sources_total == 0:
            return 0.0
        return self.channels / self.sources_total * 100


class BuildPipeline:
    """Complete build orchestrator."""

    def __init__(
        self,
        settings: Optional[PodFeedSettings] = None,
        sources: Optional[Sequence[FeedSource]] = None,
        social_provider: Optional[SocialDataProvider] = None,
        session: Optional[aiohttp.ClientSession] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """Initialize build pipeline.

        Args:
            settings: Application settings (default from config)
            sources: Source catalogue (default: loaded from ``settings.sources.path``)
            social_provider: Social data provider (default from ``settings.social``)
            session: Existing HTTP session; one is opened per run otherwise
            clock: Returns the current aware UTC time
        """
        self.settings = settings or get_settings()
        self.sources = list(sources) if sources is not None else None
        self.social_provider = social_provider or create_social_provider(self.settings.social)
        self.session = session
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.logger = get_logger_for_component("pipeline")

    @asynccontextmanager
    async def _session(self, fetcher: ConditionalFetcher) -> AsyncIterator[aiohttp.ClientSession]:
        if self.session is not None:
            fetcher.session = self.session
            yield self.session
        else:
            async with fetcher.open_session(
                limit=self.settings.processing.batch_width * 2
            ) as session:
                yield session

    async def run(self, enable_social: bool = True) -> BuildResult:
        """Run a complete build.

        Args:
            enable_social: Merge social data into the records

        Returns:
            BuildResult summary

        Raises:
            ConfigurationError: If the source catalogue cannot be loaded
            StagingError: If the output directory cannot be staged
            SnapshotWriteError: If the snapshot cannot be written
        """
        settings = self.settings
        started_at = self.clock()
        sources = self.sources if self.sources is not None else load_sources(settings.sources.path)
        previous = PreviousSnapshot.load(settings.snapshot_path)

        self.logger.info(
            f"Starting build of {len(sources)} sources "
            f"(social enrichment {'on' if enable_social else 'off'})"
        )

        staging = StagingArea(
            settings.downloads_path,
            settings.snapshot_path,
            (settings.output.rss_subdir, settings.output.cover_subdir),
        )

        with PerformanceLogger(self.logger, "build") as timer:
            with staging:
                fetcher = ConditionalFetcher(settings.fetch)
                async with self._session(fetcher) as session:
                    aggregator = FeedAggregator(
                        fetcher,
                        settings=settings,
                        staging=staging,
                        previous=previous,
                        started_at=started_at,
                    )

                    with PerformanceLogger(self.logger, "feed collection"):
                        state = await aggregator.collect(sources)

                    social_records = 0
                    if enable_social:
                        social_records = await self._enrich(sources, state)

                    with PerformanceLogger(self.logger, "cover downloads"):
                        covers_stored = await download_covers(
                            state, CoverDownloader(session, settings.fetch)
                        )

                snapshot = build_snapshot(state, aggregator.validators, completed_at=self.clock())
                with PerformanceLogger(self.logger, "snapshot write"):
                    await write_snapshot_async(settings.snapshot_path, snapshot)

        error_labels: Dict[str, int] = {}
        for pending in snapshot.errors:
            error_labels[pending.label] = error_labels.get(pending.label, 0) + 1

        return BuildResult(
            sources_total=len(sources),
            channels=len(snapshot.channels),
            errors=len(snapshot.errors),
            episode_count=snapshot.episode_count,
            window_episodes=len(snapshot.episodes_in_2weeks),
            covers_stored=covers_stored,
            social_records=social_records,
            snapshot_path=settings.snapshot_path,
            staging_state=staging.state,
            elapsed_seconds=timer.duration or 0.0,
            error_labels=error_labels,
            retry_stats=fetcher.retry_manager.get_retry_statistics(),
        )

    async def _enrich(self, sources: List[FeedSource], state: AggregationState) -> int:
        """Fetch social data once for all accounts and merge it."""
        accounts = build_accounts(sources)
        if not accounts:
            return 0

        self.logger.info(
            f"Fetching social data for {len(accounts)} accounts "
            f"({self.social_provider.name} provider)"
        )
        try:
            data = await self.social_provider.fetch(accounts)
        except SocialDataError as e:
            state.record_error("social", "*", e)
            return 0

        merged = apply_social_data(state, data)
        self.logger.info(f"Merged social data into {merged} records")
        return merged


async def run_build(
    enable_social: bool = True,
    settings: Optional[PodFeedSettings] = None,
) -> BuildResult:
    """Run a build with SIGINT/SIGTERM turned into a clean restore."""
    pipeline = BuildPipeline(settings)
    with interruption_guard(asyncio.current_task()):
        return await pipeline.run(enable_social=enable_social)
