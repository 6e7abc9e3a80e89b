"""
Aggregation Engine
==================

Turns many independent, partially failing feed fetches into one ordered
snapshot.

Per source the pipeline is: fetch (with retry) -> parse -> root check ->
item normalisation -> cover lookup -> counts, links and recent slice ->
statistics -> episode window -> latest publish date. The result of a
source is committed to the shared ``AggregationState`` in a single
synchronous step, so a source is either fully present (record, window
entries, latest date) or fully absent and represented by a PendingError.

After all chunks: social enrichment, global ordering, serial cover
downloads and snapshot assembly.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path, PurePosixPath
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple

from ..config.settings import PodFeedSettings, get_settings
from ..ingestion.conditional_fetcher import CacheValidators, ConditionalFetcher, FetchResult
from ..ingestion.feed_parser import (
    ensure_list,
    parse_feed,
    parse_pub_date,
    require_rss_root,
)
from ..models import (
    EpisodeWindowEntry,
    FeedRecord,
    FeedSource,
    PendingError,
    RecentEpisode,
    Snapshot,
)
from ..scheduler.batch_scheduler import BatchScheduler
from ..storage.snapshot_writer import PreviousSnapshot
from ..storage.staging import StagingArea
from ..utils.exceptions import (
    CoverDownloadError,
    FeedError,
    FeedParseError,
    MissingRootError,
    NotModifiedWithoutRecordError,
    serialize_error,
)
from ..utils.logging import get_logger_for_component
from .episode_stats import (
    duration_average,
    duration_median,
    enclosure_url,
    file_server_breakdown,
    is_newest_first,
)
from .extractors import cover_extension, extract_cover_url

_OLDEST = datetime.min.replace(tzinfo=timezone.utc)

logger = get_logger_for_component("aggregator")


@dataclass
class CoverJob:
    """A cover image to download once aggregation is complete."""
    key: str
    source_url: str
    dest_path: Path


class AggregationState:
    """Accumulator for one run, shared by every per-source pipeline.

    During the concurrent phase only inserts and appends happen, and each
    source's contribution goes in through ``commit_source`` without any
    suspension point in between.
    """

    def __init__(self, order: Sequence[str]):
        self.order: List[str] = list(order)
        self.positions: Dict[str, int] = {key: i for i, key in enumerate(self.order)}
        self.records: Dict[str, FeedRecord] = {}
        self.latest_pub_dates: Dict[str, Optional[datetime]] = {}
        self.window: List[EpisodeWindowEntry] = []
        self.errors: List[PendingError] = []
        self.covers: Dict[str, CoverJob] = {}
        self.fetched_urls: Set[str] = set()

    def commit_source(
        self,
        record: FeedRecord,
        window: Sequence[EpisodeWindowEntry],
        latest: Optional[datetime],
        fetched_url: Optional[str] = None,
        cover: Optional[CoverJob] = None,
    ) -> None:
        """Insert everything one source contributes."""
        key = record.key
        self.records[key] = record
        self.window.extend(window)
        self.latest_pub_dates[key] = latest
        if fetched_url:
            self.fetched_urls.add(fetched_url)
        if cover is not None:
            self.covers[key] = cover

    def record_error(
        self, label: str, key: Optional[str], error: Optional[BaseException] = None
    ) -> PendingError:
        """Append a PendingError and log it as ``label | key | cause``."""
        if error is not None:
            logger.warning(f"{label} | {key} | {error}")
            pending = PendingError(label=label, source_key=key, error=serialize_error(error))
        else:
            logger.warning(f"{label} | {key}")
            pending = PendingError(label=label, source_key=key)
        self.errors.append(pending)
        return pending

    def position(self, key: str) -> int:
        return self.positions.get(key, len(self.order))

    @property
    def episode_count(self) -> int:
        return sum(record.total for record in self.records.values())


class FeedAggregator:
    """Runs the per-source pipeline and the post-collection phases."""

    def __init__(
        self,
        fetcher: ConditionalFetcher,
        settings: Optional[PodFeedSettings] = None,
        staging: Optional[StagingArea] = None,
        previous: Optional[PreviousSnapshot] = None,
        validators: Optional[CacheValidators] = None,
        started_at: Optional[datetime] = None,
    ):
        """Initialize aggregator.

        Args:
            fetcher: Conditional fetcher with an open session
            settings: Application settings (default from config)
            staging: Staging area of the run, used to carry files over on 304
            previous: Previous snapshot, source of reused records
            validators: Cache validators shared by all fetches of the run
            started_at: Run start, anchor of the episode window
        """
        self.fetcher = fetcher
        self.settings = settings or get_settings()
        self.staging = staging
        self.previous = previous or PreviousSnapshot()
        self.validators = (
            validators
            if validators is not None
            else CacheValidators(self.previous.cache_validators)
        )
        self.started_at = started_at or datetime.now(timezone.utc)
        self.scheduler = BatchScheduler(self.settings.processing.batch_width)

    @property
    def window_start(self) -> datetime:
        return self.started_at - timedelta(days=self.settings.processing.episode_window_days)

    async def collect(self, sources: Sequence[FeedSource]) -> AggregationState:
        """Process every source, chunk by chunk.

        Returns:
            The populated aggregation state
        """
        state = AggregationState([source.key for source in sources])
        by_key = {source.key: source for source in sources}

        async def pipeline(key: str) -> None:
            await self.process_source(by_key[key], state)

        await self.scheduler.run(state.order, pipeline, on_error=state.record_error)

        logger.info(
            f"Collected {len(state.records)}/{len(sources)} sources, "
            f"{len(state.window)} window episodes, {len(state.errors)} errors "
            f"(max {self.scheduler.max_in_flight} in flight)"
        )
        return state

    async def process_source(self, source: FeedSource, state: AggregationState) -> None:
        """Fetch, parse and record one source into ``state``."""
        try:
            result = await self.fetcher.fetch_with_retry(source.feed, self.validators)
        except FeedError as e:
            state.record_error("fetch", source.key, e)
            return

        if result.unchanged:
            if self.previous.record(source.key) is not None:
                self._reuse(source, state, result.final_url)
                return

            # Validators outlived the record; fetch the full body again
            logger.info(f"{source.key}: not modified but no previous record, fetching again")
            try:
                result = await self.fetcher.fetch_with_retry(source.feed, CacheValidators())
            except FeedError as e:
                state.record_error("fetch", source.key, e)
                return

            if result.unchanged:
                state.record_error(
                    "reuse",
                    source.key,
                    NotModifiedWithoutRecordError(
                        "Server answered 304 without a previous record", feed_url=source.feed
                    ),
                )
                return
            self.validators.capture(result.final_url, result.etag, result.last_modified)

        self._ingest(source, state, result)

    def _ingest(self, source: FeedSource, state: AggregationState, result: FetchResult) -> None:
        try:
            document = parse_feed(result.content, source.feed)
        except FeedParseError as e:
            state.record_error("parse", source.key, e)
            return

        try:
            require_rss_root(document, source.feed)
        except MissingRootError as e:
            state.record_error("BadRss", source.key, e)
            return

        self._store_raw(source.key, result.content)

        record, window, latest = self.build_record(source, document)
        state.commit_source(
            record, window, latest,
            fetched_url=result.final_url,
            cover=self._cover_job(record),
        )

        get_logger_for_component("aggregator", source_key=source.key).debug(
            f"Recorded {record.total} episodes, {len(window)} in window, latest {latest}"
        )

    def build_record(
        self, source: FeedSource, document: Any
    ) -> Tuple[FeedRecord, List[EpisodeWindowEntry], Optional[datetime]]:
        """Derive the record, window entries and latest date of a parsed feed."""
        channel = document.get("feed") or {}
        entries = ensure_list(document.get("entries"))
        dates = [parse_pub_date(entry) for entry in entries]
        title = channel.get("title")

        if not is_newest_first(dates):
            logger.warning(
                f"{source.key}: items are not listed newest first, "
                f"first/last episode fields follow feed order"
            )

        cover_url = extract_cover_url(channel)
        limit = self.settings.processing.recent_episode_limit

        recent = [
            RecentEpisode(
                title=entry.get("title"),
                link=entry.get("link"),
                pub_date=pub_date,
                duration=entry.get("itunes_duration"),
                enclosure=enclosure_url(entry),
            )
            for entry, pub_date in list(zip(entries, dates))[:limit]
        ]

        newest = entries[0] if entries else None
        oldest = entries[-1] if entries else None
        known_dates = [d for d in dates if d is not None]
        latest = max(known_dates) if known_dates else None

        record = FeedRecord(
            key=source.key,
            title=title,
            twitter=source.twitter,
            feed=source.feed,
            link=source.link or channel.get("link"),
            hashtag=source.hashtag,
            cover=self.cover_public_path(source.key, cover_url) if cover_url else None,
            cover_source=cover_url,
            total=len(entries),
            first_episode_date=dates[-1] if entries else None,
            last_episode_date=dates[0] if entries else None,
            first_episode_link=oldest.get("link") if oldest is not None else None,
            last_episode_link=newest.get("link") if newest is not None else None,
            recent_episodes=recent,
            file_server=file_server_breakdown(entries),
            duration_average=duration_average(entries),
            duration_median=duration_median(entries),
            description=channel.get("description"),
            latest_pub_date=latest,
        )

        window_start = self.window_start
        window = [
            EpisodeWindowEntry(
                key=source.key,
                channel_title=title,
                title=entry.get("title"),
                link=entry.get("link"),
                pub_date=pub_date,
                enclosure=enclosure_url(entry),
            )
            for entry, pub_date in zip(entries, dates)
            if pub_date is not None and pub_date >= window_start
        ]

        return record, window, latest

    # Output layout

    def rss_relative_path(self, key: str) -> PurePosixPath:
        return PurePosixPath(self.settings.output.rss_subdir) / f"{key}.xml"

    def cover_relative_path(self, key: str, cover_url: str) -> PurePosixPath:
        return PurePosixPath(self.settings.output.cover_subdir) / f"{key}.{cover_extension(cover_url)}"

    def cover_public_path(self, key: str, cover_url: str) -> str:
        """Path of the cover as served, relative to the public root."""
        dest = self.settings.downloads_path / self.cover_relative_path(key, cover_url)
        try:
            relative = dest.relative_to(Path(self.settings.output.public_root))
        except ValueError:
            return dest.as_posix()
        return "/" + relative.as_posix()

    def _cover_job(self, record: FeedRecord) -> Optional[CoverJob]:
        if not record.cover_source:
            return None
        return CoverJob(
            key=record.key,
            source_url=record.cover_source,
            dest_path=self.settings.downloads_path
            / self.cover_relative_path(record.key, record.cover_source),
        )

    def _store_raw(self, key: str, content: bytes) -> None:
        target = self.settings.downloads_path / self.rss_relative_path(key)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(content)

    def _reuse(self, source: FeedSource, state: AggregationState, final_url: str) -> None:
        """Keep the previous record of a source the server reported unchanged."""
        prior = self.previous.record(source.key)
        window_start = self.window_start
        window = [
            entry for entry in self.previous.episodes_for(source.key)
            if entry.pub_date >= window_start
        ]

        cover = None
        if self.staging is not None:
            self.staging.carry_over(self.rss_relative_path(source.key))
            if prior.cover_source and not self.staging.carry_over(
                self.cover_relative_path(source.key, prior.cover_source)
            ):
                cover = self._cover_job(prior)

        state.commit_source(
            prior, window, prior.latest_pub_date, fetched_url=final_url, cover=cover
        )
        logger.info(f"{source.key}: not modified, previous record reused")


def build_accounts(sources: Sequence[FeedSource]) -> Dict[str, Dict[str, str]]:
    """Social accounts of the sources that declare a handle or hashtag."""
    accounts: Dict[str, Dict[str, str]] = {}
    for source in sources:
        if source.twitter:
            accounts.setdefault(source.key, {})["twitter"] = source.twitter.replace("@", "")
        if source.hashtag:
            accounts.setdefault(source.key, {})["hashtag"] = source.hashtag
    return accounts


def apply_social_data(state: AggregationState, data: Dict[str, Dict[str, Any]]) -> int:
    """Merge social data into existing records; unknown keys are skipped.

    Returns:
        Number of records updated
    """
    merged = 0
    for key, fields in data.items():
        record = state.records.get(key)
        if record is None:
            logger.debug(f"Skipping social data for {key}: no record")
            continue
        record.merge_fields(fields)
        merged += 1
    return merged


def order_by_latest(entries: Sequence[Tuple[str, Optional[datetime]]]) -> List[str]:
    """Keys sorted by date, newest first; ties keep input order, undated last."""
    ordered = sorted(
        entries,
        key=lambda entry: (entry[1] is not None, entry[1] or _OLDEST),
        reverse=True,
    )
    return [key for key, _ in ordered]


def sort_window(state: AggregationState) -> List[EpisodeWindowEntry]:
    """Window entries newest first; ties keep source order, then feed order."""
    by_source = sorted(state.window, key=lambda entry: state.position(entry.key))
    return sorted(by_source, key=lambda entry: entry.pub_date, reverse=True)


async def download_covers(state: AggregationState, downloader: Any) -> int:
    """Download covers one at a time; failures become ``cover`` errors.

    Returns:
        Number of covers stored
    """
    stored = 0
    for key in sorted(state.covers, key=state.position):
        job = state.covers[key]
        try:
            await downloader.download_and_store(job.key, job.source_url, job.dest_path)
            stored += 1
        except CoverDownloadError as e:
            state.record_error("cover", key, e)
    return stored


def build_snapshot(
    state: AggregationState,
    validators: Optional[CacheValidators] = None,
    completed_at: Optional[datetime] = None,
) -> Snapshot:
    """Assemble the snapshot document from the aggregation state."""
    dated = sorted(state.latest_pub_dates.items(), key=lambda item: state.position(item[0]))
    load_order = order_by_latest(dated)

    cache_validators = {}
    if validators is not None:
        cache_validators = {
            url: validator
            for url, validator in validators.as_dict().items()
            if url in state.fetched_urls
        }

    return Snapshot(
        load_order=load_order,
        episodes_in_2weeks=sort_window(state),
        channels={key: state.records[key] for key in load_order},
        updated=completed_at or datetime.now(timezone.utc),
        episode_count=state.episode_count,
        errors=list(state.errors),
        cache_validators=cache_validators,
    )
