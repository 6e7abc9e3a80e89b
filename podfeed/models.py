"""
PodFeed Data Models
===================

Pydantic data models for the source catalogue, the per-feed records and the
published snapshot document. Field aliases match the snapshot schema read by
the site renderer (camelCase keys, ``load_order`` / ``episodes_in_2weeks``).
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class FeedSource(BaseModel):
    """One configured feed, identified by a stable key."""

    model_config = ConfigDict(frozen=True)

    key: str = Field(..., min_length=1, description="Unique source identifier")
    feed: str = Field(..., description="Feed URL")
    twitter: Optional[str] = Field(default=None, description="Social account handle")
    hashtag: Optional[str] = Field(default=None, description="Social hashtag")
    link: Optional[str] = Field(default=None, description="Display link override")

    def __str__(self) -> str:
        return f"FeedSource({self.key}:{self.feed})"


class CacheValidator(BaseModel):
    """Conditional request validators captured for one URL."""

    model_config = ConfigDict(populate_by_name=True)

    etag: Optional[str] = Field(default=None)
    last_modified: Optional[str] = Field(default=None, alias="lastModified")


class RecentEpisode(BaseModel):
    """Slim copy of one of the newest items of a feed."""

    model_config = ConfigDict(populate_by_name=True)

    title: Optional[str] = None
    link: Optional[str] = None
    pub_date: Optional[datetime] = Field(default=None, alias="pubDate")
    duration: Optional[str] = None
    enclosure: Optional[str] = None


class EpisodeWindowEntry(BaseModel):
    """An episode published inside the trailing window, tagged with its source."""

    model_config = ConfigDict(populate_by_name=True)

    key: str = Field(..., description="Owning source key")
    channel_title: Optional[str] = Field(default=None, alias="channelTitle")
    title: Optional[str] = None
    link: Optional[str] = None
    pub_date: datetime = Field(..., alias="pubDate")
    enclosure: Optional[str] = None


class FeedRecord(BaseModel):
    """Normalized output for one successfully ingested source.

    Extra attributes are allowed: the social enrichment phase merges
    arbitrary fields into existing records.
    """

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    key: str
    title: Optional[str] = None
    twitter: Optional[str] = None
    feed: str
    link: Optional[str] = None
    hashtag: Optional[str] = None
    cover: Optional[str] = Field(default=None, description="Public path of the stored cover")
    cover_source: Optional[str] = Field(default=None, alias="coverSource")
    total: int = Field(default=0, ge=0, description="Episode count")
    first_episode_date: Optional[datetime] = Field(default=None, alias="firstEpisodeDate")
    last_episode_date: Optional[datetime] = Field(default=None, alias="lastEpisodeDate")
    first_episode_link: Optional[str] = Field(default=None, alias="firstEpisodeLink")
    last_episode_link: Optional[str] = Field(default=None, alias="lastEpisodeLink")
    recent_episodes: List[RecentEpisode] = Field(default_factory=list, alias="recentEpisodes")
    file_server: Dict[str, int] = Field(default_factory=dict, alias="fileServer")
    duration_average: Optional[int] = Field(default=None, alias="durationAverage")
    duration_median: Optional[int] = Field(default=None, alias="durationMedian")
    description: Optional[str] = None
    latest_pub_date: Optional[datetime] = Field(default=None, alias="latestPubDate")

    def merge_fields(self, partial: Dict[str, Any]) -> None:
        """Merge enrichment data field by field into this record."""
        aliases = {
            field.alias: name
            for name, field in type(self).model_fields.items()
            if field.alias
        }
        for prop, value in partial.items():
            setattr(self, aliases.get(prop, prop), value)


class PendingError(BaseModel):
    """A source that did not make it into the snapshot, or a phase that failed."""

    model_config = ConfigDict(populate_by_name=True)

    label: str = Field(..., description="Phase label (fetch, parse, BadRss, ...)")
    source_key: Optional[str] = Field(default=None, alias="rss")
    error: Optional[Dict[str, Any]] = Field(default=None, description="Serialised cause")


class Snapshot(BaseModel):
    """The single published document of one successful run."""

    model_config = ConfigDict(populate_by_name=True)

    load_order: List[str] = Field(default_factory=list)
    episodes_in_2weeks: List[EpisodeWindowEntry] = Field(default_factory=list)
    channels: Dict[str, FeedRecord] = Field(default_factory=dict)
    updated: datetime
    episode_count: int = Field(default=0, alias="episodeCount")
    errors: List[PendingError] = Field(default_factory=list)
    cache_validators: Dict[str, CacheValidator] = Field(
        default_factory=dict, alias="cacheValidators"
    )

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=False)
