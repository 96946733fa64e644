"""
Ledger record types for media-syncer.

This module defines the immutable dataclasses stored in the local ledger
and the closed status enumerations their status columns are restricted to.

Design Decisions:
    - All dataclasses are frozen; state changes go through
      dataclasses.replace() and an explicit ledger write
    - Timestamps are ISO 8601 strings in UTC, as stored in SQLite
    - Enumerations subclass str so values bind directly as SQL parameters

Usage:
    from media_syncer.core.models import Request, MediaType, SyncStatus

    request = Request(
        source_request_id="42",
        media_type=MediaType.TV,
        tmdb_id=1399,
        title="Game of Thrones",
        seasons=(1, 2),
    )
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class MediaType(str, Enum):
    """Kind of media a request is about."""
    MOVIE = "movie"
    TV = "tv"

    @property
    def backend_label(self) -> str:
        """Localized label the backend uses in subscribe bodies and history."""
        return "电影" if self is MediaType.MOVIE else "电视剧"


class SyncStatus(str, Enum):
    """Sync status of a Request and state of its Subscription Link."""
    PENDING = "pending"
    PROCESSING = "processing"
    SYNCED = "synced"
    FAILED = "failed"
    RETRYING = "retrying"


class TrackingStatus(str, Enum):
    """Lifecycle status of a Tracking Record."""
    PENDING = "pending"
    SUBSCRIBED = "subscribed"
    DOWNLOADING = "downloading"
    DOWNLOADED = "downloaded"
    TRANSFERRED = "transferred"
    FAILED = "failed"
    MANUAL_SEARCH = "manual_search"

    @property
    def is_terminal(self) -> bool:
        return self in (TrackingStatus.TRANSFERRED, TrackingStatus.FAILED)


# Statuses the polling loop inspects on every tick
ACTIVE_TRACKING_STATUSES = (
    TrackingStatus.SUBSCRIBED,
    TrackingStatus.DOWNLOADING,
    TrackingStatus.DOWNLOADED,
)


class EventType(str, Enum):
    """Kinds of append-only audit events."""
    SUBSCRIBED = "subscribed"
    DOWNLOAD_STARTED = "download_started"
    DOWNLOAD_COMPLETE = "download_complete"
    TRANSFER_COMPLETE = "transfer_complete"
    FAILED = "failed"
    MANUAL_SEARCH = "manual_search"


@dataclass(frozen=True)
class Request:
    """
    One upstream media request.

    Attributes:
        source_request_id: Request id in the request source, as a string.
                           Immutable and globally unique.
        media_type: MediaType.MOVIE or MediaType.TV.
        tmdb_id: External catalog (TMDB) id.
        title: Display title, or "TMDB-{id}" when details were unavailable.
        poster_path: TMDB poster path such as "/abc.jpg", or None.
        seasons: Ordered season numbers (tv only, season 0 excluded).
        episodes: Season number -> episode numbers, only for seasons whose
                  request lists explicit episodes.
        status: Current SyncStatus.
        requested_at: ISO timestamp the request was created upstream.
        created_at / updated_at: Ledger bookkeeping timestamps.
        id: Ledger row id (None before the first insert).
    """

    source_request_id: str
    media_type: MediaType
    tmdb_id: int
    title: str
    poster_path: str | None = None
    seasons: tuple[int, ...] = ()
    episodes: dict[int, tuple[int, ...]] = field(default_factory=dict)
    status: SyncStatus = SyncStatus.PENDING
    requested_at: str = ""
    created_at: str | None = None
    updated_at: str | None = None
    id: int | None = None

    def to_database_dict(self) -> dict[str, Any]:
        """Serialize to column values (JSON for seasons and episodes)."""
        return {
            "source_request_id": self.source_request_id,
            "media_type": self.media_type.value,
            "tmdb_id": self.tmdb_id,
            "title": self.title,
            "poster_path": self.poster_path,
            "seasons_json": json.dumps(list(self.seasons)),
            "episodes_json": json.dumps(
                {str(season): list(eps) for season, eps in self.episodes.items()}
            ) if self.episodes else None,
            "status": self.status.value,
            "requested_at": self.requested_at,
        }

    @classmethod
    def from_database_dict(cls, data: dict[str, Any]) -> "Request":
        """Rebuild a Request from a ledger row."""
        seasons: tuple[int, ...] = ()
        if data.get("seasons_json"):
            seasons = tuple(int(s) for s in json.loads(data["seasons_json"]))

        episodes: dict[int, tuple[int, ...]] = {}
        if data.get("episodes_json"):
            raw = json.loads(data["episodes_json"])
            episodes = {int(season): tuple(int(e) for e in eps) for season, eps in raw.items()}

        return cls(
            source_request_id=data["source_request_id"],
            media_type=MediaType(data["media_type"]),
            tmdb_id=int(data["tmdb_id"]),
            title=data["title"],
            poster_path=data.get("poster_path") or None,
            seasons=seasons,
            episodes=episodes,
            status=SyncStatus(data["status"]),
            requested_at=data.get("requested_at") or "",
            created_at=data.get("created_at"),
            updated_at=data.get("updated_at"),
            id=data.get("id"),
        )


@dataclass(frozen=True)
class SubscriptionLink:
    """
    Correlation between a Request and its backend subscription.

    Attributes:
        source_request_id: Ledger key, 1:1 with Request.
        subscribe_id: Backend subscription id; empty when the backend
                      returned none (e.g. an "already exists" answer).
        state: SyncStatus mirroring the Request.
        last_error: Sanitized error of the last failed attempt.
        retry_count: Number of failed attempts so far.
    """

    source_request_id: str
    subscribe_id: str = ""
    state: SyncStatus = SyncStatus.PENDING
    last_error: str | None = None
    retry_count: int = 0
    created_at: str | None = None
    updated_at: str | None = None
    id: int | None = None

    @classmethod
    def from_database_dict(cls, data: dict[str, Any]) -> "SubscriptionLink":
        return cls(
            source_request_id=data["source_request_id"],
            subscribe_id=data.get("mp_subscribe_id") or "",
            state=SyncStatus(data["state"]),
            last_error=data.get("last_error"),
            retry_count=int(data.get("retry_count") or 0),
            created_at=data.get("created_at"),
            updated_at=data.get("updated_at"),
            id=data.get("id"),
        )


@dataclass(frozen=True)
class TrackingRecord:
    """
    Lifecycle ledger entry for one Request.

    Created by the sync pipeline once a subscription succeeds (or is
    redundant); afterwards only the tracking reconciler mutates it.
    """

    source_request_id: str
    tmdb_id: int
    title: str
    media_type: MediaType
    status: TrackingStatus = TrackingStatus.PENDING
    subscribe_time: str | None = None
    download_start_time: str | None = None
    download_finish_time: str | None = None
    transfer_time: str | None = None
    retry_count: int = 0
    last_retry_time: str | None = None
    error_message: str | None = None
    created_at: str | None = None
    updated_at: str | None = None
    id: int | None = None

    @classmethod
    def from_database_dict(cls, data: dict[str, Any]) -> "TrackingRecord":
        return cls(
            source_request_id=data["source_request_id"],
            tmdb_id=int(data["tmdb_id"]),
            title=data["title"],
            media_type=MediaType(data["media_type"]),
            status=TrackingStatus(data["subscribe_status"]),
            subscribe_time=data.get("subscribe_time"),
            download_start_time=data.get("download_start_time"),
            download_finish_time=data.get("download_finish_time"),
            transfer_time=data.get("transfer_time"),
            retry_count=int(data.get("retry_count") or 0),
            last_retry_time=data.get("last_retry_time"),
            error_message=data.get("error_message"),
            created_at=data.get("created_at"),
            updated_at=data.get("updated_at"),
            id=data.get("id"),
        )


@dataclass(frozen=True)
class DownloadEvent:
    """One audit trail entry. `data` is the decoded JSON payload."""

    source_request_id: str
    event_type: EventType
    data: dict[str, Any] = field(default_factory=dict)
    created_at: str | None = None
    id: int | None = None

    @classmethod
    def from_database_dict(cls, data: dict[str, Any]) -> "DownloadEvent":
        payload: dict[str, Any] = {}
        if data.get("event_data"):
            try:
                payload = json.loads(data["event_data"])
            except (json.JSONDecodeError, TypeError):
                payload = {"raw": data["event_data"]}
        return cls(
            source_request_id=data["source_request_id"],
            event_type=EventType(data["event_type"]),
            data=payload,
            created_at=data.get("created_at"),
            id=data.get("id"),
        )


@dataclass(frozen=True)
class DailyReport:
    """Summary of one day of activity, unique per report_date (YYYY-MM-DD)."""

    report_date: str
    total_subscribed: int = 0
    total_downloaded: int = 0
    total_transferred: int = 0
    total_failed: int = 0
    content: str = ""
    created_at: str | None = None

    @classmethod
    def from_database_dict(cls, data: dict[str, Any]) -> "DailyReport":
        return cls(
            report_date=data["report_date"],
            total_subscribed=int(data.get("total_subscribed") or 0),
            total_downloaded=int(data.get("total_downloaded") or 0),
            total_transferred=int(data.get("total_transferred") or 0),
            total_failed=int(data.get("total_failed") or 0),
            content=data.get("report_content") or "",
            created_at=data.get("created_at"),
        )
