"""
Data models for the Jellyseerr / Overseerr request API.

MediaRequest mirrors one entry of GET /api/v1/request. Titles are not part
of that payload; they come from MediaDetails (GET /api/v1/{movie|tv}/{id}).
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from media_syncer.core.models import MediaType


# Jellyseerr request status codes
STATUS_PENDING_APPROVAL = 1
STATUS_APPROVED = 2
STATUS_DECLINED = 3


def normalize_timestamp(value: str | None) -> str:
    """
    Convert an API timestamp ("2024-05-01T10:00:00.000Z") to UTC isoformat.

    Returns the current time for missing or unparseable values so the
    ledger's oldest-first ordering still has a key.
    """
    if value:
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
            if parsed.tzinfo is None:
                parsed = parsed.replace(tzinfo=timezone.utc)
            return parsed.astimezone(timezone.utc).isoformat()
        except ValueError:
            pass
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class SeasonRequest:
    """One requested season, with explicit episode numbers when the API sends them."""

    season_number: int
    episodes: tuple[int, ...] = ()


@dataclass(frozen=True)
class MediaRequest:
    """
    One request as returned by the request list endpoint.

    Attributes:
        id: Request id (becomes the ledger's source_request_id).
        status: Jellyseerr status code (2 = approved).
        tmdb_id: TMDB id of the requested media.
        media_type: "movie" or "tv" as sent by the API.
        created_at: Raw createdAt timestamp.
        seasons: Requested seasons (tv only).
    """

    id: int
    status: int
    tmdb_id: int
    media_type: str
    created_at: str | None = None
    seasons: tuple[SeasonRequest, ...] = ()

    @property
    def is_approved(self) -> bool:
        return self.status == STATUS_APPROVED

    @property
    def kind(self) -> MediaType | None:
        """MediaType for known kinds, None otherwise."""
        try:
            return MediaType(self.media_type)
        except ValueError:
            return None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "MediaRequest":
        media = data.get("media") or {}

        seasons = []
        for season in data.get("seasons") or []:
            if not isinstance(season, dict) or season.get("seasonNumber") is None:
                continue
            episodes = tuple(
                int(episode["episodeNumber"])
                for episode in season.get("episodes") or []
                if isinstance(episode, dict) and episode.get("episodeNumber") is not None
            )
            seasons.append(SeasonRequest(int(season["seasonNumber"]), episodes))

        return cls(
            id=int(data["id"]),
            status=int(data.get("status") or 0),
            tmdb_id=int(media.get("tmdbId") or 0),
            media_type=str(media.get("mediaType") or ""),
            created_at=data.get("createdAt"),
            seasons=tuple(seasons),
        )


@dataclass(frozen=True)
class MediaDetails:
    """Subset of the movie/tv details payload used by the syncer."""

    id: int
    title: str = ""
    name: str = ""
    original_title: str = ""
    original_name: str = ""
    poster_path: str | None = None

    @property
    def display_title(self) -> str:
        """title -> name -> originalTitle -> originalName."""
        return self.title or self.name or self.original_title or self.original_name

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "MediaDetails":
        return cls(
            id=int(data.get("id") or 0),
            title=data.get("title") or "",
            name=data.get("name") or "",
            original_title=data.get("originalTitle") or "",
            original_name=data.get("originalName") or "",
            poster_path=data.get("posterPath") or None,
        )
