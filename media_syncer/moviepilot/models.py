"""
Wire models for the MoviePilot API.

These dataclasses map the JSON bodies exchanged with MoviePilot to
typed Python objects. Parsing is lenient: MoviePilot versions differ in
which optional fields they send and whether ids are numbers or strings.
"""

from dataclasses import dataclass, field
from typing import Any

from media_syncer.core.models import MediaType


# Substrings of a successful subscribe message meaning "nothing to do,
# the media is already there"
ALREADY_EXISTS_KEYWORDS = (
    "已完成订阅",
    "已存在",
    "已在媒体库",
    "already exists",
    "already in library",
)

DRY_RUN_SUBSCRIPTION_ID = "99999"


def _to_int(value: Any) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


@dataclass(frozen=True)
class SubscribeRequest:
    """
    Body of POST /api/v1/subscribe/.

    Attributes:
        name: Media title.
        media_type: Converted to the localized label ("电影" / "电视剧").
        tmdb_id: TMDB id.
        season: Season number (tv only).
        episodes: Explicit episode numbers for the season (episode mode).
        username: Requesting user shown in MoviePilot.
    """

    name: str
    media_type: MediaType
    tmdb_id: int
    season: int | None = None
    episodes: tuple[int, ...] = ()
    username: str | None = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "name": self.name,
            "type": self.media_type.backend_label,
            "tmdbid": self.tmdb_id,
        }
        if self.season is not None:
            payload["season"] = self.season
        if self.episodes:
            payload["episodes"] = list(self.episodes)
        if self.username:
            payload["username"] = self.username
        return payload


@dataclass(frozen=True)
class SubscribeResponse:
    """
    Parsed subscribe response body.

    Example body:
        {"success": true, "message": "", "data": {"id": 12}, "code": 0}
    """

    success: bool
    message: str = ""
    subscription_id: str = ""
    code: int | None = None

    @classmethod
    def from_api(cls, data: Any) -> "SubscribeResponse":
        if not isinstance(data, dict):
            return cls(success=False, message=f"unexpected response: {data!r}"[:200])

        body = data.get("data") or {}
        subscription_id = ""
        if isinstance(body, dict):
            for key in ("id", "subscribe_id"):
                value = _to_int(body.get(key))
                if value is not None and value > 0:
                    subscription_id = str(value)
                    break

        return cls(
            success=bool(data.get("success")),
            message=str(data.get("message") or ""),
            subscription_id=subscription_id,
            code=_to_int(data.get("code")),
        )

    @property
    def is_already_exists(self) -> bool:
        """True for a successful answer whose message says the media exists."""
        if not self.success or not self.message:
            return False
        message = self.message.lower()
        return any(keyword in message for keyword in ALREADY_EXISTS_KEYWORDS)


@dataclass(frozen=True)
class SubscribeResult:
    """
    Outcome of MoviePilotClient.subscribe().

    Only successful outcomes are represented; failures raise BackendError.

    Attributes:
        subscription_id: Backend id, empty if none was returned.
        already_exists: The media was already in the library.
        message: Backend message, "dry-run mode" for simulated calls.
    """

    subscription_id: str
    already_exists: bool
    message: str
    dry_run: bool = False


@dataclass(frozen=True)
class HistoryItem:
    """
    Common fields of download and transfer history entries.

    `type_label` is the localized kind ("电影" / "电视剧").
    """

    id: int | None
    title: str
    type_label: str
    tmdb_id: int | None
    year: str | None = None
    season: str | None = None
    episode: str | None = None
    status: Any = None
    date: str | None = None

    def matches(self, tmdb_id: int, media_type: MediaType) -> bool:
        """Heuristic correlation: same catalog id and same media kind."""
        return self.tmdb_id == tmdb_id and self.type_label == media_type.backend_label

    @staticmethod
    def _common_fields(data: dict[str, Any]) -> dict[str, Any]:
        return {
            "id": _to_int(data.get("id")),
            "title": str(data.get("title") or ""),
            "type_label": str(data.get("type") or ""),
            "tmdb_id": _to_int(data.get("tmdbid")),
            "year": str(data["year"]) if data.get("year") else None,
            "season": str(data["season"]) if data.get("season") else None,
            "episode": str(data["episode"]) if data.get("episode") else None,
            "status": data.get("status"),
            "date": data.get("date"),
        }


@dataclass(frozen=True)
class DownloadHistoryItem(HistoryItem):
    download_hash: str | None = None
    torrent_name: str | None = None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "DownloadHistoryItem":
        return cls(
            **cls._common_fields(data),
            download_hash=data.get("download_hash"),
            torrent_name=data.get("torrent_name") or data.get("torrent"),
        )


@dataclass(frozen=True)
class TransferHistoryItem(HistoryItem):
    src: str | None = None
    dest: str | None = None
    mode: str | None = None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "TransferHistoryItem":
        return cls(
            **cls._common_fields(data),
            src=data.get("src") or data.get("path"),
            dest=data.get("dest"),
            mode=data.get("mode"),
        )


@dataclass(frozen=True)
class MediaResult:
    """One entry of POST /api/v1/media/search/."""

    title: str
    type_label: str
    tmdb_id: int | None
    year: str | None = None
    original_title: str | None = None
    overview: str | None = None
    poster_path: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "MediaResult":
        return cls(
            title=str(data.get("title") or ""),
            type_label=str(data.get("type") or ""),
            tmdb_id=_to_int(data.get("tmdb_id") or data.get("tmdbid")),
            year=str(data["year"]) if data.get("year") else None,
            original_title=data.get("original_title"),
            overview=data.get("overview"),
            poster_path=data.get("poster_path"),
            extra={"id": data.get("id")} if data.get("id") is not None else {},
        )
