"""
Sync pipeline: turns approved Jellyseerr requests into MoviePilot subscriptions.

One pass (sync_once) runs in two phases:

    1. Ingest: fetch every approved request (paginated, capped) and upsert
       it into the ledger. Requests already synced are skipped entirely;
       a previously failed request is escalated to 'retrying'.

    2. Subscribe: load the pending/retrying requests, oldest first, and
       subscribe each one sequentially:
           movie            -> one subscribe call
           tv, season mode  -> one call per season (season 0 excluded)
           tv, episode mode -> one call per season with explicit episodes
       For tv, the first call's response decides "already exists" for the
       whole request.

Outcome per request:
    success -> link 'synced', tracking 'subscribed' (or 'transferred' with
               subscribe and transfer times set when the media already
               exists), request 'synced', notification
    failure -> link 'failed' with a sanitized error, request 'failed',
               notification; the rest of the batch continues

Every decision is re-derived from the ledger, so an interrupted pass is
resumed by the next one ('processing' rows are picked up again).
"""

import threading
from dataclasses import dataclass
from datetime import datetime, timezone

from tqdm import tqdm

from media_syncer.core.config import Config
from media_syncer.core.database import Database
from media_syncer.core.exceptions import BackendError, DatabaseError, OperationCancelled, SourceError
from media_syncer.core.logger import format_stats_message, get_logger, log_sync_failure, log_transition
from media_syncer.core.models import (
    EventType,
    MediaType,
    Request,
    SubscriptionLink,
    SyncStatus,
    TrackingRecord,
    TrackingStatus,
)
from media_syncer.jellyseerr.client import JellyseerrClient
from media_syncer.jellyseerr.models import MediaRequest, normalize_timestamp
from media_syncer.jellyseerr.tmdb import TMDBClient
from media_syncer.moviepilot.client import MoviePilotClient
from media_syncer.moviepilot.models import SubscribeRequest, SubscribeResult
from media_syncer.notify.telegram import TelegramNotifier
from media_syncer.utils import sanitize_error


logger = get_logger(__name__)

# Upper bound of requests subscribed in one pass
PENDING_BATCH_SIZE = 1000


@dataclass
class SyncStats:
    """
    Counters of one sync pass.

    Attributes:
        fetched: Approved requests returned by the request source.
        skipped: Requests skipped because they were already synced.
        processed: Requests that went through a subscription attempt.
        synced: Freshly subscribed.
        already_exists: Already in the library (also synced).
        failed: Subscription attempts that failed.
    """

    fetched: int = 0
    skipped: int = 0
    processed: int = 0
    synced: int = 0
    already_exists: int = 0
    failed: int = 0


def build_subscribe_plan(request: Request, tv_episode_mode: str) -> list[tuple[int | None, tuple[int, ...]]]:
    """
    List the (season, episodes) subscribe calls a request needs.

    Movies and tv requests without seasons yield a single call with no
    season. Episode mode falls back to season mode when no season carries
    an explicit episode list.

    Examples:
        movie                               -> [(None, ())]
        tv seasons (1, 2, 3), season mode   -> [(1, ()), (2, ()), (3, ())]
        tv {2: (1, 2)}, episode mode        -> [(2, (1, 2))]
    """
    if request.media_type is MediaType.MOVIE:
        return [(None, ())]

    seasons = [season for season in request.seasons if season != 0]

    if tv_episode_mode == "episode":
        plan = [
            (season, request.episodes[season])
            for season in seasons
            if request.episodes.get(season)
        ]
        if plan:
            return plan

    if not seasons:
        return [(None, ())]
    return [(season, ()) for season in seasons]


class Syncer:
    """
    Drives sync passes against the shared ledger.

    Args:
        config: Full application config.
        database: Shared ledger.
        source: Jellyseerr client.
        client: MoviePilot client.
        notifier: Notification channel.
        tmdb: Poster fallback lookup (may be disabled).
        cancel_event: Shutdown signal; checked between requests.
    """

    def __init__(
        self,
        config: Config,
        database: Database,
        source: JellyseerrClient,
        client: MoviePilotClient,
        notifier: TelegramNotifier,
        tmdb: TMDBClient,
        cancel_event: threading.Event
    ) -> None:
        self.config = config
        self.database = database
        self.source = source
        self.client = client
        self.notifier = notifier
        self.tmdb = tmdb
        self.cancel_event = cancel_event
        self._secrets = (
            config.jellyseerr.api_key,
            config.moviepilot.password,
            config.tmdb.api_key,
            config.telegram.bot_token,
        )

    # =========================================================================
    # Passes
    # =========================================================================

    def sync_once(self) -> SyncStats:
        """
        Run one complete sync pass.

        Returns:
            SyncStats of the pass. Per-request failures are counted, not raised.

        Raises:
            SourceError: If the approved request list cannot be fetched
                         (including the pagination cap).
            OperationCancelled: If shutdown interrupts a backend wait.
        """
        stats = SyncStats()

        media_requests = self.source.fetch_all_approved(self.config.jellyseerr.page_size)
        stats.fetched = len(media_requests)
        logger.info(f"Fetched {stats.fetched} approved requests")

        for media_request in media_requests:
            if self.cancel_event.is_set():
                break
            try:
                if not self.ingest_request(media_request):
                    stats.skipped += 1
            except DatabaseError as e:
                logger.error(f"Failed to store request #{media_request.id}: {e}")

        self.process_pending(stats)

        logger.info(format_stats_message(stats.fetched, stats.synced + stats.already_exists, stats.failed, stats.skipped))
        return stats

    def ingest_request(self, media_request: MediaRequest) -> bool:
        """
        Upsert one upstream request into the ledger.

        Returns:
            False if the request was skipped (already synced or unknown
            media kind), True if it was stored.
        """
        key = str(media_request.id)
        kind = media_request.kind
        if kind is None:
            logger.warning(f"Skipping request #{key}: unknown media type {media_request.media_type!r}")
            return False

        existing = self.database.get_request(key)
        if existing is not None and existing.status is SyncStatus.SYNCED:
            logger.debug(f"Request #{key} already synced, skipping")
            return False

        title = f"TMDB-{media_request.tmdb_id}"
        poster_path = None
        try:
            details = self.source.get_media_details(kind, media_request.tmdb_id)
            title = details.display_title or title
            poster_path = details.poster_path
        except SourceError as e:
            logger.warning(f"Could not fetch details for request #{key}, using '{title}': {e}")

        if not poster_path:
            poster_path = self.tmdb.get_poster_path(kind, media_request.tmdb_id)

        seasons: list[int] = []
        episodes: dict[int, tuple[int, ...]] = {}
        for season in media_request.seasons:
            if season.season_number == 0 or season.season_number in seasons:
                continue
            seasons.append(season.season_number)
            if season.episodes:
                episodes[season.season_number] = season.episodes

        self.database.save_request(Request(
            source_request_id=key,
            media_type=kind,
            tmdb_id=media_request.tmdb_id,
            title=title,
            poster_path=poster_path,
            seasons=tuple(seasons),
            episodes=episodes,
            status=SyncStatus.PENDING,
            requested_at=normalize_timestamp(media_request.created_at),
        ))

        if existing is not None and existing.status is SyncStatus.FAILED:
            self.database.update_request_status(key, SyncStatus.RETRYING)
            logger.info(f"Request #{key} '{title}' queued for retry")
        return True

    def process_pending(self, stats: SyncStats | None = None) -> SyncStats:
        """Subscribe every pending/retrying request, oldest first."""
        stats = stats or SyncStats()
        pending = self.database.list_pending_requests(PENDING_BATCH_SIZE)
        if not pending:
            logger.info("No pending requests")
            return stats

        logger.info(f"Subscribing {len(pending)} pending requests")
        for request in tqdm(pending, desc="Subscribing", unit="req", leave=False):
            if self.cancel_event.is_set():
                logger.info("Shutdown requested, stopping sync pass")
                break
            try:
                outcome = self.process_request(request)
            except DatabaseError as e:
                logger.error(f"Ledger error while processing '{request.title}': {e}")
                continue
            stats.processed += 1
            if outcome == "failed":
                stats.failed += 1
            elif outcome == "already_exists":
                stats.already_exists += 1
            else:
                stats.synced += 1
        return stats

    # =========================================================================
    # Single request
    # =========================================================================

    def process_request(self, request: Request) -> str:
        """
        Attempt the subscription of one request and record the outcome.

        Returns:
            "synced", "already_exists" or "failed".

        Raises:
            DatabaseError: If the outcome cannot be written.
            OperationCancelled: If shutdown interrupts a backend wait; the
                                request stays 'processing' and is resumed
                                by the next pass.
        """
        key = request.source_request_id
        self.database.update_request_status(key, SyncStatus.PROCESSING)

        try:
            result = self._subscribe(request)
        except BackendError as e:
            self._record_failure(request, e)
            return "failed"

        self._record_success(request, result)
        return "already_exists" if result.already_exists else "synced"

    def _subscribe(self, request: Request) -> SubscribeResult:
        """Issue the subscribe calls of a request; return the first response."""
        plan = build_subscribe_plan(request, self.config.moviepilot.tv_episode_mode)

        def on_retry(attempt: int, max_attempts: int) -> None:
            self.notifier.notify_retrying(request.title, attempt, max_attempts)

        first: SubscribeResult | None = None
        for season, episodes in plan:
            result = self.client.subscribe(
                SubscribeRequest(
                    name=request.title,
                    media_type=request.media_type,
                    tmdb_id=request.tmdb_id,
                    season=season,
                    episodes=episodes,
                    username=self.config.moviepilot.username,
                ),
                on_retry=on_retry,
            )
            if first is None:
                first = result
            if season is not None:
                logger.debug(f"Subscribed '{request.title}' season {season}")
        return first

    def _record_success(self, request: Request, result: SubscribeResult) -> None:
        key = request.source_request_id
        previous = self.database.get_link(key)
        self.database.save_link(SubscriptionLink(
            source_request_id=key,
            subscribe_id=result.subscription_id,
            state=SyncStatus.SYNCED,
            last_error=None,
            retry_count=previous.retry_count if previous else 0,
        ))

        now = datetime.now(timezone.utc).isoformat()
        status = TrackingStatus.TRANSFERRED if result.already_exists else TrackingStatus.SUBSCRIBED
        existing = self.database.get_tracking(key)
        if existing is None or existing.status is TrackingStatus.PENDING:
            self.database.save_tracking(TrackingRecord(
                source_request_id=key,
                tmdb_id=request.tmdb_id,
                title=request.title,
                media_type=request.media_type,
                status=status,
                subscribe_time=now,
                transfer_time=now if result.already_exists else None,
            ))
            log_transition(logger, key, request.title, TrackingStatus.PENDING.value, status.value, "subscribe")

        self.database.save_event(key, EventType.SUBSCRIBED, {
            "tmdb_id": request.tmdb_id,
            "title": request.title,
            "subscription_id": result.subscription_id,
            "already_exists": result.already_exists,
        })
        self.database.update_request_status(key, SyncStatus.SYNCED)

        if result.already_exists:
            logger.info(f"Already in library: {request.title} ({result.message})")
            self.notifier.notify_already_exists(request.title, request.media_type, request.tmdb_id, request.poster_path)
        else:
            logger.info(f"Subscribed: {request.title} (id={result.subscription_id or '-'})")
            self.notifier.notify_subscribed(request.title, request.media_type, request.tmdb_id, request.poster_path)

    def _record_failure(self, request: Request, error: BackendError) -> None:
        key = request.source_request_id
        reason = sanitize_error(str(error), self._secrets)
        previous = self.database.get_link(key)

        self.database.save_link(SubscriptionLink(
            source_request_id=key,
            subscribe_id=previous.subscribe_id if previous else "",
            state=SyncStatus.FAILED,
            last_error=reason,
            retry_count=(previous.retry_count if previous else 0) + 1,
        ))
        self.database.update_request_status(key, SyncStatus.FAILED)
        self.database.save_event(key, EventType.FAILED, {
            "tmdb_id": request.tmdb_id,
            "title": request.title,
            "reason": reason,
        })

        log_sync_failure(logger, key, request.title, request.media_type.value, request.tmdb_id, reason)
        self.notifier.notify_failed(request.title, reason)

    # =========================================================================
    # Daemon
    # =========================================================================

    def run_daemon(self, stop_event: threading.Event) -> None:
        """
        Run a pass immediately, then one every `sync.interval` minutes.

        A failed pass (SourceError, DatabaseError) is logged and reported;
        the loop continues. Returns as soon as stop_event is set.
        """
        interval = self.config.sync.interval * 60
        logger.info(f"Daemon started, syncing every {self.config.sync.interval} min")

        while not stop_event.is_set():
            try:
                self.sync_once()
            except OperationCancelled:
                break
            except (SourceError, DatabaseError) as e:
                message = sanitize_error(str(e), self._secrets)
                logger.error(f"Sync pass failed: {message}")
                self.notifier.notify_error(f"同步失败: {message}")
            if stop_event.wait(interval):
                break

        logger.info("Daemon stopped")
