"""
Tracking reconciler: advances tracking records through their lifecycle.

State machine:

    pending -> subscribed -> downloading -> downloaded -> transferred
                   |                                         ^
                   +---------- (already in library) ---------+
    any non-terminal state -> failed
    manual_search: informational side branch

Two independent drivers feed the ledger:

    1. Polling loop (authoritative): every `check_interval` minutes, loads
       records in subscribed/downloading/downloaded, fetches the latest
       download and transfer history pages and applies

           subscribed              + download history match -> downloading
           downloading|downloaded  + transfer history match -> transferred

       where "match" means same TMDB id and same media kind label.

    2. Event stream listener (best-effort): relays MoviePilot system
       messages as notifications. It never mutates the ledger.

Idempotence:
    Every transition re-reads the record and is written with a
    compare-and-swap on its current status (Database.transition_tracking).
    Only the caller whose write succeeded sends the notification and
    writes the audit event, so replaying the same history snapshot, or
    racing drivers, cannot produce a second transition or notification.
"""

import threading
from dataclasses import replace
from datetime import datetime, timezone

from media_syncer.core.config import TrackerConfig
from media_syncer.core.database import Database
from media_syncer.core.exceptions import BackendError, DatabaseError, OperationCancelled
from media_syncer.core.logger import get_logger, log_transition
from media_syncer.core.models import (
    ACTIVE_TRACKING_STATUSES,
    EventType,
    TrackingRecord,
    TrackingStatus,
)
from media_syncer.moviepilot.client import MoviePilotClient
from media_syncer.moviepilot.models import HistoryItem
from media_syncer.moviepilot.token import HTTP_TIMEOUT
from media_syncer.notify.telegram import TelegramNotifier
from media_syncer.tracker.sse import MPNotification, SSEClient, extract_media_title


logger = get_logger(__name__)

# Records loaded per status, and history entries fetched per poll
BATCH_SIZE = 100
HISTORY_PAGE_SIZE = 100

# Join bound for worker threads: one in-flight HTTP call plus slack
SHUTDOWN_TIMEOUT = HTTP_TIMEOUT + 5


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _find_match(record: TrackingRecord, history: list[HistoryItem]) -> HistoryItem | None:
    for item in history:
        if item.matches(record.tmdb_id, record.media_type):
            return item
    return None


class Tracker:
    """
    Owns the polling and event-stream threads.

    Args:
        database: Shared ledger.
        client: MoviePilot client (history queries).
        notifier: Notification channel.
        config: TrackerConfig (enabled, check_interval, sse_enabled).
        cancel_event: Process-wide shutdown signal.
        sse_client: Optional event-stream client; built by the caller so
                    tests can run the tracker without one.

    Usage:
        tracker = Tracker(db, client, notifier, config.tracker, cancel_event, sse_client)
        tracker.start()
        ...
        tracker.stop()
    """

    def __init__(
        self,
        database: Database,
        client: MoviePilotClient,
        notifier: TelegramNotifier,
        config: TrackerConfig,
        cancel_event: threading.Event,
        sse_client: SSEClient | None = None
    ) -> None:
        self.database = database
        self.client = client
        self.notifier = notifier
        self.config = config
        self.cancel_event = cancel_event
        self.sse_client = sse_client
        if sse_client is not None:
            sse_client.on_message = self.handle_notification
        self._threads: list[threading.Thread] = []

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start(self) -> None:
        """Start the polling thread and, if configured, the event-stream thread."""
        if not self.config.enabled:
            logger.info("Tracker disabled in config")
            return

        if self.config.sse_enabled and self.sse_client is not None:
            logger.warning(
                "Event stream is enabled, but MoviePilot may require a resource token "
                "that the login API does not issue; expect HTTP 403 errors. "
                "Set TRACKER_SSE_ENABLED=false to rely on polling only."
            )
            self._spawn(self.sse_client.run, "tracker-sse")
        else:
            logger.info("Event stream disabled, using polling only")

        self._spawn(self._run_polling, "tracker-poll")
        logger.info(f"Tracker started (poll every {self.config.check_interval} min)")

    def stop(self, timeout: float = SHUTDOWN_TIMEOUT) -> None:
        """
        Signal shutdown, abort open connections and join the threads.

        The default timeout outlasts one HTTP call, so the ledger is no
        longer in use by these threads once this returns.
        """
        self.cancel_event.set()
        if self.sse_client is not None:
            self.sse_client.stop()
        self.client.close()
        for thread in self._threads:
            thread.join(timeout)
            if thread.is_alive():
                logger.warning(f"Thread {thread.name} did not stop within {timeout:.0f}s")
        self._threads = []
        logger.info("Tracker stopped")

    def _spawn(self, target, name: str) -> None:
        thread = threading.Thread(target=target, name=name, daemon=True)
        thread.start()
        self._threads.append(thread)

    def _run_polling(self) -> None:
        interval = self.config.check_interval * 60
        while not self.cancel_event.is_set():
            try:
                self.poll_once()
            except OperationCancelled:
                break
            except DatabaseError as e:
                logger.error(f"Tracking poll failed: {e}")
            if self.cancel_event.wait(interval):
                break
        logger.info("Polling loop stopped")

    # =========================================================================
    # Polling
    # =========================================================================

    def poll_once(self) -> dict[str, int]:
        """
        Run one polling cycle.

        Returns:
            Dict with 'checked', 'downloading' and 'transferred' counts
            (the latter two count transitions made in this cycle).

        Raises:
            DatabaseError: If the active records cannot be listed.
            OperationCancelled: If shutdown interrupts a backend call.
        """
        stats = {"checked": 0, "downloading": 0, "transferred": 0}

        records: list[TrackingRecord] = []
        for status in ACTIVE_TRACKING_STATUSES:
            records.extend(self.database.list_tracking_by_status(status, BATCH_SIZE))

        if not records:
            logger.debug("No tracking records to check")
            return stats

        stats["checked"] = len(records)
        logger.debug(f"Checking {len(records)} tracking records")

        try:
            downloads = self.client.query_download_history(1, HISTORY_PAGE_SIZE)
            transfers = self.client.query_transfer_history(1, HISTORY_PAGE_SIZE)
        except BackendError as e:
            logger.warning(f"History query failed, skipping this tracking cycle: {e}")
            return stats

        for record in records:
            if self.cancel_event.is_set():
                logger.debug("Shutdown requested, leaving the rest of this cycle")
                break
            try:
                advanced = self.reconcile_record(record.source_request_id, downloads, transfers)
            except DatabaseError as e:
                logger.error(f"Failed to update tracking for '{record.title}': {e}")
                continue
            for status in advanced:
                stats[status.value] += 1

        if stats["downloading"] or stats["transferred"]:
            logger.info(
                f"Tracking cycle: {stats['downloading']} started downloading, "
                f"{stats['transferred']} transferred"
            )
        return stats

    def reconcile_record(
        self,
        source_request_id: str,
        downloads: list[HistoryItem],
        transfers: list[HistoryItem]
    ) -> list[TrackingStatus]:
        """
        Apply the history snapshot to one record.

        The record is re-read from the ledger first; each transition is
        gated on that fresh status.

        Returns:
            The statuses this call moved the record into (possibly empty).
        """
        record = self.database.get_tracking(source_request_id)
        if record is None or record.status.is_terminal:
            return []

        advanced: list[TrackingStatus] = []

        if record.status is TrackingStatus.SUBSCRIBED and _find_match(record, downloads):
            if self._transition(record, TrackingStatus.DOWNLOADING, download_start_time=_now_iso()):
                self.notifier.notify_download_started(record.title)
                self._save_event(record, EventType.DOWNLOAD_STARTED)
                record = replace(record, status=TrackingStatus.DOWNLOADING)
                advanced.append(TrackingStatus.DOWNLOADING)

        if record.status in (TrackingStatus.DOWNLOADING, TrackingStatus.DOWNLOADED) and _find_match(record, transfers):
            if self._transition(record, TrackingStatus.TRANSFERRED, transfer_time=_now_iso()):
                self.notifier.notify_transfer_complete(record.title)
                self._save_event(record, EventType.TRANSFER_COMPLETE)
                advanced.append(TrackingStatus.TRANSFERRED)

        return advanced

    def _transition(self, record: TrackingRecord, new_status: TrackingStatus, **timestamps: str) -> bool:
        if not self.database.transition_tracking(
            record.source_request_id, record.status, new_status, **timestamps
        ):
            logger.debug(f"'{record.title}' already moved past {record.status.value}, skipping")
            return False
        log_transition(
            logger, record.source_request_id, record.title,
            record.status.value, new_status.value, "history"
        )
        return True

    def _save_event(self, record: TrackingRecord, event_type: EventType) -> None:
        # The transition is already persisted; a lost audit row must not undo it
        try:
            self.database.save_event(
                record.source_request_id,
                event_type,
                {"tmdb_id": record.tmdb_id, "title": record.title},
            )
        except DatabaseError as e:
            logger.error(f"Failed to save {event_type.value} event for '{record.title}': {e}")

    # =========================================================================
    # Event stream
    # =========================================================================

    def handle_notification(self, notification: MPNotification) -> None:
        """
        Relay one MoviePilot system message.

        Titles are matched only by text, with no ledger key, so this path
        sends notifications and never changes tracking state.
        """
        title = extract_media_title(notification.title)
        logger.info(f"MoviePilot message: [{notification.ctype or notification.mtype}] {notification.title}")

        ctype = notification.ctype
        if ctype == "subscribeAdded":
            logger.debug(f"Subscription added in MoviePilot: {title}")
        elif ctype == "subscribeComplete":
            self.notifier.notify_resource_found(title, notification.username)
        elif ctype == "downloadStart":
            self.notifier.notify_download_started(title)
        elif ctype == "downloadComplete":
            self.notifier.notify_download_complete(title)
        elif ctype == "transferComplete":
            self.notifier.notify_transfer_complete(title)
        else:
            logger.debug(f"Unhandled message type: {ctype!r}")
