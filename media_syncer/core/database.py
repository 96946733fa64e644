"""
Thread-safe SQLite ledger for media-syncer.

The ledger is the single source of truth shared by the sync pipeline and
the tracking reconciler. Every row is keyed by `source_request_id` and all
mutations are single-row upserts or updates, so concurrent writers never
need multi-row transactions.

Schema:
    requests:               One row per upstream request (metadata + sync status)
    mp_links:               Backend subscription correlation, 1:1 with requests
    subscription_tracking:  Lifecycle state machine, 1:1 with requests
    download_events:        Append-only audit trail
    daily_reports:          One summary per day

Usage:
    db = Database(Path("./data/syncer.db"))

    # Sync pipeline
    db.save_request(request)
    for request in db.list_pending_requests():
        ...
        db.update_request_status(request.source_request_id, SyncStatus.SYNCED)

    # Tracking reconciler
    if db.transition_tracking(key, TrackingStatus.SUBSCRIBED, TrackingStatus.DOWNLOADING,
                              download_start_time=now):
        db.save_event(key, EventType.DOWNLOAD_STARTED, {"tmdb_id": 1, "title": "..."})
"""

import json
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Generator

from media_syncer.core.exceptions import DatabaseError
from media_syncer.core.models import (
    DailyReport,
    DownloadEvent,
    EventType,
    Request,
    SubscriptionLink,
    SyncStatus,
    TrackingRecord,
    TrackingStatus,
)


DATABASE_VERSION = 1

# Default page size for status-filtered queries
DEFAULT_LIST_LIMIT = 100

# Timestamp columns a tracking transition may set
_TRACKING_TIME_FIELDS = (
    "subscribe_time",
    "download_start_time",
    "download_finish_time",
    "transfer_time",
)


_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY
);

CREATE TABLE IF NOT EXISTS requests (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    source_request_id TEXT NOT NULL UNIQUE,
    media_type TEXT NOT NULL CHECK (media_type IN ('movie', 'tv')),
    tmdb_id INTEGER NOT NULL,
    title TEXT NOT NULL,
    poster_path TEXT,
    seasons_json TEXT,
    episodes_json TEXT,
    status TEXT NOT NULL DEFAULT 'pending'
        CHECK (status IN ('pending', 'processing', 'synced', 'failed', 'retrying')),
    requested_at TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_requests_status ON requests(status);

CREATE TABLE IF NOT EXISTS mp_links (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    source_request_id TEXT NOT NULL UNIQUE,
    mp_subscribe_id TEXT,
    state TEXT NOT NULL DEFAULT 'pending'
        CHECK (state IN ('pending', 'processing', 'synced', 'failed', 'retrying')),
    last_error TEXT,
    retry_count INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    FOREIGN KEY (source_request_id) REFERENCES requests(source_request_id)
);

CREATE INDEX IF NOT EXISTS idx_mp_links_state ON mp_links(state);

CREATE TABLE IF NOT EXISTS subscription_tracking (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    source_request_id TEXT NOT NULL UNIQUE,
    tmdb_id INTEGER NOT NULL,
    title TEXT NOT NULL,
    media_type TEXT NOT NULL CHECK (media_type IN ('movie', 'tv')),
    subscribe_status TEXT NOT NULL DEFAULT 'pending'
        CHECK (subscribe_status IN ('pending', 'subscribed', 'downloading', 'downloaded',
                                    'transferred', 'failed', 'manual_search')),
    subscribe_time TEXT,
    download_start_time TEXT,
    download_finish_time TEXT,
    transfer_time TEXT,
    retry_count INTEGER NOT NULL DEFAULT 0,
    last_retry_time TEXT,
    error_message TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_tracking_status ON subscription_tracking(subscribe_status);
CREATE INDEX IF NOT EXISTS idx_tracking_created_at ON subscription_tracking(created_at);

CREATE TABLE IF NOT EXISTS download_events (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    source_request_id TEXT NOT NULL,
    event_type TEXT NOT NULL
        CHECK (event_type IN ('subscribed', 'download_started', 'download_complete',
                              'transfer_complete', 'failed', 'manual_search')),
    event_data TEXT,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_events_source_id ON download_events(source_request_id);
CREATE INDEX IF NOT EXISTS idx_events_type ON download_events(event_type);
CREATE INDEX IF NOT EXISTS idx_events_created_at ON download_events(created_at);

CREATE TABLE IF NOT EXISTS daily_reports (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    report_date TEXT NOT NULL UNIQUE,
    total_subscribed INTEGER NOT NULL DEFAULT 0,
    total_downloaded INTEGER NOT NULL DEFAULT 0,
    total_transferred INTEGER NOT NULL DEFAULT 0,
    total_failed INTEGER NOT NULL DEFAULT 0,
    report_content TEXT,
    created_at TEXT NOT NULL
);
"""


class Database:
    """
    Thread-safe SQLite ledger.

    Uses a single persistent connection with thread locking for safety.
    All public methods acquire self._lock before executing.
    """

    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path
        self._lock = threading.Lock()
        self._conn: sqlite3.Connection | None = None

        if not db_path.parent.exists():
            raise DatabaseError(
                f"Parent directory does not exist: {db_path.parent}",
                details={"path": str(db_path.parent)}
            )

        try:
            self._init_database()
        except sqlite3.Error as e:
            raise DatabaseError(
                f"Failed to initialize database: {e}",
                details={"path": str(db_path)}
            ) from e

    @contextmanager
    def _get_connection(self) -> Generator[sqlite3.Connection, None, None]:
        """
        Get the persistent database connection as a context manager.

        The connection is created once and reused for all operations.
        sqlite3 errors raised inside the block are rolled back and
        re-raised as DatabaseError.
        """
        if self._conn is None:
            self._conn = sqlite3.connect(
                str(self.db_path),
                timeout=30.0,
                check_same_thread=False  # We handle thread safety with _lock
            )
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA foreign_keys = ON")
            self._conn.execute("PRAGMA journal_mode = WAL")
        try:
            yield self._conn
        except sqlite3.Error as e:
            self._conn.rollback()
            raise DatabaseError(
                f"Database operation failed: {e}",
                details={"path": str(self.db_path), "original_error": str(e)}
            ) from e

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    def _init_database(self) -> None:
        with self._get_connection() as conn:
            conn.executescript(_SCHEMA_SQL)

            cursor = conn.execute("SELECT version FROM schema_version LIMIT 1")
            row = cursor.fetchone()

            if row is None:
                conn.execute("INSERT INTO schema_version (version) VALUES (?)", (DATABASE_VERSION,))
            elif row[0] != DATABASE_VERSION:
                raise DatabaseError(
                    f"Database version mismatch: expected {DATABASE_VERSION}, got {row[0]}",
                    details={"expected": DATABASE_VERSION, "actual": row[0]}
                )
            conn.commit()

    def _now_iso(self) -> str:
        return datetime.now(timezone.utc).isoformat()

    # =========================================================================
    # Requests
    # =========================================================================

    def save_request(self, request: Request) -> None:
        """
        Insert a request, or refresh its metadata if it already exists.

        The upsert is non-destructive: on conflict only the metadata
        columns are updated. Status changes go through
        update_request_status() so a re-sync never rolls a request back.
        """
        row = request.to_database_dict()
        now = self._now_iso()
        with self._lock:
            with self._get_connection() as conn:
                conn.execute("""
                    INSERT INTO requests (
                        source_request_id, media_type, tmdb_id, title, poster_path,
                        seasons_json, episodes_json, status, requested_at,
                        created_at, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(source_request_id) DO UPDATE SET
                        media_type = excluded.media_type,
                        tmdb_id = excluded.tmdb_id,
                        title = excluded.title,
                        poster_path = COALESCE(excluded.poster_path, requests.poster_path),
                        seasons_json = excluded.seasons_json,
                        episodes_json = excluded.episodes_json,
                        requested_at = excluded.requested_at,
                        updated_at = excluded.updated_at
                """, (
                    row["source_request_id"], row["media_type"], row["tmdb_id"],
                    row["title"], row["poster_path"], row["seasons_json"],
                    row["episodes_json"], row["status"], row["requested_at"], now, now
                ))
                conn.commit()

    def get_request(self, source_request_id: str) -> Request | None:
        with self._lock:
            with self._get_connection() as conn:
                cursor = conn.execute(
                    "SELECT * FROM requests WHERE source_request_id = ?",
                    (source_request_id,)
                )
                row = cursor.fetchone()
                return Request.from_database_dict(dict(row)) if row else None

    def list_pending_requests(self, limit: int = DEFAULT_LIST_LIMIT) -> list[Request]:
        """
        Get requests that still need a subscription attempt, oldest first.

        'processing' rows are included: they belong to an attempt that was
        interrupted before its outcome was written.
        """
        with self._lock:
            with self._get_connection() as conn:
                cursor = conn.execute("""
                    SELECT * FROM requests
                    WHERE status IN ('pending', 'retrying', 'processing')
                    ORDER BY requested_at ASC, id ASC
                    LIMIT ?
                """, (limit,))
                return [Request.from_database_dict(dict(row)) for row in cursor.fetchall()]

    def list_requests(self, limit: int = DEFAULT_LIST_LIMIT) -> list[Request]:
        """Get the most recently requested rows (for the status command)."""
        with self._lock:
            with self._get_connection() as conn:
                cursor = conn.execute(
                    "SELECT * FROM requests ORDER BY requested_at DESC, id DESC LIMIT ?",
                    (limit,)
                )
                return [Request.from_database_dict(dict(row)) for row in cursor.fetchall()]

    def update_request_status(self, source_request_id: str, status: SyncStatus) -> None:
        with self._lock:
            with self._get_connection() as conn:
                cursor = conn.execute("""
                    UPDATE requests SET status = ?, updated_at = ?
                    WHERE source_request_id = ?
                """, (SyncStatus(status).value, self._now_iso(), source_request_id))

                if cursor.rowcount == 0:
                    raise DatabaseError(
                        f"Request not found: {source_request_id}",
                        details={"source_request_id": source_request_id}
                    )
                conn.commit()

    # =========================================================================
    # Subscription Links
    # =========================================================================

    def save_link(self, link: SubscriptionLink) -> None:
        """Create or replace the subscription link of a request."""
        now = self._now_iso()
        with self._lock:
            with self._get_connection() as conn:
                conn.execute("""
                    INSERT INTO mp_links (
                        source_request_id, mp_subscribe_id, state, last_error,
                        retry_count, created_at, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(source_request_id) DO UPDATE SET
                        mp_subscribe_id = excluded.mp_subscribe_id,
                        state = excluded.state,
                        last_error = excluded.last_error,
                        retry_count = excluded.retry_count,
                        updated_at = excluded.updated_at
                """, (
                    link.source_request_id, link.subscribe_id, SyncStatus(link.state).value,
                    link.last_error, link.retry_count, now, now
                ))
                conn.commit()

    def get_link(self, source_request_id: str) -> SubscriptionLink | None:
        with self._lock:
            with self._get_connection() as conn:
                cursor = conn.execute(
                    "SELECT * FROM mp_links WHERE source_request_id = ?",
                    (source_request_id,)
                )
                row = cursor.fetchone()
                return SubscriptionLink.from_database_dict(dict(row)) if row else None

    def update_link(self, link: SubscriptionLink) -> None:
        with self._lock:
            with self._get_connection() as conn:
                cursor = conn.execute("""
                    UPDATE mp_links SET
                        mp_subscribe_id = ?, state = ?, last_error = ?,
                        retry_count = ?, updated_at = ?
                    WHERE source_request_id = ?
                """, (
                    link.subscribe_id, SyncStatus(link.state).value, link.last_error,
                    link.retry_count, self._now_iso(), link.source_request_id
                ))

                if cursor.rowcount == 0:
                    raise DatabaseError(
                        f"Subscription link not found: {link.source_request_id}",
                        details={"source_request_id": link.source_request_id}
                    )
                conn.commit()

    def list_failed_links(self, limit: int = DEFAULT_LIST_LIMIT) -> list[SubscriptionLink]:
        with self._lock:
            with self._get_connection() as conn:
                cursor = conn.execute("""
                    SELECT * FROM mp_links
                    WHERE state IN ('failed', 'retrying')
                    ORDER BY updated_at ASC
                    LIMIT ?
                """, (limit,))
                return [SubscriptionLink.from_database_dict(dict(row)) for row in cursor.fetchall()]

    # =========================================================================
    # Tracking Records
    # =========================================================================

    def save_tracking(self, record: TrackingRecord) -> None:
        """
        Create or replace the lifecycle fields of a tracking record.

        Identity fields (tmdb_id, title, media_type) are fixed at insert.
        """
        now = self._now_iso()
        with self._lock:
            with self._get_connection() as conn:
                conn.execute("""
                    INSERT INTO subscription_tracking (
                        source_request_id, tmdb_id, title, media_type, subscribe_status,
                        subscribe_time, download_start_time, download_finish_time,
                        transfer_time, retry_count, last_retry_time, error_message,
                        created_at, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(source_request_id) DO UPDATE SET
                        subscribe_status = excluded.subscribe_status,
                        subscribe_time = excluded.subscribe_time,
                        download_start_time = excluded.download_start_time,
                        download_finish_time = excluded.download_finish_time,
                        transfer_time = excluded.transfer_time,
                        retry_count = excluded.retry_count,
                        last_retry_time = excluded.last_retry_time,
                        error_message = excluded.error_message,
                        updated_at = excluded.updated_at
                """, (
                    record.source_request_id, record.tmdb_id, record.title,
                    record.media_type.value, TrackingStatus(record.status).value,
                    record.subscribe_time, record.download_start_time,
                    record.download_finish_time, record.transfer_time,
                    record.retry_count, record.last_retry_time, record.error_message,
                    now, now
                ))
                conn.commit()

    def get_tracking(self, source_request_id: str) -> TrackingRecord | None:
        with self._lock:
            with self._get_connection() as conn:
                cursor = conn.execute(
                    "SELECT * FROM subscription_tracking WHERE source_request_id = ?",
                    (source_request_id,)
                )
                row = cursor.fetchone()
                return TrackingRecord.from_database_dict(dict(row)) if row else None

    def update_tracking(self, record: TrackingRecord) -> None:
        """Unconditionally overwrite the lifecycle fields of a record."""
        with self._lock:
            with self._get_connection() as conn:
                cursor = conn.execute("""
                    UPDATE subscription_tracking SET
                        subscribe_status = ?, subscribe_time = ?, download_start_time = ?,
                        download_finish_time = ?, transfer_time = ?, retry_count = ?,
                        last_retry_time = ?, error_message = ?, updated_at = ?
                    WHERE source_request_id = ?
                """, (
                    TrackingStatus(record.status).value, record.subscribe_time,
                    record.download_start_time, record.download_finish_time,
                    record.transfer_time, record.retry_count, record.last_retry_time,
                    record.error_message, self._now_iso(), record.source_request_id
                ))

                if cursor.rowcount == 0:
                    raise DatabaseError(
                        f"Tracking record not found: {record.source_request_id}",
                        details={"source_request_id": record.source_request_id}
                    )
                conn.commit()

    def transition_tracking(
        self,
        source_request_id: str,
        expected_statuses: TrackingStatus | tuple[TrackingStatus, ...],
        new_status: TrackingStatus,
        **timestamps: str
    ) -> bool:
        """
        Move a tracking record to a new status if it is still in an expected one.

        This is a compare-and-swap on the status column: the UPDATE only
        matches while the stored status is one of `expected_statuses`, so two
        drivers racing on the same record cannot both advance it.

        Args:
            source_request_id: Ledger key.
            expected_statuses: Status (or statuses) the record must be in.
            new_status: Status to write.
            **timestamps: Optional timestamp columns to set alongside
                          (subscribe_time, download_start_time,
                          download_finish_time, transfer_time).

        Returns:
            True if this call performed the transition, False if the record
            was missing or had already moved on.
        """
        if isinstance(expected_statuses, TrackingStatus):
            expected_statuses = (expected_statuses,)

        for name in timestamps:
            if name not in _TRACKING_TIME_FIELDS:
                raise ValueError(f"Unknown tracking timestamp field: {name}")

        assignments = ["subscribe_status = ?", "updated_at = ?"]
        params: list[Any] = [TrackingStatus(new_status).value, self._now_iso()]
        for name, value in timestamps.items():
            assignments.append(f"{name} = ?")
            params.append(value)

        placeholders = ",".join("?" for _ in expected_statuses)
        params.append(source_request_id)
        params.extend(TrackingStatus(status).value for status in expected_statuses)

        with self._lock:
            with self._get_connection() as conn:
                cursor = conn.execute(f"""
                    UPDATE subscription_tracking SET {", ".join(assignments)}
                    WHERE source_request_id = ?
                    AND subscribe_status IN ({placeholders})
                """, params)
                conn.commit()
                return cursor.rowcount == 1

    def list_tracking_by_status(
        self,
        status: TrackingStatus,
        limit: int = DEFAULT_LIST_LIMIT
    ) -> list[TrackingRecord]:
        with self._lock:
            with self._get_connection() as conn:
                cursor = conn.execute("""
                    SELECT * FROM subscription_tracking
                    WHERE subscribe_status = ?
                    ORDER BY created_at DESC
                    LIMIT ?
                """, (TrackingStatus(status).value, limit))
                return [TrackingRecord.from_database_dict(dict(row)) for row in cursor.fetchall()]

    # =========================================================================
    # Download Events
    # =========================================================================

    def save_event(
        self,
        source_request_id: str,
        event_type: EventType,
        data: dict[str, Any] | None = None
    ) -> int:
        """Append an audit event. Returns the new event id."""
        payload = json.dumps(data or {}, ensure_ascii=False)
        with self._lock:
            with self._get_connection() as conn:
                cursor = conn.execute("""
                    INSERT INTO download_events (source_request_id, event_type, event_data, created_at)
                    VALUES (?, ?, ?, ?)
                """, (source_request_id, EventType(event_type).value, payload, self._now_iso()))
                conn.commit()
                return cursor.lastrowid

    def list_events(self, source_request_id: str, limit: int = DEFAULT_LIST_LIMIT) -> list[DownloadEvent]:
        with self._lock:
            with self._get_connection() as conn:
                cursor = conn.execute("""
                    SELECT * FROM download_events
                    WHERE source_request_id = ?
                    ORDER BY created_at DESC, id DESC
                    LIMIT ?
                """, (source_request_id, limit))
                return [DownloadEvent.from_database_dict(dict(row)) for row in cursor.fetchall()]

    def count_events_since(self, since: datetime) -> dict[str, int]:
        """
        Count events per type created at or after `since`.

        Returns:
            Dict mapping every EventType value to its count (0 if none).
        """
        since_iso = since.astimezone(timezone.utc).isoformat()
        counts = {event_type.value: 0 for event_type in EventType}
        with self._lock:
            with self._get_connection() as conn:
                cursor = conn.execute("""
                    SELECT event_type, COUNT(*) FROM download_events
                    WHERE created_at >= ?
                    GROUP BY event_type
                """, (since_iso,))
                for event_type, count in cursor.fetchall():
                    counts[event_type] = count
        return counts

    # =========================================================================
    # Daily Reports
    # =========================================================================

    def save_report(self, report: DailyReport) -> None:
        with self._lock:
            with self._get_connection() as conn:
                conn.execute("""
                    INSERT INTO daily_reports (
                        report_date, total_subscribed, total_downloaded,
                        total_transferred, total_failed, report_content, created_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(report_date) DO UPDATE SET
                        total_subscribed = excluded.total_subscribed,
                        total_downloaded = excluded.total_downloaded,
                        total_transferred = excluded.total_transferred,
                        total_failed = excluded.total_failed,
                        report_content = excluded.report_content
                """, (
                    report.report_date, report.total_subscribed, report.total_downloaded,
                    report.total_transferred, report.total_failed, report.content,
                    self._now_iso()
                ))
                conn.commit()

    def get_report(self, report_date: str) -> DailyReport | None:
        with self._lock:
            with self._get_connection() as conn:
                cursor = conn.execute(
                    "SELECT * FROM daily_reports WHERE report_date = ?", (report_date,)
                )
                row = cursor.fetchone()
                return DailyReport.from_database_dict(dict(row)) if row else None

    def list_recent_reports(self, days: int = 7) -> list[DailyReport]:
        """Get reports from the last `days` days, newest first."""
        cutoff = (datetime.now() - timedelta(days=days)).strftime("%Y-%m-%d")
        with self._lock:
            with self._get_connection() as conn:
                cursor = conn.execute("""
                    SELECT * FROM daily_reports
                    WHERE report_date >= ?
                    ORDER BY report_date DESC
                """, (cutoff,))
                return [DailyReport.from_database_dict(dict(row)) for row in cursor.fetchall()]

    # =========================================================================
    # Statistics
    # =========================================================================

    def get_stats(self) -> dict[str, int]:
        """
        Get overall ledger statistics.

        Returns:
            Dict with request counts (total, pending, synced, failed) and
            one `tracking_<status>` count per lifecycle status.
        """
        with self._lock:
            with self._get_connection() as conn:
                cursor = conn.execute("""
                    SELECT
                        COUNT(*),
                        SUM(CASE WHEN status IN ('pending', 'retrying', 'processing') THEN 1 ELSE 0 END),
                        SUM(CASE WHEN status = 'synced' THEN 1 ELSE 0 END),
                        SUM(CASE WHEN status = 'failed' THEN 1 ELSE 0 END)
                    FROM requests
                """)
                total, pending, synced, failed = cursor.fetchone()
                stats = {
                    "total": total or 0,
                    "pending": pending or 0,
                    "synced": synced or 0,
                    "failed": failed or 0,
                }

                for status in TrackingStatus:
                    stats[f"tracking_{status.value}"] = 0
                cursor = conn.execute("""
                    SELECT subscribe_status, COUNT(*) FROM subscription_tracking
                    GROUP BY subscribe_status
                """)
                for status, count in cursor.fetchall():
                    stats[f"tracking_{status}"] = count

                return stats
