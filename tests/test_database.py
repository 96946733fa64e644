"""Tests for the SQLite ledger"""

from datetime import datetime, timedelta, timezone

import pytest

from media_syncer.core.database import Database
from media_syncer.core.exceptions import DatabaseError
from media_syncer.core.models import (
    DailyReport,
    EventType,
    MediaType,
    Request,
    SubscriptionLink,
    SyncStatus,
    TrackingRecord,
    TrackingStatus,
)


class TestDatabaseInit:
    """Opening the ledger"""

    def test_missing_parent_directory(self, tmp_path):
        """A database path under a missing directory is rejected"""
        with pytest.raises(DatabaseError):
            Database(tmp_path / "missing" / "syncer.db")

    def test_reopen_existing_database(self, tmp_path, sample_movie):
        """Data survives closing and reopening the ledger"""
        db = Database(tmp_path / "syncer.db")
        db.save_request(sample_movie)
        db.close()

        reopened = Database(tmp_path / "syncer.db")
        assert reopened.get_request("1").title == "Dune"
        reopened.close()


class TestRequests:
    """Request upsert and status queries"""

    def test_save_and_get_request(self, database, sample_show):
        """Seasons and episodes round-trip through JSON columns"""
        show = Request(
            source_request_id="9",
            media_type=MediaType.TV,
            tmdb_id=1399,
            title="Game of Thrones",
            seasons=(1, 2),
            episodes={2: (1, 2, 3)},
            requested_at="2024-05-01T00:00:00+00:00",
        )
        database.save_request(show)

        stored = database.get_request("9")
        assert stored.seasons == (1, 2)
        assert stored.episodes == {2: (1, 2, 3)}
        assert stored.status is SyncStatus.PENDING
        assert stored.created_at is not None

    def test_get_missing_request(self, database):
        """Unknown keys return None"""
        assert database.get_request("404") is None

    def test_upsert_is_idempotent(self, database, sample_movie):
        """Saving the same request twice keeps one row"""
        database.save_request(sample_movie)
        database.save_request(sample_movie)

        assert database.get_stats()["total"] == 1

    def test_upsert_preserves_status(self, database, sample_movie):
        """Re-saving a request never rolls its status back"""
        database.save_request(sample_movie)
        database.update_request_status("1", SyncStatus.SYNCED)

        database.save_request(sample_movie)

        assert database.get_request("1").status is SyncStatus.SYNCED

    def test_upsert_updates_metadata(self, database, sample_movie):
        """Title changes are applied, a missing poster keeps the old one"""
        database.save_request(sample_movie)
        renamed = Request(
            source_request_id="1",
            media_type=MediaType.MOVIE,
            tmdb_id=438631,
            title="Dune: Part One",
            poster_path=None,
            requested_at=sample_movie.requested_at,
        )
        database.save_request(renamed)

        stored = database.get_request("1")
        assert stored.title == "Dune: Part One"
        assert stored.poster_path == "/dune.jpg"

    def test_list_pending_oldest_first(self, database, sample_movie, sample_show):
        """Pending, retrying and processing requests come back by requested_at"""
        newer = Request(
            source_request_id="3",
            media_type=MediaType.MOVIE,
            tmdb_id=1,
            title="Newest",
            requested_at="2024-06-01T00:00:00+00:00",
        )
        done = Request(
            source_request_id="4",
            media_type=MediaType.MOVIE,
            tmdb_id=2,
            title="Done",
            requested_at="2024-01-01T00:00:00+00:00",
        )
        for request in (newer, sample_show, sample_movie, done):
            database.save_request(request)
        database.update_request_status("2", SyncStatus.RETRYING)
        database.update_request_status("3", SyncStatus.PROCESSING)
        database.update_request_status("4", SyncStatus.SYNCED)

        pending = database.list_pending_requests()

        assert [r.source_request_id for r in pending] == ["1", "2", "3"]

    def test_update_status_of_missing_request(self, database):
        """Updating an unknown request raises"""
        with pytest.raises(DatabaseError):
            database.update_request_status("404", SyncStatus.SYNCED)


class TestLinks:
    """Subscription links"""

    def test_save_link_upserts(self, database, sample_movie):
        """A second save replaces state, error and retry count"""
        database.save_request(sample_movie)
        database.save_link(SubscriptionLink("1", state=SyncStatus.FAILED, last_error="boom", retry_count=1))
        database.save_link(SubscriptionLink("1", subscribe_id="12", state=SyncStatus.SYNCED, retry_count=1))

        link = database.get_link("1")
        assert link.subscribe_id == "12"
        assert link.state is SyncStatus.SYNCED
        assert link.last_error is None
        assert link.retry_count == 1

    def test_list_failed_links(self, database, sample_movie, sample_show):
        """Only failed and retrying links are listed"""
        database.save_request(sample_movie)
        database.save_request(sample_show)
        database.save_link(SubscriptionLink("1", state=SyncStatus.FAILED, last_error="boom"))
        database.save_link(SubscriptionLink("2", subscribe_id="5", state=SyncStatus.SYNCED))

        failed = database.list_failed_links()

        assert [link.source_request_id for link in failed] == ["1"]

    def test_update_missing_link(self, database):
        with pytest.raises(DatabaseError):
            database.update_link(SubscriptionLink("404", state=SyncStatus.FAILED))


class TestTracking:
    """Tracking records and compare-and-swap transitions"""

    def test_transition_from_expected_status(self, database, subscribed_record):
        """The first transition wins and sets its timestamp"""
        moved = database.transition_tracking(
            "1", TrackingStatus.SUBSCRIBED, TrackingStatus.DOWNLOADING,
            download_start_time="2024-05-01T11:00:00+00:00",
        )

        record = database.get_tracking("1")
        assert moved is True
        assert record.status is TrackingStatus.DOWNLOADING
        assert record.download_start_time == "2024-05-01T11:00:00+00:00"
        assert record.subscribe_time == "2024-05-01T10:05:00+00:00"

    def test_transition_is_gated(self, database, subscribed_record):
        """Replaying the same transition is a no-op"""
        assert database.transition_tracking("1", TrackingStatus.SUBSCRIBED, TrackingStatus.DOWNLOADING)
        assert not database.transition_tracking("1", TrackingStatus.SUBSCRIBED, TrackingStatus.DOWNLOADING)

    def test_transition_accepts_several_expected_statuses(self, database, subscribed_record):
        database.transition_tracking("1", TrackingStatus.SUBSCRIBED, TrackingStatus.DOWNLOADED)

        moved = database.transition_tracking(
            "1",
            (TrackingStatus.DOWNLOADING, TrackingStatus.DOWNLOADED),
            TrackingStatus.TRANSFERRED,
            transfer_time="2024-05-02T00:00:00+00:00",
        )

        assert moved is True
        assert database.get_tracking("1").status is TrackingStatus.TRANSFERRED

    def test_transition_missing_record(self, database):
        assert database.transition_tracking("404", TrackingStatus.SUBSCRIBED, TrackingStatus.DOWNLOADING) is False

    def test_transition_rejects_unknown_field(self, database, subscribed_record):
        with pytest.raises(ValueError):
            database.transition_tracking(
                "1", TrackingStatus.SUBSCRIBED, TrackingStatus.DOWNLOADING, title="x"
            )

    def test_list_tracking_by_status(self, database, subscribed_record, sample_show):
        database.save_request(sample_show)
        database.save_tracking(TrackingRecord(
            source_request_id="2",
            tmdb_id=1399,
            title="Game of Thrones",
            media_type=MediaType.TV,
            status=TrackingStatus.TRANSFERRED,
        ))

        subscribed = database.list_tracking_by_status(TrackingStatus.SUBSCRIBED)

        assert [r.source_request_id for r in subscribed] == ["1"]

    def test_update_tracking(self, database, subscribed_record):
        """update_tracking overwrites lifecycle fields unconditionally"""
        database.update_tracking(TrackingRecord(
            source_request_id="1",
            tmdb_id=438631,
            title="Dune",
            media_type=MediaType.MOVIE,
            status=TrackingStatus.FAILED,
            error_message="gone",
        ))

        record = database.get_tracking("1")
        assert record.status is TrackingStatus.FAILED
        assert record.error_message == "gone"


class TestEventsAndReports:
    """Audit events, daily reports and statistics"""

    def test_save_and_list_events(self, database):
        """Payloads keep non-ASCII text"""
        event_id = database.save_event("1", EventType.SUBSCRIBED, {"title": "三体"})

        events = database.list_events("1")
        assert events[0].id == event_id
        assert events[0].event_type is EventType.SUBSCRIBED
        assert events[0].data == {"title": "三体"}

    def test_count_events_since(self, database):
        """Every event type is present in the counts"""
        database.save_event("1", EventType.SUBSCRIBED)
        database.save_event("2", EventType.SUBSCRIBED)
        database.save_event("1", EventType.FAILED)

        counts = database.count_events_since(datetime.now(timezone.utc) - timedelta(hours=1))

        assert counts["subscribed"] == 2
        assert counts["failed"] == 1
        assert counts["transfer_complete"] == 0
        assert set(counts) == {event_type.value for event_type in EventType}

    def test_count_events_excludes_older(self, database):
        database.save_event("1", EventType.SUBSCRIBED)

        counts = database.count_events_since(datetime.now(timezone.utc) + timedelta(hours=1))

        assert counts["subscribed"] == 0

    def test_save_report_upserts_by_date(self, database):
        today = datetime.now().strftime("%Y-%m-%d")
        database.save_report(DailyReport(report_date=today, total_subscribed=1, content="a"))
        database.save_report(DailyReport(report_date=today, total_subscribed=3, content="b"))

        report = database.get_report(today)
        assert report.total_subscribed == 3
        assert report.content == "b"
        assert len(database.list_recent_reports()) == 1

    def test_get_stats(self, database, subscribed_record, sample_show):
        database.save_request(sample_show)
        database.update_request_status("2", SyncStatus.FAILED)

        stats = database.get_stats()

        assert stats["total"] == 2
        assert stats["pending"] == 1
        assert stats["failed"] == 1
        assert stats["synced"] == 0
        assert stats["tracking_subscribed"] == 1
        assert stats["tracking_transferred"] == 0

    def test_get_stats_empty(self, database):
        stats = database.get_stats()
        assert stats["total"] == 0
        assert stats["pending"] == 0
