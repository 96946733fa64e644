"""
Daily activity report.

Once a day, at the configured local time (REPORT_TIME, "HH:MM"), the
reporter counts the audit events of the previous 24 hours, stores the
summary in the daily_reports table and sends it through the notifier.

Counted events:
    subscribed        -> total_subscribed
    download_started  -> total_downloaded
    transfer_complete -> total_transferred
    failed            -> total_failed
"""

import threading
from datetime import datetime, timedelta

from media_syncer.core.database import Database
from media_syncer.core.exceptions import DatabaseError
from media_syncer.core.logger import get_logger
from media_syncer.core.models import DailyReport, EventType
from media_syncer.notify.telegram import HTTP_TIMEOUT, TelegramNotifier


logger = get_logger(__name__)


def build_daily_report(database: Database, now: datetime | None = None) -> DailyReport:
    """
    Summarize the 24 hours before `now` (local time).

    The report is keyed by the local date of `now`. The ledger's overall
    request statistics are appended to the text.
    """
    now = now or datetime.now()
    since = (now - timedelta(days=1)).astimezone()
    counts = database.count_events_since(since)
    stats = database.get_stats()

    subscribed = counts[EventType.SUBSCRIBED.value]
    downloaded = counts[EventType.DOWNLOAD_STARTED.value]
    transferred = counts[EventType.TRANSFER_COMPLETE.value]
    failed = counts[EventType.FAILED.value]

    content = (
        f"📅 {now.strftime('%Y-%m-%d')}\n\n"
        f"✅ 新增订阅: {subscribed}\n"
        f"⬇️ 开始下载: {downloaded}\n"
        f"📦 入库完成: {transferred}\n"
        f"❌ 订阅失败: {failed}\n\n"
        f"📚 累计请求: {stats['total']} "
        f"(已同步 {stats['synced']} / 待处理 {stats['pending']} / 失败 {stats['failed']})"
    )

    return DailyReport(
        report_date=now.strftime("%Y-%m-%d"),
        total_subscribed=subscribed,
        total_downloaded=downloaded,
        total_transferred=transferred,
        total_failed=failed,
        content=content,
    )


def seconds_until(report_time: str, now: datetime | None = None) -> float:
    """
    Seconds from `now` to the next occurrence of local "HH:MM".

    Examples:
        seconds_until("09:00", datetime(2024, 5, 1, 8, 0))   # 3600.0
        seconds_until("09:00", datetime(2024, 5, 1, 10, 0))  # 82800.0
    """
    now = now or datetime.now()
    hour, minute = (int(part) for part in report_time.split(":"))
    target = now.replace(hour=hour, minute=minute, second=0, microsecond=0)
    if target <= now:
        target += timedelta(days=1)
    return (target - now).total_seconds()


class DailyReporter:
    """
    Background thread that emits the daily report.

    Args:
        database: Shared ledger.
        notifier: Notification channel.
        report_time: Local "HH:MM".
        cancel_event: Shutdown signal.
    """

    def __init__(
        self,
        database: Database,
        notifier: TelegramNotifier,
        report_time: str,
        cancel_event: threading.Event
    ) -> None:
        self.database = database
        self.notifier = notifier
        self.report_time = report_time
        self.cancel_event = cancel_event
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        self._thread = threading.Thread(target=self._run, name="daily-report", daemon=True)
        self._thread.start()
        logger.info(f"Daily report scheduled at {self.report_time}")

    def stop(self, timeout: float = HTTP_TIMEOUT + 5) -> None:
        self.cancel_event.set()
        if self._thread is not None:
            # Outlasts a report send in progress
            self._thread.join(timeout)
            self._thread = None

    def _run(self) -> None:
        while not self.cancel_event.wait(seconds_until(self.report_time)):
            try:
                self.send_report()
            except DatabaseError as e:
                logger.error(f"Failed to build daily report: {e}")

    def send_report(self, now: datetime | None = None) -> DailyReport:
        """Build, store and send the report for `now`."""
        report = build_daily_report(self.database, now)
        self.database.save_report(report)
        self.notifier.notify_daily_report(report.content)
        logger.info(
            f"Daily report {report.report_date}: subscribed={report.total_subscribed} "
            f"downloaded={report.total_downloaded} transferred={report.total_transferred} "
            f"failed={report.total_failed}"
        )
        return report
