"""
Sync pipeline and daily reporting for media-syncer.

This module provides:
    - Syncer: One-shot and daemon sync passes
    - SyncStats: Counters of a pass
    - build_subscribe_plan: Season/episode fan-out of a request
    - DailyReporter / build_daily_report: Daily activity summary
"""

from media_syncer.sync.pipeline import PENDING_BATCH_SIZE, Syncer, SyncStats, build_subscribe_plan
from media_syncer.sync.report import DailyReporter, build_daily_report, seconds_until

__all__ = [
    "Syncer",
    "SyncStats",
    "PENDING_BATCH_SIZE",
    "build_subscribe_plan",
    "DailyReporter",
    "build_daily_report",
    "seconds_until",
]
