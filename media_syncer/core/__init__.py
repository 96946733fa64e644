"""
Core module for media-syncer.

This module provides the foundational components used throughout the application:
    - exceptions: Custom exception classes for error handling
    - config: Configuration loading and validation
    - models: Ledger record dataclasses and status enumerations
    - database: Thread-safe SQLite ledger
    - logger: Logging system with multiple outputs

Usage:
    from media_syncer.core import (
        Config, load_config,
        Database,
        setup_logging, get_logger,
        SyncerError, ConfigError, DatabaseError
    )
"""

from media_syncer.core.config import (
    Config,
    JellyseerrConfig,
    MoviePilotConfig,
    TelegramConfig,
    load_config,
    mask_string,
)
from media_syncer.core.database import Database
from media_syncer.core.exceptions import (
    BackendError,
    ConfigError,
    DatabaseError,
    NotificationError,
    OperationCancelled,
    SourceError,
    SyncerError,
)
from media_syncer.core.logger import (
    get_logger,
    log_sync_failure,
    log_transition,
    setup_logging,
    shutdown_logging,
)
from media_syncer.core.models import (
    DailyReport,
    DownloadEvent,
    EventType,
    MediaType,
    Request,
    SubscriptionLink,
    SyncStatus,
    TrackingRecord,
    TrackingStatus,
)

__all__ = [
    # Config
    "Config",
    "JellyseerrConfig",
    "MoviePilotConfig",
    "TelegramConfig",
    "load_config",
    "mask_string",
    # Database
    "Database",
    # Models
    "DailyReport",
    "DownloadEvent",
    "EventType",
    "MediaType",
    "Request",
    "SubscriptionLink",
    "SyncStatus",
    "TrackingRecord",
    "TrackingStatus",
    # Exceptions
    "SyncerError",
    "ConfigError",
    "DatabaseError",
    "SourceError",
    "BackendError",
    "NotificationError",
    "OperationCancelled",
    # Logger
    "setup_logging",
    "get_logger",
    "log_sync_failure",
    "log_transition",
    "shutdown_logging",
]
