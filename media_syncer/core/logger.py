"""
Logging configuration for media-syncer.

This module sets up the logging system with multiple outputs:
    - Console: Real-time progress with tqdm-compatible formatting
    - log_full_*.log: Complete log of all events (DEBUG and above)
    - log_errors_*.log: Only ERROR and CRITICAL level messages
    - sync_failures_*.log: Requests whose subscription failed, with reason
    - tracking_transitions_*.log: Every lifecycle transition the tracker made

The logging system follows the principle: everything to screen is also saved
to file, then filtered into specialized files.

Log File Locations:
    All log files are created in <log directory>/logs/ with a timestamp
    suffix per run (no rotation).

Usage:
    from media_syncer.core.logger import setup_logging, get_logger

    setup_logging(log_dir, "info")  # Call once at startup
    logger = get_logger(__name__)  # Get logger for each module

    logger.info("Starting sync pass")
"""

import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import TextIO

from tqdm import tqdm


# Log file name prefixes (created in <log_dir>/logs)
LOG_FULL_PREFIX = "log_full"
LOG_ERRORS_PREFIX = "log_errors"
SYNC_FAILURES_PREFIX = "sync_failures"
TRACKING_TRANSITIONS_PREFIX = "tracking_transitions"

# Log format for file output (detailed with timestamp)
FILE_LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(threadName)s | %(name)s | %(message)s"
FILE_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Console level names accepted by setup_logging()
_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


# ANSI color codes
class Colors:
    """ANSI color codes for terminal output."""
    RESET = "\033[0m"
    RED = "\033[31m"
    GREEN = "\033[32m"
    YELLOW = "\033[33m"
    BLUE = "\033[34m"
    MAGENTA = "\033[35m"
    CYAN = "\033[36m"
    WHITE = "\033[37m"
    BOLD = "\033[1m"


class ColoredConsoleFormatter(logging.Formatter):
    """
    Custom formatter that adds colors to console output.

    Colors:
        - DEBUG: Blue
        - INFO: Green
        - WARNING: Yellow
        - ERROR: Red
        - CRITICAL: Bold Red
    """

    LEVEL_COLORS = {
        logging.DEBUG: Colors.BLUE,
        logging.INFO: Colors.GREEN,
        logging.WARNING: Colors.YELLOW,
        logging.ERROR: Colors.RED,
        logging.CRITICAL: Colors.BOLD + Colors.RED,
    }

    def format(self, record: logging.LogRecord) -> str:
        color = self.LEVEL_COLORS.get(record.levelno, Colors.WHITE)
        colored_levelname = f"{color}{record.levelname}{Colors.RESET}"
        message = f"{colored_levelname}: {self._colorize(record)}"
        if record.exc_info:
            message = f"{message}\n{self.formatException(record.exc_info)}"
        return message

    def _colorize(self, record: logging.LogRecord) -> str:
        """Highlight tracking transitions; other messages pass through."""
        message = record.getMessage()
        new_status = getattr(record, "transition_to", None)
        if new_status is None:
            return message
        title = getattr(record, "transition_title", "")
        status_color = Colors.GREEN if new_status == "transferred" else Colors.CYAN
        if title:
            message = message.replace(title, f"{Colors.BOLD}{title}{Colors.RESET}", 1)
        head, sep, tail = message.rpartition(f"-> {new_status}")
        if not sep:
            return message
        return f"{head}-> {status_color}{new_status}{Colors.RESET}{tail}"


class TqdmLoggingHandler(logging.Handler):
    """
    Logging handler that writes to console without breaking tqdm progress bars.

    tqdm progress bars write to stderr and use carriage returns to update
    in-place. This handler uses tqdm.write(), so messages appear above any
    active progress bar instead of corrupting it.

    Thread Safety:
        tqdm.write() handles synchronization, so the sync pipeline and the
        tracker threads can log concurrently.
    """

    def __init__(self, stream: TextIO = sys.stderr) -> None:
        super().__init__()
        self.stream = stream

    def emit(self, record: logging.LogRecord) -> None:
        try:
            msg = self.format(record)
            tqdm.write(msg, file=self.stream)
        except Exception:
            self.handleError(record)


class _ReportHandler(logging.Handler):
    """
    Base for handlers that copy selected records into a plain report file.

    Subclasses set `marker` (the extra attribute a record must carry to be
    written) and implement format_entry().

    Attributes:
        report_path: Path of the report file (created/overwritten by open()).
        report_file: Open file handle, None until open() is called.
    """

    marker = ""

    def __init__(self, report_path: Path) -> None:
        super().__init__()
        self.report_path = report_path
        self.report_file: TextIO | None = None

    def open(self) -> None:
        """
        Open the report file for writing.

        Called by setup_logging() after handler is created.
        File is opened in write mode (overwrites existing content).
        """
        self.report_file = open(self.report_path, "w", encoding="utf-8")

    def format_entry(self, record: logging.LogRecord) -> str:
        raise NotImplementedError

    def emit(self, record: logging.LogRecord) -> None:
        if not hasattr(record, self.marker):
            return

        if self.report_file is None:
            return

        try:
            self.acquire()
            try:
                self.report_file.write(self.format_entry(record))
                self.report_file.flush()
            finally:
                self.release()
        except Exception:
            self.handleError(record)

    def close(self) -> None:
        """
        Close the report file handle.

        Called automatically when logging is shut down.
        Safe to call multiple times.
        """
        if self.report_file is not None:
            try:
                self.report_file.close()
            except OSError:
                pass
            self.report_file = None
        super().close()


class SyncFailureHandler(_ReportHandler):
    """
    Captures failed subscriptions for the sync_failures report.

    Entries look like:

        2024-05-01 10:00:00 [#42] Dune (movie, TMDB 438631)
        Reason: max retries exceeded: HTTP 503

    The handler looks for these extra fields in log records:
        - 'sync_failed_request_id': Ledger key of the request
        - 'sync_failed_title': Display title
        - 'sync_failed_media_type': "movie" or "tv"
        - 'sync_failed_tmdb_id': Catalog id
        - 'sync_failed_reason': Sanitized error message

    Usage:
        log_sync_failure(logger, "42", "Dune", "movie", 438631, "HTTP 503")
    """

    marker = "sync_failed_request_id"

    def format_entry(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created).strftime(FILE_DATE_FORMAT)
        request_id = getattr(record, "sync_failed_request_id", "?")
        title = getattr(record, "sync_failed_title", "Unknown")
        media_type = getattr(record, "sync_failed_media_type", "?")
        tmdb_id = getattr(record, "sync_failed_tmdb_id", "?")
        reason = getattr(record, "sync_failed_reason", "")
        return (
            f"{timestamp} [#{request_id}] {title} ({media_type}, TMDB {tmdb_id})\n"
            f"Reason: {reason}\n\n"
        )


class TrackingTransitionHandler(_ReportHandler):
    """
    Captures lifecycle transitions for the tracking_transitions report.

    One line per transition:

        2024-05-01 10:05:00 [#42] Dune: subscribed -> downloading (history)

    Extra fields:
        - 'transition_request_id'
        - 'transition_title'
        - 'transition_from'
        - 'transition_to'
        - 'transition_source': "history", "subscribe" or "sse"
    """

    marker = "transition_request_id"

    def format_entry(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created).strftime(FILE_DATE_FORMAT)
        request_id = getattr(record, "transition_request_id", "?")
        title = getattr(record, "transition_title", "Unknown")
        old = getattr(record, "transition_from", "?")
        new = getattr(record, "transition_to", "?")
        source = getattr(record, "transition_source", "")
        return f"{timestamp} [#{request_id}] {title}: {old} -> {new} ({source})\n"


class ErrorOnlyFilter(logging.Filter):
    """
    Filter that only allows ERROR and CRITICAL level records.

    Used by the error log file handler to exclude DEBUG, INFO, and WARNING.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno >= logging.ERROR


def setup_logging(log_dir: Path, level: str = "info") -> Path:
    """
    Configure the logging system for the application.

    This function should be called ONCE at application startup, after
    the configuration is loaded but before any other operations.

    Args:
        log_dir: Directory where log files will be created.
                 Logs are stored in a 'logs' subdirectory.
        level: Console level name (debug, info, warn, warning, error).
               Files always receive DEBUG and above.

    Returns:
        Path of the logs directory that was created.

    Behavior:
        1. Create log_dir/logs if it doesn't exist
        2. Generate timestamp for this run's log files
        3. Configure root logger level to DEBUG and drop existing handlers
        4. Console handler (TqdmLoggingHandler) at the requested level
        5. log_full_{timestamp}.log at DEBUG
        6. log_errors_{timestamp}.log filtered by ErrorOnlyFilter
        7. sync_failures_{timestamp}.log (SyncFailureHandler)
        8. tracking_transitions_{timestamp}.log (TrackingTransitionHandler)

    Thread Safety:
        This function is NOT thread-safe. Call it once from the main
        thread before starting the tracker or reporter threads.
    """
    logs_dir = log_dir / "logs"
    logs_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y-%m-%d_%H-%M-%S")

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    root_logger.handlers.clear()

    file_formatter = logging.Formatter(FILE_LOG_FORMAT, FILE_DATE_FORMAT)

    # Console handler (tqdm-compatible) with colors
    console_handler = TqdmLoggingHandler()
    console_handler.setLevel(_LEVELS.get(level.lower(), logging.INFO))
    console_handler.setFormatter(ColoredConsoleFormatter())
    root_logger.addHandler(console_handler)

    full_handler = logging.FileHandler(
        logs_dir / f"{LOG_FULL_PREFIX}_{timestamp}.log", mode="w", encoding="utf-8"
    )
    full_handler.setLevel(logging.DEBUG)
    full_handler.setFormatter(file_formatter)
    root_logger.addHandler(full_handler)

    error_handler = logging.FileHandler(
        logs_dir / f"{LOG_ERRORS_PREFIX}_{timestamp}.log", mode="w", encoding="utf-8"
    )
    error_handler.setLevel(logging.DEBUG)  # Filter handles the level restriction
    error_handler.setFormatter(file_formatter)
    error_handler.addFilter(ErrorOnlyFilter())
    root_logger.addHandler(error_handler)

    failures_handler = SyncFailureHandler(logs_dir / f"{SYNC_FAILURES_PREFIX}_{timestamp}.log")
    failures_handler.open()
    root_logger.addHandler(failures_handler)

    transitions_handler = TrackingTransitionHandler(
        logs_dir / f"{TRACKING_TRANSITIONS_PREFIX}_{timestamp}.log"
    )
    transitions_handler.open()
    root_logger.addHandler(transitions_handler)

    # Keep third-party HTTP chatter out of the console
    logging.getLogger("urllib3").setLevel(logging.WARNING)

    return logs_dir


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance for a module.

    Args:
        name: The logger name, typically __name__ of the calling module.
              This creates a hierarchy like 'media_syncer.sync.pipeline'.

    Note:
        Loggers obtained before setup_logging() is called will have no
        handlers and will not produce output.
    """
    return logging.getLogger(name)


def format_transition_message(title: str, old_status: str, new_status: str) -> str:
    """Format a plain 'title: old -> new' line; the console formatter adds color."""
    return f"{title}: {old_status} -> {new_status}"


def format_stats_message(total: int, synced: int, failed: int, skipped: int) -> str:
    """Format the end-of-pass summary line."""
    return (
        f"Sync pass: {total} requests "
        f"(synced: {synced}, failed: {failed}, "
        f"skipped: {skipped})"
    )


def log_sync_failure(
    logger: logging.Logger,
    source_request_id: str,
    title: str,
    media_type: str,
    tmdb_id: int,
    reason: str
) -> None:
    """
    Log a request whose subscription failed.

    Logs an ERROR level message and attaches the extra fields that
    SyncFailureHandler uses to write sync_failures_*.log.

    Example:
        log_sync_failure(logger, "42", "Dune", "movie", 438631, "HTTP 503")
    """
    logger.error(
        f"Subscription failed: {title} (request #{source_request_id}) - {reason}",
        extra={
            "sync_failed_request_id": source_request_id,
            "sync_failed_title": title,
            "sync_failed_media_type": media_type,
            "sync_failed_tmdb_id": tmdb_id,
            "sync_failed_reason": reason,
        }
    )


def log_transition(
    logger: logging.Logger,
    source_request_id: str,
    title: str,
    old_status: str,
    new_status: str,
    source: str
) -> None:
    """
    Log a tracking record transition.

    Logs at INFO level with the extra fields that TrackingTransitionHandler
    uses to write tracking_transitions_*.log.
    """
    logger.info(
        format_transition_message(title, old_status, new_status),
        extra={
            "transition_request_id": source_request_id,
            "transition_title": title,
            "transition_from": old_status,
            "transition_to": new_status,
            "transition_source": source,
        }
    )


def shutdown_logging() -> None:
    """
    Flush and close all handlers attached to the root logger.

    Called from the CLI's finally block so report files are complete
    even after an error or an interrupt.
    """
    root_logger = logging.getLogger()
    for handler in list(root_logger.handlers):
        try:
            handler.flush()
            handler.close()
        except (OSError, ValueError):
            pass
        root_logger.removeHandler(handler)
