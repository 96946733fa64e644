"""
Exception classes for media-syncer.

This module defines all custom exceptions used throughout the application.
Each exception carries a human-readable message plus an optional details
dictionary, so callers can log context without parsing strings.

Exception Hierarchy:
    SyncerError (base)
        ConfigError - Configuration file / environment issues
        DatabaseError - SQLite ledger issues
        SourceError - Request source (Jellyseerr) issues
        BackendError - Acquisition backend (MoviePilot) issues
        NotificationError - Notification channel (Telegram) issues
        OperationCancelled - Shutdown observed at a suspension point
"""


class SyncerError(Exception):
    """
    Base exception for all media-syncer errors.

    All custom exceptions in this project inherit from this class,
    allowing callers to catch all media-syncer errors with a single
    except clause if desired.

    Attributes:
        message: Human-readable error description.
        details: Optional dictionary with additional context (e.g., request id, URL).

    Example:
        try:
            syncer.sync_once()
        except SyncerError as e:
            logger.error(f"Sync failed: {e.message}")
            if e.details:
                logger.debug(f"Details: {e.details}")
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        """
        Initialize the base exception.

        Args:
            message: Human-readable error description that will be shown to the user.
            details: Optional dictionary containing additional context about the error.
                     Common keys include:
                     - 'source_request_id': Ledger key of the request involved
                     - 'url': URL that caused the error
                     - 'original_error': The underlying exception if wrapping another error
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        """Return the error message for display."""
        return self.message


class ConfigError(SyncerError):
    """
    Raised when there's an issue with the configuration.

    This is a CRITICAL error that should stop program execution.

    Common causes:
        - Explicit config file path not found
        - config.yaml has invalid YAML syntax
        - Required fields missing (JELLY_URL, MP_USERNAME, ...)
        - Invalid field values (e.g., unknown auth scheme, negative interval)

    Example:
        raise ConfigError(
            "'moviepilot.auth_scheme' must be one of: bearer, x-api-token, query-token",
            details={'field': 'moviepilot.auth_scheme', 'value': 'basic'}
        )
    """
    pass


class DatabaseError(SyncerError):
    """
    Raised when there's an issue with the SQLite ledger.

    CRITICAL when raised while opening the ledger. During a sync pass or a
    polling cycle it is NON-CRITICAL: the affected request or tracking
    record is skipped and picked up again on the next pass, because its
    state was never advanced.

    Common causes:
        - Parent directory of the database file does not exist
        - Schema version mismatch
        - Disk full / permission denied
        - Updating a row that does not exist

    Example:
        raise DatabaseError(
            "Request not found: 42",
            details={'source_request_id': '42'}
        )
    """
    pass


class SourceError(SyncerError):
    """
    Raised when the request source (Jellyseerr/Overseerr) fails.

    Fetching the approved request list is the first step of a sync pass,
    so a SourceError from the listing aborts that pass (the daemon keeps
    running and retries on the next tick). Failures while fetching media
    details for a single request are NON-CRITICAL and fall back to a
    placeholder title.

    Common causes:
        - Wrong API key (HTTP 401/403)
        - Request source unreachable
        - Pagination runaway (more than 10,000 requests skipped)

    Example:
        raise SourceError(
            "Too many requests: pagination cap exceeded",
            details={'skip': 10050}
        )
    """
    pass


class BackendError(SyncerError):
    """
    Raised when there's an issue with the acquisition backend (MoviePilot).

    Can be CRITICAL (the initial login fails) or NON-CRITICAL (a single
    subscription is rejected, a history query fails).

    Common causes:
        - Invalid username or password (CRITICAL at startup)
        - Rate limiting (HTTP 429, retried with backoff)
        - Server errors (HTTP 5xx, retried with backoff)
        - Business rejection (`success: false`, never retried)
        - Network connectivity issues (retried with backoff)

    Attributes:
        status_code: HTTP status code, or None for network/parse errors.
        is_retryable: True if the failure may succeed on a later attempt.
        is_auth_error: True if the backend rejected the credentials.
        is_rate_limit: True if the backend answered HTTP 429.

    Example:
        raise BackendError(
            "Unexpected status 503 from /api/v1/subscribe/",
            details={'status_code': 503},
            status_code=503,
            is_retryable=True
        )
    """

    def __init__(
        self,
        message: str,
        details: dict | None = None,
        status_code: int | None = None,
        is_retryable: bool = False,
        is_auth_error: bool = False,
        is_rate_limit: bool = False
    ) -> None:
        """
        Initialize backend error with classification flags.

        Args:
            message: Human-readable error description.
            details: Optional dictionary with additional context.
            status_code: HTTP status code when the backend answered.
            is_retryable: Set to True for network errors, 429 and 5xx.
                          Only retryable errors consume retry budget.
            is_auth_error: Set to True for 401/403 answers.
            is_rate_limit: Set to True for 429 answers.
        """
        super().__init__(message, details)
        self.status_code = status_code
        self.is_retryable = is_retryable
        self.is_auth_error = is_auth_error
        self.is_rate_limit = is_rate_limit


class NotificationError(SyncerError):
    """
    Raised when a notification cannot be delivered.

    This is a NON-CRITICAL error. Notifications are fire-and-forget:
    the notifier logs the failure and never retries or propagates it
    to the sync pipeline or the tracker.

    Example:
        raise NotificationError(
            "Telegram API returned 400: chat not found",
            details={'chat_id': '-1001234'}
        )
    """
    pass


class OperationCancelled(SyncerError):
    """
    Raised when a blocking operation observes the shutdown signal.

    Rate-limiter waits and retry backoff sleeps check the shared
    cancellation event; when it is set they stop waiting and raise this
    exception so the current unit of work unwinds promptly.
    """
    pass
