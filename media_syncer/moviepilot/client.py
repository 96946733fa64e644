"""
MoviePilot API client for media-syncer.

This module wraps the subset of the MoviePilot REST API the syncer uses:

    - subscribe():              POST /api/v1/subscribe/
    - search():                 POST /api/v1/media/search/
    - query_download_history(): GET  /api/v1/history/download
    - query_transfer_history(): GET  /api/v1/history/transfer

Every call first takes a permit from the shared RateLimiter and a token
from the TokenManager. Only subscribe() retries, and only on retryable
failures (network errors, HTTP 429, HTTP 5xx):

    attempt 0: immediately
    attempt 1: after 1s
    attempt 2: after 2s
    attempt n: after 2^(n-1)s

Non-retryable failures (other 4xx, `success: false`) raise at once.
A 401 on subscribe triggers a single token refresh and an immediate
re-send with the new token; it does not use an attempt of the retry
budget. A 401/403 on a history query refreshes the token and still raises,
so the next polling cycle runs with the new token.

Usage:
    client = MoviePilotClient(config.moviepilot, token_manager, limiter, cancel_event)
    result = client.subscribe(SubscribeRequest(name="Dune", media_type=MediaType.MOVIE, tmdb_id=438631))
    if result.already_exists:
        ...
"""

import threading
from collections.abc import Callable
from typing import Any

import requests

from media_syncer.core.config import MoviePilotConfig
from media_syncer.core.exceptions import BackendError, OperationCancelled
from media_syncer.core.logger import get_logger
from media_syncer.core.models import MediaType
from media_syncer.moviepilot.limiter import RateLimiter
from media_syncer.moviepilot.models import (
    DRY_RUN_SUBSCRIPTION_ID,
    DownloadHistoryItem,
    MediaResult,
    SubscribeRequest,
    SubscribeResponse,
    SubscribeResult,
    TransferHistoryItem,
)
from media_syncer.moviepilot.token import HTTP_TIMEOUT, TokenManager


logger = get_logger(__name__)

SUBSCRIBE_PATH = "/api/v1/subscribe/"
SEARCH_PATH = "/api/v1/media/search/"
DOWNLOAD_HISTORY_PATH = "/api/v1/history/download"
TRANSFER_HISTORY_PATH = "/api/v1/history/transfer"

# Base of the exponential backoff, in seconds
BACKOFF_BASE = 1.0


def calculate_backoff(attempt: int, base_delay: float = BACKOFF_BASE) -> float:
    """
    Delay before retry `attempt` (1-indexed): base * 2^(attempt-1).

    Examples:
        calculate_backoff(1)  # 1.0
        calculate_backoff(3)  # 4.0
    """
    return base_delay * (2 ** (attempt - 1))


class MoviePilotClient:
    """
    Authenticated, rate-limited MoviePilot client.

    Attributes:
        config: MoviePilotConfig (URL, auth scheme, retries, dry-run).
        token_manager: Shared TokenManager.
        limiter: Shared RateLimiter.
        cancel_event: Process-wide shutdown signal observed by every wait.
    """

    def __init__(
        self,
        config: MoviePilotConfig,
        token_manager: TokenManager,
        limiter: RateLimiter,
        cancel_event: threading.Event,
        session: requests.Session | None = None
    ) -> None:
        self.config = config
        self.base_url = config.url.rstrip("/")
        self.token_manager = token_manager
        self.limiter = limiter
        self.cancel_event = cancel_event
        self.session = session or token_manager.session
        self.session.headers.update({
            "User-Agent": "media-syncer",
            "Accept": "application/json",
        })

    # =========================================================================
    # HTTP plumbing
    # =========================================================================

    def _auth(self, token: str) -> tuple[dict[str, str], dict[str, str]]:
        """Return (headers, params) carrying the token for the configured scheme."""
        scheme = self.config.auth_scheme
        if scheme == "x-api-token":
            return {"X-API-Token": token}, {}
        if scheme == "query-token":
            return {}, {"token": token}
        return {"Authorization": f"Bearer {token}"}, {}

    def _request(
        self,
        method: str,
        path: str,
        json_body: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
        token: str | None = None
    ) -> Any:
        """
        Perform one authenticated call and return the decoded JSON body.

        Args:
            token: Token to send. Fetched from the TokenManager when None.

        Raises:
            OperationCancelled: Shutdown observed while waiting for a permit.
            BackendError: Classified by status code (see module docstring).
        """
        self.limiter.acquire(self.cancel_event)
        if token is None:
            token = self.token_manager.get_token()
        headers, auth_params = self._auth(token)
        url = f"{self.base_url}{path}"

        try:
            response = self.session.request(
                method,
                url,
                json=json_body,
                params={**(params or {}), **auth_params},
                headers=headers,
                timeout=HTTP_TIMEOUT,
            )
        except requests.exceptions.RequestException as e:
            raise BackendError(
                f"Request to {path} failed: {e}",
                details={"url": url, "original_error": str(e)},
                is_retryable=True
            ) from e

        status = response.status_code
        if status == 429:
            raise BackendError(
                f"Rate limited by MoviePilot (HTTP 429) on {path}",
                details={"url": url, "status_code": status},
                status_code=status,
                is_retryable=True,
                is_rate_limit=True
            )
        if status >= 500:
            raise BackendError(
                f"MoviePilot server error (HTTP {status}) on {path}",
                details={"url": url, "status_code": status},
                status_code=status,
                is_retryable=True
            )
        if status in (401, 403):
            raise BackendError(
                f"MoviePilot rejected credentials (HTTP {status}) on {path}",
                details={"url": url, "status_code": status},
                status_code=status,
                is_auth_error=True
            )
        if status >= 400:
            raise BackendError(
                f"MoviePilot returned HTTP {status} on {path}: {response.text[:200]}",
                details={"url": url, "status_code": status},
                status_code=status
            )

        try:
            return response.json()
        except ValueError as e:
            raise BackendError(
                f"Invalid JSON from {path}",
                details={"url": url, "status_code": status}
            ) from e

    def close(self) -> None:
        """Close pooled connections; shared with the TokenManager."""
        self.session.close()

    def _backoff(self, delay: float) -> None:
        if self.cancel_event.wait(delay):
            raise OperationCancelled("Retry backoff cancelled")

    # =========================================================================
    # Subscriptions
    # =========================================================================

    def subscribe(
        self,
        request: SubscribeRequest,
        on_retry: Callable[[int, int], None] | None = None
    ) -> SubscribeResult:
        """
        Create a subscription, retrying retryable failures with backoff.

        Args:
            request: Subscription to create.
            on_retry: Called as on_retry(attempt_number, max_attempts) before
                      each retry, after the backoff wait.

        Returns:
            SubscribeResult with already_exists=True when MoviePilot answered
            success with one of the "already exists" messages.

        Raises:
            BackendError: On a non-retryable failure, or "max retries
                          exceeded" after max_retries + 1 attempts.
            OperationCancelled: If shutdown interrupts a wait.
        """
        payload = request.to_payload()

        if self.config.dry_run:
            logger.info(f"[dry-run] Would subscribe: {payload}")
            return SubscribeResult(
                subscription_id=DRY_RUN_SUBSCRIPTION_ID,
                already_exists=False,
                message="dry-run mode",
                dry_run=True,
            )

        max_attempts = self.config.max_retries + 1
        last_error: BackendError | None = None
        refreshed = False

        for attempt in range(max_attempts):
            if attempt > 0:
                delay = calculate_backoff(attempt)
                logger.warning(
                    f"Subscribe attempt {attempt}/{max_attempts} failed for "
                    f"'{request.name}': {last_error}. Retrying in {delay:.0f}s..."
                )
                self._backoff(delay)
                if on_retry is not None:
                    on_retry(attempt + 1, max_attempts)

            try:
                token = self.token_manager.get_token()
                try:
                    data = self._request("POST", SUBSCRIBE_PATH, json_body=payload, token=token)
                except BackendError as e:
                    if e.status_code != 401 or refreshed:
                        raise
                    # One reactive refresh per subscribe, outside the retry budget
                    refreshed = True
                    logger.info(f"Token rejected while subscribing '{request.name}', refreshing")
                    token = self.token_manager.refresh_token(stale_token=token)
                    data = self._request("POST", SUBSCRIBE_PATH, json_body=payload, token=token)
            except BackendError as e:
                if not e.is_retryable:
                    raise
                last_error = e
                continue

            response = SubscribeResponse.from_api(data)
            if not response.success:
                raise BackendError(
                    f"Subscription rejected: {response.message or 'no message'}",
                    details={"tmdb_id": request.tmdb_id, "code": response.code}
                )

            logger.debug(
                f"Subscribed '{request.name}' (season={request.season}) -> "
                f"id={response.subscription_id or '-'} message={response.message!r}"
            )
            return SubscribeResult(
                subscription_id=response.subscription_id,
                already_exists=response.is_already_exists,
                message=response.message,
            )

        raise BackendError(
            f"max retries exceeded: {last_error}",
            details={"tmdb_id": request.tmdb_id, "attempts": max_attempts},
            status_code=last_error.status_code if last_error else None
        )

    def search(
        self,
        title: str,
        media_type: MediaType,
        year: str | None = None,
        tmdb_id: int | None = None
    ) -> list[MediaResult]:
        """Search MoviePilot's media catalog. Not retried."""
        body: dict[str, Any] = {"title": title, "type": media_type.backend_label}
        if year:
            body["year"] = year
        if tmdb_id:
            body["tmdbid"] = tmdb_id

        data = self._request("POST", SEARCH_PATH, json_body=body)
        if not isinstance(data, dict) or not data.get("success"):
            message = data.get("message") if isinstance(data, dict) else None
            raise BackendError(
                f"Media search failed: {message or 'unexpected response'}",
                details={"title": title}
            )
        return [MediaResult.from_api(item) for item in data.get("data") or [] if isinstance(item, dict)]

    # =========================================================================
    # History
    # =========================================================================

    def _history(self, path: str, page: int, count: int) -> list[dict[str, Any]]:
        token = self.token_manager.get_token()
        try:
            data = self._request("GET", path, params={"page": page, "count": count}, token=token)
        except BackendError as e:
            if e.is_auth_error:
                # Not retried here; the next poll runs with the new token
                self.token_manager.refresh_token(stale_token=token)
            raise
        # Some MoviePilot versions wrap the list in {"data": [...]}
        if isinstance(data, dict):
            data = data.get("data") or []
        if not isinstance(data, list):
            raise BackendError(f"Unexpected history payload from {path}", details={"path": path})
        return [item for item in data if isinstance(item, dict)]

    def query_download_history(self, page: int = 1, count: int = 100) -> list[DownloadHistoryItem]:
        """Most recent download history entries. Not retried."""
        return [DownloadHistoryItem.from_api(item) for item in self._history(DOWNLOAD_HISTORY_PATH, page, count)]

    def query_transfer_history(self, page: int = 1, count: int = 100) -> list[TransferHistoryItem]:
        """Most recent transfer (library import) history entries. Not retried."""
        return [TransferHistoryItem.from_api(item) for item in self._history(TRANSFER_HISTORY_PATH, page, count)]
