"""
Access token cache for the MoviePilot API.

MoviePilot issues a bearer token from a username/password exchange at
/api/v1/login/access-token. The TokenManager caches that token and
refreshes it on demand:

    - get_token() returns the cached token, performing a blocking
      refresh when none is cached or the token is older than
      `refresh_hours`.
    - refresh_token() is called reactively by the client after a 401.

Thread Safety:
    The cache is a single (token, obtained_at) tuple replaced in one
    assignment, so readers see either the old or the new value. Refreshes
    are serialized by a lock; a caller that passes the token it saw
    rejected skips the exchange if another thread already replaced it.
"""

import threading
import time

import requests

from media_syncer.core.exceptions import BackendError
from media_syncer.core.logger import get_logger


logger = get_logger(__name__)

LOGIN_PATH = "/api/v1/login/access-token"
HTTP_TIMEOUT = 30


class TokenManager:
    """
    Acquires and caches the MoviePilot access token.

    Args:
        base_url: MoviePilot base URL without trailing slash.
        username: Login user.
        password: Login password.
        refresh_hours: Age after which get_token() refreshes proactively.
        session: Optional requests.Session to share with the API client.
    """

    def __init__(
        self,
        base_url: str,
        username: str,
        password: str,
        refresh_hours: int = 24,
        session: requests.Session | None = None
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.username = username
        self._password = password
        self.refresh_seconds = refresh_hours * 3600
        self.session = session or requests.Session()
        self._cached: tuple[str, float] | None = None
        self._refresh_lock = threading.Lock()

    def get_token(self) -> str:
        """
        Return a valid token, refreshing if none is cached or it has aged out.

        Raises:
            BackendError: If a needed refresh fails.
        """
        cached = self._cached
        if cached is not None:
            token, obtained_at = cached
            if time.monotonic() - obtained_at < self.refresh_seconds:
                return token
            return self.refresh_token(stale_token=token)
        return self.refresh_token()

    def set_token(self, token: str) -> None:
        """Install a token obtained elsewhere (e.g. a pre-issued API token)."""
        self._cached = (token, time.monotonic())

    def invalidate(self) -> None:
        self._cached = None

    def refresh_token(self, stale_token: str | None = None) -> str:
        """
        Exchange username/password for a new token and cache it.

        Args:
            stale_token: The token the caller saw rejected. If the cache no
                         longer holds it, another thread already refreshed
                         and the current token is returned without a new
                         exchange.

        Returns:
            The new (or concurrently refreshed) token.

        Raises:
            BackendError: is_auth_error=True on 401/403, is_retryable=True
                          on network errors and 5xx.
        """
        with self._refresh_lock:
            cached = self._cached
            if cached is not None and stale_token is not None and cached[0] != stale_token:
                return cached[0]

            token = self._login()
            self._cached = (token, time.monotonic())
            logger.debug("MoviePilot access token refreshed")
            return token

    def _login(self) -> str:
        url = f"{self.base_url}{LOGIN_PATH}"
        try:
            response = self.session.post(
                url,
                data={
                    "grant_type": "password",
                    "username": self.username,
                    "password": self._password,
                },
                timeout=HTTP_TIMEOUT,
            )
        except requests.exceptions.RequestException as e:
            raise BackendError(
                f"MoviePilot login failed: {e}",
                details={"url": url},
                is_retryable=True
            ) from e

        if response.status_code in (401, 403):
            raise BackendError(
                f"MoviePilot login rejected (HTTP {response.status_code}): check MP_USERNAME/MP_PASSWORD",
                details={"url": url, "status_code": response.status_code},
                status_code=response.status_code,
                is_auth_error=True
            )
        if response.status_code != 200:
            raise BackendError(
                f"MoviePilot login failed with HTTP {response.status_code}",
                details={"url": url, "status_code": response.status_code},
                status_code=response.status_code,
                is_retryable=response.status_code >= 500
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise BackendError(
                "MoviePilot login returned invalid JSON",
                details={"url": url}
            ) from e

        token = payload.get("access_token") if isinstance(payload, dict) else None
        if not token:
            raise BackendError(
                "MoviePilot login response has no access_token",
                details={"url": url},
                is_auth_error=True
            )
        return token
