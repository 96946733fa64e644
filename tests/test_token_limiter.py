"""Tests for the token manager and the rate limiter"""

import threading
from unittest.mock import Mock, patch

import pytest
import requests

from conftest import make_response
from media_syncer.core.exceptions import BackendError, OperationCancelled
from media_syncer.moviepilot.limiter import RateLimiter
from media_syncer.moviepilot.token import LOGIN_PATH, TokenManager


def make_manager(*responses, refresh_hours=24):
    session = Mock()
    session.post.side_effect = list(responses)
    return TokenManager("http://mp.local:3000/", "admin", "secret", refresh_hours, session=session), session


class TestTokenManager:
    """Token cache and refresh"""

    def test_get_token_logs_in_once(self):
        manager, session = make_manager(make_response(200, {"access_token": "abc"}))

        assert manager.get_token() == "abc"
        assert manager.get_token() == "abc"

        session.post.assert_called_once()
        args, kwargs = session.post.call_args
        assert args[0] == f"http://mp.local:3000{LOGIN_PATH}"
        assert kwargs["data"]["username"] == "admin"
        assert kwargs["data"]["password"] == "secret"

    def test_aged_token_is_refreshed(self):
        manager, session = make_manager(
            make_response(200, {"access_token": "first"}),
            make_response(200, {"access_token": "second"}),
            refresh_hours=0,
        )

        assert manager.get_token() == "first"
        assert manager.get_token() == "second"
        assert session.post.call_count == 2

    def test_refresh_skipped_when_already_replaced(self):
        """A caller holding a stale token gets the newer one without a login"""
        manager, session = make_manager()
        manager.set_token("fresh")

        assert manager.refresh_token(stale_token="old") == "fresh"
        session.post.assert_not_called()

    def test_refresh_replaces_rejected_token(self):
        manager, session = make_manager(make_response(200, {"access_token": "new"}))
        manager.set_token("old")

        assert manager.refresh_token(stale_token="old") == "new"
        assert manager.get_token() == "new"

    def test_invalidate(self):
        manager, session = make_manager(make_response(200, {"access_token": "again"}))
        manager.set_token("old")
        manager.invalidate()

        assert manager.get_token() == "again"

    def test_rejected_credentials(self):
        manager, _ = make_manager(make_response(401))

        with pytest.raises(BackendError) as exc_info:
            manager.get_token()

        assert exc_info.value.is_auth_error is True
        assert "secret" not in exc_info.value.message

    def test_server_error_is_retryable(self):
        manager, _ = make_manager(make_response(502))

        with pytest.raises(BackendError) as exc_info:
            manager.get_token()

        assert exc_info.value.is_retryable is True

    def test_network_error_is_retryable(self):
        manager, _ = make_manager(requests.exceptions.ConnectionError("down"))

        with pytest.raises(BackendError) as exc_info:
            manager.get_token()

        assert exc_info.value.is_retryable is True

    def test_missing_access_token(self):
        manager, _ = make_manager(make_response(200, {"token_type": "bearer"}))

        with pytest.raises(BackendError) as exc_info:
            manager.get_token()

        assert exc_info.value.is_auth_error is True


class TestRateLimiter:
    """Token bucket"""

    def test_burst_then_wait(self):
        """The bucket holds one second's worth of permits"""
        limiter = RateLimiter(2)

        assert limiter.try_acquire() == 0.0
        assert limiter.try_acquire() == 0.0
        assert limiter.try_acquire() > 0.0

    def test_explicit_burst(self):
        limiter = RateLimiter(1, burst=3)
        assert [limiter.try_acquire() for _ in range(3)] == [0.0, 0.0, 0.0]

    def test_invalid_rate(self):
        with pytest.raises(ValueError):
            RateLimiter(0)

    def test_acquire_returns_with_permit(self):
        limiter = RateLimiter(5)
        limiter.acquire(threading.Event())

    def test_acquire_cancelled_before_wait(self):
        event = threading.Event()
        event.set()

        with pytest.raises(OperationCancelled):
            RateLimiter(5).acquire(event)

    def test_acquire_cancelled_while_waiting(self):
        """A shutdown signal interrupts the wait for a permit"""
        limiter = RateLimiter(1)
        event = threading.Event()
        limiter.acquire(event)

        with patch.object(event, "wait", return_value=True) as mock_wait:
            with pytest.raises(OperationCancelled):
                limiter.acquire(event)

        assert mock_wait.call_args.args[0] > 0
