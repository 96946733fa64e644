"""Tests for the MoviePilot API client"""

from unittest.mock import Mock, call, patch

import pytest
import requests

from conftest import make_moviepilot_config, make_response
from media_syncer.core.exceptions import BackendError, OperationCancelled
from media_syncer.core.models import MediaType
from media_syncer.moviepilot.client import MoviePilotClient, calculate_backoff
from media_syncer.moviepilot.limiter import RateLimiter
from media_syncer.moviepilot.models import SubscribeRequest, SubscribeResponse


DUNE = SubscribeRequest(name="Dune", media_type=MediaType.MOVIE, tmdb_id=438631)


@pytest.fixture
def session():
    return Mock()


@pytest.fixture
def token_manager():
    manager = Mock()
    manager.get_token.return_value = "tok"
    manager.refresh_token.return_value = "tok2"
    return manager


def make_client(session, token_manager, cancel_event, **overrides):
    return MoviePilotClient(
        make_moviepilot_config(**overrides),
        token_manager,
        RateLimiter(100),
        cancel_event,
        session=session,
    )


class TestBackoff:
    def test_calculate_backoff(self):
        """Delays double from 1 second"""
        assert [calculate_backoff(n) for n in (1, 2, 3, 4)] == [1.0, 2.0, 4.0, 8.0]


class TestSubscribe:
    """subscribe() outcomes and retry policy"""

    def test_success_returns_subscription_id(self, session, token_manager, cancel_event):
        session.request.return_value = make_response(200, {"success": True, "data": {"id": 12}})
        client = make_client(session, token_manager, cancel_event)

        result = client.subscribe(DUNE)

        assert result.subscription_id == "12"
        assert result.already_exists is False
        kwargs = session.request.call_args.kwargs
        assert kwargs["json"] == {"name": "Dune", "type": "电影", "tmdbid": 438631}
        assert kwargs["headers"] == {"Authorization": "Bearer tok"}

    def test_already_exists_is_success(self, session, token_manager, cancel_event):
        """A success answer with an 'exists' message is flagged, not raised"""
        session.request.return_value = make_response(200, {"success": True, "message": "该内容已存在于媒体库 already exists"})
        client = make_client(session, token_manager, cancel_event)

        result = client.subscribe(DUNE)

        assert result.already_exists is True
        assert result.subscription_id == ""

    def test_retryable_errors_exhaust_budget(self, session, token_manager, cancel_event):
        """Four 503 answers give four attempts with 1s, 2s, 4s backoff"""
        session.request.return_value = make_response(503)
        client = make_client(session, token_manager, cancel_event, max_retries=3)
        on_retry = Mock()

        with patch.object(cancel_event, "wait", return_value=False) as mock_wait:
            with pytest.raises(BackendError) as exc_info:
                client.subscribe(DUNE, on_retry=on_retry)

        assert session.request.call_count == 4
        assert mock_wait.call_args_list == [call(1.0), call(2.0), call(4.0)]
        assert on_retry.call_args_list == [call(2, 4), call(3, 4), call(4, 4)]
        assert "max retries exceeded" in exc_info.value.message

    def test_rate_limit_then_success(self, session, token_manager, cancel_event):
        session.request.side_effect = [
            make_response(429),
            make_response(200, {"success": True, "data": {"id": 3}}),
        ]
        client = make_client(session, token_manager, cancel_event)

        with patch.object(cancel_event, "wait", return_value=False):
            result = client.subscribe(DUNE)

        assert result.subscription_id == "3"
        assert session.request.call_count == 2

    def test_network_error_is_retried(self, session, token_manager, cancel_event):
        session.request.side_effect = [
            requests.exceptions.ConnectionError("refused"),
            make_response(200, {"success": True, "data": {"id": 4}}),
        ]
        client = make_client(session, token_manager, cancel_event)

        with patch.object(cancel_event, "wait", return_value=False):
            result = client.subscribe(DUNE)

        assert result.subscription_id == "4"

    def test_client_error_is_not_retried(self, session, token_manager, cancel_event):
        """A 400 fails at once without consuming retry budget"""
        session.request.return_value = make_response(400, text="bad request")
        client = make_client(session, token_manager, cancel_event)

        with patch.object(cancel_event, "wait", return_value=False) as mock_wait:
            with pytest.raises(BackendError) as exc_info:
                client.subscribe(DUNE)

        assert session.request.call_count == 1
        assert mock_wait.call_count == 0
        assert exc_info.value.is_retryable is False
        assert exc_info.value.status_code == 400

    def test_business_rejection_is_not_retried(self, session, token_manager, cancel_event):
        session.request.return_value = make_response(200, {"success": False, "message": "订阅失败"})
        client = make_client(session, token_manager, cancel_event)

        with pytest.raises(BackendError) as exc_info:
            client.subscribe(DUNE)

        assert session.request.call_count == 1
        assert "Subscription rejected" in exc_info.value.message

    def test_unauthorized_refreshes_token_once(self, session, token_manager, cancel_event):
        """A 401 refreshes the token it was sent with, then retries"""
        session.request.side_effect = [
            make_response(401),
            make_response(200, {"success": True, "data": {"id": 7}}),
        ]
        client = make_client(session, token_manager, cancel_event)

        with patch.object(cancel_event, "wait", return_value=False):
            result = client.subscribe(DUNE)

        token_manager.refresh_token.assert_called_once_with(stale_token="tok")
        assert result.subscription_id == "7"
        assert session.request.call_args.kwargs["headers"] == {"Authorization": "Bearer tok2"}

    def test_refresh_does_not_use_retry_budget(self, session, token_manager, cancel_event):
        """With no retries allowed, the refreshed token is still used at once"""
        session.request.side_effect = [
            make_response(401),
            make_response(200, {"success": True, "data": {"id": 7}}),
        ]
        client = make_client(session, token_manager, cancel_event, max_retries=0)
        on_retry = Mock()

        with patch.object(cancel_event, "wait", return_value=False) as mock_wait:
            result = client.subscribe(DUNE, on_retry=on_retry)

        assert result.subscription_id == "7"
        assert mock_wait.call_count == 0
        on_retry.assert_not_called()

    def test_refresh_then_full_retry_budget(self, session, token_manager, cancel_event):
        """A 401 followed by server errors still gets every retry attempt"""
        session.request.side_effect = [make_response(401)] + [make_response(503)] * 4
        client = make_client(session, token_manager, cancel_event, max_retries=3)
        on_retry = Mock()

        with patch.object(cancel_event, "wait", return_value=False) as mock_wait:
            with pytest.raises(BackendError) as exc_info:
                client.subscribe(DUNE, on_retry=on_retry)

        assert session.request.call_count == 5
        assert mock_wait.call_args_list == [call(1.0), call(2.0), call(4.0)]
        assert on_retry.call_args_list == [call(2, 4), call(3, 4), call(4, 4)]
        assert "max retries exceeded" in exc_info.value.message
        token_manager.refresh_token.assert_called_once()

    def test_second_unauthorized_fails(self, session, token_manager, cancel_event):
        session.request.return_value = make_response(401)
        client = make_client(session, token_manager, cancel_event)

        with patch.object(cancel_event, "wait", return_value=False):
            with pytest.raises(BackendError) as exc_info:
                client.subscribe(DUNE)

        assert exc_info.value.is_auth_error is True
        assert session.request.call_count == 2
        assert token_manager.refresh_token.call_count == 1

    def test_dry_run_makes_no_call(self, session, token_manager, cancel_event):
        client = make_client(session, token_manager, cancel_event, dry_run=True)

        result = client.subscribe(DUNE)

        assert result.subscription_id == "99999"
        assert result.dry_run is True
        session.request.assert_not_called()

    def test_cancel_during_backoff(self, session, token_manager, cancel_event):
        session.request.return_value = make_response(503)
        client = make_client(session, token_manager, cancel_event)

        with patch.object(cancel_event, "wait", return_value=True):
            with pytest.raises(OperationCancelled):
                client.subscribe(DUNE)

        assert session.request.call_count == 1

    def test_cancelled_before_permit(self, session, token_manager, cancel_event):
        cancel_event.set()
        client = make_client(session, token_manager, cancel_event)

        with pytest.raises(OperationCancelled):
            client.subscribe(DUNE)

        session.request.assert_not_called()

    def test_season_payload(self, session, token_manager, cancel_event):
        session.request.return_value = make_response(200, {"success": True, "data": {"id": 1}})
        client = make_client(session, token_manager, cancel_event)

        client.subscribe(SubscribeRequest(
            name="Game of Thrones",
            media_type=MediaType.TV,
            tmdb_id=1399,
            season=2,
            episodes=(1, 2),
            username="admin",
        ))

        assert session.request.call_args.kwargs["json"] == {
            "name": "Game of Thrones",
            "type": "电视剧",
            "tmdbid": 1399,
            "season": 2,
            "episodes": [1, 2],
            "username": "admin",
        }


class TestAuthSchemes:
    """Token placement per auth scheme"""

    def test_x_api_token(self, session, token_manager, cancel_event):
        session.request.return_value = make_response(200, [])
        client = make_client(session, token_manager, cancel_event, auth_scheme="x-api-token")

        client.query_download_history()

        kwargs = session.request.call_args.kwargs
        assert kwargs["headers"] == {"X-API-Token": "tok"}
        assert "token" not in kwargs["params"]

    def test_query_token(self, session, token_manager, cancel_event):
        session.request.return_value = make_response(200, [])
        client = make_client(session, token_manager, cancel_event, auth_scheme="query-token")

        client.query_download_history(page=2, count=50)

        kwargs = session.request.call_args.kwargs
        assert kwargs["headers"] == {}
        assert kwargs["params"] == {"page": 2, "count": 50, "token": "tok"}


class TestHistory:
    """History queries"""

    def test_download_history_list(self, session, token_manager, cancel_event):
        session.request.return_value = make_response(200, [
            {"id": 1, "title": "Dune", "type": "电影", "tmdbid": 438631, "download_hash": "abc"},
        ])
        client = make_client(session, token_manager, cancel_event)

        items = client.query_download_history()

        assert items[0].tmdb_id == 438631
        assert items[0].download_hash == "abc"
        assert items[0].matches(438631, MediaType.MOVIE)
        assert not items[0].matches(438631, MediaType.TV)

    def test_transfer_history_wrapped(self, session, token_manager, cancel_event):
        """Lists wrapped in {"data": [...]} are accepted"""
        session.request.return_value = make_response(200, {"data": [
            {"id": 2, "title": "GoT", "type": "电视剧", "tmdbid": "1399", "dest": "/media/tv"},
        ]})
        client = make_client(session, token_manager, cancel_event)

        items = client.query_transfer_history()

        assert items[0].tmdb_id == 1399
        assert items[0].dest == "/media/tv"

    def test_history_failure_is_not_retried(self, session, token_manager, cancel_event):
        session.request.return_value = make_response(500)
        client = make_client(session, token_manager, cancel_event)

        with pytest.raises(BackendError):
            client.query_transfer_history()

        assert session.request.call_count == 1

    def test_unauthorized_history_refreshes_token(self, session, token_manager, cancel_event):
        """A rejected token is replaced for the next query, the failing one still raises"""
        session.request.return_value = make_response(401)
        client = make_client(session, token_manager, cancel_event)

        with pytest.raises(BackendError) as exc_info:
            client.query_download_history()

        assert exc_info.value.is_auth_error is True
        assert session.request.call_count == 1
        token_manager.refresh_token.assert_called_once_with(stale_token="tok")

    def test_server_error_does_not_refresh(self, session, token_manager, cancel_event):
        session.request.return_value = make_response(502)
        client = make_client(session, token_manager, cancel_event)

        with pytest.raises(BackendError):
            client.query_transfer_history()

        token_manager.refresh_token.assert_not_called()

    def test_invalid_json(self, session, token_manager, cancel_event):
        session.request.return_value = make_response(200, ValueError("no json"))
        client = make_client(session, token_manager, cancel_event)

        with pytest.raises(BackendError):
            client.query_download_history()


class TestSearch:
    def test_search(self, session, token_manager, cancel_event):
        session.request.return_value = make_response(200, {"success": True, "data": [
            {"title": "Dune", "type": "电影", "tmdb_id": 438631, "year": 2021},
        ]})
        client = make_client(session, token_manager, cancel_event)

        results = client.search("Dune", MediaType.MOVIE, year="2021")

        assert results[0].tmdb_id == 438631
        assert results[0].year == "2021"
        assert session.request.call_args.kwargs["json"] == {"title": "Dune", "type": "电影", "year": "2021"}


class TestSubscribeResponse:
    """Response parsing"""

    def test_subscribe_id_fallback(self):
        response = SubscribeResponse.from_api({"success": True, "data": {"subscribe_id": "15"}})
        assert response.subscription_id == "15"

    def test_zero_id_is_empty(self):
        response = SubscribeResponse.from_api({"success": True, "data": {"id": 0}})
        assert response.subscription_id == ""

    def test_failed_answer_is_never_already_exists(self):
        response = SubscribeResponse.from_api({"success": False, "message": "already exists"})
        assert response.is_already_exists is False

    def test_non_dict_body(self):
        assert SubscribeResponse.from_api(["x"]).success is False


class TestClose:
    def test_close_closes_session(self, session, token_manager, cancel_event):
        client = make_client(session, token_manager, cancel_event)

        client.close()

        session.close.assert_called_once()
