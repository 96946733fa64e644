"""Tests for the MoviePilot event stream listener"""

import threading
from unittest.mock import Mock

import pytest

from conftest import make_response
from media_syncer.core.exceptions import BackendError
from media_syncer.tracker.sse import (
    MPNotification,
    SSEClient,
    extract_media_title,
    iter_sse_data,
)


class TestExtractMediaTitle:
    @pytest.mark.parametrize("raw,expected", [
        ("Dune (2021) 开始下载", "Dune"),
        ("三体 第1季 入库完成", "三体 第1季"),
        ("Dune 已添加订阅", "Dune"),
        ("Dune 下载完成", "Dune"),
        ("Plain Title", "Plain Title"),
        ("(2021) Dune", "(2021) Dune"),
    ])
    def test_extract(self, raw, expected):
        assert extract_media_title(raw) == expected


class TestIterSSEData:
    """Event framing"""

    def test_events_are_split_on_blank_lines(self):
        lines = ['data: {"a": 1}', "", 'data: {"b": 2}', ""]
        assert list(iter_sse_data(lines)) == ['{"a": 1}', '{"b": 2}']

    def test_multi_line_data_is_joined(self):
        lines = ['data: {"a":', "data: 1}", ""]
        assert list(iter_sse_data(lines)) == ['{"a":1}']

    def test_comments_and_other_fields_are_ignored(self):
        lines = [": keep-alive", "event: message", "id: 4", "data: x", ""]
        assert list(iter_sse_data(lines)) == ["x"]

    def test_incomplete_event_is_dropped(self):
        assert list(iter_sse_data(["data: x"])) == []


class TestMPNotification:
    def test_wrapped_message(self):
        notification = MPNotification.from_api({"message": {
            "mtype": "订阅", "ctype": "downloadStart", "title": "Dune 开始下载", "username": "admin",
        }})

        assert notification.ctype == "downloadStart"
        assert notification.title == "Dune 开始下载"
        assert notification.username == "admin"

    def test_bare_message(self):
        assert MPNotification.from_api({"ctype": "transferComplete"}).ctype == "transferComplete"

    def test_invalid_payload(self):
        assert MPNotification.from_api("nope") == MPNotification()


class TestSSEClient:
    """Stream reading and dispatch"""

    def make_client(self, session, on_message=None):
        token_manager = Mock()
        token_manager.get_token.return_value = "tok"
        return SSEClient("http://mp.local:3000/", token_manager, threading.Event(), on_message, session=session)

    def test_events_are_dispatched(self):
        response = make_response(200)
        response.iter_lines.return_value = [
            b": ping",
            'data: {"message": {"ctype": "downloadStart", "title": "Dune 开始下载"}}'.encode("utf-8"),
            b"",
        ]
        session = Mock()
        session.get.return_value = response
        on_message = Mock()
        client = self.make_client(session, on_message)

        client._connect_once()

        notification = on_message.call_args.args[0]
        assert notification.ctype == "downloadStart"
        assert notification.title == "Dune 开始下载"
        kwargs = session.get.call_args.kwargs
        assert kwargs["headers"]["Authorization"] == "Bearer tok"
        assert kwargs["stream"] is True
        assert session.get.call_args.args[0] == "http://mp.local:3000/api/v1/system/message"
        response.close.assert_called()

    def test_forbidden_stream(self):
        session = Mock()
        session.get.return_value = make_response(403)
        client = self.make_client(session)

        with pytest.raises(BackendError) as exc_info:
            client._connect_once()

        assert exc_info.value.is_auth_error is True

    def test_undecodable_event_is_skipped(self):
        on_message = Mock()
        client = self.make_client(Mock(), on_message)

        client._handle_event("{not json")

        on_message.assert_not_called()

    def test_run_stops_on_cancel(self):
        """A failed connection waits for the reconnect delay, then exits on shutdown"""
        session = Mock()
        session.get.return_value = make_response(403)
        client = self.make_client(session)
        client.cancel_event = Mock()
        client.cancel_event.is_set.return_value = False
        client.cancel_event.wait.return_value = True

        client.run()

        assert session.get.call_count == 1
        client.cancel_event.wait.assert_called_once_with(30)
