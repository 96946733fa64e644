"""
Server-sent event listener for MoviePilot system messages.

MoviePilot publishes its notifications on GET /api/v1/system/message as a
text/event-stream. Each event is a JSON object:

    data: {"message": {"mtype": "订阅", "ctype": "downloadStart",
    data:              "title": "Dune (2021) 开始下载", "username": "admin"}}

This channel is best-effort: the endpoint may reject the token issued by
the login flow (it expects a session-bound resource token), so failures
are logged and retried every RECONNECT_DELAY seconds without affecting the
polling loop.

Stream format handled by iter_sse_data():
    - "data: <chunk>" lines are concatenated into the event payload
    - an empty line terminates the event
    - lines starting with ":" are comments (keep-alives)
"""

import json
import threading
from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass
from typing import Any

import requests

from media_syncer.core.exceptions import BackendError
from media_syncer.core.logger import get_logger
from media_syncer.moviepilot.token import TokenManager


logger = get_logger(__name__)

MESSAGE_PATH = "/api/v1/system/message"
RECONNECT_DELAY = 30
CONNECT_TIMEOUT = 10
# Upper bound on one blocking read; an idle stream past this reconnects
READ_TIMEOUT = 300

# Status suffixes MoviePilot appends to message titles
TITLE_SUFFIXES = ("已添加订阅", "已完成订阅", "开始下载", "下载完成", "入库完成")


def extract_media_title(title: str) -> str:
    """
    Reduce a notification title to the bare media title.

    Cuts at the first "(" (the year parenthetical) and strips the known
    status suffixes.

    Examples:
        extract_media_title("Dune (2021) 开始下载")   # "Dune"
        extract_media_title("三体 第1季 入库完成")     # "三体 第1季"
    """
    index = title.find("(")
    if index > 0:
        title = title[:index]
    title = title.strip()

    for suffix in TITLE_SUFFIXES:
        if title.endswith(suffix):
            title = title[: -len(suffix)]
    return title.strip()


@dataclass(frozen=True)
class MPNotification:
    """One MoviePilot system message."""

    mtype: str = ""
    ctype: str = ""
    title: str = ""
    text: str = ""
    image: str | None = None
    username: str | None = None
    date: str | None = None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "MPNotification":
        message = data.get("message", data) if isinstance(data, dict) else {}
        if not isinstance(message, dict):
            message = {}
        return cls(
            mtype=str(message.get("mtype") or ""),
            ctype=str(message.get("ctype") or ""),
            title=str(message.get("title") or ""),
            text=str(message.get("text") or ""),
            image=message.get("image") or None,
            username=message.get("username") or None,
            date=message.get("date") or None,
        )


def iter_sse_data(lines: Iterable[str]) -> Iterator[str]:
    """Yield the accumulated data payload of every complete event."""
    buffer: list[str] = []
    for raw_line in lines:
        line = raw_line.rstrip("\r\n")
        if line.startswith(":"):
            continue
        if line.startswith("data:"):
            chunk = line[5:]
            buffer.append(chunk[1:] if chunk.startswith(" ") else chunk)
        elif line == "":
            if buffer:
                yield "".join(buffer)
                buffer = []


class SSEClient:
    """
    Reconnecting event-stream reader.

    Args:
        base_url: MoviePilot base URL.
        token_manager: Source of the bearer token.
        cancel_event: Shutdown signal. stop() also closes the live response
                      so a blocked read returns immediately.
        on_message: Callback invoked for every decoded MPNotification
                    (the Tracker installs its handler when none is given).
    """

    def __init__(
        self,
        base_url: str,
        token_manager: TokenManager,
        cancel_event: threading.Event,
        on_message: Callable[[MPNotification], None] | None = None,
        session: requests.Session | None = None,
        reconnect_delay: float = RECONNECT_DELAY
    ) -> None:
        self.url = f"{base_url.rstrip('/')}{MESSAGE_PATH}"
        self.token_manager = token_manager
        self.on_message = on_message
        self.cancel_event = cancel_event
        self.session = session or requests.Session()
        self.reconnect_delay = reconnect_delay
        self._response: requests.Response | None = None
        self._response_lock = threading.Lock()

    def run(self) -> None:
        """Connect and dispatch events until the cancel event is set."""
        logger.info(f"Connecting to MoviePilot event stream: {self.url}")
        while not self.cancel_event.is_set():
            try:
                self._connect_once()
            except (requests.exceptions.RequestException, BackendError) as e:
                if self.cancel_event.is_set():
                    break
                logger.error(f"Event stream connection failed, retrying in {self.reconnect_delay:.0f}s: {e}")
            else:
                if self.cancel_event.is_set():
                    break
                logger.info(f"Event stream closed by server, reconnecting in {self.reconnect_delay:.0f}s")
            if self.cancel_event.wait(self.reconnect_delay):
                break
        logger.info("Event stream listener stopped")

    def stop(self) -> None:
        """Close the live response, unblocking the reader thread."""
        with self._response_lock:
            if self._response is not None:
                self._response.close()

    def _connect_once(self) -> None:
        token = self.token_manager.get_token()
        response = self.session.get(
            self.url,
            headers={
                "Authorization": f"Bearer {token}",
                "Accept": "text/event-stream",
                "Cache-Control": "no-cache",
            },
            stream=True,
            timeout=(CONNECT_TIMEOUT, READ_TIMEOUT),
        )
        with self._response_lock:
            self._response = response
        try:
            if response.status_code != 200:
                raise BackendError(
                    f"Event stream returned HTTP {response.status_code}",
                    details={"url": self.url, "status_code": response.status_code},
                    status_code=response.status_code,
                    is_auth_error=response.status_code in (401, 403)
                )

            logger.info("Event stream connection established")
            lines = (
                line.decode("utf-8", errors="replace") if isinstance(line, bytes) else line
                for line in response.iter_lines()
            )
            for data in iter_sse_data(lines):
                if self.cancel_event.is_set():
                    return
                self._handle_event(data)
        finally:
            with self._response_lock:
                self._response = None
            response.close()

    def _handle_event(self, data: str) -> None:
        logger.debug(f"Received event: {data}")
        try:
            notification = MPNotification.from_api(json.loads(data))
        except json.JSONDecodeError as e:
            logger.error(f"Failed to decode event payload: {e}")
            return
        if self.on_message is not None:
            self.on_message(notification)
