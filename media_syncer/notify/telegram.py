"""
Telegram notification channel for media-syncer.

Messages are sent through the Telegram Bot HTTP API (sendMessage and
sendPhoto) with HTML parse mode and broadcast to every configured chat.

Delivery is fire-and-forget: each notify_* call hands the message to a
daemon thread and returns immediately. Failures are logged and never
retried or raised to the caller, so neither the sync pipeline nor the
tracker can be blocked or aborted by the notification channel.

Chat ids:
    Numeric ids ("-1001234567890") are sent as integers, anything else
    (e.g. "@my_channel") is sent as a channel username.

Usage:
    notifier = TelegramNotifier(bot_token, ["123456", "@channel"], enabled=True)
    notifier.notify_subscribed("Dune", MediaType.MOVIE, 438631, "/poster.jpg")
"""

import html
import threading
from datetime import datetime
from typing import Any

import requests

from media_syncer.core.exceptions import NotificationError
from media_syncer.core.logger import get_logger
from media_syncer.core.models import MediaType


logger = get_logger(__name__)

TELEGRAM_API_URL = "https://api.telegram.org"
TMDB_IMAGE_URL = "https://image.tmdb.org/t/p/w500"
HTTP_TIMEOUT = 30
TIME_FORMAT = "%Y-%m-%d %H:%M:%S"


def media_type_label(media_type: MediaType) -> str:
    return "🎬 电影" if media_type is MediaType.MOVIE else "📺 剧集"


def _now() -> str:
    return datetime.now().strftime(TIME_FORMAT)


def _chat_target(chat_id: str) -> int | str:
    try:
        return int(chat_id)
    except ValueError:
        return chat_id


class TelegramNotifier:
    """
    Fire-and-forget Telegram notifier.

    Args:
        bot_token: Bot API token. Ignored when disabled.
        chat_ids: Target chats (numeric ids or @channel usernames).
        enabled: Master switch; when False every notify_* is a no-op.
        asynchronous: Dispatch on a daemon thread (False sends inline,
                      used by tests).
        session: Optional requests.Session.
    """

    def __init__(
        self,
        bot_token: str | None,
        chat_ids: tuple[str, ...] | list[str],
        enabled: bool = True,
        asynchronous: bool = True,
        session: requests.Session | None = None
    ) -> None:
        self.enabled = bool(enabled and bot_token and chat_ids)
        self._bot_token = bot_token or ""
        self.chat_ids = tuple(chat_ids)
        self.asynchronous = asynchronous
        self.session = session or requests.Session()
        # Serializes deliveries so messages keep their dispatch order per chat
        self._send_lock = threading.Lock()

    # =========================================================================
    # Delivery
    # =========================================================================

    def _call(self, method: str, payload: dict[str, Any]) -> None:
        """
        Call one Bot API method.

        Raises:
            NotificationError: On network failure or a non-ok answer.
        """
        url = f"{TELEGRAM_API_URL}/bot{self._bot_token}/{method}"
        try:
            response = self.session.post(url, json=payload, timeout=HTTP_TIMEOUT)
        except requests.exceptions.RequestException as e:
            # The URL embeds the bot token; report the method only
            raise NotificationError(
                f"Telegram {method} failed: {type(e).__name__}",
                details={"chat_id": payload.get("chat_id")}
            ) from e

        if response.status_code != 200:
            description = ""
            try:
                description = response.json().get("description", "")
            except ValueError:
                pass
            raise NotificationError(
                f"Telegram API returned {response.status_code}: {description}",
                details={"chat_id": payload.get("chat_id"), "status_code": response.status_code}
            )

    def _deliver(self, text: str, photo_url: str | None) -> None:
        with self._send_lock:
            for chat_id in self.chat_ids:
                target = _chat_target(chat_id)
                try:
                    if photo_url:
                        self._call("sendPhoto", {
                            "chat_id": target,
                            "photo": photo_url,
                            "caption": text,
                            "parse_mode": "HTML",
                        })
                    else:
                        self._call("sendMessage", {
                            "chat_id": target,
                            "text": text,
                            "parse_mode": "HTML",
                            "disable_web_page_preview": True,
                        })
                    logger.debug(f"Telegram message sent to {chat_id}")
                except NotificationError as e:
                    logger.error(f"Failed to send Telegram message to {chat_id}: {e}")

    def send(self, text: str, poster_path: str | None = None) -> None:
        """
        Dispatch a message (with the poster as photo when given).

        Returns immediately; delivery happens on a daemon thread.
        """
        if not self.enabled:
            return

        photo_url = f"{TMDB_IMAGE_URL}{poster_path}" if poster_path else None
        if not self.asynchronous:
            self._deliver(text, photo_url)
            return

        thread = threading.Thread(
            target=self._deliver,
            args=(text, photo_url),
            name="telegram-notify",
            daemon=True,
        )
        thread.start()

    # =========================================================================
    # Message kinds
    # =========================================================================

    def notify_subscribed(
        self,
        title: str,
        media_type: MediaType,
        tmdb_id: int,
        poster_path: str | None = None
    ) -> None:
        self.send(
            "✅ <b>已自动订阅</b>\n\n"
            f"📺 {html.escape(title)}\n"
            f"🏷️ 类型: {media_type_label(media_type)}\n"
            f"🆔 TMDB ID: {tmdb_id}\n"
            f"⏰ {_now()}",
            poster_path,
        )

    def notify_already_exists(
        self,
        title: str,
        media_type: MediaType,
        tmdb_id: int,
        poster_path: str | None = None
    ) -> None:
        self.send(
            "ℹ️ <b>媒体已在库中</b>\n\n"
            f"📺 {html.escape(title)}\n"
            f"🏷️ 类型: {media_type_label(media_type)}\n"
            f"🆔 TMDB ID: {tmdb_id}\n"
            "💡 该影片已存在于媒体库，无需重复下载\n"
            f"⏰ {_now()}",
            poster_path,
        )

    def notify_resource_found(self, title: str, username: str | None = None) -> None:
        self.send(
            "🎯 <b>已找到资源</b>\n\n"
            f"📺 {html.escape(title)}\n"
            f"👤 用户: {html.escape(username or '-')}\n"
            f"⏰ {_now()}"
        )

    def notify_download_started(self, title: str) -> None:
        self.send(f"⬇️ <b>开始下载</b>\n\n📺 {html.escape(title)}\n⏰ {_now()}")

    def notify_download_complete(self, title: str) -> None:
        self.send(f"✅ <b>下载完成</b>\n\n📺 {html.escape(title)}\n⏰ {_now()}")

    def notify_transfer_complete(self, title: str) -> None:
        self.send(f"📦 <b>入库成功</b>\n\n📺 {html.escape(title)}\n⏰ {_now()}")

    def notify_failed(self, title: str, reason: str) -> None:
        self.send(
            "❌ <b>订阅失败</b>\n\n"
            f"📺 {html.escape(title)}\n"
            f"💬 原因: {html.escape(reason)}\n"
            f"⏰ {_now()}"
        )

    def notify_retrying(self, title: str, attempt: int, max_attempts: int) -> None:
        self.send(
            "🔄 <b>智能重试</b>\n\n"
            f"📺 {html.escape(title)}\n"
            f"🔢 尝试: {attempt}/{max_attempts}\n"
            f"⏰ {_now()}"
        )

    def notify_daily_report(self, report: str) -> None:
        self.send(f"📊 <b>每日订阅报告</b>\n\n{report}")

    def notify_error(self, message: str) -> None:
        self.send(
            "⚠️ <b>系统错误</b>\n\n"
            f"💬 {html.escape(message)}\n"
            f"⏰ {_now()}"
        )
