"""
Notification channels for media-syncer.

Currently a single channel: Telegram (TelegramNotifier).
"""

from media_syncer.notify.telegram import TelegramNotifier, media_type_label

__all__ = [
    "TelegramNotifier",
    "media_type_label",
]
