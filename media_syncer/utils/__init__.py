"""
Utility functions for media-syncer.

This module provides small helpers shared across the application:
    - Error message sanitization before persisting or notifying

Usage:
    from media_syncer.utils import sanitize_error

    link_error = sanitize_error(str(e), secrets=(api_key, password))
"""

import re
from collections.abc import Iterable


# Maximum stored length of an error message (before the "..." marker)
MAX_ERROR_LENGTH = 500

# key=value / key: value pairs whose value is a credential
_SECRET_PAIR_PATTERN = re.compile(
    r"(?i)\b(token|access_token|api_key|apikey|password|x-api-key|x-api-token)"
    r"(\s*[=:]\s*)[^\s&,;\"']+"
)
_BEARER_PATTERN = re.compile(r"(?i)\bbearer\s+[A-Za-z0-9._\-]+")
# Telegram bot URLs embed the bot token in the path
_BOT_URL_PATTERN = re.compile(r"/bot\d+:[A-Za-z0-9_\-]+")


def sanitize_error(message: str, secrets: Iterable[str | None] = ()) -> str:
    """
    Make an error message safe to persist and display.

    Args:
        message: Raw error text.
        secrets: Literal credential values to mask wherever they appear.

    Returns:
        The message with credentials replaced by "****", whitespace
        collapsed, and capped to MAX_ERROR_LENGTH characters plus "...".

    Examples:
        sanitize_error("GET /x?token=abc123 failed")  # "GET /x?token=**** failed"
        sanitize_error("x" * 600)                     # 500 chars + "..."
    """
    text = str(message)
    for secret in secrets:
        if secret:
            text = text.replace(secret, "****")

    text = _SECRET_PAIR_PATTERN.sub(lambda m: f"{m.group(1)}{m.group(2)}****", text)
    text = _BEARER_PATTERN.sub("Bearer ****", text)
    text = _BOT_URL_PATTERN.sub("/bot****", text)
    text = " ".join(text.split())

    if len(text) > MAX_ERROR_LENGTH:
        text = text[:MAX_ERROR_LENGTH] + "..."
    return text


__all__ = [
    "MAX_ERROR_LENGTH",
    "sanitize_error",
]
