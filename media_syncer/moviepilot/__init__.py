"""
MoviePilot (acquisition backend) integration for media-syncer.

This module provides:
    - TokenManager: Cached username/password token exchange
    - RateLimiter: Token bucket shared by all backend calls
    - MoviePilotClient: subscribe / search / history queries with retry
    - Wire models: SubscribeRequest, SubscribeResult, history entries

Usage:
    from media_syncer.moviepilot import MoviePilotClient, TokenManager, RateLimiter

    token_manager = TokenManager(config.moviepilot.url, user, password)
    limiter = RateLimiter(config.moviepilot.rate_limit_per_sec)
    client = MoviePilotClient(config.moviepilot, token_manager, limiter, cancel_event)
"""

from media_syncer.moviepilot.client import MoviePilotClient, calculate_backoff
from media_syncer.moviepilot.limiter import RateLimiter
from media_syncer.moviepilot.models import (
    ALREADY_EXISTS_KEYWORDS,
    DownloadHistoryItem,
    HistoryItem,
    MediaResult,
    SubscribeRequest,
    SubscribeResponse,
    SubscribeResult,
    TransferHistoryItem,
)
from media_syncer.moviepilot.token import TokenManager

__all__ = [
    "MoviePilotClient",
    "calculate_backoff",
    "RateLimiter",
    "TokenManager",
    "ALREADY_EXISTS_KEYWORDS",
    "HistoryItem",
    "DownloadHistoryItem",
    "TransferHistoryItem",
    "MediaResult",
    "SubscribeRequest",
    "SubscribeResponse",
    "SubscribeResult",
]
