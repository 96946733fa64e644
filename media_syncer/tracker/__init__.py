"""
Tracking reconciler for media-syncer.

This module provides:
    - Tracker: History polling loop and event-stream relay
    - SSEClient: MoviePilot system message stream reader
    - extract_media_title: Bare title from a MoviePilot message title
"""

from media_syncer.tracker.reconciler import Tracker
from media_syncer.tracker.sse import MPNotification, SSEClient, extract_media_title, iter_sse_data

__all__ = [
    "Tracker",
    "SSEClient",
    "MPNotification",
    "extract_media_title",
    "iter_sse_data",
]
