"""
Request source (Jellyseerr / Overseerr) integration for media-syncer.

This module provides:
    - JellyseerrClient: Paginated approved-request listing and media details
    - TMDBClient: Poster fallback lookup
    - MediaRequest / MediaDetails: API data models
"""

from media_syncer.jellyseerr.client import MAX_SKIP, JellyseerrClient
from media_syncer.jellyseerr.models import MediaDetails, MediaRequest, SeasonRequest
from media_syncer.jellyseerr.tmdb import TMDBClient

__all__ = [
    "JellyseerrClient",
    "MAX_SKIP",
    "TMDBClient",
    "MediaDetails",
    "MediaRequest",
    "SeasonRequest",
]
