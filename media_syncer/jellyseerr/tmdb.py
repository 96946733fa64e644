"""
TMDB poster lookup, used when Jellyseerr returns no poster for a request.

Disabled (always returns None) when no API key is configured.
"""

import requests

from media_syncer.core.logger import get_logger
from media_syncer.core.models import MediaType


logger = get_logger(__name__)

TMDB_API_URL = "https://api.themoviedb.org/3"
HTTP_TIMEOUT = 30


class TMDBClient:
    def __init__(
        self,
        api_key: str | None,
        language: str = "zh-CN",
        session: requests.Session | None = None
    ) -> None:
        self.api_key = api_key
        self.language = language
        self.session = session or requests.Session()

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    def get_poster_path(self, media_type: MediaType, tmdb_id: int) -> str | None:
        """
        Return the poster path ("/abc.jpg") or None.

        Failures are logged at DEBUG and reported as None: a missing poster
        only changes how a notification looks.
        """
        if not self.enabled:
            return None

        url = f"{TMDB_API_URL}/{media_type.value}/{tmdb_id}"
        try:
            response = self.session.get(
                url,
                params={"api_key": self.api_key, "language": self.language},
                timeout=HTTP_TIMEOUT,
            )
            if response.status_code != 200:
                logger.debug(f"TMDB lookup for {media_type.value}/{tmdb_id} returned HTTP {response.status_code}")
                return None
            return response.json().get("poster_path") or None
        except (requests.exceptions.RequestException, ValueError) as e:
            logger.debug(f"TMDB lookup for {media_type.value}/{tmdb_id} failed: {e}")
            return None
