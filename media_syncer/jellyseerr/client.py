"""
Jellyseerr / Overseerr API client.

Fetches approved media requests page by page and looks up media details
(title, poster) for each of them. Authentication is the X-Api-Key header.

Pagination:
    Pages are requested with take/skip until a page comes back shorter
    than the page size. A request source that never returns a short page
    would loop forever, so the loop aborts with SourceError once skip
    passes MAX_SKIP.
"""

from typing import Any

import requests

from media_syncer.core.exceptions import SourceError
from media_syncer.core.logger import get_logger
from media_syncer.core.models import MediaType
from media_syncer.jellyseerr.models import MediaDetails, MediaRequest


logger = get_logger(__name__)

HTTP_TIMEOUT = 30

# Hard pagination cap
MAX_SKIP = 10000


class JellyseerrClient:
    """
    Request source client.

    Args:
        base_url: Jellyseerr base URL without trailing slash.
        api_key: API key from Settings -> General.
        request_filter: List filter sent to the API (default "approved").
        session: Optional requests.Session (tests inject a mock).
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        request_filter: str = "approved",
        session: requests.Session | None = None
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.request_filter = request_filter
        self.session = session or requests.Session()
        self.session.headers.update({
            "X-Api-Key": api_key,
            "Accept": "application/json",
        })

    def _get(self, path: str, params: dict[str, Any] | None = None) -> Any:
        url = f"{self.base_url}{path}"
        try:
            response = self.session.get(url, params=params, timeout=HTTP_TIMEOUT)
        except requests.exceptions.RequestException as e:
            raise SourceError(
                f"Request to Jellyseerr failed: {e}",
                details={"url": url, "original_error": str(e)}
            ) from e

        if response.status_code == 404:
            raise SourceError(f"Not found: {path}", details={"url": url, "status_code": 404})
        if response.status_code != 200:
            raise SourceError(
                f"Unexpected status code {response.status_code} from {path}: {response.text[:200]}",
                details={"url": url, "status_code": response.status_code}
            )

        try:
            return response.json()
        except ValueError as e:
            raise SourceError(f"Invalid JSON from {path}", details={"url": url}) from e

    def list_approved(self, page_size: int, skip: int) -> tuple[list[MediaRequest], int]:
        """
        Fetch one page of requests.

        Returns:
            (approved requests on this page, number of results the page held
            before local filtering). The raw count drives pagination.
        """
        data = self._get("/api/v1/request", params={
            "take": page_size,
            "skip": skip,
            "filter": self.request_filter,
            "sort": "added",
        })
        results = data.get("results") if isinstance(data, dict) else None
        if not isinstance(results, list):
            raise SourceError("Request list response has no results array", details={"skip": skip})

        approved = []
        for item in results:
            try:
                request = MediaRequest.from_api(item)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed request entry: {e}")
                continue
            if request.is_approved:
                approved.append(request)
        return approved, len(results)

    def fetch_all_approved(self, page_size: int = 50) -> list[MediaRequest]:
        """
        Fetch every approved request across all pages.

        Raises:
            SourceError: On any page failure, or when skip exceeds MAX_SKIP.
        """
        all_requests: list[MediaRequest] = []
        skip = 0

        while True:
            try:
                page, total_this_page = self.list_approved(page_size, skip)
            except SourceError as e:
                raise SourceError(
                    f"List requests (skip={skip}) failed: {e.message}",
                    details={**e.details, "skip": skip}
                ) from e

            all_requests.extend(page)

            if total_this_page < page_size:
                break

            skip += page_size
            if skip > MAX_SKIP:
                raise SourceError(
                    f"Too many requests (> {MAX_SKIP}), possible infinite pagination loop",
                    details={"skip": skip}
                )

        logger.debug(f"Fetched {len(all_requests)} approved requests from Jellyseerr")
        return all_requests

    def get_media_details(self, media_type: MediaType, tmdb_id: int) -> MediaDetails:
        """
        Fetch movie or tv details.

        Raises:
            SourceError: If the lookup fails.
        """
        data = self._get(f"/api/v1/{media_type.value}/{tmdb_id}")
        if not isinstance(data, dict):
            raise SourceError("Media details response is not an object", details={"tmdb_id": tmdb_id})
        return MediaDetails.from_api(data)
