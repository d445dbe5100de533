"""HTTP access to the feed and to the title lookup endpoint.

Both classes take the agent's shared ``httpx.AsyncClient`` so every request
goes through the response cache transport, which leaves these hosts
network-only.
"""

import logging
import time

import httpx

from ..config import Settings
from ..exceptions import (
    BadResponseError,
    FetchError,
    MalformedPayloadError,
    NetworkUnavailableError,
)
from .models import Record
from .parser import parse_feed

logger = logging.getLogger(__name__)

NO_CACHE_HEADERS = {"Cache-Control": "no-cache", "Pragma": "no-cache"}


class FeedFetcher:
    """Fetches the feed and decodes it into records."""

    def __init__(self, settings: Settings, client: httpx.AsyncClient) -> None:
        self.settings = settings
        self._client = client

    def _request_url(self, url: str) -> httpx.URL:
        # Keeps the query parameters already present in the feed URL
        return httpx.URL(url).copy_merge_params({"_": str(int(time.time() * 1000))})

    async def fetch_records(self) -> list[Record]:
        """Fetch the feed and parse it.

        Returns:
            Records in feed order

        Raises:
            FetchError: On any failure; no other exception escapes
        """
        url = self.settings.feed_url
        if not url:
            raise NetworkUnavailableError("No feed URL configured")

        try:
            response = await self._client.get(
                self._request_url(url),
                headers=NO_CACHE_HEADERS,
                timeout=self.settings.http_timeout,
            )
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise NetworkUnavailableError(f"Feed request failed: {e}") from e

        if not response.is_success:
            raise BadResponseError(response.status_code, url)

        try:
            records = parse_feed(
                response.text, self.settings.feed_prefix, self.settings.feed_suffix
            )
        except FetchError:
            raise
        except Exception as e:
            raise MalformedPayloadError(f"Could not decode feed: {e}") from e

        logger.debug("Fetched %d records from feed", len(records))
        return records


class TitleResolver:
    """Best-effort lookup of a video's title by id."""

    def __init__(self, settings: Settings, client: httpx.AsyncClient) -> None:
        self.settings = settings
        self._client = client

    async def resolve(self, video_id: str) -> str | None:
        """Look up the title for a video.

        Args:
            video_id: The 11-character video id

        Returns:
            The title, or None on any failure
        """
        url = self.settings.title_lookup_url.format(video_id=video_id)
        try:
            response = await self._client.get(url, timeout=self.settings.title_lookup_timeout)
            if not response.is_success:
                logger.debug("Title lookup for %s returned HTTP %d", video_id, response.status_code)
                return None
            data = response.json()
        except Exception as e:
            logger.debug("Title lookup for %s failed: %s", video_id, e)
            return None

        title = data.get("title") if isinstance(data, dict) else None
        if not isinstance(title, str) or not title.strip():
            return None
        return title.strip()
