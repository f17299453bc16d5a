"""Feed client for the IU events LiveWhale RSS endpoint."""
import logging
from datetime import date
from typing import Iterable, Optional
from urllib.parse import quote, urlsplit

import requests

from processor.errors import FetchFailed, InvalidRequest

logger = logging.getLogger(__name__)


class CampusFeedClient:
    """Client for the campus events RSS feed."""

    BASE_URL = (
        "https://events.iu.edu/live/rss/events/category_id/12"
        "/audience/Students/tag/In%20Person"
    )
    # The feed has no single-day query; the exact day is filtered downstream
    DATE_WINDOW = "/start_date/-24%20hours/"

    def __init__(self, base_url: Optional[str] = None, timeout: int = 30):
        """
        Initialize the feed client.

        Args:
            base_url: Feed endpoint without tag or date segments
            timeout: HTTP request timeout in seconds (default: 30)
        """
        self.base_url = (base_url or self.BASE_URL).rstrip('/')
        self.timeout = timeout

    def build_url(self, tags: Iterable[str] = ()) -> str:
        """
        Build the feed URL for the given tag filters.

        Args:
            tags: Ordered tag filters, each appended as a /tags/<tag> segment

        Returns:
            Feed URL ending in the date window segment

        Raises:
            InvalidRequest: If a tag cannot be encoded or the URL is malformed
        """
        parts = urlsplit(self.base_url)
        if parts.scheme not in ('http', 'https') or not parts.netloc:
            raise InvalidRequest(f"Invalid feed base URL: {self.base_url!r}")

        url = self.base_url
        for tag in tags:
            if not isinstance(tag, str) or not tag.strip():
                raise InvalidRequest(f"Invalid tag filter: {tag!r}")
            try:
                encoded = quote(tag, safe='')
            except UnicodeEncodeError as e:
                raise InvalidRequest(f"Tag cannot be URL encoded: {tag!r}") from e
            url += f"/tags/{encoded}"

        return url + self.DATE_WINDOW

    def fetch_feed(self, target_date: date, tags: Iterable[str] = ()) -> bytes:
        """
        Retrieve the raw feed document.

        No retry is attempted here; the caller owns retry policy.

        Args:
            target_date: Day the caller is interested in
            tags: Ordered tag filters

        Returns:
            Raw response body

        Raises:
            InvalidRequest: If the URL cannot be built (no request is sent)
            FetchFailed: On any network or HTTP error
        """
        url = self.build_url(tags)
        logger.info(f"Fetching campus feed for {target_date.isoformat()}: {url}")

        try:
            response = requests.get(url, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            logger.error(f"Feed request failed: {e}")
            raise FetchFailed(f"Failed to fetch campus feed: {e}", cause=e) from e

        logger.info(f"Fetched {len(response.content)} bytes from campus feed")
        return response.content
