"""HTTP retrieval of raw feed documents."""
import asyncio
import logging
from typing import Optional
import aiohttp

from shared.config import settings
from shared.exceptions import FetchError

logger = logging.getLogger(__name__)

USER_AGENT = "Mozilla/5.0 (compatible; JobImporter/1.0)"


class FeedFetcher:
    """Fetches one feed document per call. No retries at this layer."""

    def __init__(self, timeout: int = None, session: Optional[aiohttp.ClientSession] = None):
        self.timeout = timeout or settings.fetch_timeout
        self.session = session
        self.headers = {
            "User-Agent": USER_AGENT,
            "Accept": "application/rss+xml, application/atom+xml, application/xml;q=0.9, */*;q=0.8",
        }

    async def fetch(self, url: str) -> str:
        """
        Fetch the raw feed payload from the given URL.

        Raises FetchError on timeout, non-2xx status, transport failure or a
        body that cannot be decoded.
        """
        logger.info(f"Fetching jobs from: {url}")
        try:
            if self.session is not None:
                return await self._get(self.session, url)

            async with aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout),
                headers=self.headers
            ) as session:
                return await self._get(session, url)

        except asyncio.TimeoutError as e:
            raise FetchError(url, f"Timeout after {self.timeout} seconds") from e
        except aiohttp.ClientError as e:
            raise FetchError(url, f"Network error: {str(e)}") from e
        except (UnicodeDecodeError, LookupError) as e:
            # Body not valid in its declared (or an unknown) charset
            raise FetchError(url, f"Undecodable response body: {e}") from e

    async def _get(self, session: aiohttp.ClientSession, url: str) -> str:
        async with session.get(
            url,
            headers=self.headers,
            timeout=aiohttp.ClientTimeout(total=self.timeout)
        ) as response:
            if not 200 <= response.status < 300:
                raise FetchError(url, f"HTTP Error {response.status}")
            return await response.text()
