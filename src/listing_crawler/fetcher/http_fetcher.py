"""Simple HTTP fetcher for static pages."""

import logging
from urllib.parse import urlparse

import httpx

from listing_crawler.config import FetcherConfig
from listing_crawler.fetcher.base import BaseFetcher, FetchResult

logger = logging.getLogger(__name__)


class HttpFetcher(BaseFetcher):
    """Simple HTTP fetcher without JavaScript rendering."""

    def __init__(self, config: FetcherConfig, transport: httpx.AsyncBaseTransport | None = None):
        super().__init__(config)
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self):
        """Initialize HTTP client."""
        self._client = httpx.AsyncClient(
            headers={"User-Agent": self.config.user_agent, **self.config.headers},
            follow_redirects=True,
            max_redirects=5,
            timeout=self.config.timeout_ms / 1000,
            transport=self._transport,
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Clean up HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def fetch(self, url: str) -> FetchResult:
        """Fetch a page via HTTP."""
        if not self._client:
            raise RuntimeError("Fetcher not initialized. Use 'async with' context manager.")

        parsed = urlparse(url)
        headers = {"Referer": f"{parsed.scheme}://{parsed.netloc}/"}

        try:
            response = await self._client.get(url, headers=headers)
        except httpx.HTTPError as e:
            logger.debug("HTTP fetch failed for %s: %r", url, e)
            return FetchResult(
                url=url,
                final_url=url,
                html="",
                status_code=0,
                error=f"{type(e).__name__}: {e}" if str(e) else type(e).__name__,
            )

        retry_after: float | None = None
        if response.status_code == 429 or response.status_code == 503:
            retry_after = self._parse_retry_after(response.headers.get("retry-after"))

        return FetchResult(
            url=url,
            final_url=str(response.url),
            html=response.text,
            status_code=response.status_code,
            retry_after=retry_after,
        )
