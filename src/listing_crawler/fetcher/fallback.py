"""HTTP-first fetcher that falls back to a headless browser."""

import logging
from collections.abc import Callable

from listing_crawler.config import FetcherConfig
from listing_crawler.fetcher.base import BaseFetcher, FetchResult

logger = logging.getLogger(__name__)


class FallbackFetcher(BaseFetcher):
    """Try a cheap fetcher first and retry the same URL through a second one.

    The secondary fetcher is used when the primary fails for any reason other
    than not-found, or when ``needs_fallback`` rejects the primary's body
    (for example a listing page whose link markup was withheld from plain
    HTTP clients).
    """

    may_return_stale = True

    def __init__(
        self,
        config: FetcherConfig,
        primary: BaseFetcher,
        secondary: BaseFetcher,
        needs_fallback: Callable[[FetchResult], bool] | None = None,
    ):
        super().__init__(config)
        self.primary = primary
        self.secondary = secondary
        self.needs_fallback = needs_fallback
        self.fallback_count = 0
        self._borrowed = False

    def checking(self, needs_fallback: Callable[[FetchResult], bool]) -> "FallbackFetcher":
        """Return a view sharing this fetcher's clients but with its own fallback check.

        The view does not open or close the underlying fetchers.
        """
        view = FallbackFetcher(self.config, self.primary, self.secondary, needs_fallback)
        view._borrowed = True
        return view

    async def __aenter__(self):
        if self._borrowed:
            return self
        await self.primary.__aenter__()
        try:
            await self.secondary.__aenter__()
        except Exception:
            await self.primary.__aexit__(None, None, None)
            raise
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if self._borrowed:
            return
        try:
            await self.secondary.__aexit__(exc_type, exc_val, exc_tb)
        finally:
            await self.primary.__aexit__(exc_type, exc_val, exc_tb)

    async def fetch(self, url: str) -> FetchResult:
        result = await self.primary.fetch(url)
        if result.not_found:
            return result
        if result.success and not (self.needs_fallback and self.needs_fallback(result)):
            return result

        if result.success:
            reason = "no usable content"
        else:
            reason = result.error or f"HTTP {result.status_code}"
        self.fallback_count += 1
        logger.info("Falling back to browser for %s (%s)", url, reason)
        return await self.secondary.fetch(url)
