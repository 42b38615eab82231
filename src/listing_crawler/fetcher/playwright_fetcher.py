"""Playwright-based fetcher for JavaScript-rendered or bot-guarded pages."""

import asyncio
import logging

from playwright.async_api import Browser, BrowserContext, Playwright, async_playwright

from listing_crawler.config import FetcherConfig
from listing_crawler.fetcher.base import BaseFetcher, FetchResult

logger = logging.getLogger(__name__)


class PlaywrightFetcher(BaseFetcher):
    """Fetch pages using a headless Chromium with JavaScript rendering."""

    # Rendered pages can come back before the listing markup hydrates.
    may_return_stale = True

    def __init__(self, config: FetcherConfig):
        super().__init__(config)
        self._playwright: Playwright | None = None
        self._browser: Browser | None = None
        self._context: BrowserContext | None = None
        self._page_pool: asyncio.Queue | None = None
        self._pool_size: int = 0

    async def __aenter__(self):
        """Initialize Playwright browser and pre-create page pool."""
        self._playwright = await async_playwright().start()
        try:
            self._browser = await self._playwright.chromium.launch(
                headless=True,
                args=["--no-sandbox", "--disable-setuid-sandbox"],
            )
            self._context = await self._browser.new_context(
                user_agent=self.config.user_agent,
                extra_http_headers=self.config.headers,
                viewport={"width": 1280, "height": 720},
            )
            self._page_pool = asyncio.Queue()
            for _ in range(self.config.page_pool_size):
                page = await self._context.new_page()
                await self._page_pool.put(page)
            self._pool_size = self.config.page_pool_size
        except Exception:
            await self.__aexit__(None, None, None)
            raise
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Drain page pool and clean up Playwright resources."""
        if self._page_pool:
            while not self._page_pool.empty():
                page = await self._page_pool.get()
                try:
                    await page.close()
                except Exception:
                    logger.debug("Failed to close page during cleanup", exc_info=True)
        if self._context:
            await self._context.close()
        if self._browser:
            await self._browser.close()
        if self._playwright:
            await self._playwright.stop()
        self._page_pool = None
        self._context = None
        self._browser = None
        self._playwright = None

    async def fetch(self, url: str) -> FetchResult:
        """Fetch a page with JavaScript rendering using pooled pages."""
        if not self._context or not self._page_pool:
            raise RuntimeError("Fetcher not initialized. Use 'async with' context manager.")

        page = await self._page_pool.get()
        try:
            response = await page.goto(
                url,
                wait_until="networkidle",
                timeout=self.config.timeout_ms,
            )

            if response is None:
                return FetchResult(
                    url=url,
                    final_url=url,
                    html="",
                    status_code=0,
                    error="No response received",
                    via="browser",
                )

            await self._wait_for_content(page)

            if self.config.wait_after_load_ms > 0:
                await asyncio.sleep(self.config.wait_after_load_ms / 1000)

            html = await page.content()

            retry_after: float | None = None
            if response.status == 429:
                retry_after = self._parse_retry_after(
                    response.headers.get("retry-after")
                )

            return FetchResult(
                url=url,
                final_url=page.url,
                html=html,
                status_code=response.status,
                retry_after=retry_after,
                via="browser",
            )

        except Exception as e:
            logger.debug("Browser fetch failed for %s", url, exc_info=True)
            return FetchResult(
                url=url,
                final_url=url,
                html="",
                status_code=0,
                error=f"{type(e).__name__}: {e}",
                via="browser",
            )
        finally:
            await self._return_page_to_pool(page)

    async def _return_page_to_pool(self, page) -> None:
        """Reset a page and return it to the pool, replacing it if broken."""
        assert self._page_pool is not None
        assert self._context is not None
        try:
            await page.goto("about:blank", wait_until="load", timeout=5000)
            await self._page_pool.put(page)
        except Exception:
            logger.debug("Page reset failed, replacing page", exc_info=True)
            try:
                await page.close()
            except Exception:
                logger.debug("Failed to close broken page", exc_info=True)
            try:
                new_page = await self._context.new_page()
                await self._page_pool.put(new_page)
            except Exception:
                self._pool_size -= 1
                logger.warning(
                    "Failed to create replacement page, pool shrunk to %d",
                    self._pool_size,
                    exc_info=True,
                )
                if self._pool_size <= 0:
                    raise RuntimeError("Playwright page pool is empty, all pages lost")

    async def _wait_for_content(self, page) -> None:
        """Give the configured listing selector a short chance to render.

        Detail pages usually lack it, so a miss only costs the short timeout.
        """
        if not self.config.wait_selector:
            return
        try:
            await page.wait_for_selector(self.config.wait_selector, state="attached", timeout=5000)
        except Exception:
            logger.debug(
                "wait_selector '%s' not found on %s, continuing",
                self.config.wait_selector,
                page.url,
            )
