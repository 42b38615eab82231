"""Bounded retry with exponential backoff."""

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from typing import TypeVar

from listing_crawler.config import RetryConfig
from listing_crawler.errors import TerminalFailure, categorize_error
from listing_crawler.fetcher.base import BaseFetcher, FetchResult

logger = logging.getLogger(__name__)

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[None]]


class RetryController:
    """Run an operation up to ``max_attempts`` times.

    The delay before attempt ``n + 1`` is
    ``base_delay * backoff_multiplier ** (n - 1)``, capped at ``max_delay``
    and raised to any ``Retry-After`` the server sent.
    """

    def __init__(
        self,
        config: RetryConfig | None = None,
        retryable: Callable[[FetchResult], bool] = BaseFetcher.is_retryable,
        sleep: Sleep = asyncio.sleep,
    ):
        self.config = config or RetryConfig()
        self.retryable = retryable
        self._sleep = sleep
        self.retry_count = 0

    def delay_for(self, attempt: int, retry_after: float | None = None) -> float:
        """Backoff delay after the given (1-based) failed attempt."""
        cfg = self.config
        delay = cfg.base_delay * (cfg.backoff_multiplier ** (attempt - 1))
        if cfg.jitter:
            delay += random.uniform(0, cfg.jitter)
        if retry_after is not None:
            delay = max(delay, retry_after)
        return min(delay, cfg.max_delay)

    async def execute(
        self, operation: Callable[[], Awaitable[FetchResult]], url: str = ""
    ) -> FetchResult | TerminalFailure:
        """Fetch with exponential backoff on transient errors.

        Returns the successful ``FetchResult`` or a ``TerminalFailure``
        describing the last failed attempt.
        """
        max_attempts = self.config.max_attempts
        result: FetchResult | None = None
        for attempt in range(1, max_attempts + 1):
            try:
                result = await operation()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                # Fetchers report failures in-band; anything raised is treated
                # as a transport error so one bad page cannot sink the run.
                logger.debug("Fetch operation raised for %s", url, exc_info=True)
                result = FetchResult(
                    url=url,
                    final_url=url,
                    html="",
                    status_code=0,
                    error=f"{type(e).__name__}: {e}",
                )
            result.attempts = attempt
            if result.success:
                return result
            if not self.retryable(result) or attempt >= max_attempts:
                break
            delay = self.delay_for(attempt, result.retry_after)
            self.retry_count += 1
            logger.debug(
                "Attempt %d/%d for %s failed (%s), retrying in %.1fs",
                attempt,
                max_attempts,
                url or result.url,
                result.error or f"HTTP {result.status_code}",
                delay,
            )
            await self._sleep(delay)

        assert result is not None
        message = result.error or f"HTTP {result.status_code}"
        return TerminalFailure(
            url=url or result.url,
            status_code=result.status_code,
            error=message,
            attempts=result.attempts,
            category=categorize_error(result.status_code, message, "fetch"),
        )

    async def fetch(self, fetcher: BaseFetcher, url: str) -> FetchResult | TerminalFailure:
        """Shortcut for ``execute`` around ``fetcher.fetch(url)``."""
        return await self.execute(lambda: fetcher.fetch(url), url)

    async def call(
        self,
        operation: Callable[[], Awaitable[T]],
        attempts: int,
        delay: float,
        retry_on: tuple[type[BaseException], ...] = (OSError,),
    ) -> T:
        """Run an exception-signalling operation with a fixed retry delay.

        Re-raises the last exception once ``attempts`` are used up.
        """
        for attempt in range(1, attempts + 1):
            try:
                return await operation()
            except retry_on as e:
                if attempt >= attempts:
                    raise
                logger.warning("Attempt %d/%d failed: %s, retrying", attempt, attempts, e)
                await self._sleep(delay)
        raise AssertionError("unreachable")
