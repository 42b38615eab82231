"""Base class for page fetchers."""

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime

from pydantic import BaseModel

from listing_crawler.config import FetcherConfig

NOT_FOUND_STATUSES = frozenset({404, 410})


class FetchResult(BaseModel):
    """Result of fetching a page."""

    url: str
    final_url: str  # After redirects
    html: str
    status_code: int
    error: str | None = None
    retry_after: float | None = None
    attempts: int = 1
    via: str = "http"

    @property
    def success(self) -> bool:
        return self.status_code >= 200 and self.status_code < 400 and not self.error

    @property
    def not_found(self) -> bool:
        return self.status_code in NOT_FOUND_STATUSES


class BaseFetcher(ABC):
    """Abstract base class for page fetchers.

    ``fetch`` never raises for network trouble; failures come back as a
    ``FetchResult`` with ``status_code`` 0 and an ``error`` message.
    """

    # Whether this fetch path can hand back stale or half-rendered pages
    # that look empty even though the site has content.
    may_return_stale: bool = False

    def __init__(self, config: FetcherConfig):
        self.config = config

    @abstractmethod
    async def fetch(self, url: str) -> FetchResult:
        """Fetch a page and return its HTML content."""
        pass

    @staticmethod
    def is_retryable(result: FetchResult) -> bool:
        """Check if a failed fetch should be retried."""
        if result.not_found:
            return False
        # Retry on rate-limit or server errors
        if result.status_code == 429 or result.status_code >= 500:
            return True
        # Retry on connection/timeout errors (status_code 0 with an error message)
        if result.status_code == 0 and result.error:
            return True
        return False

    @staticmethod
    def _parse_retry_after(header_value: str | None) -> float | None:
        """Parse a Retry-After header value into seconds.

        Supports both delta-seconds (e.g. "120") and HTTP-date formats.
        Returns None if the header is missing or unparseable.
        """
        if not header_value:
            return None
        try:
            return max(0.0, float(header_value))
        except ValueError:
            pass
        try:
            dt = parsedate_to_datetime(header_value)
        except (TypeError, ValueError):
            return None
        delta = (dt - datetime.now(timezone.utc)).total_seconds()
        return max(0.0, delta)

    async def __aenter__(self):
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        pass
