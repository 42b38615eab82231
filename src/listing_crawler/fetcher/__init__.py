"""Page fetching over plain HTTP or a headless browser."""

from listing_crawler.fetcher.base import BaseFetcher, FetchResult
from listing_crawler.fetcher.fallback import FallbackFetcher
from listing_crawler.fetcher.http_fetcher import HttpFetcher
from listing_crawler.fetcher.playwright_fetcher import PlaywrightFetcher

__all__ = [
    "BaseFetcher",
    "FetchResult",
    "FallbackFetcher",
    "HttpFetcher",
    "PlaywrightFetcher",
]
