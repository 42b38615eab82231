"""Utility functions and classes."""

from listing_crawler.utils.rate_limiter import RateLimiter
from listing_crawler.utils.url_utils import make_absolute, normalize_url, page_url, slug_to_name

__all__ = [
    "RateLimiter",
    "make_absolute",
    "normalize_url",
    "page_url",
    "slug_to_name",
]
