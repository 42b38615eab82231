"""Extraction of listing links and detail records from HTML."""

from listing_crawler.extractor.base import BaseExtractor, Record
from listing_crawler.extractor.selectors import SelectorExtractor

__all__ = [
    "BaseExtractor",
    "Record",
    "SelectorExtractor",
]
