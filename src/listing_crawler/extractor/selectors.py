"""CSS-selector driven extractor."""

import logging
import re

from bs4 import BeautifulSoup, Tag

from listing_crawler.config import ExtractorConfig
from listing_crawler.extractor.base import BaseExtractor, Record
from listing_crawler.utils.url_utils import make_absolute

logger = logging.getLogger(__name__)

_WHITESPACE_RE = re.compile(r"\s+")


def _clean_text(text: str) -> str:
    return _WHITESPACE_RE.sub(" ", text).strip()


def _split_selector(value: str) -> tuple[str, str | None]:
    """Split ``"css@attr"`` into its selector and attribute parts."""
    if "@" in value:
        selector, attr = value.rsplit("@", 1)
        if attr and re.fullmatch(r"[\w:-]+", attr):
            return selector.strip(), attr
    return value.strip(), None


class SelectorExtractor(BaseExtractor):
    """Extract links and fields with the selectors from ``ExtractorConfig``."""

    def __init__(self, config: ExtractorConfig):
        self.config = config
        self._fields = {
            name: _split_selector(value) for name, value in config.field_selectors.items()
        }

    def field_names(self) -> list[str]:
        return list(self.config.field_selectors)

    def extract_listing(self, html: str, page_url: str) -> list[str]:
        """Collect detail links in page order, without duplicates."""
        if not html:
            return []
        soup = BeautifulSoup(html, "lxml")
        links: list[str] = []
        seen: set[str] = set()
        for anchor in soup.select(self.config.listing_link_selector):
            href = anchor.get("href")
            if not isinstance(href, str) or not href.strip():
                continue
            if href.startswith(("#", "mailto:", "tel:", "javascript:")):
                continue
            absolute = make_absolute(page_url, href.strip()).split("#", 1)[0]
            if absolute not in seen:
                seen.add(absolute)
                links.append(absolute)
        return links

    def extract_detail(self, html: str, url: str) -> Record | None:
        """Extract configured fields; None if a required field is empty."""
        if not html or not html.strip():
            return None
        soup = BeautifulSoup(html, "lxml")
        for selector in self.config.remove_selectors:
            for elem in soup.select(selector):
                elem.decompose()

        fields: dict[str, str | None] = {}
        for name, (selector, attr) in self._fields.items():
            fields[name] = self._read_field(soup, selector, attr)

        missing = [f for f in self.config.required_fields if not fields.get(f)]
        if missing:
            logger.debug("Required fields %s missing on %s", missing, url)
            return None
        return Record(url=url, fields=fields)

    @staticmethod
    def _read_field(soup: BeautifulSoup, selector: str, attr: str | None) -> str | None:
        elem = soup.select_one(selector)
        if not isinstance(elem, Tag):
            return None
        if attr:
            value = elem.get(attr)
            if isinstance(value, list):
                value = " ".join(value)
            if value:
                return _clean_text(value)
        text = _clean_text(elem.get_text(" "))
        return text or None
