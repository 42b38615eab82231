"""Shared fakes for the fetch, extract and sink boundaries."""

import pytest

from listing_crawler.config import AppConfig, CheckpointConfig, CrawlConfig, ExtractorConfig, RetryConfig
from listing_crawler.extractor.base import Record
from listing_crawler.fetcher.base import BaseFetcher, FetchResult
from listing_crawler.partitions import Partition

SITE = "https://shows.example.com"


def listing_html(links: list[str]) -> str:
    items = "".join(f'<li><a class="item" href="{link}">{link}</a></li>' for link in links)
    return f"<html><body><ul>{items}</ul></body></html>"


def detail_html(title: str) -> str:
    return f"<html><body><h1>{title}</h1><p class='venue'>Main Street</p></body></html>"


class FakeSite:
    """In-memory site: partition ``slug`` has listing pages of detail links."""

    def __init__(self):
        self.pages: dict[str, FetchResult] = {}

    def add(self, url: str, html: str, status_code: int = 200) -> None:
        self.pages[url] = FetchResult(url=url, final_url=url, html=html, status_code=status_code)

    def add_partition(self, slug: str, pages: list[int]) -> Partition:
        """Register a partition whose page N lists ``pages[N-1]`` detail links."""
        entry = f"{SITE}/{slug}/"
        for number, count in enumerate(pages, start=1):
            links = [f"{SITE}/event/{slug}-{number}-{i}/" for i in range(count)]
            url = entry if number == 1 else f"{entry}page/{number}/"
            self.add(url, listing_html(links))
            for i, link in enumerate(links):
                self.add(link, detail_html(f"{slug} {number}-{i}"))
        return Partition(id=slug, name=slug.title(), url=entry)


class FakeFetcher(BaseFetcher):
    """Serves a ``FakeSite``; unknown URLs are 404s."""

    def __init__(self, site: FakeSite, failures: dict[str, list[FetchResult]] | None = None):
        super().__init__(AppConfig().fetcher)
        self.site = site
        self.failures = failures or {}
        self.calls: list[str] = []
        self.entered = 0

    async def __aenter__(self):
        self.entered += 1
        return self

    async def fetch(self, url: str) -> FetchResult:
        self.calls.append(url)
        queued = self.failures.get(url)
        if queued:
            return queued.pop(0)
        page = self.site.pages.get(url)
        if page is None:
            return FetchResult(url=url, final_url=url, html="", status_code=404)
        return page.model_copy()

    def count(self, url: str) -> int:
        return self.calls.count(url)


class MemorySink:
    """Sink that keeps records in a list and can be told to fail."""

    def __init__(self, fail_urls: set[str] | None = None):
        self.records: list[Record] = []
        self.fail_urls = fail_urls or set()
        self.resets = 0
        self.on_append = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        pass

    async def append(self, record: Record) -> None:
        if record.url in self.fail_urls:
            raise OSError(28, "No space left on device")
        self.records.append(record)
        if self.on_append is not None:
            self.on_append(record)

    async def reset(self) -> None:
        self.resets += 1
        self.records.clear()

    async def existing_urls(self) -> list[str]:
        return list(self.urls)

    @property
    def urls(self) -> list[str]:
        return [r.url for r in self.records]


async def no_sleep(seconds: float) -> None:
    return None


def fast_config(tmp_path, **crawl) -> AppConfig:
    crawl_config = {"page_delay": 0.0, "request_delay": 0.0, "max_concurrent": 5, **crawl}
    return AppConfig(
        crawl=CrawlConfig(**crawl_config),
        retry=RetryConfig(base_delay=0.0, sink_retry_delay=0.0),
        extractor=ExtractorConfig(listing_link_selector="a.item", field_selectors={"title": "h1"}),
        checkpoint=CheckpointConfig(path=tmp_path / "checkpoint.json"),
    )


@pytest.fixture
def site() -> FakeSite:
    return FakeSite()
