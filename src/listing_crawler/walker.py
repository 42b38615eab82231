"""Pagination over one partition's listing pages."""

import logging
import random
from collections.abc import AsyncIterator
from dataclasses import dataclass, field

from listing_crawler.checkpoint import PageCursor, PageOutcome
from listing_crawler.config import CrawlConfig
from listing_crawler.dedup import DedupSet
from listing_crawler.errors import ErrorCategory, TerminalFailure
from listing_crawler.events import CancellationToken, EventEmitter, ItemError, PageScraped
from listing_crawler.extractor.base import BaseExtractor
from listing_crawler.fetcher.base import BaseFetcher
from listing_crawler.partitions import Partition
from listing_crawler.retry import RetryController
from listing_crawler.utils.url_utils import normalize_url, page_url

logger = logging.getLogger(__name__)


@dataclass
class ListingPage:
    """A listing page with links this walk had not seen.

    ``new_links`` is the subset not yet in the dedup set, possibly empty.
    """

    page_number: int
    url: str
    links: list[str]
    new_links: list[str]


@dataclass
class PartitionWalk:
    """Iteration state for one walk; inspect it once ``pages()`` is exhausted."""

    walker: "PaginationWalker"
    partition: Partition
    cursor: PageCursor
    token: CancellationToken
    completed: bool = False
    ended_by: str | None = None  # "empty", "not_found", "max_pages", "failed", "stopped"
    failure: TerminalFailure | None = None
    pages_fetched: int = 0
    seen: set[str] = field(default_factory=set)

    def pages(self) -> AsyncIterator[ListingPage]:
        return self.walker._pages(self)


class PaginationWalker:
    """Fetch a partition's listing pages in increasing order.

    Pagination ends when a page yields no links unseen in this walk, or when
    ``empty_threshold`` consecutive pages do (for fetch paths that can return
    stale empty pages), or on a not-found response. Any other terminal fetch
    failure stops the walk without completing the partition.
    """

    def __init__(
        self,
        fetcher: BaseFetcher,
        extractor: BaseExtractor,
        retry: RetryController,
        dedup: DedupSet,
        config: CrawlConfig,
        events: EventEmitter,
        empty_threshold: int | None = None,
    ):
        self.fetcher = fetcher
        self.extractor = extractor
        self.retry = retry
        self.dedup = dedup
        self.config = config
        self.events = events
        if empty_threshold is None:
            empty_threshold = config.empty_page_threshold
        if empty_threshold is None:
            empty_threshold = 2 if fetcher.may_return_stale else 1
        self.empty_threshold = empty_threshold

    def walk(
        self, partition: Partition, cursor: PageCursor, token: CancellationToken | None = None
    ) -> PartitionWalk:
        """Start (or resume at ``cursor.page_number``) a walk over ``partition``."""
        return PartitionWalk(
            walker=self,
            partition=partition,
            cursor=cursor,
            token=token or CancellationToken(),
        )

    async def _pages(self, walk: PartitionWalk) -> AsyncIterator[ListingPage]:
        partition, cursor, token = walk.partition, walk.cursor, walk.token
        page = cursor.page_number
        empty_run = 0
        max_pages = self.config.max_pages

        while True:
            if token.cancelled:
                walk.ended_by = "stopped"
                return
            if max_pages and page > max_pages:
                logger.warning(
                    "%s: reached the %d page limit, treating pagination as ended",
                    partition.name,
                    max_pages,
                )
                walk.completed, walk.ended_by = True, "max_pages"
                return

            url = page_url(partition.url, page, self.config.page_path)
            logger.info("Scraping %s page %d: %s", partition.name, page, url)
            outcome = await self.retry.fetch(self.fetcher, url)

            if isinstance(outcome, TerminalFailure):
                if outcome.not_found:
                    logger.info("%s: page %d not found, pagination ended", partition.name, page)
                    cursor.record_fetch(PageOutcome.NOT_FOUND)
                    walk.completed, walk.ended_by = True, "not_found"
                    return
                cursor.record_fetch(PageOutcome.FAILED)
                walk.failure, walk.ended_by = outcome, "failed"
                logger.error(
                    "%s: page %d failed after %d attempt(s): %s",
                    partition.name,
                    page,
                    outcome.attempts,
                    outcome.describe(),
                )
                self.events.emit(
                    ItemError(
                        category=outcome.category,
                        message=f"Listing page failed: {outcome.describe()}",
                        partition_id=partition.id,
                        url=url,
                        page_number=page,
                        attempts=outcome.attempts,
                    )
                )
                return

            walk.pages_fetched += 1
            try:
                links = self.extractor.extract_listing(outcome.html, outcome.final_url or url)
            except Exception as e:
                logger.warning("%s: could not parse listing page %d: %s", partition.name, page, e)
                self.events.emit(
                    ItemError(
                        category=ErrorCategory.EXTRACTION,
                        message=f"Listing page could not be parsed: {e}",
                        partition_id=partition.id,
                        url=url,
                        page_number=page,
                        attempts=outcome.attempts,
                    )
                )
                links = []

            # Emptiness is judged against this walk only; links already in the
            # dedup set still mean the site has more pages.
            unseen = [link for link in links if normalize_url(link) not in walk.seen]

            if not unseen:
                cursor.record_fetch(PageOutcome.EMPTY)
                empty_run += 1
                self.events.emit(
                    PageScraped(
                        partition_id=partition.id,
                        page_number=page,
                        links_found=len(links),
                        new_links=0,
                        succeeded=0,
                        failed=0,
                        skipped=len(links),
                    )
                )
                if empty_run >= self.empty_threshold:
                    logger.info(
                        "%s: %d consecutive page(s) without new links, pagination ended at page %d",
                        partition.name,
                        empty_run,
                        page,
                    )
                    walk.completed, walk.ended_by = True, "empty"
                    return
                logger.info("%s: no new links on page %d, checking the next page", partition.name, page)
            else:
                empty_run = 0
                new_links = self.dedup.filter_new(unseen)
                cursor.record_fetch(PageOutcome.OK)
                cursor.links_found += len(new_links)
                walk.seen.update(normalize_url(link) for link in unseen)
                yield ListingPage(page_number=page, url=url, links=links, new_links=new_links)

            page += 1
            delay = self.config.page_delay
            if self.config.page_jitter:
                delay += random.uniform(0, self.config.page_jitter)
            if await token.sleep(delay):
                walk.ended_by = "stopped"
                return
