"""Bounded concurrent fetch-and-extract of detail pages."""

import asyncio
import functools
import logging
from collections.abc import Callable
from dataclasses import dataclass, field

from listing_crawler.config import RetryConfig
from listing_crawler.dedup import DedupSet
from listing_crawler.errors import (
    ErrorCategory,
    ExtractionMismatch,
    PersistenceFailure,
    TerminalFailure,
)
from listing_crawler.events import CancellationToken, EventEmitter, ItemError
from listing_crawler.extractor.base import BaseExtractor, Record
from listing_crawler.fetcher.base import BaseFetcher
from listing_crawler.output.base import BaseSink
from listing_crawler.partitions import Partition
from listing_crawler.retry import RetryController
from listing_crawler.utils.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)


@dataclass
class WorkCounts:
    """Outcome counts for a ``process`` call or one of its batches."""

    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    stopped: bool = False
    succeeded_urls: list[str] = field(default_factory=list)
    failed_urls: list[str] = field(default_factory=list)

    def merge(self, other: "WorkCounts") -> None:
        self.succeeded += other.succeeded
        self.failed += other.failed
        self.skipped += other.skipped
        self.succeeded_urls.extend(other.succeeded_urls)
        self.failed_urls.extend(other.failed_urls)


@dataclass
class WorkResult:
    """What a worker reports back; workers never touch shared state."""

    url: str
    record: Record | None = None
    failure: TerminalFailure | None = None
    mismatch: ExtractionMismatch | None = None
    attempts: int = 0


BatchCallback = Callable[[WorkCounts, bool], None]


class WorkScheduler:
    """Fetch, extract and persist detail pages with bounded concurrency.

    Links are processed in batches of ``limit``. Within a batch, workers run
    concurrently under the rate limiter and report ``WorkResult`` values; the
    calling task then writes records to the sink, adds them to the dedup set
    and invokes ``on_batch``. A record reaches the dedup set only after its
    write succeeded.

    ``claimed`` may be shared by schedulers of concurrently running
    partitions: a URL queued by one of them is skipped by the others until
    its outcome has been applied. URLs whose fetch or extraction failed are
    added to ``attempted`` and skipped for the rest of the run.
    """

    def __init__(
        self,
        fetcher: BaseFetcher,
        extractor: BaseExtractor,
        retry: RetryController,
        dedup: DedupSet,
        sink: BaseSink,
        events: EventEmitter,
        rate_limiter: RateLimiter | None = None,
        retry_config: RetryConfig | None = None,
        claimed: set[str] | None = None,
        attempted: set[str] | None = None,
    ):
        self.fetcher = fetcher
        self.extractor = extractor
        self.retry = retry
        self.dedup = dedup
        self.sink = sink
        self.events = events
        self.rate_limiter = rate_limiter
        self.retry_config = retry_config or retry.config
        self.claimed = claimed if claimed is not None else set()
        self.attempted = attempted if attempted is not None else set()

    async def process(
        self,
        links: list[str],
        partition: Partition,
        limit: int,
        token: CancellationToken | None = None,
        on_batch: BatchCallback | None = None,
        page_number: int | None = None,
    ) -> WorkCounts:
        """Process ``links`` and wait for all of them.

        Stops between batches once ``token`` is cancelled; the batch in flight
        always finishes. Raises ``PersistenceFailure`` after the batch in
        which a record could not be written, once the rest of that batch has
        been persisted and ``on_batch`` has run.
        """
        if limit < 1:
            raise ValueError("limit must be at least 1")
        limiter = self.rate_limiter or RateLimiter(0.0, limit)

        total = WorkCounts()
        pending: list[str] = []
        queued: set[str] = set()
        for url in links:
            key = DedupSet.canonical(url)
            if url in self.dedup or key in queued or key in self.claimed or key in self.attempted:
                total.skipped += 1
                continue
            queued.add(key)
            pending.append(url)

        self.claimed.update(queued)
        try:
            batches = [pending[i : i + limit] for i in range(0, len(pending), limit)]
            for index, batch in enumerate(batches):
                if token is not None and token.cancelled:
                    logger.info(
                        "%s: stop requested, leaving %d link(s) for the next run",
                        partition.name,
                        sum(len(b) for b in batches[index:]),
                    )
                    total.stopped = True
                    break

                results = await asyncio.gather(
                    *(self._work(url, partition, limiter) for url in batch)
                )
                counts, persist_error = await self._apply(results, partition, page_number)
                total.merge(counts)

                last = index == len(batches) - 1 and persist_error is None
                if on_batch is not None:
                    on_batch(counts, last)
                if persist_error is not None:
                    raise persist_error
        finally:
            # Links never reached because of a stop or an error.
            self.claimed.difference_update(queued)

        return total

    async def _work(self, url: str, partition: Partition, limiter: RateLimiter) -> WorkResult:
        """Fetch and extract one detail page."""
        async with limiter:
            outcome = await self.retry.fetch(self.fetcher, url)

        if isinstance(outcome, TerminalFailure):
            if outcome.category == ErrorCategory.RATE_LIMITED:
                limiter.observe(rate_limited=True)
            return WorkResult(url=url, failure=outcome, attempts=outcome.attempts)

        limiter.observe(rate_limited=False)
        try:
            record = self.extractor.extract_detail(outcome.html, outcome.final_url or url)
        except Exception as e:
            logger.warning("Extractor raised on %s: %s", url, e, exc_info=True)
            record = None
        if record is None:
            return WorkResult(url=url, mismatch=ExtractionMismatch(url), attempts=outcome.attempts)

        record = record.model_copy(
            update={"url": url, "partition_id": partition.id, "partition_name": partition.name}
        )
        return WorkResult(url=url, record=record, attempts=outcome.attempts)

    async def _apply(
        self, results: list[WorkResult], partition: Partition, page_number: int | None
    ) -> tuple[WorkCounts, PersistenceFailure | None]:
        """Persist successful results in order and tally the batch."""
        counts = WorkCounts()
        persist_error: PersistenceFailure | None = None

        for result in results:
            key = DedupSet.canonical(result.url)
            if result.record is None:
                counts.failed += 1
                counts.failed_urls.append(result.url)
                self.attempted.add(key)
                self.claimed.discard(key)
                if result.failure is not None:
                    category = result.failure.category
                    message = f"Detail page failed: {result.failure.describe()}"
                else:
                    category = ErrorCategory.EXTRACTION
                    message = str(result.mismatch)
                logger.warning("%s: %s (%s)", partition.name, message, result.url)
                self.events.emit(
                    ItemError(
                        category=category,
                        message=message,
                        partition_id=partition.id,
                        url=result.url,
                        page_number=page_number,
                        attempts=result.attempts,
                    )
                )
                continue

            attempts = self.retry_config.sink_attempts
            try:
                await self.retry.call(
                    functools.partial(self.sink.append, result.record),
                    attempts=attempts,
                    delay=self.retry_config.sink_retry_delay,
                )
            except OSError as e:
                counts.failed += 1
                logger.error("Could not write record for %s: %s", result.url, e)
                self.events.emit(
                    ItemError(
                        category=ErrorCategory.PERSISTENCE,
                        message=f"Record write failed: {e}",
                        partition_id=partition.id,
                        url=result.url,
                        page_number=page_number,
                        attempts=attempts,
                    )
                )
                self.claimed.discard(key)
                if persist_error is None:
                    persist_error = PersistenceFailure(result.url, attempts, e)
                continue

            self.dedup.add(result.url)
            self.claimed.discard(key)
            counts.succeeded += 1
            counts.succeeded_urls.append(result.url)

        return counts, persist_error
