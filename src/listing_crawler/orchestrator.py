"""Main orchestrator that drives partitions, pagination and checkpoints."""

import asyncio
import logging
from contextlib import aclosing
from enum import Enum

from pydantic import BaseModel

from listing_crawler.checkpoint import CheckpointState, CheckpointStore, PageCursor
from listing_crawler.config import AppConfig
from listing_crawler.dedup import DedupSet
from listing_crawler.errors import CheckpointFailure, ErrorCategory, PersistenceFailure
from listing_crawler.events import (
    CancellationToken,
    EventEmitter,
    EventListener,
    ItemError,
    PageScraped,
    PartitionCompleted,
    RunCompleted,
    RunFailed,
    RunStats,
    RunStopped,
)
from listing_crawler.extractor import BaseExtractor, SelectorExtractor
from listing_crawler.fetcher import BaseFetcher, FallbackFetcher, HttpFetcher, PlaywrightFetcher
from listing_crawler.fetcher.base import FetchResult
from listing_crawler.output import BaseSink, create_sink
from listing_crawler.partitions import Partition
from listing_crawler.presets import PresetRegistry, apply_preset
from listing_crawler.retry import RetryController, Sleep
from listing_crawler.scheduler import WorkCounts, WorkScheduler
from listing_crawler.utils.rate_limiter import RateLimiter
from listing_crawler.walker import ListingPage, PaginationWalker

logger = logging.getLogger(__name__)


class RunState(str, Enum):
    """Lifecycle of an orchestrator run."""

    IDLE = "idle"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"
    COMPLETED = "completed"
    FAILED = "failed"


class RunStatus(BaseModel):
    """Snapshot returned by ``Orchestrator.status()``."""

    state: RunState
    partitions_total: int
    partitions_done: int
    records_found: int
    records_processed: int
    current_partition: str | None = None
    failed_items: int = 0
    partition_failures: int = 0
    resume_degraded: bool = False


class Orchestrator:
    """Coordinates the crawl of every partition.

    All shared progress (checkpoint state and dedup set) is mutated only from
    the coordinating task; fetch workers report results back to it.
    """

    def __init__(
        self,
        config: AppConfig,
        partitions: list[Partition],
        fetcher: BaseFetcher | None = None,
        extractor: BaseExtractor | None = None,
        sink: BaseSink | None = None,
        store: CheckpointStore | None = None,
        listeners: list[EventListener] | None = None,
        sleep: Sleep = asyncio.sleep,
    ):
        if config.preset:
            preset = PresetRegistry.get(config.preset)
            if preset is None:
                raise ValueError(f"Unknown preset: {config.preset}")
            config = apply_preset(config, preset)
        self.config = config
        self.partitions = list(partitions)

        self.extractor = extractor or SelectorExtractor(config.extractor)
        self.fetcher = fetcher or self._create_fetcher()
        self.sink = sink or create_sink(config.output, self.extractor.field_names())
        self.store = store or CheckpointStore(config.checkpoint.path)
        self.retry = RetryController(config.retry, sleep=sleep)
        self.events = EventEmitter(listeners)
        self.token = CancellationToken()

        self.state = RunState.IDLE
        self.checkpoint = CheckpointState()
        self.dedup = DedupSet()
        self.resume_degraded = False
        self.partition_failures = 0
        self.error: BaseException | None = None
        self._active: dict[str, Partition] = {}
        self._claimed: set[str] = set()
        self._attempted: set[str] = set()

    # -- control surface -------------------------------------------------

    def stop(self) -> None:
        """Request a cooperative stop; in-flight batches finish first."""
        if self.state == RunState.RUNNING:
            logger.info("Stop requested, finishing in-flight work")
            self.state = RunState.STOPPING
        self.token.cancel()

    def status(self) -> RunStatus:
        return RunStatus(
            state=self.state,
            partitions_total=len(self.partitions),
            partitions_done=sum(
                1 for p in self.partitions if self.checkpoint.is_completed(p.id)
            ),
            records_found=self.checkpoint.records_found,
            records_processed=self.checkpoint.records_processed,
            current_partition=", ".join(p.name for p in self._active.values()) or None,
            failed_items=len(self.checkpoint.failed_items),
            partition_failures=self.partition_failures,
            resume_degraded=self.resume_degraded,
        )

    def subscribe(self, listener: EventListener) -> None:
        self.events.subscribe(listener)

    async def start(self, resume: bool = False) -> RunState:
        """Run the crawl to completion, a requested stop, or a fatal error.

        With ``resume`` the checkpoint is loaded; a missing or unreadable one
        means starting over, skipping records already in the output. Without
        it, prior progress and output are discarded. Fatal errors are re-raised
        after a best-effort checkpoint save.
        """
        if self.state != RunState.IDLE:
            raise RuntimeError(f"Orchestrator already {self.state.value}")
        self.state = RunState.RUNNING

        fresh = True
        if resume:
            loaded = self.store.load()
            if loaded is not None:
                self.checkpoint = loaded
                self.dedup = DedupSet(loaded.dedup)
                fresh = False
        else:
            self.store.clear()

        try:
            async with self.fetcher, self.sink:
                if not resume:
                    await self.sink.reset()
                elif fresh:
                    await self._adopt_existing_output()
                if fresh:
                    self._save_checkpoint()
                await self._run_partitions()
        except Exception as e:
            self.error = e
            self.state = RunState.FAILED
            logger.exception("Crawl failed: %s", e)
            self._save_checkpoint()
            self.events.emit(RunFailed(stats=self._stats(), error=str(e)))
            raise

        self._active.clear()
        self._save_checkpoint()
        if self.token.cancelled:
            self.state = RunState.STOPPED
            logger.info("Crawl stopped, progress saved to %s", self.store.path)
            self.events.emit(RunStopped(stats=self._stats()))
        else:
            self.state = RunState.COMPLETED
            logger.info("Crawl completed")
            self.events.emit(RunCompleted(stats=self._stats()))
        return self.state

    async def _adopt_existing_output(self) -> None:
        """Treat records already in the output as done when no checkpoint survived."""
        urls = await self.sink.existing_urls()
        if not urls:
            return
        for url in urls:
            self.dedup.add(url)
        self.checkpoint.records_processed = len(self.dedup)
        logger.warning(
            "No usable checkpoint at %s; skipping the %d record(s) already in the output",
            self.store.path,
            len(self.dedup),
        )

    # -- partition loop --------------------------------------------------

    def _partition_order(self) -> list[tuple[int, Partition]]:
        """Partitions from the resumed index onward, then any earlier unfinished ones."""
        indexed = list(enumerate(self.partitions))
        start = min(self.checkpoint.partition_index, len(indexed))
        return indexed[start:] + indexed[:start]

    async def _run_partitions(self) -> None:
        order = [
            (i, p) for i, p in self._partition_order() if self._has_work(p)
        ]
        concurrency = self.config.crawl.partition_concurrency

        if concurrency <= 1:
            for index, partition in order:
                if self.token.cancelled:
                    return
                self.checkpoint.partition_index = index
                await self._run_partition_guarded(partition)
            return

        semaphore = asyncio.Semaphore(concurrency)

        async def run_one(index: int, partition: Partition) -> None:
            async with semaphore:
                if self.token.cancelled:
                    return
                self.checkpoint.partition_index = max(self.checkpoint.partition_index, index)
                await self._run_partition_guarded(partition)

        # Let sibling partitions reach a poll point before a fatal error propagates.
        results = await asyncio.gather(*(run_one(i, p) for i, p in order), return_exceptions=True)
        for result in results:
            if isinstance(result, BaseException):
                raise result

    def _has_work(self, partition: Partition) -> bool:
        if not self.checkpoint.is_completed(partition.id):
            return True
        if partition.id in self.checkpoint.failed_items.values():
            return True
        logger.info("Skipping already completed partition: %s", partition.name)
        return False

    async def _run_partition_guarded(self, partition: Partition) -> None:
        """Run one partition; its unexpected errors do not end the run."""
        self._active[partition.id] = partition
        try:
            await self._run_partition(partition)
        except PersistenceFailure:
            self.token.cancel("record could not be written")
            raise
        except Exception as e:
            self.partition_failures += 1
            logger.exception("Partition %s failed: %s", partition.name, e)
            self.events.emit(
                ItemError(
                    category=ErrorCategory.UNKNOWN,
                    message=f"Partition failed: {type(e).__name__}: {e}",
                    partition_id=partition.id,
                )
            )
            self._save_checkpoint()
        finally:
            self._active.pop(partition.id, None)

    async def _run_partition(self, partition: Partition) -> None:
        cursor = self.checkpoint.cursor_for(partition.id)
        if cursor.page_number > 1:
            logger.info("Resuming %s from page %d", partition.name, cursor.page_number)
        else:
            logger.info("Starting partition: %s", partition.name)

        fetcher = self._listing_fetcher()
        walker = PaginationWalker(
            fetcher,
            self.extractor,
            self.retry,
            self.dedup,
            self.config.crawl,
            self.events,
        )
        scheduler = WorkScheduler(
            self.fetcher,
            self.extractor,
            self.retry,
            self.dedup,
            self.sink,
            self.events,
            rate_limiter=RateLimiter(
                self.config.crawl.request_delay, self.config.crawl.max_concurrent
            ),
            retry_config=self.config.retry,
            claimed=self._claimed,
            attempted=self._attempted,
        )

        await self._retry_failed_items(partition, scheduler)
        if self.checkpoint.is_completed(partition.id):
            self._save_checkpoint()
            return

        walk = walker.walk(partition, cursor, self.token)
        async with aclosing(walk.pages()) as pages:
            async for page in pages:
                counts = await scheduler.process(
                    page.new_links,
                    partition,
                    self.config.crawl.max_concurrent,
                    token=self.token,
                    on_batch=lambda batch, last, page=page: self._on_batch(
                        partition, cursor, page, batch, last
                    ),
                    page_number=page.page_number,
                )
                if not counts.stopped and cursor.page_number <= page.page_number:
                    # Every link was already known, so no batch advanced the cursor.
                    self._finish_page(cursor, page)
                    self._save_checkpoint()
                self.events.emit(
                    PageScraped(
                        partition_id=partition.id,
                        page_number=page.page_number,
                        links_found=len(page.links),
                        new_links=len(page.new_links),
                        succeeded=counts.succeeded,
                        failed=counts.failed,
                        skipped=counts.skipped,
                    )
                )
                if counts.stopped:
                    break

        if walk.completed:
            if self.checkpoint.mark_completed(partition.id):
                self._save_checkpoint()
                logger.info(
                    "Completed partition %s: %d page(s), %d record(s)",
                    partition.name,
                    cursor.pages_fetched,
                    cursor.records_written,
                )
                self.events.emit(
                    PartitionCompleted(
                        partition_id=partition.id,
                        pages=cursor.pages_fetched,
                        records=cursor.records_written,
                        ended_by=walk.ended_by or "empty",
                    )
                )
        else:
            self._save_checkpoint()

    async def _retry_failed_items(self, partition: Partition, scheduler: WorkScheduler) -> None:
        """Give detail pages that failed in an earlier run another try."""
        urls = [u for u, pid in self.checkpoint.failed_items.items() if pid == partition.id]
        if not urls or self.token.cancelled:
            return
        logger.info("%s: retrying %d item(s) that failed previously", partition.name, len(urls))
        cursor = self.checkpoint.cursor_for(partition.id)
        await scheduler.process(
            urls,
            partition,
            self.config.crawl.max_concurrent,
            token=self.token,
            on_batch=lambda batch, last: self._on_batch(partition, cursor, None, batch, last),
        )
        for url in urls:
            if url in self.dedup:
                self.checkpoint.failed_items.pop(url, None)

    def _on_batch(
        self,
        partition: Partition,
        cursor: PageCursor,
        page: ListingPage | None,
        batch: WorkCounts,
        last: bool,
    ) -> None:
        """Fold one finished batch into the checkpoint and persist it."""
        self.checkpoint.records_processed += batch.succeeded
        cursor.records_written += batch.succeeded
        for url in batch.succeeded_urls:
            self.checkpoint.failed_items.pop(url, None)
        for url in batch.failed_urls:
            self.checkpoint.failed_items[url] = partition.id
        if last and page is not None:
            self._finish_page(cursor, page)
        self._save_checkpoint()

    def _finish_page(self, cursor: PageCursor, page: ListingPage) -> None:
        self.checkpoint.records_found += len(page.new_links)
        cursor.advance_past(page.page_number)

    # -- helpers ---------------------------------------------------------

    def _save_checkpoint(self) -> None:
        """Persist progress; a failure degrades resume safety but not the run."""
        self.checkpoint.dedup = self.dedup.to_list()
        try:
            self.store.save(self.checkpoint)
        except CheckpointFailure as e:
            if not self.resume_degraded:
                logger.error("%s; continuing in memory, an interrupted run may redo work", e)
            self.resume_degraded = True
            self.events.emit(ItemError(category=ErrorCategory.CHECKPOINT, message=str(e)))

    def _stats(self) -> RunStats:
        status = self.status()
        return RunStats(
            partitions_total=status.partitions_total,
            partitions_done=status.partitions_done,
            records_found=status.records_found,
            records_processed=status.records_processed,
            current_partition=status.current_partition,
        )

    def _create_fetcher(self) -> BaseFetcher:
        """Create the appropriate fetcher."""
        if self.config.fetcher.use_js:
            return PlaywrightFetcher(self.config.fetcher)
        if self.config.fetcher.browser_fallback:
            return FallbackFetcher(
                self.config.fetcher,
                HttpFetcher(self.config.fetcher),
                PlaywrightFetcher(self.config.fetcher),
            )
        return HttpFetcher(self.config.fetcher)

    def _listing_fetcher(self) -> BaseFetcher:
        """Fetcher for listing pages: falls back to the browser when no links show up."""
        if isinstance(self.fetcher, FallbackFetcher):
            return self.fetcher.checking(self._has_no_links)
        return self.fetcher

    def _has_no_links(self, result: FetchResult) -> bool:
        try:
            return not self.extractor.extract_listing(result.html, result.final_url)
        except Exception:
            logger.debug("Listing link check failed for %s", result.url, exc_info=True)
            return True
