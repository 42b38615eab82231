"""Progress events emitted by the orchestrator."""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Union

from listing_crawler.errors import ErrorCategory

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class RunStats:
    """Counters shared by the terminal run events and ``status()``."""

    partitions_total: int
    partitions_done: int
    records_found: int
    records_processed: int
    current_partition: str | None = None


@dataclass(frozen=True)
class PageScraped:
    partition_id: str
    page_number: int
    links_found: int
    new_links: int
    succeeded: int
    failed: int
    skipped: int
    at: datetime = field(default_factory=_now)


@dataclass(frozen=True)
class PartitionCompleted:
    partition_id: str
    pages: int
    records: int
    ended_by: str  # "empty", "not_found" or "max_pages"
    at: datetime = field(default_factory=_now)


@dataclass(frozen=True)
class ItemError:
    """A failure scoped to one page, work item or checkpoint write."""

    category: ErrorCategory
    message: str
    partition_id: str | None = None
    url: str | None = None
    page_number: int | None = None
    attempts: int = 0
    at: datetime = field(default_factory=_now)


@dataclass(frozen=True)
class RunCompleted:
    stats: RunStats
    at: datetime = field(default_factory=_now)


@dataclass(frozen=True)
class RunStopped:
    stats: RunStats
    at: datetime = field(default_factory=_now)


@dataclass(frozen=True)
class RunFailed:
    stats: RunStats
    error: str
    at: datetime = field(default_factory=_now)


ProgressEvent = Union[PageScraped, PartitionCompleted, ItemError, RunCompleted, RunStopped, RunFailed]

EventListener = Callable[[ProgressEvent], None]


class EventEmitter:
    """Fan out progress events to registered listeners."""

    def __init__(self, listeners: list[EventListener] | None = None):
        self._listeners: list[EventListener] = list(listeners or [])

    def subscribe(self, listener: EventListener) -> None:
        self._listeners.append(listener)

    def emit(self, event: ProgressEvent) -> None:
        for listener in self._listeners:
            try:
                listener(event)
            except Exception:
                # A broken display must not take the crawl down with it.
                logger.exception("Progress listener %r failed on %s", listener, type(event).__name__)


class CancellationToken:
    """Cooperative stop signal, polled at defined points."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: str | None = None

    def cancel(self, reason: str = "stop requested") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def sleep(self, seconds: float) -> bool:
        """Sleep up to ``seconds``; returns True if cancelled meanwhile."""
        if seconds <= 0:
            return self.cancelled
        try:
            await asyncio.wait_for(self._event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass
        return self.cancelled
