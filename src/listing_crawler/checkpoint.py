"""Durable crawl progress: models and the atomic checkpoint file."""

import logging
import os
import tempfile
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError

from listing_crawler.errors import CheckpointFailure

logger = logging.getLogger(__name__)

CHECKPOINT_VERSION = 1


class PageOutcome(str, Enum):
    """Result of the most recent listing-page fetch for a partition."""

    PENDING = "pending"
    OK = "ok"
    EMPTY = "empty"
    NOT_FOUND = "not_found"
    FAILED = "failed"


class PageCursor(BaseModel):
    """Pagination progress within one partition.

    ``page_number`` is the first page whose links have not all been
    scheduled yet, i.e. where a resumed run starts. It never decreases.
    """

    partition_id: str
    page_number: int = Field(default=1, ge=1)
    last_outcome: PageOutcome = PageOutcome.PENDING
    pages_fetched: int = 0
    links_found: int = 0
    records_written: int = 0
    updated_at: datetime | None = None

    def record_fetch(self, outcome: PageOutcome) -> None:
        self.last_outcome = outcome
        if outcome in (PageOutcome.OK, PageOutcome.EMPTY):
            self.pages_fetched += 1
        self.updated_at = datetime.now(timezone.utc)

    def advance_past(self, page: int) -> None:
        """Mark every page up to and including ``page`` as fully scheduled."""
        self.page_number = max(self.page_number, page + 1)
        self.updated_at = datetime.now(timezone.utc)


class CheckpointState(BaseModel):
    """Everything needed to resume a run where it left off."""

    version: int = CHECKPOINT_VERSION
    partition_index: int = 0
    cursors: dict[str, PageCursor] = Field(default_factory=dict)
    completed_partitions: list[str] = Field(default_factory=list)
    dedup: list[str] = Field(default_factory=list)
    failed_items: dict[str, str] = Field(default_factory=dict)  # url -> partition id
    records_found: int = 0
    records_processed: int = 0
    saved_at: datetime | None = None

    def cursor_for(self, partition_id: str) -> PageCursor:
        cursor = self.cursors.get(partition_id)
        if cursor is None:
            cursor = PageCursor(partition_id=partition_id)
            self.cursors[partition_id] = cursor
        return cursor

    def is_completed(self, partition_id: str) -> bool:
        return partition_id in self.completed_partitions

    def mark_completed(self, partition_id: str) -> bool:
        """Record completion once; returns False if it was already recorded."""
        if partition_id in self.completed_partitions:
            return False
        self.completed_partitions.append(partition_id)
        return True


class CheckpointStore:
    """Reads and writes ``CheckpointState`` as a JSON file.

    Writes go to a temporary file in the same directory which then replaces
    the previous checkpoint, so a crash mid-write leaves the old file intact.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self.save_count = 0

    def exists(self) -> bool:
        return self.path.exists()

    def load(self) -> CheckpointState | None:
        """Load the checkpoint; a missing or unreadable file means a fresh start."""
        if not self.path.exists():
            logger.info("No checkpoint at %s, starting from the beginning", self.path)
            return None
        try:
            raw = self.path.read_text(encoding="utf-8")
            state = CheckpointState.model_validate_json(raw)
        except (OSError, UnicodeDecodeError, ValidationError) as e:
            logger.warning(
                "Checkpoint at %s is unreadable (%s), starting from the beginning",
                self.path,
                e.__class__.__name__,
            )
            return None
        if state.version != CHECKPOINT_VERSION:
            logger.warning(
                "Checkpoint at %s has version %d (expected %d), starting from the beginning",
                self.path,
                state.version,
                CHECKPOINT_VERSION,
            )
            return None
        logger.info(
            "Loaded checkpoint from %s (saved %s, %d partitions completed, %d records)",
            self.path,
            state.saved_at.isoformat() if state.saved_at else "unknown",
            len(state.completed_partitions),
            len(state.dedup),
        )
        return state

    def save(self, state: CheckpointState) -> None:
        """Atomically replace the checkpoint file.

        Raises ``CheckpointFailure`` if the file cannot be written.
        """
        state.saved_at = datetime.now(timezone.utc)
        payload = state.model_dump_json(indent=2)
        tmp_name: str | None = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "w",
                encoding="utf-8",
                dir=str(self.path.parent),
                prefix=f".{self.path.name}.",
                suffix=".tmp",
                delete=False,
            ) as tmp:
                tmp_name = tmp.name
                tmp.write(payload)
                tmp.flush()
                os.fsync(tmp.fileno())
            os.replace(tmp_name, self.path)
            tmp_name = None
        except OSError as e:
            raise CheckpointFailure(f"Could not write checkpoint {self.path}: {e}") from e
        finally:
            if tmp_name is not None:
                try:
                    os.unlink(tmp_name)
                except OSError:
                    logger.debug("Could not remove temporary checkpoint %s", tmp_name)
        self.save_count += 1
        logger.debug("Checkpoint saved to %s", self.path)

    def clear(self) -> bool:
        """Remove the checkpoint file; returns True if one existed."""
        existed = self.path.exists()
        self.path.unlink(missing_ok=True)
        for leftover in self.path.parent.glob(f".{self.path.name}.*.tmp"):
            leftover.unlink(missing_ok=True)
        if existed:
            logger.info("Removed checkpoint %s", self.path)
        return existed
