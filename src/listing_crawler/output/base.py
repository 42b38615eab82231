"""Base class for append-only record sinks."""

import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path

import aiofiles
import aiofiles.os

from listing_crawler.extractor.base import Record

logger = logging.getLogger(__name__)


class BaseSink(ABC):
    """Append-only, line-oriented record writer.

    Each record is written as one complete line and flushed before
    ``append`` returns. A torn last line left by a crash is cut off the next
    time the sink is opened.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self.records_written = 0
        self._file = None

    async def __aenter__(self):
        self.path.parent.mkdir(parents=True, exist_ok=True)
        await self._repair_tail()
        self._file = await aiofiles.open(self.path, "a", encoding="utf-8", newline="")
        if await self._is_empty():
            await self._write_preamble()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if self._file is not None:
            await self._file.close()
            self._file = None

    async def append(self, record: Record) -> None:
        """Write one record. Raises ``OSError`` if the write fails."""
        if self._file is None:
            raise RuntimeError("Sink not opened. Use 'async with' context manager.")
        await self._file.write(self.format_record(record))
        await self._file.flush()
        self.records_written += 1

    async def reset(self) -> None:
        """Discard everything written so far."""
        if self._file is not None:
            await self._file.close()
        self._file = await aiofiles.open(self.path, "w", encoding="utf-8", newline="")
        await self._write_preamble()
        self.records_written = 0
        logger.info("Cleared output file %s", self.path)

    async def existing_urls(self) -> list[str]:
        """URLs of the records already in the file."""
        if not self.path.exists():
            return []
        async with aiofiles.open(self.path, "r", encoding="utf-8", newline="") as f:
            text = await f.read()
        return [url for url in self.parse_urls(text) if url]

    @abstractmethod
    def parse_urls(self, text: str) -> list[str | None]:
        """Read the record URLs back out of previously written output."""
        ...

    @abstractmethod
    def format_record(self, record: Record) -> str:
        """Render one record as a single newline-terminated line."""
        ...

    async def _write_preamble(self) -> None:
        """Write anything the format needs before the first record."""
        pass

    async def _is_empty(self) -> bool:
        stat = await aiofiles.os.stat(self.path)
        return stat.st_size == 0

    async def _repair_tail(self) -> None:
        """Truncate a trailing partial line left by an interrupted write."""
        if not self.path.exists():
            return
        async with aiofiles.open(self.path, "rb+") as f:
            size = await f.seek(0, os.SEEK_END)
            if size == 0:
                return
            await f.seek(size - 1)
            if await f.read(1) == b"\n":
                return
            await f.seek(0)
            data = await f.read()
            keep = data.rfind(b"\n") + 1
            await f.truncate(keep)
        logger.warning(
            "Dropped %d bytes of an incomplete record at the end of %s",
            size - keep,
            self.path,
        )
