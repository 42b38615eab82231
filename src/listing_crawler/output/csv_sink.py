"""CSV record sink."""

import csv
import io
from pathlib import Path

from listing_crawler.extractor.base import Record
from listing_crawler.output.base import BaseSink


class CsvSink(BaseSink):
    """Write records as CSV rows: partition, one column per field, then URL."""

    def __init__(self, path: Path, field_names: list[str]):
        super().__init__(path)
        self.field_names = list(field_names)
        self.columns = ["partition", *self.field_names, "url"]

    def _row(self, values: dict[str, str | None]) -> str:
        buf = io.StringIO()
        writer = csv.DictWriter(
            buf, fieldnames=self.columns, extrasaction="ignore", lineterminator="\n"
        )
        writer.writerow(values)
        return buf.getvalue()

    def format_record(self, record: Record) -> str:
        values: dict[str, str | None] = dict(record.fields)
        values["partition"] = record.partition_name or record.partition_id
        values["url"] = record.url
        return self._row(values)

    def parse_urls(self, text: str) -> list[str | None]:
        return [row.get("url") for row in csv.DictReader(io.StringIO(text, newline=""))]

    async def _write_preamble(self) -> None:
        assert self._file is not None
        await self._file.write(self._row({c: c for c in self.columns}))
        await self._file.flush()
