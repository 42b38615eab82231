"""JSON Lines record sink."""

import json
import logging

from listing_crawler.extractor.base import Record
from listing_crawler.output.base import BaseSink

logger = logging.getLogger(__name__)


class JsonlSink(BaseSink):
    """Write one JSON object per record."""

    def format_record(self, record: Record) -> str:
        return record.model_dump_json() + "\n"

    def parse_urls(self, text: str) -> list[str | None]:
        urls = []
        for number, line in enumerate(text.splitlines(), start=1):
            if not line.strip():
                continue
            try:
                urls.append(json.loads(line).get("url"))
            except (ValueError, AttributeError):
                logger.warning("Skipping unreadable line %d of %s", number, self.path)
        return urls
