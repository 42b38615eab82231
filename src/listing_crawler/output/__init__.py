"""Record sinks."""

from pathlib import Path

from listing_crawler.config import OutputConfig, OutputFormat
from listing_crawler.output.base import BaseSink
from listing_crawler.output.csv_sink import CsvSink
from listing_crawler.output.jsonl_sink import JsonlSink


def create_sink(config: OutputConfig, field_names: list[str]) -> BaseSink:
    """Create the sink for the configured output format."""
    if config.format == OutputFormat.JSONL:
        return JsonlSink(Path(config.path))
    return CsvSink(Path(config.path), field_names)


__all__ = [
    "BaseSink",
    "CsvSink",
    "JsonlSink",
    "create_sink",
]
