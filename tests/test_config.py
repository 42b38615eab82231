from pathlib import Path

import pytest
from pydantic import ValidationError

from listing_crawler.config import AppConfig, OutputFormat


def test_defaults():
    config = AppConfig()
    assert config.retry.max_attempts == 3
    assert config.crawl.max_concurrent == 5
    assert config.crawl.page_path == "page/{page}/"
    assert config.crawl.empty_page_threshold is None
    assert config.output.format == OutputFormat.CSV


def test_bounds_are_validated():
    with pytest.raises(ValidationError):
        AppConfig.model_validate({"crawl": {"max_concurrent": 0}})
    with pytest.raises(ValidationError):
        AppConfig.model_validate({"retry": {"max_attempts": 0}})


def test_toml_round_trip(tmp_path):
    config = AppConfig.model_validate(
        {
            "preset": "tribe-events",
            "partitions_file": "states.json",
            "crawl": {"max_concurrent": 8, "page_delay": 2.5},
            "output": {"path": "out/shows.jsonl", "format": "jsonl"},
            "extractor": {"field_selectors": {"title": "h1", "date": "abbr.date@title"}},
        }
    )
    path = tmp_path / "listing-crawler.toml"
    path.write_text(config.to_toml(), encoding="utf-8")

    loaded = AppConfig.from_toml(path)

    assert loaded.preset == "tribe-events"
    assert loaded.partitions_file == Path("states.json")
    assert loaded.crawl.max_concurrent == 8
    assert loaded.crawl.page_delay == 2.5
    assert loaded.output.format == OutputFormat.JSONL
    assert loaded.extractor.field_selectors["date"] == "abbr.date@title"
    assert loaded.fetcher.headers == config.fetcher.headers


def test_toml_sections_are_nested():
    text = AppConfig().to_toml()
    assert "[crawl]" in text
    assert "[fetcher.headers]" in text
    assert '"Accept-Language"' not in text
