"""Configuration management with Pydantic models."""

from enum import Enum
from pathlib import Path

from pydantic import BaseModel, Field


class OutputFormat(str, Enum):
    """Record sink format."""

    CSV = "csv"
    JSONL = "jsonl"


class FetcherConfig(BaseModel):
    """Configuration for page fetching."""

    use_js: bool = False
    browser_fallback: bool = False
    timeout_ms: int = Field(default=30000, ge=1000, le=120000)
    user_agent: str = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"
        " (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    )
    headers: dict[str, str] = Field(
        default_factory=lambda: {
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
            "Accept-Language": "en-US,en;q=0.9",
        }
    )
    wait_after_load_ms: int = Field(default=500, ge=0, le=10000)
    wait_selector: str | None = None
    page_pool_size: int = Field(default=3, ge=1, le=20)


class RetryConfig(BaseModel):
    """Configuration for retrying transient failures."""

    max_attempts: int = Field(default=3, ge=1, le=10)
    base_delay: float = Field(default=1.0, ge=0.0, le=30.0)
    backoff_multiplier: float = Field(default=2.0, ge=1.0, le=10.0)
    max_delay: float = Field(default=60.0, ge=0.0, le=600.0)
    jitter: float = Field(default=0.0, ge=0.0, le=5.0)
    sink_attempts: int = Field(default=3, ge=1, le=10)
    sink_retry_delay: float = Field(default=0.5, ge=0.0, le=30.0)


class CrawlConfig(BaseModel):
    """Configuration for pagination and detail-page scheduling."""

    max_concurrent: int = Field(default=5, ge=1, le=50)
    request_delay: float = Field(default=0.1, ge=0.0, le=60.0)
    page_delay: float = Field(default=1.0, ge=0.0, le=60.0)
    page_jitter: float = Field(default=0.0, ge=0.0, le=10.0)
    page_path: str = "page/{page}/"
    empty_page_threshold: int | None = Field(default=None, ge=1, le=10)
    partition_concurrency: int = Field(default=1, ge=1, le=20)
    max_pages: int = Field(default=0, ge=0)  # 0 = unlimited


class ExtractorConfig(BaseModel):
    """CSS selectors used to pull links and record fields out of pages.

    A field selector may end in ``@attr`` to read an attribute instead of the
    element text, e.g. ``"abbr.date@title"``.
    """

    listing_link_selector: str = "a[href]"
    field_selectors: dict[str, str] = Field(default_factory=lambda: {"title": "h1"})
    required_fields: list[str] = Field(default_factory=lambda: ["title"])
    remove_selectors: list[str] = Field(default_factory=lambda: ["script", "style", "noscript"])


class OutputConfig(BaseModel):
    """Configuration for the record sink."""

    path: Path = Path("./output/records.csv")
    format: OutputFormat = OutputFormat.CSV


class CheckpointConfig(BaseModel):
    """Configuration for progress checkpoints."""

    path: Path = Path("./output/checkpoint.json")


class AppConfig(BaseModel):
    """Main application configuration."""

    partitions_file: Path | None = None
    fetcher: FetcherConfig = Field(default_factory=FetcherConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    crawl: CrawlConfig = Field(default_factory=CrawlConfig)
    extractor: ExtractorConfig = Field(default_factory=ExtractorConfig)
    output: OutputConfig = Field(default_factory=OutputConfig)
    checkpoint: CheckpointConfig = Field(default_factory=CheckpointConfig)
    preset: str | None = None  # Site preset name
    verbose: bool = False

    @classmethod
    def from_toml(cls, path: Path) -> "AppConfig":
        """Load config from a TOML file."""
        try:
            import tomllib  # type: ignore[import-not-found]
        except ModuleNotFoundError:
            import tomli as tomllib  # type: ignore[import-not-found]
        with open(path, "rb") as f:
            data = tomllib.load(f)
        return cls.model_validate(data)

    def to_toml(self) -> str:
        """Serialize config to TOML format."""
        data = self.model_dump(mode="json", exclude_none=True)
        return _dict_to_toml(data)


def _toml_key(k: str) -> str:
    if k.replace("_", "").replace("-", "").isalnum():
        return k
    return _toml_value(k)


def _toml_value(v: object) -> str:
    """Format a Python value as a TOML literal."""
    if isinstance(v, bool):
        return "true" if v else "false"
    if isinstance(v, int):
        return str(v)
    if isinstance(v, float):
        return f"{v}"
    if isinstance(v, str):
        escaped = v.replace("\\", "\\\\").replace('"', '\\"')
        return f'"{escaped}"'
    if isinstance(v, list):
        items = ", ".join(_toml_value(i) for i in v)
        return f"[{items}]"
    return f'"{v}"'


def _dict_to_toml(data: dict, prefix: str = "") -> str:
    """Convert a nested dict to a TOML string, recursing into sub-tables."""
    lines: list[str] = []
    for k, v in data.items():
        if not isinstance(v, dict):
            lines.append(f"{_toml_key(k)} = {_toml_value(v)}")
    for k, v in data.items():
        if isinstance(v, dict):
            section = f"{prefix}.{_toml_key(k)}" if prefix else _toml_key(k)
            lines.append(f"\n[{section}]")
            body = _dict_to_toml(v, section).rstrip("\n")
            if body:
                lines.append(body)
    return "\n".join(lines) + "\n"
