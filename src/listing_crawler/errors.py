"""Error taxonomy for the crawl engine."""

from enum import Enum

from pydantic import BaseModel


class ErrorCategory(str, Enum):
    """Category of an error for reporting and retry decisions."""

    TIMEOUT = "timeout"
    RATE_LIMITED = "rate_limited"
    NOT_FOUND = "not_found"
    CLIENT_ERROR = "client_error"
    SERVER_ERROR = "server_error"
    CONNECTION = "connection"
    EXTRACTION = "extraction"
    PERSISTENCE = "persistence"
    CHECKPOINT = "checkpoint"
    UNKNOWN = "unknown"


ERROR_SUGGESTIONS: dict[ErrorCategory, str] = {
    ErrorCategory.TIMEOUT: "Try --delay 2.0 or raise fetcher.timeout_ms",
    ErrorCategory.RATE_LIMITED: "Try --delay 2.0 and reduce --max-concurrent",
    ErrorCategory.NOT_FOUND: "Check the partitions file for stale URLs",
    ErrorCategory.CLIENT_ERROR: "Check the URL is accessible in a browser",
    ErrorCategory.SERVER_ERROR: "The server may be overloaded, resume later with --resume",
    ErrorCategory.CONNECTION: "Check your network connection and the site URL",
    ErrorCategory.EXTRACTION: "The page template may have changed; check the preset selectors",
    ErrorCategory.PERSISTENCE: "Check free disk space and permissions on the output path",
    ErrorCategory.CHECKPOINT: "Resume safety is degraded; check the checkpoint path",
    ErrorCategory.UNKNOWN: "Rerun with --verbose for details",
}


def categorize_error(status_code: int, error_msg: str, stage: str = "fetch") -> ErrorCategory:
    """Classify an error into a reporting category."""
    if status_code == 429:
        return ErrorCategory.RATE_LIMITED
    if status_code == 404 or status_code == 410:
        return ErrorCategory.NOT_FOUND
    if status_code >= 500:
        return ErrorCategory.SERVER_ERROR
    if 400 <= status_code < 500:
        return ErrorCategory.CLIENT_ERROR
    msg_lower = error_msg.lower()
    if "timeout" in msg_lower or "timed out" in msg_lower:
        return ErrorCategory.TIMEOUT
    if any(
        kw in msg_lower
        for kw in ("connect", "refused", "reset", "dns", "network", "socket")
    ):
        return ErrorCategory.CONNECTION
    if stage == "extract":
        return ErrorCategory.EXTRACTION
    if stage == "persist":
        return ErrorCategory.PERSISTENCE
    if stage == "checkpoint":
        return ErrorCategory.CHECKPOINT
    return ErrorCategory.UNKNOWN


class TerminalFailure(BaseModel):
    """A fetch that exhausted its retries or was not retryable."""

    url: str
    status_code: int = 0
    error: str = ""
    attempts: int = 1
    category: ErrorCategory = ErrorCategory.UNKNOWN

    @property
    def not_found(self) -> bool:
        return self.category == ErrorCategory.NOT_FOUND

    def describe(self) -> str:
        if self.error:
            return self.error
        return f"HTTP {self.status_code}"


class CrawlError(Exception):
    """Base class for crawl engine errors."""


class ExtractionMismatch(CrawlError):
    """A page was fetched but the expected fields were absent."""

    def __init__(self, url: str, missing: list[str] | None = None):
        self.url = url
        self.missing = missing or []
        detail = f" (missing: {', '.join(self.missing)})" if self.missing else ""
        super().__init__(f"No record could be extracted from {url}{detail}")


class PersistenceFailure(CrawlError):
    """The sink refused a record after bounded retries. Fatal to the run."""

    def __init__(self, url: str, attempts: int, cause: BaseException | None = None):
        self.url = url
        self.attempts = attempts
        self.cause = cause
        super().__init__(
            f"Failed to write record for {url} after {attempts} attempt(s): {cause}"
        )


class CheckpointFailure(CrawlError):
    """Progress could not be written to the checkpoint file."""
