import asyncio

import pytest

from listing_crawler.config import RetryConfig
from listing_crawler.errors import ErrorCategory, TerminalFailure
from listing_crawler.fetcher.base import FetchResult
from listing_crawler.retry import RetryController

URL = "https://shows.example.com/event/a/"


def result(status_code: int, error: str | None = None, retry_after: float | None = None) -> FetchResult:
    return FetchResult(
        url=URL, final_url=URL, html="<html></html>", status_code=status_code,
        error=error, retry_after=retry_after,
    )


class Script:
    """Returns queued results in order and records sleeps."""

    def __init__(self, *results):
        self.results = list(results)
        self.calls = 0
        self.sleeps: list[float] = []

    async def __call__(self):
        self.calls += 1
        item = self.results.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)


def controller(script: Script, **overrides) -> RetryController:
    config = RetryConfig(**{"base_delay": 1.0, "backoff_multiplier": 2.0, **overrides})
    return RetryController(config, sleep=script.sleep)


def test_success_on_first_attempt():
    script = Script(result(200))
    outcome = asyncio.run(controller(script).execute(script, URL))
    assert isinstance(outcome, FetchResult)
    assert outcome.attempts == 1
    assert script.sleeps == []


def test_transient_errors_retried_with_exponential_backoff():
    script = Script(result(503), result(0, "ConnectError: refused"), result(200))
    outcome = asyncio.run(controller(script).execute(script, URL))

    assert isinstance(outcome, FetchResult)
    assert outcome.attempts == 3
    assert script.sleeps == [1.0, 2.0]


def test_attempts_are_bounded():
    script = Script(*[result(500) for _ in range(5)])
    retry = controller(script, max_attempts=3)
    outcome = asyncio.run(retry.execute(script, URL))

    assert isinstance(outcome, TerminalFailure)
    assert script.calls == 3
    assert outcome.attempts == 3
    assert outcome.category == ErrorCategory.SERVER_ERROR
    assert retry.retry_count == 2


def test_not_found_is_not_retried():
    script = Script(result(404), result(200))
    outcome = asyncio.run(controller(script).execute(script, URL))

    assert isinstance(outcome, TerminalFailure)
    assert outcome.not_found
    assert script.calls == 1


def test_client_error_is_not_retried():
    script = Script(result(403), result(200))
    outcome = asyncio.run(controller(script).execute(script, URL))

    assert isinstance(outcome, TerminalFailure)
    assert outcome.category == ErrorCategory.CLIENT_ERROR
    assert script.calls == 1


def test_retry_after_raises_delay():
    script = Script(result(429, retry_after=7.0), result(200))
    outcome = asyncio.run(controller(script).execute(script, URL))

    assert isinstance(outcome, FetchResult)
    assert script.sleeps == [7.0]


def test_delay_capped_at_max_delay():
    retry = RetryController(RetryConfig(base_delay=10.0, backoff_multiplier=10.0, max_delay=30.0))
    assert retry.delay_for(1) == 10.0
    assert retry.delay_for(2) == 30.0
    assert retry.delay_for(1, retry_after=500.0) == 30.0


def test_raised_exception_becomes_connection_failure():
    script = Script(*[OSError("connection reset") for _ in range(3)])
    outcome = asyncio.run(controller(script).execute(script, URL))

    assert isinstance(outcome, TerminalFailure)
    assert outcome.status_code == 0
    assert "OSError" in outcome.error
    assert outcome.category == ErrorCategory.CONNECTION


def test_call_retries_then_reraises():
    attempts = []

    async def write():
        attempts.append(1)
        raise OSError("disk full")

    script = Script()
    with pytest.raises(OSError):
        asyncio.run(controller(script).call(write, attempts=3, delay=0.5))
    assert len(attempts) == 3
    assert script.sleeps == [0.5, 0.5]


def test_call_does_not_retry_other_errors():
    attempts = []

    async def write():
        attempts.append(1)
        raise ValueError("bad record")

    script = Script()
    with pytest.raises(ValueError):
        asyncio.run(controller(script).call(write, attempts=3, delay=0.5))
    assert len(attempts) == 1
