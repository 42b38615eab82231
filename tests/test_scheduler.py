import asyncio

import pytest

from conftest import SITE, FakeFetcher, MemorySink, detail_html, no_sleep
from listing_crawler.config import ExtractorConfig, RetryConfig
from listing_crawler.dedup import DedupSet
from listing_crawler.errors import ErrorCategory, PersistenceFailure
from listing_crawler.events import CancellationToken, EventEmitter, ItemError
from listing_crawler.extractor import SelectorExtractor
from listing_crawler.fetcher.base import FetchResult
from listing_crawler.partitions import Partition
from listing_crawler.retry import RetryController
from listing_crawler.scheduler import WorkScheduler
from listing_crawler.utils.rate_limiter import RateLimiter

PARTITION = Partition(id="ohio", name="Ohio", url=f"{SITE}/ohio/")


def links(n: int) -> list[str]:
    return [f"{SITE}/event/show-{i}/" for i in range(n)]


def make_site(site, n: int):
    for i, url in enumerate(links(n)):
        site.add(url, detail_html(f"Show {i}"))


def make_scheduler(fetcher, sink=None, dedup=None, events=None, limiter=None, claimed=None):
    return WorkScheduler(
        fetcher,
        SelectorExtractor(ExtractorConfig(field_selectors={"title": "h1"})),
        RetryController(RetryConfig(base_delay=0.0, sink_retry_delay=0.0), sleep=no_sleep),
        dedup if dedup is not None else DedupSet(),
        sink if sink is not None else MemorySink(),
        events or EventEmitter(),
        rate_limiter=limiter,
        claimed=claimed,
    )


def test_processes_all_links_in_batches(site):
    make_site(site, 7)
    sink = MemorySink()
    dedup = DedupSet()
    batches = []
    scheduler = make_scheduler(FakeFetcher(site), sink=sink, dedup=dedup)

    counts = asyncio.run(
        scheduler.process(links(7), PARTITION, 3, on_batch=lambda c, last: batches.append((c.succeeded, last)))
    )

    assert counts.succeeded == 7
    assert counts.failed == 0
    assert batches == [(3, False), (3, False), (1, True)]
    assert sink.urls == links(7)
    assert len(dedup) == 7
    assert sink.records[0].fields["title"] == "Show 0"
    assert sink.records[0].partition_id == "ohio"
    assert sink.records[0].partition_name == "Ohio"


def test_concurrency_never_exceeds_limit(site):
    make_site(site, 12)
    limiter = RateLimiter(0.0, 4)

    class SlowFetcher(FakeFetcher):
        async def fetch(self, url):
            await asyncio.sleep(0.01)
            return await super().fetch(url)

    scheduler = make_scheduler(SlowFetcher(site), limiter=limiter)
    counts = asyncio.run(scheduler.process(links(12), PARTITION, 4))

    assert counts.succeeded == 12
    assert limiter.peak_in_flight <= 4


def test_known_links_are_skipped_without_fetching(site):
    make_site(site, 4)
    fetcher = FakeFetcher(site)
    dedup = DedupSet(links(4)[:2])
    scheduler = make_scheduler(fetcher, dedup=dedup)

    counts = asyncio.run(scheduler.process(links(4) + [links(4)[3]], PARTITION, 5))

    assert counts.skipped == 3
    assert counts.succeeded == 2
    assert fetcher.calls == links(4)[2:]


def test_second_pass_is_idempotent(site):
    make_site(site, 3)
    fetcher = FakeFetcher(site)
    sink = MemorySink()
    scheduler = make_scheduler(fetcher, sink=sink)

    asyncio.run(scheduler.process(links(3), PARTITION, 5))
    again = asyncio.run(scheduler.process(links(3), PARTITION, 5))

    assert again.skipped == 3
    assert len(sink.records) == 3
    assert len(fetcher.calls) == 3


def test_fetch_and_extract_failures_are_counted(site):
    make_site(site, 3)
    bad = links(3)[1]
    site.add(links(3)[2], "<html><body><p>no heading</p></body></html>")
    events = []
    fetcher = FakeFetcher(site, failures={bad: [FetchResult(url=bad, final_url=bad, html="", status_code=500)] * 3})
    dedup = DedupSet()
    scheduler = make_scheduler(fetcher, dedup=dedup, events=EventEmitter([events.append]))

    counts = asyncio.run(scheduler.process(links(3), PARTITION, 5))

    assert counts.succeeded == 1
    assert counts.failed == 2
    assert counts.failed_urls == links(3)[1:]
    assert bad not in dedup
    categories = [e.category for e in events if isinstance(e, ItemError)]
    assert categories == [ErrorCategory.SERVER_ERROR, ErrorCategory.EXTRACTION]


def test_persistence_failure_raised_after_batch(site):
    make_site(site, 5)
    failing = links(5)[2]
    sink = MemorySink(fail_urls={failing})
    dedup = DedupSet()
    batches = []
    scheduler = make_scheduler(FakeFetcher(site), sink=sink, dedup=dedup)

    with pytest.raises(PersistenceFailure) as excinfo:
        asyncio.run(
            scheduler.process(links(5), PARTITION, 5, on_batch=lambda c, last: batches.append((c.succeeded, last)))
        )

    assert excinfo.value.url == failing
    assert excinfo.value.attempts == 3
    assert failing not in dedup
    assert len(dedup) == 4
    assert batches == [(4, False)]


def test_cancellation_stops_between_batches(site):
    make_site(site, 6)
    token = CancellationToken()
    sink = MemorySink()
    scheduler = make_scheduler(FakeFetcher(site), sink=sink)

    def on_batch(counts, last):
        token.cancel()

    counts = asyncio.run(scheduler.process(links(6), PARTITION, 2, token=token, on_batch=on_batch))

    assert counts.stopped
    assert counts.succeeded == 2
    assert len(sink.records) == 2


def test_rate_limited_responses_slow_the_limiter(site):
    make_site(site, 1)
    url = links(1)[0]
    limiter = RateLimiter(0.0, 2)
    fetcher = FakeFetcher(site, failures={url: [FetchResult(url=url, final_url=url, html="", status_code=429)] * 3})
    scheduler = make_scheduler(fetcher, limiter=limiter)

    asyncio.run(scheduler.process([url], PARTITION, 2))

    assert limiter.throttle_events == 1
    assert limiter.throttled
    assert limiter.interval == 0.2


def test_limit_must_be_positive(site):
    with pytest.raises(ValueError):
        asyncio.run(make_scheduler(FakeFetcher(site)).process(links(1), PARTITION, 0))


def test_limiter_eases_back_to_configured_pace():
    limiter = RateLimiter(0.0, 2)
    limiter.observe(rate_limited=True)
    limiter.observe(rate_limited=True)
    assert limiter.interval == 0.4

    for _ in range(20):
        limiter.observe(rate_limited=False)

    assert not limiter.throttled
    assert limiter.interval == 0.0


def test_links_claimed_elsewhere_are_skipped(site):
    make_site(site, 3)
    fetcher = FakeFetcher(site)
    other = DedupSet.canonical(links(3)[0])
    claimed = {other}
    scheduler = make_scheduler(fetcher, claimed=claimed)

    counts = asyncio.run(scheduler.process(links(3), PARTITION, 5))

    assert counts.skipped == 1
    assert counts.succeeded == 2
    assert fetcher.calls == links(3)[1:]
    # Claims taken by this call are released once their outcome is applied.
    assert claimed == {other}


def test_claims_released_when_stopped(site):
    make_site(site, 4)
    token = CancellationToken()
    claimed = set()
    scheduler = make_scheduler(FakeFetcher(site), claimed=claimed)

    counts = asyncio.run(
        scheduler.process(links(4), PARTITION, 2, token=token, on_batch=lambda c, last: token.cancel())
    )

    assert counts.stopped
    assert claimed == set()


def test_failed_links_are_not_fetched_again_in_the_same_run(site):
    make_site(site, 2)
    bad = links(2)[0]
    fetcher = FakeFetcher(site, failures={bad: [FetchResult(url=bad, final_url=bad, html="", status_code=500)] * 3})
    scheduler = make_scheduler(fetcher)

    asyncio.run(scheduler.process(links(2), PARTITION, 5))
    again = asyncio.run(scheduler.process([bad], PARTITION, 5))

    assert again.skipped == 1
    assert fetcher.count(bad) == 3
