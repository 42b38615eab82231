"""Per-partition pacing of detail-page requests."""

import asyncio
from time import monotonic


class RateLimiter:
    """Caps concurrent detail fetches and spaces out their start times.

    Each request reserves the next start slot, ``interval`` seconds after the
    previous one. The interval doubles whenever the site answers 429 and
    halves back toward the configured pace as fetches succeed.
    """

    def __init__(self, interval: float = 0.0, max_concurrent: int = 3, max_interval: float = 5.0):
        self.base_interval = interval
        self.interval = interval
        self.max_interval = max_interval
        self._slots = asyncio.Semaphore(max_concurrent)
        self._next_start = 0.0
        self.in_flight = 0
        self.peak_in_flight = 0
        self.throttle_events = 0

    async def __aenter__(self):
        await self._slots.acquire()
        now = monotonic()
        start = max(now, self._next_start)
        self._next_start = start + self.interval
        try:
            if start > now:
                await asyncio.sleep(start - now)
        except BaseException:
            self._slots.release()
            raise
        self.in_flight += 1
        self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        self.in_flight -= 1
        self._slots.release()

    @property
    def throttled(self) -> bool:
        return self.interval > self.base_interval

    def observe(self, rate_limited: bool) -> None:
        """Adjust the pace after a fetch finished."""
        if rate_limited:
            self.interval = min(max(self.interval, 0.1) * 2, self.max_interval)
            self.throttle_events += 1
        else:
            eased = self.interval / 2
            # Below the back-off floor the configured pace is restored outright.
            self.interval = max(eased, self.base_interval) if eased >= 0.1 else self.base_interval
