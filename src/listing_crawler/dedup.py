"""Set of detail-page identifiers whose records are already in the sink."""

from collections.abc import Iterable, Iterator

from listing_crawler.utils.url_utils import normalize_url


class DedupSet:
    """Canonicalized URL set.

    Membership checks and inserts both go through ``normalize_url``, so
    callers can pass links exactly as they were scraped. An identifier must
    only be added after its record has been written to the sink.
    """

    def __init__(self, urls: Iterable[str] = ()):
        self._ids: set[str] = {normalize_url(u) for u in urls}

    @staticmethod
    def canonical(url: str) -> str:
        return normalize_url(url)

    def __contains__(self, url: object) -> bool:
        return isinstance(url, str) and normalize_url(url) in self._ids

    def __len__(self) -> int:
        return len(self._ids)

    def __iter__(self) -> Iterator[str]:
        return iter(self._ids)

    def add(self, url: str) -> bool:
        """Add a URL; returns False if it was already present."""
        key = normalize_url(url)
        if key in self._ids:
            return False
        self._ids.add(key)
        return True

    def discard(self, url: str) -> None:
        self._ids.discard(normalize_url(url))

    def clear(self) -> None:
        self._ids.clear()

    def filter_new(self, urls: Iterable[str]) -> list[str]:
        """Return the URLs not yet in the set, dropping repeats within ``urls``."""
        seen: set[str] = set()
        fresh: list[str] = []
        for url in urls:
            key = normalize_url(url)
            if key in self._ids or key in seen:
                continue
            seen.add(key)
            fresh.append(url)
        return fresh

    def to_list(self) -> list[str]:
        """Sorted snapshot, stable across saves."""
        return sorted(self._ids)
