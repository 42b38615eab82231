"""URL manipulation utilities."""

import re
from urllib.parse import urljoin, urlparse, urlunparse


def normalize_url(url: str) -> str:
    """Canonicalize a URL for identity checks.

    Lower-cases scheme and host, drops the fragment and any trailing slash
    (except for the root path) so ``/event/x`` and ``/event/x/#top`` compare
    equal.
    """
    parsed = urlparse(url.strip())
    normalized = parsed._replace(
        scheme=parsed.scheme.lower(),
        netloc=parsed.netloc.lower(),
        fragment="",
    )
    path = normalized.path.rstrip("/") if normalized.path not in ("", "/") else "/"
    normalized = normalized._replace(path=path)
    return urlunparse(normalized)


def make_absolute(base_url: str, href: str) -> str:
    """Convert a potentially relative URL to absolute."""
    return urljoin(base_url, href)


def page_url(entry_url: str, page: int, page_path: str = "page/{page}/") -> str:
    """Build the URL of listing page ``page`` for a partition.

    Page 1 is the bare entry URL; later pages append ``page_path`` to it.
    """
    if page <= 1:
        return entry_url
    parsed = urlparse(entry_url)
    base_path = parsed.path if parsed.path.endswith("/") else parsed.path + "/"
    return urlunparse(parsed._replace(path=base_path + page_path.format(page=page)))


def slug_to_name(url: str, suffixes: tuple[str, ...] = ("-car-events", "-events")) -> str:
    """Derive a display name from the first path segment of a URL.

    ``/new-york-car-events/`` becomes ``New York``.
    """
    segments = [s for s in urlparse(url).path.split("/") if s]
    if not segments:
        return urlparse(url).netloc or url
    slug = segments[0]
    for suffix in suffixes:
        if slug.endswith(suffix):
            slug = slug[: -len(suffix)]
            break
    return " ".join(word.capitalize() for word in re.split(r"[-_]+", slug) if word)
