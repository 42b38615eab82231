"""Top-level crawl roots and the file they are loaded from."""

import json
import logging
from pathlib import Path

from pydantic import BaseModel, ValidationError

from listing_crawler.utils.url_utils import slug_to_name

logger = logging.getLogger(__name__)


class Partition(BaseModel, frozen=True):
    """An independently paginated crawl root, e.g. one region."""

    id: str
    name: str
    url: str


def _from_entry(entry: object, base_url: str | None) -> Partition:
    if isinstance(entry, str):
        url = entry if entry.startswith("http") or not base_url else base_url.rstrip("/") + entry
        name = slug_to_name(url)
        return Partition(id=name.lower().replace(" ", "-"), name=name, url=url)
    if isinstance(entry, dict):
        url = entry.get("url") or entry.get("link") or entry.get("entryURL")
        if not url and entry.get("regions"):
            # Bootstrap output: take the state's first ("All ... Car Shows") region
            url = entry["regions"][0].get("url")
        if not isinstance(url, str) or not url:
            raise ValueError(f"Partition entry has no URL: {entry!r}")
        if base_url and not url.startswith("http"):
            url = base_url.rstrip("/") + url
        name = entry.get("name") or entry.get("displayName") or slug_to_name(url)
        pid = entry.get("id") or name.lower().replace(" ", "-")
        return Partition(id=str(pid), name=str(name), url=url)
    raise ValueError(f"Unsupported partition entry: {entry!r}")


def load_partitions(path: Path, base_url: str | None = None) -> list[Partition]:
    """Load partitions from a JSON file.

    Accepts a list of ``{id, name, url}`` objects, a list of bare URLs, or an
    object wrapping such a list under ``partitions`` or ``stateCarShowLinks``.
    Relative URLs are resolved against ``base_url`` (or a ``baseUrl`` key in
    the file). File order is preserved and is the crawl order.
    """
    with open(path, encoding="utf-8") as f:
        data = json.load(f)

    if isinstance(data, dict):
        base_url = base_url or data.get("baseUrl")
        for key in ("partitions", "stateCarShowLinks"):
            if key in data:
                data = data[key]
                break
        else:
            raise ValueError(f"{path}: expected a list or a 'partitions' key")

    if not isinstance(data, list):
        raise ValueError(f"{path}: expected a list of partitions")

    partitions: list[Partition] = []
    seen: set[str] = set()
    for entry in data:
        try:
            partition = _from_entry(entry, base_url)
        except ValidationError as e:
            raise ValueError(f"{path}: invalid partition entry {entry!r}") from e
        if partition.id in seen:
            logger.warning("Duplicate partition id %r in %s, keeping the first", partition.id, path)
            continue
        seen.add(partition.id)
        partitions.append(partition)
    return partitions


def filter_partitions(partitions: list[Partition], names: list[str]) -> list[Partition]:
    """Keep partitions whose name or id contains any of ``names`` (case-insensitive)."""
    if not names:
        return list(partitions)
    wanted = [n.lower() for n in names]
    return [
        p
        for p in partitions
        if any(w in p.name.lower() or w in p.id.lower() for w in wanted)
    ]
