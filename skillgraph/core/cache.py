"""In-process cache of repository deep-scan results."""

from __future__ import annotations

import logging

from skillgraph.core.models import ScanCacheEntry

LOGGER = logging.getLogger(__name__)

DEFAULT_CAPACITY = 600


def scan_cache_key(owner: str, name: str, branch: str | None, revision_marker: str | None) -> str:
    """Build `owner/name:branch:revision` so a new push invalidates the entry."""
    return f"{owner or 'unknown'}/{name}:{branch or 'main'}:{revision_marker or ''}"


class ScanCache:
    """Capacity-bounded map that evicts the oldest inserted key first.

    Entries are never refreshed in place; a repository that was pushed to gets
    a new key, and the stale key ages out.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        self.capacity = max(1, capacity)
        self._entries: dict[str, ScanCacheEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def get(self, key: str) -> ScanCacheEntry | None:
        return self._entries.get(key)

    def put(self, key: str, value: ScanCacheEntry) -> None:
        if not key:
            return
        if key in self._entries:
            return
        self._entries[key] = value
        if len(self._entries) <= self.capacity:
            return
        oldest = next(iter(self._entries))
        del self._entries[oldest]
        LOGGER.debug("Evicted scan cache entry %s", oldest)

    def clear(self) -> None:
        self._entries.clear()
