"""
Keyed read cache with a freshness window.
Cached views are served until they age out or are explicitly invalidated.
"""

import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Hashable, List, Optional, Tuple

from .config import CACHE_STALE_SEC

CacheKey = Tuple[Hashable, ...]


def worksheet_key(owner_id: str, group_key: int, record_key: str) -> CacheKey:
    """Single-record view."""
    return ("worksheet", owner_id, group_key, record_key)


def phase_key(owner_id: str, group_key: int) -> CacheKey:
    """Phase summary view."""
    return ("phase", owner_id, group_key)


def progress_key(owner_id: str) -> CacheKey:
    """Full-collection view of a user's progress."""
    return ("progress", owner_id)


@dataclass
class CacheEntry:
    value: Any
    fetched_at: float
    stale: bool = False


class ReadCache:
    """
    In-process cache for derived read views.

    An entry is fresh while it is younger than stale_after seconds and has not
    been invalidated; anything else is refetched on the next get_or_fetch.

    Every invalidation bumps a per-key generation. A fetch that was started
    under an older generation still returns its value to the caller, but the
    value is cached as stale so the next read goes back to the store.
    """

    def __init__(self, stale_after: Optional[float] = None, clock: Callable[[], float] = time.monotonic):
        self.stale_after = CACHE_STALE_SEC if stale_after is None else stale_after
        self._clock = clock
        self._entries: Dict[CacheKey, CacheEntry] = {}
        self._generations: Dict[CacheKey, int] = {}
        self._pending: Dict[CacheKey, int] = {}
        self._stats = {"hits": 0, "misses": 0, "invalidations": 0, "discarded": 0}

    def is_fresh(self, key: CacheKey) -> bool:
        entry = self._entries.get(key)
        if entry is None or entry.stale:
            return False
        return (self._clock() - entry.fetched_at) < self.stale_after

    def peek(self, key: CacheKey) -> Any:
        """Return the cached value regardless of freshness, or None."""
        entry = self._entries.get(key)
        return entry.value if entry else None

    def set(self, key: CacheKey, value: Any) -> None:
        self._entries[key] = CacheEntry(value=value, fetched_at=self._clock())

    async def get_or_fetch(self, key: CacheKey, fetch: Callable[[], Awaitable[Any]]) -> Any:
        """Serve a fresh entry or await fetch() and cache its result."""
        if self.is_fresh(key):
            self._stats["hits"] += 1
            return self._entries[key].value

        self._stats["misses"] += 1
        generation = self._generations.get(key, 0)
        self._pending[key] = self._pending.get(key, 0) + 1
        try:
            value = await fetch()
            current = self._generations.get(key, 0)
        finally:
            self._release(key)

        if current == generation:
            self.set(key, value)
        else:
            # Invalidated while the fetch was suspended; the value may predate a write
            self._entries[key] = CacheEntry(value=value, fetched_at=self._clock(), stale=True)
            self._stats["discarded"] += 1
        return value

    def invalidate(self, key: CacheKey) -> None:
        """Mark one view stale so the next read refetches."""
        self._bump(key)
        self._stats["invalidations"] += 1

    def invalidate_prefix(self, prefix: CacheKey) -> List[CacheKey]:
        """Mark every view whose key starts with prefix stale."""
        matched = [k for k in dict.fromkeys([*self._entries, *self._pending]) if k[:len(prefix)] == prefix]
        for k in matched:
            self._bump(k)
        self._stats["invalidations"] += len(matched)
        return matched

    def clear(self) -> None:
        self._entries.clear()
        for key in list(self._pending):
            self._bump(key)

    def _bump(self, key: CacheKey) -> None:
        entry = self._entries.get(key)
        if entry is not None:
            entry.stale = True
        # Only keys with a fetch in flight need a generation to compare against
        if key in self._pending:
            self._generations[key] = self._generations.get(key, 0) + 1

    def _release(self, key: CacheKey) -> None:
        remaining = self._pending.get(key, 0) - 1
        if remaining > 0:
            self._pending[key] = remaining
            return
        self._pending.pop(key, None)
        self._generations.pop(key, None)

    def get_stats(self) -> Dict[str, int]:
        stats = dict(self._stats)
        stats["entries"] = len(self._entries)
        return stats
