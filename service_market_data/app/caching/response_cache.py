"""
Bounded TTL response cache with LRU eviction.
"""

import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from shared.logging import get_logger


@dataclass(frozen=True)
class CacheEntry:
    """Single cached payload."""

    key: str
    data: Any
    stored_at: float
    ttl_seconds: float

    def is_expired(self, now: float) -> bool:
        return now - self.stored_at >= self.ttl_seconds


class ResponseCache:
    """Key/value store with per-entry TTL and bounded size.

    Reads and writes never await, so a cache shared by concurrent tasks on
    one event loop is always observed in a consistent state.
    """

    def __init__(self, max_entries: int = 100, clock: Callable[[], float] = time.monotonic,
                 name: str = "default"):
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.max_entries = max_entries
        self.name = name
        self._clock = clock
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self.logger = get_logger(f"market_data.cache.{name}")

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        entry = self._entries.get(key)
        return entry is not None and not entry.is_expired(self._clock())

    def get(self, key: str) -> Optional[Any]:
        """Return the cached value, or None when absent or expired."""
        entry = self._entries.get(key)
        if entry is None:
            self._misses += 1
            return None

        if entry.is_expired(self._clock()):
            del self._entries[key]
            self._misses += 1
            self.logger.debug("Cache entry expired", key=key)
            return None

        self._entries.move_to_end(key)
        self._hits += 1
        return entry.data

    def set(self, key: str, data: Any, ttl_seconds: float) -> None:
        """Store a value, evicting the least recently used entry when full."""
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")

        self._entries[key] = CacheEntry(key=key, data=data, stored_at=self._clock(), ttl_seconds=ttl_seconds)
        self._entries.move_to_end(key)

        if len(self._entries) > self.max_entries:
            evicted_key, _ = self._entries.popitem(last=False)
            self._evictions += 1
            self.logger.debug("Evicted cache entry", key=evicted_key, max_entries=self.max_entries)

    def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        """Empty the cache (manual refresh / customer service action)."""
        count = len(self._entries)
        self._entries.clear()
        self.logger.info("Cache cleared", entries=count)

    def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        lookups = self._hits + self._misses
        return {
            "size": len(self._entries),
            "max_entries": self.max_entries,
            "hits": self._hits,
            "misses": self._misses,
            "evictions": self._evictions,
            "hit_rate_pct": round(self._hits / lookups * 100, 2) if lookups else 0.0,
        }

    def dispose(self) -> None:
        self._entries.clear()
        self._hits = self._misses = self._evictions = 0
