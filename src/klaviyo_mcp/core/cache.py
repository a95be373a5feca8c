"""Type-aware TTL cache for Klaviyo GET responses.

Provides ``ResponseCache``: one instance per process, injected into the
API client. Entries expire by a per-type TTL (metrics, campaigns, ...), and
a full store evicts the least recently read entries of the incoming type so
one busy resource type cannot starve the others.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

EVICTION_FRACTION = 0.2


@dataclass
class CacheEntry:
    key: str
    value: Any
    type: str
    created_at: float
    last_accessed: float
    expires_at: float

    def expired(self, now: float) -> bool:
        return now > self.expires_at


class ResponseCache:
    """In-memory response cache (single event loop, no locking).

    Args:
        ttl_seconds: TTL table keyed by cache type. Must contain ``default``,
            which also covers keys whose type is not in the table.
        max_entries: Capacity across all types, enforced on insert.
        enabled: When False every lookup misses and nothing is stored.
        clock: Wall-clock source in seconds (overridable for tests).
    """

    def __init__(
        self,
        ttl_seconds: Optional[Dict[str, int]] = None,
        max_entries: int = 100,
        enabled: bool = True,
        clock: Callable[[], float] = time.time,
    ):
        self._ttls = dict(ttl_seconds or {"default": 600})
        self._ttls.setdefault("default", 600)
        self._max_entries = max_entries
        self._enabled = enabled
        self._clock = clock
        self._store: Dict[str, CacheEntry] = {}
        self._hits = 0
        self._misses = 0
        self._sweeper: Optional[asyncio.Task] = None

    # ------------------------------------------------------------------
    # Classification
    # ------------------------------------------------------------------

    def classify(self, key: str) -> str:
        """Cache type for *key*, taken from its leading path segment."""
        segment = key.lstrip("/").split("/", 1)[0].split("?", 1)[0]
        if segment in self._ttls and segment != "default":
            return segment
        return "default"

    def ttl_for(self, cache_type: str) -> int:
        return self._ttls.get(cache_type, self._ttls["default"])

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def size(self) -> int:
        """Number of entries (including possibly-expired ones)."""
        return len(self._store)

    def has(self, key: str) -> bool:
        """Return ``True`` if *key* is cached and not expired.

        Expired entries are removed as a side effect.
        """
        if not self._enabled:
            return False
        entry = self._store.get(key)
        if entry is None:
            self._misses += 1
            return False
        if entry.expired(self._clock()):
            del self._store[key]
            self._misses += 1
            return False
        return True

    def get(self, key: str) -> Optional[Any]:
        """Return the cached value or ``None``; refreshes ``last_accessed``."""
        if not self.has(key):
            return None
        entry = self._store[key]
        entry.last_accessed = self._clock()
        self._hits += 1
        return entry.value

    def set(self, key: str, value: Any) -> bool:
        """Store *value* under *key*. ``None`` values are not cached."""
        if not self._enabled or value is None:
            return False

        cache_type = self.classify(key)
        if key not in self._store and len(self._store) >= self._max_entries:
            self._make_room(cache_type)

        now = self._clock()
        self._store[key] = CacheEntry(
            key=key,
            value=value,
            type=cache_type,
            created_at=now,
            last_accessed=now,
            expires_at=now + self.ttl_for(cache_type),
        )
        logger.debug("Cached %s data for key: %s", cache_type, _short(key))
        return True

    def evict(self, cache_type: str) -> int:
        """Drop the least recently read 20% (at least one) of *cache_type*."""
        entries = sorted(
            (e for e in self._store.values() if e.type == cache_type),
            key=lambda e: e.last_accessed,
        )
        if not entries:
            return 0
        count = max(1, math.ceil(len(entries) * EVICTION_FRACTION))
        for entry in entries[:count]:
            del self._store[entry.key]
            logger.debug("Evicted cache item: %s", _short(entry.key))
        return count

    def clear_expired(self) -> int:
        """Remove every expired entry; returns how many were removed."""
        now = self._clock()
        expired = [k for k, e in self._store.items() if e.expired(now)]
        for key in expired:
            del self._store[key]
        if expired:
            logger.debug("Cleared %d expired cache items", len(expired))
        return len(expired)

    def clear_by_type(self, cache_type: str) -> int:
        keys = [k for k, e in self._store.items() if e.type == cache_type]
        for key in keys:
            del self._store[key]
        if keys:
            logger.info("Cleared %d %s cache items", len(keys), cache_type)
        return len(keys)

    def clear_all(self) -> int:
        count = len(self._store)
        self._store.clear()
        logger.info("Cache cleared")
        return count

    def stats(self) -> Dict[str, Any]:
        by_type: Dict[str, int] = {}
        for entry in self._store.values():
            by_type[entry.type] = by_type.get(entry.type, 0) + 1
        lookups = self._hits + self._misses
        return {
            "enabled": self._enabled,
            "total_items": len(self._store),
            "max_entries": self._max_entries,
            "by_type": by_type,
            "ttl_seconds": dict(self._ttls),
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": round(self._hits / lookups, 3) if lookups else 0.0,
        }

    # ------------------------------------------------------------------
    # Periodic sweep
    # ------------------------------------------------------------------

    def start_sweeper(self, interval_seconds: float = 60.0) -> asyncio.Task:
        """Schedule ``clear_expired`` every *interval_seconds* on the running loop."""
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.get_running_loop().create_task(
                self._sweep_forever(interval_seconds)
            )
        return self._sweeper

    async def stop_sweeper(self) -> None:
        task, self._sweeper = self._sweeper, None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _sweep_forever(self, interval_seconds: float) -> None:
        while True:
            await asyncio.sleep(interval_seconds)
            self.clear_expired()

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _make_room(self, cache_type: str) -> None:
        """Free at least one slot, preferring expired then same-type entries."""
        if self.clear_expired():
            return
        if self.evict(cache_type):
            return
        # The incoming type has nothing cached yet
        oldest: List[CacheEntry] = sorted(
            self._store.values(), key=lambda e: e.last_accessed
        )
        if oldest:
            del self._store[oldest[0].key]
            logger.debug("Evicted cache item: %s", _short(oldest[0].key))


def _short(key: str) -> str:
    return key if len(key) <= 50 else key[:50] + "..."
