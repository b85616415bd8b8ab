"""
In-process tenant lookup cache.

Two independent keyspaces (slug and custom domain) map a lookup key to either
a resolved TenantContext or the NEGATIVE marker, each stamped with the time it
was stored. Entries older than the TTL are never returned: ``lookup`` treats
them as absent and ``sweep`` removes them.

The cache holds no authoritative data. Losing it costs one repository round
trip per key.

Usage:
    cache = TenantCache(ttl_seconds=300)
    value, found = cache.lookup("bishops-tempe", CacheKeyspace.SLUG)
    if not found:
        ...
        cache.store("bishops-tempe", CacheKeyspace.SLUG, ctx_or_NEGATIVE)
"""

import asyncio
import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Optional, Tuple, Union

from .context import TenantContext

logger = logging.getLogger(__name__)


class CacheKeyspace(str, Enum):
    SLUG = "slug"
    DOMAIN = "domain"


class _Negative:
    """Marker for "looked up and not found"."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "NEGATIVE"

    def __bool__(self) -> bool:
        return False


NEGATIVE = _Negative()

CachedValue = Union[TenantContext, _Negative]


@dataclass(frozen=True)
class CacheEntry:
    value: CachedValue
    stored_at: float


class TenantCache:
    """
    TTL cache for tenant lookups, safe to share across requests and threads.

    The lock only guards dictionary access and is never held across I/O.
    """

    DEFAULT_TTL_SECONDS = 300
    DEFAULT_SWEEP_INTERVAL_SECONDS = 60

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        if ttl_seconds <= 0:
            raise ValueError(f"ttl_seconds must be positive, got {ttl_seconds}")
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: Dict[CacheKeyspace, Dict[str, CacheEntry]] = {
            CacheKeyspace.SLUG: {},
            CacheKeyspace.DOMAIN: {},
        }

    def _is_expired(self, entry: CacheEntry, now: float) -> bool:
        return now - entry.stored_at > self.ttl_seconds

    def lookup(self, key: str, keyspace: CacheKeyspace) -> Tuple[Optional[CachedValue], bool]:
        """
        Look up a key.

        Returns:
            (value, True) for a live entry, where value is a TenantContext or NEGATIVE.
            (None, False) when the key is absent or its entry has expired. Expired
            entries are left in place for the sweep.
        """
        now = self._clock()
        with self._lock:
            entry = self._entries[keyspace].get(key)
        if entry is None or self._is_expired(entry, now):
            return None, False
        return entry.value, True

    def store(self, key: str, keyspace: CacheKeyspace, value: CachedValue) -> None:
        """Store (or overwrite) an entry stamped with the current time."""
        entry = CacheEntry(value=value, stored_at=self._clock())
        with self._lock:
            self._entries[keyspace][key] = entry

    def invalidate(self, key: str, keyspace: CacheKeyspace) -> None:
        with self._lock:
            self._entries[keyspace].pop(key, None)

    def clear(self) -> None:
        with self._lock:
            for entries in self._entries.values():
                entries.clear()

    def sweep(self) -> int:
        """Remove every expired entry from both keyspaces. Returns the number removed."""
        now = self._clock()
        removed = 0
        with self._lock:
            for entries in self._entries.values():
                expired = [key for key, entry in entries.items() if self._is_expired(entry, now)]
                for key in expired:
                    del entries[key]
                removed += len(expired)
        if removed:
            logger.info(f"Tenant cache sweep removed {removed} expired entries")
        return removed

    async def run_sweeper(self, interval_seconds: float = DEFAULT_SWEEP_INTERVAL_SECONDS) -> None:
        """Sweep every ``interval_seconds`` until cancelled."""
        logger.debug(f"Tenant cache sweeper started (interval={interval_seconds}s, ttl={self.ttl_seconds}s)")
        while True:
            await asyncio.sleep(interval_seconds)
            self.sweep()

    def get_stats(self) -> dict:
        now = self._clock()
        with self._lock:
            stats = {}
            for keyspace, entries in self._entries.items():
                live = [e for e in entries.values() if not self._is_expired(e, now)]
                stats[keyspace.value] = {
                    "total_entries": len(entries),
                    "live_entries": len(live),
                    "negative_entries": sum(1 for e in live if e.value is NEGATIVE),
                }
        stats["ttl_seconds"] = self.ttl_seconds
        return stats
