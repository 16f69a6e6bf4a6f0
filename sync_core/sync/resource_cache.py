# =============================================================================
# sync_core/sync/resource_cache.py
# Last-Known-Good Values per Resource Key
# =============================================================================
"""
ResourceCache - single source of truth for the last successful result per key.

Entries are overwritten (never merged) on every successful fetch. Freshness is
a question asked with a TTL supplied by the consumer; the cache itself has no
expiry policy and never evicts on its own, so stale values stay available as a
fallback when a refresh fails.
"""

from __future__ import annotations
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Generic, List, Optional, Set, TypeVar
import logging

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class CacheEntry(Generic[T]):
    """Immutable snapshot of one cached value."""
    key: str
    value: T
    fetched_at: float

    def age(self, now: float) -> float:
        return now - self.fetched_at

    def is_stale_at(self, now: float, ttl: float) -> bool:
        """Derived flag: older than the consumer's TTL."""
        return self.age(now) > ttl


class ResourceCache:
    """
    Keyed store of CacheEntry objects with explicit invalidation.

    Usage:
        cache = ResourceCache()
        cache.set("clients:list", rows)
        if cache.is_fresh("clients:list", ttl=60):
            rows = cache.get("clients:list").value
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._invalidated: Set[str] = set()

    def get(self, key: str) -> Optional[CacheEntry]:
        """Current entry for ``key`` or None."""
        return self._entries.get(key)

    def set(self, key: str, value: Any) -> CacheEntry:
        """Overwrite the entry for ``key`` and stamp it with the current time."""
        entry = CacheEntry(key=key, value=value, fetched_at=self._clock())
        self._entries[key] = entry
        self._invalidated.discard(key)
        return entry

    def is_fresh(self, key: str, ttl: float) -> bool:
        entry = self._entries.get(key)
        if entry is None or key in self._invalidated:
            return False
        return entry.age(self._clock()) < ttl

    def is_stale(self, key: str, ttl: float) -> bool:
        """True when an entry exists but is past its TTL or was invalidated."""
        entry = self._entries.get(key)
        if entry is None:
            return False
        return key in self._invalidated or entry.is_stale_at(self._clock(), ttl)

    def age(self, key: str) -> Optional[float]:
        entry = self._entries.get(key)
        return entry.age(self._clock()) if entry else None

    def invalidate(self, *keys: str) -> List[str]:
        """
        Mark entries as no longer fresh, keeping their values as stale fallbacks.

        Returns:
            The keys that had an entry
        """
        hit = [key for key in keys if key in self._entries]
        self._invalidated.update(hit)
        if hit:
            logger.debug(f"Invalidated cache keys: {hit}")
        return hit

    def keys(self, prefix: str = "") -> List[str]:
        """Keys currently cached, optionally restricted to a prefix."""
        return [key for key in self._entries if key.startswith(prefix)]

    def delete(self, key: str) -> bool:
        self._invalidated.discard(key)
        return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        self._entries.clear()
        self._invalidated.clear()

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def get_info(self) -> Dict[str, Any]:
        """Information about cached entries for diagnostics."""
        now = self._clock()
        return {
            "item_count": len(self._entries),
            "items": [
                {
                    "key": key,
                    "age_seconds": round(entry.age(now), 3),
                    "invalidated": key in self._invalidated,
                }
                for key, entry in self._entries.items()
            ],
        }
