# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Copilot-for-Consensus contributors

"""In-memory credential cache with TTL expiry and LRU eviction."""

import threading
import time
from dataclasses import dataclass
from typing import Any, Callable

from cachetools import TTLCache

DEFAULT_TTL_SECONDS = 300
DEFAULT_MAX_SIZE = 100


@dataclass
class CachedEntry:
    """A cached credential value and its bookkeeping timestamps (clock seconds)."""
    value: str
    inserted_at: float
    expires_at: float
    last_access: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


class _EvictingTTLCache(TTLCache):
    """TTLCache that reports capacity evictions (not expirations)."""

    def __init__(self, maxsize: int, ttl: float, timer: Callable[[], float], on_evict: Callable[[], None]):
        super().__init__(maxsize=maxsize, ttl=ttl, timer=timer)
        self._on_evict = on_evict

    def popitem(self):
        item = super().popitem()
        self._on_evict()
        return item


class CredentialCache:
    """Bounded cache keyed by ``(owner_id, key)``.

    Entries expire ``ttl_seconds`` after they were last written. When the
    cache is full, inserting a new key evicts the least recently used
    entry. All operations are guarded by one re-entrant lock, so request
    handlers can read while the rotation sweep writes.

    Args:
        ttl_seconds: Time-to-live of an entry
        max_size: Maximum number of entries
        clock: Monotonic clock returning seconds; injectable for tests

    Raises:
        ValueError: If ttl_seconds or max_size is not positive
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        max_size: int = DEFAULT_MAX_SIZE,
        clock: Callable[[], float] = time.monotonic,
    ):
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        if max_size <= 0:
            raise ValueError("max_size must be positive")

        self.ttl_seconds = ttl_seconds
        self.max_size = max_size
        self._clock = clock
        self._lock = threading.RLock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._entries = self._new_store()

    def _new_store(self) -> _EvictingTTLCache:
        return _EvictingTTLCache(
            maxsize=self.max_size,
            ttl=self.ttl_seconds,
            timer=self._clock,
            on_evict=self._count_eviction,
        )

    def _count_eviction(self) -> None:
        self._evictions += 1

    def get(self, owner_id: str, key: str) -> str | None:
        """Return the cached value, or None on absence or expiry."""
        with self._lock:
            self._entries.expire()
            entry = self._entries.get((owner_id, key))
            if entry is None:
                self._misses += 1
                return None

            entry.last_access = self._clock()
            self._hits += 1
            return entry.value

    def put(self, owner_id: str, key: str, value: str) -> None:
        """Insert or refresh an entry, evicting the LRU entry when full."""
        with self._lock:
            now = self._clock()
            self._entries[(owner_id, key)] = CachedEntry(
                value=value,
                inserted_at=now,
                expires_at=now + self.ttl_seconds,
                last_access=now,
            )

    def invalidate(self, owner_id: str, key: str) -> bool:
        """Remove one entry. Returns True if an entry was removed."""
        with self._lock:
            return self._entries.pop((owner_id, key), None) is not None

    def invalidate_owner(self, owner_id: str) -> int:
        """Remove every entry belonging to ``owner_id``. Returns the number removed."""
        with self._lock:
            stale = [cache_key for cache_key in list(self._entries.keys()) if cache_key[0] == owner_id]
            for cache_key in stale:
                self._entries.pop(cache_key, None)
            return len(stale)

    def clear(self) -> int:
        """Remove every entry. Returns the number removed."""
        with self._lock:
            self._entries.expire()
            count = len(self._entries)
            # Swap the store; TTLCache.clear() goes through popitem and would count evictions
            self._entries = self._new_store()
            return count

    def __len__(self) -> int:
        with self._lock:
            self._entries.expire()
            return len(self._entries)

    def stats(self) -> dict[str, Any]:
        with self._lock:
            self._entries.expire()
            return {
                "size": len(self._entries),
                "max_size": self.max_size,
                "ttl_seconds": self.ttl_seconds,
                "hits": self._hits,
                "misses": self._misses,
                "evictions": self._evictions,
            }
