"""In-process TTL key-value store.

Thread-safe with LRU eviction. Used for single-node deployments and tests;
swap for ``RedisKeyValueStore`` when several workers must share counters.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable

from authgate.adapters.kv.base import KeyValueStore

logger = logging.getLogger(__name__)


@dataclass
class _Entry:
    value: str
    expires_at: float


class InMemoryKeyValueStore(KeyValueStore):
    """Thread-safe, in-memory TTL store with LRU eviction.

    Attributes:
        max_entries: Maximum number of stored keys (None for unlimited).
    """

    def __init__(
        self,
        *,
        max_entries: int | None = 100_000,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._max_entries = max_entries
        self._clock = clock
        self._store: OrderedDict[str, _Entry] = OrderedDict()
        self._lock = threading.RLock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def __repr__(self) -> str:  # pragma: no cover - representation only
        return (
            f"InMemoryKeyValueStore(max_entries={self._max_entries}, size={len(self._store)}, "
            f"hits={self._hits}, misses={self._misses}, evictions={self._evictions})"
        )

    def get(self, key: str) -> str | None:
        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                self._misses += 1
                return None

            if self._clock() >= entry.expires_at:
                self._evict_single(key)
                self._misses += 1
                return None

            self._hits += 1
            self._store.move_to_end(key)
            return entry.value

    def put(self, key: str, value: str, *, ttl_seconds: int) -> None:
        if ttl_seconds < 1:
            raise ValueError("ttl_seconds must be >= 1")

        with self._lock:
            now = self._clock()
            self._evict_expired_locked(now)
            self._store[key] = _Entry(value=value, expires_at=now + ttl_seconds)
            self._store.move_to_end(key)
            self._evict_if_over_capacity_locked()

    def delete(self, key: str) -> None:
        with self._lock:
            self._store.pop(key, None)

    def clear(self) -> None:
        """Remove all entries and reset counters."""

        with self._lock:
            self._store.clear()
            self._hits = 0
            self._misses = 0
            self._evictions = 0

    def stats(self) -> dict[str, int | None]:
        """Return lightweight store metrics without exposing values."""

        with self._lock:
            return {
                "max_entries": self._max_entries,
                "entries": len(self._store),
                "hits": self._hits,
                "misses": self._misses,
                "evictions": self._evictions,
            }

    def _evict_single(self, key: str) -> None:
        if self._store.pop(key, None) is not None:
            self._evictions += 1

    def _evict_expired_locked(self, now: float) -> None:
        expired_keys = [k for k, entry in self._store.items() if entry.expires_at <= now]
        for key in expired_keys:
            self._evict_single(key)

    def _evict_if_over_capacity_locked(self) -> None:
        if self._max_entries is None:
            return

        while len(self._store) > self._max_entries:
            # popitem(last=False) removes the least recently used entry
            key, _ = self._store.popitem(last=False)
            self._evictions += 1
            logger.debug("kv.evicted", extra={"reason": "capacity", "size": len(self._store)})
