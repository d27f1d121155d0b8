"""Bounded TTL cache shared by the tool and response caches.

Entries expire monotonically: an expired entry is evicted on access and
is never extended except by a fresh ``set``. At capacity the single
oldest-by-creation entry is evicted before inserting.
"""

import threading
import time
from collections import OrderedDict
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Generic, TypeVar

V = TypeVar("V")


@dataclass(slots=True)
class CacheEntry(Generic[V]):
    """A cached value with its lifetime."""

    key: str
    value: V
    created_at: float
    """Clock seconds at write time."""

    expires_at: float
    """Clock seconds after which the entry is dead."""

    hits: int = 0

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


@dataclass(slots=True)
class CacheStats:
    size: int = 0
    max_size: int = 0
    hits: int = 0
    misses: int = 0
    evictions: int = 0
    extra: dict[str, float] = field(default_factory=dict)

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0


class TTLCache(Generic[V]):
    """Thread-safe bounded map with per-entry TTL."""

    def __init__(
        self,
        max_size: int,
        default_ttl_ms: int,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_size < 1:
            raise ValueError("max_size must be positive")
        if default_ttl_ms <= 0:
            raise ValueError("default_ttl_ms must be positive")
        self.max_size = max_size
        self.default_ttl_ms = default_ttl_ms
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry[V]] = OrderedDict()
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def get(self, key: str) -> V | None:
        """Return the live value for ``key`` or None (evicting if expired)."""
        entry = self.get_entry(key)
        return entry.value if entry is not None else None

    def get_entry(self, key: str) -> CacheEntry[V] | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None
            if entry.is_expired(self._clock()):
                del self._entries[key]
                self._forget(key)
                self._evictions += 1
                self._misses += 1
                return None
            entry.hits += 1
            self._hits += 1
            return entry

    def set(self, key: str, value: V, ttl_ms: int | None = None) -> None:
        """Insert or overwrite ``key``.

        Raises:
            ValueError: If ``ttl_ms`` is not positive.
        """
        ttl = self.default_ttl_ms if ttl_ms is None else ttl_ms
        if ttl <= 0:
            raise ValueError("ttl_ms must be positive")
        now = self._clock()
        with self._lock:
            if key in self._entries:
                del self._entries[key]
            elif len(self._entries) >= self.max_size:
                oldest, _ = self._entries.popitem(last=False)
                self._forget(oldest)
                self._evictions += 1
            self._entries[key] = CacheEntry(
                key=key, value=value, created_at=now, expires_at=now + ttl / 1000
            )

    def has(self, key: str) -> bool:
        """Whether a live entry exists (does not count as hit or miss)."""
        with self._lock:
            entry = self._entries.get(key)
            return entry is not None and not entry.is_expired(self._clock())

    def delete(self, key: str) -> bool:
        return self.delete_many((key,)) == 1

    def delete_many(self, keys: Iterable[str]) -> int:
        """Remove the given keys. Returns how many were present."""
        removed = 0
        with self._lock:
            for key in keys:
                if self._entries.pop(key, None) is not None:
                    self._forget(key)
                    removed += 1
        return removed

    def prune(self) -> int:
        """Drop every expired entry. Returns the number removed."""
        now = self._clock()
        with self._lock:
            expired = [k for k, e in self._entries.items() if e.is_expired(now)]
            for k in expired:
                del self._entries[k]
                self._forget(k)
            self._evictions += len(expired)
            return len(expired)

    def clear(self) -> None:
        with self._lock:
            for key in self._entries:
                self._forget(key)
            self._entries.clear()

    def _forget(self, key: str) -> None:
        """Called under the lock whenever ``key`` leaves the cache."""

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._entries)

    @property
    def size(self) -> int:
        with self._lock:
            return len(self._entries)

    def __len__(self) -> int:
        return self.size

    def stats(self) -> CacheStats:
        with self._lock:
            return CacheStats(
                size=len(self._entries),
                max_size=self.max_size,
                hits=self._hits,
                misses=self._misses,
                evictions=self._evictions,
            )
