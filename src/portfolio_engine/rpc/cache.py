"""Short-lived TTL cache used for liveness probes."""

import threading
import time
from collections.abc import Callable, Hashable
from typing import Any


class CacheEntry:
    """
    Cache entry with TTL support.

    Parameters
    ----------
    value : Any
        Cached value
    ttl : float
        Time-to-live in seconds
    created_at : float | None
        Creation timestamp (monotonic clock). Uses current time if None.

    """

    def __init__(self, value: Any, ttl: float, created_at: float | None = None) -> None:
        self.value = value
        self.ttl = ttl
        self.created_at = time.monotonic() if created_at is None else created_at

    def is_expired(self, now: float | None = None) -> bool:
        """
        Check if cache entry has expired.

        Returns
        -------
        bool
            True if expired, False otherwise

        """
        now = time.monotonic() if now is None else now
        return (now - self.created_at) >= self.ttl


class TTLCache:
    """
    Thread-safe in-memory cache with a per-entry TTL.

    Parameters
    ----------
    default_ttl : float
        Default time-to-live in seconds for cache entries
    clock : Callable[[], float]
        Monotonic clock, injectable for tests

    """

    def __init__(self, default_ttl: float = 15.0, clock: Callable[[], float] = time.monotonic) -> None:
        self.default_ttl = default_ttl
        self._clock = clock
        self._cache: dict[Hashable, CacheEntry] = {}
        self._lock = threading.Lock()

    def get(self, key: Hashable) -> Any | None:
        """
        Get cached value if it exists and hasn't expired.

        Returns
        -------
        Any | None
            Cached value if found and valid, None otherwise

        """
        with self._lock:
            entry = self._cache.get(key)
            if entry is None:
                return None
            if entry.is_expired(self._clock()):
                del self._cache[key]
                return None
            return entry.value

    def set(self, key: Hashable, value: Any, ttl: float | None = None) -> None:
        """Store value with TTL (default_ttl if None)."""
        entry = CacheEntry(value, self.default_ttl if ttl is None else ttl, created_at=self._clock())
        with self._lock:
            self._cache[key] = entry

    def invalidate(self, key: Hashable) -> None:
        with self._lock:
            self._cache.pop(key, None)

    def clear(self) -> None:
        """Clear all cached entries."""
        with self._lock:
            self._cache.clear()
