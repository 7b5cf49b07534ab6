"""
In-process expiring cache.

Backs the Resource Graph inventory cache (per-probe TTL) and the regional
metrics client cache (no expiry). Entries are immutable; expiry is checked on
read and stale entries are evicted lazily, there is no background sweep.
All access to the backing dict is serialized by a lock so a single instance
can be shared by every in-flight probe.
"""

import math
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import timedelta
from threading import Lock
from typing import Generic, Optional, TypeVar

import structlog

logger = structlog.get_logger()

T = TypeVar("T")

# TTL for entries that must live for the whole process lifetime.
NO_EXPIRY = math.inf


@dataclass(frozen=True, slots=True)
class CacheEntry(Generic[T]):
    value: T
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now > self.expires_at


def _ttl_seconds(ttl: timedelta | float) -> float:
    if isinstance(ttl, timedelta):
        return ttl.total_seconds()
    return float(ttl)


class ExpiringCache(Generic[T]):
    """Thread-safe key/value store with per-entry TTL."""

    def __init__(
        self, name: str = "default", clock: Callable[[], float] = time.monotonic
    ) -> None:
        self.name = name
        self._clock = clock
        self._data: dict[str, CacheEntry[T]] = {}
        self._lock = Lock()

    def get(self, key: str) -> Optional[T]:
        """Return the cached value, or None on miss or expiry."""
        with self._lock:
            entry = self._data.get(key)
            if entry is None:
                return None
            if entry.is_expired(self._clock()):
                del self._data[key]
                logger.debug("cache_entry_expired", cache=self.name, key=key)
                return None
            return entry.value

    def set(self, key: str, value: T, ttl: timedelta | float) -> None:
        """Store value for ttl (seconds or timedelta). NO_EXPIRY keeps it forever."""
        seconds = _ttl_seconds(ttl)
        with self._lock:
            self._data[key] = CacheEntry(value=value, expires_at=self._clock() + seconds)
        logger.debug("cache_set", cache=self.name, key=key, ttl_seconds=seconds)

    def get_or_create(self, key: str, factory: Callable[[], T], ttl: timedelta | float) -> T:
        """
        Return the cached value or build, store and return a new one.

        The factory runs under the cache lock, so it must be cheap and must not
        block; an exception from it propagates and nothing is stored.
        """
        with self._lock:
            entry = self._data.get(key)
            now = self._clock()
            if entry is not None and not entry.is_expired(now):
                return entry.value
            value = factory()
            self._data[key] = CacheEntry(value=value, expires_at=now + _ttl_seconds(ttl))
            return value

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)

    def __contains__(self, key: object) -> bool:
        if not isinstance(key, str):
            return False
        return self.get(key) is not None
