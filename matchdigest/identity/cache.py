"""
Process-wide read-through cache for resolved identities.

Entries are keyed by (entity, id). Only successful resolutions are stored;
misses and failures are retried on the next request. A ttl of 0 disables
the cache. Expired entries are swept on every write and the least recently
used entry is evicted once maxsize is reached. Single event loop, so no
locking.
"""

import time
from typing import Callable, Optional

import cachetools

DEFAULT_MAXSIZE = 10_000


class TTLCache:
    """Bounded TTL mapping over cachetools.TTLCache."""

    def __init__(
        self,
        ttl_seconds: float,
        maxsize: int = DEFAULT_MAXSIZE,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl = ttl_seconds
        self.maxsize = maxsize
        self._entries: Optional[cachetools.TTLCache] = None
        if self.enabled:
            self._entries = cachetools.TTLCache(maxsize=maxsize, ttl=ttl_seconds, timer=clock)

    @property
    def enabled(self) -> bool:
        return self.ttl > 0 and self.maxsize > 0

    def get(self, entity: str, key: str) -> Optional[str]:
        if self._entries is None:
            return None
        return self._entries.get((entity, key))

    def set(self, entity: str, key: str, value: str) -> None:
        if self._entries is None:
            return
        self._entries[(entity, key)] = value

    def clear(self) -> None:
        if self._entries is not None:
            self._entries.clear()

    def __len__(self) -> int:
        if self._entries is None:
            return 0
        self._entries.expire()
        return len(self._entries)
