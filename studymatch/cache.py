"""Process-wide result cache for provider enrichment.

Entries expire a fixed time after they are written and the cache holds at
most ``max_size`` entries. When full, expired entries are purged first and
then the least recently used entry is evicted. All operations take a single
lock so concurrent suggestion requests can share one instance.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Generic, Hashable, Optional, Tuple, TypeVar

logger = logging.getLogger(__name__)

V = TypeVar("V")

PairKey = Tuple[str, str]


def pair_key(requester_profile_id: str, candidate_profile_id: str) -> PairKey:
    """Ordered key: (a, b) and (b, a) are different entries."""
    return (str(requester_profile_id), str(candidate_profile_id))


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    evictions: int = 0
    expirations: int = 0


class ResultCache(Generic[V]):
    def __init__(
        self,
        ttl_seconds: float = 60 * 60,
        max_size: int = 1000,
        clock: Callable[[], float] = time.monotonic,
    ):
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.ttl_seconds = float(ttl_seconds)
        self.max_size = int(max_size)
        self._clock = clock
        self._entries: "OrderedDict[Hashable, Tuple[float, V]]" = OrderedDict()
        self._lock = threading.Lock()
        self._stats = CacheStats()

    def get(self, key: Hashable) -> Optional[V]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._stats.misses += 1
                return None
            expires_at, value = entry
            if self._clock() >= expires_at:
                del self._entries[key]
                self._stats.expirations += 1
                self._stats.misses += 1
                return None
            self._entries.move_to_end(key)
            self._stats.hits += 1
            return value

    def put(self, key: Hashable, value: V) -> None:
        with self._lock:
            now = self._clock()
            if key in self._entries:
                del self._entries[key]
            elif len(self._entries) >= self.max_size:
                self._purge_expired(now)
                while len(self._entries) >= self.max_size:
                    evicted, _ = self._entries.popitem(last=False)
                    self._stats.evictions += 1
                    logger.debug("Evicted %s from result cache", evicted)
            self._entries[key] = (now + self.ttl_seconds, value)

    def _purge_expired(self, now: float) -> None:
        expired = [k for k, (expires_at, _) in self._entries.items() if now >= expires_at]
        for k in expired:
            del self._entries[k]
        self._stats.expirations += len(expired)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: Hashable) -> bool:
        with self._lock:
            entry = self._entries.get(key)
            return entry is not None and self._clock() < entry[0]

    def stats(self) -> CacheStats:
        with self._lock:
            return CacheStats(**vars(self._stats))
