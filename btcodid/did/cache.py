# btcodid/did/cache.py
"""
Time-limited cache for resolution results.

Only idempotent lookups (DID resolution, resource resolution) go
through the cache. Entries expire after ``ttl`` seconds. Expired entries
are pruned on every put, and the oldest entry is evicted once
``max_entries`` is reached.
"""

import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

DEFAULT_TTL = 300.0
DEFAULT_MAX_ENTRIES = 1000


@dataclass
class CacheStats:
    """Hit/miss counters."""
    hits: int = 0
    misses: int = 0
    hit_rate: float = 0.0

    def record_hit(self):
        self.hits += 1
        self._update_rate()

    def record_miss(self):
        self.misses += 1
        self._update_rate()

    def _update_rate(self):
        total = self.hits + self.misses
        self.hit_rate = self.hits / total if total > 0 else 0.0


@dataclass
class _Entry:
    value: Any
    stored_at: float


class ResolutionCache:
    """
    Map of key -> value with per-entry expiry.

    Args:
        ttl: Seconds an entry stays valid
        max_entries: Upper bound on stored entries
        clock: Time source, replaceable in tests
    """

    def __init__(self, ttl: float = DEFAULT_TTL, max_entries: int = DEFAULT_MAX_ENTRIES,
                 clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self.max_entries = max_entries
        self._clock = clock
        self._entries: Dict[str, _Entry] = {}
        self._lock = threading.Lock()
        self.stats = CacheStats()

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and self._clock() - entry.stored_at < self.ttl:
                self.stats.record_hit()
                return entry.value
            if entry is not None:
                del self._entries[key]
            self.stats.record_miss()
            return None

    def put(self, key: str, value: Any):
        with self._lock:
            now = self._clock()
            self._prune(now)
            self._entries.pop(key, None)
            while self._entries and len(self._entries) >= self.max_entries:
                del self._entries[next(iter(self._entries))]
            self._entries[key] = _Entry(value=value, stored_at=now)

    def _prune(self, now: float):
        expired = [k for k, e in self._entries.items() if now - e.stored_at >= self.ttl]
        for key in expired:
            del self._entries[key]

    def invalidate(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self):
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
