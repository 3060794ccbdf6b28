"""
Bounded in-memory cache with per-entry TTL and oldest-insertion eviction.
"""

import heapq
import itertools
import threading
from dataclasses import dataclass, asdict
from typing import Any, Callable, Dict, Generic, Hashable, List, Optional, Tuple, TypeVar

from shared.logging import get_logger
from shared.metrics import MetricsCollector
from ..clock import Clock, SystemClock

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


@dataclass(frozen=True)
class CacheEntry(Generic[K, V]):
    key: K
    value: V
    inserted_at: float
    expires_at: float
    # Insertion counter; breaks ties between equal inserted_at values
    sequence: int

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    evictions: int = 0
    expirations: int = 0
    invalidations: int = 0

    def hit_ratio(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {**asdict(self), "hit_ratio": self.hit_ratio()}


class BoundedTTLCache(Generic[K, V]):
    """Key/value cache bounded by ``max_size`` with lazy TTL expiry.

    * ``put`` stamps ``inserted_at``/``expires_at`` from the clock. When the
      insert pushes the size past ``max_size``, exactly one entry is evicted:
      the one with the smallest ``(inserted_at, sequence)``. Reads do not
      refresh an entry's position; this is not an LRU.
    * ``get`` re-checks expiry and drops an expired entry on the spot. There
      is no background sweep, so an expired entry nobody reads stays resident
      until capacity pressure evicts it or ``sweep_expired`` is called.
    * Every operation holds one lock, including ``get`` since it may write.
    """

    def __init__(
        self,
        ttl: float,
        max_size: int,
        *,
        clock: Optional[Clock] = None,
        metrics: Optional[MetricsCollector] = None,
        name: str = "default",
    ):
        if ttl <= 0:
            raise ValueError("ttl must be greater than zero")
        if max_size < 1:
            raise ValueError("max_size must be at least 1")

        self.ttl = ttl
        self.max_size = max_size
        self.clock = clock or SystemClock()
        self.metrics = metrics
        self.name = name
        self.logger = get_logger("gateway.ttl_cache")

        self._lock = threading.Lock()
        self._entries: Dict[K, CacheEntry[K, V]] = {}
        # Min-heap on (inserted_at, sequence, key); stale items are skipped on pop
        self._order: List[Tuple[float, int, K]] = []
        self._sequence = itertools.count()
        self._stats = CacheStats()

    def put(self, key: K, value: V) -> Optional[CacheEntry[K, V]]:
        """Insert or overwrite ``key``. Returns the evicted entry, if any."""
        with self._lock:
            now = self.clock.now()
            entry = CacheEntry(
                key=key,
                value=value,
                inserted_at=now,
                expires_at=now + self.ttl,
                sequence=next(self._sequence),
            )
            self._entries[key] = entry
            heapq.heappush(self._order, (entry.inserted_at, entry.sequence, key))

            evicted = None
            if len(self._entries) > self.max_size:
                evicted = self._evict_oldest()
            self._maybe_compact()
            self._publish_size()

        if evicted is not None:
            self.logger.debug(
                "Cache entry evicted",
                cache=self.name,
                key=evicted.key,
                inserted_at=evicted.inserted_at,
            )
        return evicted

    def get(self, key: K, default: Optional[V] = None) -> Optional[V]:
        """Return the live value for ``key`` or ``default`` on miss/expiry."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._record_lookup(hit=False)
                return default

            if entry.is_expired(self.clock.now()):
                del self._entries[key]
                self._stats.expirations += 1
                self._record_removal("expired")
                self._record_lookup(hit=False)
                self._maybe_compact()
                self._publish_size()
                return default

            self._record_lookup(hit=True)
            return entry.value

    def peek_entry(self, key: K) -> Optional[CacheEntry[K, V]]:
        """Return the stored entry without expiry checks or stats."""
        with self._lock:
            return self._entries.get(key)

    def remove(self, key: K) -> None:
        with self._lock:
            if self._entries.pop(key, None) is not None:
                self._maybe_compact()
                self._publish_size()

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._order.clear()
            self._publish_size()

    def size(self) -> int:
        """Number of resident entries, expired-but-unread ones included."""
        with self._lock:
            return len(self._entries)

    __len__ = size

    def keys(self) -> List[K]:
        with self._lock:
            return list(self._entries)

    def invalidate_where(self, predicate: Callable[[K], bool]) -> int:
        """Atomically remove every entry whose key matches ``predicate``."""
        with self._lock:
            doomed = [key for key in self._entries if predicate(key)]
            for key in doomed:
                del self._entries[key]
            if doomed:
                self._stats.invalidations += len(doomed)
                self._record_removal("invalidated", len(doomed))
                self._maybe_compact()
                self._publish_size()
            return len(doomed)

    def sweep_expired(self) -> int:
        """Eagerly drop expired entries. Never called implicitly."""
        with self._lock:
            now = self.clock.now()
            expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
            for key in expired:
                del self._entries[key]
            if expired:
                self._stats.expirations += len(expired)
                self._record_removal("expired", len(expired))
                self._maybe_compact()
                self._publish_size()
            return len(expired)

    def stats(self) -> CacheStats:
        with self._lock:
            return CacheStats(**asdict(self._stats))

    def _evict_oldest(self) -> Optional[CacheEntry[K, V]]:
        while self._order:
            _, sequence, key = heapq.heappop(self._order)
            entry = self._entries.get(key)
            if entry is not None and entry.sequence == sequence:
                del self._entries[key]
                self._stats.evictions += 1
                self._record_removal("capacity")
                return entry
        return None

    def _maybe_compact(self) -> None:
        if len(self._order) > 2 * len(self._entries) + 32:
            self._order = [(e.inserted_at, e.sequence, k) for k, e in self._entries.items()]
            heapq.heapify(self._order)

    def _record_lookup(self, hit: bool) -> None:
        if hit:
            self._stats.hits += 1
        else:
            self._stats.misses += 1
        if self.metrics:
            self.metrics.increment_counter("cache_lookups_total", result="hit" if hit else "miss")

    def _record_removal(self, reason: str, count: int = 1) -> None:
        if self.metrics:
            self.metrics.increment_counter("cache_removals_total", count, reason=reason)

    def _publish_size(self) -> None:
        if self.metrics:
            self.metrics.set_gauge("cache_size", len(self._entries))
