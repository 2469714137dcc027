"""In-memory cache metrics.

Counters reset on application restart. Uses a lock because metrics may be
read from a different thread than the event loop that records them.
"""

from dataclasses import dataclass, field
from threading import Lock


@dataclass
class CacheMetric:
    """Read-through cache outcome counters."""

    hits: int = 0
    stale_hits: int = 0
    misses: int = 0
    refreshes: int = 0
    refresh_failures: int = 0
    discarded_writes: int = 0
    _lock: Lock = field(default_factory=Lock, repr=False)

    def record_hit(self) -> None:
        with self._lock:
            self.hits += 1

    def record_stale_hit(self) -> None:
        with self._lock:
            self.stale_hits += 1

    def record_miss(self) -> None:
        with self._lock:
            self.misses += 1

    def record_refresh(self) -> None:
        with self._lock:
            self.refreshes += 1

    def record_refresh_failure(self) -> None:
        with self._lock:
            self.refresh_failures += 1

    def record_discarded_write(self) -> None:
        with self._lock:
            self.discarded_writes += 1

    def hit_rate(self) -> float:
        with self._lock:
            total = self.hits + self.stale_hits + self.misses
            if total == 0:
                return 0.0
            return (self.hits + self.stale_hits) / total

    def snapshot(self) -> dict:
        with self._lock:
            return {
                "hits": self.hits,
                "stale_hits": self.stale_hits,
                "misses": self.misses,
                "refreshes": self.refreshes,
                "refresh_failures": self.refresh_failures,
                "discarded_writes": self.discarded_writes,
            }
