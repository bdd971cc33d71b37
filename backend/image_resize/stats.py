"""
Request Statistics

Thread-safe counters reported by the /stats endpoint.
"""

from threading import Lock
from typing import Any, Dict


class ServerStats:
    """Counts requests, cache hits/misses and 304 responses."""

    def __init__(self):
        self._lock = Lock()
        self.total_requests = 0
        self.cache_hits = 0
        self.cache_misses = 0
        self.not_modified = 0

    def record_request(self) -> None:
        with self._lock:
            self.total_requests += 1

    def record_hit(self) -> None:
        with self._lock:
            self.cache_hits += 1

    def record_miss(self) -> None:
        with self._lock:
            self.cache_misses += 1

    def record_not_modified(self) -> None:
        with self._lock:
            self.not_modified += 1

    @property
    def hit_rate(self) -> float:
        """Percentage of image lookups served from cache."""
        with self._lock:
            lookups = self.cache_hits + self.cache_misses
            return self.cache_hits * 100.0 / lookups if lookups else 0.0

    def to_dict(self) -> Dict[str, Any]:
        hit_rate = self.hit_rate
        with self._lock:
            return {
                "total_requests": self.total_requests,
                "cache_hits": self.cache_hits,
                "cache_misses": self.cache_misses,
                "cache_hit_rate": f"{hit_rate:.2f}%",
                "304_not_modified": self.not_modified,
            }
