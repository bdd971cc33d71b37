"""
Cache Eviction

Two ways entries leave the image cache:
- Age expiry: not accessed within max_age_seconds
- Size pressure: least recently used first until under the byte budget

EvictionPolicy holds the rules; CacheSweeper runs them periodically in the
background.
"""

from __future__ import annotations
import time
import asyncio
import logging
from typing import Optional, TYPE_CHECKING
from dataclasses import dataclass

if TYPE_CHECKING:
    from .cache_store import ImageCacheStore

logger = logging.getLogger(__name__)


@dataclass
class SweepReport:
    """Entries removed by one sweep."""
    expired: int = 0
    evicted: int = 0


class EvictionPolicy:
    """
    Age and size rules applied to an ImageCacheStore.

    Both passes work from snapshots and remove entries one at a time, so the
    store stays usable for requests while a pass is running.
    """

    def __init__(self, max_age_seconds: Optional[float] = None):
        self.max_age_seconds = max_age_seconds

    def expire(self, store: "ImageCacheStore", now_ms: Optional[int] = None) -> int:
        """
        Remove entries not accessed within max_age_seconds.

        Returns:
            Number of entries removed.
        """
        if self.max_age_seconds is None:
            return 0

        if now_ms is None:
            now_ms = store.now_ms()
        cutoff_ms = now_ms - int(self.max_age_seconds * 1000)

        removed = 0
        for name, entry in store.snapshot().items():
            if entry.last_accessed_ms >= cutoff_ms:
                continue
            # Skipped if touched since the snapshot
            if store.remove(name, expected_last_accessed_ms=entry.last_accessed_ms):
                removed += 1

        if removed:
            logger.info(f"[Eviction] Expired {removed} entries")
        return removed

    def enforce_size(self, store: "ImageCacheStore") -> int:
        """
        Evict least recently used entries until the store fits its budget.

        Returns:
            Number of entries removed.
        """
        removed = 0
        while store.total_size_bytes > store.max_cache_bytes:
            candidate = store.least_recent()
            if candidate is None:
                break
            name, last_accessed_ms = candidate
            if store.remove(name, expected_last_accessed_ms=last_accessed_ms):
                removed += 1
                logger.debug(f"[Eviction] LRU evicted: {name}")

        if removed:
            logger.info(
                f"[Eviction] LRU evicted {removed} entries, "
                f"{store.total_size_bytes}/{store.max_cache_bytes} bytes used"
            )
        return removed

    def sweep(self, store: "ImageCacheStore") -> SweepReport:
        """Run age expiry then size reduction."""
        return SweepReport(
            expired=self.expire(store),
            evicted=self.enforce_size(store),
        )


class CacheSweeper:
    """
    Background task that sweeps the cache on a fixed interval.

    Usage:
        sweeper = CacheSweeper(store, interval_seconds=300)
        sweeper.start()
        ...
        await sweeper.stop()
    """

    def __init__(
        self,
        store: "ImageCacheStore",
        interval_seconds: float = 300.0,
        policy: Optional[EvictionPolicy] = None,
    ):
        self.store = store
        self.policy = policy or store.eviction_policy
        self.interval_seconds = interval_seconds
        self.last_sweep_at: Optional[float] = None
        self.sweep_count = 0

        self._stop_event: Optional[asyncio.Event] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the sweep loop on the running event loop."""
        if self.running:
            return
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._sweep_loop())
        logger.info(f"[Eviction] Sweeper started (every {self.interval_seconds}s)")

    async def stop(self) -> None:
        """Signal the loop to exit and wait for it."""
        if self._task is None:
            return
        self._stop_event.set()
        try:
            await self._task
        finally:
            self._task = None
        logger.info("[Eviction] Sweeper stopped")

    async def sweep_once(self) -> SweepReport:
        """Run one sweep in a worker thread."""
        report = await asyncio.to_thread(self.policy.sweep, self.store)
        self.last_sweep_at = time.time()
        self.sweep_count += 1
        return report

    async def _sweep_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval_seconds)
                break
            except asyncio.TimeoutError:
                pass

            try:
                await self.sweep_once()
            except Exception as e:
                logger.error(f"[Eviction] Sweep failed: {e}")
