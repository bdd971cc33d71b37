"""
Image Cache Store

Disk-backed, content-addressed cache for original and resized image bytes:
- One file per cache key, named by the SHA-256 of the key
- In-memory index (size + last access) mirrored to index.json
- Running total size, kept under a byte budget by the eviction policy
- Self-healing: a missing blob is a miss, a broken index is rebuilt from disk
"""

import os
import time
import hashlib
import logging
import tempfile
import threading
from pathlib import Path
from typing import Callable, Dict, Optional, Tuple
from dataclasses import dataclass
from concurrent.futures import ThreadPoolExecutor

from pydantic import BaseModel, Field, ValidationError

from .eviction import EvictionPolicy

logger = logging.getLogger(__name__)

ORIGINAL_SUFFIX = ".img"
RESIZED_SUFFIX = ".jpg"
BLOB_SUFFIXES = (ORIGINAL_SUFFIX, RESIZED_SUFFIX)
TEMP_PREFIX = ".tmp-"
INDEX_FILENAME = "index.json"


# ============================================
# Keys and Entries
# ============================================

@dataclass(frozen=True)
class CacheKey:
    """
    Deterministic identity of a cached blob.

    The original passthrough is keyed by the URL itself, resized output by
    ``url|width|height`` (an unset side is written as 0).
    """
    value: str
    resized: bool = False

    @classmethod
    def for_request(
        cls,
        url: str,
        width: Optional[int] = None,
        height: Optional[int] = None,
    ) -> "CacheKey":
        if width is None and height is None:
            return cls(value=url, resized=False)
        return cls(value=f"{url}|{width or 0}|{height or 0}", resized=True)

    @property
    def blob_name(self) -> str:
        digest = hashlib.sha256(self.value.encode("utf-8")).hexdigest()
        return digest + (RESIZED_SUFFIX if self.resized else ORIGINAL_SUFFIX)


@dataclass
class CacheEntry:
    """Index metadata for one stored blob."""
    key: str
    size_bytes: int
    last_accessed_ms: int


@dataclass
class CachedBlob:
    """Bytes read from the cache plus the blob's modification time."""
    data: bytes
    last_modified: float


class IndexEntryRecord(BaseModel):
    key: str = ""
    size_bytes: int = Field(ge=0)
    last_accessed_ms: int = Field(ge=0)


class IndexRecord(BaseModel):
    """On-disk shape of index.json."""
    total_size_bytes: int = Field(ge=0)
    entries: Dict[str, IndexEntryRecord] = Field(default_factory=dict)


# ============================================
# Store
# ============================================

class ImageCacheStore:
    """
    Content-addressed blob cache with a persisted index.

    Cache structure:
    cache_dir/
    ├── images/
    │   ├── <sha256>.img   (original bytes)
    │   ├── <sha256>.jpg   (resized output)
    │   └── ...
    └── index.json

    All public methods are thread-safe; callers never need their own locking.
    """

    def __init__(
        self,
        cache_dir: str = "./image_cache",
        max_cache_bytes: int = 2 * 1024 * 1024 * 1024,
        eviction_policy: Optional[EvictionPolicy] = None,
        clock: Callable[[], float] = time.time,
        persist_async: bool = True,
    ):
        self.cache_dir = Path(cache_dir)
        self.images_dir = self.cache_dir / "images"
        self.index_file = self.cache_dir / INDEX_FILENAME

        self.max_cache_bytes = max_cache_bytes
        self.eviction_policy = eviction_policy or EvictionPolicy()
        self._clock = clock

        self._index: Dict[str, CacheEntry] = {}
        self._total_size_bytes = 0
        self._lock = threading.Lock()

        # Index saves run off the request path; one pending save at a time
        self._save_lock = threading.Lock()
        self._save_pending = False
        self._executor: Optional[ThreadPoolExecutor] = (
            ThreadPoolExecutor(max_workers=1, thread_name_prefix="cache-index")
            if persist_async else None
        )
        self._closed = False

        self._init_cache_dir()
        self._load()

    def _init_cache_dir(self) -> None:
        """Create cache directories if they don't exist."""
        self.images_dir.mkdir(parents=True, exist_ok=True)
        logger.info(f"[ImageCache] Cache directory: {self.cache_dir}")

    def now_ms(self) -> int:
        return int(self._clock() * 1000)

    @property
    def total_size_bytes(self) -> int:
        with self._lock:
            return self._total_size_bytes

    def __len__(self) -> int:
        with self._lock:
            return len(self._index)

    def __contains__(self, key: CacheKey) -> bool:
        with self._lock:
            return key.blob_name in self._index

    # ----------------------------------------
    # Startup
    # ----------------------------------------

    def _load(self) -> None:
        """Load the persisted index, reconciling it against the blob directory."""
        on_disk = self._scan_directory()
        record = self._read_index_record()

        if record is None:
            logger.warning(f"[ImageCache] Rebuilding index from {len(on_disk)} files on disk")
            index = {
                name: CacheEntry(key="", size_bytes=size, last_accessed_ms=mtime_ms)
                for name, (size, mtime_ms) in on_disk.items()
            }
        else:
            index = {}
            for name, (size, mtime_ms) in on_disk.items():
                known = record.entries.get(name)
                if known is None:
                    index[name] = CacheEntry(key="", size_bytes=size, last_accessed_ms=mtime_ms)
                else:
                    index[name] = CacheEntry(
                        key=known.key,
                        size_bytes=size,
                        last_accessed_ms=known.last_accessed_ms,
                    )
            dropped = len(set(record.entries) - set(on_disk))
            adopted = len(set(on_disk) - set(record.entries))
            if dropped or adopted:
                logger.warning(
                    f"[ImageCache] Index out of sync: dropped {dropped}, adopted {adopted}"
                )

        total = sum(entry.size_bytes for entry in index.values())
        if record is not None and record.total_size_bytes != total:
            logger.warning(
                f"[ImageCache] Index total {record.total_size_bytes} != {total} on disk, corrected"
            )

        with self._lock:
            self._index = index
            self._total_size_bytes = total

        logger.info(f"[ImageCache] Loaded {len(index)} cached entries ({total} bytes)")
        self._schedule_save()

    def _read_index_record(self) -> Optional[IndexRecord]:
        """Parse index.json, or None if it is missing or unusable."""
        if not self.index_file.exists():
            return None
        try:
            return IndexRecord.model_validate_json(self.index_file.read_bytes())
        except (OSError, ValidationError, ValueError) as e:
            logger.warning(f"[ImageCache] Failed to load index: {e}")
            return None

    def _scan_directory(self) -> Dict[str, Tuple[int, int]]:
        """Map blob name -> (size, mtime ms) for every blob on disk."""
        found: Dict[str, Tuple[int, int]] = {}
        for path in self.images_dir.iterdir():
            if path.name.startswith(TEMP_PREFIX):
                # Leftover of an interrupted write
                path.unlink(missing_ok=True)
                continue
            if path.suffix not in BLOB_SUFFIXES:
                continue
            try:
                stat = path.stat()
            except OSError:
                continue
            found[path.name] = (stat.st_size, int(stat.st_mtime * 1000))
        return found

    # ----------------------------------------
    # Read / Write
    # ----------------------------------------

    def get(self, key: CacheKey) -> Optional[CachedBlob]:
        """
        Read a cached blob.

        Returns:
            CachedBlob on hit, None on miss. A blob that vanished from disk
            drops its index entry.
        """
        name = key.blob_name
        path = self.images_dir / name
        blob = self._read_blob(path)

        if blob is None:
            stale = False
            with self._lock:
                entry = self._index.get(name)
                if entry is not None and not path.exists():
                    del self._index[name]
                    self._total_size_bytes -= entry.size_bytes
                    stale = True
            if stale:
                logger.warning(f"[ImageCache] Cache file missing, dropped entry: {name}")
                self._schedule_save()
            return None

        with self._lock:
            entry = self._index.get(name)
            if entry is None and path.exists():
                # File the index never knew about
                self._index[name] = CacheEntry(
                    key=key.value,
                    size_bytes=len(blob.data),
                    last_accessed_ms=self.now_ms(),
                )
                self._total_size_bytes += len(blob.data)
            elif entry is not None:
                entry.last_accessed_ms = self.now_ms()
                entry.key = entry.key or key.value

        self._schedule_save()
        logger.debug(f"[ImageCache] Cache hit: {key.value[:50]}...")
        return blob

    @staticmethod
    def _read_blob(path: Path) -> Optional[CachedBlob]:
        try:
            with open(path, "rb") as f:
                data = f.read()
                mtime = os.fstat(f.fileno()).st_mtime
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.error(f"[ImageCache] Failed to read cache: {e}")
            return None
        return CachedBlob(data=data, last_modified=mtime)

    def put(self, key: CacheKey, data: bytes) -> bool:
        """
        Store a blob, replacing any previous one atomically.

        Returns:
            True if cached, False if the write failed or the blob can never fit.
        """
        if len(data) > self.max_cache_bytes:
            logger.warning(
                f"[ImageCache] Too large to cache ({len(data)} bytes): {key.value[:50]}..."
            )
            return False

        name = key.blob_name
        path = self.images_dir / name

        tmp_path = None
        try:
            fd, tmp_name = tempfile.mkstemp(dir=self.images_dir, prefix=TEMP_PREFIX, suffix=".tmp")
            tmp_path = Path(tmp_name)
            with os.fdopen(fd, "wb") as f:
                f.write(data)

            with self._lock:
                os.replace(tmp_path, path)
                tmp_path = None
                previous = self._index.get(name)
                if previous is not None:
                    self._total_size_bytes -= previous.size_bytes
                self._index[name] = CacheEntry(
                    key=key.value,
                    size_bytes=len(data),
                    last_accessed_ms=self.now_ms(),
                )
                self._total_size_bytes += len(data)
                over_budget = self._total_size_bytes > self.max_cache_bytes
        except OSError as e:
            logger.error(f"[ImageCache] Failed to cache: {e}")
            return False
        finally:
            if tmp_path is not None:
                tmp_path.unlink(missing_ok=True)

        logger.debug(f"[ImageCache] Cached: {key.value[:50]}... ({len(data)} bytes)")

        if over_budget:
            self.eviction_policy.enforce_size(self)
        self._schedule_save()
        return True

    def touch(self, key: CacheKey) -> bool:
        """Mark an entry as just used. Returns False if it is not indexed."""
        with self._lock:
            entry = self._index.get(key.blob_name)
            if entry is None:
                return False
            entry.last_accessed_ms = self.now_ms()
        self._schedule_save()
        return True

    # ----------------------------------------
    # Eviction support
    # ----------------------------------------

    def snapshot(self) -> Dict[str, CacheEntry]:
        """Copy of the index, safe to iterate while the store keeps changing."""
        with self._lock:
            return {
                name: CacheEntry(entry.key, entry.size_bytes, entry.last_accessed_ms)
                for name, entry in self._index.items()
            }

    def least_recent(self) -> Optional[Tuple[str, int]]:
        """(blob name, last_accessed_ms) of the least recently used entry."""
        with self._lock:
            if not self._index:
                return None
            name, entry = min(self._index.items(), key=lambda item: item[1].last_accessed_ms)
            return name, entry.last_accessed_ms

    def remove(self, name: str, expected_last_accessed_ms: Optional[int] = None) -> bool:
        """
        Remove an entry and its blob.

        With ``expected_last_accessed_ms`` the entry is only removed if it was
        not touched since the caller looked at it. A failed file delete is
        logged; the index entry is removed regardless.
        """
        with self._lock:
            entry = self._index.get(name)
            if entry is None:
                return False
            if (
                expected_last_accessed_ms is not None
                and entry.last_accessed_ms != expected_last_accessed_ms
            ):
                return False
            del self._index[name]
            self._total_size_bytes -= entry.size_bytes
            try:
                (self.images_dir / name).unlink(missing_ok=True)
            except OSError as e:
                logger.error(f"[ImageCache] Failed to remove file {name}: {e}")

        logger.debug(f"[ImageCache] Removed: {entry.key[:50] or name}")
        self._schedule_save()
        return True

    def clear(self) -> int:
        """
        Clear all cached images.

        Returns:
            Number of entries removed.
        """
        removed = sum(1 for name in self.snapshot() if self.remove(name))
        logger.info(f"[ImageCache] Cleared all {removed} entries")
        return removed

    # ----------------------------------------
    # Index persistence
    # ----------------------------------------

    def _build_record(self) -> IndexRecord:
        with self._lock:
            return IndexRecord(
                total_size_bytes=self._total_size_bytes,
                entries={
                    name: IndexEntryRecord(
                        key=entry.key,
                        size_bytes=entry.size_bytes,
                        last_accessed_ms=entry.last_accessed_ms,
                    )
                    for name, entry in self._index.items()
                },
            )

    def _schedule_save(self) -> None:
        """Queue an index save; a save already waiting will pick up this change."""
        if self._executor is None:
            self.flush()
            return

        with self._lock:
            if self._save_pending or self._closed:
                return
            self._save_pending = True

        try:
            self._executor.submit(self._run_scheduled_save)
        except RuntimeError:
            # Executor already shut down
            with self._lock:
                self._save_pending = False

    def _run_scheduled_save(self) -> None:
        with self._lock:
            self._save_pending = False
        self.flush()

    def flush(self) -> bool:
        """Write the current index to disk synchronously."""
        with self._save_lock:
            record = self._build_record()
            payload = record.model_dump_json(indent=2).encode("utf-8")
            tmp_path = None
            try:
                fd, tmp_name = tempfile.mkstemp(dir=self.cache_dir, prefix=TEMP_PREFIX, suffix=".json")
                tmp_path = Path(tmp_name)
                with os.fdopen(fd, "wb") as f:
                    f.write(payload)
                os.replace(tmp_path, self.index_file)
                tmp_path = None
                return True
            except OSError as e:
                logger.error(f"[ImageCache] Failed to save index: {e}")
                return False
            finally:
                if tmp_path is not None:
                    tmp_path.unlink(missing_ok=True)

    def close(self) -> None:
        """Flush the index and stop the background saver."""
        with self._lock:
            self._closed = True
        if self._executor is not None:
            self._executor.shutdown(wait=True)
        self.flush()
        logger.info("[ImageCache] Closed")

    # ----------------------------------------
    # Stats
    # ----------------------------------------

    def get_stats(self) -> dict:
        """Get cache statistics."""
        with self._lock:
            total_size = self._total_size_bytes
            entries = len(self._index)
        return {
            "total_entries": entries,
            "total_size_bytes": total_size,
            "total_size_mb": round(total_size / (1024 * 1024), 2),
            "max_size_mb": round(self.max_cache_bytes / (1024 * 1024), 2),
            "usage_percent": round(total_size / self.max_cache_bytes * 100, 1) if self.max_cache_bytes > 0 else 0,
            "max_age_hours": (
                round(self.eviction_policy.max_age_seconds / 3600, 2)
                if self.eviction_policy.max_age_seconds is not None else None
            ),
        }
