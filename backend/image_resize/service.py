"""
Image Resize Service

Runs one image request end to end:
1. Look up the cache key (original or resized variant)
2. On a miss, fetch the source (reusing a cached original when there is one)
3. Resize and encode in a worker thread
4. Hand the bytes to the cache in the background
5. Build the 200/304 response from the served bytes
"""

import asyncio
import logging
from typing import Optional
from urllib.parse import urlparse

from fastapi import BackgroundTasks

from .cache_store import CacheKey, ImageCacheStore
from .conditional import ConditionalResult, build_conditional_response
from .config import ResizeServerConfig
from .errors import InvalidParameterError
from .fetcher import ImageFetcher, validate_url
from .stats import ServerStats
from .transform import OUTPUT_CONTENT_TYPE, detect_content_type, transform_bytes

logger = logging.getLogger(__name__)

EXTENSION_CONTENT_TYPES = {
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".svg": "image/svg+xml",
}

DEFAULT_CONTENT_TYPE = "application/octet-stream"


def guess_content_type(url: str) -> Optional[str]:
    """Content type from the URL path extension."""
    path = urlparse(url).path.lower()
    for ext, mime in EXTENSION_CONTENT_TYPES.items():
        if path.endswith(ext):
            return mime
    return None


def parse_dimension(name: str, raw: Optional[str], max_dimension: int) -> Optional[int]:
    """
    Parse a w/h query value.

    Missing or empty means unset. Anything else must be an integer in
    [1, max_dimension]; otherwise the whole request is rejected.
    """
    if raw is None or raw.strip() == "":
        return None
    try:
        value = int(raw.strip())
    except ValueError:
        raise InvalidParameterError(f"Invalid {name}: {raw!r} is not an integer")
    if value <= 0 or value > max_dimension:
        raise InvalidParameterError(f"Invalid {name}: must be between 1 and {max_dimension}")
    return value


class ImageResizeService:
    """
    Request orchestrator for the resize endpoint.

    The cache store is optional; without one every request fetches.
    """

    def __init__(
        self,
        config: ResizeServerConfig,
        fetcher: ImageFetcher,
        cache_store: Optional[ImageCacheStore] = None,
        stats: Optional[ServerStats] = None,
    ):
        self.config = config
        self.fetcher = fetcher
        self.cache_store = cache_store
        self.stats = stats or ServerStats()

    @property
    def cache_enabled(self) -> bool:
        return self.cache_store is not None

    async def serve(
        self,
        url: str,
        width: Optional[int] = None,
        height: Optional[int] = None,
        if_none_match: Optional[str] = None,
        if_modified_since: Optional[str] = None,
        background_tasks: Optional[BackgroundTasks] = None,
    ) -> ConditionalResult:
        """
        Produce the response for an image request.

        Raises:
            ImageResizeError subclasses; the route maps them to HTTP statuses.
        """
        validate_url(url)
        key = CacheKey.for_request(url, width, height)

        cached = await self._cache_get(key)
        if cached is not None:
            self.stats.record_hit()
            data = cached.data
            last_modified = cached.last_modified
        else:
            self.stats.record_miss()
            if key.resized:
                data = await self._render_resized(url, width, height, background_tasks)
            else:
                data = await self._load_original(url)
            last_modified = None
            await self._cache_put(key, data, background_tasks)

        if key.resized:
            content_type = OUTPUT_CONTENT_TYPE
        else:
            content_type = await self._original_content_type(url, data)

        result = build_conditional_response(
            data,
            content_type,
            last_modified=last_modified,
            if_none_match=if_none_match,
            if_modified_since=if_modified_since,
            cache_hit=cached is not None,
        )
        if result.not_modified:
            self.stats.record_not_modified()
        return result

    async def _original_content_type(self, url: str, data: bytes) -> str:
        """URL extension first, then a Pillow sniff of the bytes."""
        content_type = guess_content_type(url)
        if content_type is None:
            content_type = await asyncio.to_thread(detect_content_type, data)
        return content_type or DEFAULT_CONTENT_TYPE

    async def _load_original(self, url: str) -> bytes:
        fetched = await self.fetcher.fetch(url)
        logger.info(f"[ImageResize] Fetched: {url[:60]}... ({len(fetched.data)} bytes)")
        return fetched.data

    async def _render_resized(
        self,
        url: str,
        width: Optional[int],
        height: Optional[int],
        background_tasks: Optional[BackgroundTasks],
    ) -> bytes:
        original_key = CacheKey.for_request(url)
        cached_original = await self._cache_get(original_key)
        if cached_original is not None:
            source = cached_original.data
        else:
            source = await self._load_original(url)
            await self._cache_put(original_key, source, background_tasks)

        result = await asyncio.to_thread(transform_bytes, source, width, height)
        logger.info(
            f"[ImageResize] Resized {url[:60]}... to {result.width}x{result.height} "
            f"({len(result.data)} bytes)"
        )
        return result.data

    async def _cache_get(self, key: CacheKey):
        if self.cache_store is None:
            return None
        return await asyncio.to_thread(self.cache_store.get, key)

    async def _cache_put(
        self,
        key: CacheKey,
        data: bytes,
        background_tasks: Optional[BackgroundTasks],
    ) -> None:
        """Cache bytes after the response is sent when possible."""
        if self.cache_store is None:
            return
        if background_tasks is not None:
            background_tasks.add_task(self.cache_store.put, key, data)
        else:
            await asyncio.to_thread(self.cache_store.put, key, data)
