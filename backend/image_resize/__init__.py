"""
Image Resize Module

Fetches remote images, optionally resizes/crops them, and serves the result
with ETag / Last-Modified validation.

Features:
- Disk cache for original and resized bytes with a persisted index
- Age expiry and LRU eviction under a byte budget
- 304 Not Modified handling
"""

from .app import create_app
from .cache_store import CacheKey, ImageCacheStore
from .config import ResizeServerConfig
from .eviction import CacheSweeper, EvictionPolicy
from .service import ImageResizeService

__all__ = [
    "create_app",
    "CacheKey",
    "ImageCacheStore",
    "ResizeServerConfig",
    "CacheSweeper",
    "EvictionPolicy",
    "ImageResizeService",
]
