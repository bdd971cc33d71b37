"""
Image Resize Application

FastAPI app factory. Owns the lifecycle of the cache store, the eviction
sweeper and the HTTP client.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from .cache_store import ImageCacheStore
from .config import ResizeServerConfig
from .eviction import CacheSweeper, EvictionPolicy
from .fetcher import ImageFetcher
from .routes_fastapi import router
from .service import ImageResizeService

logger = logging.getLogger(__name__)


def build_cache_store(config: ResizeServerConfig) -> Optional[ImageCacheStore]:
    """Cache store for the config, or None when caching is disabled."""
    if not config.cache_enabled:
        logger.info("[ImageResize] Cache disabled")
        return None
    return ImageCacheStore(
        cache_dir=config.cache_dir,
        max_cache_bytes=config.cache_max_bytes,
        eviction_policy=EvictionPolicy(max_age_seconds=config.cache_max_age_seconds),
    )


def create_app(
    config: Optional[ResizeServerConfig] = None,
    fetcher: Optional[ImageFetcher] = None,
    cache_store: Optional[ImageCacheStore] = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        config: Settings; read from the environment when omitted
        fetcher: Image fetcher; built from config when omitted
        cache_store: Cache store; built from config when omitted
    """
    config = config or ResizeServerConfig.from_env()
    fetcher = fetcher or ImageFetcher(
        connect_timeout=config.connect_timeout,
        read_timeout=config.read_timeout,
        max_bytes=config.max_image_size_bytes,
    )
    if cache_store is None:
        cache_store = build_cache_store(config)

    service = ImageResizeService(config, fetcher, cache_store)
    sweeper = (
        CacheSweeper(cache_store, interval_seconds=config.sweep_interval_seconds)
        if cache_store is not None else None
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if sweeper is not None:
            sweeper.start()
        try:
            yield
        finally:
            if sweeper is not None:
                await sweeper.stop()
            await fetcher.close()
            if cache_store is not None:
                cache_store.close()
            logger.info("[ImageResize] Shutdown complete")

    app = FastAPI(title="Image Resize Server", lifespan=lifespan)
    app.state.config = config
    app.state.resize_service = service
    app.state.cache_sweeper = sweeper
    app.include_router(router)
    return app
