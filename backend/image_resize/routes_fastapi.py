"""
Image Resize API Routes

Provides endpoints for:
- Serving an image, optionally resized (GET /?url=...&w=...&h=...)
- Usage help page (GET / without url)
- Request and cache statistics
- Health check
"""

import logging
from typing import Optional
from fastapi import APIRouter, BackgroundTasks, Depends, Header, HTTPException, Query, Request
from fastapi.responses import HTMLResponse, JSONResponse, Response

from .errors import ImageResizeError
from .service import ImageResizeService, parse_dimension

logger = logging.getLogger(__name__)

HELP_HTML = """<!DOCTYPE html>
<html><head><meta charset="UTF-8"><title>Image Resize Server</title></head>
<body>
<h2>Image Resize Server</h2>
<p>Usage: <code>?url=IMAGE_URL&amp;w=WIDTH&amp;h=HEIGHT</code></p>
<ul>
<li>Only <code>w</code> or only <code>h</code>: scale proportionally</li>
<li>Both <code>w</code> and <code>h</code>: scale to cover, then center crop</li>
<li>Images are never upscaled; without <code>w</code>/<code>h</code> the original is returned</li>
</ul>
<p>Example: <a href="/?url=https://example.com/image.jpg&amp;w=300&amp;h=200">/?url=https://example.com/image.jpg&amp;w=300&amp;h=200</a></p>
<hr><p><a href="/stats">Statistics: /stats</a></p>
</body></html>"""

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, If-None-Match, If-Modified-Since",
}

# ============================================
# Router
# ============================================

router = APIRouter(tags=["Image Resize"])


def get_service(request: Request) -> ImageResizeService:
    """The service instance created by the app factory."""
    return request.app.state.resize_service


# ============================================
# Endpoints
# ============================================

@router.get("/")
async def resize_image(
    background_tasks: BackgroundTasks,
    url: Optional[str] = Query(None, description="URL of the source image"),
    w: Optional[str] = Query(None, description="Target width in pixels"),
    h: Optional[str] = Query(None, description="Target height in pixels"),
    if_none_match: Optional[str] = Header(None),
    if_modified_since: Optional[str] = Header(None),
    service: ImageResizeService = Depends(get_service),
):
    """
    Serve an image, resized when w and/or h are given.

    Example:
        GET /?url=https://example.com/image.jpg&w=400&h=300
    """
    service.stats.record_request()

    if not url:
        return HTMLResponse(content=HELP_HTML)

    try:
        width = parse_dimension("w", w, service.config.max_dimension)
        height = parse_dimension("h", h, service.config.max_dimension)
        result = await service.serve(
            url,
            width=width,
            height=height,
            if_none_match=if_none_match,
            if_modified_since=if_modified_since,
            background_tasks=background_tasks,
        )
    except ImageResizeError as e:
        logger.warning(f"[ImageResize] {e.status_code} for {url[:60]}...: {e.message}")
        raise HTTPException(status_code=e.status_code, detail=e.message, headers=CORS_HEADERS)

    headers = dict(result.headers)
    headers.update(CORS_HEADERS)

    if result.not_modified:
        return Response(status_code=304, headers=headers)

    return Response(content=result.body, status_code=result.status_code, headers=headers)


@router.options("/")
async def resize_image_preflight():
    """CORS preflight for cross-origin conditional requests."""
    return Response(status_code=204, headers=CORS_HEADERS)


@router.get("/stats")
async def get_stats(
    request: Request,
    service: ImageResizeService = Depends(get_service),
):
    """
    Get request and cache statistics.

    Returns:
    - Request, hit, miss and 304 counters
    - Cache size usage (when the cache is enabled)
    - Background sweep progress
    """
    stats = service.stats.to_dict()
    stats["cache_enabled"] = service.cache_enabled
    if service.cache_store is not None:
        stats["cache"] = service.cache_store.get_stats()

    sweeper = request.app.state.cache_sweeper
    if sweeper is not None:
        stats["sweeper"] = {
            "running": sweeper.running,
            "sweep_count": sweeper.sweep_count,
            "last_sweep_at": sweeper.last_sweep_at,
        }

    return JSONResponse(content=stats, headers={"Cache-Control": "no-cache"})


@router.get("/health")
async def health_check(service: ImageResizeService = Depends(get_service)):
    """Health check endpoint."""
    return JSONResponse(content={
        "status": "healthy",
        "service": "image-resize",
        "cache_enabled": service.cache_enabled,
    })
