"""
Image Fetcher

Downloads source images with bounded connect/read timeouts and a maximum
payload size. No caching happens here.
"""

import logging
from typing import Optional
from urllib.parse import urlparse
from dataclasses import dataclass

import httpx

from .errors import (
    ImageTooLargeError,
    InvalidParameterError,
    UpstreamFetchError,
    UpstreamTimeoutError,
)

logger = logging.getLogger(__name__)

DEFAULT_HEADERS = {
    "User-Agent": "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Accept": "image/avif,image/webp,image/apng,image/*,*/*;q=0.8",
}


@dataclass
class FetchResult:
    """Raw bytes of a fetched image."""
    url: str
    data: bytes


def validate_url(url: str) -> None:
    """Reject anything that is not an absolute http(s) URL."""
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https"):
        raise InvalidParameterError(f"Invalid URL scheme: {parsed.scheme or '(none)'}")
    if not parsed.netloc:
        raise InvalidParameterError("Invalid URL host")


class ImageFetcher:
    """
    Fetches image bytes over HTTP.

    Usage:
        fetcher = ImageFetcher(connect_timeout=5, read_timeout=15)
        result = await fetcher.fetch("https://example.com/a.jpg")
        await fetcher.close()
    """

    def __init__(
        self,
        connect_timeout: float = 5.0,
        read_timeout: float = 15.0,
        max_bytes: int = 20 * 1024 * 1024,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.max_bytes = max_bytes
        self.http_client = httpx.AsyncClient(
            timeout=httpx.Timeout(read_timeout, connect=connect_timeout),
            follow_redirects=True,
            headers=DEFAULT_HEADERS,
            transport=transport,
        )

    async def close(self) -> None:
        """Close HTTP client."""
        await self.http_client.aclose()

    async def fetch(self, url: str) -> FetchResult:
        """
        Download a URL fully into memory.

        Raises:
            UpstreamTimeoutError: connect or read timed out.
            ImageTooLargeError: payload exceeds max_bytes.
            UpstreamFetchError: any other network failure or non-2xx status.
        """
        validate_url(url)
        logger.info(f"[Fetcher] Fetching: {url[:80]}...")

        try:
            async with self.http_client.stream("GET", url) as response:
                response.raise_for_status()

                declared = response.headers.get("content-length")
                if declared and declared.isdigit() and int(declared) > self.max_bytes:
                    raise ImageTooLargeError(
                        f"Image too large (max {self.max_bytes // (1024 * 1024)}MB)"
                    )

                chunks = []
                received = 0
                async for chunk in response.aiter_bytes():
                    received += len(chunk)
                    if received > self.max_bytes:
                        raise ImageTooLargeError(
                            f"Image too large (max {self.max_bytes // (1024 * 1024)}MB)"
                        )
                    chunks.append(chunk)

        except httpx.TimeoutException as e:
            logger.error(f"[Fetcher] Timeout: {url[:60]}...")
            raise UpstreamTimeoutError("Image fetch timeout") from e
        except httpx.HTTPStatusError as e:
            logger.error(f"[Fetcher] HTTP error {e.response.status_code}: {url[:60]}...")
            raise UpstreamFetchError(
                f"Failed to fetch image: {e.response.status_code}"
            ) from e
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.error(f"[Fetcher] Fetch error: {e}")
            raise UpstreamFetchError(f"Failed to fetch image: {e}") from e

        data = b"".join(chunks)
        logger.debug(f"[Fetcher] Fetched {len(data)} bytes: {url[:60]}...")
        return FetchResult(url=url, data=data)
