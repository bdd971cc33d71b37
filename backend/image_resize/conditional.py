"""
Conditional Responses

ETag / Last-Modified validators and the 200-vs-304 decision for image
responses. Anything unparseable counts as "changed", so content is never
hidden by a bad header.
"""

import hashlib
import time
from typing import Dict, Optional
from dataclasses import dataclass, field
from datetime import timezone
from email.utils import formatdate, parsedate_to_datetime

# Browser cache lifetime (1 year); cached blobs never change under a key
CACHE_MAX_AGE_SECONDS = 31536000

# HTTP dates drop sub-second precision
CLOCK_SKEW_TOLERANCE_SECONDS = 1.0


@dataclass
class ConditionalResult:
    """Status, headers and body to send."""
    status_code: int
    headers: Dict[str, str] = field(default_factory=dict)
    body: bytes = b""

    @property
    def not_modified(self) -> bool:
        return self.status_code == 304


def compute_etag(data: bytes) -> str:
    """Strong validator derived from the response bytes."""
    return '"' + hashlib.md5(data).hexdigest() + '"'


def format_http_date(timestamp: float) -> str:
    return formatdate(timestamp, usegmt=True)


def parse_http_date(value: str) -> Optional[float]:
    """Epoch seconds for an HTTP date, or None if it cannot be parsed."""
    try:
        parsed = parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        return None
    if parsed is None:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.timestamp()


def etag_matches(if_none_match: Optional[str], etag: str) -> bool:
    """
    Whether an If-None-Match header covers the given ETag.

    Accepts a single value, a comma-separated list, weak (W/) tags and "*".
    """
    if not if_none_match:
        return False
    if if_none_match.strip() == etag:
        return True

    for candidate in if_none_match.split(","):
        candidate = candidate.strip()
        if candidate == "*":
            return True
        if candidate.startswith("W/"):
            candidate = candidate[2:]
        if candidate == etag:
            return True
    return False


def not_modified_since(last_modified: float, if_modified_since: Optional[str]) -> bool:
    """True when the client's copy is at least as new as last_modified."""
    if not if_modified_since:
        return False
    since = parse_http_date(if_modified_since)
    if since is None:
        return False
    return int(last_modified) <= since + CLOCK_SKEW_TOLERANCE_SECONDS


def build_conditional_response(
    data: bytes,
    content_type: str,
    last_modified: Optional[float] = None,
    if_none_match: Optional[str] = None,
    if_modified_since: Optional[str] = None,
    cache_hit: bool = False,
) -> ConditionalResult:
    """
    Decide between a full 200 response and an empty 304.

    Args:
        data: Bytes that would be served
        content_type: MIME type of data
        last_modified: Blob mtime (epoch seconds); now if not cache-backed
        if_none_match: Request If-None-Match header
        if_modified_since: Request If-Modified-Since header
        cache_hit: Whether data came from the cache (diagnostic header)

    Returns:
        ConditionalResult ready to be turned into an HTTP response.
    """
    if last_modified is None:
        last_modified = time.time()

    etag = compute_etag(data)
    headers = {
        "Cache-Control": f"public, max-age={CACHE_MAX_AGE_SECONDS}",
        "ETag": etag,
        "Last-Modified": format_http_date(last_modified),
        "X-Cache": "HIT" if cache_hit else "MISS",
    }

    if etag_matches(if_none_match, etag) or not_modified_since(last_modified, if_modified_since):
        return ConditionalResult(status_code=304, headers=headers)

    headers["Content-Type"] = content_type
    return ConditionalResult(status_code=200, headers=headers, body=data)
