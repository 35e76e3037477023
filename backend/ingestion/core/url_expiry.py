"""
Expiry recovery for signed, time-limited resource URLs.

Two URL families are recognised:
- S3 pre-signed URLs (`*.amazonaws.com`): `X-Amz-Date` + `X-Amz-Expires` seconds.
- Content-service URLs (`*content-service.brightspace.com`): Unix seconds in `Expires`.

Any other host has no known expiry. That is not an error: callers keep the URL
and re-derive it on the next crawl.
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional
from urllib.parse import parse_qs, urlparse


UTC = timezone.utc

S3_HOST_SUFFIX = ".amazonaws.com"
CONTENT_SERVICE_HOST_SUFFIX = "content-service.brightspace.com"
AMZ_DATE_FORMAT = "%Y%m%dT%H%M%SZ"


def _first(params: dict[str, list[str]], key: str) -> Optional[str]:
    values = params.get(key)
    return values[0] if values else None


def get_url_expiry(url: str) -> Optional[datetime]:
    """Return the UTC instant after which `url` stops working, if it is encoded in the URL."""
    parsed = urlparse(url)
    host = parsed.hostname or ""
    params = parse_qs(parsed.query)

    if host.endswith(S3_HOST_SUFFIX):
        signed_at = _first(params, "X-Amz-Date")
        expires_in = _first(params, "X-Amz-Expires")
        if not signed_at or not expires_in:
            return None
        try:
            start = datetime.strptime(signed_at, AMZ_DATE_FORMAT).replace(tzinfo=UTC)
            return start + timedelta(seconds=int(expires_in))
        except ValueError:
            return None

    if host.endswith(CONTENT_SERVICE_HOST_SUFFIX):
        expires = _first(params, "Expires")
        if not expires:
            return None
        try:
            return datetime.fromtimestamp(int(expires), tz=UTC)
        except (ValueError, OverflowError, OSError):
            return None

    return None


def last_path_component(url: str) -> str:
    # e.g. https://host/000/activity/123?q=0 -> "123"
    path = urlparse(url).path.strip("/")
    if not path:
        raise ValueError(f"URL has no path components: {url}")
    return path.split("/")[-1]
