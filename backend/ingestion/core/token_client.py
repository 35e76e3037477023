"""
Low-level client for the bearer-token hypermedia API (`*.api.brightspace.com`).

The bearer token is a JWT whose payload is read WITHOUT signature verification:
its claims only drive routing (tenant-scoped hostnames, user-scoped paths) and
the refresh decision. The server still enforces access on every request.
"""
from __future__ import annotations

import base64
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional
from urllib.parse import urljoin, urlparse

import httpx
from pydantic import BaseModel, ValidationError

from ingestion.core.errors import TokenDecodeError, UnexpectedResponseError
from ingestion.core.siren import SirenEntity, parse_siren
from ingestion.core.transport import DEFAULT_MAX_IN_FLIGHT, DEFAULT_TIMEOUT_SECONDS, AbortableTransport

logger = logging.getLogger("coursegraph.ingestion.token")

UTC = timezone.utc

TOKEN_HOST_TEMPLATE = "https://{tenant_id}.{service}.api.brightspace.com"

# Tool id of dropbox activities in activity-usage paths.
DROPBOX_TOOL_ID = 2000


@dataclass(frozen=True, slots=True)
class TokenClaims:
    tenant_id: str
    user_id: str
    expires_at: datetime


class _RawClaims(BaseModel):
    tenantid: str
    sub: str
    exp: int


def _b64url_decode(data: str) -> bytes:
    padding = "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(data + padding)


def decode_bearer_token(token: str) -> TokenClaims:
    """Read tenant, user and expiry from an (unverified) JWT payload."""
    try:
        _header_b64, payload_b64, _sig_b64 = token.split(".")
    except ValueError as e:
        raise TokenDecodeError("Invalid token format.") from e

    try:
        payload = json.loads(_b64url_decode(payload_b64))
    except Exception as e:  # noqa: BLE001
        raise TokenDecodeError("Invalid token encoding.") from e

    try:
        raw = _RawClaims.model_validate(payload)
    except ValidationError as e:
        raise TokenDecodeError(f"Missing or invalid routing claims: {e}") from e
    if not raw.sub or not raw.tenantid:
        raise TokenDecodeError("Empty sub or tenantid claim.")

    try:
        expires_at = datetime.fromtimestamp(raw.exp, tz=UTC)
    except (OverflowError, OSError, ValueError) as e:
        raise TokenDecodeError("Invalid exp claim.") from e

    return TokenClaims(tenant_id=raw.tenantid, user_id=raw.sub, expires_at=expires_at)


class TokenApiClient:
    """Bearer-token client for Siren entities; owns its own cancellation signal."""

    def __init__(
        self,
        *,
        token: str,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        max_in_flight: int = DEFAULT_MAX_IN_FLIGHT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._claims = decode_bearer_token(token)
        self._http = AbortableTransport(
            name="token",
            headers={"Authorization": f"Bearer {token}", "Accept": "application/vnd.siren+json, application/json"},
            timeout_seconds=timeout_seconds,
            max_in_flight=max_in_flight,
            transport=transport,
        )

    @property
    def tenant_id(self) -> str:
        return self._claims.tenant_id

    @property
    def user_id(self) -> str:
        return self._claims.user_id

    @property
    def token_expiry(self) -> datetime:
        return self._claims.expires_at

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return self._claims.expires_at <= (now or datetime.now(UTC))

    def service_url(self, service: str, path: str) -> str:
        return urljoin(TOKEN_HOST_TEMPLATE.format(tenant_id=self.tenant_id, service=service), path)

    # Sequences API

    async def get_activity(self, module_id: str, topic_id: Any) -> SirenEntity:
        """A single topic; used to discover the converted preview of document topics."""
        return await self.fetch_path("sequences", f"/{module_id}/activity/{topic_id}?filterOnDatesAndDepth=0")

    # Enrollments API

    async def get_user_enrollments(self) -> SirenEntity:
        return await self.fetch_path("enrollments", f"/users/{self.user_id}")

    # Activities API

    async def get_closed_dropbox_submissions(self, org_id: str, dropbox_id: str, module_id: str) -> SirenEntity:
        """Submission list of a dropbox, still readable after its availability window closed."""
        return await self.fetch_path(
            "activities",
            f"/old/activities/{org_id}_{DROPBOX_TOOL_ID}_{dropbox_id}/usages/{module_id}/users/{self.user_id}",
        )

    async def get_submission_details(self, href: str) -> SirenEntity:
        return await self.fetch_url(href)

    # Content service API

    async def get_topic_thumbnail(self, module_id: str, activity_id: str) -> SirenEntity:
        return await self.fetch_path("content-service", f"/topics/{module_id}/{activity_id}")

    async def get_topic_media(self, module_id: str, activity_id: str) -> SirenEntity:
        return await self.fetch_path("content-service", f"/topics/{module_id}/{activity_id}/media")

    # Generic fetches

    async def fetch_path(self, service: str, path: str) -> SirenEntity:
        """Fetch `path` on the tenant-scoped host of a named sub-service."""
        return await self._fetch_siren(self.service_url(service, path))

    async def fetch_url(self, url: str) -> SirenEntity:
        """Fetch an href already resolved by a previous entity; it is used verbatim."""
        parsed = urlparse(url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError(f"Expected an absolute URL, got {url!r}")
        return await self._fetch_siren(url)

    # Lifecycle

    def abort(self) -> None:
        self._http.abort()

    @property
    def aborted(self) -> bool:
        return self._http.aborted

    @property
    def idle(self) -> bool:
        return self._http.idle

    @property
    def closed(self) -> bool:
        return self._http.closed

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _fetch_siren(self, url: str) -> SirenEntity:
        response = await self._http.request("GET", url)
        if not response.is_success:
            raise UnexpectedResponseError(
                f"Token API error {response.status_code} at {url}: {response.text[:500]}",
                status_code=response.status_code,
                url=url,
            )
        try:
            data = response.json()
        except ValueError as e:
            raise UnexpectedResponseError(f"Non-JSON body from {url}", status_code=response.status_code, url=url) from e
        return parse_siren(data, url=url)
