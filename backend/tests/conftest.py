from __future__ import annotations

import sys
from pathlib import Path
from typing import Any, Callable, Generator, Optional, Union

import httpx
import pytest
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session


ROOT = Path(__file__).resolve().parents[2]

# Ensure `backend/coursegraph` and `backend/ingestion` are importable as top-level packages.
BACKEND_DIR = ROOT / "backend"
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from coursegraph.core.base import Base  # noqa: E402
from coursegraph.core.db import create_db_engine, create_session_factory  # noqa: E402
import coursegraph.models  # noqa: E402,F401


DOMAIN = "nplms"
SESSION_HOST = f"https://{DOMAIN}.polite.edu.sg"
TENANT_ID = "tenant-1"
USER_ID = "42"


def token_host(service: str) -> str:
    return f"https://{TENANT_ID}.{service}.api.brightspace.com"


def make_token(
    *,
    tenant_id: str = TENANT_ID,
    user_id: str = USER_ID,
    exp: int | None = None,
) -> str:
    """Unsigned-looking JWT carrying the routing claims (no external dependency)."""
    import base64, json, time  # noqa: E401

    def b64url(raw: bytes) -> str:
        return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")

    header = {"alg": "RS256", "typ": "JWT"}
    payload = {"tenantid": tenant_id, "sub": user_id, "exp": exp if exp is not None else int(time.time()) + 3600}

    header_b64 = b64url(json.dumps(header, separators=(",", ":")).encode("utf-8"))
    payload_b64 = b64url(json.dumps(payload, separators=(",", ":")).encode("utf-8"))
    return f"{header_b64}.{payload_b64}.{b64url(b'signature')}"


Handler = Callable[[httpx.Request], httpx.Response]
Reply = Union[httpx.Response, Handler]


class FakeApi:
    """Routes requests by (method, host, path) and records every call.

    Unrouted requests get a 404 so tests fail loudly on unexpected fetches.
    """

    def __init__(self) -> None:
        self.routes: dict[tuple[str, str, str], Reply] = {}
        self.calls: list[httpx.Request] = []

    def add(
        self,
        method: str,
        url: str,
        reply: Optional[Reply] = None,
        *,
        json: Any = None,
        text: Optional[str] = None,
        status: int = 200,
    ) -> None:
        parsed = httpx.URL(url)
        if reply is None:
            reply = httpx.Response(status, json=json) if text is None else httpx.Response(status, text=text)
        self.routes[(method, parsed.host, parsed.path)] = reply

    def get(self, url: str, reply: Optional[Reply] = None, **kwargs: Any) -> None:
        self.add("GET", url, reply, **kwargs)

    def count(self, path: str, *, method: str = "GET") -> int:
        return sum(1 for r in self.calls if r.method == method and r.url.path == path)

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        reply = self.routes.get((request.method, request.url.host, request.url.path))
        if reply is None:
            return httpx.Response(404, text=f"no route for {request.method} {request.url}")
        if isinstance(reply, httpx.Response):
            # Responses are single-use; hand out a fresh copy each time.
            return httpx.Response(reply.status_code, headers=reply.headers, content=reply.content)
        return reply(request)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)


@pytest.fixture()
def fake_api() -> FakeApi:
    return FakeApi()


@pytest.fixture()
def engine() -> Engine:
    engine = create_db_engine("sqlite://")
    Base.metadata.create_all(engine)
    return engine


@pytest.fixture()
def db_session(engine: Engine) -> Generator[Session, None, None]:
    """DB session per test with rollback."""
    SessionLocal = create_session_factory(engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()
