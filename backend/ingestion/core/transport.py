"""
Abortable HTTP transport shared by the low-level clients.

Every request runs as a tracked task, bounded by a per-client semaphore.
`abort()` is all-or-nothing: it cancels every tracked task (in flight or still
queued on the semaphore) and refuses every later request. There is no retry.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Mapping, Optional

import httpx

from ingestion.core.errors import ClientAbortedError, UnexpectedResponseError

logger = logging.getLogger("coursegraph.ingestion.transport")

DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_MAX_IN_FLIGHT = 8


class AbortableTransport:
    """Thin wrapper around `httpx.AsyncClient` owning one cancellation signal."""

    def __init__(
        self,
        *,
        name: str,
        base_url: str = "",
        headers: Optional[Mapping[str, str]] = None,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        max_in_flight: int = DEFAULT_MAX_IN_FLIGHT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._name = name
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers=dict(headers or {}),
            timeout=timeout_seconds,
            follow_redirects=True,
            transport=transport,
        )
        self._slots = asyncio.Semaphore(max(1, int(max_in_flight)))
        self._tasks: set[asyncio.Task] = set()
        self._aborted = False

    @property
    def aborted(self) -> bool:
        return self._aborted

    @property
    def idle(self) -> bool:
        return not self._tasks

    @property
    def closed(self) -> bool:
        return self._client.is_closed

    async def request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        if self._aborted:
            raise ClientAbortedError(f"{self._name} client was aborted; refusing {method} {url}")

        task = asyncio.ensure_future(self._send(method, url, **kwargs))
        self._tasks.add(task)
        try:
            return await task
        except asyncio.CancelledError:
            if self._aborted and task.cancelled():
                raise ClientAbortedError(f"{self._name} client was aborted during {method} {url}") from None
            raise
        finally:
            self._tasks.discard(task)

    async def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        async with self._slots:
            try:
                return await self._client.request(method, url, **kwargs)
            except httpx.RequestError as e:
                logger.warning(f"Network error on {self._name} client: {type(e).__name__}")
                raise UnexpectedResponseError(f"{method} {url} failed: {e}", url=url) from e

    def abort(self) -> None:
        if self._aborted:
            return
        self._aborted = True
        pending = [t for t in self._tasks if not t.done()]
        for task in pending:
            task.cancel()
        logger.info(f"Aborted {self._name} client ({len(pending)} pending requests cancelled)")

    async def aclose(self) -> None:
        await self._client.aclose()
