from __future__ import annotations

"""Ingestion errors for the course-graph clients.

Propagation intent:
- Schema violations, transport failures and token decode failures are fatal for the call.
- Missing links/fields are fatal for the node being classified; the crawl decides
  whether that aborts anything above the node.
- Nothing here is retried at this layer.
"""

from typing import Any, Optional


class IngestionError(RuntimeError):
    """Base error for the ingestion clients."""


class UnexpectedResponseError(IngestionError):
    """Raised when a response is non-2xx or otherwise unusable."""

    def __init__(self, message: str, *, status_code: Optional[int] = None, url: Optional[str] = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.url = url


class SchemaViolationError(IngestionError):
    """Raised when a response body does not match its expected contract."""


class MissingFieldError(IngestionError):
    """Raised when a required link, property or identifier is absent."""


class NotFoundError(MissingFieldError):
    """Raised by Siren `get_*` lookups that match nothing."""

    def __init__(self, message: str, *, query: dict[str, Any]) -> None:
        super().__init__(message)
        self.query = query


class TokenDecodeError(IngestionError):
    """Raised when a bearer token cannot be decoded into routing claims."""


class ClientAbortedError(IngestionError):
    """Raised for requests issued on, or cancelled by, an aborted client."""


class UnresolvedReferenceError(IngestionError):
    """Raised when an activity references a dropbox or quiz that was not fetched."""
