"""SQLAlchemy declarative base and shared mixins.

Rationale:
- Primary keys are the remote system's own ids (strings), so rows are upserted
  by id and a re-crawl never duplicates them.
- Timestamps are timezone-aware UTC. SQLite hands back naive values; those are
  read as UTC.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import DateTime, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


UTC = timezone.utc


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalize to aware UTC; naive values are taken to be UTC already."""
    if value is None:
        return None
    if value.tzinfo is None or value.utcoffset() is None:
        return value.replace(tzinfo=UTC)
    if value.utcoffset() != timedelta(0):
        return value.astimezone(UTC)
    return value


class Base(DeclarativeBase):
    """Declarative base for all ORM models."""


class RemoteIdPrimaryKeyMixin:
    """Primary key taken verbatim from the remote system."""

    id: Mapped[str] = mapped_column(String(64), primary_key=True)


class SyncedAtMixin:
    """Last time the row was written by a sync (UTC timestamptz)."""

    synced_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

