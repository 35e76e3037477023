"""Dropbox, quiz and user-submission rows."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column, validates

from coursegraph.core.base import Base, RemoteIdPrimaryKeyMixin, SyncedAtMixin, as_utc
from coursegraph.schemas.content import Quiz, SubmissionDropbox, UserSubmission


class _WindowColumnsMixin:
    """Availability window shared by dropboxes and quizzes."""

    name: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    due_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    opens_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    closes_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)


class SubmissionDropboxRow(RemoteIdPrimaryKeyMixin, _WindowColumnsMixin, SyncedAtMixin, Base):
    __tablename__ = "submission_dropboxes"

    module_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("modules.id", ondelete="CASCADE"),
        nullable=False,
    )

    __table_args__ = (Index("ix_submission_dropboxes_module_id", "module_id"),)

    @validates("due_at", "opens_at", "closes_at")
    def _validate_utc(self, key: str, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value)

    @classmethod
    def from_record(cls, record: SubmissionDropbox) -> SubmissionDropboxRow:
        return cls(**record.model_dump())

    def to_record(self) -> SubmissionDropbox:
        return SubmissionDropbox(
            id=self.id,
            module_id=self.module_id,
            name=self.name,
            description=self.description,
            due_at=as_utc(self.due_at),
            opens_at=as_utc(self.opens_at),
            closes_at=as_utc(self.closes_at),
        )


class QuizRow(RemoteIdPrimaryKeyMixin, _WindowColumnsMixin, SyncedAtMixin, Base):
    __tablename__ = "quizzes"

    module_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("modules.id", ondelete="CASCADE"),
        nullable=False,
    )

    __table_args__ = (Index("ix_quizzes_module_id", "module_id"),)

    @validates("due_at", "opens_at", "closes_at")
    def _validate_utc(self, key: str, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value)

    @classmethod
    def from_record(cls, record: Quiz) -> QuizRow:
        return cls(**record.model_dump())

    def to_record(self) -> Quiz:
        return Quiz(
            id=self.id,
            module_id=self.module_id,
            name=self.name,
            description=self.description,
            due_at=as_utc(self.due_at),
            opens_at=as_utc(self.opens_at),
            closes_at=as_utc(self.closes_at),
        )


class UserSubmissionRow(RemoteIdPrimaryKeyMixin, SyncedAtMixin, Base):
    """One submission by the syncing user; `submitted_at` NULL means not yet submitted."""

    __tablename__ = "user_submissions"

    dropbox_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("submission_dropboxes.id", ondelete="CASCADE"),
        nullable=False,
    )
    user_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    submitted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    comment: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    __table_args__ = (
        Index("ix_user_submissions_dropbox_id", "dropbox_id"),
        Index("ix_user_submissions_user_id_dropbox_id", "user_id", "dropbox_id"),
    )

    @validates("submitted_at")
    def _validate_utc(self, key: str, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value)

    @classmethod
    def from_record(cls, record: UserSubmission) -> UserSubmissionRow:
        return cls(**record.model_dump())

    def to_record(self) -> UserSubmission:
        return UserSubmission(
            id=self.id,
            dropbox_id=self.dropbox_id,
            submitted_at=as_utc(self.submitted_at),
            comment=self.comment,
            user_id=self.user_id,
        )
