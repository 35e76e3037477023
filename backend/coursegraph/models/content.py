"""Activity folder and activity rows (the flat form of a module's content tree).

Folders reference their parent folder (NULL for the roots of a module);
activities reference their immediate folder. `unflatten_activity_tree` rebuilds
the tree from these rows.

All activity variants share one table. `type` is the discriminant and the
per-variant columns are nullable.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, validates

from coursegraph.core.base import Base, RemoteIdPrimaryKeyMixin, SyncedAtMixin, as_utc
from coursegraph.schemas.content import ActivityFolderRecord, ActivityRecord


ACTIVITY_TYPES = ("html", "web_embed", "doc_embed", "video_embed", "submission", "quiz", "unknown")

# Domain field -> column, for fields that are stored under a different name.
_COLUMN_OF = {
    "content": "html_content",
    "url": "source_url",
}


class ActivityFolderRow(RemoteIdPrimaryKeyMixin, SyncedAtMixin, Base):
    __tablename__ = "activity_folders"

    module_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("modules.id", ondelete="CASCADE"),
        nullable=False,
    )
    parent_id: Mapped[Optional[str]] = mapped_column(
        String(64),
        ForeignKey("activity_folders.id", ondelete="CASCADE"),
        nullable=True,
    )
    name: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False)

    __table_args__ = (
        Index("ix_activity_folders_module_id", "module_id"),
        Index("ix_activity_folders_parent_id", "parent_id"),
    )

    @classmethod
    def from_record(cls, record: ActivityFolderRecord) -> ActivityFolderRow:
        return cls(**record.model_dump())

    def to_record(self) -> ActivityFolderRecord:
        return ActivityFolderRecord(
            id=self.id,
            module_id=self.module_id,
            name=self.name,
            description=self.description,
            sort_order=self.sort_order,
            parent_id=self.parent_id,
        )


class ActivityRow(RemoteIdPrimaryKeyMixin, SyncedAtMixin, Base):
    __tablename__ = "activities"

    folder_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("activity_folders.id", ondelete="CASCADE"),
        nullable=False,
    )
    type: Mapped[str] = mapped_column(String(16), nullable=False)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False)
    name: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # html
    html_content: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    # web_embed / doc_embed / video_embed
    source_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    source_url_expiry: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    # doc_embed
    preview_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    preview_url_expiry: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    # video_embed
    thumbnail_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    thumbnail_url_expiry: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    # submission / quiz
    dropbox_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    quiz_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    __table_args__ = (
        CheckConstraint(
            "type IN (" + ", ".join(f"'{t}'" for t in ACTIVITY_TYPES) + ")",
            name="ck_activities_type",
        ),
        Index("ix_activities_folder_id", "folder_id"),
    )

    @validates("source_url_expiry", "preview_url_expiry", "thumbnail_url_expiry")
    def _validate_utc(self, key: str, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value)

    @classmethod
    def from_record(cls, record: ActivityRecord) -> ActivityRow:
        fields = record.activity.model_dump()
        columns: dict[str, Any] = {"folder_id": record.folder_id}
        for key, value in fields.items():
            columns[_COLUMN_OF.get(key, key)] = value
        return cls(**columns)

    def to_record(self) -> ActivityRecord:
        base: dict[str, Any] = {"type": self.type, "id": self.id, "sort_order": self.sort_order, "name": self.name}
        if self.type == "html":
            base["content"] = self.html_content
        elif self.type == "web_embed":
            base["url"] = self.source_url
        elif self.type == "doc_embed":
            base.update(
                source_url=self.source_url,
                preview_url=self.preview_url,
                preview_url_expiry=as_utc(self.preview_url_expiry),
            )
        elif self.type == "video_embed":
            base.update(
                source_url=self.source_url,
                source_url_expiry=as_utc(self.source_url_expiry),
                thumbnail_url=self.thumbnail_url,
                thumbnail_url_expiry=as_utc(self.thumbnail_url_expiry),
            )
        elif self.type == "submission":
            base["dropbox_id"] = self.dropbox_id
        elif self.type == "quiz":
            base["quiz_id"] = self.quiz_id
        return ActivityRecord.model_validate({"folder_id": self.folder_id, "activity": base})
