"""Organization, semester and module rows.

A module belongs to at most one semester; the semester is resolved from the
module's parent org units during enumeration.
"""

from __future__ import annotations

from typing import Optional

from sqlalchemy import ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from coursegraph.core.base import Base, RemoteIdPrimaryKeyMixin, SyncedAtMixin
from coursegraph.schemas.content import Module, Organization, Semester


class OrganizationRow(RemoteIdPrimaryKeyMixin, SyncedAtMixin, Base):
    __tablename__ = "organizations"

    name: Mapped[str] = mapped_column(Text, nullable=False)

    @classmethod
    def from_record(cls, record: Organization) -> OrganizationRow:
        return cls(id=record.id, name=record.name)

    def to_record(self) -> Organization:
        return Organization(id=self.id, name=self.name)


class SemesterRow(RemoteIdPrimaryKeyMixin, SyncedAtMixin, Base):
    __tablename__ = "semesters"

    name: Mapped[str] = mapped_column(Text, nullable=False)

    @classmethod
    def from_record(cls, record: Semester) -> SemesterRow:
        return cls(id=record.id, name=record.name)

    def to_record(self) -> Semester:
        return Semester(id=self.id, name=self.name)


class ModuleRow(RemoteIdPrimaryKeyMixin, SyncedAtMixin, Base):
    __tablename__ = "modules"

    name: Mapped[str] = mapped_column(Text, nullable=False)
    code: Mapped[str] = mapped_column(Text, nullable=False, default="")
    semester_id: Mapped[Optional[str]] = mapped_column(
        String(64),
        ForeignKey("semesters.id", ondelete="SET NULL"),
        nullable=True,
    )
    image_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    __table_args__ = (Index("ix_modules_semester_id", "semester_id"),)

    @classmethod
    def from_record(cls, record: Module) -> ModuleRow:
        return cls(
            id=record.id,
            name=record.name,
            code=record.code,
            semester_id=record.semester_id,
            image_url=record.image_url,
        )

    def to_record(self) -> Module:
        return Module(
            id=self.id,
            name=self.name,
            code=self.code or "",
            semester_id=self.semester_id,
            image_url=self.image_url,
        )
