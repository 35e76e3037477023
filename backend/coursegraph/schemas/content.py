"""Domain types produced by the course-graph crawl.

Every id is the remote system's own opaque identifier, never generated locally,
so upserting by id is idempotent.

Activities are a closed sum type discriminated by `type`. Display names are
intrinsic for html/web/doc/video activities; submission and quiz activities get
theirs by joining the referenced dropbox or quiz.
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class DomainModel(BaseModel):
    model_config = ConfigDict(frozen=True)


# Identity / enrollment

class User(DomainModel):
    id: str
    name: str


class Organization(DomainModel):
    id: str
    name: str


class Semester(DomainModel):
    id: str
    name: str


class Module(DomainModel):
    id: str
    name: str
    code: str = ""
    semester_id: Optional[str] = None
    image_url: Optional[str] = None


# Activities

class HtmlActivity(DomainModel):
    type: Literal["html"] = "html"
    id: str
    sort_order: int
    name: str
    content: str


class WebEmbedActivity(DomainModel):
    type: Literal["web_embed"] = "web_embed"
    id: str
    sort_order: int
    name: str
    url: str


class DocEmbedActivity(DomainModel):
    type: Literal["doc_embed"] = "doc_embed"
    id: str
    sort_order: int
    name: str
    source_url: str
    preview_url: Optional[str] = None
    preview_url_expiry: Optional[datetime] = None


class VideoEmbedActivity(DomainModel):
    type: Literal["video_embed"] = "video_embed"
    id: str
    sort_order: int
    name: str
    source_url: str
    source_url_expiry: Optional[datetime] = None
    thumbnail_url: str
    thumbnail_url_expiry: Optional[datetime] = None


class SubmissionActivity(DomainModel):
    type: Literal["submission"] = "submission"
    id: str
    sort_order: int
    dropbox_id: str
    name: Optional[str] = None


class QuizActivity(DomainModel):
    type: Literal["quiz"] = "quiz"
    id: str
    sort_order: int
    quiz_id: str
    name: Optional[str] = None


class UnknownActivity(DomainModel):
    type: Literal["unknown"] = "unknown"
    id: str
    sort_order: int
    name: Optional[str] = None


AnyActivity = Annotated[
    Union[
        HtmlActivity,
        WebEmbedActivity,
        DocEmbedActivity,
        VideoEmbedActivity,
        SubmissionActivity,
        QuizActivity,
        UnknownActivity,
    ],
    Field(discriminator="type"),
]


# Content tree

class ContentFolder(DomainModel):
    """A folder of the recursive content tree; `contents` is ordered by sort order."""

    type: Literal["folder"] = "folder"
    id: str
    name: str
    description: Optional[str] = None
    sort_order: int
    contents: list[ContentNode] = Field(default_factory=list)


ContentNode = Annotated[
    Union[
        HtmlActivity,
        WebEmbedActivity,
        DocEmbedActivity,
        VideoEmbedActivity,
        SubmissionActivity,
        QuizActivity,
        UnknownActivity,
        ContentFolder,
    ],
    Field(discriminator="type"),
]

ContentFolder.model_rebuild()


# Flat records (storage shape)

class ActivityFolderRecord(DomainModel):
    id: str
    module_id: str
    name: str
    description: Optional[str] = None
    sort_order: int
    parent_id: Optional[str] = None  # None for the roots of a module


class ActivityRecord(DomainModel):
    folder_id: str
    activity: AnyActivity

    @property
    def id(self) -> str:
        return self.activity.id

    @property
    def sort_order(self) -> int:
        return self.activity.sort_order


# Assessments

class SubmissionDropbox(DomainModel):
    id: str
    module_id: str
    name: str
    description: Optional[str] = None
    due_at: Optional[datetime] = None
    opens_at: Optional[datetime] = None
    closes_at: Optional[datetime] = None


class Quiz(DomainModel):
    id: str
    module_id: str
    name: str
    description: Optional[str] = None
    due_at: Optional[datetime] = None
    opens_at: Optional[datetime] = None
    closes_at: Optional[datetime] = None


class UserSubmission(DomainModel):
    id: str
    dropbox_id: str
    submitted_at: Optional[datetime] = None  # None: not yet submitted
    comment: Optional[str] = None
    user_id: Optional[str] = None
