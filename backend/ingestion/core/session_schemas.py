"""Response contracts for the session-cookie API.

Only the parts of each payload used by the course-graph clients are declared;
unknown keys are ignored. Field names follow the remote PascalCase keys through
an alias generator, so `OrgUnit.Type.Id` reads as `org_unit.type.id`.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Generic, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, TypeAdapter, ValidationError, model_validator
from pydantic.alias_generators import to_pascal

from ingestion.core.errors import SchemaViolationError


T = TypeVar("T")


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_pascal, populate_by_name=True, frozen=True)


# Auth

class FetchToken(BaseModel):
    """Body of the token-exchange endpoint (snake_case on the wire)."""

    access_token: str
    expires_at: int

    model_config = ConfigDict(frozen=True)


# Users / organization

class WhoAmIUser(ApiModel):
    identifier: str
    first_name: str
    last_name: str
    unique_name: str
    profile_identifier: str


class OrganizationInfo(ApiModel):
    identifier: str
    name: str
    time_zone: str


# Enrollments

class OrgUnitType(ApiModel):
    id: int
    code: str
    name: str


class OrgUnit(ApiModel):
    id: int
    type: OrgUnitType
    name: str
    code: Optional[str] = None
    home_url: Optional[str] = None
    image_url: Optional[str] = None


class MyOrgUnitInfo(ApiModel):
    org_unit: OrgUnit


class ParentRef(ApiModel):
    identifier: str
    name: str
    code: str


class CourseParent(ApiModel):
    course_offering_id: str
    semester: ParentRef
    department: ParentRef


class PagingInfo(ApiModel):
    bookmark: str
    has_more_items: bool


class PagedResultSet(ApiModel, Generic[T]):
    paging_info: PagingInfo
    items: list[T]


class ObjectListPage(ApiModel, Generic[T]):
    next: Optional[str] = None
    objects: list[T]


# Content / table of contents

class RichText(ApiModel):
    text: str
    html: str


class TocTopic(ApiModel):
    """A topic (activity) of the table of contents.

    ActivityType values: 1 = File / ContentService, 2 = Link, 3 = Dropbox, 4 = Quiz.
    """

    identifier: str
    topic_id: int
    title: str
    description: RichText
    activity_type: int
    type_identifier: str
    unread: bool = False
    tool_id: Optional[int] = None
    tool_item_id: Optional[int] = None
    sort_order: int
    is_broken: bool
    url: Optional[str] = None

    @model_validator(mode="after")
    def _url_required_unless_broken(self) -> TocTopic:
        if not self.is_broken and self.url is None:
            raise ValueError("Url is required for topics that are not broken")
        return self


class TocModule(ApiModel):
    """A module of the table of contents (an activity folder)."""

    module_id: int
    title: str
    description: RichText
    sort_order: int
    topics: list[TocTopic]
    modules: list[TocModule]


class TableOfContents(ApiModel):
    modules: list[TocModule]


# Dropbox / submissions

class FileRef(ApiModel):
    file_id: int
    file_name: str
    size: int


class DropboxSubmission(ApiModel):
    id: int
    submission_date: Optional[datetime] = None
    comment: RichText
    files: list[FileRef]


class EntityDropbox(ApiModel):
    completion_date: Optional[str] = None
    submissions: list[DropboxSubmission]


class Availability(ApiModel):
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    start_date_availability_type: Optional[int] = None
    end_date_availability_type: Optional[int] = None


class DropboxFolder(ApiModel):
    id: int
    name: str
    custom_instructions: RichText
    attachments: list[FileRef]
    due_date: Optional[datetime] = None
    completion_type: int
    availability: Optional[Availability] = None


# Quizzes

class QuizText(ApiModel):
    text: RichText
    is_displayed: bool


class QuizReadData(ApiModel):
    quiz_id: int
    name: str
    instructions: QuizText
    description: QuizText
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    due_date: Optional[datetime] = None
    sort_order: int


TocModule.model_rebuild()


def validate_payload(schema: Any, data: Any, *, url: str) -> Any:
    """Validate `data` against a model class or type expression (e.g. `list[DropboxFolder]`)."""
    try:
        return TypeAdapter(schema).validate_python(data)
    except ValidationError as e:
        raise SchemaViolationError(f"Unexpected response shape from {url}: {e}") from e
