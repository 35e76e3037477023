"""
High-level course-graph client.

Composes the session-cookie client and the bearer-token client into the
business operations: identity lookups, module/semester enumeration, the
content-tree crawl, dropbox submissions (with a token-API fallback) and
quiz listing.

Design Principles:
- The token client is resolved on every access: reused while its token is
  unexpired, otherwise re-created from a fresh token exchange.
- Pagination loops are sequential; independent sub-fetches run as gathered pairs.
- `abort()` aborts both underlying clients together.
"""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Sequence

import httpx
from pydantic import BaseModel

from coursegraph.core.config import CourseGraphSettings
from coursegraph.schemas.content import (
    AnyActivity,
    ContentFolder,
    DocEmbedActivity,
    HtmlActivity,
    Module,
    Organization,
    Quiz,
    QuizActivity,
    Semester,
    SubmissionActivity,
    SubmissionDropbox,
    UnknownActivity,
    User,
    UserSubmission,
    VideoEmbedActivity,
    WebEmbedActivity,
)
from ingestion.core.errors import (
    ClientAbortedError,
    MissingFieldError,
    SchemaViolationError,
    UnexpectedResponseError,
)
from ingestion.core.session_client import LE_VERSION, PARENT_ORG_UNIT_BATCH_LIMIT, SessionApiClient
from ingestion.core.session_schemas import CourseParent, TocModule, TocTopic, validate_payload
from ingestion.core.siren import SirenEntity
from ingestion.core.token_client import TokenApiClient
from ingestion.core.transport import DEFAULT_MAX_IN_FLIGHT, DEFAULT_TIMEOUT_SECONDS
from ingestion.core.url_expiry import get_url_expiry, last_path_component

logger = logging.getLogger("coursegraph.ingestion.orchestrator")

# OrgUnit.Type.Id of course offerings (what this library calls modules).
COURSE_OFFERING_TYPE_ID = 3

ORGANIZATION_REL = "https://api.brightspace.com/rels/organization"

# Errors that only invalidate the doc/video node whose sub-fetch raised them.
NODE_SCOPED_ERRORS = (MissingFieldError, SchemaViolationError, UnexpectedResponseError)


def _log(event: dict, level: int = logging.INFO) -> None:
    # Structured logs only; never log credentials or content bodies.
    logger.log(level, json.dumps(event, ensure_ascii=False, default=str))


def _chunk(items: Sequence[str], size: int) -> list[list[str]]:
    return [list(items[i:i + size]) for i in range(0, len(items), size)]


class TopicKind(str, Enum):
    HTML = "html"
    DOC_EMBED = "doc_embed"
    VIDEO_EMBED = "video_embed"
    WEB_EMBED = "web_embed"
    SUBMISSION = "submission"
    QUIZ = "quiz"
    UNKNOWN = "unknown"


def classify_topic(topic: TocTopic) -> Optional[TopicKind]:
    """Decide which activity variant a table-of-contents topic becomes.

    Broken topics are never classified (None); anything unrecognised is UNKNOWN.
    """
    if topic.is_broken:
        return None
    if topic.activity_type == 1 and topic.type_identifier == "File":
        if (topic.url or "").endswith(".html"):
            return TopicKind.HTML
        return TopicKind.DOC_EMBED
    if topic.activity_type == 1 and topic.type_identifier == "ContentService":
        return TopicKind.VIDEO_EMBED
    if topic.activity_type == 2:
        return TopicKind.WEB_EMBED
    if topic.activity_type == 3:
        return TopicKind.SUBMISSION
    if topic.activity_type == 4:
        return TopicKind.QUIZ
    return TopicKind.UNKNOWN


class _ThumbnailProperties(BaseModel):
    src: str
    expires: Optional[float] = None


class _MediaProperties(BaseModel):
    src: str


class _SubmissionDetail(BaseModel):
    submitted_at: Optional[datetime] = None
    comment: Optional[str] = None


class CourseGraphClient:
    """Session + token API client exposing the course-graph operations."""

    def __init__(
        self,
        *,
        session_val: str,
        secure_session_val: str,
        domain: str,
        fetch_token: Optional[str] = None,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        max_in_flight: int = DEFAULT_MAX_IN_FLIGHT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._client_options: dict[str, Any] = {
            "timeout_seconds": timeout_seconds,
            "max_in_flight": max_in_flight,
            "transport": transport,
        }
        self.session = SessionApiClient(
            session_val=session_val,
            secure_session_val=secure_session_val,
            domain=domain,
            **self._client_options,
        )
        self._token_client: Optional[TokenApiClient] = None
        if fetch_token:
            self._token_client = TokenApiClient(token=fetch_token, **self._client_options)
        self._retired: list[TokenApiClient] = []
        self._refresh: Optional[asyncio.Future] = None
        self._aborted = False

        self._builders: dict[TopicKind, Callable[[TocTopic, str], Awaitable[Optional[AnyActivity]]]] = {
            TopicKind.HTML: self._build_html,
            TopicKind.DOC_EMBED: self._build_doc_embed,
            TopicKind.VIDEO_EMBED: self._build_video_embed,
            TopicKind.WEB_EMBED: self._build_web_embed,
            TopicKind.SUBMISSION: self._build_submission,
            TopicKind.QUIZ: self._build_quiz,
            TopicKind.UNKNOWN: self._build_unknown,
        }

    @classmethod
    def from_settings(
        cls,
        settings: CourseGraphSettings,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> CourseGraphClient:
        return cls(
            session_val=settings.session_val,
            secure_session_val=settings.secure_session_val,
            domain=settings.domain,
            fetch_token=settings.fetch_token,
            timeout_seconds=settings.request_timeout_seconds,
            max_in_flight=settings.max_in_flight,
            transport=transport,
        )

    # Token lifecycle

    async def token_client(self) -> TokenApiClient:
        """Return a token client with an unexpired token, exchanging the session for a new one if needed."""
        if self._aborted:
            raise ClientAbortedError("Client was aborted; no token client available")
        current = self._token_client
        if current is not None and not current.is_expired():
            return current

        # Concurrent callers share one exchange.
        if self._refresh is None or self._refresh.done():
            self._refresh = asyncio.ensure_future(self._refresh_token_client())
        return await asyncio.shield(self._refresh)

    async def _refresh_token_client(self) -> TokenApiClient:
        token = await self.session.get_new_fetch_token()
        client = TokenApiClient(token=token.access_token, **self._client_options)
        previous = self._token_client
        self._token_client = client
        if self._aborted:
            client.abort()

        # The client retired by the previous refresh may still be held by a caller;
        # it is closed at the next refresh once it has no request in flight.
        idle = [old for old in self._retired if old.idle]
        self._retired = [old for old in self._retired if not old.idle]
        if previous is not None:
            self._retired.append(previous)
        for old in idle:
            await old.aclose()

        _log(
            {
                "event": "token_refresh",
                "tenant_id": client.tenant_id,
                "expires_at": client.token_expiry.isoformat(),
                "retired_closed": len(idle),
            }
        )
        return client

    # User & organization

    async def get_user(self) -> User:
        data = await self.session.who_am_i()
        return User(id=data.identifier, name=data.first_name)

    async def get_organization(self) -> Organization:
        data = await self.session.get_organization_info()
        return Organization(id=data.identifier, name=data.name)

    async def get_user_and_organization(self) -> tuple[User, Organization]:
        """User from the session API, organization resolved through the hypermedia graph."""
        tc = await self.token_client()
        user, user_ent = await asyncio.gather(self.get_user(), tc.get_user_enrollments())

        org_link = user_ent.get_link(rel=ORGANIZATION_REL)
        org_ent = await tc.fetch_url(org_link.href)
        name = org_ent.get_string_property("name")
        self_href = org_ent.get_link(rel="self").href
        try:
            org_id = last_path_component(self_href)
        except ValueError as e:
            raise MissingFieldError(f"Cannot extract organization id from {self_href}") from e
        return user, Organization(id=org_id, name=name)

    async def get_organization_image_url(
        self,
        *,
        width: int,
        height: int,
        organization_id: Optional[str] = None,
    ) -> str:
        if organization_id is None:
            organization_id = (await self.get_organization()).id
        return self.session.get_image_url(organization_id, width=width, height=height)

    # Modules & semesters

    async def get_modules(self) -> list[Module]:
        """Every course offering the user is enrolled in (bookmark-paginated)."""
        modules: list[Module] = []
        seen_bookmarks: set[str] = set()
        bookmark: Optional[str] = None

        while True:
            page = await self.session.get_my_enrollments(bookmark=bookmark)
            modules.extend(
                Module(id=str(item.org_unit.id), name=item.org_unit.name, code=item.org_unit.code or "")
                for item in page.items
                if item.org_unit.type.id == COURSE_OFFERING_TYPE_ID
            )
            if not page.paging_info.has_more_items:
                break
            bookmark = page.paging_info.bookmark
            if bookmark in seen_bookmarks:
                raise UnexpectedResponseError(f"Enrollment pagination repeated bookmark {bookmark!r}")
            seen_bookmarks.add(bookmark)

        return modules

    async def get_modules_and_semesters(self) -> tuple[list[Module], list[Semester]]:
        """Modules tagged with their semester id, plus the distinct semesters in first-seen order."""
        modules = await self.get_modules()
        batches = await asyncio.gather(
            *(self.session.get_parent_org_units(ids) for ids in _chunk([m.id for m in modules], PARENT_ORG_UNIT_BATCH_LIMIT))
        )
        parents = [parent for batch in batches for parent in batch]
        module_semesters = self._pair_semesters(modules, parents)

        semesters: list[Semester] = []
        seen: set[str] = set()
        for semester in module_semesters:
            if semester.id not in seen:
                seen.add(semester.id)
                semesters.append(semester)

        tagged = [m.model_copy(update={"semester_id": s.id}) for m, s in zip(modules, module_semesters)]
        return tagged, semesters

    @staticmethod
    def _pair_semesters(modules: list[Module], parents: list[CourseParent]) -> list[Semester]:
        """Semester of each module, index for index.

        The batched lookup is expected to preserve request order; each pair is
        checked against the parent's course-offering id and falls back to an id
        lookup when the order was not kept.
        """
        def semester_of(parent: CourseParent) -> Semester:
            return Semester(id=parent.semester.identifier, name=parent.semester.name.strip())

        if len(parents) == len(modules) and all(p.course_offering_id == m.id for m, p in zip(modules, parents)):
            return [semester_of(p) for p in parents]

        _log({"event": "semester_pairing_fallback", "modules": len(modules), "parents": len(parents)}, logging.WARNING)
        by_offering = {p.course_offering_id: p for p in parents}
        paired: list[Semester] = []
        for module in modules:
            parent = by_offering.get(module.id)
            if parent is None:
                raise SchemaViolationError(f"No parent org unit returned for module {module.id}")
            paired.append(semester_of(parent))
        return paired

    # Module content

    async def get_module_content(self, module_id: str) -> list[ContentFolder]:
        """Crawl a module's table of contents into a tree of folders and activities."""
        toc = await self.session.get_module_toc(module_id)
        return list(await asyncio.gather(*(self._parse_folder(m, module_id) for m in toc.modules)))

    async def _parse_folder(self, folder: TocModule, module_id: str) -> ContentFolder:
        activities, sub_folders = await asyncio.gather(
            asyncio.gather(*(self._parse_topic(t, module_id) for t in folder.topics if not t.is_broken)),
            asyncio.gather(*(self._parse_folder(m, module_id) for m in folder.modules)),
        )
        contents = [a for a in activities if a is not None] + list(sub_folders)
        return ContentFolder(
            id=str(folder.module_id),
            name=folder.title,
            description=folder.description.html,
            sort_order=folder.sort_order,
            contents=sorted(contents, key=lambda node: node.sort_order),
        )

    async def _parse_topic(self, topic: TocTopic, module_id: str) -> Optional[AnyActivity]:
        kind = classify_topic(topic)
        if kind is None:
            return None
        return await self._builders[kind](topic, module_id)

    def _skip(self, topic: TocTopic, module_id: str, kind: TopicKind, error: Exception) -> None:
        _log(
            {
                "event": "activity_skipped",
                "module_id": module_id,
                "activity_id": topic.identifier,
                "kind": kind.value,
                "error": type(error).__name__,
                "detail": str(error)[:300],
            },
            logging.WARNING,
        )

    async def _build_html(self, topic: TocTopic, module_id: str) -> HtmlActivity:
        content = await self.session.get_content_html(topic.url or "")
        return HtmlActivity(id=topic.identifier, sort_order=topic.sort_order, name=topic.title, content=content)

    async def _build_doc_embed(self, topic: TocTopic, module_id: str) -> Optional[DocEmbedActivity]:
        tc = await self.token_client()
        try:
            activity_ent = await tc.get_activity(module_id, topic.topic_id)
            file_ent = activity_ent.get_child(class_=["activity", "file-activity"]).get_child(class_=["file"])
        except NODE_SCOPED_ERRORS as e:
            self._skip(topic, module_id, TopicKind.DOC_EMBED, e)
            return None

        preview = file_ent.find_link(class_=["pdf", "d2l-converted-doc"])
        preview_url = preview.href if preview is not None else None
        return DocEmbedActivity(
            id=topic.identifier,
            sort_order=topic.sort_order,
            name=topic.title,
            source_url=topic.url or "",
            preview_url=preview_url,
            preview_url_expiry=get_url_expiry(preview_url) if preview_url else None,
        )

    async def _build_video_embed(self, topic: TocTopic, module_id: str) -> Optional[VideoEmbedActivity]:
        tc = await self.token_client()
        try:
            (source_url, source_expiry), (thumbnail_url, thumbnail_expiry) = await asyncio.gather(
                self._media_source(tc, module_id, topic.identifier),
                self._thumbnail_source(tc, module_id, topic.identifier),
            )
        except NODE_SCOPED_ERRORS as e:
            self._skip(topic, module_id, TopicKind.VIDEO_EMBED, e)
            return None

        return VideoEmbedActivity(
            id=topic.identifier,
            sort_order=topic.sort_order,
            name=topic.title,
            source_url=source_url,
            source_url_expiry=source_expiry,
            thumbnail_url=thumbnail_url,
            thumbnail_url_expiry=thumbnail_expiry,
        )

    async def _build_web_embed(self, topic: TocTopic, module_id: str) -> WebEmbedActivity:
        return WebEmbedActivity(id=topic.identifier, sort_order=topic.sort_order, name=topic.title, url=topic.url or "")

    async def _build_submission(self, topic: TocTopic, module_id: str) -> Optional[SubmissionActivity]:
        if topic.tool_item_id is None:
            self._skip(topic, module_id, TopicKind.SUBMISSION, MissingFieldError("Missing ToolItemId"))
            return None
        return SubmissionActivity(id=topic.identifier, sort_order=topic.sort_order, dropbox_id=str(topic.tool_item_id))

    async def _build_quiz(self, topic: TocTopic, module_id: str) -> Optional[QuizActivity]:
        if topic.tool_item_id is None:
            self._skip(topic, module_id, TopicKind.QUIZ, MissingFieldError("Missing ToolItemId"))
            return None
        return QuizActivity(id=topic.identifier, sort_order=topic.sort_order, quiz_id=str(topic.tool_item_id))

    async def _build_unknown(self, topic: TocTopic, module_id: str) -> UnknownActivity:
        return UnknownActivity(id=topic.identifier, sort_order=topic.sort_order, name=topic.title)

    async def _media_source(self, tc: TokenApiClient, module_id: str, activity_id: str) -> tuple[str, Optional[datetime]]:
        ent = await tc.get_topic_media(module_id, activity_id)
        props = validate_payload(_MediaProperties, ent.properties, url=f"media of topic {activity_id}")
        return props.src, get_url_expiry(props.src)

    async def _thumbnail_source(self, tc: TokenApiClient, module_id: str, activity_id: str) -> tuple[str, Optional[datetime]]:
        ent = await tc.get_topic_thumbnail(module_id, activity_id)
        thumbnail = ent.find_child(class_=["thumbnail"])
        props = validate_payload(
            _ThumbnailProperties,
            thumbnail.properties if thumbnail is not None else None,
            url=f"thumbnail of topic {activity_id}",
        )
        # The content service also states the expiry directly, as Unix seconds.
        if props.expires:
            return props.src, datetime.fromtimestamp(props.expires, tz=timezone.utc)
        return props.src, get_url_expiry(props.src)

    # Dropboxes & submissions

    async def get_submission_dropboxes(self, module_id: str) -> list[SubmissionDropbox]:
        folders = await self.session.get_dropbox_folders(module_id)
        return [
            SubmissionDropbox(
                id=str(d.id),
                module_id=module_id,
                name=d.name,
                description=d.custom_instructions.html,
                due_at=d.due_date,
                opens_at=d.availability.start_date if d.availability else None,
                closes_at=d.availability.end_date if d.availability else None,
            )
            for d in folders
        ]

    async def get_submissions(
        self,
        module_id: str,
        dropbox_id: str,
        *,
        organization_id: Optional[str] = None,
    ) -> list[UserSubmission]:
        """The user's submissions for a dropbox.

        1. Session API: one request, but rejected once the dropbox has closed.
        2. Token API, only after (1) failed for any reason: the closed-dropbox
           entity plus one request per submission link.
        """
        try:
            records = await self.session.get_dropbox_submissions(module_id, dropbox_id)
        except ClientAbortedError:
            raise
        except Exception as e:  # noqa: BLE001
            _log(
                {
                    "event": "submission_fallback",
                    "module_id": module_id,
                    "dropbox_id": dropbox_id,
                    "error": type(e).__name__,
                    "status_code": getattr(e, "status_code", None),
                },
                logging.WARNING,
            )
            return await self._get_closed_dropbox_submissions(module_id, dropbox_id, organization_id)

        if not records:
            return []
        return [
            UserSubmission(
                id=str(s.id),
                dropbox_id=dropbox_id,
                submitted_at=s.submission_date,
                comment=s.comment.html,
            )
            for s in records[0].submissions
        ]

    async def _get_closed_dropbox_submissions(
        self,
        module_id: str,
        dropbox_id: str,
        organization_id: Optional[str],
    ) -> list[UserSubmission]:
        if organization_id is None:
            organization_id = (await self.get_organization()).id
        tc = await self.token_client()
        ent = await tc.get_closed_dropbox_submissions(organization_id, dropbox_id, module_id)
        links = ent.get_child(class_=["assignment-submission-list"]).links or []

        details = await asyncio.gather(*(tc.get_submission_details(link.href) for link in links))
        return [
            self._parse_submission_details(link.href, dropbox_id, detail)
            for link, detail in zip(links, details)
        ]

    @staticmethod
    def _parse_submission_details(href: str, dropbox_id: str, ent: SirenEntity) -> UserSubmission:
        date_ent = ent.find_child(class_="submission-date")
        comment_ent = ent.find_child(class_="submission-comment")
        detail = validate_payload(
            _SubmissionDetail,
            {
                "submitted_at": (date_ent.properties or {}).get("date") if date_ent else None,
                "comment": (comment_ent.properties or {}).get("html") if comment_ent else None,
            },
            url=href,
        )
        try:
            submission_id = last_path_component(href)
        except ValueError as e:
            raise MissingFieldError(f"Cannot extract submission id from {href}") from e
        return UserSubmission(
            id=submission_id,
            dropbox_id=dropbox_id,
            submitted_at=detail.submitted_at,
            comment=detail.comment,
        )

    # Quizzes

    async def get_quizzes(self, module_id: str) -> list[Quiz]:
        """Every quiz in a module (cursor-paginated: each page names the next URL)."""
        quizzes: list[Quiz] = []
        next_url: Optional[str] = f"/d2l/api/le/{LE_VERSION}/{module_id}/quizzes/"

        while next_url:
            page = await self.session.get_quizzes_page(next_url)
            next_url = page.next
            quizzes.extend(
                Quiz(
                    id=str(q.quiz_id),
                    module_id=module_id,
                    name=q.name,
                    description=q.description.text.html,
                    due_at=q.due_date,
                    opens_at=q.start_date,
                    closes_at=q.end_date,
                )
                for q in page.objects
            )

        return quizzes

    # Lifecycle

    @property
    def aborted(self) -> bool:
        return self._aborted

    def abort(self) -> None:
        """Abort every request of both underlying clients; the instance is unusable afterwards."""
        if self._aborted:
            return
        self._aborted = True
        self.session.abort()
        for client in [self._token_client, *self._retired]:
            if client is not None:
                client.abort()
        _log({"event": "abort"}, logging.WARNING)

    async def aclose(self) -> None:
        await self.session.aclose()
        for client in [self._token_client, *self._retired]:
            if client is not None:
                await client.aclose()

    async def __aenter__(self) -> CourseGraphClient:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()
