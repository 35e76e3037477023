"""Sync pipeline: crawl a user's course graph into flat, storage-ready records.

STRICT:
- Returns complete results or fails; never partial snapshots.
- Any unrecoverable failure aborts both API clients before it propagates,
  so no further requests go out with a credential set known to be bad.
- Persisting the snapshots is the caller's job.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Awaitable, Iterable, Optional, TypeVar

from coursegraph.schemas.content import (
    ActivityFolderRecord,
    ActivityRecord,
    Module,
    Organization,
    Quiz,
    Semester,
    SubmissionDropbox,
    User,
    UserSubmission,
)
from ingestion.core.activity_tree import flatten_activity_tree, join_activity_names
from ingestion.core.orchestrator import CourseGraphClient

UTC = timezone.utc
logger = logging.getLogger("coursegraph.ingestion.sync")

MODULE_ICON_SIZE = 60
DEFAULT_MODULE_CONCURRENCY = 4

T = TypeVar("T")


def _log(event: dict) -> None:
    # Structured logs only; never log credentials or content bodies.
    logger.info(json.dumps(event, ensure_ascii=False))


@dataclass(frozen=True, slots=True)
class OverviewSnapshot:
    user: User
    organization: Organization
    modules: list[Module]
    semesters: list[Semester]


@dataclass(frozen=True, slots=True)
class ModuleSnapshot:
    module_id: str
    folders: list[ActivityFolderRecord] = field(default_factory=list)
    activities: list[ActivityRecord] = field(default_factory=list)
    dropboxes: list[SubmissionDropbox] = field(default_factory=list)
    quizzes: list[Quiz] = field(default_factory=list)
    submissions: list[UserSubmission] = field(default_factory=list)


async def _abort_on_failure(client: CourseGraphClient, work: Awaitable[T]) -> T:
    try:
        return await work
    except BaseException:
        client.abort()
        raise


async def sync_overview(client: CourseGraphClient) -> OverviewSnapshot:
    """User, organization, modules (with icon URLs) and their semesters."""

    async def run() -> OverviewSnapshot:
        (user, organization), (modules, semesters) = await asyncio.gather(
            client.get_user_and_organization(),
            client.get_modules_and_semesters(),
        )
        modules = [
            m.model_copy(
                update={"image_url": client.session.get_image_url(m.id, width=MODULE_ICON_SIZE, height=MODULE_ICON_SIZE)}
            )
            for m in modules
        ]
        return OverviewSnapshot(user=user, organization=organization, modules=modules, semesters=semesters)

    snapshot = await _abort_on_failure(client, run())
    _log(
        {
            "event": "overview_synced",
            "organization_id": snapshot.organization.id,
            "modules_count": len(snapshot.modules),
            "semesters_count": len(snapshot.semesters),
        }
    )
    return snapshot


async def _dropboxes_with_submissions(
    client: CourseGraphClient,
    module_id: str,
    organization_id: Optional[str],
) -> tuple[list[SubmissionDropbox], list[UserSubmission]]:
    dropboxes = await client.get_submission_dropboxes(module_id)
    per_dropbox = await asyncio.gather(
        *(client.get_submissions(module_id, d.id, organization_id=organization_id) for d in dropboxes)
    )
    return dropboxes, [s for submissions in per_dropbox for s in submissions]


async def sync_module(
    client: CourseGraphClient,
    module_id: str,
    *,
    user_id: str,
    organization_id: Optional[str] = None,
) -> ModuleSnapshot:
    """Content tree, quizzes, dropboxes and the user's submissions of one module, as flat records."""

    async def run() -> ModuleSnapshot:
        content, quizzes, (dropboxes, submissions) = await asyncio.gather(
            client.get_module_content(module_id),
            client.get_quizzes(module_id),
            _dropboxes_with_submissions(client, module_id, organization_id),
        )
        folders, activities = flatten_activity_tree(content, module_id)
        return ModuleSnapshot(
            module_id=module_id,
            folders=folders,
            activities=join_activity_names(activities, dropboxes, quizzes),
            dropboxes=dropboxes,
            quizzes=quizzes,
            submissions=[s.model_copy(update={"user_id": user_id}) for s in submissions],
        )

    started_at = datetime.now(tz=UTC)
    _log({"event": "module_sync_started", "module_id": module_id})
    snapshot = await _abort_on_failure(client, run())
    _log(
        {
            "event": "module_sync_finished",
            "module_id": module_id,
            "duration_ms": int((datetime.now(tz=UTC) - started_at).total_seconds() * 1000),
            "folders_count": len(snapshot.folders),
            "activities_count": len(snapshot.activities),
            "dropboxes_count": len(snapshot.dropboxes),
            "quizzes_count": len(snapshot.quizzes),
            "submissions_count": len(snapshot.submissions),
        }
    )
    return snapshot


async def sync_modules(
    client: CourseGraphClient,
    module_ids: Iterable[str],
    *,
    user_id: str,
    organization_id: Optional[str] = None,
    concurrency: int = DEFAULT_MODULE_CONCURRENCY,
) -> list[ModuleSnapshot]:
    """`sync_module` over many modules, at most `concurrency` at a time; results keep input order."""
    slots = asyncio.Semaphore(max(1, concurrency))

    async def bounded(module_id: str) -> ModuleSnapshot:
        async with slots:
            return await sync_module(client, module_id, user_id=user_id, organization_id=organization_id)

    return list(await asyncio.gather(*(bounded(mid) for mid in module_ids)))
