"""
Conversion between the recursive content tree and the flat storage records.

`flatten` walks folders depth-first and emits one folder record per folder (its
parent id taken from the recursion) and one activity record per leaf (tagged
with its immediate folder). `unflatten` indexes folders by parent id and rebuilds
each folder's contents as sub-folders then activities, stably sorted by sort order.
For trees without sort-order ties inside a folder, unflatten(flatten(t)) == t.
"""
from __future__ import annotations

from collections import defaultdict
from typing import Iterable, Optional, Sequence

from coursegraph.schemas.content import (
    ActivityFolderRecord,
    ActivityRecord,
    ContentFolder,
    Quiz,
    QuizActivity,
    SubmissionActivity,
    SubmissionDropbox,
)
from ingestion.core.errors import UnresolvedReferenceError


def _sort_key(node) -> int:
    return node.sort_order


def flatten_activity_tree(
    folders: Sequence[ContentFolder],
    module_id: str,
) -> tuple[list[ActivityFolderRecord], list[ActivityRecord]]:
    flat_folders: list[ActivityFolderRecord] = []
    flat_activities: list[ActivityRecord] = []

    def walk(folder: ContentFolder, parent_id: Optional[str]) -> None:
        flat_folders.append(
            ActivityFolderRecord(
                id=folder.id,
                module_id=module_id,
                name=folder.name,
                description=folder.description,
                sort_order=folder.sort_order,
                parent_id=parent_id,
            )
        )
        for item in folder.contents:
            if isinstance(item, ContentFolder):
                walk(item, folder.id)
            else:
                flat_activities.append(ActivityRecord(folder_id=folder.id, activity=item))

    for root in folders:
        walk(root, None)
    return flat_folders, flat_activities


def unflatten_activity_tree(
    folders: Iterable[ActivityFolderRecord],
    activities: Iterable[ActivityRecord],
) -> list[ContentFolder]:
    children: dict[Optional[str], list[ActivityFolderRecord]] = defaultdict(list)
    for record in folders:
        children[record.parent_id].append(record)

    leaves: dict[str, list[ActivityRecord]] = defaultdict(list)
    for record in activities:
        leaves[record.folder_id].append(record)

    def build(record: ActivityFolderRecord) -> ContentFolder:
        sub_folders = [build(child) for child in children.get(record.id, [])]
        contents = sorted(sub_folders + [leaf.activity for leaf in leaves.get(record.id, [])], key=_sort_key)
        return ContentFolder(
            id=record.id,
            name=record.name,
            description=record.description,
            sort_order=record.sort_order,
            contents=contents,
        )

    return sorted((build(root) for root in children.get(None, [])), key=_sort_key)


def join_activity_names(
    activities: Iterable[ActivityRecord],
    dropboxes: Iterable[SubmissionDropbox],
    quizzes: Iterable[Quiz],
) -> list[ActivityRecord]:
    """Fill the display names of submission and quiz activities from what they reference."""
    dropbox_names = {d.id: d.name for d in dropboxes}
    quiz_names = {q.id: q.name for q in quizzes}

    joined: list[ActivityRecord] = []
    for record in activities:
        activity = record.activity
        if isinstance(activity, SubmissionActivity):
            if activity.dropbox_id not in dropbox_names:
                raise UnresolvedReferenceError(
                    f"Activity {activity.id} references unknown dropbox {activity.dropbox_id}"
                )
            activity = activity.model_copy(update={"name": dropbox_names[activity.dropbox_id]})
        elif isinstance(activity, QuizActivity):
            if activity.quiz_id not in quiz_names:
                raise UnresolvedReferenceError(f"Activity {activity.id} references unknown quiz {activity.quiz_id}")
            activity = activity.model_copy(update={"name": quiz_names[activity.quiz_id]})
        else:
            joined.append(record)
            continue
        joined.append(record.model_copy(update={"activity": activity}))
    return joined
