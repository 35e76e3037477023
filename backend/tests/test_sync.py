from __future__ import annotations

import asyncio

import httpx
import pytest

from conftest import SESSION_HOST, USER_ID, FakeApi, make_token, token_host
from coursegraph.schemas.content import QuizActivity, SubmissionActivity
from ingestion.core.errors import UnexpectedResponseError
from ingestion.core.orchestrator import CourseGraphClient
from ingestion.core.sync import sync_module, sync_modules, sync_overview


ORG_ID = "6606"


def _client(api: FakeApi) -> CourseGraphClient:
    return CourseGraphClient(
        session_val="sess",
        secure_session_val="secure",
        domain="nplms",
        fetch_token=make_token(),
        transport=api.transport,
    )


def _module_routes(api: FakeApi, module_id: str) -> None:
    rich = {"Text": "", "Html": ""}

    def topic(identifier: int, activity_type: int, tool_item_id: int, sort_order: int) -> dict:
        return {
            "Identifier": str(identifier),
            "TopicId": identifier,
            "Title": f"Topic {identifier}",
            "Description": rich,
            "ActivityType": activity_type,
            "TypeIdentifier": "Dropbox" if activity_type == 3 else "Quiz",
            "ToolItemId": tool_item_id,
            "SortOrder": sort_order,
            "IsBroken": False,
            "Url": f"/d2l/le/{module_id}/{identifier}",
        }

    api.get(
        f"{SESSION_HOST}/d2l/api/le/1.75/{module_id}/content/toc",
        json={
            "Modules": [
                {
                    "ModuleId": int(module_id) * 10,
                    "Title": "Assessments",
                    "Description": rich,
                    "SortOrder": 1,
                    "Topics": [topic(1, 3, 77, 1), topic(2, 4, 5, 2)],
                    "Modules": [],
                }
            ]
        },
    )
    api.get(
        f"{SESSION_HOST}/d2l/api/le/1.75/{module_id}/quizzes/",
        json={
            "Next": None,
            "Objects": [
                {
                    "QuizId": 5,
                    "Name": "Quiz 1",
                    "Instructions": {"Text": rich, "IsDisplayed": False},
                    "Description": {"Text": rich, "IsDisplayed": False},
                    "SortOrder": 1,
                }
            ],
        },
    )
    api.get(
        f"{SESSION_HOST}/d2l/api/le/1.75/{module_id}/dropbox/folders/",
        json=[
            {
                "Id": 77,
                "Name": "Essay",
                "CustomInstructions": rich,
                "Attachments": [],
                "CompletionType": 0,
            }
        ],
    )
    api.get(
        f"{SESSION_HOST}/d2l/api/le/1.75/{module_id}/dropbox/folders/77/submissions/",
        json=[
            {
                "Submissions": [
                    {"Id": 9001, "SubmissionDate": "2024-03-01T10:00:00Z", "Comment": rich, "Files": []},
                ]
            }
        ],
    )


def test_sync_module_returns_joined_flat_records(fake_api: FakeApi):
    _module_routes(fake_api, "123")

    snapshot = asyncio.run(sync_module(_client(fake_api), "123", user_id=USER_ID, organization_id=ORG_ID))

    assert [(f.id, f.parent_id, f.module_id) for f in snapshot.folders] == [("1230", None, "123")]
    submission, quiz = (record.activity for record in snapshot.activities)
    assert isinstance(submission, SubmissionActivity) and submission.name == "Essay"
    assert isinstance(quiz, QuizActivity) and quiz.name == "Quiz 1"
    assert [d.id for d in snapshot.dropboxes] == ["77"]
    assert [q.id for q in snapshot.quizzes] == ["5"]
    assert [(s.id, s.user_id) for s in snapshot.submissions] == [("9001", USER_ID)]


def test_sync_modules_keeps_input_order(fake_api: FakeApi):
    for module_id in ("1", "2", "3"):
        _module_routes(fake_api, module_id)

    snapshots = asyncio.run(
        sync_modules(_client(fake_api), ["3", "1", "2"], user_id=USER_ID, organization_id=ORG_ID, concurrency=2)
    )

    assert [s.module_id for s in snapshots] == ["3", "1", "2"]


def test_sync_failure_aborts_both_clients(fake_api: FakeApi):
    _module_routes(fake_api, "123")
    fake_api.get(f"{SESSION_HOST}/d2l/api/le/1.75/123/content/toc", status=500, text="boom")
    client = _client(fake_api)

    async def run() -> None:
        token_client = await client.token_client()
        with pytest.raises(UnexpectedResponseError):
            await sync_module(client, "123", user_id=USER_ID)
        assert token_client.aborted

    asyncio.run(run())
    assert client.aborted
    assert client.session.aborted


def test_sync_overview(fake_api: FakeApi):
    org_href = f"{token_host('organizations')}/{ORG_ID}"
    fake_api.get(
        f"{SESSION_HOST}/d2l/api/lp/1.0/users/whoami",
        json={"Identifier": USER_ID, "FirstName": "Alex", "LastName": "Tan", "UniqueName": "s1", "ProfileIdentifier": "p"},
    )
    fake_api.get(
        f"{token_host('enrollments')}/users/{USER_ID}",
        json={"class": ["user"], "links": [{"rel": ["https://api.brightspace.com/rels/organization"], "href": org_href}]},
    )
    fake_api.get(
        org_href,
        json={"class": ["organization"], "properties": {"name": "Polytechnic"}, "links": [{"rel": ["self"], "href": org_href}]},
    )
    fake_api.get(
        f"{SESSION_HOST}/d2l/api/lp/1.46/enrollments/myenrollments/",
        json={
            "PagingInfo": {"Bookmark": "", "HasMoreItems": False},
            "Items": [{"OrgUnit": {"Id": 123, "Type": {"Id": 3, "Code": "CO", "Name": "Course Offering"}, "Name": "Maths"}}],
        },
    )

    def parents(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json=[
                {
                    "CourseOfferingId": "123",
                    "Semester": {"Identifier": "s1", "Name": "AY2024 S1", "Code": "S1"},
                    "Department": {"Identifier": "d1", "Name": "Eng", "Code": "E"},
                }
            ],
        )

    fake_api.get(f"{SESSION_HOST}/d2l/api/lp/1.46/courses/parentorgunits", parents)

    snapshot = asyncio.run(sync_overview(_client(fake_api)))

    assert snapshot.user.id == USER_ID
    assert snapshot.organization.id == ORG_ID
    (module,) = snapshot.modules
    assert module.semester_id == "s1"
    assert module.image_url == f"{SESSION_HOST}/d2l/api/lp/1.46/courses/123/image?width=60&height=60"
    assert [s.name for s in snapshot.semesters] == ["AY2024 S1"]
