from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from conftest import TENANT_ID, USER_ID, FakeApi, make_token, token_host
from ingestion.core.errors import SchemaViolationError, TokenDecodeError, UnexpectedResponseError
from ingestion.core.token_client import TokenApiClient, decode_bearer_token


UTC = timezone.utc


def test_decode_bearer_token_reads_routing_claims():
    claims = decode_bearer_token(make_token(exp=1700000000))

    assert claims.tenant_id == TENANT_ID
    assert claims.user_id == USER_ID
    assert claims.expires_at == datetime.fromtimestamp(1700000000, tz=UTC)


@pytest.mark.parametrize("token", ["not-a-jwt", "a.b", "a.!!!.c", "e30.e30.sig"])
def test_malformed_token_fails_at_construction(token):
    with pytest.raises(TokenDecodeError):
        TokenApiClient(token=token)


def test_expiry_check():
    now = datetime.now(tz=UTC)
    fresh = TokenApiClient(token=make_token(exp=int((now + timedelta(hours=1)).timestamp())))
    stale = TokenApiClient(token=make_token(exp=int((now - timedelta(seconds=1)).timestamp())))

    assert not fresh.is_expired()
    assert stale.is_expired()
    assert fresh.is_expired(now=now + timedelta(hours=2))


def test_fetch_path_is_tenant_scoped(fake_api: FakeApi):
    fake_api.get(f"{token_host('enrollments')}/users/{USER_ID}", json={"class": ["user"], "links": []})

    async def run():
        client = TokenApiClient(token=make_token(), transport=fake_api.transport)
        try:
            return await client.get_user_enrollments()
        finally:
            await client.aclose()

    ent = asyncio.run(run())

    assert ent.class_ == ["user"]
    (request,) = fake_api.calls
    assert str(request.url) == f"https://{TENANT_ID}.enrollments.api.brightspace.com/users/{USER_ID}"
    assert request.headers["Authorization"].startswith("Bearer ")


def test_fetch_url_uses_href_verbatim(fake_api: FakeApi):
    href = "https://elsewhere.example.com/submissions/9001?embedDepth=1"
    fake_api.get(href, json={"class": ["submission"]})

    async def run():
        client = TokenApiClient(token=make_token(), transport=fake_api.transport)
        return await client.get_submission_details(href)

    asyncio.run(run())

    assert str(fake_api.calls[0].url) == href


def test_fetch_url_rejects_relative_href():
    client = TokenApiClient(token=make_token())

    with pytest.raises(ValueError):
        asyncio.run(client.fetch_url("/submissions/9001"))


def test_closed_dropbox_path(fake_api: FakeApi):
    path = f"/old/activities/6606_2000_77/usages/123/users/{USER_ID}"
    fake_api.get(f"{token_host('activities')}{path}", json={"class": ["activity-usage"]})

    client = TokenApiClient(token=make_token(), transport=fake_api.transport)
    asyncio.run(client.get_closed_dropbox_submissions("6606", "77", "123"))

    assert fake_api.count(path) == 1


def test_malformed_entity_and_error_status(fake_api: FakeApi):
    fake_api.get(f"{token_host('content-service')}/topics/123/1", json={"properties": {}})
    fake_api.get(f"{token_host('content-service')}/topics/123/1/media", status=500, text="boom")

    async def run() -> None:
        client = TokenApiClient(token=make_token(), transport=fake_api.transport)
        with pytest.raises(SchemaViolationError):
            await client.get_topic_thumbnail("123", "1")
        with pytest.raises(UnexpectedResponseError) as exc:
            await client.get_topic_media("123", "1")
        assert exc.value.status_code == 500

    asyncio.run(run())
