from __future__ import annotations

from datetime import datetime, timezone

import pytest

from ingestion.core.url_expiry import get_url_expiry, last_path_component


UTC = timezone.utc


def test_s3_expiry_is_signed_date_plus_expires_in():
    url = (
        "https://bucket.s3.ap-southeast-1.amazonaws.com/doc.pdf"
        "?X-Amz-Algorithm=AWS4-HMAC-SHA256&X-Amz-Date=20240101T000000Z&X-Amz-Expires=3600&X-Amz-Signature=abc"
    )
    assert get_url_expiry(url) == datetime(2024, 1, 1, 1, 0, 0, tzinfo=UTC)


def test_content_service_expiry_is_unix_seconds():
    url = "https://tenant-1.content-service.brightspace.com/media/video.mp4?Expires=1700000000&Signature=x"
    assert get_url_expiry(url) == datetime.fromtimestamp(1700000000, tz=UTC)


@pytest.mark.parametrize(
    "url",
    [
        "https://example.com/file.pdf?Expires=1700000000",
        "https://bucket.s3.amazonaws.com/doc.pdf?X-Amz-Date=20240101T000000Z",
        "https://bucket.s3.amazonaws.com/doc.pdf?X-Amz-Date=garbage&X-Amz-Expires=60",
        "https://tenant-1.content-service.brightspace.com/media/video.mp4",
        "not a url",
    ],
)
def test_unknown_or_incomplete_urls_have_no_expiry(url):
    assert get_url_expiry(url) is None


def test_last_path_component():
    assert last_path_component("https://host/6606/activities/123?x=1") == "123"
    assert last_path_component("https://host/organizations/6606/") == "6606"
    with pytest.raises(ValueError):
        last_path_component("https://host/")
