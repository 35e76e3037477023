from __future__ import annotations

import json
import logging

import pytest

from conftest import FakeApi, make_token
from coursegraph.core.config import load_settings
from ingestion.jobs import run_sync


ENV = {
    "COURSEGRAPH_D2L_SESSION_VAL": "sess",
    "COURSEGRAPH_D2L_SECURE_SESSION_VAL": "secure",
    "COURSEGRAPH_DOMAIN": "nplms",
}


def _events(caplog) -> list[dict]:
    return [json.loads(r.getMessage()) for r in caplog.records if r.name.startswith("coursegraph.") and r.getMessage().startswith("{")]


def test_missing_settings_exit_non_zero(monkeypatch: pytest.MonkeyPatch, caplog):
    monkeypatch.setattr(run_sync, "load_settings", lambda: load_settings({}))

    with caplog.at_level(logging.INFO):
        assert run_sync.main() == 1

    assert _events(caplog)[-1]["event"] == "sync_run_failed"


def test_remote_failure_exit_non_zero_and_abort(monkeypatch: pytest.MonkeyPatch, fake_api: FakeApi, caplog):
    built = []

    def from_settings(cls, settings):
        client = cls(
            session_val=settings.session_val,
            secure_session_val=settings.secure_session_val,
            domain=settings.domain,
            fetch_token=make_token(),
            transport=fake_api.transport,
        )
        built.append(client)
        return client

    monkeypatch.setattr(run_sync, "load_settings", lambda: load_settings(ENV))
    monkeypatch.setattr(run_sync.CourseGraphClient, "from_settings", classmethod(from_settings))

    with caplog.at_level(logging.INFO):
        assert run_sync.main() == 1

    (client,) = built
    assert client.aborted
    failed = _events(caplog)[-1]
    assert failed == {"event": "sync_run_failed", "error": "UnexpectedResponseError", "detail": failed["detail"]}
    # Credentials never reach the logs.
    assert "d2lSessionVal" not in caplog.text
