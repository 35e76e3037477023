from __future__ import annotations

import os

import pytest

from coursegraph.core.config import load_settings
from coursegraph.core.env import load_env_if_present
from ingestion.core.orchestrator import CourseGraphClient


BASE_ENV = {
    "COURSEGRAPH_D2L_SESSION_VAL": "sess-secret",
    "COURSEGRAPH_D2L_SECURE_SESSION_VAL": "secure-secret",
    "COURSEGRAPH_DOMAIN": "nplms",
}


def test_defaults():
    settings = load_settings(BASE_ENV)

    assert settings.domain == "nplms"
    assert settings.fetch_token is None
    assert settings.request_timeout_seconds == 30.0
    assert settings.max_in_flight == 8
    assert settings.module_concurrency == 4


def test_secrets_are_not_in_repr():
    text = repr(load_settings({**BASE_ENV, "COURSEGRAPH_FETCH_TOKEN": "tok-secret"}))

    assert "sess-secret" not in text
    assert "secure-secret" not in text
    assert "tok-secret" not in text


@pytest.mark.parametrize("missing", sorted(BASE_ENV))
def test_missing_required_var(missing):
    env = {k: v for k, v in BASE_ENV.items() if k != missing}

    with pytest.raises(RuntimeError, match=missing):
        load_settings(env)


@pytest.mark.parametrize(
    "key,value",
    [
        ("COURSEGRAPH_REQUEST_TIMEOUT_SECONDS", "soon"),
        ("COURSEGRAPH_REQUEST_TIMEOUT_SECONDS", "0"),
        ("COURSEGRAPH_MAX_IN_FLIGHT", "1.5"),
        ("COURSEGRAPH_MODULE_CONCURRENCY", "0"),
    ],
)
def test_invalid_numbers(key, value):
    with pytest.raises(RuntimeError):
        load_settings({**BASE_ENV, key: value})


def test_env_file_does_not_override_process_env(tmp_path, monkeypatch: pytest.MonkeyPatch):
    env_file = tmp_path / ".env"
    env_file.write_text(
        "# comment\nexport COURSEGRAPH_DOMAIN='from-file'\nCOURSEGRAPH_MAX_IN_FLIGHT=\"3\"\nnot a pair\n",
        encoding="utf-8",
    )
    monkeypatch.setenv("COURSEGRAPH_DOMAIN", "from-process")
    # Registered with monkeypatch so whatever the file sets is undone after the test.
    monkeypatch.setenv("COURSEGRAPH_MAX_IN_FLIGHT", "unset")
    monkeypatch.delenv("COURSEGRAPH_MAX_IN_FLIGHT")

    load_env_if_present(paths=[env_file, tmp_path / "missing.env"])

    assert os.environ["COURSEGRAPH_DOMAIN"] == "from-process"
    assert os.environ["COURSEGRAPH_MAX_IN_FLIGHT"] == "3"


def test_client_from_settings():
    settings = load_settings({**BASE_ENV, "COURSEGRAPH_MAX_IN_FLIGHT": "2"})

    client = CourseGraphClient.from_settings(settings)

    assert client.session.base_url == "https://nplms.polite.edu.sg"
