"""Runtime settings for the course-graph clients.

Configuration is via environment variables only (.env loaded by `load_env_if_present`).
"""

from __future__ import annotations

import os
from typing import Final, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from coursegraph.core.env import load_env_if_present


SESSION_VAL_ENV: Final[str] = "COURSEGRAPH_D2L_SESSION_VAL"
SECURE_SESSION_VAL_ENV: Final[str] = "COURSEGRAPH_D2L_SECURE_SESSION_VAL"
DOMAIN_ENV: Final[str] = "COURSEGRAPH_DOMAIN"
FETCH_TOKEN_ENV: Final[str] = "COURSEGRAPH_FETCH_TOKEN"
TIMEOUT_ENV: Final[str] = "COURSEGRAPH_REQUEST_TIMEOUT_SECONDS"
MAX_IN_FLIGHT_ENV: Final[str] = "COURSEGRAPH_MAX_IN_FLIGHT"
MODULE_CONCURRENCY_ENV: Final[str] = "COURSEGRAPH_MODULE_CONCURRENCY"


class CourseGraphSettings(BaseModel):
    """Credentials and limits for one user's session."""

    session_val: str = Field(..., min_length=1, repr=False)
    secure_session_val: str = Field(..., min_length=1, repr=False)
    domain: str = Field(..., min_length=1)
    fetch_token: Optional[str] = Field(None, repr=False)
    request_timeout_seconds: float = Field(30.0, gt=0)
    max_in_flight: int = Field(8, ge=1)
    module_concurrency: int = Field(4, ge=1)

    model_config = ConfigDict(frozen=True)


def _require(env: Mapping[str, str], key: str) -> str:
    value = env.get(key)
    if not value:
        raise RuntimeError(f"Missing required env var {key}.")
    return value


def _number(env: Mapping[str, str], key: str, default: float, cast: type) -> float:
    raw = env.get(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        return cast(raw)
    except ValueError as e:
        raise RuntimeError(f"Invalid value for env var {key}: {raw!r}") from e


def load_settings(env: Optional[Mapping[str, str]] = None) -> CourseGraphSettings:
    """Build settings from `env` (defaults to the process environment after loading .env files)."""
    if env is None:
        load_env_if_present()
        env = os.environ

    try:
        return CourseGraphSettings(
            session_val=_require(env, SESSION_VAL_ENV),
            secure_session_val=_require(env, SECURE_SESSION_VAL_ENV),
            domain=_require(env, DOMAIN_ENV),
            fetch_token=env.get(FETCH_TOKEN_ENV) or None,
            request_timeout_seconds=_number(env, TIMEOUT_ENV, 30.0, float),
            max_in_flight=int(_number(env, MAX_IN_FLIGHT_ENV, 8, int)),
            module_concurrency=int(_number(env, MODULE_CONCURRENCY_ENV, 4, int)),
        )
    except ValidationError as e:
        raise RuntimeError(f"Invalid course-graph settings: {e}") from e
