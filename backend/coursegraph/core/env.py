from __future__ import annotations

import os
from pathlib import Path
from typing import Iterable, Optional


def _parse_env_line(line: str) -> tuple[str, str] | None:
    line = line.strip()
    if not line or line.startswith("#"):
        return None
    if line.startswith("export "):
        line = line[len("export "):]
    if "=" not in line:
        return None
    key, value = line.split("=", 1)
    key = key.strip()
    value = value.strip()
    if not key:
        return None
    # Strip optional quotes: KEY="value" or KEY='value'
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
        value = value[1:-1]
    return key, value


def default_env_files() -> list[Path]:
    # backend/coursegraph/core/env.py -> backend/coursegraph/core -> backend/coursegraph -> backend -> repo root
    repo_root = Path(__file__).resolve().parents[3]
    return [
        repo_root / ".env",
        repo_root / "backend" / ".env",
    ]


def load_env_if_present(*, override: bool = False, paths: Optional[Iterable[Path]] = None) -> None:
    """Load .env files into process env if present.

    - Searches repo root `.env` then `backend/.env` unless `paths` is given.
    - Does NOT override existing environment variables unless override=True.
    - Credentials live here (session cookies, fetch token); never log them.
    """
    for p in paths if paths is not None else default_env_files():
        if not p.exists() or not p.is_file():
            continue
        try:
            content = p.read_text(encoding="utf-8")
        except OSError:
            continue
        for raw in content.splitlines():
            parsed = _parse_env_line(raw)
            if not parsed:
                continue
            k, v = parsed
            if not override and k in os.environ:
                continue
            os.environ[k] = v
