from __future__ import annotations

"""Sync entry point: credentials -> overview -> every module -> summary log.

STRICT:
- Read-only against the remote system.
- Fails as a whole: any unrecoverable error aborts both clients and exits non-zero.
- Persisting snapshots is left to the storage layer.

Run:
  python ingestion/jobs/run_sync.py
"""

import asyncio
import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path

# Ensure `backend/` is on sys.path so `import coursegraph...` works when run from repo root.
BASE_DIR = Path(__file__).resolve().parents[2]
if str(BASE_DIR) not in sys.path:
    sys.path.insert(0, str(BASE_DIR))

from coursegraph.core.config import load_settings  # noqa: E402
from ingestion.core.orchestrator import CourseGraphClient  # noqa: E402
from ingestion.core.sync import sync_modules, sync_overview  # noqa: E402


UTC = timezone.utc
logger = logging.getLogger("coursegraph.ingestion")
logger.setLevel(logging.INFO)

# Ensure logs are visible when run from a scheduler / console.
if not logging.getLogger().handlers:
    logging.basicConfig(level=logging.INFO, format="%(message)s")


def _log(event: dict) -> None:
    # Structured logs only; never log credentials or content bodies.
    logger.info(json.dumps(event, ensure_ascii=False))


async def run() -> int:
    settings = load_settings()
    started_at = datetime.now(tz=UTC).isoformat()

    async with CourseGraphClient.from_settings(settings) as client:
        overview = await sync_overview(client)
        snapshots = await sync_modules(
            client,
            [m.id for m in overview.modules],
            user_id=overview.user.id,
            organization_id=overview.organization.id,
            concurrency=settings.module_concurrency,
        )

    _log(
        {
            "event": "sync_run_summary",
            "started_at": started_at,
            "organization_id": overview.organization.id,
            "modules_count": len(snapshots),
            "semesters_count": len(overview.semesters),
            "activities_count": sum(len(s.activities) for s in snapshots),
            "quizzes_count": sum(len(s.quizzes) for s in snapshots),
            "submissions_count": sum(len(s.submissions) for s in snapshots),
        }
    )
    return 0


def main() -> int:
    try:
        return asyncio.run(run())
    except RuntimeError as e:  # settings and ingestion errors alike
        _log({"event": "sync_run_failed", "error": type(e).__name__, "detail": str(e)[:300]})
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
