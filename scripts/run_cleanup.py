#!/usr/bin/env python3
"""Run one retention cleanup pass against the configured database.

Usage:
    uv run python scripts/run_cleanup.py
    uv run python scripts/run_cleanup.py --threshold-days 45 --isolate

Purges canceled meetings whose canceled_at is older than the threshold,
together with their attachments (metadata rows and object-store blobs).

Reads DATABASE_URL and S3_* settings from environment or .env file.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys

# Ensure project root is on sys.path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from dotenv import load_dotenv  # noqa: E402

load_dotenv(os.path.join(os.path.dirname(__file__), "..", ".env"))

import structlog  # noqa: E402

logger = structlog.get_logger(__name__)


async def run(threshold_days: float | None, isolate: bool) -> int:
    from src.meeting_system.config import get_settings
    from src.meeting_system.core.database import close_db, get_session_factory
    from src.meeting_system.core.errors import CleanupAbortedError
    from src.meeting_system.core.unit_of_work import UnitOfWork
    from src.meeting_system.files.object_store import ObjectStore
    from src.meeting_system.files.service import MeetingFileService
    from src.meeting_system.retention.cleanup import RetentionCleanupJob

    overrides: dict = {}
    if threshold_days is not None:
        overrides["CLEANUP_THRESHOLD_DAYS"] = threshold_days
    if isolate:
        overrides["CLEANUP_ISOLATE_PER_MEETING"] = True
    settings = get_settings().model_copy(update=overrides)

    try:
        async with UnitOfWork(get_session_factory()) as uow:
            files = MeetingFileService(uow, ObjectStore.from_settings(settings), settings)
            report = await RetentionCleanupJob(uow, files, settings).run()
    except CleanupAbortedError as exc:
        logger.error("run_cleanup.aborted", error=str(exc))
        print(f"Cleanup aborted: {exc}", file=sys.stderr)
        return 1
    finally:
        await close_db()

    print(json.dumps(report.model_dump(mode="json"), indent=2))
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(description="Purge canceled meetings past the retention threshold")
    parser.add_argument(
        "--threshold-days",
        type=float,
        default=None,
        help="Override CLEANUP_THRESHOLD_DAYS for this run",
    )
    parser.add_argument(
        "--isolate",
        action="store_true",
        help="Purge each meeting in its own transaction",
    )
    args = parser.parse_args()

    if args.threshold_days is not None and args.threshold_days < 0:
        parser.error("--threshold-days must not be negative")

    from src.meeting_system.core.logging import configure_structlog

    configure_structlog()
    sys.exit(asyncio.run(run(args.threshold_days, args.isolate)))


if __name__ == "__main__":
    main()
