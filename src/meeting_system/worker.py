"""Background worker -- job entry points and the scheduler process.

The functions below are what the dispatcher's textual job references
("src.meeting_system.worker:<name>") resolve to. Each job opens its own
UnitOfWork so concurrent jobs never share a session. Scheduled jobs are
kept in the persistent job store, so reminders added by any process survive
worker restarts.

Usage:
    python -m src.meeting_system.worker serve
    python -m src.meeting_system.worker cleanup
"""

from __future__ import annotations

import argparse
import asyncio
import uuid
from functools import lru_cache

import structlog

from src.meeting_system.config import Settings, get_settings
from src.meeting_system.core.database import close_db, get_session_factory
from src.meeting_system.core.logging import configure_structlog
from src.meeting_system.core.unit_of_work import UnitOfWork
from src.meeting_system.files.object_store import ObjectStore
from src.meeting_system.files.service import MeetingFileService
from src.meeting_system.meetings.jobs import LoggingReminderNotifier, MeetingJobs
from src.meeting_system.meetings.schemas import CleanupReport
from src.meeting_system.retention.cleanup import RetentionCleanupJob
from src.meeting_system.scheduling.dispatcher import APSchedulerDispatcher

logger = structlog.get_logger(__name__)

CLEANUP_JOB_ID = "retention-cleanup"
CLEANUP_JOB = "src.meeting_system.worker:run_retention_cleanup"


@lru_cache
def get_object_store() -> ObjectStore:
    """Process-wide object store; remembers which buckets exist."""
    return ObjectStore.from_settings(get_settings())


# ── Job entry points ────────────────────────────────────────────────────────


async def run_retention_cleanup() -> CleanupReport:
    settings = get_settings()
    async with UnitOfWork(get_session_factory()) as uow:
        files = MeetingFileService(uow, get_object_store(), settings)
        return await RetentionCleanupJob(uow, files, settings).run()


async def send_meeting_reminder(meeting_id: str) -> int:
    async with UnitOfWork(get_session_factory()) as uow:
        jobs = MeetingJobs(uow, LoggingReminderNotifier())
        return await jobs.send_reminder(uuid.UUID(meeting_id))


# ── Worker process ──────────────────────────────────────────────────────────


def build_dispatcher(settings: Settings | None = None) -> APSchedulerDispatcher:
    """Create the persistent dispatcher and register the recurring cleanup job."""
    settings = settings or get_settings()
    dispatcher = APSchedulerDispatcher.from_settings(settings)
    dispatcher.register_recurring(CLEANUP_JOB_ID, CLEANUP_JOB, settings.CLEANUP_JOB_CRON)
    return dispatcher


async def start_worker(stop_event: asyncio.Event | None = None) -> None:
    """Run the scheduler until stop_event is set (forever by default)."""
    dispatcher = build_dispatcher()
    dispatcher.start()
    logger.info("worker.started", environment=get_settings().ENVIRONMENT.value)
    try:
        await (stop_event or asyncio.Event()).wait()
    finally:
        dispatcher.shutdown(wait=False)
        await close_db()
        logger.info("worker.stopped")


async def _run_cleanup_once() -> None:
    try:
        report = await run_retention_cleanup()
    finally:
        await close_db()
    logger.info("worker.cleanup_finished", **report.model_dump(mode="json"))


def main() -> None:
    parser = argparse.ArgumentParser(description="Meeting system background worker")
    subcommands = parser.add_subparsers(dest="command", required=True)
    subcommands.add_parser("serve", help="Run the scheduler (reminders and nightly cleanup)")
    subcommands.add_parser("cleanup", help="Run one retention cleanup pass and exit")
    args = parser.parse_args()

    configure_structlog()

    if args.command == "serve":
        asyncio.run(start_worker())
    else:
        asyncio.run(_run_cleanup_once())


if __name__ == "__main__":
    main()
