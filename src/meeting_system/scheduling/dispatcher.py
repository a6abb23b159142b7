"""Job dispatcher -- enqueue-now, run-at and recurring jobs via APScheduler.

Services depend on the JobDispatcher protocol only. Jobs are referenced by
textual "module:function" paths so APScheduler can persist them in a job
store and resolve them in whichever process executes them.

With a jobstore_url, jobs live in an SQLAlchemy job store (the apscheduler_jobs
table) instead of process memory:
- a dispatcher used only to add jobs starts its scheduler paused, so jobs are
  written to the store immediately but never run in the adding process
- the worker's dispatcher runs them, and re-reads the store every
  poll_seconds to pick up jobs other processes added meanwhile

Delivery is at-least-once from the caller's point of view; job bodies are
written to be safe to re-run.
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Any, Protocol

import structlog
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.jobstores.sqlalchemy import SQLAlchemyJobStore
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.schedulers.base import STATE_PAUSED, STATE_STOPPED
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

from src.meeting_system.config import Settings, get_settings

logger = structlog.get_logger(__name__)

# Jobs that belong to this process only (never persisted)
LOCAL_JOBSTORE = "local"
POLL_JOB_ID = "jobstore-poll"


class JobDispatcher(Protocol):
    """Interface the lifecycle services use to hand work to the scheduler."""

    def enqueue_now(self, job_ref: str, *args: Any) -> str: ...

    def schedule_at(self, job_ref: str, run_at: datetime, *args: Any) -> str: ...

    def register_recurring(self, job_id: str, job_ref: str, cron_expression: str) -> str: ...


async def _poll_job_store() -> None:
    """No-op; each run makes the scheduler recompute its next wakeup."""


class APSchedulerDispatcher:
    """JobDispatcher backed by an APScheduler AsyncIOScheduler.

    Recurring jobs are registered with max_instances=1 and coalesce=True so
    a slow run is never overlapped by the next tick and missed ticks
    collapse into one execution.

    Args:
        scheduler: Scheduler to register jobs on. Created when omitted.
        timezone: Timezone for cron expressions when creating the scheduler.
        misfire_grace_time: Seconds a one-shot job may run late.
        jobstore_url: Sync SQLAlchemy URL of the persistent job store. When
            omitted, jobs are kept in memory and die with the process.
        poll_seconds: Interval at which a started dispatcher re-reads the
            persistent job store.
    """

    def __init__(
        self,
        scheduler: AsyncIOScheduler | None = None,
        timezone: str = "UTC",
        misfire_grace_time: int = 600,
        jobstore_url: str | None = None,
        poll_seconds: int = 30,
    ) -> None:
        self._timezone = timezone
        self._misfire_grace_time = misfire_grace_time
        self._persistent = scheduler is None and bool(jobstore_url)
        self._poll_seconds = poll_seconds
        if scheduler is None:
            jobstores: dict[str, Any] = {LOCAL_JOBSTORE: MemoryJobStore()}
            if jobstore_url:
                jobstores["default"] = SQLAlchemyJobStore(url=jobstore_url)
            scheduler = AsyncIOScheduler(timezone=timezone, jobstores=jobstores)
        self._scheduler = scheduler

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> APSchedulerDispatcher:
        """Dispatcher persisting jobs to SCHEDULER_JOBSTORE_URL (or the database)."""
        settings = settings or get_settings()
        return cls(
            timezone=settings.SCHEDULER_TIMEZONE,
            jobstore_url=settings.scheduler_jobstore_url,
            poll_seconds=settings.SCHEDULER_POLL_SECONDS,
        )

    @property
    def scheduler(self) -> AsyncIOScheduler:
        return self._scheduler

    @property
    def persistent(self) -> bool:
        return self._persistent

    def _attach_job_store(self) -> None:
        # A stopped scheduler only queues jobs in memory until start(); start
        # it paused so they are written to the store now.
        if not self._persistent or self._scheduler.state != STATE_STOPPED:
            return
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            return
        self._scheduler.start(paused=True)
        logger.debug("dispatcher.job_store_attached")

    def enqueue_now(self, job_ref: str, *args: Any) -> str:
        """Run a job as soon as the scheduler picks it up."""
        self._attach_job_store()
        job = self._scheduler.add_job(
            job_ref,
            args=list(args),
            misfire_grace_time=self._misfire_grace_time,
        )
        logger.info("dispatcher.enqueued", job_ref=job_ref, job_id=job.id)
        return job.id

    def schedule_at(self, job_ref: str, run_at: datetime, *args: Any) -> str:
        """Run a job once at an absolute instant."""
        self._attach_job_store()
        job = self._scheduler.add_job(
            job_ref,
            trigger=DateTrigger(run_date=run_at),
            args=list(args),
            misfire_grace_time=self._misfire_grace_time,
        )
        logger.info(
            "dispatcher.scheduled",
            job_ref=job_ref,
            job_id=job.id,
            run_at=run_at.isoformat(),
        )
        return job.id

    def register_recurring(self, job_id: str, job_ref: str, cron_expression: str) -> str:
        """Register (or replace) a recurring job from a crontab expression."""
        self._attach_job_store()
        job = self._scheduler.add_job(
            job_ref,
            trigger=CronTrigger.from_crontab(cron_expression, timezone=self._timezone),
            id=job_id,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        logger.info(
            "dispatcher.recurring_registered",
            job_id=job.id,
            job_ref=job_ref,
            cron=cron_expression,
        )
        return job.id

    def start(self) -> None:
        """Start executing jobs, resuming a scheduler started paused."""
        if self._persistent:
            self._scheduler.add_job(
                _poll_job_store,
                trigger=IntervalTrigger(seconds=self._poll_seconds),
                id=POLL_JOB_ID,
                jobstore=LOCAL_JOBSTORE,
                replace_existing=True,
                max_instances=1,
                coalesce=True,
            )
        if self._scheduler.state == STATE_PAUSED:
            self._scheduler.resume()
        elif self._scheduler.state == STATE_STOPPED:
            self._scheduler.start()
        logger.info("dispatcher.started", persistent=self._persistent)

    def shutdown(self, wait: bool = True) -> None:
        if self._scheduler.state == STATE_STOPPED:
            return
        self._scheduler.shutdown(wait=wait)
        logger.info("dispatcher.stopped")
