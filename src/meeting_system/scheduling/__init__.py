"""Background job dispatch (APScheduler)."""

from src.meeting_system.scheduling.dispatcher import APSchedulerDispatcher, JobDispatcher

__all__ = ["APSchedulerDispatcher", "JobDispatcher"]
