"""Retention policy -- permanent purge of long-canceled meetings."""

from src.meeting_system.retention.cleanup import RetentionCleanupJob

__all__ = ["RetentionCleanupJob"]
