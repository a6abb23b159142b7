"""Background job bodies for meetings.

The reminder job runs at (start - lead time) and notifies every current
participant. Email delivery sits behind the ReminderNotifier protocol.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Protocol

import structlog
from sqlalchemy import select

from src.meeting_system.core.unit_of_work import UnitOfWork
from src.meeting_system.meetings.models import ParticipantModel, UserModel

logger = structlog.get_logger(__name__)


class ReminderNotifier(Protocol):
    async def send_meeting_reminder(
        self, email: str, meeting_name: str, start_at: datetime
    ) -> None: ...


class LoggingReminderNotifier:
    """Notifier that records reminders in the log instead of sending mail."""

    async def send_meeting_reminder(
        self, email: str, meeting_name: str, start_at: datetime
    ) -> None:
        logger.info(
            "reminder.logged",
            email=email,
            meeting_name=meeting_name,
            start_at=start_at.isoformat(),
        )


class MeetingJobs:
    """Job bodies invoked by the dispatcher.

    Args:
        uow: Unit of work for the job's own session.
        notifier: Delivery channel for reminders.
    """

    def __init__(self, uow: UnitOfWork, notifier: ReminderNotifier) -> None:
        self._uow = uow
        self._notifier = notifier

    async def send_reminder(self, meeting_id: uuid.UUID) -> int:
        """Send a reminder to every participant of a meeting.

        Meetings deleted or canceled since the reminder was scheduled are
        skipped.

        Returns:
            Number of reminders sent.
        """
        logger.info("reminder.started", meeting_id=str(meeting_id))

        meeting = await self._uow.meetings.get(meeting_id)
        if meeting is None:
            logger.warning("reminder.meeting_not_found", meeting_id=str(meeting_id))
            return 0
        if meeting.is_canceled:
            logger.info("reminder.meeting_canceled", meeting_id=str(meeting_id))
            return 0

        stmt = (
            select(UserModel.email)
            .join(ParticipantModel, ParticipantModel.user_id == UserModel.id)
            .where(ParticipantModel.meeting_id == meeting_id)
            .order_by(ParticipantModel.added_at)
        )
        emails = list((await self._uow.session.execute(stmt)).scalars())

        for email in emails:
            await self._notifier.send_meeting_reminder(email, meeting.name, meeting.start_at)

        logger.info("reminder.sent", meeting_id=str(meeting_id), count=len(emails))
        return len(emails)
