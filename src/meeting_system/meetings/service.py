"""Meeting service -- lifecycle of meetings and their participants.

State machine: active -> canceled (organizer only, one way) -> purged
(retention cleanup). Creation is the only multi-row write and runs in one
transaction; updates, cancellation and membership changes are single saves
through UnitOfWork.complete().

Reminders are scheduled strictly after the creation commit so a reminder
never points at a meeting that failed to persist. When creation joins a
caller's transaction, the reminder waits for that caller's commit.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone

import structlog
from sqlalchemy import func
from sqlalchemy.orm import selectinload

from src.meeting_system.config import Settings, get_settings
from src.meeting_system.core.database import to_utc
from src.meeting_system.core.errors import OrganizerNotFoundError
from src.meeting_system.core.unit_of_work import TransactionScope, UnitOfWork
from src.meeting_system.meetings.authorization import can_remove_participant, is_organizer
from src.meeting_system.meetings.models import (
    ORGANIZER_ROLE,
    PARTICIPANT_ROLE,
    MeetingModel,
    ParticipantModel,
    UserModel,
)
from src.meeting_system.meetings.schemas import (
    FailureKind,
    MeetingCreate,
    MeetingRead,
    MeetingUpdate,
    OperationResult,
    ParticipantRead,
)
from src.meeting_system.scheduling.dispatcher import JobDispatcher

logger = structlog.get_logger(__name__)

SEND_REMINDER_JOB = "src.meeting_system.worker:send_meeting_reminder"


# ── Serialization Helpers ───────────────────────────────────────────────────


def _model_to_meeting(model: MeetingModel) -> MeetingRead:
    """Convert a MeetingModel with participants and users loaded."""
    ordered = sorted(
        model.participants,
        key=lambda p: (p.user_id != model.organizer_id, p.added_at),
    )
    return MeetingRead(
        id=model.id,
        name=model.name,
        description=model.description,
        start_at=model.start_at,
        end_at=model.end_at,
        organizer_id=model.organizer_id,
        is_canceled=model.is_canceled,
        canceled_at=model.canceled_at,
        participants=[
            ParticipantRead(
                user_id=p.user_id,
                first_name=p.user.first_name,
                last_name=p.user.last_name,
                email=p.user.email,
                role=p.role,
            )
            for p in ordered
        ],
    )


def collect_invite_emails(organizer_email: str, emails: list[str]) -> list[str]:
    """Deduplicate invitees case-insensitively, organizer first.

    Returns:
        Lower-cased emails in first-seen order.
    """
    seen: dict[str, None] = {organizer_email.strip().lower(): None}
    for email in emails:
        normalized = email.strip().lower()
        if normalized:
            seen.setdefault(normalized, None)
    return list(seen)


def _meeting_with_participants():
    return selectinload(MeetingModel.participants).selectinload(ParticipantModel.user)


# ── Service ─────────────────────────────────────────────────────────────────


class MeetingService:
    """Create, read, update and cancel meetings; manage participants.

    Args:
        uow: Unit of work for all relational access.
        dispatcher: Job dispatcher used to schedule reminders.
        settings: Reminder lead time.
    """

    def __init__(
        self,
        uow: UnitOfWork,
        dispatcher: JobDispatcher,
        settings: Settings | None = None,
    ) -> None:
        self._uow = uow
        self._dispatcher = dispatcher
        self._settings = settings or get_settings()

    # ── Create ───────────────────────────────────────────────────────────

    async def create_meeting(
        self,
        data: MeetingCreate,
        organizer_id: uuid.UUID,
        scope: TransactionScope | None = None,
    ) -> MeetingRead | None:
        """Create a meeting with its organizer and invited participants.

        Args:
            data: Meeting fields and invitee emails.
            organizer_id: User that organizes (and participates in) the meeting.
            scope: Caller's transaction to join. The reminder is then
                scheduled only when the caller commits.

        Raises:
            OrganizerNotFoundError: If organizer_id is not a user.
        """
        organizer = await self._uow.users.get(organizer_id)
        if organizer is None:
            raise OrganizerNotFoundError(organizer_id)

        meeting = MeetingModel(
            id=uuid.uuid4(),
            name=data.name,
            description=data.description,
            start_at=to_utc(data.start_at),
            end_at=to_utc(data.end_at),
            organizer_id=organizer_id,
        )

        try:
            async with self._uow.transaction(scope) as active:
                active.after_commit(lambda: self._schedule_reminder(meeting))
                self._uow.meetings.add(meeting)

                emails = collect_invite_emails(organizer.email, data.participant_emails)
                invited = await self._uow.users.list(func.lower(UserModel.email).in_(emails))
                user_ids = [u.id for u in invited]
                if organizer_id not in user_ids:
                    user_ids.insert(0, organizer_id)

                self._uow.participants.add_all(
                    ParticipantModel(
                        meeting_id=meeting.id,
                        user_id=user_id,
                        role=ORGANIZER_ROLE if user_id == organizer_id else PARTICIPANT_ROLE,
                    )
                    for user_id in user_ids
                )
        except BaseException:
            logger.error("meeting.create_failed", organizer_id=str(organizer_id), exc_info=True)
            raise

        logger.info(
            "meeting.created",
            meeting_id=str(meeting.id),
            organizer_id=str(organizer_id),
            participant_count=len(user_ids),
            joined=scope is not None,
        )
        return await self.get_meeting(meeting.id, organizer_id)

    def _schedule_reminder(self, meeting: MeetingModel) -> None:
        reminder_at = meeting.start_at - timedelta(minutes=self._settings.REMINDER_LEAD_MINUTES)
        if reminder_at <= datetime.now(timezone.utc):
            logger.info("meeting.reminder_skipped", meeting_id=str(meeting.id))
            return
        self._dispatcher.schedule_at(SEND_REMINDER_JOB, reminder_at, str(meeting.id))
        logger.info(
            "meeting.reminder_scheduled",
            meeting_id=str(meeting.id),
            run_at=reminder_at.isoformat(),
        )

    # ── Read ─────────────────────────────────────────────────────────────

    async def get_meeting(self, meeting_id: uuid.UUID, user_id: uuid.UUID) -> MeetingRead | None:
        """Get a meeting if user_id participates in it."""
        meeting = await self._uow.meetings.first(
            MeetingModel.id == meeting_id,
            MeetingModel.participants.any(ParticipantModel.user_id == user_id),
            options=[_meeting_with_participants()],
            populate_existing=True,
        )
        if meeting is None:
            return None
        return _model_to_meeting(meeting)

    async def list_user_meetings(self, user_id: uuid.UUID) -> list[MeetingRead]:
        """All non-canceled meetings the user participates in, soonest first."""
        meetings = await self._uow.meetings.list(
            MeetingModel.is_canceled.is_(False),
            MeetingModel.participants.any(ParticipantModel.user_id == user_id),
            options=[_meeting_with_participants()],
            order_by=[MeetingModel.start_at],
            populate_existing=True,
        )
        return [_model_to_meeting(m) for m in meetings]

    # ── Update / Cancel ──────────────────────────────────────────────────

    async def _load_for_organizer(
        self, meeting_id: uuid.UUID, user_id: uuid.UUID, action: str
    ) -> tuple[MeetingModel | None, OperationResult | None]:
        meeting = await self._uow.meetings.get(meeting_id)
        if meeting is None:
            logger.warning("meeting.not_found", action=action, meeting_id=str(meeting_id))
            return None, OperationResult.failure(FailureKind.NOT_FOUND, "Meeting not found.")
        if not is_organizer(meeting, user_id):
            logger.warning(
                "meeting.not_authorized",
                action=action,
                meeting_id=str(meeting_id),
                user_id=str(user_id),
            )
            return None, OperationResult.failure(
                FailureKind.UNAUTHORIZED,
                f"User is not authorized to {action.replace('_', ' ')} this meeting.",
            )
        return meeting, None

    async def update_meeting(
        self, meeting_id: uuid.UUID, data: MeetingUpdate, user_id: uuid.UUID
    ) -> OperationResult[MeetingRead]:
        """Replace a meeting's details. Organizer only."""
        meeting, failure = await self._load_for_organizer(meeting_id, user_id, "update")
        if failure is not None:
            return failure

        meeting.name = data.name
        meeting.description = data.description
        meeting.start_at = to_utc(data.start_at)
        meeting.end_at = to_utc(data.end_at)
        await self._uow.complete()

        logger.info("meeting.updated", meeting_id=str(meeting_id))
        return OperationResult.success(await self.get_meeting(meeting_id, user_id))

    async def cancel_meeting(self, meeting_id: uuid.UUID, user_id: uuid.UUID) -> OperationResult[None]:
        """Soft-cancel a meeting. Organizer only; repeat calls re-stamp canceled_at."""
        meeting, failure = await self._load_for_organizer(meeting_id, user_id, "cancel")
        if failure is not None:
            return failure

        meeting.is_canceled = True
        meeting.canceled_at = datetime.now(timezone.utc)
        await self._uow.complete()

        logger.info("meeting.canceled", meeting_id=str(meeting_id))
        return OperationResult.success()

    # ── Participants ─────────────────────────────────────────────────────

    async def add_participant(
        self, meeting_id: uuid.UUID, participant_email: str, organizer_id: uuid.UUID
    ) -> OperationResult[None]:
        """Invite an existing user by email. Idempotent."""
        meeting, failure = await self._load_for_organizer(meeting_id, organizer_id, "add_participants_to")
        if failure is not None:
            return failure

        user = await self._uow.users.first(
            func.lower(UserModel.email) == participant_email.strip().lower()
        )
        if user is None:
            logger.warning("meeting.add_participant_user_not_found", email=participant_email)
            return OperationResult.failure(FailureKind.NOT_FOUND, "Participant user not found.")

        already_member = await self._uow.participants.exists(
            ParticipantModel.meeting_id == meeting_id,
            ParticipantModel.user_id == user.id,
        )
        if already_member:
            return OperationResult.success()

        self._uow.participants.add(
            ParticipantModel(meeting_id=meeting_id, user_id=user.id, role=PARTICIPANT_ROLE)
        )
        await self._uow.complete()

        logger.info("meeting.participant_added", meeting_id=str(meeting_id), user_id=str(user.id))
        return OperationResult.success()

    async def remove_participant(
        self, meeting_id: uuid.UUID, participant_id: uuid.UUID, organizer_id: uuid.UUID
    ) -> OperationResult[None]:
        """Remove a participant. The organizer's own row can never be removed."""
        meeting, failure = await self._load_for_organizer(
            meeting_id, organizer_id, "remove_participants_from"
        )
        if failure is not None:
            return failure

        if not can_remove_participant(meeting, participant_id):
            logger.warning("meeting.remove_organizer_rejected", meeting_id=str(meeting_id))
            return OperationResult.failure(
                FailureKind.INVALID_OPERATION,
                "The organizer cannot be removed from their own meeting.",
            )

        participant = await self._uow.participants.get((meeting_id, participant_id))
        if participant is None:
            logger.warning(
                "meeting.remove_participant_not_found",
                meeting_id=str(meeting_id),
                user_id=str(participant_id),
            )
            return OperationResult.failure(
                FailureKind.NOT_FOUND, "Participant not found in this meeting."
            )

        await self._uow.participants.remove(participant)
        await self._uow.complete()

        logger.info(
            "meeting.participant_removed",
            meeting_id=str(meeting_id),
            user_id=str(participant_id),
        )
        return OperationResult.success()
