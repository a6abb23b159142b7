"""Authorization predicates shared by the meeting and file services.

Each rule is decided in exactly one place; services call these instead of
comparing ids inline.
"""

from __future__ import annotations

import uuid

from src.meeting_system.core.unit_of_work import UnitOfWork
from src.meeting_system.meetings.models import AttachmentModel, MeetingModel, ParticipantModel


def is_organizer(meeting: MeetingModel, user_id: uuid.UUID) -> bool:
    return meeting.organizer_id == user_id


async def is_participant(uow: UnitOfWork, meeting_id: uuid.UUID, user_id: uuid.UUID) -> bool:
    return await uow.participants.exists(
        ParticipantModel.meeting_id == meeting_id,
        ParticipantModel.user_id == user_id,
    )


def can_remove_attachment(attachment: AttachmentModel, meeting: MeetingModel, user_id: uuid.UUID) -> bool:
    """Only the meeting organizer or the original uploader may delete a file."""
    return is_organizer(meeting, user_id) or attachment.uploaded_by_user_id == user_id


def can_remove_participant(meeting: MeetingModel, participant_user_id: uuid.UUID) -> bool:
    """The organizer row lives as long as the meeting does."""
    return not is_organizer(meeting, participant_user_id)
