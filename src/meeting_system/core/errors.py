"""Exception hierarchy for conditions that must not be returned as results.

Business outcomes (not found, not authorized, idempotent no-op) travel as
OperationResult values. Only unrecoverable preconditions and aborted
cleanup runs are raised; infrastructure errors from SQLAlchemy and botocore
propagate unchanged.
"""

from __future__ import annotations

import uuid


class MeetingSystemError(Exception):
    """Base class for meeting system exceptions."""


class OrganizerNotFoundError(MeetingSystemError):
    """The user creating a meeting does not exist."""

    def __init__(self, organizer_id: uuid.UUID) -> None:
        self.organizer_id = organizer_id
        super().__init__(f"Organizer with ID {organizer_id} not found.")


class TransactionNotActiveError(MeetingSystemError):
    """Commit was requested without a transaction in progress."""


class CleanupAbortedError(MeetingSystemError):
    """A retention cleanup run could not purge its batch."""
