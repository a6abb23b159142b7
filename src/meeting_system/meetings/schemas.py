"""Pydantic v2 schemas for the meeting system domain.

Defines the data contracts handed to and returned from the lifecycle
services: meeting create/update payloads, read models for meetings,
participants and files, uploaded file payloads, and the OperationResult
envelope used for every expected business outcome.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum
from typing import Generic, TypeVar

from pydantic import BaseModel, Field

T = TypeVar("T")


# ── Business Results ─────────────────────────────────────────────────────────


class FailureKind(str, Enum):
    """Why a business operation did not happen."""

    NOT_FOUND = "not_found"
    UNAUTHORIZED = "unauthorized"
    INVALID_OPERATION = "invalid_operation"


class OperationResult(BaseModel, Generic[T]):
    """Outcome of a lifecycle operation.

    Expected business failures (missing rows, wrong caller) are reported
    here instead of raised, so callers can render them directly.
    """

    ok: bool
    value: T | None = None
    error: FailureKind | None = None
    message: str | None = None

    @classmethod
    def success(cls, value: T | None = None) -> OperationResult[T]:
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, error: FailureKind, message: str) -> OperationResult[T]:
        return cls(ok=False, error=error, message=message)


# ── Meetings ─────────────────────────────────────────────────────────────────


class MeetingCreate(BaseModel):
    """Payload for creating a meeting."""

    name: str
    description: str = ""
    start_at: datetime
    end_at: datetime
    participant_emails: list[str] = Field(
        default_factory=list,
        description="Emails to invite; unknown addresses are ignored",
    )


class MeetingUpdate(BaseModel):
    """Payload for updating a meeting's details."""

    name: str
    description: str = ""
    start_at: datetime
    end_at: datetime


class ParticipantRead(BaseModel):
    user_id: uuid.UUID
    first_name: str
    last_name: str
    email: str
    role: str


class MeetingRead(BaseModel):
    """Meeting as seen by one of its participants."""

    id: uuid.UUID
    name: str
    description: str
    start_at: datetime
    end_at: datetime
    organizer_id: uuid.UUID
    is_canceled: bool
    canceled_at: datetime | None = None
    participants: list[ParticipantRead] = Field(default_factory=list)


# ── Files ────────────────────────────────────────────────────────────────────


class FileUpload(BaseModel):
    """A file received from a client, fully buffered in memory."""

    file_name: str
    content_type: str = "application/octet-stream"
    content: bytes

    @property
    def size_bytes(self) -> int:
        return len(self.content)


class FileRead(BaseModel):
    id: uuid.UUID
    file_name: str
    content_type: str
    size_bytes: int
    uploaded_by_user_id: uuid.UUID


class PresignedUrl(BaseModel):
    url: str
    expires_in_seconds: int


# ── Retention ────────────────────────────────────────────────────────────────


class CleanupReport(BaseModel):
    """Summary of one retention cleanup run."""

    cutoff: datetime
    meetings_purged: int = 0
    attachments_removed: int = 0
    failed_meeting_ids: list[uuid.UUID] = Field(default_factory=list)
