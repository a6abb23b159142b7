"""Meeting persistence models -- relational tables for the meeting lifecycle.

SQLAlchemy models using the shared declarative Base:
- UserModel / RoleModel / UserRoleModel: accounts and role membership
- MeetingModel: scheduled meeting, soft-canceled before being purged
- ParticipantModel: (meeting, user) membership with a free-text role
- AttachmentModel: file metadata; the bytes live in the object store
- MeetingsLogModel: audit copy of every meeting purged by retention cleanup

Primary keys are generated client-side (uuid4) and timestamps are set in
Python so freshly flushed rows are readable without a refresh round-trip.
Child rows are removed explicitly by the retention job before their meeting.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import BigInteger, Boolean, ForeignKey, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.meeting_system.core.database import Base, UTCDateTime

ORGANIZER_ROLE = "Organizer"
PARTICIPANT_ROLE = "Participant"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UserModel(Base):
    """Registered user. Participants are resolved by email against this table."""

    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    email: Mapped[str] = mapped_column(String(320), nullable=False, unique=True, index=True)
    phone: Mapped[str] = mapped_column(String(50), nullable=False, default="")
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    profile_picture_key: Mapped[str | None] = mapped_column(String(500), nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)


class RoleModel(Base):
    __tablename__ = "roles"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)


class UserRoleModel(Base):
    __tablename__ = "user_roles"

    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id"), primary_key=True)
    role_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("roles.id"), primary_key=True)


class MeetingModel(Base):
    """Scheduled meeting.

    Lifecycle: active -> canceled (is_canceled, canceled_at stamped by the
    organizer) -> purged (row deleted by the retention job once canceled_at
    is older than the configured threshold).
    """

    __tablename__ = "meetings"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    start_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    end_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    organizer_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False, index=True)
    is_canceled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    canceled_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True, index=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)

    participants: Mapped[list[ParticipantModel]] = relationship(
        back_populates="meeting", lazy="raise_on_sql"
    )
    attachments: Mapped[list[AttachmentModel]] = relationship(
        back_populates="meeting", lazy="raise_on_sql"
    )


class ParticipantModel(Base):
    """Meeting membership. Exactly one row per (meeting, user)."""

    __tablename__ = "meeting_participants"

    meeting_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("meetings.id"), primary_key=True)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id"), primary_key=True, index=True)
    role: Mapped[str] = mapped_column(String(50), nullable=False, default=PARTICIPANT_ROLE)
    added_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)

    meeting: Mapped[MeetingModel] = relationship(back_populates="participants", lazy="raise_on_sql")
    user: Mapped[UserModel] = relationship(lazy="raise_on_sql")


class AttachmentModel(Base):
    """File attached to a meeting.

    object_key is the lookup key of the blob in the meeting files bucket,
    derived as ``{meeting_id}/{random uuid}-{file_name}``.
    """

    __tablename__ = "meeting_files"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    meeting_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("meetings.id"), nullable=False, index=True)
    file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    content_type: Mapped[str] = mapped_column(String(255), nullable=False)
    size_bytes: Mapped[int] = mapped_column(BigInteger, nullable=False)
    object_key: Mapped[str] = mapped_column(String(700), nullable=False, unique=True)
    uploaded_by_user_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False)
    uploaded_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)

    meeting: Mapped[MeetingModel] = relationship(back_populates="attachments", lazy="raise_on_sql")


class MeetingsLogModel(Base):
    """Audit copy of a purged meeting row, written in the purge transaction."""

    __tablename__ = "meetings_log"

    log_id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    original_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    deleted_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)
    row_json: Mapped[str] = mapped_column(Text, nullable=False)
