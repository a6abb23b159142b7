"""Initial meeting system schema.

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-19

Creates every table of the meeting lifecycle:
- users, roles, user_roles: accounts and role membership
- meetings: scheduled meetings, soft-canceled before purge
- meeting_participants: (meeting, user) membership with a role
- meeting_files: attachment metadata; bytes live in the object store
- meetings_log: audit copies of meetings purged by retention cleanup

Primary keys and timestamps are generated by the application.
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "001_initial_schema"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # ── users / roles ────────────────────────────────────────────────────

    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("first_name", sa.String(100), nullable=False),
        sa.Column("last_name", sa.String(100), nullable=False),
        sa.Column("email", sa.String(320), nullable=False),
        sa.Column("phone", sa.String(50), nullable=False),
        sa.Column("password_hash", sa.String(255), nullable=False),
        sa.Column("profile_picture_key", sa.String(500), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_users"),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "roles",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_roles"),
        sa.UniqueConstraint("name", name="uq_roles_name"),
    )

    op.create_table(
        "user_roles",
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("role_id", sa.Uuid(), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], name="fk_user_roles_user_id_users"),
        sa.ForeignKeyConstraint(["role_id"], ["roles.id"], name="fk_user_roles_role_id_roles"),
        sa.PrimaryKeyConstraint("user_id", "role_id", name="pk_user_roles"),
    )

    # ── meetings ─────────────────────────────────────────────────────────

    op.create_table(
        "meetings",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("start_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("organizer_id", sa.Uuid(), nullable=False),
        sa.Column("is_canceled", sa.Boolean(), nullable=False),
        sa.Column("canceled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(
            ["organizer_id"], ["users.id"], name="fk_meetings_organizer_id_users"
        ),
        sa.PrimaryKeyConstraint("id", name="pk_meetings"),
    )
    op.create_index("ix_meetings_organizer_id", "meetings", ["organizer_id"])
    # Retention cleanup scans canceled meetings by canceled_at
    op.create_index("ix_meetings_canceled_at", "meetings", ["canceled_at"])

    op.create_table(
        "meeting_participants",
        sa.Column("meeting_id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("role", sa.String(50), nullable=False),
        sa.Column("added_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(
            ["meeting_id"], ["meetings.id"], name="fk_meeting_participants_meeting_id_meetings"
        ),
        sa.ForeignKeyConstraint(
            ["user_id"], ["users.id"], name="fk_meeting_participants_user_id_users"
        ),
        sa.PrimaryKeyConstraint("meeting_id", "user_id", name="pk_meeting_participants"),
    )
    op.create_index("ix_meeting_participants_user_id", "meeting_participants", ["user_id"])

    op.create_table(
        "meeting_files",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("meeting_id", sa.Uuid(), nullable=False),
        sa.Column("file_name", sa.String(255), nullable=False),
        sa.Column("content_type", sa.String(255), nullable=False),
        sa.Column("size_bytes", sa.BigInteger(), nullable=False),
        sa.Column("object_key", sa.String(700), nullable=False),
        sa.Column("uploaded_by_user_id", sa.Uuid(), nullable=False),
        sa.Column("uploaded_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(
            ["meeting_id"], ["meetings.id"], name="fk_meeting_files_meeting_id_meetings"
        ),
        sa.ForeignKeyConstraint(
            ["uploaded_by_user_id"], ["users.id"], name="fk_meeting_files_uploaded_by_user_id_users"
        ),
        sa.PrimaryKeyConstraint("id", name="pk_meeting_files"),
        sa.UniqueConstraint("object_key", name="uq_meeting_files_object_key"),
    )
    op.create_index("ix_meeting_files_meeting_id", "meeting_files", ["meeting_id"])

    # ── audit ────────────────────────────────────────────────────────────

    op.create_table(
        "meetings_log",
        sa.Column("log_id", sa.Uuid(), nullable=False),
        sa.Column("original_id", sa.Uuid(), nullable=False),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("row_json", sa.Text(), nullable=False),
        sa.PrimaryKeyConstraint("log_id", name="pk_meetings_log"),
    )
    op.create_index("ix_meetings_log_original_id", "meetings_log", ["original_id"])


def downgrade() -> None:
    op.drop_index("ix_meetings_log_original_id", table_name="meetings_log")
    op.drop_table("meetings_log")
    op.drop_index("ix_meeting_files_meeting_id", table_name="meeting_files")
    op.drop_table("meeting_files")
    op.drop_index("ix_meeting_participants_user_id", table_name="meeting_participants")
    op.drop_table("meeting_participants")
    op.drop_index("ix_meetings_canceled_at", table_name="meetings")
    op.drop_index("ix_meetings_organizer_id", table_name="meetings")
    op.drop_table("meetings")
    op.drop_table("user_roles")
    op.drop_table("roles")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")
