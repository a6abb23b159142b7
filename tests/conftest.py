"""Shared fixtures for the meeting system tests.

Provides:
- A file-backed SQLite database per test (aiosqlite, foreign keys enforced)
- Session factory and UnitOfWork bound to it
- Seeded users (organizer plus two invitees)
- In-memory test doubles for the object store, job dispatcher and notifier
"""

from __future__ import annotations

import uuid
from collections.abc import AsyncGenerator
from datetime import datetime
from typing import Any

import pytest
import pytest_asyncio
from sqlalchemy import event, func, pool, select
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from src.meeting_system.config import Settings
from src.meeting_system.core.database import Base
from src.meeting_system.core.unit_of_work import UnitOfWork
from src.meeting_system.meetings.models import UserModel


# ── Test Doubles ─────────────────────────────────────────────────────────────


class InMemoryObjectStore:
    """In-memory test double for ObjectStore.

    Objects live in a dict keyed by (bucket, key). Deleting a missing key
    succeeds, like the real adapter. Keys listed in fail_delete_keys /
    fail_put_keys raise ConnectionError to simulate an unreachable store.
    """

    def __init__(self) -> None:
        self.objects: dict[tuple[str, str], tuple[bytes, str]] = {}
        self.deleted: list[tuple[str, str]] = []
        self.fail_delete_keys: set[str] = set()
        self.fail_put_keys: set[str] = set()
        self.fail_put_after: int | None = None

    async def put_file(
        self,
        bucket: str,
        key: str,
        data: bytes,
        content_type: str,
        compression_limit: int = 0,
    ) -> None:
        if self.fail_put_after is not None and len(self.objects) >= self.fail_put_after:
            raise ConnectionError(f"object store unavailable for {key}")
        if key in self.fail_put_keys:
            raise ConnectionError(f"object store unavailable for {key}")
        self.objects[(bucket, key)] = (data, content_type)

    async def delete(self, bucket: str, key: str) -> None:
        if key in self.fail_delete_keys:
            raise ConnectionError(f"object store unavailable for {key}")
        self.objects.pop((bucket, key), None)
        self.deleted.append((bucket, key))

    async def presign_get(self, bucket: str, key: str, ttl_seconds: int = 300) -> str:
        return f"http://objects.test/{bucket}/{key}?expires={ttl_seconds}"

    def keys(self, bucket: str = "meeting-files") -> list[str]:
        return [k for (b, k) in self.objects if b == bucket]


class RecordingDispatcher:
    """JobDispatcher test double that records every call."""

    def __init__(self) -> None:
        self.enqueued: list[tuple[str, tuple[Any, ...]]] = []
        self.scheduled: list[tuple[str, datetime, tuple[Any, ...]]] = []
        self.recurring: list[tuple[str, str, str]] = []

    def enqueue_now(self, job_ref: str, *args: Any) -> str:
        self.enqueued.append((job_ref, args))
        return uuid.uuid4().hex

    def schedule_at(self, job_ref: str, run_at: datetime, *args: Any) -> str:
        self.scheduled.append((job_ref, run_at, args))
        return uuid.uuid4().hex

    def register_recurring(self, job_id: str, job_ref: str, cron_expression: str) -> str:
        self.recurring.append((job_id, job_ref, cron_expression))
        return job_id


class RecordingNotifier:
    """ReminderNotifier test double."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str, datetime]] = []

    async def send_meeting_reminder(self, email: str, meeting_name: str, start_at: datetime) -> None:
        self.sent.append((email, meeting_name, start_at))


# ── Database ─────────────────────────────────────────────────────────────────


@pytest_asyncio.fixture
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """Fresh SQLite database with every table created."""
    db_engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'meetings.db'}",
        poolclass=pool.NullPool,
    )

    @event.listens_for(db_engine.sync_engine, "connect")
    def _enable_foreign_keys(dbapi_connection, _connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    async with db_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield db_engine

    await db_engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest_asyncio.fixture
async def uow(session_factory) -> AsyncGenerator[UnitOfWork, None]:
    async with UnitOfWork(session_factory) as unit_of_work:
        yield unit_of_work


@pytest.fixture
def count_rows(session_factory):
    """Count committed rows of a model, read through a separate session."""

    async def _count(model, *criteria) -> int:
        async with session_factory() as session:
            stmt = select(func.count()).select_from(model).where(*criteria)
            return int(await session.scalar(stmt))

    return _count


# ── Seed Data ────────────────────────────────────────────────────────────────


@pytest_asyncio.fixture
async def users(session_factory) -> dict[str, UserModel]:
    """Organizer (alice) and two invitees (bob, carol)."""
    seeded = {
        "alice": UserModel(id=uuid.uuid4(), first_name="Alice", last_name="Organizer", email="alice@example.com"),
        "bob": UserModel(id=uuid.uuid4(), first_name="Bob", last_name="Builder", email="bob@example.com"),
        "carol": UserModel(id=uuid.uuid4(), first_name="Carol", last_name="Reviewer", email="Carol@Example.com"),
    }
    async with session_factory() as session:
        session.add_all(seeded.values())
        await session.commit()
    return seeded


# ── Doubles / Settings ───────────────────────────────────────────────────────


@pytest.fixture
def object_store() -> InMemoryObjectStore:
    return InMemoryObjectStore()


@pytest.fixture
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        DATABASE_URL="sqlite+aiosqlite://",
        MEETING_FILES_BUCKET="meeting-files",
        COMPRESSION_FILE_SIZE_LIMIT=1024,
        CLEANUP_THRESHOLD_DAYS=30,
        CLEANUP_ISOLATE_PER_MEETING=False,
        REMINDER_LEAD_MINUTES=20,
    )
