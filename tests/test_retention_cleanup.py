"""Tests for RetentionCleanupJob.

Every test sets up meetings through the real services, backdates
canceled_at directly in the database and then runs the job in its own
UnitOfWork, the way the worker does.
"""

from __future__ import annotations

import json
import uuid
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import select, update

from src.meeting_system.core.errors import CleanupAbortedError
from src.meeting_system.core.unit_of_work import UnitOfWork
from src.meeting_system.files.service import MeetingFileService
from src.meeting_system.meetings.models import (
    AttachmentModel,
    MeetingModel,
    MeetingsLogModel,
    ParticipantModel,
)
from src.meeting_system.meetings.schemas import FailureKind, FileUpload, MeetingCreate, OperationResult
from src.meeting_system.meetings.service import MeetingService
from src.meeting_system.retention.cleanup import RetentionCleanupJob


NOW = datetime(2026, 10, 19, 0, 0, tzinfo=timezone.utc)
THRESHOLD = timedelta(days=30)


# ── Helpers ──────────────────────────────────────────────────────────────────


async def _create_meeting(
    session_factory,
    dispatcher,
    settings,
    object_store,
    organizer,
    *,
    file_count: int = 1,
    invite: tuple[str, ...] = (),
    cancel: bool = True,
) -> uuid.UUID:
    start = datetime.now(timezone.utc) + timedelta(hours=1)
    async with UnitOfWork(session_factory) as uow:
        meetings = MeetingService(uow, dispatcher, settings)
        meeting = await meetings.create_meeting(
            MeetingCreate(
                name="Retro",
                start_at=start,
                end_at=start + timedelta(hours=1),
                participant_emails=list(invite),
            ),
            organizer.id,
        )
        if file_count:
            uploads = [
                FileUpload(file_name=f"file-{i}.txt", content_type="text/plain", content=b"notes")
                for i in range(file_count)
            ]
            await MeetingFileService(uow, object_store, settings).upload(meeting.id, uploads, organizer.id)
        if cancel:
            await meetings.cancel_meeting(meeting.id, organizer.id)
    return meeting.id


async def _set_canceled_at(session_factory, meeting_id: uuid.UUID, canceled_at: datetime, is_canceled: bool = True):
    async with session_factory() as session:
        await session.execute(
            update(MeetingModel)
            .where(MeetingModel.id == meeting_id)
            .values(is_canceled=is_canceled, canceled_at=canceled_at)
        )
        await session.commit()


async def _object_keys(session_factory, meeting_id: uuid.UUID) -> list[str]:
    async with session_factory() as session:
        result = await session.execute(
            select(AttachmentModel.object_key).where(AttachmentModel.meeting_id == meeting_id)
        )
        return list(result.scalars())


async def _run_cleanup(session_factory, object_store, settings, now: datetime = NOW):
    async with UnitOfWork(session_factory) as uow:
        files = MeetingFileService(uow, object_store, settings)
        return await RetentionCleanupJob(uow, files, settings).run(now=now)


# ── Eligibility ──────────────────────────────────────────────────────────────


class TestEligibility:
    @pytest.mark.asyncio
    async def test_threshold_boundary(self, session_factory, dispatcher, settings, object_store, users, count_rows):
        alice = users["alice"]
        just_inside = await _create_meeting(session_factory, dispatcher, settings, object_store, alice)
        at_cutoff = await _create_meeting(session_factory, dispatcher, settings, object_store, alice)
        past = await _create_meeting(session_factory, dispatcher, settings, object_store, alice)
        await _set_canceled_at(session_factory, just_inside, NOW - THRESHOLD + timedelta(seconds=1))
        await _set_canceled_at(session_factory, at_cutoff, NOW - THRESHOLD)
        await _set_canceled_at(session_factory, past, NOW - THRESHOLD - timedelta(seconds=1))

        report = await _run_cleanup(session_factory, object_store, settings)

        assert report.meetings_purged == 1
        assert report.cutoff == NOW - THRESHOLD
        assert await count_rows(MeetingModel, MeetingModel.id == past) == 0
        assert await count_rows(MeetingModel, MeetingModel.id == just_inside) == 1
        assert await count_rows(MeetingModel, MeetingModel.id == at_cutoff) == 1

    @pytest.mark.asyncio
    async def test_active_meetings_are_never_purged(self, session_factory, dispatcher, settings, object_store, users, count_rows):
        meeting_id = await _create_meeting(
            session_factory, dispatcher, settings, object_store, users["alice"], cancel=False
        )
        await _set_canceled_at(session_factory, meeting_id, NOW - timedelta(days=90), is_canceled=False)

        report = await _run_cleanup(session_factory, object_store, settings)

        assert report.meetings_purged == 0
        assert await count_rows(MeetingModel) == 1

    @pytest.mark.asyncio
    async def test_empty_run_opens_no_transaction(self, session_factory, dispatcher, settings, object_store, users):
        await _create_meeting(session_factory, dispatcher, settings, object_store, users["alice"])

        async with UnitOfWork(session_factory) as uow:
            files = MeetingFileService(uow, object_store, settings)
            job = RetentionCleanupJob(uow, files, settings)
            with patch.object(uow, "begin_transaction", new=AsyncMock()) as begin:
                report = await job.run(now=datetime.now(timezone.utc))

        begin.assert_not_awaited()
        assert report.meetings_purged == 0
        assert report.attachments_removed == 0


# ── Purge ────────────────────────────────────────────────────────────────────


class TestPurge:
    @pytest.mark.asyncio
    async def test_create_cancel_age_then_purge(self, session_factory, dispatcher, settings, object_store, users, count_rows):
        meeting_id = await _create_meeting(
            session_factory,
            dispatcher,
            settings,
            object_store,
            users["alice"],
            file_count=2,
            invite=("bob@example.com",),
        )
        await _set_canceled_at(session_factory, meeting_id, datetime.now(timezone.utc) - timedelta(days=31))
        scheduled_before = list(dispatcher.scheduled)

        report = await _run_cleanup(session_factory, object_store, settings, now=datetime.now(timezone.utc))

        assert report.meetings_purged == 1
        assert report.attachments_removed == 2
        assert await count_rows(MeetingModel) == 0
        assert await count_rows(ParticipantModel) == 0
        assert await count_rows(AttachmentModel) == 0
        assert object_store.keys() == []
        # Only the reminder from creation; cleanup dispatches nothing
        assert dispatcher.scheduled == scheduled_before
        assert len(dispatcher.scheduled) == 1
        assert dispatcher.enqueued == []

    @pytest.mark.asyncio
    async def test_purge_writes_audit_row(self, session_factory, dispatcher, settings, object_store, users):
        meeting_id = await _create_meeting(session_factory, dispatcher, settings, object_store, users["alice"])
        await _set_canceled_at(session_factory, meeting_id, NOW - timedelta(days=45))

        await _run_cleanup(session_factory, object_store, settings)

        async with session_factory() as session:
            logs = list((await session.execute(select(MeetingsLogModel))).scalars())
        assert len(logs) == 1
        assert logs[0].original_id == meeting_id
        row = json.loads(logs[0].row_json)
        assert row["id"] == str(meeting_id)
        assert row["name"] == "Retro"
        assert row["is_canceled"] is True

    @pytest.mark.asyncio
    async def test_meeting_without_attachments(self, session_factory, dispatcher, settings, object_store, users, count_rows):
        meeting_id = await _create_meeting(
            session_factory, dispatcher, settings, object_store, users["alice"], file_count=0
        )
        await _set_canceled_at(session_factory, meeting_id, NOW - timedelta(days=60))

        report = await _run_cleanup(session_factory, object_store, settings)

        assert report.meetings_purged == 1
        assert report.attachments_removed == 0
        assert await count_rows(MeetingModel) == 0


# ── Failures ─────────────────────────────────────────────────────────────────


class TestFailures:
    @pytest.mark.asyncio
    async def test_blob_failure_deletes_no_meeting_of_the_batch(
        self, session_factory, dispatcher, settings, object_store, users, count_rows
    ):
        alice = users["alice"]
        first = await _create_meeting(session_factory, dispatcher, settings, object_store, alice)
        second = await _create_meeting(session_factory, dispatcher, settings, object_store, alice)
        await _set_canceled_at(session_factory, first, NOW - timedelta(days=40))
        await _set_canceled_at(session_factory, second, NOW - timedelta(days=35))
        first_keys = await _object_keys(session_factory, first)
        second_keys = await _object_keys(session_factory, second)
        object_store.fail_delete_keys.update(second_keys)

        with pytest.raises(ConnectionError):
            await _run_cleanup(session_factory, object_store, settings)

        assert await count_rows(MeetingModel) == 2
        assert await count_rows(AttachmentModel) == 2
        assert await count_rows(MeetingsLogModel) == 0
        # Blob deletions already issued are not undone
        assert not any(key in object_store.keys() for key in first_keys)
        assert all(key in object_store.keys() for key in second_keys)

        # Next run converges: the missing blob counts as deleted
        object_store.fail_delete_keys.clear()
        report = await _run_cleanup(session_factory, object_store, settings)

        assert report.meetings_purged == 2
        assert await count_rows(MeetingModel) == 0

    @pytest.mark.asyncio
    async def test_removal_failure_result_aborts_run(
        self, session_factory, dispatcher, settings, object_store, users, count_rows
    ):
        meeting_id = await _create_meeting(session_factory, dispatcher, settings, object_store, users["alice"])
        await _set_canceled_at(session_factory, meeting_id, NOW - timedelta(days=40))

        async with UnitOfWork(session_factory) as uow:
            files = MeetingFileService(uow, object_store, settings)
            files.remove = AsyncMock(
                return_value=OperationResult.failure(FailureKind.NOT_FOUND, "File not found.")
            )
            job = RetentionCleanupJob(uow, files, settings)

            with pytest.raises(CleanupAbortedError, match="Failed to queue removal for file"):
                await job.run(now=NOW)

            assert not uow.in_transaction

        assert await count_rows(MeetingModel, MeetingModel.id == meeting_id) == 1

    @pytest.mark.asyncio
    async def test_isolated_mode_purges_healthy_meetings(
        self, session_factory, dispatcher, settings, object_store, users, count_rows
    ):
        isolated = settings.model_copy(update={"CLEANUP_ISOLATE_PER_MEETING": True})
        alice = users["alice"]
        healthy = await _create_meeting(session_factory, dispatcher, isolated, object_store, alice)
        broken = await _create_meeting(session_factory, dispatcher, isolated, object_store, alice)
        await _set_canceled_at(session_factory, healthy, NOW - timedelta(days=40))
        await _set_canceled_at(session_factory, broken, NOW - timedelta(days=35))
        object_store.fail_delete_keys.update(await _object_keys(session_factory, broken))

        with pytest.raises(CleanupAbortedError) as exc_info:
            await _run_cleanup(session_factory, object_store, isolated)

        assert str(broken) in str(exc_info.value)
        assert await count_rows(MeetingModel, MeetingModel.id == healthy) == 0
        assert await count_rows(MeetingModel, MeetingModel.id == broken) == 1
        assert await count_rows(AttachmentModel, AttachmentModel.meeting_id == broken) == 1


# ── Joined transaction ───────────────────────────────────────────────────────


class TestJoinedRun:
    @pytest.mark.asyncio
    async def test_owner_rollback_keeps_meetings(
        self, session_factory, dispatcher, settings, object_store, users, count_rows
    ):
        meeting_id = await _create_meeting(session_factory, dispatcher, settings, object_store, users["alice"])
        await _set_canceled_at(session_factory, meeting_id, NOW - timedelta(days=45))

        async with UnitOfWork(session_factory) as uow:
            job = RetentionCleanupJob(uow, MeetingFileService(uow, object_store, settings), settings)
            with pytest.raises(RuntimeError):
                async with uow.transaction() as scope:
                    report = await job.run(now=NOW, scope=scope)
                    assert report.meetings_purged == 1
                    assert uow.transaction_id == scope.transaction_id
                    raise RuntimeError("owner fails after the cleanup")

        assert await count_rows(MeetingModel, MeetingModel.id == meeting_id) == 1
        assert await count_rows(AttachmentModel, AttachmentModel.meeting_id == meeting_id) == 1
        assert await count_rows(MeetingsLogModel) == 0
        # Blob deletion is not transactional; the next run deletes it again
        assert len(object_store.deleted) == 1

    @pytest.mark.asyncio
    async def test_owner_commit_purges(
        self, session_factory, dispatcher, settings, object_store, users, count_rows
    ):
        isolated = settings.model_copy(update={"CLEANUP_ISOLATE_PER_MEETING": True})
        first = await _create_meeting(session_factory, dispatcher, isolated, object_store, users["alice"])
        second = await _create_meeting(session_factory, dispatcher, isolated, object_store, users["alice"])
        await _set_canceled_at(session_factory, first, NOW - timedelta(days=45))
        await _set_canceled_at(session_factory, second, NOW - timedelta(days=40))

        async with UnitOfWork(session_factory) as uow:
            job = RetentionCleanupJob(uow, MeetingFileService(uow, object_store, isolated), isolated)
            async with uow.transaction() as scope:
                report = await job.run(now=NOW, scope=scope)

                assert await count_rows(MeetingModel) == 2

        assert report.meetings_purged == 2
        assert report.attachments_removed == 2
        assert await count_rows(MeetingModel) == 0
        assert await count_rows(MeetingsLogModel) == 2
