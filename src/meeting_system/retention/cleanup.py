"""Retention cleanup -- permanently purge meetings canceled long ago.

A meeting is eligible once it is canceled and its canceled_at is strictly
older than now - CLEANUP_THRESHOLD_DAYS. For every eligible meeting the job
removes each attachment through MeetingFileService (acting as the organizer),
writes an audit row to meetings_log, then bulk-deletes the participants and
finally the meetings themselves.

Attachment blobs are deleted as the run goes and cannot be restored, so a
failed run may leave meetings whose blobs are already gone. The relational
side rolls back and the next run deletes those blobs again, which the object
store treats as success.

Batch modes:
- default: the whole batch shares one transaction (all or nothing)
- CLEANUP_ISOLATE_PER_MEETING: one transaction per meeting; failures are
  collected and reported by a CleanupAbortedError at the end of the run
- joined: run(scope=...) stages the whole batch in the caller's transaction;
  the caller commits or rolls it back
"""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

import structlog
from sqlalchemy.orm import selectinload

from src.meeting_system.config import Settings, get_settings
from src.meeting_system.core.errors import CleanupAbortedError
from src.meeting_system.core.unit_of_work import TransactionScope, UnitOfWork
from src.meeting_system.files.service import MeetingFileService
from src.meeting_system.meetings.models import MeetingModel, MeetingsLogModel, ParticipantModel
from src.meeting_system.meetings.schemas import CleanupReport

logger = structlog.get_logger(__name__)


@dataclass
class _PurgeCandidate:
    """Plain snapshot of an eligible meeting.

    Taken before any purge write, since a rollback expires the ORM rows and
    they cannot be reloaded implicitly in async code.
    """

    meeting_id: uuid.UUID
    organizer_id: uuid.UUID
    attachment_ids: list[uuid.UUID] = field(default_factory=list)
    row_json: str = ""


def _row_json(meeting: MeetingModel) -> str:
    return json.dumps(
        {
            "id": str(meeting.id),
            "name": meeting.name,
            "description": meeting.description,
            "start_at": meeting.start_at.isoformat(),
            "end_at": meeting.end_at.isoformat(),
            "organizer_id": str(meeting.organizer_id),
            "is_canceled": meeting.is_canceled,
            "canceled_at": meeting.canceled_at.isoformat() if meeting.canceled_at else None,
            "created_at": meeting.created_at.isoformat() if meeting.created_at else None,
        }
    )


class RetentionCleanupJob:
    """Purge canceled meetings past the retention threshold.

    Args:
        uow: Unit of work owned by this run.
        file_service: File service bound to the same unit of work.
        settings: Threshold and batch mode.
    """

    def __init__(
        self,
        uow: UnitOfWork,
        file_service: MeetingFileService,
        settings: Settings | None = None,
    ) -> None:
        self._uow = uow
        self._files = file_service
        self._settings = settings or get_settings()

    async def run(
        self,
        now: datetime | None = None,
        scope: TransactionScope | None = None,
    ) -> CleanupReport:
        """Run one cleanup pass.

        Args:
            now: Reference instant; defaults to the current UTC time.
            scope: Caller's transaction to join. The whole batch then runs in
                it and nothing is committed here, whatever the batch mode.

        Returns:
            What was purged (staged, when joined). Empty when nothing was
            eligible.

        Raises:
            CleanupAbortedError: An attachment could not be removed (batch
                mode) or at least one meeting failed (isolated mode).
        """
        now = now or datetime.now(timezone.utc)
        cutoff = now - timedelta(days=self._settings.CLEANUP_THRESHOLD_DAYS)
        report = CleanupReport(cutoff=cutoff)

        candidates = await self._find_candidates(cutoff)
        if not candidates:
            logger.info("cleanup.nothing_to_purge", cutoff=cutoff.isoformat())
            return report

        logger.info(
            "cleanup.started",
            cutoff=cutoff.isoformat(),
            candidates=len(candidates),
            joined=scope is not None,
        )

        if scope is None and self._settings.CLEANUP_ISOLATE_PER_MEETING:
            await self._run_isolated(candidates, report)
        else:
            await self._run_batch(candidates, report, scope)

        logger.info(
            "cleanup.completed",
            meetings_purged=report.meetings_purged,
            attachments_removed=report.attachments_removed,
        )
        return report

    async def _find_candidates(self, cutoff: datetime) -> list[_PurgeCandidate]:
        meetings = await self._uow.meetings.list(
            MeetingModel.is_canceled.is_(True),
            MeetingModel.canceled_at.is_not(None),
            MeetingModel.canceled_at < cutoff,
            options=[selectinload(MeetingModel.attachments)],
            order_by=[MeetingModel.canceled_at],
        )
        return [
            _PurgeCandidate(
                meeting_id=m.id,
                organizer_id=m.organizer_id,
                attachment_ids=[a.id for a in m.attachments],
                row_json=_row_json(m),
            )
            for m in meetings
        ]

    async def _run_batch(
        self,
        candidates: list[_PurgeCandidate],
        report: CleanupReport,
        scope: TransactionScope | None = None,
    ) -> None:
        try:
            async with self._uow.transaction(scope) as active:
                removed = await self._purge(candidates, active)
        except BaseException:
            logger.error("cleanup.aborted", candidates=len(candidates), exc_info=True)
            raise
        report.meetings_purged = len(candidates)
        report.attachments_removed = removed

    async def _run_isolated(self, candidates: list[_PurgeCandidate], report: CleanupReport) -> None:
        for candidate in candidates:
            try:
                async with self._uow.transaction() as scope:
                    removed = await self._purge([candidate], scope)
            except Exception:
                logger.error(
                    "cleanup.meeting_failed",
                    meeting_id=str(candidate.meeting_id),
                    exc_info=True,
                )
                report.failed_meeting_ids.append(candidate.meeting_id)
                continue
            report.meetings_purged += 1
            report.attachments_removed += removed

        if report.failed_meeting_ids:
            failed = ", ".join(str(mid) for mid in report.failed_meeting_ids)
            raise CleanupAbortedError(
                f"Cleanup failed for {len(report.failed_meeting_ids)} meeting(s): {failed}"
            )

    async def _purge(self, batch: list[_PurgeCandidate], scope: TransactionScope) -> int:
        """Remove attachments, audit, then delete participants and meetings."""
        removed = 0
        for candidate in batch:
            for file_id in candidate.attachment_ids:
                result = await self._files.remove(
                    candidate.meeting_id, file_id, candidate.organizer_id, scope=scope
                )
                if not result.ok:
                    raise CleanupAbortedError(
                        f"Failed to queue removal for file {file_id} in meeting "
                        f"{candidate.meeting_id}: {result.message}"
                    )
                removed += 1

        deleted_at = datetime.now(timezone.utc)
        self._uow.meetings_log.add_all(
            MeetingsLogModel(
                original_id=candidate.meeting_id,
                deleted_at=deleted_at,
                row_json=candidate.row_json,
            )
            for candidate in batch
        )

        meeting_ids = [candidate.meeting_id for candidate in batch]
        await self._uow.participants.delete_where(ParticipantModel.meeting_id.in_(meeting_ids))
        purged = await self._uow.meetings.delete_where(MeetingModel.id.in_(meeting_ids))
        logger.debug("cleanup.batch_deleted", meetings=purged, attachments=removed)
        return removed
