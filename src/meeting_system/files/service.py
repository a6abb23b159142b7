"""Meeting file service -- attachment upload/removal across both stores.

Every operation writes to the relational store (attachment metadata) and
the object store (file bytes). Only the relational side is transactional:

- upload writes blobs before the metadata commit; if the call fails half
  way, blobs written by earlier iterations stay behind as orphans
- remove deletes the blob first, then the row; a missing blob counts as
  already removed, so a retried removal converges

Both write operations accept an optional TransactionScope. Without one they
open and commit their own transaction; with one they join it and leave the
commit to the owner (this is how retention cleanup batches removals).
"""

from __future__ import annotations

import uuid

import structlog
from sqlalchemy.orm import joinedload

from src.meeting_system.config import Settings, get_settings
from src.meeting_system.core.unit_of_work import TransactionScope, UnitOfWork
from src.meeting_system.files.object_store import ObjectStore
from src.meeting_system.meetings.authorization import can_remove_attachment, is_participant
from src.meeting_system.meetings.models import AttachmentModel, MeetingModel
from src.meeting_system.meetings.schemas import (
    FailureKind,
    FileRead,
    FileUpload,
    OperationResult,
    PresignedUrl,
)

logger = structlog.get_logger(__name__)


def build_object_key(meeting_id: uuid.UUID, file_name: str) -> str:
    """Derive a unique object-store key for a meeting file."""
    return f"{meeting_id}/{uuid.uuid4()}-{file_name}"


def _to_file_read(model: AttachmentModel) -> FileRead:
    return FileRead(
        id=model.id,
        file_name=model.file_name,
        content_type=model.content_type,
        size_bytes=model.size_bytes,
        uploaded_by_user_id=model.uploaded_by_user_id,
    )


class MeetingFileService:
    """Upload, remove, list and share files attached to meetings.

    Args:
        uow: Unit of work shared with the caller.
        object_store: Object store holding the file bytes.
        settings: Bucket name, compression limit and URL lifetime.
    """

    def __init__(
        self,
        uow: UnitOfWork,
        object_store: ObjectStore,
        settings: Settings | None = None,
    ) -> None:
        self._uow = uow
        self._store = object_store
        self._settings = settings or get_settings()

    @property
    def bucket(self) -> str:
        return self._settings.MEETING_FILES_BUCKET

    async def upload(
        self,
        meeting_id: uuid.UUID,
        files: list[FileUpload],
        user_id: uuid.UUID,
        scope: TransactionScope | None = None,
    ) -> OperationResult[list[FileRead]]:
        """Attach files to a meeting on behalf of one of its participants.

        Args:
            meeting_id: Target meeting.
            files: Buffered uploads, stored in the order given.
            user_id: Uploader; must be a participant of the meeting.
            scope: Caller-owned transaction to join, if any.

        Returns:
            Success with one FileRead per file, or a NOT_FOUND/UNAUTHORIZED
            failure when preconditions do not hold.
        """
        if not await self._uow.meetings.exists(MeetingModel.id == meeting_id):
            logger.warning("files.upload_meeting_not_found", meeting_id=str(meeting_id))
            return OperationResult.failure(FailureKind.NOT_FOUND, "Meeting not found.")

        if not await is_participant(self._uow, meeting_id, user_id):
            logger.warning(
                "files.upload_not_participant",
                meeting_id=str(meeting_id),
                user_id=str(user_id),
            )
            return OperationResult.failure(
                FailureKind.UNAUTHORIZED, "User is not a participant of this meeting."
            )

        uploaded: list[FileRead] = []
        # Blobs reach the store before their rows are staged; counted apart.
        blobs_written = 0
        try:
            async with self._uow.transaction(scope):
                for file in files:
                    attachment = AttachmentModel(
                        id=uuid.uuid4(),
                        meeting_id=meeting_id,
                        file_name=file.file_name,
                        content_type=file.content_type,
                        size_bytes=file.size_bytes,
                        uploaded_by_user_id=user_id,
                        object_key=build_object_key(meeting_id, file.file_name),
                    )
                    await self._store.put_file(
                        self.bucket,
                        attachment.object_key,
                        file.content,
                        file.content_type,
                        compression_limit=self._settings.COMPRESSION_FILE_SIZE_LIMIT,
                    )
                    blobs_written += 1
                    self._uow.attachments.add(attachment)
                    uploaded.append(_to_file_read(attachment))
        except BaseException:
            logger.error(
                "files.upload_failed",
                meeting_id=str(meeting_id),
                blobs_written=blobs_written,
                exc_info=True,
            )
            raise

        logger.info("files.uploaded", meeting_id=str(meeting_id), count=len(uploaded))
        return OperationResult.success(uploaded)

    async def remove(
        self,
        meeting_id: uuid.UUID,
        file_id: uuid.UUID,
        user_id: uuid.UUID,
        scope: TransactionScope | None = None,
    ) -> OperationResult[None]:
        """Delete a meeting file: blob first, then its metadata row.

        Args:
            meeting_id: Meeting the file belongs to.
            file_id: Attachment id.
            user_id: Caller; must be the organizer or the uploader.
            scope: Caller-owned transaction to join, if any.
        """
        try:
            async with self._uow.transaction(scope):
                attachment = await self._uow.attachments.first(
                    AttachmentModel.id == file_id,
                    AttachmentModel.meeting_id == meeting_id,
                    options=[joinedload(AttachmentModel.meeting)],
                )
                if attachment is None:
                    logger.warning(
                        "files.remove_not_found",
                        meeting_id=str(meeting_id),
                        file_id=str(file_id),
                    )
                    return OperationResult.failure(FailureKind.NOT_FOUND, "File not found.")

                if not can_remove_attachment(attachment, attachment.meeting, user_id):
                    logger.warning(
                        "files.remove_not_authorized",
                        file_id=str(file_id),
                        user_id=str(user_id),
                    )
                    return OperationResult.failure(
                        FailureKind.UNAUTHORIZED, "User is not authorized to delete this file."
                    )

                await self._store.delete(self.bucket, attachment.object_key)
                await self._uow.attachments.remove(attachment)
        except BaseException:
            logger.error("files.remove_failed", file_id=str(file_id), exc_info=True)
            raise

        logger.info("files.removed", meeting_id=str(meeting_id), file_id=str(file_id))
        return OperationResult.success()

    async def list_files(
        self, meeting_id: uuid.UUID, user_id: uuid.UUID
    ) -> OperationResult[list[FileRead]]:
        """List a meeting's files for one of its participants."""
        if not await is_participant(self._uow, meeting_id, user_id):
            return OperationResult.failure(
                FailureKind.UNAUTHORIZED, "User is not a participant of this meeting."
            )
        attachments = await self._uow.attachments.list(
            AttachmentModel.meeting_id == meeting_id,
            order_by=[AttachmentModel.uploaded_at],
        )
        return OperationResult.success([_to_file_read(a) for a in attachments])

    async def get_download_url(
        self, meeting_id: uuid.UUID, file_id: uuid.UUID, user_id: uuid.UUID
    ) -> OperationResult[PresignedUrl]:
        """Presign a short-lived download URL for a participant."""
        if not await is_participant(self._uow, meeting_id, user_id):
            return OperationResult.failure(
                FailureKind.UNAUTHORIZED, "User is not a participant of this meeting."
            )
        attachment = await self._uow.attachments.first(
            AttachmentModel.id == file_id,
            AttachmentModel.meeting_id == meeting_id,
        )
        if attachment is None:
            return OperationResult.failure(FailureKind.NOT_FOUND, "File not found.")

        ttl = self._settings.PRESIGNED_URL_TTL_SECONDS
        url = await self._store.presign_get(self.bucket, attachment.object_key, ttl)
        return OperationResult.success(PresignedUrl(url=url, expires_in_seconds=ttl))
