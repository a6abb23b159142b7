"""Meeting attachments -- object-store adapter and file lifecycle service.

Exports:
    ObjectStore: Async facade over the S3/MinIO bucket API.
    MeetingFileService: Upload, remove, list and presign meeting files.
"""

from src.meeting_system.files.object_store import ObjectStore
from src.meeting_system.files.service import MeetingFileService

__all__ = ["MeetingFileService", "ObjectStore"]
