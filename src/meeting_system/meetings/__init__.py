"""Meeting lifecycle module -- models, schemas, authorization and services.

Provides SQLAlchemy models (User, Meeting, Participant, Attachment,
MeetingsLog), Pydantic schemas (meeting payloads and OperationResult),
the MeetingService state machine (active -> canceled -> purged) and the
reminder job body.
"""
