"""Content SQLAlchemy ORM model

An uploaded photo or video. The bytes live in object storage under an
owner-scoped key; this row is the metadata the graph and the feed need.

Attributes:
    id: uuid5 of the object key, so repeated creation notifications map to one row
    owner_id: User who captured/uploaded the content
    object_key: Object storage key (photos/{owner_id}/...)
    thumbnail_key: Optional thumbnail object key
    media_type: photo or video
    event_id: Optional shared event the content was contributed to
    processing_status: PENDING -> PROCESSING -> COMPLETED | FAILED
    processing_attempts: Number of processing runs started
    processing_started_at: When the current run started; a stale PROCESSING run is re-claimed
    failure_reason: Last failure message, for manual reconciliation
    created_at: Upload time
    processed_at: When access decisions completed
    deleted_at: Soft deletion marker; grants are reconciled by cleanup
    grants_reconciled_at: Last cleanup pass that removed grants of the deleted content
"""
from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String, Text

from app.core.database import Base


class ProcessingStatus(str, Enum):
    """Status of the access decision run for one content item."""
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class MediaType(str, Enum):
    PHOTO = "photo"
    VIDEO = "video"


class Content(Base):
    """Uploaded photo/video owned by one user, immutable except soft deletion."""

    __tablename__ = "content"

    id = Column(String(36), primary_key=True)
    owner_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    object_key = Column(String(512), nullable=False, unique=True)
    thumbnail_key = Column(String(512), nullable=True)
    media_type = Column(String(10), nullable=False, default=MediaType.PHOTO.value)
    event_id = Column(String(36), ForeignKey("events.id", ondelete="SET NULL"), nullable=True)
    processing_status = Column(String(20), nullable=False, default=ProcessingStatus.PENDING.value)
    processing_attempts = Column(Integer, nullable=False, default=0)
    processing_started_at = Column(DateTime(timezone=True), nullable=True)
    failure_reason = Column(Text, nullable=True)
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    processed_at = Column(DateTime(timezone=True), nullable=True)
    deleted_at = Column(DateTime(timezone=True), nullable=True)
    grants_reconciled_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("idx_content_owner_created", "owner_id", "created_at"),
        Index("idx_content_event_created", "event_id", "created_at"),
        Index("idx_content_status", "processing_status"),
        Index("idx_content_deleted", "deleted_at"),
    )

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    @property
    def is_visible_to_recipients(self) -> bool:
        """Non-owners only see content whose face decisions all completed."""
        return (
            not self.is_deleted
            and self.processing_status == ProcessingStatus.COMPLETED.value
        )

    def __repr__(self):
        return (
            f"<Content(id={self.id}, owner_id={self.owner_id}, "
            f"status={self.processing_status}, deleted={self.is_deleted})>"
        )
