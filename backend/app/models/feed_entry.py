"""FeedEntry SQLAlchemy ORM model

Denormalized projection of RecipientEdge + Content for fast "my feed,
newest first" reads. Disposable: it can be rebuilt from the two sources at
any time and is never consulted as the authority for access.

One row per (recipient, content). When several edges exist for the pair
(e.g. FACE_MATCH and SHARED_EVENT) the row reflects the earliest edge, ties
broken by edge id, so the result does not depend on delivery order.

Attributes:
    id: uuid5(recipient_id, content_id)
    recipient_id / content_id / content_owner_id: Keys
    object_key / thumbnail_key / media_type / content_created_at: Content metadata
    edge_id / edge_created_at / method / confidence: From the winning edge
    updated_at: Last upsert
"""
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String, UniqueConstraint

from app.core.database import Base


class FeedEntry(Base):
    """Per-recipient feed row, derived from the recipient graph."""

    __tablename__ = "feed_entries"

    id = Column(String(36), primary_key=True)
    recipient_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    content_id = Column(String(36), ForeignKey("content.id"), nullable=False)
    content_owner_id = Column(String(36), nullable=False)
    object_key = Column(String(512), nullable=False)
    thumbnail_key = Column(String(512), nullable=True)
    media_type = Column(String(10), nullable=False)
    content_created_at = Column(DateTime(timezone=True), nullable=False)
    edge_id = Column(String(36), nullable=False)
    edge_created_at = Column(DateTime(timezone=True), nullable=False)
    method = Column(String(20), nullable=False)
    confidence = Column(Integer, nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        UniqueConstraint("recipient_id", "content_id", name="uq_feed_entry_recipient_content"),
        Index("idx_feed_entries_recipient_edge_created", "recipient_id", "edge_created_at"),
        Index("idx_feed_entries_content", "content_id"),
    )

    def projection(self) -> tuple:
        """Comparable view used when checking live rows against a rebuild."""
        return (
            self.recipient_id,
            self.content_id,
            self.content_owner_id,
            self.object_key,
            self.thumbnail_key,
            self.media_type,
            self.edge_id,
            self.method,
            self.confidence,
        )

    def __repr__(self):
        return (
            f"<FeedEntry(recipient_id={self.recipient_id}, content_id={self.content_id}, "
            f"method={self.method}, edge_created_at={self.edge_created_at})>"
        )
