"""RecipientEdge SQLAlchemy ORM model

The permission graph: who can see which content, and why. A non-owner may
view a content item iff at least one edge exists for the pair. This table
is the only writer of ground truth; the feed is derived from it.

Attributes:
    id: uuid5(content_id, recipient_id, method), the idempotency key
    content_id: Granted content
    recipient_id: User granted visibility
    content_owner_id: Owner of the content (denormalized for owner queries)
    method: FACE_MATCH, SHARED_EVENT or MANUAL
    confidence: 0-100 (100 for non-face methods)
    provenance: REALTIME (at upload) or RETROACTIVE (found later)
    created_at: Grant time, drives feed ordering
"""
from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Index, Integer, String, UniqueConstraint

from app.core.database import Base


class GrantMethod(str, Enum):
    FACE_MATCH = "FACE_MATCH"
    SHARED_EVENT = "SHARED_EVENT"
    MANUAL = "MANUAL"


class Provenance(str, Enum):
    REALTIME = "REALTIME"
    RETROACTIVE = "RETROACTIVE"


class RecipientEdge(Base):
    """Authoritative, append-mostly grant record."""

    __tablename__ = "recipient_edges"

    id = Column(String(36), primary_key=True)
    content_id = Column(String(36), ForeignKey("content.id"), nullable=False)
    recipient_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    content_owner_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    method = Column(String(20), nullable=False)
    confidence = Column(Integer, nullable=False)
    provenance = Column(String(20), nullable=False)
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        UniqueConstraint("content_id", "recipient_id", "method", name="uq_recipient_edge_grant"),
        CheckConstraint("confidence >= 0 AND confidence <= 100", name="ck_recipient_edge_confidence"),
        Index("idx_recipient_edges_recipient_created", "recipient_id", "created_at"),
        Index("idx_recipient_edges_content_recipient", "content_id", "recipient_id"),
        Index("idx_recipient_edges_owner_recipient", "content_owner_id", "recipient_id"),
    )

    def __repr__(self):
        return (
            f"<RecipientEdge(content_id={self.content_id}, recipient_id={self.recipient_id}, "
            f"method={self.method}, provenance={self.provenance}, confidence={self.confidence})>"
        )
