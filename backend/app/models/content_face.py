"""ContentFace SQLAlchemy ORM model

Join record between a content item and a face identity detected in it.
Doubles as the reverse index "all content in which face X appears", which
retroactive matching walks after a friendship is accepted.

Attributes:
    id: uuid5(content_id, signature_ref), created once per detected face,
        so a redelivered upload finds the rows it already wrote
    content_id: Content the face was detected in
    face_identity_id: Owner-scoped identity the face was attributed to
    bounding_box: JSON object with left, top, width, height (ratios)
    confidence: Match score attributing the face to its identity, or the
        detection confidence when the face started a new identity (0-100)
    created_at: Timestamp (UTC)
"""
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String, Text

from app.core.database import Base


class ContentFace(Base):
    """Immutable (content, face identity) detection record."""

    __tablename__ = "content_faces"

    id = Column(String(36), primary_key=True)
    content_id = Column(String(36), ForeignKey("content.id"), nullable=False)
    face_identity_id = Column(String(36), ForeignKey("face_identities.id"), nullable=False)
    bounding_box = Column(Text, nullable=False)
    confidence = Column(Integer, nullable=False)
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        Index("idx_content_faces_content", "content_id", "face_identity_id"),
        Index("idx_content_faces_identity", "face_identity_id", "content_id"),
    )

    def __repr__(self):
        return (
            f"<ContentFace(id={self.id}, content_id={self.content_id}, "
            f"face_identity_id={self.face_identity_id}, confidence={self.confidence})>"
        )
