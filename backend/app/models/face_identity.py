"""FaceIdentity SQLAlchemy ORM model

Owner-scoped directory entry for a distinct face seen in that owner's
content. When Alice photographs an unknown person, only Alice's directory
learns about it; nobody else can enumerate it.

Attributes:
    id: uuid5(owner_id, signature_ref)
    owner_id: User who captured the content (privacy boundary)
    signature_ref: Face matching signature reference for this face
    status: UNKNOWN or RESOLVED (terminal)
    resolved_to_user_id: Set exactly once, together with status=RESOLVED
    resolved_confidence: Match score that justified the resolution (0-100)
    first_seen_content_id / last_seen_content_id: Sighting bookkeeping
    detection_count: Number of content items the face was seen in
    created_at / updated_at / resolved_at: Timestamps (UTC)
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Union

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String, UniqueConstraint

from app.core.database import Base


class FaceIdentityStatus(str, Enum):
    UNKNOWN = "UNKNOWN"
    RESOLVED = "RESOLVED"


@dataclass(frozen=True)
class Unknown:
    """Face not linked to any user; confers no access."""
    pass


@dataclass(frozen=True)
class Resolved:
    """Face linked to a social-graph user."""
    user_id: str


Resolution = Union[Unknown, Resolved]


class FaceIdentity(Base):
    """Per-owner face directory entry with deferred resolution."""

    __tablename__ = "face_identities"

    id = Column(String(36), primary_key=True)
    owner_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    signature_ref = Column(String(255), nullable=False)
    status = Column(String(20), nullable=False, default=FaceIdentityStatus.UNKNOWN.value)
    resolved_to_user_id = Column(String(36), ForeignKey("users.id"), nullable=True)
    resolved_confidence = Column(Integer, nullable=True)
    first_seen_content_id = Column(String(36), nullable=False)
    last_seen_content_id = Column(String(36), nullable=False)
    detection_count = Column(Integer, nullable=False, default=1)
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    resolved_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("owner_id", "signature_ref", name="uq_face_identity_owner_signature"),
        Index("idx_face_identities_owner_status", "owner_id", "status"),
        Index("idx_face_identities_owner_resolved", "owner_id", "resolved_to_user_id"),
    )

    @property
    def resolution(self) -> Resolution:
        """
        Tagged view of the status columns.

        Call sites branch on Unknown vs Resolved instead of testing a
        nullable foreign key.
        """
        if self.status == FaceIdentityStatus.RESOLVED.value:
            return Resolved(self.resolved_to_user_id)
        return Unknown()

    def __repr__(self):
        return (
            f"<FaceIdentity(id={self.id}, owner_id={self.owner_id}, "
            f"status={self.status}, resolved_to={self.resolved_to_user_id})>"
        )
