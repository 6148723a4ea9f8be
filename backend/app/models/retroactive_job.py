"""RetroactiveJob SQLAlchemy ORM model

Checkpoint for one direction of retroactive matching after a friendship is
accepted: scan the owner's face directory for faces of the trusted user.

Attributes:
    id: uuid5(friendship_id, owner_id, trusted_user_id)
    friendship_id: Friendship that triggered the scan
    owner_id: Whose face directory is scanned
    trusted_user_id: Who is matched against it
    status: PENDING, RUNNING, COMPLETED or FAILED
    last_face_identity_id: Cursor; identities up to and including it are done
    identities_scanned / identities_resolved / grants_created: Progress counters
    error_message: Last failure, if any
    started_at / completed_at / updated_at: Timestamps (UTC)
"""
from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String, Text

from app.core.database import Base


class RetroactiveJobStatus(str, Enum):
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class RetroactiveJob(Base):
    """Resumable retroactive matching scan for one (owner, trusted user) direction."""

    __tablename__ = "retroactive_jobs"

    id = Column(String(36), primary_key=True)
    friendship_id = Column(String(36), ForeignKey("friendships.id"), nullable=False)
    owner_id = Column(String(36), nullable=False)
    trusted_user_id = Column(String(36), nullable=False)
    status = Column(String(20), nullable=False, default=RetroactiveJobStatus.PENDING.value)
    last_face_identity_id = Column(String(36), nullable=True)
    identities_scanned = Column(Integer, nullable=False, default=0)
    identities_resolved = Column(Integer, nullable=False, default=0)
    grants_created = Column(Integer, nullable=False, default=0)
    error_message = Column(Text, nullable=True)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        Index("idx_retroactive_jobs_friendship", "friendship_id"),
        Index("idx_retroactive_jobs_status", "status"),
    )

    @property
    def is_completed(self) -> bool:
        return self.status == RetroactiveJobStatus.COMPLETED.value

    def __repr__(self):
        return (
            f"<RetroactiveJob(id={self.id}, owner_id={self.owner_id}, "
            f"trusted_user_id={self.trusted_user_id}, status={self.status})>"
        )
