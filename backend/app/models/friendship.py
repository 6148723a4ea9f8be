"""Friendship SQLAlchemy ORM model

Symmetric trust edge between two users. The pair is stored canonically
(user_a_id < user_b_id) so a request in either direction lands on the same
row and no reverse duplicate can exist.

Attributes:
    id: uuid5 of the canonical pair
    user_a_id / user_b_id: Canonically ordered user ids
    status: PENDING or ACCEPTED (terminal)
    requester_id: Which of the two sent the request
    created_at / accepted_at: Timestamps (UTC)
    retroactive_completed_at: Set once retroactive matching finished both
        directions; the periodic sweep re-runs friendships where it is NULL
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Index, String, UniqueConstraint

from app.core.database import Base


class FriendshipStatus(str, Enum):
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"


class Friendship(Base):
    """Canonically ordered friendship edge."""

    __tablename__ = "friendships"

    id = Column(String(36), primary_key=True)
    user_a_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    user_b_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    status = Column(String(20), nullable=False, default=FriendshipStatus.PENDING.value)
    requester_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    accepted_at = Column(DateTime(timezone=True), nullable=True)
    retroactive_completed_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("user_a_id", "user_b_id", name="uq_friendship_pair"),
        CheckConstraint("user_a_id < user_b_id", name="ck_friendship_canonical_order"),
        Index("idx_friendships_user_a_status", "user_a_id", "status"),
        Index("idx_friendships_user_b_status", "user_b_id", "status"),
    )

    @property
    def is_accepted(self) -> bool:
        return self.status == FriendshipStatus.ACCEPTED.value

    @property
    def acceptor_id(self) -> Optional[str]:
        """The non-requesting side; only meaningful once accepted."""
        if not self.is_accepted:
            return None
        return self.other_user(self.requester_id)

    def involves(self, user_id: str) -> bool:
        return user_id in (self.user_a_id, self.user_b_id)

    def other_user(self, user_id: str) -> str:
        if user_id == self.user_a_id:
            return self.user_b_id
        if user_id == self.user_b_id:
            return self.user_a_id
        raise ValueError(f"User {user_id} is not part of friendship {self.id}")

    def __repr__(self):
        return (
            f"<Friendship(id={self.id}, pair=({self.user_a_id}, {self.user_b_id}), "
            f"status={self.status})>"
        )
