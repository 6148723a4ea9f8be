"""Shared event SQLAlchemy ORM models

A shared event (a party, a trip) is a second, face-independent way to
reach content: every accepted member can see everything contributed to it.

Attributes (Event):
    id: UUID primary key
    owner_id: Creator, always an accepted member
    name: Display name
    event_date: Calendar date of the event
    starts_at / ends_at: Optional time window
    created_at: Timestamp (UTC)

Attributes (EventMember):
    id: uuid5(event_id, user_id)
    event_id / user_id: Membership keys
    role: OWNER or MEMBER
    status: INVITED or ACCEPTED
    invited_by_id: Member who sent the invite
    joined_at: When the invite was accepted
"""
import uuid
from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import Column, Date, DateTime, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import relationship

from app.core.database import Base


class EventRole(str, Enum):
    OWNER = "OWNER"
    MEMBER = "MEMBER"


class MembershipStatus(str, Enum):
    INVITED = "INVITED"
    ACCEPTED = "ACCEPTED"


class Event(Base):
    """Shared event that content can be contributed to."""

    __tablename__ = "events"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    owner_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    event_date = Column(Date, nullable=True)
    starts_at = Column(DateTime(timezone=True), nullable=True)
    ends_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    members = relationship("EventMember", back_populates="event", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Event(id={self.id}, name={self.name}, owner_id={self.owner_id})>"


class EventMember(Base):
    """Membership of one user in one shared event."""

    __tablename__ = "event_members"

    id = Column(String(36), primary_key=True)
    event_id = Column(String(36), ForeignKey("events.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    role = Column(String(20), nullable=False, default=EventRole.MEMBER.value)
    status = Column(String(20), nullable=False, default=MembershipStatus.INVITED.value)
    invited_by_id = Column(String(36), ForeignKey("users.id"), nullable=True)
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    joined_at = Column(DateTime(timezone=True), nullable=True)

    event = relationship("Event", back_populates="members")

    __table_args__ = (
        UniqueConstraint("event_id", "user_id", name="uq_event_member"),
        Index("idx_event_members_user_status", "user_id", "status"),
    )

    @property
    def is_accepted(self) -> bool:
        return self.status == MembershipStatus.ACCEPTED.value

    def __repr__(self):
        return (
            f"<EventMember(event_id={self.event_id}, user_id={self.user_id}, "
            f"role={self.role}, status={self.status})>"
        )
