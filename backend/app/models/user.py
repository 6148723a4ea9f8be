"""User SQLAlchemy ORM model"""
from sqlalchemy import Column, String, Boolean, DateTime
from sqlalchemy.orm import validates
from app.core.database import Base
import uuid
from datetime import datetime, timezone
import re
import logging

logger = logging.getLogger(__name__)


class User(Base):
    """
    Account identity referenced by the access graph.

    Identity issuance lives upstream; this row only carries what the graph
    needs. Users are never hard-deleted while edges reference them, so
    deactivation flips is_active instead.

    Attributes:
        id: UUID primary key (the upstream subject id)
        username: Unique handle (3-50 chars, alphanumeric + underscore)
        display_name: Name shown on feed entries
        phone_number: Optional, used for contact discovery upstream
        profile_photo_key: Object key of the enrollment photo
        enrolled_at: When the profile face was enrolled with face matching
        is_active: Soft state
        created_at: Record creation timestamp (UTC)
    """

    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    username = Column(String(50), unique=True, nullable=False, index=True)
    display_name = Column(String(100), nullable=True)
    phone_number = Column(String(32), nullable=True, index=True)
    profile_photo_key = Column(String(512), nullable=True)
    enrolled_at = Column(DateTime(timezone=True), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)

    @property
    def is_enrolled(self) -> bool:
        return self.enrolled_at is not None

    @validates('username')
    def validate_username(self, key, value):
        """
        Validate username format

        Requirements:
        - 3-50 characters
        - Alphanumeric and underscore only
        """
        if not value:
            raise ValueError("Username is required")

        if len(value) < 3 or len(value) > 50:
            raise ValueError("Username must be 3-50 characters")

        if not re.match(r'^[a-zA-Z0-9_]+$', value):
            raise ValueError("Username must contain only letters, numbers, and underscores")

        return value.lower()

    def __repr__(self):
        return f"<User(id={self.id}, username={self.username}, active={self.is_active})>"
