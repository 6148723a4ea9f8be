"""Change feed SQLAlchemy ORM models

RecipientEdge inserts are published to an in-database outbox written in
the same transaction as the edge. The feed materializer reads it in
sequence order and tracks its own position.

EdgeChange:
    seq: Monotonic sequence, the stream position
    edge_id: RecipientEdge that was inserted
    recipient_id / content_id: Copied for logging and dead-letter triage
    created_at: Publication time, used for lag reporting

StreamCheckpoint:
    consumer: Consumer name (primary key)
    last_seq: Highest sequence fully processed
    updated_at: Last advance

DeadLetter:
    id: UUID primary key
    consumer: Consumer that gave up on the record
    seq / edge_id: Which change failed
    error: Last error message
    attempts: Attempts made before giving up
    resolved_at: Set after manual replay
"""
import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Index, Integer, String, Text

from app.core.database import Base


class EdgeChange(Base):
    """Outbox record for one inserted RecipientEdge."""

    __tablename__ = "edge_changes"
    __table_args__ = {"sqlite_autoincrement": True}

    seq = Column(Integer, primary_key=True, autoincrement=True)
    edge_id = Column(String(36), nullable=False, unique=True)
    recipient_id = Column(String(36), nullable=False)
    content_id = Column(String(36), nullable=False)
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    def __repr__(self):
        return f"<EdgeChange(seq={self.seq}, edge_id={self.edge_id})>"


class StreamCheckpoint(Base):
    """Position of a change feed consumer."""

    __tablename__ = "stream_checkpoints"

    consumer = Column(String(100), primary_key=True)
    last_seq = Column(Integer, nullable=False, default=0)
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    def __repr__(self):
        return f"<StreamCheckpoint(consumer={self.consumer}, last_seq={self.last_seq})>"


class DeadLetter(Base):
    """Change record a consumer could not apply after bounded retries."""

    __tablename__ = "dead_letters"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    consumer = Column(String(100), nullable=False)
    seq = Column(Integer, nullable=False)
    edge_id = Column(String(36), nullable=False)
    error = Column(Text, nullable=True)
    attempts = Column(Integer, nullable=False, default=0)
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    resolved_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("idx_dead_letters_consumer_resolved", "consumer", "resolved_at"),
    )

    def __repr__(self):
        return f"<DeadLetter(consumer={self.consumer}, seq={self.seq}, attempts={self.attempts})>"
