"""Pydantic schemas for pipeline operations and reconciliation"""
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel


class DeadLetterResponse(BaseModel):
    id: str
    seq: int
    edge_id: str
    error: Optional[str] = None
    attempts: int
    created_at: datetime
    resolved_at: Optional[datetime] = None


class ReplayResponse(BaseModel):
    dead_letter_id: str
    outcome: str


class FeedRebuildResponse(BaseModel):
    recipient_id: str
    entries: int


class FeedVerifyResponse(BaseModel):
    recipient_id: str
    missing: List[str]
    unexpected: List[str]
    mismatched: List[str]
    consistent: bool


class RetroactiveJobResponse(BaseModel):
    job_id: str
    friendship_id: str
    owner_id: str
    trusted_user_id: str
    status: str
    last_face_identity_id: Optional[str] = None
    identities_scanned: int
    identities_resolved: int
    grants_created: int
    error_message: Optional[str] = None


class ChangeFeedPollResponse(BaseModel):
    batches: int
    applied: int
    dead_lettered: int
    splits: int


class ChangeFeedPositionResponse(BaseModel):
    consumer: str
    last_seq: int
    pending: int


class CleanupResponse(BaseModel):
    edges_deleted: int
    feed_entries_deleted: int
    batches_processed: int
    changes_pruned: int
