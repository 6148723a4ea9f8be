"""Pydantic schemas for face identities"""
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel


class FaceIdentityResponse(BaseModel):
    """A face seen in the viewer's own content."""
    id: str
    owner_id: str
    status: str
    resolved_to_user_id: Optional[str] = None
    resolved_confidence: Optional[int] = None
    first_seen_content_id: str
    last_seen_content_id: str
    detection_count: int
    created_at: datetime
    resolved_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class FaceIdentityListResponse(BaseModel):
    identities: List[FaceIdentityResponse]
    total: int
