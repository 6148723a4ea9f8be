"""Pydantic schemas for the recipient feed"""
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel


class FeedItem(BaseModel):
    """One piece of content shared with the viewer."""
    content_id: str
    content_owner_id: str
    object_key: str
    thumbnail_key: Optional[str] = None
    media_type: str
    content_created_at: datetime
    method: str
    confidence: int
    shared_at: datetime


class FeedResponse(BaseModel):
    items: List[FeedItem]
    next_before: Optional[datetime] = None
    next_before_id: Optional[str] = None
