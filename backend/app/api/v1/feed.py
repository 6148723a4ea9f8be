"""
Feed API

The feed is read from materialized FeedEntries and filtered again at
read time: only COMPLETED, non-deleted content granted to the viewer is
returned, so a lagging materializer can delay content but never leak it.
"""
import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.api.v1.auth import get_current_user
from app.core.database import get_db
from app.models.user import User
from app.schemas.feed import FeedItem, FeedResponse
from app.services.feed_service import FeedService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/feed", tags=["feed"])


@router.get("", response_model=FeedResponse)
async def get_feed(
    limit: int = Query(50, ge=1, le=200, description="Page size"),
    before: Optional[datetime] = Query(None, description="Return items shared before this time"),
    before_id: Optional[str] = Query(None, description="Edge id paired with before, from next_before_id"),
    db: Session = Depends(get_db),
    viewer: User = Depends(get_current_user),
):
    """Viewer's feed, most recently shared first."""
    rows = FeedService(db).list_feed(viewer.id, limit=limit, before=before, before_id=before_id)
    items = [
        FeedItem(
            content_id=entry.content_id,
            content_owner_id=entry.content_owner_id,
            object_key=content.object_key,
            thumbnail_key=content.thumbnail_key,
            media_type=content.media_type,
            content_created_at=content.created_at,
            method=entry.method,
            confidence=entry.confidence,
            shared_at=entry.edge_created_at,
        )
        for entry, content in rows
    ]
    if len(rows) < limit:
        return FeedResponse(items=items)
    last_entry = rows[-1][0]
    return FeedResponse(
        items=items,
        next_before=last_entry.edge_created_at,
        next_before_id=last_entry.edge_id,
    )
