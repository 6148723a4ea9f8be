"""
Feed read path

Every query that returns content to a viewer goes through here. Non-owners
only ever get content that has a FeedEntry (derived from a RecipientEdge),
has finished processing and is not deleted. Owners always see their own
content. A grant that has not been materialized yet simply does not show.
"""
import logging
from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy import and_, or_
from sqlalchemy.orm import Session

from app.core.exceptions import ContentNotFoundError
from app.models.content import Content, ProcessingStatus
from app.models.feed_entry import FeedEntry
from app.services.recipient_graph_service import RecipientGraphService

logger = logging.getLogger(__name__)


class FeedService:
    """Access-filtered reads for one viewer."""

    def __init__(self, db: Session):
        self.db = db

    def list_feed(
        self,
        viewer_id: str,
        limit: int = 50,
        before: Optional[datetime] = None,
        before_id: Optional[str] = None,
    ) -> List[Tuple[FeedEntry, Content]]:
        """
        Viewer's feed, newest grant first.

        Args:
            viewer_id: Authenticated viewer
            limit: Page size
            before: Only entries granted strictly before this time (pagination)
            before_id: Edge id of the last entry on the previous page. With
                before, pages on (edge_created_at, edge_id) so entries
                sharing a timestamp are not skipped at a page boundary
        """
        query = (
            self.db.query(FeedEntry, Content)
            .join(Content, Content.id == FeedEntry.content_id)
            .filter(
                FeedEntry.recipient_id == viewer_id,
                Content.processing_status == ProcessingStatus.COMPLETED.value,
                Content.deleted_at.is_(None),
            )
        )
        if before is not None and before_id is not None:
            query = query.filter(
                or_(
                    FeedEntry.edge_created_at < before,
                    and_(FeedEntry.edge_created_at == before, FeedEntry.edge_id < before_id),
                )
            )
        elif before is not None:
            query = query.filter(FeedEntry.edge_created_at < before)
        return query.order_by(
            FeedEntry.edge_created_at.desc(),
            FeedEntry.edge_id.desc(),
        ).limit(limit).all()

    def list_own_content(self, owner_id: str, limit: int = 50) -> List[Content]:
        """Owner's own uploads, any processing status."""
        return self.db.query(Content).filter(
            Content.owner_id == owner_id,
            Content.deleted_at.is_(None),
        ).order_by(Content.created_at.desc()).limit(limit).all()

    def get_content(self, content_id: str, viewer_id: str) -> Content:
        """
        Fetch one content item for the viewer.

        Raises:
            ContentNotFoundError: missing, deleted or not visible to the viewer
        """
        content = self.db.get(Content, content_id)
        if content is None or not RecipientGraphService(self.db).can_view(content, viewer_id):
            raise ContentNotFoundError(f"Content {content_id} not found")
        return content
