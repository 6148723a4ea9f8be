"""
Grant Reconciliation and Cleanup Service

Content deletion races with in-flight grant creation: a worker may write a
RecipientEdge or FeedEntry for content that was deleted a moment earlier.
That is tolerated transiently and reconciled here.

Features:
    - Batch removal of RecipientEdges and FeedEntries for deleted content
    - Content.grants_reconciled_at marks deleted content already swept; a
      grant that races in afterwards clears the marker again
    - Pruning of change-feed records every consumer has passed
    - Safe to rerun: each pass only visits content not yet reconciled

Usage:
    cleanup_service = CleanupService()
    stats = await cleanup_service.cleanup_deleted_content()
"""
import logging
from datetime import datetime, timezone
from typing import Dict, Any, Optional

from sqlalchemy import func

from app.core.database import SessionLocal
from app.models.change_feed import EdgeChange, StreamCheckpoint
from app.models.content import Content
from app.models.feed_entry import FeedEntry
from app.models.recipient_edge import RecipientEdge

logger = logging.getLogger(__name__)


class CleanupService:
    """
    Service for reconciling grants against deleted content

    Handles:
        - Removing edges and feed rows of soft-deleted content, in batches
        - Pruning consumed change-feed records
    """

    def __init__(self, session_factory=None):
        """
        Initialize CleanupService

        Args:
            session_factory: Optional SQLAlchemy session factory (for testing).
                           Defaults to SessionLocal from app.core.database.
        """
        self.session_factory = session_factory or SessionLocal

    async def cleanup_deleted_content(self, batch_size: int = 500) -> Dict[str, Any]:
        """
        Remove grants and feed rows that point at deleted content

        Works through deleted content not yet reconciled, in batches. The
        marker is written before the deletes in the same transaction, so a
        grant committed concurrently either is deleted here or clears the
        marker for the next pass. A batch that fails is rolled back and the
        pass stops; the next scheduled pass picks up where this one left off.

        Args:
            batch_size: Maximum number of content items per batch

        Returns:
            Dict with statistics:
            {
                "edges_deleted": int,
                "feed_entries_deleted": int,
                "batches_processed": int
            }
        """
        total_edges = 0
        total_entries = 0
        batches_processed = 0
        last_content_id = ""

        while True:
            db = self.session_factory()
            try:
                content_ids = [
                    row.id for row in db.query(Content.id).filter(
                        Content.deleted_at.isnot(None),
                        Content.grants_reconciled_at.is_(None),
                        Content.id > last_content_id,
                    ).order_by(Content.id).limit(batch_size).all()
                ]
                if not content_ids:
                    break
                last_content_id = content_ids[-1]

                db.query(Content).filter(Content.id.in_(content_ids)).update(
                    {Content.grants_reconciled_at: datetime.now(timezone.utc)},
                    synchronize_session=False,
                )
                edges_deleted = db.query(RecipientEdge).filter(
                    RecipientEdge.content_id.in_(content_ids)
                ).delete(synchronize_session=False)
                entries_deleted = db.query(FeedEntry).filter(
                    FeedEntry.content_id.in_(content_ids)
                ).delete(synchronize_session=False)
                db.commit()

                total_edges += edges_deleted
                total_entries += entries_deleted
                batches_processed += 1

                if edges_deleted or entries_deleted:
                    logger.info(
                        f"Cleanup batch {batches_processed}: {edges_deleted} edges, "
                        f"{entries_deleted} feed entries removed",
                        extra={
                            "event_type": "cleanup_batch",
                            "batch_number": batches_processed,
                            "edges_deleted": edges_deleted,
                            "feed_entries_deleted": entries_deleted,
                        }
                    )

            except Exception as e:
                logger.error(
                    f"Error during cleanup batch {batches_processed + 1}: {e}",
                    exc_info=True,
                    extra={"event_type": "cleanup_batch_failed"}
                )
                db.rollback()
                break
            finally:
                db.close()

        stats = {
            "edges_deleted": total_edges,
            "feed_entries_deleted": total_entries,
            "batches_processed": batches_processed,
        }

        logger.info(
            f"Cleanup complete: {total_edges} edges and {total_entries} feed entries removed",
            extra={"event_type": "cleanup_complete", **stats}
        )

        return stats

    def prune_consumed_changes(self) -> int:
        """
        Delete change-feed records every consumer has already processed.

        The record at the low-water mark stays so sequence numbers are
        never handed out again.

        Returns:
            Number of records deleted
        """
        db = self.session_factory()
        try:
            low_water = db.query(func.min(StreamCheckpoint.last_seq)).scalar()
            if not low_water:
                return 0
            deleted = db.query(EdgeChange).filter(EdgeChange.seq < low_water).delete(
                synchronize_session=False
            )
            db.commit()
            if deleted:
                logger.info(
                    f"Pruned {deleted} consumed change records",
                    extra={"event_type": "change_feed_pruned", "records": deleted, "up_to_seq": low_water},
                )
            return deleted
        finally:
            db.close()


# Global instance (initialized in FastAPI lifespan if needed)
_cleanup_service: Optional[CleanupService] = None


def get_cleanup_service() -> CleanupService:
    """
    Get the global CleanupService instance

    Returns:
        CleanupService instance
    """
    global _cleanup_service

    if _cleanup_service is None:
        _cleanup_service = CleanupService()

    return _cleanup_service
