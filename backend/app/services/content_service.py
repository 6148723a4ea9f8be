"""
Content Service

Registers uploads from object-storage creation notifications and manages
their lifecycle. Notifications are at-least-once, so registration is keyed
by uuid5(object_key): a repeated notification returns the same row.
"""
import logging
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from sqlalchemy.orm import Session

from app.core.database import insert_if_absent
from app.core.exceptions import ContentNotFoundError, EventMembershipError, NotAuthorizedError
from app.core.ids import content_id_for_object, event_member_id
from app.models.content import Content, MediaType, ProcessingStatus
from app.models.event import EventMember, MembershipStatus
from app.models.user import User

logger = logging.getLogger(__name__)

OBJECT_KEY_PREFIX = "photos"


def owner_prefix(owner_id: str) -> str:
    return f"{OBJECT_KEY_PREFIX}/{owner_id}/"


class ContentService:
    """Upload registration, deletion and reprocessing bookkeeping."""

    def __init__(self, db: Session):
        self.db = db

    def register_upload(
        self,
        owner_id: str,
        object_key: str,
        media_type: MediaType = MediaType.PHOTO,
        thumbnail_key: Optional[str] = None,
        event_id: Optional[str] = None,
    ) -> Tuple[Content, bool]:
        """
        Register an uploaded object.

        Returns:
            (content, created)

        Raises:
            ValueError: unknown owner or key outside photos/{owner_id}/
            EventMembershipError: owner is not an accepted member of event_id
        """
        if self.db.get(User, owner_id) is None:
            raise ValueError(f"User {owner_id} not found")
        if not object_key.startswith(owner_prefix(owner_id)) or object_key == owner_prefix(owner_id):
            raise ValueError(f"Object key must be under {owner_prefix(owner_id)}")
        if event_id is not None:
            member = self.db.get(EventMember, event_member_id(event_id, owner_id))
            if member is None or member.status != MembershipStatus.ACCEPTED.value:
                raise EventMembershipError(f"User {owner_id} is not a member of event {event_id}")

        content, created = insert_if_absent(self.db, Content, Content(
            id=content_id_for_object(object_key),
            owner_id=owner_id,
            object_key=object_key,
            thumbnail_key=thumbnail_key,
            media_type=media_type.value,
            event_id=event_id,
            processing_status=ProcessingStatus.PENDING.value,
            processing_attempts=0,
        ))
        if created:
            logger.info(
                f"Content {content.id} registered for {owner_id}",
                extra={
                    "event_type": "content_registered",
                    "content_id": content.id,
                    "owner_id": owner_id,
                    "media_type": media_type.value,
                }
            )
        return content, created

    def get_content(self, content_id: str) -> Optional[Content]:
        return self.db.get(Content, content_id)

    def get_owned(self, content_id: str, owner_id: str) -> Content:
        """
        Raises:
            ContentNotFoundError: missing or deleted
            NotAuthorizedError: not owned by owner_id
        """
        content = self.db.get(Content, content_id)
        if content is None or content.is_deleted:
            raise ContentNotFoundError(f"Content {content_id} not found")
        if content.owner_id != owner_id:
            raise NotAuthorizedError("Only the owner can do this")
        return content

    def delete_content(self, content_id: str, owner_id: str) -> Content:
        """
        Soft-delete content. Grants and feed entries are reconciled by the
        cleanup pass; the read path hides deleted content immediately.
        """
        content = self.get_owned(content_id, owner_id)
        content.deleted_at = datetime.now(timezone.utc)
        self.db.commit()
        logger.info(
            f"Content {content_id} deleted",
            extra={"event_type": "content_deleted", "content_id": content_id},
        )
        return content

    def list_failed(self, limit: int = 100) -> List[Content]:
        """Content whose access decisions failed, for manual reconciliation."""
        return self.db.query(Content).filter(
            Content.processing_status == ProcessingStatus.FAILED.value,
            Content.deleted_at.is_(None),
        ).order_by(Content.created_at).limit(limit).all()

    def mark_for_reprocess(self, content_id: str) -> Content:
        """Put FAILED (or stuck PROCESSING) content back to PENDING."""
        content = self.db.get(Content, content_id)
        if content is None or content.is_deleted:
            raise ContentNotFoundError(f"Content {content_id} not found")
        if content.processing_status == ProcessingStatus.COMPLETED.value:
            return content
        content.processing_status = ProcessingStatus.PENDING.value
        content.failure_reason = None
        self.db.commit()
        logger.info(
            f"Content {content_id} queued for reprocessing",
            extra={"event_type": "content_requeued", "content_id": content_id},
        )
        return content
