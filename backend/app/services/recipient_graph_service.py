"""
Recipient Graph Service

Writes and reads the authoritative (content, recipient, method) grant set.
Every grant is an idempotent insert keyed by
uuid5(content_id, recipient_id, method) and backed by a unique constraint,
so redelivered uploads and concurrent retroactive scans converge on the
same edge without locking. The change-feed outbox row is written in the
same commit as the edge it announces.

Usage:
    graph = RecipientGraphService(db)
    edge, created = graph.grant(content, bob.id, GrantMethod.FACE_MATCH, 92, Provenance.REALTIME)
"""
import logging
from typing import List, Optional, Tuple

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from app.core.exceptions import ContentNotFoundError, NotAuthorizedError
from app.core.ids import recipient_edge_id
from app.core.metrics import record_grant
from app.core.retry import RETRY_STORE_WRITE, retry_sync
from app.models.change_feed import EdgeChange
from app.models.content import Content
from app.models.content_face import ContentFace
from app.models.face_identity import FaceIdentity
from app.models.recipient_edge import GrantMethod, Provenance, RecipientEdge
from app.models.user import User

logger = logging.getLogger(__name__)

# Confidence recorded for grants that are not face based
NON_FACE_CONFIDENCE = 100


class RecipientGraphService:
    """Idempotent grant writer and access checks over RecipientEdge."""

    def __init__(self, db: Session):
        self.db = db

    def grant(
        self,
        content: Content,
        recipient_id: str,
        method: GrantMethod,
        confidence: int,
        provenance: Provenance,
    ) -> Tuple[Optional[RecipientEdge], bool]:
        """
        Grant recipient visibility of content.

        The owner never receives an edge: owners always see their own
        content. A grant for content deleted in the meantime is written
        anyway and removed by the next cleanup pass.

        Returns:
            (edge, created). created is False when the grant already existed;
            edge is None for the owner.
        """
        if recipient_id == content.owner_id:
            return None, False

        edge_id = recipient_edge_id(content.id, recipient_id, method.value)
        existing = self.db.get(RecipientEdge, edge_id)
        if existing is not None:
            record_grant(method.value, provenance.value, created=False)
            return existing, False

        edge, created = retry_sync(
            self._insert_edge,
            RecipientEdge(
                id=edge_id,
                content_id=content.id,
                recipient_id=recipient_id,
                content_owner_id=content.owner_id,
                method=method.value,
                confidence=confidence,
                provenance=provenance.value,
            ),
            config=RETRY_STORE_WRITE,
            operation_name="recipient_edge_insert",
        )
        record_grant(method.value, provenance.value, created=created)

        if created:
            self._reopen_reconciliation(content.id)
            logger.info(
                f"Granted {method.value} access to content {content.id} for {recipient_id}",
                extra={
                    "event_type": "recipient_edge_created",
                    "content_id": content.id,
                    "recipient_id": recipient_id,
                    "method": method.value,
                    "provenance": provenance.value,
                    "confidence": confidence,
                }
            )
        return edge, created

    def _reopen_reconciliation(self, content_id: str) -> None:
        """Clear the cleanup marker if the content was deleted before this grant landed."""
        reopened = self.db.query(Content).filter(
            Content.id == content_id,
            Content.deleted_at.isnot(None),
        ).update({Content.grants_reconciled_at: None}, synchronize_session=False)
        self.db.commit()
        if reopened:
            logger.warning(
                f"Grant landed on deleted content {content_id}; queued for cleanup",
                extra={"event_type": "grant_on_deleted_content", "content_id": content_id},
            )

    def _insert_edge(self, edge: RecipientEdge) -> Tuple[RecipientEdge, bool]:
        # Flush unrelated pending changes so a rollback below cannot drop them
        self.db.commit()

        self.db.add(edge)
        self.db.add(EdgeChange(
            edge_id=edge.id,
            recipient_id=edge.recipient_id,
            content_id=edge.content_id,
        ))
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            existing = self.db.get(RecipientEdge, edge.id)
            if existing is None:
                raise
            return existing, False
        except OperationalError:
            self.db.rollback()
            raise
        return edge, True

    def share_content(self, content_id: str, owner_id: str, recipient_id: str) -> Tuple[RecipientEdge, bool]:
        """Create a MANUAL grant. Only the content owner may share."""
        content = self.db.get(Content, content_id)
        if content is None or content.is_deleted:
            raise ContentNotFoundError(f"Content {content_id} not found")
        if content.owner_id != owner_id:
            raise NotAuthorizedError("Only the content owner can share it")
        if recipient_id == owner_id:
            raise ValueError("Cannot share content with its owner")
        if self.db.get(User, recipient_id) is None:
            raise ValueError(f"User {recipient_id} not found")

        edge, created = self.grant(
            content, recipient_id, GrantMethod.MANUAL, NON_FACE_CONFIDENCE, Provenance.REALTIME
        )
        return edge, created

    def fan_out_identity(
        self,
        identity: FaceIdentity,
        recipient_id: str,
        confidence: int,
        provenance: Provenance,
        exclude_content_id: Optional[str] = None,
    ) -> int:
        """
        Grant recipient every live content item the identity appears in.

        Each grant commits on its own, so an interrupted fan-out leaves a
        prefix of grants behind and a rerun absorbs them.

        Returns:
            Number of edges newly created
        """
        query = (
            self.db.query(Content)
            .join(ContentFace, ContentFace.content_id == Content.id)
            .filter(
                ContentFace.face_identity_id == identity.id,
                Content.owner_id == identity.owner_id,
                Content.deleted_at.is_(None),
            )
        )
        if exclude_content_id:
            query = query.filter(Content.id != exclude_content_id)

        created_count = 0
        for content in query.distinct().order_by(Content.id).all():
            _, created = self.grant(content, recipient_id, GrantMethod.FACE_MATCH, confidence, provenance)
            if created:
                created_count += 1
        return created_count

    def can_view(self, content: Content, viewer_id: str) -> bool:
        """
        Access check for a single content item.

        Owners always see their own content. Anyone else needs at least one
        edge, and the content must have finished processing.
        """
        if content.is_deleted:
            return False
        if content.owner_id == viewer_id:
            return True
        if not content.is_visible_to_recipients:
            return False
        return self.db.query(RecipientEdge.id).filter(
            RecipientEdge.content_id == content.id,
            RecipientEdge.recipient_id == viewer_id,
        ).first() is not None

    def list_edges_for_content(self, content_id: str) -> List[RecipientEdge]:
        return self.db.query(RecipientEdge).filter(
            RecipientEdge.content_id == content_id
        ).order_by(RecipientEdge.created_at, RecipientEdge.id).all()

    def list_edges_for_recipient(self, recipient_id: str) -> List[RecipientEdge]:
        return self.db.query(RecipientEdge).filter(
            RecipientEdge.recipient_id == recipient_id
        ).order_by(RecipientEdge.created_at.desc(), RecipientEdge.id.desc()).all()
