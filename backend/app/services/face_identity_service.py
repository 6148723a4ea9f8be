"""
Face Identity Service

Owner-scoped face directory bookkeeping. Identities are created with
deterministic ids, sightings and resolution are conditional updates, and
every read is filtered by owner so one user's unknown faces can never be
enumerated by another.

Resolution is UNKNOWN -> RESOLVED exactly once. Re-resolving to the same
user is a no-op; resolving to a different user is rejected as a
data-integrity anomaly.
"""
import logging
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from sqlalchemy.orm import Session

from app.core.exceptions import FaceIdentityConflictError
from app.core.ids import face_identity_id
from app.core.database import insert_if_absent
from app.core.metrics import record_integrity_anomaly
from app.models.face_identity import FaceIdentity, FaceIdentityStatus, Resolved

logger = logging.getLogger(__name__)


class FaceIdentityService:
    """Create, sight, resolve and list one owner's face identities."""

    def __init__(self, db: Session):
        self.db = db

    def get_or_create(
        self,
        owner_id: str,
        signature_ref: str,
        content_id: str,
        resolved_to: Optional[str] = None,
        confidence: Optional[int] = None,
    ) -> Tuple[FaceIdentity, bool]:
        """
        Find or create the identity keyed by (owner, signature).

        When resolved_to is given a new identity starts RESOLVED, and an
        existing UNKNOWN one is resolved through resolve().

        Returns:
            (identity, created)
        """
        now = datetime.now(timezone.utc)
        identity = FaceIdentity(
            id=face_identity_id(owner_id, signature_ref),
            owner_id=owner_id,
            signature_ref=signature_ref,
            status=FaceIdentityStatus.UNKNOWN.value,
            first_seen_content_id=content_id,
            last_seen_content_id=content_id,
            detection_count=1,
            created_at=now,
            updated_at=now,
        )
        if resolved_to is not None:
            identity.status = FaceIdentityStatus.RESOLVED.value
            identity.resolved_to_user_id = resolved_to
            identity.resolved_confidence = confidence
            identity.resolved_at = now

        identity, created = insert_if_absent(self.db, FaceIdentity, identity)
        if created:
            logger.info(
                f"New {identity.status} face identity {identity.id} for owner {owner_id}",
                extra={
                    "event_type": "face_identity_created",
                    "face_identity_id": identity.id,
                    "owner_id": owner_id,
                    "status": identity.status,
                }
            )
        elif resolved_to is not None:
            identity, _ = self.resolve(identity.id, resolved_to, confidence)
        return identity, created

    def record_sighting(self, identity_id: str, content_id: str) -> bool:
        """
        Count one more content item the identity appears in.

        Guarded on last_seen_content_id so replaying the same content does
        not count twice.

        Returns:
            True if the counter moved
        """
        updated = self.db.query(FaceIdentity).filter(
            FaceIdentity.id == identity_id,
            FaceIdentity.last_seen_content_id != content_id,
        ).update(
            {
                FaceIdentity.detection_count: FaceIdentity.detection_count + 1,
                FaceIdentity.last_seen_content_id: content_id,
                FaceIdentity.updated_at: datetime.now(timezone.utc),
            },
            synchronize_session=False,
        )
        self.db.commit()
        return updated == 1

    def resolve(
        self,
        identity_id: str,
        user_id: str,
        confidence: Optional[int] = None,
    ) -> Tuple[FaceIdentity, bool]:
        """
        Transition UNKNOWN -> RESOLVED(user_id) with a conditional update.

        Returns:
            (identity, transitioned). transitioned is False when the identity
            was already resolved to user_id.

        Raises:
            FaceIdentityConflictError: already resolved to a different user
        """
        now = datetime.now(timezone.utc)
        updated = self.db.query(FaceIdentity).filter(
            FaceIdentity.id == identity_id,
            FaceIdentity.status == FaceIdentityStatus.UNKNOWN.value,
        ).update(
            {
                FaceIdentity.status: FaceIdentityStatus.RESOLVED.value,
                FaceIdentity.resolved_to_user_id: user_id,
                FaceIdentity.resolved_confidence: confidence,
                FaceIdentity.resolved_at: now,
                FaceIdentity.updated_at: now,
            },
            synchronize_session=False,
        )
        self.db.commit()

        identity = self.db.get(FaceIdentity, identity_id)
        if identity is None:
            raise LookupError(f"FaceIdentity {identity_id} not found")
        self.db.refresh(identity)

        if updated == 1:
            logger.info(
                f"Face identity {identity_id} resolved to {user_id}",
                extra={
                    "event_type": "face_identity_resolved",
                    "face_identity_id": identity_id,
                    "owner_id": identity.owner_id,
                    "resolved_to": user_id,
                    "confidence": confidence,
                }
            )
            return identity, True

        resolution = identity.resolution
        if isinstance(resolution, Resolved) and resolution.user_id == user_id:
            return identity, False

        current = resolution.user_id if isinstance(resolution, Resolved) else None
        logger.error(
            f"Refused to resolve face identity {identity_id} to {user_id}: "
            f"already resolved to {current}",
            extra={
                "event_type": "data_integrity_anomaly",
                "anomaly": "face_identity_conflict",
                "face_identity_id": identity_id,
                "owner_id": identity.owner_id,
                "resolved_to": current,
                "attempted": user_id,
            }
        )
        record_integrity_anomaly("face_identity_conflict")
        raise FaceIdentityConflictError(identity_id, current, user_id)

    def find_resolved_to(self, owner_id: str, user_id: str) -> Optional[FaceIdentity]:
        """Oldest identity in owner's directory already resolved to user_id."""
        return self.db.query(FaceIdentity).filter(
            FaceIdentity.owner_id == owner_id,
            FaceIdentity.status == FaceIdentityStatus.RESOLVED.value,
            FaceIdentity.resolved_to_user_id == user_id,
        ).order_by(FaceIdentity.created_at, FaceIdentity.id).first()

    def list_for_owner(
        self,
        owner_id: str,
        status: Optional[FaceIdentityStatus] = None,
        limit: Optional[int] = None,
    ) -> List[FaceIdentity]:
        query = self.db.query(FaceIdentity).filter(FaceIdentity.owner_id == owner_id)
        if status is not None:
            query = query.filter(FaceIdentity.status == status.value)
        query = query.order_by(FaceIdentity.created_at.desc(), FaceIdentity.id)
        if limit:
            query = query.limit(limit)
        return query.all()

    def get_for_owner(self, owner_id: str, identity_id: str) -> Optional[FaceIdentity]:
        """Fetch an identity only if owner_id owns it."""
        return self.db.query(FaceIdentity).filter(
            FaceIdentity.id == identity_id,
            FaceIdentity.owner_id == owner_id,
        ).first()
