"""
Access Decision Service

Runs once per uploaded content item: detects faces, attributes each face
to an identity in the owner's face directory, and writes grants to the
recipient graph.

Per detected face:
    1. The face's ContentFace row already exists (redelivery): reuse its
       identity and only make sure the grant exists.
    2. One match call against the owner, the owner's accepted friends and
       the owner's existing identities.
    3. Best user match >= threshold:
       - the owner: identity RESOLVED to the owner, no grant
       - a friend: identity RESOLVED to the friend, FACE_MATCH/REALTIME
         grant. A previously UNKNOWN identity resolved here also fans out
         to its older content with provenance RETROACTIVE.
    4. Otherwise best identity match >= threshold: record a sighting; grant
       if that identity is resolved to a current friend.
    5. Otherwise a new UNKNOWN identity. Unknown faces confer no access.

Content tied to a shared event additionally grants SHARED_EVENT to every
accepted member. Friends accepted while the run was in progress are
matched against the run's UNKNOWN identities before it completes. The
content only becomes visible to recipients once the run reaches
COMPLETED. Face matching failures are retried with backoff; when retries
are exhausted the content is marked FAILED for manual reconciliation and
the error does not propagate to other units of work. Content left in
PROCESSING longer than PROCESSING_LEASE_SECONDS is re-run by
process_pending.

Usage:
    service = get_access_decision_service()
    result = await service.process_content(content_id)
"""
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

from sqlalchemy import and_, or_
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.database import SessionLocal, get_db_session, insert_if_absent
from app.core.exceptions import FaceIdentityConflictError
from app.core.ids import content_face_id
from app.core.logging_config import work_unit
from app.core.metrics import record_content_processed, record_face_outcome
from app.core.retry import RETRY_FACE_MATCHING, RetryConfig, retry_async
from app.models.content import Content, ProcessingStatus
from app.models.content_face import ContentFace
from app.models.event import EventMember, MembershipStatus
from app.models.face_identity import FaceIdentity, FaceIdentityStatus, Resolved
from app.models.recipient_edge import GrantMethod, Provenance
from app.models.user import User
from app.services.face_identity_service import FaceIdentityService
from app.services.face_matching import (
    BaseFaceMatchingClient,
    CandidateMatch,
    DetectedFace,
    get_face_matching_client,
)
from app.services.friendship_service import FriendshipService
from app.services.recipient_graph_service import NON_FACE_CONFIDENCE, RecipientGraphService
from app.services.retroactive_matching_service import RetroactiveMatchingService

logger = logging.getLogger(__name__)


@dataclass
class ProcessingResult:
    """Outcome of one access decision run."""
    content_id: str
    status: str
    faces_detected: int = 0
    grants_created: int = 0
    outcomes: Dict[str, int] = field(default_factory=dict)
    error: Optional[str] = None

    def count(self, outcome: str) -> None:
        self.outcomes[outcome] = self.outcomes.get(outcome, 0) + 1

    def to_dict(self) -> dict:
        return {
            "content_id": self.content_id,
            "status": self.status,
            "faces_detected": self.faces_detected,
            "grants_created": self.grants_created,
            "outcomes": dict(self.outcomes),
            "error": self.error,
        }


def pick_best_user_match(
    matches: List[CandidateMatch],
    owner_id: str,
    friends_accepted_at: Dict[str, datetime],
) -> Optional[CandidateMatch]:
    """
    Choose one user among above-threshold matches.

    Highest confidence wins. On a tie the owner wins (no grant), then the
    friend with the most recent accepted_at, then the lowest user id.
    """
    if not matches:
        return None

    def sort_key(match: CandidateMatch):
        accepted_at = friends_accepted_at.get(match.identity)
        recency = accepted_at.timestamp() if accepted_at else 0.0
        return (-match.confidence, match.identity != owner_id, -recency, match.identity)

    return sorted(matches, key=sort_key)[0]


class AccessDecisionService:
    """Turns detected faces into face identities and recipient grants."""

    def __init__(
        self,
        session_factory=None,
        client: Optional[BaseFaceMatchingClient] = None,
        retry_config: RetryConfig = RETRY_FACE_MATCHING,
        threshold: Optional[int] = None,
        lease_seconds: Optional[int] = None,
    ):
        self.session_factory = session_factory or SessionLocal
        self._client = client
        self.retry_config = retry_config
        self.threshold = settings.FACE_MATCH_THRESHOLD if threshold is None else threshold
        self.lease_seconds = settings.PROCESSING_LEASE_SECONDS if lease_seconds is None else lease_seconds

    @property
    def client(self) -> BaseFaceMatchingClient:
        return self._client or get_face_matching_client()

    async def process_content(self, content_id: str, force: bool = False) -> ProcessingResult:
        """
        Run access decisions for one content item.

        Safe to call again for the same content: every write is keyed by a
        deterministic id. COMPLETED content is skipped unless force is set.
        """
        with work_unit("upload", content_id):
            start = time.time()
            with get_db_session(self.session_factory) as db:
                content = db.get(Content, content_id)
                if content is None or content.is_deleted:
                    logger.warning(
                        f"Skipping access decisions for missing or deleted content {content_id}",
                        extra={"event_type": "content_processing_skipped", "content_id": content_id},
                    )
                    return ProcessingResult(content_id=content_id, status="skipped")
                if content.processing_status == ProcessingStatus.COMPLETED.value and not force:
                    return ProcessingResult(content_id=content_id, status=ProcessingStatus.COMPLETED.value)

                content.processing_status = ProcessingStatus.PROCESSING.value
                content.processing_attempts = (content.processing_attempts or 0) + 1
                content.processing_started_at = datetime.now(timezone.utc)
                db.commit()

                result = ProcessingResult(content_id=content_id, status=ProcessingStatus.PROCESSING.value)
                try:
                    await self._decide(db, content, result)
                except Exception as e:
                    db.rollback()
                    self._mark_failed(db, content_id, e)
                    result.status = ProcessingStatus.FAILED.value
                    result.error = str(e)
                    record_content_processed("failed", time.time() - start)
                    logger.error(
                        f"Access decisions failed for content {content_id}: {e}",
                        exc_info=True,
                        extra={
                            "event_type": "content_processing_failed",
                            "content_id": content_id,
                            "error_type": type(e).__name__,
                        }
                    )
                    return result

                content.processing_status = ProcessingStatus.COMPLETED.value
                content.processed_at = datetime.now(timezone.utc)
                content.failure_reason = None
                db.commit()

            result.status = ProcessingStatus.COMPLETED.value
            duration = time.time() - start
            record_content_processed("completed", duration)
            logger.info(
                f"Access decisions completed for content {content_id}: "
                f"{result.faces_detected} faces, {result.grants_created} grants",
                extra={
                    "event_type": "content_processed",
                    "content_id": content_id,
                    "faces_detected": result.faces_detected,
                    "grants_created": result.grants_created,
                    "outcomes": result.outcomes,
                    "duration_ms": round(duration * 1000, 2),
                }
            )
            return result

    async def process_pending(self, limit: int = 50) -> List[ProcessingResult]:
        """
        Process content whose run never happened or never finished, oldest first.

        Picks PENDING content (upload notifications that were never handled)
        and PROCESSING content whose run started more than lease_seconds ago
        (a worker that died mid-run).
        """
        lease_expired_before = datetime.now(timezone.utc) - timedelta(seconds=self.lease_seconds)
        with get_db_session(self.session_factory) as db:
            content_ids = [
                row.id for row in db.query(Content.id).filter(
                    or_(
                        Content.processing_status == ProcessingStatus.PENDING.value,
                        and_(
                            Content.processing_status == ProcessingStatus.PROCESSING.value,
                            or_(
                                Content.processing_started_at.is_(None),
                                Content.processing_started_at < lease_expired_before,
                            ),
                        ),
                    ),
                    Content.deleted_at.is_(None),
                ).order_by(Content.created_at).limit(limit).all()
            ]
        if content_ids:
            logger.info(
                f"Picking up {len(content_ids)} unprocessed content items",
                extra={"event_type": "pending_content_claimed", "content_count": len(content_ids)},
            )
        return [await self.process_content(content_id) for content_id in content_ids]

    def _mark_failed(self, db: Session, content_id: str, error: Exception) -> None:
        content = db.get(Content, content_id)
        if content is None:
            return
        content.processing_status = ProcessingStatus.FAILED.value
        content.failure_reason = f"{type(error).__name__}: {error}"[:1000]
        db.commit()

    async def _decide(self, db: Session, content: Content, result: ProcessingResult) -> None:
        faces = await retry_async(
            self.client.detect,
            content.object_key,
            config=self.retry_config,
            operation_name="face_detect",
        )
        result.faces_detected = len(faces)

        friends_accepted_at = FriendshipService(db).friends_accepted_at(content.owner_id)

        for face in faces:
            outcome = await self._decide_face(db, content, face, friends_accepted_at, result)
            result.count(outcome)
            record_face_outcome(outcome)

        if content.event_id:
            result.grants_created += self._grant_event_members(db, content)

        await self._match_late_friends(db, content, friends_accepted_at, result)

    async def _match_late_friends(
        self,
        db: Session,
        content: Content,
        friends_accepted_at: Dict[str, datetime],
        result: ProcessingResult,
    ) -> None:
        """
        Catch up friendships accepted while this content was being decided.

        Their retroactive scan may have run before this content's UNKNOWN
        identities were committed. Identities are committed by now, so any
        acceptance after this re-read gets a scan that sees them.
        """
        current = FriendshipService(db).friends_accepted_at(content.owner_id)
        late = sorted(set(current) - set(friends_accepted_at))
        if not late:
            return

        identity_ids = [
            row.id for row in db.query(FaceIdentity.id)
            .join(ContentFace, ContentFace.face_identity_id == FaceIdentity.id)
            .filter(
                ContentFace.content_id == content.id,
                FaceIdentity.status == FaceIdentityStatus.UNKNOWN.value,
            )
            .distinct()
            .order_by(FaceIdentity.id)
            .all()
        ]
        if not identity_ids:
            return

        retroactive = RetroactiveMatchingService(
            session_factory=self.session_factory,
            client=self.client,
            retry_config=self.retry_config,
            threshold=self.threshold,
        )
        for friend_id in late:
            outcome = await retroactive.match_identities(db, identity_ids, friend_id)
            result.grants_created += outcome.grants_created
            logger.info(
                f"Matched content {content.id} against late friend {friend_id}: "
                f"{outcome.grants_created} grants",
                extra={
                    "event_type": "late_friendship_matched",
                    "content_id": content.id,
                    "friend_id": friend_id,
                    "identities": len(identity_ids),
                    "grants_created": outcome.grants_created,
                }
            )

    async def _decide_face(
        self,
        db: Session,
        content: Content,
        face: DetectedFace,
        friends_accepted_at: Dict[str, datetime],
        result: ProcessingResult,
    ) -> str:
        identities = FaceIdentityService(db)
        graph = RecipientGraphService(db)
        owner_id = content.owner_id

        existing_face = db.get(ContentFace, content_face_id(content.id, face.signature_ref))
        if existing_face is not None:
            identity = db.get(FaceIdentity, existing_face.face_identity_id)
            confidence = existing_face.confidence
            if identity is not None and identity.resolved_confidence is not None:
                confidence = identity.resolved_confidence
            if self._grant_if_friend(graph, content, identity, confidence, friends_accepted_at):
                result.grants_created += 1
            return "redelivered"

        directory = {
            identity.signature_ref: identity
            for identity in identities.list_for_owner(owner_id)
        }
        enrolled_users = self._enrolled_candidates(db, owner_id, friends_accepted_at)

        matches = await retry_async(
            self.client.match_against_enrolled,
            face.signature_ref,
            enrolled_users + list(directory),
            config=self.retry_config,
            operation_name="face_match",
        )
        confident = [m for m in matches if m.passes_threshold(self.threshold)]
        user_match = pick_best_user_match(
            [m for m in confident if m.identity in enrolled_users],
            owner_id,
            friends_accepted_at,
        )
        identity_matches = sorted(
            (m for m in confident if m.identity in directory and m.identity != face.signature_ref),
            key=lambda m: (-m.confidence, directory[m.identity].id),
        )
        identity_match = identity_matches[0] if identity_matches else None
        matched_identity = directory[identity_match.identity] if identity_match else None

        if user_match is not None:
            identity = self._identity_for_user(
                identities, graph, content, face, user_match, matched_identity, result
            )
            self._write_content_face(db, content, face, identity, user_match.confidence)
            if user_match.identity == owner_id:
                return "owner"
            if identity.resolved_to_user_id != user_match.identity:
                return "conflict"
            if self._grant_if_friend(graph, content, identity, user_match.confidence, friends_accepted_at):
                result.grants_created += 1
            return "friend"

        if matched_identity is not None:
            identities.record_sighting(matched_identity.id, content.id)
            self._write_content_face(db, content, face, matched_identity, identity_match.confidence)
            if self._grant_if_friend(graph, content, matched_identity, identity_match.confidence, friends_accepted_at):
                result.grants_created += 1
            if isinstance(matched_identity.resolution, Resolved):
                return "known_resolved"
            return "known_unknown"

        identity, created = identities.get_or_create(owner_id, face.signature_ref, content.id)
        self._write_content_face(db, content, face, identity, face.confidence)
        if created:
            return "new_unknown"

        # Same signature already in the directory from earlier content
        identities.record_sighting(identity.id, content.id)
        confidence = identity.resolved_confidence or face.confidence
        if self._grant_if_friend(graph, content, identity, confidence, friends_accepted_at):
            result.grants_created += 1
        if isinstance(identity.resolution, Resolved):
            return "known_resolved"
        return "known_unknown"

    def _identity_for_user(
        self,
        identities: FaceIdentityService,
        graph: RecipientGraphService,
        content: Content,
        face: DetectedFace,
        user_match: CandidateMatch,
        matched_identity: Optional[FaceIdentity],
        result: ProcessingResult,
    ) -> FaceIdentity:
        """Reuse or create the owner's identity for the matched user."""
        owner_id = content.owner_id
        user_id = user_match.identity

        identity = identities.find_resolved_to(owner_id, user_id)
        if identity is not None:
            identities.record_sighting(identity.id, content.id)
            return identity

        if matched_identity is not None and matched_identity.status == FaceIdentityStatus.UNKNOWN.value:
            try:
                identity, transitioned = identities.resolve(matched_identity.id, user_id, user_match.confidence)
            except FaceIdentityConflictError:
                # Lost a race against another resolution; keep this face separate
                identity = None
            else:
                identities.record_sighting(identity.id, content.id)
                if transitioned and user_id != owner_id:
                    # Earlier content of a face that was unknown until now
                    result.grants_created += graph.fan_out_identity(
                        identity,
                        user_id,
                        user_match.confidence,
                        Provenance.RETROACTIVE,
                        exclude_content_id=content.id,
                    )
                return identity

        try:
            identity, _ = identities.get_or_create(
                owner_id,
                face.signature_ref,
                content.id,
                resolved_to=user_id,
                confidence=user_match.confidence,
            )
        except FaceIdentityConflictError as e:
            # The face's own identity was resolved elsewhere; attribution stays with it
            identity = identities.get_for_owner(owner_id, e.face_identity_id)
        return identity

    def _enrolled_candidates(
        self,
        db: Session,
        owner_id: str,
        friends_accepted_at: Dict[str, datetime],
    ) -> List[str]:
        user_ids = [owner_id] + sorted(friends_accepted_at)
        enrolled = {
            row.id for row in db.query(User.id).filter(
                User.id.in_(user_ids),
                User.enrolled_at.isnot(None),
                User.is_active.is_(True),
            ).all()
        }
        return [user_id for user_id in user_ids if user_id in enrolled]

    def _write_content_face(
        self,
        db: Session,
        content: Content,
        face: DetectedFace,
        identity: FaceIdentity,
        confidence: int,
    ) -> ContentFace:
        content_face, _ = insert_if_absent(db, ContentFace, ContentFace(
            id=content_face_id(content.id, face.signature_ref),
            content_id=content.id,
            face_identity_id=identity.id,
            bounding_box=face.bounding_box.to_json(),
            confidence=confidence,
        ))
        return content_face

    def _grant_if_friend(
        self,
        graph: RecipientGraphService,
        content: Content,
        identity: Optional[FaceIdentity],
        confidence: int,
        friends_accepted_at: Dict[str, datetime],
    ) -> bool:
        """FACE_MATCH grant when the identity is resolved to a current friend at or above threshold."""
        if identity is None:
            return False
        resolution = identity.resolution
        if not isinstance(resolution, Resolved):
            return False
        if resolution.user_id not in friends_accepted_at or confidence < self.threshold:
            return False
        _, created = graph.grant(
            content, resolution.user_id, GrantMethod.FACE_MATCH, confidence, Provenance.REALTIME
        )
        return created

    def _grant_event_members(self, db: Session, content: Content) -> int:
        graph = RecipientGraphService(db)
        member_ids = [
            row.user_id for row in db.query(EventMember.user_id).filter(
                EventMember.event_id == content.event_id,
                EventMember.status == MembershipStatus.ACCEPTED.value,
            ).all()
        ]
        created_count = 0
        for user_id in member_ids:
            _, created = graph.grant(
                content, user_id, GrantMethod.SHARED_EVENT, NON_FACE_CONFIDENCE, Provenance.REALTIME
            )
            if created:
                created_count += 1
        return created_count


# Global service instance
_access_decision_service: Optional[AccessDecisionService] = None


def get_access_decision_service() -> AccessDecisionService:
    """Get the global AccessDecisionService instance."""
    global _access_decision_service
    if _access_decision_service is None:
        _access_decision_service = AccessDecisionService()
    return _access_decision_service
