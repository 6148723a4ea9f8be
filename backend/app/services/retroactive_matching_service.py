"""
Retroactive Matching Service

When a friendship is accepted, faces that were UNKNOWN in either user's
directory may now be the new friend. For each direction (A as owner, B as
newly trusted) the owner's identities are scanned in id order and matched
against B's enrolled profile; each match is resolved to B and fanned out
to every content item the identity appears in.

Flow:
    accept friendship -> run_for_friendship(friendship_id)
        -> run_direction(requester as owner, acceptor as trusted)
        -> run_direction(acceptor as owner, requester as trusted)
        -> friendship.retroactive_completed_at

Resumability:
    - Each direction has a RetroactiveJob keyed by uuid5(friendship, owner, trusted)
    - The cursor (last_face_identity_id) advances only after an identity's
      fan-out has finished, so a resumed job never skips ungranted content
    - Identities already RESOLVED to the trusted user stay in the scan, so
      a fan-out interrupted after resolution is completed on resume
    - Every grant commits on its own; no long-lived transaction
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import and_, or_

from app.core.config import settings
from app.core.database import SessionLocal, get_db_session, insert_if_absent
from app.core.exceptions import FaceIdentityConflictError
from app.core.ids import retroactive_job_id
from app.core.logging_config import work_unit
from app.core.metrics import record_retroactive_job, record_retroactive_resolution
from app.core.retry import RETRY_FACE_MATCHING, RetryConfig, retry_async
from app.models.face_identity import FaceIdentity, FaceIdentityStatus, Resolved
from app.models.friendship import Friendship
from app.models.recipient_edge import Provenance
from app.models.retroactive_job import RetroactiveJob, RetroactiveJobStatus
from app.models.user import User
from app.services.face_identity_service import FaceIdentityService
from app.services.face_matching import BaseFaceMatchingClient, get_face_matching_client
from app.services.friendship_service import FriendshipService
from app.services.recipient_graph_service import RecipientGraphService

logger = logging.getLogger(__name__)


@dataclass
class IdentityOutcome:
    resolved: bool = False
    grants_created: int = 0


class RetroactiveMatchingService:
    """Checkpointed re-matching of unknown faces after a friendship forms."""

    def __init__(
        self,
        session_factory=None,
        client: Optional[BaseFaceMatchingClient] = None,
        retry_config: RetryConfig = RETRY_FACE_MATCHING,
        threshold: Optional[int] = None,
        page_size: Optional[int] = None,
    ):
        self.session_factory = session_factory or SessionLocal
        self._client = client
        self.retry_config = retry_config
        self.threshold = settings.FACE_MATCH_THRESHOLD if threshold is None else threshold
        self.page_size = page_size or settings.RETROACTIVE_PAGE_SIZE

    @property
    def client(self) -> BaseFaceMatchingClient:
        return self._client or get_face_matching_client()

    async def run_for_friendship(self, friendship_id: str) -> List[dict]:
        """
        Run both directions for an accepted friendship.

        Safe to call any number of times: completed directions are skipped
        and interrupted ones resume from their checkpoint.

        Returns:
            One job summary per direction (empty if not accepted)
        """
        with work_unit("friendship", friendship_id):
            with get_db_session(self.session_factory) as db:
                friendship = db.get(Friendship, friendship_id)
                if friendship is None or not friendship.is_accepted:
                    logger.warning(
                        f"Retroactive matching skipped: friendship {friendship_id} is not accepted",
                        extra={"event_type": "retroactive_skipped", "friendship_id": friendship_id},
                    )
                    return []
                requester_id = friendship.requester_id
                acceptor_id = friendship.acceptor_id

            summaries = []
            for owner_id, trusted_id in ((requester_id, acceptor_id), (acceptor_id, requester_id)):
                summaries.append(await self.run_direction(friendship_id, owner_id, trusted_id))

            if all(s["status"] == RetroactiveJobStatus.COMPLETED.value for s in summaries):
                with get_db_session(self.session_factory) as db:
                    db.query(Friendship).filter(
                        Friendship.id == friendship_id,
                        Friendship.retroactive_completed_at.is_(None),
                    ).update(
                        {Friendship.retroactive_completed_at: datetime.now(timezone.utc)},
                        synchronize_session=False,
                    )
                    db.commit()

            return summaries

    async def run_direction(self, friendship_id: str, owner_id: str, trusted_id: str) -> dict:
        """Scan owner's face directory for trusted_id, resuming from the job checkpoint."""
        job_id = retroactive_job_id(friendship_id, owner_id, trusted_id)

        with get_db_session(self.session_factory) as db:
            job, _ = insert_if_absent(db, RetroactiveJob, RetroactiveJob(
                id=job_id,
                friendship_id=friendship_id,
                owner_id=owner_id,
                trusted_user_id=trusted_id,
                status=RetroactiveJobStatus.PENDING.value,
            ))
            if job.is_completed:
                logger.debug(
                    f"Retroactive job {job_id} already completed",
                    extra={"event_type": "retroactive_job_skipped", "job_id": job_id},
                )
                return self._summary(job)

            now = datetime.now(timezone.utc)
            job.status = RetroactiveJobStatus.RUNNING.value
            job.started_at = job.started_at or now
            job.updated_at = now
            job.error_message = None
            db.commit()

            trusted = db.get(User, trusted_id)
            trusted_enrolled = trusted is not None and trusted.is_enrolled

            logger.info(
                f"Retroactive matching {owner_id} -> {trusted_id} "
                f"(resuming after {job.last_face_identity_id})",
                extra={
                    "event_type": "retroactive_job_started",
                    "job_id": job_id,
                    "owner_id": owner_id,
                    "trusted_user_id": trusted_id,
                    "cursor": job.last_face_identity_id,
                }
            )

            try:
                if trusted_enrolled:
                    await self._scan(db, job)
            except Exception as e:
                db.rollback()
                job = db.get(RetroactiveJob, job_id)
                job.status = RetroactiveJobStatus.FAILED.value
                job.error_message = f"{type(e).__name__}: {e}"[:1000]
                job.updated_at = datetime.now(timezone.utc)
                db.commit()
                record_retroactive_job("failed")
                logger.error(
                    f"Retroactive job {job_id} failed at cursor {job.last_face_identity_id}: {e}",
                    exc_info=True,
                    extra={
                        "event_type": "retroactive_job_failed",
                        "job_id": job_id,
                        "cursor": job.last_face_identity_id,
                        "error_type": type(e).__name__,
                    }
                )
                return self._summary(job)

            now = datetime.now(timezone.utc)
            job.status = RetroactiveJobStatus.COMPLETED.value
            job.completed_at = now
            job.updated_at = now
            db.commit()
            record_retroactive_job("completed")

            logger.info(
                f"Retroactive job {job_id} completed: {job.identities_resolved} resolved, "
                f"{job.grants_created} grants",
                extra={
                    "event_type": "retroactive_job_completed",
                    "job_id": job_id,
                    "identities_scanned": job.identities_scanned,
                    "identities_resolved": job.identities_resolved,
                    "grants_created": job.grants_created,
                }
            )
            return self._summary(job)

    async def _scan(self, db, job: RetroactiveJob) -> None:
        owner_id = job.owner_id
        trusted_id = job.trusted_user_id

        while True:
            query = db.query(FaceIdentity).filter(
                FaceIdentity.owner_id == owner_id,
                or_(
                    FaceIdentity.status == FaceIdentityStatus.UNKNOWN.value,
                    and_(
                        FaceIdentity.status == FaceIdentityStatus.RESOLVED.value,
                        FaceIdentity.resolved_to_user_id == trusted_id,
                    ),
                ),
            )
            if job.last_face_identity_id:
                query = query.filter(FaceIdentity.id > job.last_face_identity_id)
            page = [identity.id for identity in query.order_by(FaceIdentity.id).limit(self.page_size).all()]
            if not page:
                return

            for identity_id in page:
                outcome = await self._process_identity(db, identity_id, trusted_id)

                # Checkpoint only after the identity's fan-out has committed
                job.last_face_identity_id = identity_id
                job.identities_scanned += 1
                job.identities_resolved += 1 if outcome.resolved else 0
                job.grants_created += outcome.grants_created
                job.updated_at = datetime.now(timezone.utc)
                db.commit()

    async def _process_identity(self, db, identity_id: str, trusted_id: str) -> IdentityOutcome:
        identities = FaceIdentityService(db)
        outcome = IdentityOutcome()

        identity = db.get(FaceIdentity, identity_id)
        if identity is None:
            return outcome

        resolution = identity.resolution
        if isinstance(resolution, Resolved):
            if resolution.user_id != trusted_id:
                return outcome
            confidence = identity.resolved_confidence
        else:
            matches = await retry_async(
                self.client.match_against_enrolled,
                identity.signature_ref,
                [trusted_id],
                config=self.retry_config,
                operation_name="face_match_retroactive",
            )
            best = max(
                (m for m in matches if m.identity == trusted_id and m.passes_threshold(self.threshold)),
                key=lambda m: m.confidence,
                default=None,
            )
            if best is None:
                return outcome
            try:
                identity, transitioned = identities.resolve(identity_id, trusted_id, best.confidence)
            except FaceIdentityConflictError:
                # Resolved to someone else concurrently; logged as an anomaly
                return outcome
            outcome.resolved = transitioned
            confidence = best.confidence
            if transitioned:
                record_retroactive_resolution()

        if confidence is None or confidence < self.threshold:
            return outcome

        outcome.grants_created = RecipientGraphService(db).fan_out_identity(
            identity, trusted_id, confidence, Provenance.RETROACTIVE
        )
        return outcome

    async def match_identities(self, db, identity_ids: List[str], trusted_id: str) -> IdentityOutcome:
        """
        Match specific identities against trusted_id outside any job.

        Used by upload processing for friends accepted while it ran: the
        friendship's own scan may have finished before these identities
        were written.
        """
        total = IdentityOutcome()
        for identity_id in identity_ids:
            outcome = await self._process_identity(db, identity_id, trusted_id)
            total.resolved = total.resolved or outcome.resolved
            total.grants_created += outcome.grants_created
        return total

    async def sweep_incomplete(self, limit: int = 20) -> int:
        """Re-run accepted friendships whose retroactive matching never finished."""
        with get_db_session(self.session_factory) as db:
            friendship_ids = [f.id for f in FriendshipService(db).list_incomplete_retroactive(limit)]

        for friendship_id in friendship_ids:
            await self.run_for_friendship(friendship_id)

        if friendship_ids:
            logger.info(
                f"Retroactive sweep re-ran {len(friendship_ids)} friendships",
                extra={"event_type": "retroactive_sweep", "friendships": len(friendship_ids)},
            )
        return len(friendship_ids)

    def requeue_for_trusted_user(self, user_id: str) -> int:
        """
        Reset finished jobs that matched against user_id.

        Called after user_id (re-)enrolls a profile face: faces that could
        not match before can match now. The periodic sweep picks the
        friendships up again.
        """
        with get_db_session(self.session_factory) as db:
            jobs = db.query(RetroactiveJob).filter(RetroactiveJob.trusted_user_id == user_id).all()
            friendship_ids = {job.friendship_id for job in jobs}
            for job in jobs:
                job.status = RetroactiveJobStatus.PENDING.value
                job.last_face_identity_id = None
                job.completed_at = None
                job.updated_at = datetime.now(timezone.utc)
            if friendship_ids:
                db.query(Friendship).filter(Friendship.id.in_(friendship_ids)).update(
                    {Friendship.retroactive_completed_at: None},
                    synchronize_session=False,
                )
            db.commit()
            return len(jobs)

    def list_jobs(self, status: Optional[RetroactiveJobStatus] = None, limit: int = 100) -> List[dict]:
        with get_db_session(self.session_factory) as db:
            query = db.query(RetroactiveJob)
            if status is not None:
                query = query.filter(RetroactiveJob.status == status.value)
            return [self._summary(job) for job in query.order_by(RetroactiveJob.updated_at.desc()).limit(limit)]

    @staticmethod
    def _summary(job: RetroactiveJob) -> dict:
        return {
            "job_id": job.id,
            "friendship_id": job.friendship_id,
            "owner_id": job.owner_id,
            "trusted_user_id": job.trusted_user_id,
            "status": job.status,
            "last_face_identity_id": job.last_face_identity_id,
            "identities_scanned": job.identities_scanned,
            "identities_resolved": job.identities_resolved,
            "grants_created": job.grants_created,
            "error_message": job.error_message,
        }


# Global service instance
_retroactive_matching_service: Optional[RetroactiveMatchingService] = None


def get_retroactive_matching_service() -> RetroactiveMatchingService:
    """Get the global RetroactiveMatchingService instance."""
    global _retroactive_matching_service
    if _retroactive_matching_service is None:
        _retroactive_matching_service = RetroactiveMatchingService()
    return _retroactive_matching_service
