"""
Pipeline Operations API

Internal endpoints for operating and reconciling the access pipeline.
Not exposed through the public gateway.

Endpoints:
    GET  /pipeline/content/failed                 Content whose access decision failed
    POST /pipeline/content/{content_id}/reprocess Re-run the access decision
    GET  /pipeline/dead-letters                   Feed records the materializer gave up on
    POST /pipeline/dead-letters/{id}/replay       Re-apply a dead-lettered record
    POST /pipeline/feeds/{recipient_id}/rebuild   Recompute a feed from the recipient graph
    GET  /pipeline/feeds/{recipient_id}/verify    Report drift between feed and graph
    GET  /pipeline/retroactive-jobs               Retroactive matching job state
    POST /pipeline/retroactive-jobs/{friendship_id}/run  Run (or resume) retroactive matching
    GET  /pipeline/change-feed                    Consumer position and backlog
    POST /pipeline/change-feed/poll               Drain the change feed now
    POST /pipeline/cleanup                        Reconcile grants of deleted content
"""
import logging
from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from app.api.v1.errors import http_error
from app.core.database import get_db
from app.core.exceptions import ContentNotFoundError
from app.core.validators import ContentUUID, DeadLetterUUID, FriendshipUUID
from app.models.retroactive_job import RetroactiveJobStatus
from app.schemas.content import ContentResponse, ProcessingResultResponse
from app.schemas.pipeline import (
    ChangeFeedPollResponse,
    ChangeFeedPositionResponse,
    CleanupResponse,
    DeadLetterResponse,
    FeedRebuildResponse,
    FeedVerifyResponse,
    ReplayResponse,
    RetroactiveJobResponse,
)
from app.services.access_decision_service import AccessDecisionService, get_access_decision_service
from app.services.cleanup_service import CleanupService, get_cleanup_service
from app.services.content_service import ContentService
from app.services.feed_materializer import (
    ChangeFeedConsumer,
    FeedMaterializer,
    get_change_feed_consumer,
    get_feed_materializer,
)
from app.services.friendship_service import FriendshipService
from app.services.retroactive_matching_service import (
    RetroactiveMatchingService,
    get_retroactive_matching_service,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/pipeline", tags=["pipeline"])


@router.get("/content/failed", response_model=List[ContentResponse])
async def list_failed_content(
    limit: int = Query(100, ge=1, le=1000),
    db: Session = Depends(get_db),
):
    return [ContentResponse.model_validate(c) for c in ContentService(db).list_failed(limit)]


@router.post("/content/{content_id}/reprocess", response_model=ProcessingResultResponse)
async def reprocess_content(
    content_id: ContentUUID,
    db: Session = Depends(get_db),
    decisions: AccessDecisionService = Depends(get_access_decision_service),
):
    """
    Re-run the access decision for FAILED content

    Grants already written are kept; a rerun only adds what is missing.
    """
    try:
        ContentService(db).mark_for_reprocess(str(content_id))
    except ContentNotFoundError as e:
        raise http_error(e)
    result = await decisions.process_content(str(content_id))
    return ProcessingResultResponse(**result.to_dict())


@router.get("/dead-letters", response_model=List[DeadLetterResponse])
async def list_dead_letters(
    include_resolved: bool = Query(False),
    limit: int = Query(100, ge=1, le=1000),
    materializer: FeedMaterializer = Depends(get_feed_materializer),
):
    return [DeadLetterResponse(**dl) for dl in materializer.list_dead_letters(include_resolved, limit)]


@router.post("/dead-letters/{dead_letter_id}/replay", response_model=ReplayResponse)
async def replay_dead_letter(
    dead_letter_id: DeadLetterUUID,
    materializer: FeedMaterializer = Depends(get_feed_materializer),
):
    try:
        outcome = await materializer.replay_dead_letter(str(dead_letter_id))
    except Exception as e:
        logger.error(
            f"Replay of dead letter {dead_letter_id} failed: {e}",
            exc_info=True,
            extra={"event_type": "dead_letter_replay_failed", "dead_letter_id": str(dead_letter_id)},
        )
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Replay failed: {e}",
        )
    if outcome is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Dead letter {dead_letter_id} not found",
        )
    return ReplayResponse(dead_letter_id=str(dead_letter_id), outcome=outcome)


@router.post("/feeds/{recipient_id}/rebuild", response_model=FeedRebuildResponse)
async def rebuild_feed(
    recipient_id: str,
    materializer: FeedMaterializer = Depends(get_feed_materializer),
):
    entries = materializer.rebuild_feed(recipient_id)
    return FeedRebuildResponse(recipient_id=recipient_id, entries=entries)


@router.get("/feeds/{recipient_id}/verify", response_model=FeedVerifyResponse)
async def verify_feed(
    recipient_id: str,
    materializer: FeedMaterializer = Depends(get_feed_materializer),
):
    return FeedVerifyResponse(**materializer.verify_feed(recipient_id))


@router.get("/retroactive-jobs", response_model=List[RetroactiveJobResponse])
async def list_retroactive_jobs(
    status_filter: Optional[Literal['PENDING', 'RUNNING', 'COMPLETED', 'FAILED']] = Query(None, alias="status"),
    limit: int = Query(100, ge=1, le=1000),
    retroactive: RetroactiveMatchingService = Depends(get_retroactive_matching_service),
):
    jobs = retroactive.list_jobs(
        status=RetroactiveJobStatus(status_filter) if status_filter else None,
        limit=limit,
    )
    return [RetroactiveJobResponse(**job) for job in jobs]


@router.post("/retroactive-jobs/{friendship_id}/run", response_model=List[RetroactiveJobResponse])
async def run_retroactive(
    friendship_id: FriendshipUUID,
    db: Session = Depends(get_db),
    retroactive: RetroactiveMatchingService = Depends(get_retroactive_matching_service),
):
    """Run both directions for an accepted friendship, resuming from checkpoints."""
    friendship = FriendshipService(db).get(str(friendship_id))
    if friendship is None or not friendship.is_accepted:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Accepted friendship {friendship_id} not found",
        )
    summaries = await retroactive.run_for_friendship(friendship.id)
    return [RetroactiveJobResponse(**summary) for summary in summaries]


@router.get("/change-feed", response_model=ChangeFeedPositionResponse)
async def change_feed_position(
    consumer: ChangeFeedConsumer = Depends(get_change_feed_consumer),
):
    return ChangeFeedPositionResponse(**consumer.get_position())


@router.post("/change-feed/poll", response_model=ChangeFeedPollResponse)
async def poll_change_feed(
    max_batches: Optional[int] = Query(None, ge=1),
    consumer: ChangeFeedConsumer = Depends(get_change_feed_consumer),
):
    return ChangeFeedPollResponse(**await consumer.poll_once(max_batches=max_batches))


@router.post("/cleanup", response_model=CleanupResponse)
async def run_cleanup(
    cleanup: CleanupService = Depends(get_cleanup_service),
):
    stats = await cleanup.cleanup_deleted_content()
    pruned = cleanup.prune_consumed_changes()
    return CleanupResponse(**stats, changes_pruned=pruned)
