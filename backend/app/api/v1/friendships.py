"""
Friendship API

Endpoints:
    GET  /friendships                       Viewer's friends and pending requests
    POST /friendships                       Viewer sends a friend request
    POST /friendships/{friendship_id}/accept  Addressee accepts
    POST /friendships/events                Social-graph trigger (FRIENDSHIP_ACCEPTED)

Retroactive matching is scheduled only by the call that moved the
friendship to ACCEPTED.
"""
import logging

from fastapi import APIRouter, BackgroundTasks, Depends, status
from sqlalchemy.orm import Session

from app.api.v1.auth import get_current_user
from app.api.v1.errors import http_error
from app.core.database import get_db
from app.core.exceptions import FriendshipStateError, NotAuthorizedError
from app.core.validators import FriendshipUUID
from app.models.user import User
from app.schemas.friendship import (
    FriendshipActionResponse,
    FriendshipCreate,
    FriendshipEvent,
    FriendshipListResponse,
    FriendshipResponse,
)
from app.services.friendship_service import FriendshipService
from app.services.retroactive_matching_service import (
    RetroactiveMatchingService,
    get_retroactive_matching_service,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/friendships", tags=["friendships"])


@router.get("", response_model=FriendshipListResponse)
async def list_friendships(
    db: Session = Depends(get_db),
    viewer: User = Depends(get_current_user),
):
    service = FriendshipService(db)
    return FriendshipListResponse(
        friends=[FriendshipResponse.model_validate(f) for f in service.list_friends(viewer.id)],
        pending=[FriendshipResponse.model_validate(f) for f in service.list_pending(viewer.id)],
    )


@router.post("", response_model=FriendshipActionResponse, status_code=status.HTTP_201_CREATED)
async def request_friendship(
    payload: FriendshipCreate,
    db: Session = Depends(get_db),
    viewer: User = Depends(get_current_user),
):
    """
    Send a friend request. A repeated request in either direction returns
    the existing friendship.

    Raises:
        409: Self-request or unknown addressee
    """
    try:
        friendship, created = FriendshipService(db).request(viewer.id, payload.addressee_id)
    except FriendshipStateError as e:
        raise http_error(e)
    return FriendshipActionResponse(
        friendship=FriendshipResponse.model_validate(friendship),
        changed=created,
    )


@router.post("/events", response_model=FriendshipActionResponse)
async def friendship_event(
    payload: FriendshipEvent,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    retroactive: RetroactiveMatchingService = Depends(get_retroactive_matching_service),
):
    """
    Apply an accepted-friendship event from the upstream social graph

    Redelivered events are no-ops.
    """
    try:
        friendship, transitioned = FriendshipService(db).apply_accepted_event(
            payload.user_a_id, payload.user_b_id
        )
    except (FriendshipStateError, NotAuthorizedError, LookupError) as e:
        raise http_error(e)

    if transitioned:
        background_tasks.add_task(retroactive.run_for_friendship, friendship.id)
    else:
        logger.debug(
            f"Friendship event for {friendship.id} already applied",
            extra={"event_type": "friendship_event_redelivered", "friendship_id": friendship.id},
        )
    return FriendshipActionResponse(
        friendship=FriendshipResponse.model_validate(friendship),
        changed=transitioned,
    )


@router.post("/{friendship_id}/accept", response_model=FriendshipActionResponse)
async def accept_friendship(
    friendship_id: FriendshipUUID,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    viewer: User = Depends(get_current_user),
    retroactive: RetroactiveMatchingService = Depends(get_retroactive_matching_service),
):
    """
    Accept a pending friend request

    Raises:
        403: Viewer is not part of the friendship
        404: Friendship not found
        409: Requester tried to accept their own request
    """
    try:
        friendship, transitioned = FriendshipService(db).accept(str(friendship_id), viewer.id)
    except (LookupError, NotAuthorizedError, FriendshipStateError) as e:
        raise http_error(e)

    if transitioned:
        background_tasks.add_task(retroactive.run_for_friendship, friendship.id)
    return FriendshipActionResponse(
        friendship=FriendshipResponse.model_validate(friendship),
        changed=transitioned,
    )
