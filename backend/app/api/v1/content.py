"""
Content API

Endpoints:
    POST   /content                  Object-created notification (upload registered)
    DELETE /content/{content_id}     Owner soft-deletes content
    POST   /content/{content_id}/share   Owner shares content manually
    GET    /content/{content_id}/access  Owner lists the grants on content
    GET    /content/{content_id}     Fetch content the viewer may see

Registration is idempotent on the object key; the access decision runs
after the response is sent.
"""
import logging

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, status
from sqlalchemy.orm import Session

from app.api.v1.auth import get_current_user
from app.api.v1.errors import http_error
from app.core.database import get_db
from app.core.exceptions import ContentNotFoundError, EventMembershipError, NotAuthorizedError
from app.core.validators import ContentUUID
from app.models.content import MediaType
from app.models.user import User
from app.schemas.content import (
    ContentAccessResponse,
    ContentCreate,
    ContentRegisterResponse,
    ContentResponse,
    RecipientEdgeResponse,
    ShareRequest,
    ShareResponse,
)
from app.services.access_decision_service import AccessDecisionService, get_access_decision_service
from app.services.content_service import ContentService
from app.services.feed_service import FeedService
from app.services.recipient_graph_service import RecipientGraphService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/content", tags=["content"])


@router.post("", response_model=ContentRegisterResponse, status_code=status.HTTP_202_ACCEPTED)
async def register_content(
    payload: ContentCreate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    decisions: AccessDecisionService = Depends(get_access_decision_service),
):
    """
    Register an uploaded object and schedule its access decision

    A redelivered notification returns the existing content and schedules
    nothing new for content that already completed.

    Raises:
        400: Unknown owner or key outside the owner's prefix
        409: Owner is not a member of the given event
    """
    try:
        content, created = ContentService(db).register_upload(
            owner_id=payload.owner_id,
            object_key=payload.object_key,
            media_type=MediaType(payload.media_type),
            thumbnail_key=payload.thumbnail_key,
            event_id=payload.event_id,
        )
    except (ValueError, EventMembershipError) as e:
        raise http_error(e)

    background_tasks.add_task(decisions.process_content, content.id)

    return ContentRegisterResponse(
        content=ContentResponse.model_validate(content),
        created=created,
    )


@router.get("/{content_id}", response_model=ContentResponse)
async def get_content(
    content_id: ContentUUID,
    db: Session = Depends(get_db),
    viewer: User = Depends(get_current_user),
):
    """Fetch one content item. Content the viewer may not see is a 404."""
    try:
        content = FeedService(db).get_content(str(content_id), viewer.id)
    except ContentNotFoundError as e:
        raise http_error(e)
    return ContentResponse.model_validate(content)


@router.delete("/{content_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_content(
    content_id: ContentUUID,
    db: Session = Depends(get_db),
    viewer: User = Depends(get_current_user),
):
    """Soft-delete owned content; grants are reconciled by the cleanup job."""
    try:
        ContentService(db).delete_content(str(content_id), viewer.id)
    except (ContentNotFoundError, NotAuthorizedError) as e:
        raise http_error(e)


@router.post("/{content_id}/share", response_model=ShareResponse)
async def share_content(
    content_id: ContentUUID,
    payload: ShareRequest,
    db: Session = Depends(get_db),
    viewer: User = Depends(get_current_user),
):
    """
    Grant a user MANUAL access to owned content

    Raises:
        400: Sharing with yourself or an unknown user
        403: Viewer does not own the content
        404: Content not found
    """
    try:
        edge, created = RecipientGraphService(db).share_content(
            str(content_id), viewer.id, payload.recipient_id
        )
    except (ContentNotFoundError, NotAuthorizedError, ValueError) as e:
        raise http_error(e)
    return ShareResponse(edge=RecipientEdgeResponse.model_validate(edge), created=created)


@router.get("/{content_id}/access", response_model=ContentAccessResponse)
async def get_content_access(
    content_id: ContentUUID,
    db: Session = Depends(get_db),
    viewer: User = Depends(get_current_user),
):
    """List who has been granted access to owned content."""
    try:
        content = ContentService(db).get_owned(str(content_id), viewer.id)
    except (ContentNotFoundError, NotAuthorizedError) as e:
        raise http_error(e)
    edges = RecipientGraphService(db).list_edges_for_content(content.id)
    return ContentAccessResponse(
        content_id=content.id,
        edges=[RecipientEdgeResponse.model_validate(edge) for edge in edges],
    )
