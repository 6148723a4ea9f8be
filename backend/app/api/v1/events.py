"""
Shared Events API

Endpoints:
    GET  /events                      Events the viewer is an accepted member of
    POST /events                      Create an event (viewer becomes OWNER)
    GET  /events/{event_id}           Event with its members (members only)
    POST /events/{event_id}/members   Invite a user (accepted members only)
    POST /events/{event_id}/accept    Accept an invitation; grants existing event content
"""
import logging
from typing import List

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from app.api.v1.auth import get_current_user
from app.api.v1.errors import http_error
from app.core.database import get_db
from app.core.exceptions import EventMembershipError, NotAuthorizedError
from app.core.validators import EventUUID
from app.models.user import User
from app.schemas.event import (
    EventAcceptResponse,
    EventCreate,
    EventDetailResponse,
    EventInviteResponse,
    EventMemberInvite,
    EventMemberResponse,
    EventResponse,
)
from app.services.event_service import EventService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/events", tags=["events"])


@router.get("", response_model=List[EventResponse])
async def list_events(
    db: Session = Depends(get_db),
    viewer: User = Depends(get_current_user),
):
    return [EventResponse.model_validate(e) for e in EventService(db).list_events_for_user(viewer.id)]


@router.post("", response_model=EventResponse, status_code=status.HTTP_201_CREATED)
async def create_event(
    payload: EventCreate,
    db: Session = Depends(get_db),
    viewer: User = Depends(get_current_user),
):
    try:
        event = EventService(db).create_event(
            owner_id=viewer.id,
            name=payload.name,
            event_date=payload.event_date,
            starts_at=payload.starts_at,
            ends_at=payload.ends_at,
        )
    except ValueError as e:
        raise http_error(e)
    return EventResponse.model_validate(event)


@router.get("/{event_id}", response_model=EventDetailResponse)
async def get_event(
    event_id: EventUUID,
    db: Session = Depends(get_db),
    viewer: User = Depends(get_current_user),
):
    """Non-members get a 404 rather than learning the event exists."""
    service = EventService(db)
    event = service.get_event(str(event_id))
    if event is None or service.get_membership(event.id, viewer.id) is None:
        raise http_error(LookupError(f"Event {event_id} not found"))
    return EventDetailResponse(
        **EventResponse.model_validate(event).model_dump(),
        members=[EventMemberResponse.model_validate(m) for m in service.list_members(event.id)],
    )


@router.post("/{event_id}/members", response_model=EventInviteResponse, status_code=status.HTTP_201_CREATED)
async def invite_member(
    event_id: EventUUID,
    payload: EventMemberInvite,
    db: Session = Depends(get_db),
    viewer: User = Depends(get_current_user),
):
    """
    Invite a user to the event

    Raises:
        403: Viewer is not an accepted member
        404: Event not found
        409: Invitee does not exist
    """
    try:
        member, created = EventService(db).invite(str(event_id), viewer.id, payload.user_id)
    except (LookupError, NotAuthorizedError, EventMembershipError) as e:
        raise http_error(e)
    return EventInviteResponse(member=EventMemberResponse.model_validate(member), created=created)


@router.post("/{event_id}/accept", response_model=EventAcceptResponse)
async def accept_invite(
    event_id: EventUUID,
    db: Session = Depends(get_db),
    viewer: User = Depends(get_current_user),
):
    """
    Accept an invitation. Existing event content is granted to the viewer.

    Raises:
        409: Viewer was not invited
    """
    try:
        member, granted = EventService(db).accept_invite(str(event_id), viewer.id)
    except EventMembershipError as e:
        raise http_error(e)
    return EventAcceptResponse(member=EventMemberResponse.model_validate(member), grants_created=granted)
