"""
Shared Event Service

Events give their accepted members SHARED_EVENT access to everything
contributed to them, independent of faces:
    - creating an event makes the owner an ACCEPTED OWNER member
    - accepted members may invite
    - accepting an invite grants existing event content (RETROACTIVE)
    - content processed later grants all accepted members (REALTIME, in
      AccessDecisionService)
"""
import logging
from datetime import date, datetime, timezone
from typing import List, Optional, Tuple

from sqlalchemy.orm import Session

from app.core.database import insert_if_absent
from app.core.exceptions import EventMembershipError, NotAuthorizedError
from app.core.ids import event_member_id
from app.models.content import Content
from app.models.event import Event, EventMember, EventRole, MembershipStatus
from app.models.recipient_edge import GrantMethod, Provenance
from app.models.user import User
from app.services.recipient_graph_service import NON_FACE_CONFIDENCE, RecipientGraphService

logger = logging.getLogger(__name__)


class EventService:
    """Shared events and their membership."""

    def __init__(self, db: Session):
        self.db = db

    def create_event(
        self,
        owner_id: str,
        name: str,
        event_date: Optional[date] = None,
        starts_at: Optional[datetime] = None,
        ends_at: Optional[datetime] = None,
    ) -> Event:
        if self.db.get(User, owner_id) is None:
            raise ValueError(f"User {owner_id} not found")
        if starts_at and ends_at and ends_at < starts_at:
            raise ValueError("Event cannot end before it starts")

        now = datetime.now(timezone.utc)
        event = Event(
            owner_id=owner_id,
            name=name,
            event_date=event_date,
            starts_at=starts_at,
            ends_at=ends_at,
        )
        self.db.add(event)
        self.db.flush()
        self.db.add(EventMember(
            id=event_member_id(event.id, owner_id),
            event_id=event.id,
            user_id=owner_id,
            role=EventRole.OWNER.value,
            status=MembershipStatus.ACCEPTED.value,
            joined_at=now,
        ))
        self.db.commit()
        self.db.refresh(event)

        logger.info(
            f"Event {event.id} created by {owner_id}",
            extra={"event_type": "shared_event_created", "shared_event_id": event.id, "owner_id": owner_id},
        )
        return event

    def get_event(self, event_id: str) -> Optional[Event]:
        return self.db.get(Event, event_id)

    def get_membership(self, event_id: str, user_id: str) -> Optional[EventMember]:
        return self.db.get(EventMember, event_member_id(event_id, user_id))

    def is_accepted_member(self, event_id: str, user_id: str) -> bool:
        member = self.get_membership(event_id, user_id)
        return member is not None and member.is_accepted

    def invite(self, event_id: str, inviter_id: str, invitee_id: str) -> Tuple[EventMember, bool]:
        """
        Invite a user. Re-inviting returns the existing membership.

        Raises:
            LookupError: event does not exist
            NotAuthorizedError: inviter is not an accepted member
            EventMembershipError: invitee does not exist
        """
        if self.get_event(event_id) is None:
            raise LookupError(f"Event {event_id} not found")
        if not self.is_accepted_member(event_id, inviter_id):
            raise NotAuthorizedError("Only accepted members can invite")
        if self.db.get(User, invitee_id) is None:
            raise EventMembershipError(f"User {invitee_id} not found")

        member, created = insert_if_absent(self.db, EventMember, EventMember(
            id=event_member_id(event_id, invitee_id),
            event_id=event_id,
            user_id=invitee_id,
            role=EventRole.MEMBER.value,
            status=MembershipStatus.INVITED.value,
            invited_by_id=inviter_id,
        ))
        if created:
            logger.info(
                f"User {invitee_id} invited to event {event_id}",
                extra={"event_type": "event_member_invited", "shared_event_id": event_id},
            )
        return member, created

    def accept_invite(self, event_id: str, user_id: str) -> Tuple[EventMember, int]:
        """
        Accept an invitation and grant the event's existing content.

        Returns:
            (membership, grants created). Accepting twice grants nothing new.

        Raises:
            EventMembershipError: no invitation for this user
        """
        member = self.get_membership(event_id, user_id)
        if member is None:
            raise EventMembershipError(f"User {user_id} is not invited to event {event_id}")

        self.db.query(EventMember).filter(
            EventMember.id == member.id,
            EventMember.status == MembershipStatus.INVITED.value,
        ).update(
            {
                EventMember.status: MembershipStatus.ACCEPTED.value,
                EventMember.joined_at: datetime.now(timezone.utc),
            },
            synchronize_session=False,
        )
        self.db.commit()
        self.db.refresh(member)

        graph = RecipientGraphService(self.db)
        granted = 0
        for content in self.list_event_content(event_id):
            _, created = graph.grant(
                content, user_id, GrantMethod.SHARED_EVENT, NON_FACE_CONFIDENCE, Provenance.RETROACTIVE
            )
            if created:
                granted += 1

        logger.info(
            f"User {user_id} joined event {event_id}, {granted} grants",
            extra={"event_type": "event_member_accepted", "shared_event_id": event_id, "grants": granted},
        )
        return member, granted

    def list_members(self, event_id: str, status: Optional[MembershipStatus] = None) -> List[EventMember]:
        query = self.db.query(EventMember).filter(EventMember.event_id == event_id)
        if status is not None:
            query = query.filter(EventMember.status == status.value)
        return query.order_by(EventMember.created_at).all()

    def list_event_content(self, event_id: str) -> List[Content]:
        return self.db.query(Content).filter(
            Content.event_id == event_id,
            Content.deleted_at.is_(None),
        ).order_by(Content.created_at).all()

    def list_events_for_user(self, user_id: str) -> List[Event]:
        return (
            self.db.query(Event)
            .join(EventMember, EventMember.event_id == Event.id)
            .filter(
                EventMember.user_id == user_id,
                EventMember.status == MembershipStatus.ACCEPTED.value,
            )
            .order_by(Event.created_at.desc())
            .all()
        )
