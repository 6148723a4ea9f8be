"""
Friendship Service

Friend requests and acceptance over canonically ordered pairs. A request
in either direction lands on the same row (uuid5 of the ordered pair), and
acceptance is a conditional PENDING -> ACCEPTED update, so replayed
requests and duplicate acceptance events are absorbed rather than erroring.
"""
import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from sqlalchemy import or_
from sqlalchemy.orm import Session

from app.core.database import insert_if_absent
from app.core.exceptions import FriendshipStateError, NotAuthorizedError
from app.core.ids import canonical_pair, friendship_id as derive_friendship_id
from app.models.friendship import Friendship, FriendshipStatus
from app.models.user import User

logger = logging.getLogger(__name__)


class FriendshipService:
    """Social graph edges between users."""

    def __init__(self, db: Session):
        self.db = db

    def request(self, requester_id: str, addressee_id: str) -> Tuple[Friendship, bool]:
        """
        Create a PENDING friendship, or return the existing edge for the pair.

        Returns:
            (friendship, created)

        Raises:
            FriendshipStateError: self-request or unknown user
        """
        if requester_id == addressee_id:
            raise FriendshipStateError("Cannot befriend yourself")
        for user_id in (requester_id, addressee_id):
            if self.db.get(User, user_id) is None:
                raise FriendshipStateError(f"User {user_id} not found")

        user_a, user_b = canonical_pair(requester_id, addressee_id)
        friendship, created = insert_if_absent(self.db, Friendship, Friendship(
            id=derive_friendship_id(user_a, user_b),
            user_a_id=user_a,
            user_b_id=user_b,
            requester_id=requester_id,
            status=FriendshipStatus.PENDING.value,
        ))
        if created:
            logger.info(
                f"Friend request {requester_id} -> {addressee_id}",
                extra={
                    "event_type": "friendship_requested",
                    "friendship_id": friendship.id,
                    "requester_id": requester_id,
                }
            )
        return friendship, created

    def accept(self, friendship_id: str, acceptor_id: str) -> Tuple[Friendship, bool]:
        """
        Accept a pending request as the non-requesting user.

        Returns:
            (friendship, transitioned). transitioned is True only for the call
            that moved the edge to ACCEPTED; that call triggers retroactive
            matching.

        Raises:
            LookupError: friendship does not exist
            NotAuthorizedError: acceptor is not part of the pair
            FriendshipStateError: the requester tried to accept
        """
        friendship = self.db.get(Friendship, friendship_id)
        if friendship is None:
            raise LookupError(f"Friendship {friendship_id} not found")
        if not friendship.involves(acceptor_id):
            raise NotAuthorizedError("Only the addressee can accept a friend request")
        if friendship.requester_id == acceptor_id:
            raise FriendshipStateError("Requester cannot accept their own request")

        updated = self.db.query(Friendship).filter(
            Friendship.id == friendship_id,
            Friendship.status == FriendshipStatus.PENDING.value,
        ).update(
            {
                Friendship.status: FriendshipStatus.ACCEPTED.value,
                Friendship.accepted_at: datetime.now(timezone.utc),
            },
            synchronize_session=False,
        )
        self.db.commit()
        self.db.refresh(friendship)

        if updated == 1:
            logger.info(
                f"Friendship {friendship.id} accepted by {acceptor_id}",
                extra={
                    "event_type": "friendship_accepted",
                    "friendship_id": friendship.id,
                    "acceptor_id": acceptor_id,
                }
            )
        return friendship, updated == 1

    def apply_accepted_event(self, user_a: str, user_b: str) -> Tuple[Friendship, bool]:
        """
        Apply a (user_a, user_b, ACCEPTED) trigger from the social graph.

        Creates the edge if this is the first we hear of it, with user_a as
        requester, then accepts it as the other side.
        """
        friendship, _ = self.request(user_a, user_b)
        return self.accept(friendship.id, friendship.other_user(friendship.requester_id))

    def get(self, friendship_id: str) -> Optional[Friendship]:
        return self.db.get(Friendship, friendship_id)

    def get_between(self, user_a: str, user_b: str) -> Optional[Friendship]:
        return self.db.get(Friendship, derive_friendship_id(user_a, user_b))

    def are_friends(self, user_a: str, user_b: str) -> bool:
        if user_a == user_b:
            return False
        friendship = self.get_between(user_a, user_b)
        return friendship is not None and friendship.is_accepted

    def _for_user(self, user_id: str, status: FriendshipStatus):
        return self.db.query(Friendship).filter(
            or_(Friendship.user_a_id == user_id, Friendship.user_b_id == user_id),
            Friendship.status == status.value,
        )

    def list_friends(self, user_id: str) -> List[Friendship]:
        return self._for_user(user_id, FriendshipStatus.ACCEPTED).order_by(
            Friendship.accepted_at.desc()
        ).all()

    def list_pending(self, user_id: str) -> List[Friendship]:
        return self._for_user(user_id, FriendshipStatus.PENDING).order_by(
            Friendship.created_at.desc()
        ).all()

    def friends_accepted_at(self, user_id: str) -> Dict[str, datetime]:
        """Accepted friend id -> when the friendship was accepted."""
        return {f.other_user(user_id): f.accepted_at for f in self.list_friends(user_id)}

    def list_incomplete_retroactive(self, limit: int = 100) -> List[Friendship]:
        """Accepted friendships whose retroactive matching has not finished."""
        return self.db.query(Friendship).filter(
            Friendship.status == FriendshipStatus.ACCEPTED.value,
            Friendship.retroactive_completed_at.is_(None),
        ).order_by(Friendship.accepted_at).limit(limit).all()
