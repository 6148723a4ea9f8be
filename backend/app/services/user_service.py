"""User and enrollment service

Registers users referenced by the access graph and enrolls their profile
face with the face matching collaborator. Enrollment also resolves the
user's own UNKNOWN faces that turn out to be themselves.
"""
from datetime import datetime, timezone
from typing import Optional, List
from sqlalchemy.orm import Session as DBSession
from sqlalchemy.exc import IntegrityError
import logging
import uuid

from app.core.config import settings
from app.core.exceptions import FaceIdentityConflictError
from app.core.retry import RETRY_FACE_MATCHING, RetryConfig, retry_async
from app.models.face_identity import FaceIdentityStatus
from app.models.user import User
from app.services.face_identity_service import FaceIdentityService
from app.services.face_matching import BaseFaceMatchingClient, get_face_matching_client

logger = logging.getLogger(__name__)


class UserService:
    """
    Service for managing users

    Responsibilities:
    - Register users (idempotent on the upstream user id)
    - Enroll profile faces
    - Deactivate accounts (users are never hard-deleted)
    """

    def __init__(
        self,
        db: DBSession,
        client: Optional[BaseFaceMatchingClient] = None,
        retry_config: RetryConfig = RETRY_FACE_MATCHING,
    ):
        self.db = db
        self._client = client
        self.retry_config = retry_config

    @property
    def client(self) -> BaseFaceMatchingClient:
        return self._client or get_face_matching_client()

    def register_user(
        self,
        username: str,
        display_name: Optional[str] = None,
        phone_number: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> User:
        """
        Register a user.

        Args:
            username: Unique username
            display_name: Optional display name
            phone_number: Optional phone number
            user_id: Upstream subject id; a repeat registration with the same
                id returns the existing user

        Raises:
            ValueError: If username already exists
        """
        if user_id:
            existing = self.db.get(User, user_id)
            if existing is not None:
                return existing

        user = User(
            id=user_id or str(uuid.uuid4()),
            username=username,
            display_name=display_name,
            phone_number=phone_number,
            is_active=True,
        )

        try:
            self.db.add(user)
            self.db.commit()
            self.db.refresh(user)
        except IntegrityError as e:
            self.db.rollback()
            if "username" in str(e).lower():
                raise ValueError(f"Username '{username}' already exists")
            raise ValueError("Failed to create user")

        logger.info(
            "User registered",
            extra={
                "event_type": "user_registered",
                "user_id": user.id,
                "username": user.username,
            }
        )
        return user

    def get_user(self, user_id: str) -> Optional[User]:
        """Get user by ID"""
        return self.db.query(User).filter(User.id == user_id).first()

    def get_user_by_username(self, username: str) -> Optional[User]:
        """Get user by username"""
        return self.db.query(User).filter(User.username == username.lower()).first()

    def list_users(self) -> List[User]:
        """List all users"""
        return self.db.query(User).order_by(User.created_at.desc()).all()

    def deactivate_user(self, user_id: str) -> bool:
        """
        Deactivate a user. Grants already written stay in place.

        Returns:
            True if the user existed
        """
        user = self.get_user(user_id)
        if not user:
            return False
        user.is_active = False
        self.db.commit()
        logger.info(
            "User deactivated",
            extra={"event_type": "user_deactivated", "user_id": user_id},
        )
        return True

    async def enroll_profile(self, user_id: str, image_ref: str) -> int:
        """
        Enroll the user's profile face.

        Resolves the user's own UNKNOWN face identities that match the new
        profile (owner match: no grants, owners see their own content).

        Args:
            user_id: User to enroll
            image_ref: Object key of the profile photo

        Returns:
            Number of the user's own identities resolved to them

        Raises:
            ValueError: Unknown user
        """
        user = self.get_user(user_id)
        if user is None:
            raise ValueError(f"User {user_id} not found")

        await retry_async(
            self.client.enroll,
            image_ref,
            user_id,
            config=self.retry_config,
            operation_name="face_enroll",
        )

        user.profile_photo_key = image_ref
        user.enrolled_at = datetime.now(timezone.utc)
        self.db.commit()

        logger.info(
            "Profile face enrolled",
            extra={"event_type": "profile_enrolled", "user_id": user_id},
        )

        return await self._resolve_own_faces(user_id)

    async def _resolve_own_faces(self, user_id: str) -> int:
        identities = FaceIdentityService(self.db)
        resolved = 0
        for identity in identities.list_for_owner(user_id, status=FaceIdentityStatus.UNKNOWN):
            matches = await retry_async(
                self.client.match_against_enrolled,
                identity.signature_ref,
                [user_id],
                config=self.retry_config,
                operation_name="face_match_owner",
            )
            best = max(
                (m for m in matches if m.identity == user_id),
                key=lambda m: m.confidence,
                default=None,
            )
            if best is None or not best.passes_threshold(settings.FACE_MATCH_THRESHOLD):
                continue
            try:
                _, transitioned = identities.resolve(identity.id, user_id, best.confidence)
            except FaceIdentityConflictError:
                continue
            if transitioned:
                resolved += 1
        return resolved
