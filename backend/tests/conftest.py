"""Pytest fixtures and configuration for test suite

This module provides:
1. Database session fixtures for test isolation
2. Factory functions for creating test objects with sensible defaults
3. Pytest fixtures for the in-memory face matching client and fast retries

Factory Functions:
    - make_user(**overrides) -> User
    - make_content(**overrides) -> Content
    - make_friendship(**overrides) -> Friendship
    - make_face_identity(**overrides) -> FaceIdentity
    - make_content_face(**overrides) -> ContentFace
    - make_event(**overrides) -> Event

Each factory accepts an optional db_session parameter to persist objects.
"""
import os
import tempfile
import uuid
from datetime import datetime, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from app.core.database import Base
from app.core.exceptions import FaceMatchingUnavailableError
from app.core.ids import (
    canonical_pair,
    content_face_id,
    content_id_for_object,
    event_member_id,
    face_identity_id,
    friendship_id,
)
from app.core.retry import RetryConfig
from app.models import (
    Content,
    ContentFace,
    Event,
    EventMember,
    FaceIdentity,
    Friendship,
    User,
)
from app.models.content import ProcessingStatus
from app.models.event import EventRole, MembershipStatus
from app.models.face_identity import FaceIdentityStatus
from app.models.friendship import FriendshipStatus
from app.services.face_matching import BoundingBox, InMemoryFaceMatchingClient


# =============================================================================
# Factory Functions for Test Objects
# =============================================================================

def make_user(
    db_session=None,
    id: str = None,
    username: str = None,
    display_name: str = None,
    enrolled: bool = False,
    is_active: bool = True,
    **overrides
) -> User:
    """
    Factory function to create User instances for testing.

    Args:
        db_session: Optional SQLAlchemy session. If provided, adds and commits the user.
        id: UUID string. If None, generates a new UUID.
        username: Unique handle. If None, derived from the id.
        display_name: Name shown on feed entries.
        enrolled: Set enrolled_at, as if the profile face was enrolled.
            This only touches the row; the face client must be set up separately.
        is_active: Soft state.
        **overrides: Any additional User model fields.

    Returns:
        User instance (persisted if db_session provided).

    Example:
        alice = make_user(db_session=session, username="alice")
    """
    if id is None:
        id = str(uuid.uuid4())
    if username is None:
        username = f"user_{id.replace('-', '')[:12]}"

    user = User(
        id=id,
        username=username,
        display_name=display_name or username,
        is_active=is_active,
        enrolled_at=datetime.now(timezone.utc) if enrolled else None,
        **overrides
    )

    if db_session:
        db_session.add(user)
        db_session.commit()

    return user


def make_content(
    db_session=None,
    owner_id: str = None,
    object_key: str = None,
    processing_status: str = ProcessingStatus.COMPLETED.value,
    media_type: str = "photo",
    event_id: str = None,
    created_at: datetime = None,
    **overrides
) -> Content:
    """
    Factory function to create Content instances for testing.

    The id is derived from the object key the same way registration does.
    Defaults to COMPLETED so graph and feed tests can grant straight away;
    pipeline tests register content through ContentService instead.

    Args:
        db_session: Optional SQLAlchemy session. If provided, adds and commits the content.
        owner_id: Owning user id. Required.
        object_key: Object key. If None, a unique key under photos/{owner_id}/.
        processing_status: PENDING, PROCESSING, COMPLETED or FAILED.
        media_type: photo or video.
        event_id: Optional shared event.
        created_at: Upload time. If None, uses current UTC time.
        **overrides: Any additional Content model fields.

    Returns:
        Content instance (persisted if db_session provided).
    """
    if owner_id is None:
        raise ValueError("make_content needs an owner_id")
    if object_key is None:
        object_key = f"photos/{owner_id}/{uuid.uuid4().hex[:8]}.jpg"
    if created_at is None:
        created_at = datetime.now(timezone.utc)

    content = Content(
        id=content_id_for_object(object_key),
        owner_id=owner_id,
        object_key=object_key,
        media_type=media_type,
        event_id=event_id,
        processing_status=processing_status,
        processing_attempts=0,
        created_at=created_at,
        **overrides
    )

    if db_session:
        db_session.add(content)
        db_session.commit()

    return content


def make_friendship(
    db_session=None,
    user_a: str = None,
    user_b: str = None,
    status: str = FriendshipStatus.ACCEPTED.value,
    requester_id: str = None,
    accepted_at: datetime = None,
    **overrides
) -> Friendship:
    """
    Factory function to create Friendship instances for testing.

    The pair is stored canonically whatever order it is given in.

    Args:
        db_session: Optional SQLAlchemy session. If provided, adds and commits the friendship.
        user_a / user_b: The two user ids (any order).
        status: PENDING or ACCEPTED (default).
        requester_id: Who asked. Defaults to user_a as given.
        accepted_at: Defaults to now for ACCEPTED friendships.
        **overrides: Any additional Friendship model fields.

    Returns:
        Friendship instance (persisted if db_session provided).

    Example:
        make_friendship(db_session=session, user_a=alice.id, user_b=bob.id)
    """
    low, high = canonical_pair(user_a, user_b)
    if requester_id is None:
        requester_id = user_a
    if accepted_at is None and status == FriendshipStatus.ACCEPTED.value:
        accepted_at = datetime.now(timezone.utc)

    friendship = Friendship(
        id=friendship_id(low, high),
        user_a_id=low,
        user_b_id=high,
        status=status,
        requester_id=requester_id,
        accepted_at=accepted_at,
        **overrides
    )

    if db_session:
        db_session.add(friendship)
        db_session.commit()

    return friendship


def make_face_identity(
    db_session=None,
    owner_id: str = None,
    signature_ref: str = None,
    content_id: str = None,
    resolved_to: str = None,
    confidence: int = None,
    **overrides
) -> FaceIdentity:
    """
    Factory function to create FaceIdentity instances for testing.

    Args:
        db_session: Optional SQLAlchemy session. If provided, adds and commits the identity.
        owner_id: Directory owner. Required.
        signature_ref: Face signature. If None, a unique one is generated.
        content_id: First/last seen content id.
        resolved_to: If given, the identity starts RESOLVED to this user.
        confidence: resolved_confidence for resolved identities.
        **overrides: Any additional FaceIdentity model fields.

    Returns:
        FaceIdentity instance (persisted if db_session provided).
    """
    if signature_ref is None:
        signature_ref = f"sig-{uuid.uuid4().hex[:8]}"
    if content_id is None:
        content_id = str(uuid.uuid4())
    now = datetime.now(timezone.utc)

    identity = FaceIdentity(
        id=face_identity_id(owner_id, signature_ref),
        owner_id=owner_id,
        signature_ref=signature_ref,
        status=FaceIdentityStatus.RESOLVED.value if resolved_to else FaceIdentityStatus.UNKNOWN.value,
        resolved_to_user_id=resolved_to,
        resolved_confidence=confidence if resolved_to else None,
        resolved_at=now if resolved_to else None,
        first_seen_content_id=content_id,
        last_seen_content_id=content_id,
        detection_count=1,
        created_at=now,
        updated_at=now,
        **overrides
    )

    if db_session:
        db_session.add(identity)
        db_session.commit()

    return identity


def make_content_face(
    db_session=None,
    content: Content = None,
    identity: FaceIdentity = None,
    confidence: int = 90,
    **overrides
) -> ContentFace:
    """
    Factory function linking a content item to a face identity.

    The id uses the identity's signature, as the access decision run does.
    """
    content_face = ContentFace(
        id=content_face_id(content.id, identity.signature_ref),
        content_id=content.id,
        face_identity_id=identity.id,
        bounding_box=BoundingBox(left=0.1, top=0.1, width=0.2, height=0.2).to_json(),
        confidence=confidence,
        **overrides
    )

    if db_session:
        db_session.add(content_face)
        db_session.commit()

    return content_face


def make_event(
    db_session=None,
    owner_id: str = None,
    name: str = "Test Party",
    member_ids: tuple = (),
    **overrides
) -> Event:
    """
    Factory function to create a shared Event with its OWNER membership.

    Args:
        db_session: Optional SQLAlchemy session. If provided, adds and commits
            the event and its memberships.
        owner_id: Creator, added as ACCEPTED OWNER.
        name: Display name.
        member_ids: Further users added as ACCEPTED members.
        **overrides: Any additional Event model fields.

    Returns:
        Event instance (persisted if db_session provided).
    """
    event = Event(id=str(uuid.uuid4()), owner_id=owner_id, name=name, **overrides)
    now = datetime.now(timezone.utc)
    members = [
        EventMember(
            id=event_member_id(event.id, user_id),
            event_id=event.id,
            user_id=user_id,
            role=EventRole.OWNER.value if user_id == owner_id else EventRole.MEMBER.value,
            status=MembershipStatus.ACCEPTED.value,
            joined_at=now,
        )
        for user_id in (owner_id,) + tuple(member_ids)
    ]

    if db_session:
        db_session.add(event)
        db_session.flush()
        db_session.add_all(members)
        db_session.commit()

    return event


async def enroll_face(client: InMemoryFaceMatchingClient, db_session, user: User, confidence: int = 99) -> str:
    """
    Enroll a user's profile face in the in-memory client and mark the row enrolled.

    The user's "person" in the client is the user id, so photos of them are
    set up with client.assign_signature(sig, user.id).

    Returns:
        The profile object key
    """
    profile_key = f"photos/{user.id}/profile.jpg"
    signature = f"sig-profile-{user.id}"
    client.add_image(profile_key, [signature])
    client.assign_signature(signature, user.id, confidence)
    await client.enroll(profile_key, user.id)
    user.profile_photo_key = profile_key
    user.enrolled_at = datetime.now(timezone.utc)
    db_session.commit()
    return profile_key


# =============================================================================
# Face matching and retry fixtures
# =============================================================================


@pytest.fixture
def face_client():
    """Fresh in-memory face matching client."""
    return InMemoryFaceMatchingClient()


@pytest.fixture
def fast_retry():
    """Retry config without sleeping, for tests that exercise retries."""
    return RetryConfig(
        max_attempts=2,
        base_delay=0,
        max_delay=0,
        jitter=False,
        retryable_exceptions=(FaceMatchingUnavailableError,),
    )


# =============================================================================
# Database Session Fixtures
# =============================================================================


@pytest.fixture(scope="session", autouse=True)
def clear_app_overrides():
    """
    Session-scoped fixture to ensure app.dependency_overrides is cleared
    at the start and end of the test session.

    This prevents state pollution between test modules.
    """
    from main import app

    # Clear any existing overrides at session start
    app.dependency_overrides.clear()

    yield

    # Clear overrides at session end
    app.dependency_overrides.clear()


@pytest.fixture(scope="function")
def db_session():
    """
    Create an in-memory SQLite database for testing

    Yields:
        SQLAlchemy Session for test database

    Cleanup:
        Drops all tables after test completes
    """
    # Create in-memory database
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False}
    )

    # Create all tables
    Base.metadata.create_all(engine)

    # Create session
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = SessionLocal()

    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(engine)


@pytest.fixture(scope="function")
def session_factory():
    """
    Temp-file SQLite database shared by every session the factory opens

    Services that open their own sessions (access decisions, feed
    materializer, retroactive matching) take this factory.

    Yields:
        sessionmaker bound to the temp database
    """
    fd, path = tempfile.mkstemp(suffix=".db")
    os.close(fd)
    engine = create_engine(f"sqlite:///{path}", connect_args={"check_same_thread": False})
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    try:
        yield factory
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()
        if os.path.exists(path):
            os.remove(path)


@pytest.fixture
def db(session_factory):
    """A session on the session_factory database, for setup and assertions."""
    session = session_factory()
    try:
        yield session
    finally:
        session.close()
