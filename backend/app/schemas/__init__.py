"""Pydantic schemas for request/response validation"""
from app.schemas.content import (
    ContentCreate,
    ContentResponse,
    ContentRegisterResponse,
    ShareRequest,
    RecipientEdgeResponse,
    ShareResponse,
    ContentAccessResponse,
    ProcessingResultResponse,
)
from app.schemas.event import (
    EventCreate,
    EventResponse,
    EventMemberInvite,
    EventMemberResponse,
    EventInviteResponse,
    EventAcceptResponse,
    EventDetailResponse,
)
from app.schemas.face import (
    FaceIdentityResponse,
    FaceIdentityListResponse,
)
from app.schemas.feed import (
    FeedItem,
    FeedResponse,
)
from app.schemas.friendship import (
    FriendshipCreate,
    FriendshipResponse,
    FriendshipActionResponse,
    FriendshipEvent,
    FriendshipListResponse,
)
from app.schemas.pipeline import (
    DeadLetterResponse,
    ReplayResponse,
    FeedRebuildResponse,
    FeedVerifyResponse,
    RetroactiveJobResponse,
    ChangeFeedPollResponse,
    ChangeFeedPositionResponse,
    CleanupResponse,
)
from app.schemas.user import (
    UserCreate,
    UserResponse,
    EnrollRequest,
    EnrollResponse,
)

__all__ = [
    # Content
    "ContentCreate",
    "ContentResponse",
    "ContentRegisterResponse",
    "ShareRequest",
    "RecipientEdgeResponse",
    "ShareResponse",
    "ContentAccessResponse",
    "ProcessingResultResponse",
    # Events
    "EventCreate",
    "EventResponse",
    "EventMemberInvite",
    "EventMemberResponse",
    "EventInviteResponse",
    "EventAcceptResponse",
    "EventDetailResponse",
    # Face directory
    "FaceIdentityResponse",
    "FaceIdentityListResponse",
    # Feed
    "FeedItem",
    "FeedResponse",
    # Friendships
    "FriendshipCreate",
    "FriendshipResponse",
    "FriendshipActionResponse",
    "FriendshipEvent",
    "FriendshipListResponse",
    # Pipeline operations
    "DeadLetterResponse",
    "ReplayResponse",
    "FeedRebuildResponse",
    "FeedVerifyResponse",
    "RetroactiveJobResponse",
    "ChangeFeedPollResponse",
    "ChangeFeedPositionResponse",
    "CleanupResponse",
    # Users
    "UserCreate",
    "UserResponse",
    "EnrollRequest",
    "EnrollResponse",
]
