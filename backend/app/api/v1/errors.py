"""Mapping from domain exceptions to HTTP errors"""
from fastapi import HTTPException, status

from app.core.exceptions import (
    ContentNotFoundError,
    EventMembershipError,
    FaceIdentityConflictError,
    FriendshipStateError,
    NotAuthorizedError,
)


def http_error(exc: Exception) -> HTTPException:
    """
    Translate a domain exception raised by a service.

    Content that exists but is not viewable is reported as 404, the same
    as content that does not exist.
    """
    if isinstance(exc, (ContentNotFoundError, LookupError)):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(exc, NotAuthorizedError):
        code = status.HTTP_403_FORBIDDEN
    elif isinstance(exc, (FriendshipStateError, EventMembershipError, FaceIdentityConflictError)):
        code = status.HTTP_409_CONFLICT
    elif isinstance(exc, ValueError):
        code = status.HTTP_400_BAD_REQUEST
    else:
        code = status.HTTP_500_INTERNAL_SERVER_ERROR
    return HTTPException(status_code=code, detail=str(exc))
