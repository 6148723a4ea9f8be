"""Viewer identity for API endpoints

Authentication happens upstream (API gateway). The gateway forwards the
authenticated subject in the X-User-Id header; this module turns it into
the acting user for a request.
"""
import logging

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session
from typing import Optional

from app.core.database import get_db
from app.models.user import User

logger = logging.getLogger(__name__)

VIEWER_HEADER = "X-User-Id"


def get_current_user(
    x_user_id: Optional[str] = Header(None, alias=VIEWER_HEADER),
    db: Session = Depends(get_db),
) -> User:
    """
    Dependency to get the acting user from the gateway header

    Raises:
        HTTPException: 401 if the header is missing or names no active user
    """
    if not x_user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )

    user = db.get(User, x_user_id)
    if user is None or not user.is_active:
        logger.warning(
            "Request for unknown or inactive user",
            extra={"event_type": "viewer_rejected", "user_id": x_user_id},
        )
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
        )
    return user
