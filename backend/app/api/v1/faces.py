"""
Face identity API

A face directory is private to its owner: viewers only ever see the
identities detected in their own content.
"""
from typing import Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from app.api.v1.auth import get_current_user
from app.core.database import get_db
from app.models.face_identity import FaceIdentityStatus
from app.models.user import User
from app.schemas.face import FaceIdentityListResponse, FaceIdentityResponse
from app.services.face_identity_service import FaceIdentityService

router = APIRouter(prefix="/faces", tags=["faces"])


@router.get("", response_model=FaceIdentityListResponse)
async def list_faces(
    status_filter: Optional[Literal['UNKNOWN', 'RESOLVED']] = Query(None, alias="status"),
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_db),
    viewer: User = Depends(get_current_user),
):
    identities = FaceIdentityService(db).list_for_owner(
        viewer.id,
        status=FaceIdentityStatus(status_filter) if status_filter else None,
        limit=limit,
    )
    return FaceIdentityListResponse(
        identities=[FaceIdentityResponse.model_validate(i) for i in identities],
        total=len(identities),
    )


@router.get("/{identity_id}", response_model=FaceIdentityResponse)
async def get_face(
    identity_id: str,
    db: Session = Depends(get_db),
    viewer: User = Depends(get_current_user),
):
    identity = FaceIdentityService(db).get_for_owner(viewer.id, identity_id)
    if identity is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Face identity {identity_id} not found",
        )
    return FaceIdentityResponse.model_validate(identity)
