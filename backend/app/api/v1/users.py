"""User API endpoints

Users are created by the upstream identity provider and registered here
so the access graph can refer to them.

Endpoints:
    POST /users                 Register a user (idempotent on id)
    GET  /users/me              The acting user
    POST /users/me/enroll       Enroll the viewer's profile face
"""
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, status
from sqlalchemy.orm import Session
import logging

from app.api.v1.auth import get_current_user
from app.core.database import get_db
from app.core.exceptions import FaceMatchingRequestError, FaceMatchingUnavailableError
from app.models.user import User
from app.schemas.user import EnrollRequest, EnrollResponse, UserCreate, UserResponse
from app.services.retroactive_matching_service import (
    RetroactiveMatchingService,
    get_retroactive_matching_service,
)
from app.services.user_service import UserService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/users", tags=["users"])


@router.post(
    "",
    response_model=UserResponse,
    status_code=status.HTTP_201_CREATED,
    responses={400: {"description": "Username already exists"}},
)
async def register_user(
    user_data: UserCreate,
    db: Session = Depends(get_db),
):
    service = UserService(db)
    try:
        user = service.register_user(
            username=user_data.username,
            display_name=user_data.display_name,
            phone_number=user_data.phone_number,
            user_id=user_data.id,
        )
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e)
        )
    return UserResponse.model_validate(user)


@router.get("/me", response_model=UserResponse)
async def get_me(current_user: User = Depends(get_current_user)):
    return UserResponse.model_validate(current_user)


@router.post(
    "/me/enroll",
    response_model=EnrollResponse,
    responses={
        422: {"description": "No face found in the profile photo"},
        503: {"description": "Face matching unavailable"},
    },
)
async def enroll_profile(
    payload: EnrollRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    retroactive: RetroactiveMatchingService = Depends(get_retroactive_matching_service),
):
    """
    Enroll the viewer's profile face

    - Resolves the viewer's own unknown faces that match the new profile
    - Re-queues retroactive matching for friendships where the viewer is
      the trusted user, so friends' older photos of them get granted
    """
    service = UserService(db)
    try:
        resolved = await service.enroll_profile(current_user.id, payload.image_ref)
    except FaceMatchingRequestError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(e)
        )
    except FaceMatchingUnavailableError as e:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=str(e)
        )

    requeued = retroactive.requeue_for_trusted_user(current_user.id)
    if requeued:
        background_tasks.add_task(retroactive.sweep_incomplete)

    db.refresh(current_user)
    return EnrollResponse(
        user=UserResponse.model_validate(current_user),
        own_identities_resolved=resolved,
        retroactive_jobs_requeued=requeued,
    )
