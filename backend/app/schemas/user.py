"""Pydantic schemas for users and profile enrollment"""
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class UserCreate(BaseModel):
    """Register a user known to the upstream identity provider."""
    id: Optional[str] = Field(None, max_length=36, description="Upstream subject id")
    username: str = Field(..., min_length=3, max_length=50)
    display_name: Optional[str] = Field(None, max_length=100)
    phone_number: Optional[str] = Field(None, max_length=32)


class UserResponse(BaseModel):
    id: str
    username: str
    display_name: Optional[str] = None
    phone_number: Optional[str] = None
    profile_photo_key: Optional[str] = None
    enrolled_at: Optional[datetime] = None
    is_active: bool
    created_at: datetime

    model_config = {"from_attributes": True}


class EnrollRequest(BaseModel):
    """Profile photo to enroll with face matching."""
    image_ref: str = Field(..., min_length=1, max_length=512)


class EnrollResponse(BaseModel):
    user: UserResponse
    own_identities_resolved: int
    retroactive_jobs_requeued: int
