"""Pydantic schemas for friendships"""
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, model_validator


class FriendshipCreate(BaseModel):
    """Friend request from the viewer to another user."""
    addressee_id: str = Field(..., min_length=1, max_length=36)


class FriendshipResponse(BaseModel):
    id: str
    user_a_id: str
    user_b_id: str
    status: str
    requester_id: str
    created_at: datetime
    accepted_at: Optional[datetime] = None
    retroactive_completed_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class FriendshipActionResponse(BaseModel):
    friendship: FriendshipResponse
    changed: bool = Field(..., description="True when this call created or transitioned the friendship")


class FriendshipEvent(BaseModel):
    """Social-graph trigger emitted by an upstream friendship system."""
    type: Literal['FRIENDSHIP_ACCEPTED'] = 'FRIENDSHIP_ACCEPTED'
    user_a_id: str = Field(..., min_length=1, max_length=36)
    user_b_id: str = Field(..., min_length=1, max_length=36)

    @model_validator(mode='after')
    def validate_distinct(self):
        if self.user_a_id == self.user_b_id:
            raise ValueError("A friendship needs two different users")
        return self


class FriendshipListResponse(BaseModel):
    friends: List[FriendshipResponse]
    pending: List[FriendshipResponse]
