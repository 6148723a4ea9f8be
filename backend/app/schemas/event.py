"""Pydantic schemas for shared events"""
from datetime import date as date_type
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, model_validator


class EventCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    event_date: Optional[date_type] = None
    starts_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None

    @model_validator(mode='after')
    def validate_window(self):
        if self.starts_at and self.ends_at and self.ends_at < self.starts_at:
            raise ValueError("ends_at must not be before starts_at")
        return self


class EventResponse(BaseModel):
    id: str
    owner_id: str
    name: str
    event_date: Optional[date_type] = None
    starts_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class EventMemberInvite(BaseModel):
    user_id: str = Field(..., min_length=1, max_length=36)


class EventMemberResponse(BaseModel):
    id: str
    event_id: str
    user_id: str
    role: str
    status: str
    invited_by_id: Optional[str] = None
    created_at: datetime
    joined_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class EventInviteResponse(BaseModel):
    member: EventMemberResponse
    created: bool


class EventAcceptResponse(BaseModel):
    member: EventMemberResponse
    grants_created: int


class EventDetailResponse(EventResponse):
    members: List[EventMemberResponse] = []
