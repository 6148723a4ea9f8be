"""Pydantic schemas for content registration and sharing"""
from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator


class ContentCreate(BaseModel):
    """Object-created notification from object storage."""
    owner_id: str = Field(..., min_length=1, max_length=36, description="Uploading user")
    object_key: str = Field(
        ...,
        min_length=1,
        max_length=512,
        description="Object key, must be under photos/{owner_id}/",
    )
    thumbnail_key: Optional[str] = Field(None, max_length=512)
    media_type: Literal['photo', 'video'] = Field('photo', description="Kind of media")
    event_id: Optional[str] = Field(None, description="Shared event the content is contributed to")

    @field_validator('object_key')
    @classmethod
    def validate_object_key(cls, v):
        if '..' in v.split('/'):
            raise ValueError("Object key must not contain '..' segments")
        return v

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "owner_id": "7f9c2d5e-0b1a-4c3d-8e6f-1a2b3c4d5e6f",
                    "object_key": "photos/7f9c2d5e-0b1a-4c3d-8e6f-1a2b3c4d5e6f/IMG_0001.jpg",
                    "media_type": "photo",
                }
            ]
        }
    }


class ContentResponse(BaseModel):
    """Content row as seen by its owner."""
    id: str
    owner_id: str
    object_key: str
    thumbnail_key: Optional[str] = None
    media_type: str
    event_id: Optional[str] = None
    processing_status: str
    processing_attempts: int
    failure_reason: Optional[str] = None
    created_at: datetime
    processed_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class ContentRegisterResponse(BaseModel):
    """Result of an object-created notification."""
    content: ContentResponse
    created: bool = Field(..., description="False when the notification was a redelivery")


class ShareRequest(BaseModel):
    """Manual share of owned content."""
    recipient_id: str = Field(..., min_length=1, max_length=36)


class RecipientEdgeResponse(BaseModel):
    """One access grant."""
    id: str
    content_id: str
    recipient_id: str
    content_owner_id: str
    method: str
    confidence: int
    provenance: str
    created_at: datetime

    model_config = {"from_attributes": True}


class ShareResponse(BaseModel):
    edge: RecipientEdgeResponse
    created: bool


class ContentAccessResponse(BaseModel):
    """Grants on a piece of content, visible to its owner only."""
    content_id: str
    edges: List[RecipientEdgeResponse]


class ProcessingResultResponse(BaseModel):
    """Outcome of an access decision run."""
    content_id: str
    status: str
    faces_detected: int = 0
    grants_created: int = 0
    outcomes: Dict[str, int] = Field(default_factory=dict)
    error: Optional[str] = None
