"""
Validation helpers for FastAPI endpoints.

Reusable type annotations for path parameters with built-in UUID
validation. Every id generated by this service is a UUID (uuid5 for
deterministic ids, uuid4 otherwise); user ids come from upstream and are
not validated here.
"""
from uuid import UUID
from fastapi import Path
from typing import Annotated


# Usage: async def get_content(content_id: ContentUUID):
ContentUUID = Annotated[
    UUID,
    Path(description="Content UUID", example="550e8400-e29b-41d4-a716-446655440000")
]

FriendshipUUID = Annotated[
    UUID,
    Path(description="Friendship UUID", example="550e8400-e29b-41d4-a716-446655440000")
]

EventUUID = Annotated[
    UUID,
    Path(description="Shared event UUID", example="550e8400-e29b-41d4-a716-446655440000")
]

DeadLetterUUID = Annotated[
    UUID,
    Path(description="Dead letter UUID", example="550e8400-e29b-41d4-a716-446655440000")
]
