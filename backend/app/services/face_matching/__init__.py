"""Face Matching Package

Pluggable clients for the external face recognition capability.

Available clients:
- BaseFaceMatchingClient: Abstract base class for all clients
- HttpFaceMatchingClient: Remote service over HTTP (FACE_MATCHING_URL set)
- InMemoryFaceMatchingClient: Deterministic in-process client
"""
import logging
from typing import Optional

from app.core.config import settings
from app.services.face_matching.base import (
    BaseFaceMatchingClient,
    BoundingBox,
    CandidateMatch,
    DetectedFace,
)
from app.services.face_matching.http_client import HttpFaceMatchingClient
from app.services.face_matching.mock import InMemoryFaceMatchingClient

logger = logging.getLogger(__name__)

_face_matching_client: Optional[BaseFaceMatchingClient] = None


def get_face_matching_client() -> BaseFaceMatchingClient:
    """Get the process-wide face matching client, created from settings."""
    global _face_matching_client
    if _face_matching_client is None:
        if settings.use_remote_face_matching:
            _face_matching_client = HttpFaceMatchingClient(
                base_url=settings.FACE_MATCHING_URL,
                api_key=settings.FACE_MATCHING_API_KEY,
                timeout_seconds=settings.FACE_MATCHING_TIMEOUT_SECONDS,
            )
        else:
            _face_matching_client = InMemoryFaceMatchingClient()
        logger.info(
            f"Face matching client initialized: {_face_matching_client.get_client_name()}",
            extra={"event_type": "face_matching_client_init"},
        )
    return _face_matching_client


def set_face_matching_client(client: Optional[BaseFaceMatchingClient]) -> None:
    """Replace the process-wide client (None resets to settings on next use)."""
    global _face_matching_client
    _face_matching_client = client


__all__ = [
    "BaseFaceMatchingClient",
    "BoundingBox",
    "CandidateMatch",
    "DetectedFace",
    "HttpFaceMatchingClient",
    "InMemoryFaceMatchingClient",
    "get_face_matching_client",
    "set_face_matching_client",
]
