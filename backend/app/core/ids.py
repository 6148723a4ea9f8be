"""
Deterministic identifiers.

Every row that workers may try to create more than once (redelivered
uploads, replayed friendship events, concurrent retroactive scans) gets a
uuid5 over its natural key. Two workers deriving the same row derive the
same primary key, and the uniqueness constraint does the rest.
"""
import uuid
from typing import Tuple

NAMESPACE = uuid.UUID("6f2c1e0a-3b7d-5c4e-9a81-2d0f4b6e8c13")


def _derive(kind: str, *parts: str) -> str:
    return str(uuid.uuid5(NAMESPACE, "|".join((kind,) + tuple(parts))))


def canonical_pair(user_a: str, user_b: str) -> Tuple[str, str]:
    """Order two user ids so (a, b) and (b, a) map to the same friendship."""
    if user_a == user_b:
        raise ValueError("A friendship needs two distinct users")
    return (user_a, user_b) if user_a < user_b else (user_b, user_a)


def content_id_for_object(object_key: str) -> str:
    return _derive("content", object_key)


def face_identity_id(owner_id: str, signature_ref: str) -> str:
    return _derive("face-identity", owner_id, signature_ref)


def content_face_id(content_id: str, signature_ref: str) -> str:
    return _derive("content-face", content_id, signature_ref)


def recipient_edge_id(content_id: str, recipient_id: str, method: str) -> str:
    return _derive("edge", content_id, recipient_id, method)


def feed_entry_id(recipient_id: str, content_id: str) -> str:
    return _derive("feed", recipient_id, content_id)


def friendship_id(user_a: str, user_b: str) -> str:
    low, high = canonical_pair(user_a, user_b)
    return _derive("friendship", low, high)


def event_member_id(event_id: str, user_id: str) -> str:
    return _derive("event-member", event_id, user_id)


def retroactive_job_id(friendship: str, owner_id: str, trusted_user_id: str) -> str:
    return _derive("retroactive", friendship, owner_id, trusted_user_id)
