"""SQLAlchemy ORM models"""
from app.models.user import User
from app.models.event import Event, EventMember
from app.models.content import Content
from app.models.face_identity import FaceIdentity
from app.models.content_face import ContentFace
from app.models.friendship import Friendship
from app.models.recipient_edge import RecipientEdge
from app.models.feed_entry import FeedEntry
from app.models.change_feed import EdgeChange, StreamCheckpoint, DeadLetter
from app.models.retroactive_job import RetroactiveJob

__all__ = [
    "User",
    "Event",
    "EventMember",
    "Content",
    "FaceIdentity",
    "ContentFace",
    "Friendship",
    "RecipientEdge",
    "FeedEntry",
    "EdgeChange",
    "StreamCheckpoint",
    "DeadLetter",
    "RetroactiveJob",
]
