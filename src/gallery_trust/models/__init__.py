# src/gallery_trust/models/__init__.py
"""SQLAlchemy models for the trust-and-safety core."""

from .activity import ActivityEvent
from .message import Message
from .user import User

__all__ = [
    "ActivityEvent",
    "Message",
    "User",
]
