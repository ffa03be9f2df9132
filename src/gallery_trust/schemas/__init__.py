# src/gallery_trust/schemas/__init__.py
"""Pydantic schemas for the trust-and-safety API."""

from .activity import (
    ActivityMetadata,
    ActivitySummaryResponse,
    ClearFlagsMetadata,
    FlagMetadata,
    RecentIP,
    ReviewMetadata,
    UploadAllowanceResponse,
)
from .common import Pagination
from .moderation import (
    ClearFlagsRequest,
    FlaggedUserResponse,
    FlagMessageRequest,
    MessageCreate,
    MessageResponse,
    PendingMessagesResponse,
    RejectMessageRequest,
)

__all__ = [
    "ActivityMetadata",
    "ActivitySummaryResponse",
    "ClearFlagsMetadata",
    "ClearFlagsRequest",
    "FlagMessageRequest",
    "FlagMetadata",
    "FlaggedUserResponse",
    "MessageCreate",
    "MessageResponse",
    "Pagination",
    "PendingMessagesResponse",
    "RecentIP",
    "RejectMessageRequest",
    "ReviewMetadata",
    "UploadAllowanceResponse",
]
