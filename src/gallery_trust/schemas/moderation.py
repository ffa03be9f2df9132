"""Moderation-related Pydantic schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from gallery_trust.core.settings import settings

from .common import Pagination

_REVIEW_TEXT_MAX = settings.review_text_max_length


class MessageCreate(BaseModel):
    """Schema for sending a message.

    ``tone_score`` and ``flagged_reason`` come from the tone-scoring
    collaborator when the sending client has already run it.
    """

    recipient_id: str
    body: str = Field(..., min_length=1, max_length=10_000)
    subject: str | None = Field(default=None, max_length=200)
    context_type: str | None = None
    context_id: str | None = None
    tone_score: float | None = Field(default=None, ge=0.0, le=1.0)
    flagged_reason: str | None = Field(default=None, max_length=_REVIEW_TEXT_MAX)


class MessageResponse(BaseModel):
    """Message as exposed to reviewers and senders."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    sender_id: str
    recipient_id: str
    subject: str | None
    body: str
    status: str
    tone_score: float | None
    flagged_reason: str | None
    context_type: str | None
    context_id: str | None
    reviewed_by: str | None
    reviewed_at: datetime | None
    created_at: datetime


class PendingMessagesResponse(BaseModel):
    """One page of the moderation queue."""

    messages: list[MessageResponse]
    pagination: Pagination


class RejectMessageRequest(BaseModel):
    """Optional reviewer reason for a rejection."""

    reason: str | None = Field(default=None, max_length=_REVIEW_TEXT_MAX)


class FlagMessageRequest(BaseModel):
    """Reason a reviewer flags a message for attention."""

    reason: str = Field(..., min_length=1, max_length=_REVIEW_TEXT_MAX)


class ClearFlagsRequest(BaseModel):
    """Reviewer notes required when clearing an account's flags."""

    model_config = ConfigDict(populate_by_name=True)

    review_notes: str = Field(
        ...,
        alias="reviewNotes",
        min_length=1,
        max_length=_REVIEW_TEXT_MAX,
    )


class FlaggedUserResponse(BaseModel):
    """Flagged account with its most recent flags."""

    user_id: str
    username: str | None
    email: str
    flagged_at: datetime
    flags: list[dict[str, Any]]
