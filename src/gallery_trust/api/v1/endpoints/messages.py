"""Message sending for the gallery platform, routed through moderation."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, status

from gallery_trust.api.v1.dependencies import (
    ActiveUserDep,
    ModerationQueueDep,
    RateLimit,
    SessionDep,
)
from gallery_trust.core.errors import BadRequestError
from gallery_trust.models import Message, User
from gallery_trust.models.user import USER_STATUS_ACTIVE
from gallery_trust.schemas.moderation import MessageCreate, MessageResponse
from gallery_trust.services.activity import request_context
from gallery_trust.services.rate_limit import RateLimitTier

router = APIRouter(prefix="/messages", tags=["messages"])

VALID_CONTEXT_TYPES = frozenset({"artist", "gallery", "collection", "artwork", "general"})


@router.post(
    "/",
    status_code=status.HTTP_201_CREATED,
    response_model=MessageResponse,
    dependencies=[Depends(RateLimit(RateLimitTier.MESSAGE))],
)
async def send_message(
    message_data: MessageCreate,
    request: Request,
    current_user: ActiveUserDep,
    db: SessionDep,
    queue: ModerationQueueDep,
) -> Message:
    """Send a message; concerning messages are held for review."""
    if message_data.recipient_id == current_user.id:
        raise BadRequestError("Cannot send message to yourself")

    recipient = (
        db.query(User)
        .filter(User.id == message_data.recipient_id, User.status == USER_STATUS_ACTIVE)
        .first()
    )
    if recipient is None:
        raise BadRequestError("Recipient not found or is inactive")

    if message_data.context_type and message_data.context_type not in VALID_CONTEXT_TYPES:
        raise BadRequestError("Invalid context type")

    ip_address, user_agent = request_context(request)
    return queue.submit(
        sender_id=current_user.id,
        recipient_id=recipient.id,
        body=message_data.body,
        subject=message_data.subject,
        context_type=message_data.context_type,
        context_id=message_data.context_id,
        tone_score=message_data.tone_score,
        flagged_reason=message_data.flagged_reason,
        ip_address=ip_address,
        user_agent=user_agent,
    )
