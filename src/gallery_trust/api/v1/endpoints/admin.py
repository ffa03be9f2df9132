"""Administrator review endpoints: the message queue and flagged accounts."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query

from gallery_trust.api.v1.dependencies import (
    AbuseEngineDep,
    AdminUserDep,
    ModerationQueueDep,
    RateLimit,
)
from gallery_trust.schemas.common import Pagination
from gallery_trust.schemas.moderation import (
    ClearFlagsRequest,
    FlaggedUserResponse,
    FlagMessageRequest,
    MessageResponse,
    PendingMessagesResponse,
    RejectMessageRequest,
)
from gallery_trust.services.moderation import SORT_CREATED_AT
from gallery_trust.services.rate_limit import RateLimitTier

router = APIRouter(
    prefix="/admin",
    tags=["admin", "moderation"],
    dependencies=[Depends(RateLimit(RateLimitTier.GENERAL))],
)


@router.get("/messages/pending", response_model=PendingMessagesResponse)
async def get_pending_messages(
    admin: AdminUserDep,
    queue: ModerationQueueDep,
    flagged_only: bool = Query(False),
    sort_by: str = Query(SORT_CREATED_AT),
    page: int = Query(1),
    limit: int = Query(20),
) -> PendingMessagesResponse:
    """List messages awaiting review, optionally only flagged ones."""
    messages, total = queue.list_pending(
        flagged_only=flagged_only,
        sort_by=sort_by,
        page=page,
        limit=limit,
    )
    return PendingMessagesResponse(
        messages=[MessageResponse.model_validate(message) for message in messages],
        pagination=Pagination.build(page, limit, total),
    )


@router.post("/messages/{message_id}/approve", response_model=MessageResponse)
async def approve_message(
    message_id: str,
    admin: AdminUserDep,
    queue: ModerationQueueDep,
) -> MessageResponse:
    """Approve a message held for review."""
    return MessageResponse.model_validate(queue.approve(message_id, admin.id))


@router.post("/messages/{message_id}/reject")
async def reject_message(
    message_id: str,
    admin: AdminUserDep,
    queue: ModerationQueueDep,
    payload: RejectMessageRequest | None = None,
) -> dict[str, Any]:
    """Reject a message held for review."""
    reason = payload.reason if payload else None
    message = queue.reject(message_id, admin.id, reason)
    data = MessageResponse.model_validate(message).model_dump(mode="json")
    if reason:
        data["reason"] = reason
    return data


@router.post("/messages/{message_id}/flag")
async def flag_message(
    message_id: str,
    payload: FlagMessageRequest,
    admin: AdminUserDep,
    queue: ModerationQueueDep,
) -> dict[str, Any]:
    """Attach a flag reason so the message sorts into the flagged queue."""
    message = queue.flag(message_id, payload.reason)
    return {"id": message.id, "flagged": True, "reason": message.flagged_reason}


@router.get("/suspicious/flagged")
async def get_flagged_users(
    admin: AdminUserDep,
    engine: AbuseEngineDep,
    page: int = Query(1),
    limit: int = Query(20),
) -> dict[str, Any]:
    """List flagged accounts with their most recent flags."""
    users = engine.list_flagged_users(page=page, limit=limit)
    total = engine.count_flagged_users()
    return {
        "users": [
            FlaggedUserResponse.model_validate(user).model_dump(mode="json") for user in users
        ],
        "pagination": Pagination.build(page, limit, total).model_dump(),
    }


@router.post("/suspicious/{user_id}/clear")
async def clear_user_flags(
    user_id: str,
    payload: ClearFlagsRequest,
    admin: AdminUserDep,
    engine: AbuseEngineDep,
) -> dict[str, str]:
    """Return a flagged account to active."""
    engine.clear_flags(user_id, admin.id, payload.review_notes)
    return {"user_id": user_id, "status": "active", "cleared_by": admin.id}


@router.get("/suspicious/stats")
async def get_suspicious_stats(
    admin: AdminUserDep,
    engine: AbuseEngineDep,
) -> dict[str, Any]:
    """Flagged account count and flags raised in the last day, by name."""
    return engine.flag_statistics(hours=24)
