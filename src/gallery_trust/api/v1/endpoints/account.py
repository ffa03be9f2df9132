"""Endpoints describing the caller's own standing."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from gallery_trust.api.v1.dependencies import (
    CurrentUserDep,
    NewAccountThrottleDep,
    RateLimit,
    RecorderDep,
)
from gallery_trust.schemas.activity import (
    ActivitySummaryResponse,
    RecentIP,
    UploadAllowanceResponse,
)
from gallery_trust.services.rate_limit import RateLimitTier

router = APIRouter(
    prefix="/me",
    tags=["account"],
    dependencies=[Depends(RateLimit(RateLimitTier.GENERAL))],
)


@router.get("/activity", response_model=ActivitySummaryResponse)
async def get_my_activity(
    current_user: CurrentUserDep,
    recorder: RecorderDep,
    days: int = Query(30, ge=1, le=365),
) -> ActivitySummaryResponse:
    """Summarise the caller's recent activity and the addresses it came from."""
    return ActivitySummaryResponse(
        user_id=current_user.id,
        days=days,
        actions=recorder.activity_summary(current_user.id, days=days),
        recent_ips=[RecentIP(**row) for row in recorder.recent_ips(current_user.id)],
    )


@router.get("/upload-allowance", response_model=UploadAllowanceResponse)
async def get_upload_allowance(
    current_user: CurrentUserDep,
    throttle: NewAccountThrottleDep,
) -> UploadAllowanceResponse:
    """Report whether the new-account daily cap currently blocks uploads."""
    decision = throttle.check(current_user.id, current_user.created_at)
    return UploadAllowanceResponse(
        limited=decision.limited,
        new_account=throttle.is_new_account(current_user.created_at),
        count=decision.count,
        limit=decision.limit,
        reason=decision.reason,
        retry_after_seconds=decision.retry_after_seconds,
    )
