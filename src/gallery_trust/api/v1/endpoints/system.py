"""System and transparency endpoints."""

from __future__ import annotations

import time

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from gallery_trust.api.v1.dependencies import RateLimit, SessionDep
from gallery_trust.core.settings import settings
from gallery_trust.services.rate_limit import RateLimitTier

router = APIRouter(prefix="/system", tags=["system", "transparency"])


@router.get("/config", dependencies=[Depends(RateLimit(RateLimitTier.PUBLIC))])
async def get_public_config() -> dict[str, object]:
    """Return a sanitized snapshot of public trust-and-safety configuration.

    Excludes secrets and connection strings; suitable for transparency UIs.
    """
    return {
        "app": {
            "name": settings.app_name,
            "version": settings.app_version,
            "debug": settings.debug,
        },
        "rate_limits": {
            name: {"max_requests": limit, "window_seconds": window}
            for name, (limit, window) in settings.rate_limit_tiers.items()
        },
        "new_accounts": {
            "days": settings.new_account_days,
            "daily_upload_limit": settings.new_account_upload_limit,
        },
        "moderation": {
            "tone_review_threshold": settings.tone_review_threshold,
        },
    }


@router.get("/health")
async def get_system_health(db: SessionDep) -> dict[str, object]:
    """Health check including database connectivity; never rate limited."""
    try:
        db.execute(text("SELECT 1"))
        db_status = "healthy"
    except SQLAlchemyError as e:
        db_status = f"unhealthy: {str(e)}"

    return {
        "status": "healthy" if db_status == "healthy" else "unhealthy",
        "timestamp": int(time.time()),
        "components": {"database": db_status},
        "version": settings.app_version,
    }
