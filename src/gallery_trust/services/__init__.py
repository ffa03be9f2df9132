# src/gallery_trust/services/__init__.py
"""Trust-and-safety services."""

from .abuse import AbuseHeuristicsEngine, PostActionChecks
from .activity import ActivityRecorder
from .moderation import ModerationQueue
from .new_account import NewAccountThrottle
from .rate_limit import RateLimiter, RateLimitTier

__all__ = [
    "AbuseHeuristicsEngine",
    "ActivityRecorder",
    "ModerationQueue",
    "NewAccountThrottle",
    "PostActionChecks",
    "RateLimitTier",
    "RateLimiter",
]
