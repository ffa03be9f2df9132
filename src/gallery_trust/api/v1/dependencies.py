"""Shared API dependencies for authentication, services and rate limiting."""

from typing import Annotated

from fastapi import Depends, HTTPException, Request, Response, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from gallery_trust.core.errors import ForbiddenError
from gallery_trust.core.security import decode_subject
from gallery_trust.db.session import get_db
from gallery_trust.models import User
from gallery_trust.models.user import (
    USER_STATUS_DEACTIVATED,
    USER_STATUS_FLAGGED,
    USER_STATUS_SUSPENDED,
)
from gallery_trust.services.abuse import AbuseHeuristicsEngine
from gallery_trust.services.activity import ActivityRecorder
from gallery_trust.services.moderation import ModerationQueue
from gallery_trust.services.new_account import NewAccountThrottle
from gallery_trust.services.rate_limit import (
    RateLimiter,
    RateLimitTier,
    get_rate_limiter,
    request_actor_key,
)

# HTTP Bearer scheme for JWT authentication
bearer_scheme = HTTPBearer()
optional_bearer_scheme = HTTPBearer(auto_error=False)

# Type alias for database session dependency
SessionDep = Annotated[Session, Depends(get_db)]

# Statuses that may not perform gated actions such as sending messages.
RESTRICTED_STATUSES = frozenset(
    {USER_STATUS_FLAGGED, USER_STATUS_SUSPENDED, USER_STATUS_DEACTIVATED}
)


def _load_user(token: str, db: Session) -> User:
    subject = decode_subject(token)
    if subject is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
        )
    user = db.get(User, subject)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
        )
    return user


def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(bearer_scheme)],
    db: SessionDep,
) -> User:
    """Get the current authenticated user from the bearer token.

    Raises:
        HTTPException: If the token is invalid or the user does not exist
    """
    return _load_user(credentials.credentials, db)


def get_optional_user(
    credentials: Annotated[
        HTTPAuthorizationCredentials | None, Depends(optional_bearer_scheme)
    ],
    db: SessionDep,
) -> User | None:
    """Return the authenticated user when a valid token is present, else None."""
    if credentials is None:
        return None
    subject = decode_subject(credentials.credentials)
    if subject is None:
        return None
    return db.get(User, subject)


def get_active_user(user: Annotated[User, Depends(get_current_user)]) -> User:
    """Reject accounts whose trust state gates them from acting."""
    if user.status in RESTRICTED_STATUSES:
        raise ForbiddenError(f"Account is {user.status}")
    return user


def get_admin_user(user: Annotated[User, Depends(get_current_user)]) -> User:
    """Require the administrator role."""
    if not user.is_admin:
        raise ForbiddenError("Admin access required")
    return user


CurrentUserDep = Annotated[User, Depends(get_current_user)]
OptionalUserDep = Annotated[User | None, Depends(get_optional_user)]
ActiveUserDep = Annotated[User, Depends(get_active_user)]
AdminUserDep = Annotated[User, Depends(get_admin_user)]


def get_activity_recorder(db: SessionDep) -> ActivityRecorder:
    """Return an activity recorder bound to the request session."""
    return ActivityRecorder(db)


RecorderDep = Annotated[ActivityRecorder, Depends(get_activity_recorder)]


def get_abuse_engine(db: SessionDep, recorder: RecorderDep) -> AbuseHeuristicsEngine:
    """Return the abuse heuristics engine for this request."""
    return AbuseHeuristicsEngine(db, recorder)


def get_moderation_queue(db: SessionDep, recorder: RecorderDep) -> ModerationQueue:
    """Return the message moderation queue for this request."""
    return ModerationQueue(db, recorder)


def get_new_account_throttle(recorder: RecorderDep) -> NewAccountThrottle:
    """Return the new-account upload throttle for this request."""
    return NewAccountThrottle(recorder)


AbuseEngineDep = Annotated[AbuseHeuristicsEngine, Depends(get_abuse_engine)]
ModerationQueueDep = Annotated[ModerationQueue, Depends(get_moderation_queue)]
NewAccountThrottleDep = Annotated[NewAccountThrottle, Depends(get_new_account_throttle)]
RateLimiterDep = Annotated[RateLimiter, Depends(get_rate_limiter)]


class RateLimit:
    """Dependency enforcing one rate-limit tier on a route or router.

    Allowed responses carry the limit, remaining and reset headers; denials
    raise :class:`RateLimitedError` with the same headers plus Retry-After.
    """

    def __init__(self, tier: RateLimitTier = RateLimitTier.GENERAL) -> None:
        self.tier = tier

    def __call__(
        self,
        request: Request,
        response: Response,
        limiter: RateLimiterDep,
        user: OptionalUserDep,
    ) -> None:
        key = request_actor_key(request, user.id if user else None)
        result = limiter.enforce(key, self.tier, request.url.path)
        for name, value in result.headers.items():
            response.headers[name] = value
