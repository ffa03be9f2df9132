"""Activity recording and the read queries the heuristics rely on.

The activity log is append-only. Writes must never break the user-facing
action that triggered them, so :meth:`ActivityRecorder.record` reports
persistence failures to the log instead of raising.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import desc, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.requests import Request

from gallery_trust.db.time import utcnow
from gallery_trust.models import ActivityEvent

logger = logging.getLogger(__name__)

# Action tags written by the platform and by this service.
ACTION_ARTWORK_CREATED = "artwork_created"
ACTION_GALLERY_CREATED = "gallery_created"
ACTION_USER_LOGIN = "user_login"
ACTION_USER_SIGNUP = "user_signup"
ACTION_USER_LOGIN_FAILED = "user_login_failed"
ACTION_SUSPICIOUS_FLAGGED = "suspicious_activity_flagged"
ACTION_SUSPICIOUS_CLEARED = "suspicious_flags_cleared"
ACTION_MESSAGE_SENT = "message_sent"
ACTION_MESSAGE_APPROVED = "message_approved"
ACTION_MESSAGE_REJECTED = "message_rejected"

LOGIN_ACTIONS = (ACTION_USER_LOGIN, ACTION_USER_SIGNUP)

UNKNOWN = "unknown"


def client_ip(request: Request) -> str:
    """Return the originating client address for a request.

    Prefers the CDN header, then the first hop of ``X-Forwarded-For``, then
    the socket peer.
    """
    forwarded = request.headers.get("CF-Connecting-IP")
    if forwarded:
        return forwarded.strip()
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        first_hop = forwarded_for.split(",")[0].strip()
        if first_hop:
            return first_hop
    if request.client and request.client.host:
        return request.client.host
    return UNKNOWN


def request_context(request: Request) -> tuple[str, str]:
    """Return ``(ip_address, user_agent)`` for audit records."""
    return client_ip(request), request.headers.get("User-Agent") or UNKNOWN


class ActivityRecorder:
    """Append-only writer and reader for :class:`ActivityEvent` rows."""

    def __init__(self, db: Session, clock: Callable[[], datetime] = utcnow) -> None:
        self._db = db
        self._clock = clock

    def now(self) -> datetime:
        """Return the recorder's notion of the current time."""
        return self._clock()

    def record(
        self,
        action: str,
        actor_id: str | None = None,
        entity_type: str | None = None,
        entity_id: str | None = None,
        metadata: Mapping[str, Any] | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> None:
        """Persist one activity event; failures are logged, never raised."""
        try:
            event = ActivityEvent(
                user_id=actor_id,
                action=action,
                entity_type=entity_type,
                entity_id=entity_id,
                metadata_=dict(metadata) if metadata else None,
                ip_address=ip_address,
                user_agent=user_agent,
                created_at=self._clock(),
            )
            self._db.add(event)
            self._db.commit()
        except (SQLAlchemyError, TypeError, ValueError):
            logger.exception(
                "Failed to record activity %s for actor %s", action, actor_id or "-"
            )
            try:
                self._db.rollback()
            except SQLAlchemyError:
                logger.exception("Rollback after failed activity write also failed")

    # --- Heuristic reads ------------------------------------------------------------
    def count_events(self, actor_id: str, action: str, since: datetime) -> int:
        """Count ``action`` events by ``actor_id`` at or after ``since``."""
        return (
            self._db.query(func.count(ActivityEvent.id))
            .filter(
                ActivityEvent.user_id == actor_id,
                ActivityEvent.action == action,
                ActivityEvent.created_at >= since,
            )
            .scalar()
            or 0
        )

    def count_events_from_ip(self, ip_address: str, action: str, since: datetime) -> int:
        """Count ``action`` events originating from ``ip_address`` at or after ``since``."""
        return (
            self._db.query(func.count(ActivityEvent.id))
            .filter(
                ActivityEvent.ip_address == ip_address,
                ActivityEvent.action == action,
                ActivityEvent.created_at >= since,
            )
            .scalar()
            or 0
        )

    def recent_login_ips(
        self,
        actor_id: str,
        limit: int = 10,
        actions: Iterable[str] = LOGIN_ACTIONS,
    ) -> list[str]:
        """Return distinct login/signup addresses, most recently used first."""
        last_used = func.max(ActivityEvent.created_at).label("last_used")
        rows = (
            self._db.query(ActivityEvent.ip_address, last_used)
            .filter(
                ActivityEvent.user_id == actor_id,
                ActivityEvent.action.in_(tuple(actions)),
                ActivityEvent.ip_address.is_not(None),
            )
            .group_by(ActivityEvent.ip_address)
            .order_by(desc(last_used))
            .limit(limit)
            .all()
        )
        return [ip for (ip, _) in rows]

    def has_recent_flag(self, actor_id: str, flag_name: str, since: datetime) -> bool:
        """Return True if ``flag_name`` was recorded for the actor at or after ``since``."""
        existing = (
            self._db.query(ActivityEvent.id)
            .filter(
                ActivityEvent.user_id == actor_id,
                ActivityEvent.action == ACTION_SUSPICIOUS_FLAGGED,
                ActivityEvent.metadata_["flag"].as_string() == flag_name,
                ActivityEvent.created_at >= since,
            )
            .first()
        )
        return existing is not None

    # --- Review and account surfaces ------------------------------------------------
    def activity_summary(self, actor_id: str, days: int = 30) -> dict[str, int]:
        """Return ``{action: count}`` for the actor over the trailing ``days``."""
        since = self._clock() - timedelta(days=days)
        rows = (
            self._db.query(ActivityEvent.action, func.count(ActivityEvent.id))
            .filter(ActivityEvent.user_id == actor_id, ActivityEvent.created_at >= since)
            .group_by(ActivityEvent.action)
            .all()
        )
        return {action: int(count) for (action, count) in rows}

    def recent_ips(self, actor_id: str, limit: int = 10) -> list[dict[str, Any]]:
        """Return addresses seen for the actor with last use and hit count."""
        last_used = func.max(ActivityEvent.created_at).label("last_used")
        rows = (
            self._db.query(ActivityEvent.ip_address, last_used, func.count(ActivityEvent.id))
            .filter(ActivityEvent.user_id == actor_id)
            .group_by(ActivityEvent.ip_address)
            .order_by(desc(last_used))
            .limit(limit)
            .all()
        )
        return [
            {"ip_address": ip, "last_used": used, "count": int(count)}
            for (ip, used, count) in rows
        ]

    def recent_flags(self, actor_id: str, limit: int = 5) -> list[dict[str, Any]]:
        """Return the actor's latest flag payloads, newest first."""
        events = (
            self._db.query(ActivityEvent)
            .filter(
                ActivityEvent.user_id == actor_id,
                ActivityEvent.action == ACTION_SUSPICIOUS_FLAGGED,
            )
            .order_by(ActivityEvent.created_at.desc())
            .limit(limit)
            .all()
        )
        return [{**(event.metadata_ or {}), "detectedAt": event.created_at} for event in events]

    def flag_stats(self, since: datetime) -> list[dict[str, Any]]:
        """Return per-flag counts of ``suspicious_activity_flagged`` events since ``since``."""
        flag = ActivityEvent.metadata_["flag"].as_string()
        severity = func.max(ActivityEvent.metadata_["severity"].as_string())
        rows = (
            self._db.query(flag, severity, func.count(ActivityEvent.id))
            .filter(
                ActivityEvent.action == ACTION_SUSPICIOUS_FLAGGED,
                ActivityEvent.created_at >= since,
            )
            .group_by(flag)
            .all()
        )
        return [
            {"flag": name, "severity": level, "count": int(count)}
            for (name, level, count) in rows
        ]
