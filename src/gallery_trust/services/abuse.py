"""Behavioral abuse detection over the activity log.

The engine runs independent checks against :class:`ActivityRecorder`, records
flags (deduplicated per actor and flag name), and escalates an actor's trust
state for serious flags. :class:`PostActionChecks` bundles the hooks the
HTTP layer calls once an upload, gallery creation or login has completed.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Final

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from gallery_trust.core.errors import BadRequestError, NotFoundError
from gallery_trust.core.settings import settings
from gallery_trust.db.time import utcnow
from gallery_trust.models import User
from gallery_trust.models.user import USER_STATUS_ACTIVE, USER_STATUS_FLAGGED
from gallery_trust.schemas.activity import ClearFlagsMetadata, FlagMetadata
from gallery_trust.services.activity import (
    ACTION_ARTWORK_CREATED,
    ACTION_GALLERY_CREATED,
    ACTION_SUSPICIOUS_CLEARED,
    ACTION_SUSPICIOUS_FLAGGED,
    ACTION_USER_LOGIN,
    ACTION_USER_LOGIN_FAILED,
    ACTION_USER_SIGNUP,
    ActivityRecorder,
)

logger = logging.getLogger(__name__)

SEVERITIES: Final[tuple[str, ...]] = ("low", "medium", "high", "critical")
ESCALATING_SEVERITIES: Final[frozenset[str]] = frozenset({"high", "critical"})

# Statuses an automatic flag may move to ``flagged``.
FLAGGABLE_STATUSES: Final[tuple[str, ...]] = (USER_STATUS_ACTIVE,)

FLAG_RAPID_UPLOADS = "rapid_uploads"
FLAG_BULK_GALLERY_CREATION = "bulk_gallery_creation"
FLAG_UNUSUAL_LOGIN_IP = "unusual_login_ip"
FLAG_FAILED_LOGIN_BURST = "failed_login_burst"


@dataclass(frozen=True)
class CheckResult:
    """Outcome of a counting heuristic."""

    detected: bool
    count: int


@dataclass(frozen=True)
class UnusualIPResult:
    """Outcome of the unusual login address heuristic."""

    is_unusual: bool
    previous_ips: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class FlagOutcome:
    """What a :meth:`AbuseHeuristicsEngine.flag` call actually did."""

    recorded: bool
    escalated: bool = False


class AbuseHeuristicsEngine:
    """Heuristic checks, flagging and trust escalation for one request's session."""

    def __init__(
        self,
        db: Session,
        recorder: ActivityRecorder | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._db = db
        self._clock = clock
        self.recorder = recorder or ActivityRecorder(db, clock)

    # --- Checks ---------------------------------------------------------------------
    def check_rapid_uploads(self, actor_id: str, threshold: int | None = None) -> CheckResult:
        """Detect more than ``threshold`` uploads in the trailing upload window."""
        limit = settings.rapid_upload_threshold if threshold is None else threshold
        since = self._clock() - timedelta(seconds=settings.rapid_upload_window_seconds)
        count = self.recorder.count_events(actor_id, ACTION_ARTWORK_CREATED, since)
        return CheckResult(detected=count > limit, count=count)

    def check_bulk_gallery_creation(
        self, actor_id: str, threshold: int | None = None
    ) -> CheckResult:
        """Detect more than ``threshold`` galleries created in the trailing hour."""
        limit = settings.bulk_gallery_threshold if threshold is None else threshold
        since = self._clock() - timedelta(seconds=settings.bulk_gallery_window_seconds)
        count = self.recorder.count_events(actor_id, ACTION_GALLERY_CREATED, since)
        return CheckResult(detected=count > limit, count=count)

    def check_unusual_ip(self, actor_id: str, current_ip: str) -> UnusualIPResult:
        """Report whether ``current_ip`` is new for an actor with login history.

        An empty history is not suspicious in itself.
        """
        previous = self.recorder.recent_login_ips(actor_id, limit=settings.login_ip_history_size)
        return UnusualIPResult(
            is_unusual=bool(previous) and current_ip not in previous,
            previous_ips=previous,
        )

    def check_failed_logins(self, ip_address: str, threshold: int | None = None) -> CheckResult:
        """Detect at least ``threshold`` failed logins from one address."""
        limit = settings.failed_login_threshold if threshold is None else threshold
        since = self._clock() - timedelta(seconds=settings.failed_login_window_seconds)
        count = self.recorder.count_events_from_ip(ip_address, ACTION_USER_LOGIN_FAILED, since)
        return CheckResult(detected=count >= limit, count=count)

    # --- Flagging -------------------------------------------------------------------
    def flag(
        self,
        actor_id: str,
        flag_name: str,
        severity: str,
        details: Mapping[str, Any] | None = None,
    ) -> FlagOutcome:
        """Record a suspicion about ``actor_id``.

        Repeating a flag name for the same actor inside the dedup window is a
        no-op. High and critical flags move an active account to ``flagged``.
        """
        if severity not in SEVERITIES:
            raise BadRequestError(
                f"Invalid severity {severity!r}",
                details={"allowed": list(SEVERITIES)},
            )
        if not flag_name:
            raise BadRequestError("Flag name is required")

        since = self._clock() - timedelta(seconds=settings.flag_dedup_window_seconds)
        if self.recorder.has_recent_flag(actor_id, flag_name, since):
            logger.debug("Flag %s for %s already recorded recently", flag_name, actor_id)
            return FlagOutcome(recorded=False)

        payload = FlagMetadata.model_validate(
            {**dict(details or {}), "flag": flag_name, "severity": severity}
        )
        self.recorder.record(
            ACTION_SUSPICIOUS_FLAGGED,
            actor_id=actor_id,
            entity_type="user",
            entity_id=actor_id,
            metadata=payload.model_dump(),
        )
        logger.warning("Flagged %s: %s (%s)", actor_id, flag_name, severity)

        escalated = False
        if severity in ESCALATING_SEVERITIES:
            escalated = self._transition(actor_id, FLAGGABLE_STATUSES, USER_STATUS_FLAGGED)
            if escalated:
                logger.info("Trust state of %s escalated to flagged", actor_id)
        return FlagOutcome(recorded=True, escalated=escalated)

    def clear_flags(self, actor_id: str, reviewed_by: str, notes: str) -> None:
        """Return a flagged account to ``active`` after administrator review."""
        if not notes or not notes.strip():
            raise BadRequestError("Review notes are required")
        if len(notes) > settings.review_text_max_length:
            raise BadRequestError(
                f"Review notes must be {settings.review_text_max_length} characters or less"
            )

        if not self._transition(actor_id, (USER_STATUS_FLAGGED,), USER_STATUS_ACTIVE):
            raise NotFoundError("Flagged user not found")

        payload = ClearFlagsMetadata(
            reviewed_by=reviewed_by,
            review_notes=notes,
            cleared_user_id=actor_id,
        )
        self.recorder.record(
            ACTION_SUSPICIOUS_CLEARED,
            actor_id=reviewed_by,
            entity_type="user",
            entity_id=actor_id,
            metadata=payload.model_dump(by_alias=True),
        )
        logger.info("Flags on %s cleared by %s", actor_id, reviewed_by)

    def _transition(self, actor_id: str, sources: tuple[str, ...], target: str) -> bool:
        """Move the user to ``target`` only if its status is one of ``sources``."""
        updated = (
            self._db.query(User)
            .filter(User.id == actor_id, User.status.in_(sources))
            .update({"status": target, "updated_at": self._clock()}, synchronize_session=False)
        )
        self._db.commit()
        self._db.expire_all()
        return bool(updated)

    # --- Review surfaces ------------------------------------------------------------
    def count_flagged_users(self) -> int:
        """Return how many accounts are currently flagged."""
        return self._db.query(User).filter(User.status == USER_STATUS_FLAGGED).count()

    def list_flagged_users(self, page: int = 1, limit: int = 20) -> list[dict[str, Any]]:
        """Return flagged accounts, most recently flagged first, with their latest flags."""
        if page < 1 or limit < 1 or limit > 100:
            raise BadRequestError("Invalid pagination")
        users = (
            self._db.query(User)
            .filter(User.status == USER_STATUS_FLAGGED)
            .order_by(User.updated_at.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return [
            {
                "user_id": user.id,
                "username": user.username,
                "email": user.email,
                "flagged_at": user.updated_at,
                "flags": self.recorder.recent_flags(user.id),
            }
            for user in users
        ]

    def flag_statistics(self, hours: int = 24) -> dict[str, Any]:
        """Summarise flagged accounts and recent flags by name."""
        since = self._clock() - timedelta(hours=hours)
        return {
            "flagged_users": self.count_flagged_users(),
            "recent_flags": self.recorder.flag_stats(since),
            "time_window": f"{hours} hours",
        }


class PostActionChecks:
    """Hooks run after a mutating action completes.

    Each hook records the triggering event and runs its heuristic. They
    never deny the action that already happened: storage errors raised by
    the checks are logged here and the hook reports nothing detected.
    """

    def __init__(self, engine: AbuseHeuristicsEngine) -> None:
        self.engine = engine
        self.recorder = engine.recorder

    def after_artwork_created(
        self,
        actor_id: str,
        artwork_id: str,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> CheckResult | None:
        self.recorder.record(
            ACTION_ARTWORK_CREATED,
            actor_id=actor_id,
            entity_type="artwork",
            entity_id=artwork_id,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        try:
            result = self.engine.check_rapid_uploads(actor_id)
            if result.detected:
                self.engine.flag(
                    actor_id,
                    FLAG_RAPID_UPLOADS,
                    "high",
                    {
                        "uploadCount": result.count,
                        "timeWindow": f"{settings.rapid_upload_window_seconds} seconds",
                        "threshold": settings.rapid_upload_threshold,
                    },
                )
        except SQLAlchemyError:
            logger.exception("Rapid upload check failed for %s", actor_id)
            return None
        return result

    def after_gallery_created(
        self,
        actor_id: str,
        gallery_id: str,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> CheckResult | None:
        self.recorder.record(
            ACTION_GALLERY_CREATED,
            actor_id=actor_id,
            entity_type="gallery",
            entity_id=gallery_id,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        try:
            result = self.engine.check_bulk_gallery_creation(actor_id)
            if result.detected:
                self.engine.flag(
                    actor_id,
                    FLAG_BULK_GALLERY_CREATION,
                    "medium",
                    {
                        "galleryCount": result.count,
                        "timeWindow": f"{settings.bulk_gallery_window_seconds} seconds",
                        "threshold": settings.bulk_gallery_threshold,
                    },
                )
        except SQLAlchemyError:
            logger.exception("Bulk gallery check failed for %s", actor_id)
            return None
        return result

    def after_login(
        self,
        actor_id: str,
        ip_address: str,
        user_agent: str | None = None,
        is_signup: bool = False,
    ) -> UnusualIPResult | None:
        """Record a successful login; the address is compared before it joins the history."""
        result: UnusualIPResult | None = None
        try:
            result = self.engine.check_unusual_ip(actor_id, ip_address)
        except SQLAlchemyError:
            logger.exception("Unusual IP check failed for %s", actor_id)

        self.recorder.record(
            ACTION_USER_SIGNUP if is_signup else ACTION_USER_LOGIN,
            actor_id=actor_id,
            entity_type="user",
            entity_id=actor_id,
            ip_address=ip_address,
            user_agent=user_agent,
        )

        if result is not None and result.is_unusual:
            try:
                self.engine.flag(
                    actor_id,
                    FLAG_UNUSUAL_LOGIN_IP,
                    "medium",
                    {"ipAddress": ip_address, "previousIPs": ", ".join(result.previous_ips)},
                )
            except SQLAlchemyError:
                logger.exception("Failed to flag unusual login for %s", actor_id)
        return result

    def after_login_failed(
        self,
        ip_address: str,
        user_agent: str | None = None,
        actor_id: str | None = None,
        reason: str | None = None,
    ) -> CheckResult | None:
        """Record a failed login and look for a burst from the same address.

        The attempted account, when known, receives a non-escalating flag; a
        burst against an unknown account is only logged.
        """
        self.recorder.record(
            ACTION_USER_LOGIN_FAILED,
            actor_id=actor_id,
            metadata={"reason": reason} if reason else None,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        try:
            result = self.engine.check_failed_logins(ip_address)
            if result.detected:
                logger.warning(
                    "Failed login burst from %s (%d attempts)", ip_address, result.count
                )
                if actor_id:
                    self.engine.flag(
                        actor_id,
                        FLAG_FAILED_LOGIN_BURST,
                        "medium",
                        {"ipAddress": ip_address, "attemptCount": result.count},
                    )
        except SQLAlchemyError:
            logger.exception("Failed login check failed for %s", ip_address)
            return None
        return result
