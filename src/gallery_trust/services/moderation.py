"""Message moderation: creation-time triage and human review transitions.

States::

    sent                      (delivered, no review needed)
    pending_review -> approved | rejected

The tone score is produced elsewhere; this module only consumes it.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any, Protocol

from sqlalchemy import case
from sqlalchemy.orm import Session

from gallery_trust.core.errors import BadRequestError, NotFoundError
from gallery_trust.core.settings import settings
from gallery_trust.db.time import utcnow
from gallery_trust.models import Message
from gallery_trust.models.message import (
    MESSAGE_STATUS_APPROVED,
    MESSAGE_STATUS_PENDING_REVIEW,
    MESSAGE_STATUS_REJECTED,
    MESSAGE_STATUS_SENT,
    MESSAGE_TERMINAL_STATUSES,
)
from gallery_trust.schemas.activity import ReviewMetadata
from gallery_trust.services.activity import (
    ACTION_MESSAGE_APPROVED,
    ACTION_MESSAGE_REJECTED,
    ACTION_MESSAGE_SENT,
    ActivityRecorder,
)

logger = logging.getLogger(__name__)

SORT_CREATED_AT = "created_at"
SORT_TONE_SCORE = "tone_score"
SORT_OPTIONS = (SORT_CREATED_AT, SORT_TONE_SCORE)
MAX_PAGE_SIZE = 100


class ToneScorer(Protocol):
    """Collaborator that rates how concerning a message body is, 0.0 to 1.0."""

    def score(self, body: str) -> float | None:
        """Return a score for ``body`` or None when it cannot be scored."""


class ModerationQueue:
    """Message submission and the review state machine."""

    def __init__(
        self,
        db: Session,
        recorder: ActivityRecorder | None = None,
        tone_scorer: ToneScorer | None = None,
        threshold: float | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._db = db
        self._clock = clock
        self.recorder = recorder or ActivityRecorder(db, clock)
        self.tone_scorer = tone_scorer
        self.threshold = settings.tone_review_threshold if threshold is None else threshold

    def initial_status(self, tone_score: float | None, flagged_reason: str | None) -> str:
        """Route a new message: any policy concern sends it to review."""
        if flagged_reason:
            return MESSAGE_STATUS_PENDING_REVIEW
        if tone_score is not None and tone_score > self.threshold:
            return MESSAGE_STATUS_PENDING_REVIEW
        return MESSAGE_STATUS_SENT

    def submit(
        self,
        sender_id: str,
        recipient_id: str,
        body: str,
        subject: str | None = None,
        context_type: str | None = None,
        context_id: str | None = None,
        tone_score: float | None = None,
        flagged_reason: str | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> Message:
        """Create a message with its triaged initial status."""
        if tone_score is None and self.tone_scorer is not None:
            tone_score = self.tone_scorer.score(body)

        message = Message(
            sender_id=sender_id,
            recipient_id=recipient_id,
            body=body,
            subject=subject,
            context_type=context_type,
            context_id=context_id,
            tone_score=tone_score,
            flagged_reason=flagged_reason or None,
            status=self.initial_status(tone_score, flagged_reason),
            created_at=self._clock(),
        )
        self._db.add(message)
        self._db.commit()
        self._db.refresh(message)

        if message.status == MESSAGE_STATUS_PENDING_REVIEW:
            logger.info("Message %s held for review (tone=%s)", message.id, tone_score)
        self.recorder.record(
            ACTION_MESSAGE_SENT,
            actor_id=sender_id,
            entity_type="message",
            entity_id=message.id,
            metadata={"status": message.status},
            ip_address=ip_address,
            user_agent=user_agent,
        )
        return message

    def approve(self, message_id: str, reviewer_id: str) -> Message:
        """Release a held message."""
        return self._review(message_id, reviewer_id, MESSAGE_STATUS_APPROVED, None)

    def reject(self, message_id: str, reviewer_id: str, reason: str | None = None) -> Message:
        """Refuse a held message; the reason is kept in the audit log."""
        if reason is not None and len(reason) > settings.review_text_max_length:
            raise BadRequestError(
                f"Rejection reason must be {settings.review_text_max_length} characters or less"
            )
        return self._review(message_id, reviewer_id, MESSAGE_STATUS_REJECTED, reason)

    def flag(self, message_id: str, reason: str) -> Message:
        """Attach or replace ``flagged_reason`` without changing the status."""
        if not reason or not reason.strip():
            raise BadRequestError("Flag reason is required and must be a string")
        if len(reason) > settings.review_text_max_length:
            raise BadRequestError(
                f"Flag reason must be {settings.review_text_max_length} characters or less"
            )
        updated = (
            self._db.query(Message)
            .filter(
                Message.id == message_id,
                Message.status.not_in(tuple(MESSAGE_TERMINAL_STATUSES)),
            )
            .update({"flagged_reason": reason}, synchronize_session=False)
        )
        self._db.commit()
        if not updated:
            raise NotFoundError("Message not found or already reviewed")
        return self._load(message_id)

    def _review(
        self, message_id: str, reviewer_id: str, target: str, reason: str | None
    ) -> Message:
        reviewed_at = self._clock()
        # Guarded on pending_review so a repeated review fails instead of succeeding twice.
        updated = (
            self._db.query(Message)
            .filter(Message.id == message_id, Message.status == MESSAGE_STATUS_PENDING_REVIEW)
            .update(
                {"status": target, "reviewed_by": reviewer_id, "reviewed_at": reviewed_at},
                synchronize_session=False,
            )
        )
        self._db.commit()
        if not updated:
            raise NotFoundError("Message not found or not pending review")

        if target == MESSAGE_STATUS_APPROVED:
            action = ACTION_MESSAGE_APPROVED
        else:
            action = ACTION_MESSAGE_REJECTED
        metadata = ReviewMetadata(previous_status=MESSAGE_STATUS_PENDING_REVIEW, reason=reason)
        self.recorder.record(
            action,
            actor_id=reviewer_id,
            entity_type="message",
            entity_id=message_id,
            metadata=metadata.model_dump(exclude_none=True),
        )
        logger.info("Message %s %s by %s", message_id, target, reviewer_id)
        return self._load(message_id)

    def _load(self, message_id: str) -> Message:
        self._db.expire_all()
        message = self._db.get(Message, message_id)
        if message is None:  # pragma: no cover - deleted between update and read
            raise NotFoundError("Message not found")
        return message

    def list_pending(
        self,
        flagged_only: bool = False,
        sort_by: str = SORT_CREATED_AT,
        page: int = 1,
        limit: int = 20,
    ) -> tuple[list[Message], int]:
        """Return one page of ``pending_review`` messages and the total count.

        ``tone_score`` ordering puts the highest scores first, unscored
        messages last, and newest first within equal scores.
        """
        if page < 1 or limit < 1 or limit > MAX_PAGE_SIZE:
            raise BadRequestError(
                "Invalid pagination: page must be >= 1, limit must be 1-100"
            )
        if sort_by not in SORT_OPTIONS:
            raise BadRequestError("Invalid sort_by: must be 'tone_score' or 'created_at'")

        query = self._db.query(Message).filter(Message.status == MESSAGE_STATUS_PENDING_REVIEW)
        if flagged_only:
            query = query.filter(Message.flagged_reason.is_not(None))

        total = query.count()
        if sort_by == SORT_TONE_SCORE:
            ordering: list[Any] = [
                case((Message.tone_score.is_(None), 1), else_=0),
                Message.tone_score.desc(),
                Message.created_at.desc(),
            ]
        else:
            ordering = [Message.created_at.desc()]

        messages = query.order_by(*ordering).offset((page - 1) * limit).limit(limit).all()
        return messages, total
