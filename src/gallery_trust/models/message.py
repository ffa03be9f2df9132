# src/gallery_trust/models/message.py
"""Messages between users, with the moderation fields this core manages."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import DateTime, Float, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from gallery_trust.db.session import Base
from gallery_trust.db.time import utcnow

MESSAGE_STATUS_SENT = "sent"
MESSAGE_STATUS_PENDING_REVIEW = "pending_review"
MESSAGE_STATUS_APPROVED = "approved"
MESSAGE_STATUS_REJECTED = "rejected"

# Review outcomes; no transition leaves these states.
MESSAGE_TERMINAL_STATUSES = frozenset({MESSAGE_STATUS_APPROVED, MESSAGE_STATUS_REJECTED})


def _new_id() -> str:
    return str(uuid.uuid4())


class Message(Base):
    """User-to-user message routed through moderation at creation time."""

    __tablename__ = "messages"
    __table_args__ = (Index("ix_messages_status_created", "status", "created_at"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    sender_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False)
    recipient_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False)
    context_type: Mapped[str | None] = mapped_column(Text, nullable=True)
    context_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    subject: Mapped[str | None] = mapped_column(Text, nullable=True)
    body: Mapped[str] = mapped_column(Text, nullable=False)

    # sent | pending_review | approved | rejected
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=MESSAGE_STATUS_SENT)
    tone_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    flagged_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    reviewed_by: Mapped[str | None] = mapped_column(
        String(36),
        ForeignKey("users.id"),
        nullable=True,
    )
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    read_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )
