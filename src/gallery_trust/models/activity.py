# src/gallery_trust/models/activity.py
"""Append-only activity log used for auditing and abuse heuristics."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from gallery_trust.db.session import Base
from gallery_trust.db.time import utcnow


def _new_id() -> str:
    return str(uuid.uuid4())


class ActivityEvent(Base):
    """Immutable record of a notable action.

    ``user_id`` is null for unauthenticated actions such as failed logins.
    """

    __tablename__ = "activity_log"
    __table_args__ = (
        Index("ix_activity_log_user_action_created", "user_id", "action", "created_at"),
        Index("ix_activity_log_ip_action_created", "ip_address", "action", "created_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str | None] = mapped_column(
        String(36),
        ForeignKey("users.id"),
        nullable=True,
    )
    action: Mapped[str] = mapped_column(Text, nullable=False)
    entity_type: Mapped[str | None] = mapped_column(Text, nullable=True)
    entity_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Column is named "metadata"; the attribute avoids shadowing DeclarativeBase.metadata.
    metadata_: Mapped[dict[str, Any] | None] = mapped_column("metadata", JSON, nullable=True)
    ip_address: Mapped[str | None] = mapped_column(Text, nullable=True)
    user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )
