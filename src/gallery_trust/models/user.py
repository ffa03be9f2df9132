# src/gallery_trust/models/user.py
"""User accounts as seen by the trust-and-safety core.

The identity service owns these rows; this service reads them and mutates
only ``status`` (and ``updated_at``) through guarded transitions.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from gallery_trust.db.session import Base
from gallery_trust.db.time import utcnow

USER_STATUS_PENDING = "pending"
USER_STATUS_ACTIVE = "active"
USER_STATUS_FLAGGED = "flagged"
USER_STATUS_SUSPENDED = "suspended"
USER_STATUS_DEACTIVATED = "deactivated"

USER_STATUSES = frozenset(
    {
        USER_STATUS_PENDING,
        USER_STATUS_ACTIVE,
        USER_STATUS_FLAGGED,
        USER_STATUS_SUSPENDED,
        USER_STATUS_DEACTIVATED,
    }
)

ROLE_USER = "user"
ROLE_ADMIN = "admin"


class User(Base):
    """Account identity plus its coarse trust state."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    email: Mapped[str] = mapped_column(Text, unique=True, nullable=False)
    username: Mapped[str | None] = mapped_column(Text, nullable=True)
    role: Mapped[str] = mapped_column(String(16), nullable=False, default=ROLE_USER)
    # pending | active | flagged | suspended | deactivated
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=USER_STATUS_ACTIVE)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
    )

    @property
    def is_admin(self) -> bool:
        """Return True when the account carries the administrator role."""
        return self.role == ROLE_ADMIN
