"""Activity log payloads.

``metadata`` on an activity event is a free-form JSON object. The actions
written by this service have typed payloads so call sites that know the
action keep their field names straight.
"""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

ActivityMetadata = dict[str, str | int | float | bool | None]

Severity = Literal["low", "medium", "high", "critical"]


class FlagMetadata(BaseModel):
    """Payload of a ``suspicious_activity_flagged`` event; details ride along as extras."""

    model_config = ConfigDict(extra="allow")

    flag: str
    severity: Severity


class ClearFlagsMetadata(BaseModel):
    """Payload of a ``suspicious_flags_cleared`` event."""

    model_config = ConfigDict(populate_by_name=True)

    reviewed_by: str = Field(alias="reviewedBy")
    review_notes: str = Field(alias="reviewNotes")
    cleared_user_id: str = Field(alias="clearedUserId")


class ReviewMetadata(BaseModel):
    """Payload of ``message_approved`` / ``message_rejected`` events."""

    previous_status: str
    reason: str | None = None


class RecentIP(BaseModel):
    """One address from an account's recent activity."""

    ip_address: str | None
    last_used: datetime
    count: int


class ActivitySummaryResponse(BaseModel):
    """Own-account activity overview."""

    user_id: str
    days: int
    actions: dict[str, int]
    recent_ips: list[RecentIP]


class UploadAllowanceResponse(BaseModel):
    """New-account upload throttle decision for the caller."""

    limited: bool
    new_account: bool
    count: int | None = None
    limit: int | None = None
    reason: str | None = None
    retry_after_seconds: int | None = None
