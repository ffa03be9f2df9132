"""Daily upload cap for accounts in their first week.

Unlike the fixed-window tiers, the window here is the UTC calendar day so
the limit resets at midnight UTC, matching what users are told.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta

from gallery_trust.core.errors import RateLimitedError
from gallery_trust.core.settings import settings
from gallery_trust.db.time import as_utc, utcnow
from gallery_trust.services.activity import ACTION_ARTWORK_CREATED, ActivityRecorder

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ThrottleDecision:
    """Result of a new-account throttle check."""

    limited: bool
    reason: str | None = None
    retry_after_seconds: int | None = None
    count: int | None = None
    limit: int | None = None


def start_of_utc_day(moment: datetime) -> datetime:
    """Return 00:00:00Z of the UTC day containing ``moment``."""
    return as_utc(moment).replace(hour=0, minute=0, second=0, microsecond=0)


def seconds_until_utc_midnight(moment: datetime) -> int:
    """Return whole seconds, rounded up, until the next 00:00:00Z."""
    tomorrow = start_of_utc_day(moment) + timedelta(days=1)
    return math.ceil((tomorrow - as_utc(moment)).total_seconds())


class NewAccountThrottle:
    """Caps qualifying actions per UTC day for accounts younger than a week."""

    def __init__(
        self,
        recorder: ActivityRecorder,
        clock: Callable[[], datetime] = utcnow,
        max_age_days: int | None = None,
        daily_limit: int | None = None,
        action: str = ACTION_ARTWORK_CREATED,
    ) -> None:
        self._recorder = recorder
        self._clock = clock
        if max_age_days is None:
            max_age_days = settings.new_account_days
        self.max_age = timedelta(days=max_age_days)
        self.daily_limit = (
            settings.new_account_upload_limit if daily_limit is None else daily_limit
        )
        self.action = action

    def is_new_account(self, account_created_at: datetime) -> bool:
        """Return True while the account is younger than the probation period."""
        return self._clock() - as_utc(account_created_at) < self.max_age

    def check(self, actor_id: str, account_created_at: datetime) -> ThrottleDecision:
        """Decide whether the actor may perform one more qualifying action today."""
        if not self.is_new_account(account_created_at):
            return ThrottleDecision(limited=False)

        now = self._clock()
        today_count = self._recorder.count_events(actor_id, self.action, start_of_utc_day(now))
        if today_count >= self.daily_limit:
            return ThrottleDecision(
                limited=True,
                reason=(
                    f"New account upload limit reached ({today_count}/{self.daily_limit}). "
                    "Limit resets at midnight UTC."
                ),
                retry_after_seconds=seconds_until_utc_midnight(now),
                count=today_count,
                limit=self.daily_limit,
            )
        return ThrottleDecision(limited=False, count=today_count, limit=self.daily_limit)

    def enforce(self, actor_id: str, account_created_at: datetime) -> ThrottleDecision:
        """Like :meth:`check` but raise :class:`RateLimitedError` when limited."""
        decision = self.check(actor_id, account_created_at)
        if decision.limited:
            logger.warning("New account %s hit the daily upload cap", actor_id)
            raise RateLimitedError(decision.retry_after_seconds, message=decision.reason)
        return decision
