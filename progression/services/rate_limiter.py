"""
progression.services.rate_limiter — Per-Action Daily Caps & Cooldowns
======================================================================

Limits are derived from ``xp_action_logs`` rows; there is no separate
counter table.

* **Daily cap** — rows for ``(user, action)`` within the current UTC day
  ``[00:00, 24:00)``; ``count >= daily_cap`` blocks.
* **Cooldown** — seconds since the newest row for ``(user, action)``;
  ``elapsed < cooldown_seconds`` blocks.

The two checks are independent; either one blocking rejects the award.

Semantics are **lenient**: the check runs before, and outside of, the
transaction that writes the log row.  Two awards racing for the last slot
of a daily cap can both pass.  Balance correctness does not depend on the
limiter; only the cap can be overshot, by at most the number of
concurrent callers.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, time, timedelta
from typing import TYPE_CHECKING

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from progression.database.engine import as_utc, utcnow
from progression.database.models import XpActionLog
from progression.errors import SkipReason

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from progression.engine.cache import ActionConfig, ActionRegistry

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ActionLimits:
    """Snapshot of a user's standing against one action's limits."""

    action_key: str
    daily_limit: int | None
    daily_count: int
    on_cooldown: bool
    cooldown_seconds: int | None
    cooldown_remaining: int
    seconds_since_last_award: int | None
    can_receive: bool


def day_bounds(now: datetime) -> tuple[datetime, datetime]:
    """``[start, end)`` of the UTC day containing *now*."""
    start = datetime.combine(now.date(), time.min, tzinfo=now.tzinfo)
    return start, start + timedelta(days=1)


class RateLimiter:
    """Decides whether a user may receive XP for an action right now."""

    def __init__(
        self,
        engine: Engine,
        registry: ActionRegistry,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._engine = engine
        self._registry = registry
        self._clock = clock

    # -------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------
    def _daily_count(self, session: Session, user_id: str, action_key: str,
                     now: datetime) -> int:
        start, end = day_bounds(now)
        return session.scalar(
            select(func.count(XpActionLog.id)).where(
                XpActionLog.user_id == user_id,
                XpActionLog.action_key == action_key,
                XpActionLog.timestamp >= start,
                XpActionLog.timestamp < end,
            )
        ) or 0

    def _last_award_at(self, session: Session, user_id: str,
                       action_key: str) -> datetime | None:
        return as_utc(session.scalar(
            select(func.max(XpActionLog.timestamp)).where(
                XpActionLog.user_id == user_id,
                XpActionLog.action_key == action_key,
            )
        ))

    def _limits(self, session: Session, user_id: str,
                config: ActionConfig) -> ActionLimits:
        now = self._clock()

        daily_count = 0
        if config.daily_cap is not None:
            daily_count = self._daily_count(session, user_id, config.action_key, now)

        on_cooldown = False
        remaining = 0
        since_last: int | None = None
        if config.cooldown_seconds:
            last = self._last_award_at(session, user_id, config.action_key)
            if last is not None:
                elapsed = (now - last).total_seconds()
                since_last = int(elapsed)
                if elapsed < config.cooldown_seconds:
                    on_cooldown = True
                    remaining = math.ceil(config.cooldown_seconds - elapsed)

        capped = config.daily_cap is not None and daily_count >= config.daily_cap
        return ActionLimits(
            action_key=config.action_key,
            daily_limit=config.daily_cap,
            daily_count=daily_count,
            on_cooldown=on_cooldown,
            cooldown_seconds=config.cooldown_seconds,
            cooldown_remaining=remaining,
            seconds_since_last_award=since_last,
            can_receive=config.enabled and not capped and not on_cooldown,
        )

    # -------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------
    def check(self, user_id: str, config: ActionConfig) -> SkipReason | None:
        """Return why *user_id* is blocked for *config*, or ``None`` if allowed.

        A storage error while checking blocks the award (logged).
        """
        try:
            with Session(self._engine) as session:
                limits = self._limits(session, user_id, config)
        except SQLAlchemyError:
            logger.exception(
                "Rate-limit check failed for user %s action %s; blocking",
                user_id, config.action_key,
            )
            return SkipReason.DAILY_CAP

        if limits.daily_limit is not None and limits.daily_count >= limits.daily_limit:
            logger.info(
                "Daily cap reached: user=%s action=%s (%d/%d)",
                user_id, config.action_key, limits.daily_count, limits.daily_limit,
            )
            return SkipReason.DAILY_CAP
        if limits.on_cooldown:
            logger.info(
                "Cooldown active: user=%s action=%s (%ds remaining)",
                user_id, config.action_key, limits.cooldown_remaining,
            )
            return SkipReason.COOLDOWN
        return None

    def can_award(self, user_id: str, action_key: str) -> bool:
        """``True`` when *action_key* is known, enabled and not limited."""
        config = self._registry.get_action_config(action_key)
        if config is None or not config.enabled:
            return False
        return self.check(user_id, config) is None

    def get_action_limits(self, user_id: str, action_key: str) -> ActionLimits | None:
        """Limit snapshot, or ``None`` when *action_key* is unknown."""
        config = self._registry.get_action_config(action_key)
        if config is None:
            return None
        with Session(self._engine) as session:
            return self._limits(session, user_id, config)
