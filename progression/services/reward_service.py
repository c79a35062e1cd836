"""
progression.services.reward_service — Level-Up Reward Distribution
===================================================================

Runs inside the award's transaction, after the balance and level have been
written.  For every level in ``(old_level, new_level]``:

  1. Currency + unlock metadata — guarded by a ``level_reward_claims`` row
  2. Title — via the idempotent :class:`TitleGrant` capability
  3. Badge — via the idempotent :class:`BadgeGrant` capability

Each step runs in its own SAVEPOINT.  A failing step rolls back only
itself, is logged and reported as a :class:`RewardGrantFailure`, and the
distribution moves on; the XP mutation and the other rewards stand.

Replaying a distribution grants nothing twice: every step checks its grant
record immediately before writing, and a pure replay sends no second
notification.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from progression.constants import NotificationType
from progression.database.engine import utcnow
from progression.database.models import Level, LevelRewardClaim, User
from progression.errors import RewardGrantFailure
from progression.services.collaborators import (
    GrantOutcome,
    NotificationSink,
    RewardGrant,
    Wallet,
)
from progression.services.grant_service import BadgeGrant, TitleGrant

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class GrantedReward:
    level: int
    reward_type: str           # "currency" | "title" | "badge" | "unlocks"
    value: int | str | dict
    outcome: GrantOutcome


@dataclass(slots=True)
class RewardReport:
    """What a distribution did, level by level."""

    old_level: int
    new_level: int
    granted: list[GrantedReward] = field(default_factory=list)
    already_held: list[GrantedReward] = field(default_factory=list)
    failures: list[RewardGrantFailure] = field(default_factory=list)
    notified: bool = False

    @property
    def currency_total(self) -> int:
        return sum(
            int(r.value) for r in self.granted if r.reward_type == "currency"
        )

    def _record(self, reward: GrantedReward) -> None:
        if reward.outcome == GrantOutcome.NEWLY_GRANTED:
            self.granted.append(reward)
        else:
            self.already_held.append(reward)


class RewardDistributor:
    """Orchestrates level-up rewards as a partial-failure-tolerant saga."""

    def __init__(
        self,
        wallet: Wallet,
        notifier: NotificationSink,
        *,
        titles: RewardGrant | None = None,
        badges: RewardGrant | None = None,
        clock: Callable[[], datetime] = utcnow,
        currency_name: str = "DGT",
    ) -> None:
        self._wallet = wallet
        self._notifier = notifier
        self._titles = titles or TitleGrant()
        self._badges = badges or BadgeGrant()
        self._clock = clock
        self._currency_name = currency_name

    # -------------------------------------------------------------------
    # Saga plumbing
    # -------------------------------------------------------------------
    def _step(
        self,
        session: Session,
        report: RewardReport,
        level: int,
        reward_type: str,
        action: Callable[[], list[GrantedReward]],
    ) -> None:
        try:
            with session.begin_nested():   # SAVEPOINT per reward step
                rewards = action()
        except Exception as exc:
            failure = RewardGrantFailure(level, reward_type, str(exc))
            logger.exception("Reward step failed: %s", failure)
            report.failures.append(failure)
            return
        for reward in rewards:
            report._record(reward)

    # -------------------------------------------------------------------
    # Individual reward steps
    # -------------------------------------------------------------------
    def _grant_currency(
        self, session: Session, user: User, level: Level
    ) -> list[GrantedReward]:
        if session.get(LevelRewardClaim, (user.id, level.level)) is not None:
            held = [GrantedReward(
                level.level, "currency", level.reward_currency or 0,
                GrantOutcome.ALREADY_HELD,
            )]
            if level.unlocks:
                held.append(GrantedReward(
                    level.level, "unlocks", level.unlocks, GrantOutcome.ALREADY_HELD,
                ))
            return held

        amount = level.reward_currency or 0
        if amount > 0:
            self._wallet.credit(
                session,
                user.id,
                amount,
                "level_up",
                {"level": level.level},
            )
        session.add(LevelRewardClaim(
            user_id=user.id,
            level=level.level,
            currency_credited=amount,
            unlocks=level.unlocks,
            claimed_at=self._clock(),
        ))
        session.flush()

        granted: list[GrantedReward] = []
        if amount > 0:
            granted.append(GrantedReward(
                level.level, "currency", amount, GrantOutcome.NEWLY_GRANTED,
            ))
        if level.unlocks:
            granted.append(GrantedReward(
                level.level, "unlocks", level.unlocks, GrantOutcome.NEWLY_GRANTED,
            ))
        return granted

    def _grant_title(
        self, session: Session, user: User, level: Level
    ) -> list[GrantedReward]:
        title_id = level.reward_title_id
        outcome = self._titles.grant(session, user.id, title_id)
        if outcome == GrantOutcome.NEWLY_GRANTED and user.active_title_id is None:
            user.active_title_id = title_id
            session.flush()
        name = level.reward_title.name if level.reward_title else str(title_id)
        return [GrantedReward(level.level, "title", name, outcome)]

    def _grant_badge(
        self, session: Session, user: User, level: Level
    ) -> list[GrantedReward]:
        badge_id = level.reward_badge_id
        outcome = self._badges.grant(session, user.id, badge_id)
        name = level.reward_badge.name if level.reward_badge else str(badge_id)
        return [GrantedReward(level.level, "badge", name, outcome)]

    # -------------------------------------------------------------------
    # Notification text
    # -------------------------------------------------------------------
    def _describe(self, rewards: list[GrantedReward]) -> str:
        parts: list[str] = []
        for r in rewards:
            if r.reward_type == "currency":
                parts.append(f"{r.value} {self._currency_name}")
            elif r.reward_type == "title":
                parts.append(f'the title "{r.value}"')
            elif r.reward_type == "badge":
                parts.append(f'the badge "{r.value}"')
        return ", ".join(parts)

    def _notify_level_up(
        self, session: Session, user: User, report: RewardReport
    ) -> list[GrantedReward]:
        described = self._describe(report.granted)
        body = f"Congratulations! You've reached level {report.new_level}"
        body += f" and received {described}!" if described else "!"
        self._notifier.enqueue(
            session,
            user.id,
            NotificationType.LEVEL_UP,
            "Level Up!",
            body,
            {
                "old_level": report.old_level,
                "new_level": report.new_level,
                "rewards": [
                    {"level": r.level, "type": r.reward_type, "value": r.value}
                    for r in report.granted
                ],
            },
        )
        report.notified = True
        return []

    def _notify_level_change(
        self, session: Session, user: User, report: RewardReport
    ) -> list[GrantedReward]:
        self._notifier.enqueue(
            session,
            user.id,
            NotificationType.LEVEL_CHANGED,
            "Level Changed",
            f"Your level changed from {report.old_level} to {report.new_level}.",
            {"old_level": report.old_level, "new_level": report.new_level},
        )
        report.notified = True
        return []

    # -------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------
    def distribute(
        self, session: Session, user: User, old_level: int, new_level: int
    ) -> RewardReport:
        """Grant every reward for levels in ``(old_level, new_level]``.

        A level decrease grants nothing and enqueues a "Level Changed"
        notification instead.  Never raises for a failing reward; see
        :attr:`RewardReport.failures`.
        """
        report = RewardReport(old_level=old_level, new_level=new_level)
        if new_level == old_level:
            return report

        if new_level < old_level:
            self._step(session, report, new_level, "notification",
                       lambda: self._notify_level_change(session, user, report))
            return report

        levels = session.scalars(
            select(Level)
            .where(Level.level > old_level, Level.level <= new_level)
            .order_by(Level.level)
        ).all()

        for level in levels:
            self._step(session, report, level.level, "currency",
                       lambda lvl=level: self._grant_currency(session, user, lvl))
            if level.reward_title_id is not None:
                self._step(session, report, level.level, "title",
                           lambda lvl=level: self._grant_title(session, user, lvl))
            if level.reward_badge_id is not None:
                self._step(session, report, level.level, "badge",
                           lambda lvl=level: self._grant_badge(session, user, lvl))

        replay = bool(report.already_held) and not report.granted and not report.failures
        if not replay:
            self._step(session, report, new_level, "notification",
                       lambda: self._notify_level_up(session, user, report))

        logger.info(
            "Level %d → %d for user %s: %d granted, %d already held, %d failed",
            old_level, new_level, user.id,
            len(report.granted), len(report.already_held), len(report.failures),
        )
        return report
