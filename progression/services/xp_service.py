"""
progression.services.xp_service — XP Award Engine
==================================================

Every balance change goes through :meth:`XpService._apply_delta`, whether
it comes from an action award or an admin adjustment.  One call is one
transaction::

    lock user row (SELECT ... FOR UPDATE)
      → [award only] write xp_action_logs row
      → compute new balance (subtraction clamps at 0)
      → compare-and-set UPDATE users ... WHERE xp = :old  (miss → rerun unit)
      → resolve level from the level table
      → [level changed] distribute rewards (per-step SAVEPOINTs)
      → write xp_adjustment_logs row
      → COMMIT

Any exception before COMMIT rolls the whole unit back and surfaces as
:class:`~progression.errors.TransactionFailure`; the balance is left as if
the award never started.

Every action attempt publishes an :class:`ActionOccurred` event for mission
tracking, whether or not it earned XP: after COMMIT for an award, or
straight away for a soft no-op (unknown, disabled or rate-limited action).
Subscriber failures never reach the caller.

Row locking serializes concurrent writers on PostgreSQL.  The
compare-and-set guard catches a concurrent write on backends where
``FOR UPDATE`` is a no-op; a miss rolls the transaction back and reruns
the whole unit on a fresh snapshot, so two awards to one user always sum.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, replace
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from progression.config import ProgressionConfig
from progression.constants import AWARD_REASON_TEMPLATE
from progression.database.engine import utcnow
from progression.database.models import AdjustmentMode, Level, User
from progression.engine.events import ActionEventBus, ActionOccurred
from progression.engine.levels import LevelTable, level_progress
from progression.engine.multipliers import MultiplierResult, apply_multiplier
from progression.errors import (
    NotFoundError,
    ProgressionError,
    SkipReason,
    TransactionFailure,
    ValidationError,
)

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from progression.engine.cache import ActionRegistry
    from progression.services.audit_service import AuditLogger
    from progression.services.multiplier_service import MultiplierResolver
    from progression.services.rate_limiter import RateLimiter
    from progression.services.reward_service import RewardDistributor, RewardReport

logger = logging.getLogger(__name__)


class _StaleBalance(Exception):
    """The compare-and-set UPDATE matched no row."""


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class AwardResult:
    """Outcome of one committed balance change."""

    user_id: str
    old_xp: int
    new_xp: int
    xp_change: int
    old_level: int
    new_level: int
    level_changed: bool
    action_key: str | None = None
    multiplier: MultiplierResult | None = None
    rewards: RewardReport | None = None


@dataclass(frozen=True, slots=True)
class UserProgression:
    user_id: str
    xp: int
    level: int
    level_name: str | None
    current_level_xp: int
    next_level: int | None
    next_level_xp: int | None
    xp_to_next: int
    progress_percentage: int
    active_title_id: int | None


# ---------------------------------------------------------------------------
# User helpers
# ---------------------------------------------------------------------------
def get_or_create_user(session: Session, user_id: str, username: str) -> User:
    """Fetch or insert a User row starting at ``{xp: 0, level: 1}``."""
    user = session.get(User, user_id)
    if user is None:
        user = User(id=user_id, username=username, xp=0, level=1)
        session.add(user)
        session.flush()
    return user


def _validate_adjustment(amount: object, mode: object) -> tuple[int, AdjustmentMode]:
    try:
        parsed_mode = AdjustmentMode(mode)
    except ValueError:
        raise ValidationError(
            f"Invalid adjustment mode {mode!r}; expected add, subtract or set"
        ) from None
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise ValidationError(f"Adjustment amount must be an integer, got {amount!r}")
    if amount < 0:
        raise ValidationError(f"Adjustment amount must be non-negative, got {amount}")
    return amount, parsed_mode


# ---------------------------------------------------------------------------
# XP service
# ---------------------------------------------------------------------------
class XpService:
    """Awards and adjusts XP through one atomic mutation primitive."""

    def __init__(
        self,
        engine: Engine,
        *,
        registry: ActionRegistry,
        rate_limiter: RateLimiter,
        multipliers: MultiplierResolver,
        rewards: RewardDistributor,
        audit: AuditLogger,
        bus: ActionEventBus | None = None,
        config: ProgressionConfig | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._engine = engine
        self._registry = registry
        self._rate_limiter = rate_limiter
        self._multipliers = multipliers
        self._rewards = rewards
        self._audit = audit
        self._bus = bus or ActionEventBus()
        self._config = config or ProgressionConfig()
        self._clock = clock

    # -------------------------------------------------------------------
    # The mutation primitive
    # -------------------------------------------------------------------
    def _lock_user(self, session: Session, user_id: str) -> User:
        user = session.scalar(
            select(User)
            .where(User.id == user_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        if user is None:
            raise NotFoundError("user", user_id)
        return user

    def _apply_delta(
        self,
        session: Session,
        user_id: str,
        *,
        mode: AdjustmentMode,
        amount: int,
        reason: str | None,
        admin_id: str | None = None,
        delta: int | None = None,
        target: int | None = None,
    ) -> AwardResult:
        """Apply a signed *delta* (or move to *target*) inside *session*.

        Does not commit.  ``target`` is converted to the signed delta from
        the balance read under lock, so ``set`` shares the add/subtract
        path.  A clamped subtract journals the amount actually removed.
        Raises :class:`_StaleBalance` when the compare-and-set misses.
        """
        table = LevelTable.load(session)

        user = self._lock_user(session, user_id)
        old_xp, old_level = user.xp, user.level
        signed = (target - old_xp) if target is not None else (delta or 0)
        new_xp = max(old_xp + signed, 0)
        new_level = table.resolve(new_xp)

        result = session.execute(
            update(User)
            .where(User.id == user_id, User.xp == old_xp)
            .values(xp=new_xp, level=new_level, updated_at=self._clock())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise _StaleBalance(user_id)

        user = self._lock_user(session, user_id)
        report = None
        if new_level != old_level:
            report = self._rewards.distribute(session, user, old_level, new_level)

        self._audit.log_adjustment(
            session,
            user_id=user_id,
            mode=mode,
            amount=old_xp - new_xp if mode == AdjustmentMode.SUBTRACT else amount,
            old_xp=old_xp,
            new_xp=new_xp,
            reason=reason,
            admin_id=admin_id,
        )

        return AwardResult(
            user_id=user_id,
            old_xp=old_xp,
            new_xp=new_xp,
            xp_change=new_xp - old_xp,
            old_level=old_level,
            new_level=new_level,
            level_changed=new_level != old_level,
            rewards=report,
        )

    def _run(
        self,
        user_id: str,
        work: Callable[[Session], AwardResult],
    ) -> AwardResult:
        """Run *work* as one transaction; wrap storage failures.

        A compare-and-set miss rolls back and reruns *work* from the start,
        up to ``cas_max_retries`` times.
        """
        retries = self._config.cas_max_retries
        for attempt in range(1, retries + 1):
            try:
                return self._run_once(user_id, work)
            except _StaleBalance:
                logger.warning(
                    "Balance changed under us for user %s (attempt %d/%d); retrying",
                    user_id, attempt, retries,
                )
        raise TransactionFailure(
            f"Could not update balance for user {user_id} after {retries} attempts"
        )

    def _run_once(
        self,
        user_id: str,
        work: Callable[[Session], AwardResult],
    ) -> AwardResult:
        session = Session(self._engine, expire_on_commit=False)
        try:
            result = work(session)
            session.commit()
            return result
        except (ProgressionError, _StaleBalance):
            session.rollback()
            raise
        except Exception as exc:
            session.rollback()
            logger.exception("Balance transaction for user %s rolled back", user_id)
            raise TransactionFailure(
                f"Balance transaction for user {user_id} failed: {exc}"
            ) from exc
        finally:
            session.close()

    # -------------------------------------------------------------------
    # Awards
    # -------------------------------------------------------------------
    def _announce(
        self, user_id: str, action_key: str, xp_awarded: int, metadata: dict | None
    ) -> None:
        self._bus.publish(ActionOccurred(
            user_id=user_id,
            action_key=action_key,
            xp_awarded=xp_awarded,
            metadata=dict(metadata or {}),
            timestamp=self._clock(),
        ))

    def _skip(
        self, user_id: str, action_key: str, reason: SkipReason, metadata: dict | None
    ) -> None:
        logger.info("No XP for user %s action %s: %s", user_id, action_key, reason)
        self._announce(user_id, action_key, 0, metadata)

    def award_xp(
        self, user_id: str, action_key: str, metadata: dict | None = None
    ) -> AwardResult | None:
        """Award XP for *action_key*.  ``None`` means a soft no-op."""
        return self.award_xp_with_context(user_id, action_key, metadata)

    def award_xp_with_context(
        self,
        user_id: str,
        action_key: str,
        metadata: dict | None = None,
        context_id: str | None = None,
    ) -> AwardResult | None:
        """Award XP for *action_key*, scaled by the role and *context_id*
        multipliers.

        Returns ``None`` when the action is unknown or disabled, or the
        rate limiter rejects.  The action is published on the event bus
        either way, with ``xp_awarded=0`` for a no-op.

        Raises
        ------
        NotFoundError
            If *user_id* does not exist.
        TransactionFailure
            If the storage transaction aborted.
        """
        config = self._registry.get_action_config(action_key)
        if config is None:
            self._skip(user_id, action_key, SkipReason.UNKNOWN_ACTION, metadata)
            return None
        if not config.enabled:
            self._skip(user_id, action_key, SkipReason.DISABLED, metadata)
            return None

        blocked = self._rate_limiter.check(user_id, config)
        if blocked is not None:
            self._skip(user_id, action_key, blocked, metadata)
            return None

        multiplier = self._multipliers.resolve(user_id, context_id)
        final_xp = apply_multiplier(config.base_value, multiplier.value)
        reason = AWARD_REASON_TEMPLATE.format(
            action=action_key,
            final_xp=final_xp,
            base=config.base_value,
            multiplier=multiplier.value,
        )
        log_metadata = dict(metadata or {})
        log_metadata.update({
            "base_value": config.base_value,
            "multiplier": multiplier.value,
        })
        if context_id is not None:
            log_metadata["context_id"] = context_id
        if multiplier.violations:
            log_metadata["multiplier_violations"] = multiplier.violations

        def work(session: Session) -> AwardResult:
            self._lock_user(session, user_id)
            self._audit.log_action(session, user_id, action_key, final_xp, log_metadata)
            return self._apply_delta(
                session,
                user_id,
                mode=AdjustmentMode.ADD,
                amount=final_xp,
                reason=reason,
                delta=final_xp,
            )

        result = self._run(user_id, work)
        result = replace(result, action_key=action_key, multiplier=multiplier)

        logger.info(
            "User %s +%d XP for %s (%d → %d, level %d → %d)",
            user_id, final_xp, action_key, result.old_xp, result.new_xp,
            result.old_level, result.new_level,
        )
        self._announce(user_id, action_key, result.xp_change, metadata)
        return result

    # -------------------------------------------------------------------
    # Adjustments
    # -------------------------------------------------------------------
    def adjust(
        self,
        user_id: str,
        amount: int,
        mode: AdjustmentMode | str,
        reason: str,
        admin_id: str | None = None,
    ) -> AwardResult:
        """Add, subtract or set a user's XP.

        ``set`` is converted to the signed delta from the current balance
        and shares the add/subtract path.  Subtraction removes at most the
        current balance.

        Raises
        ------
        ValidationError
            If *amount* is not a non-negative integer or *mode* is unknown.
        NotFoundError
            If *user_id* does not exist.
        TransactionFailure
            If the storage transaction aborted.
        """
        amount, parsed = _validate_adjustment(amount, mode)

        def work(session: Session) -> AwardResult:
            kwargs: dict = {"mode": parsed, "amount": amount,
                            "reason": reason, "admin_id": admin_id}
            if parsed == AdjustmentMode.SET:
                return self._apply_delta(session, user_id, target=amount, **kwargs)
            signed = amount if parsed == AdjustmentMode.ADD else -amount
            return self._apply_delta(session, user_id, delta=signed, **kwargs)

        result = self._run(user_id, work)
        logger.info(
            "Adjusted user %s XP (%s %d by %s): %d → %d",
            user_id, parsed, amount, admin_id or "system", result.old_xp, result.new_xp,
        )
        return result

    # -------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------
    def ensure_user(self, user_id: str, username: str) -> User:
        with Session(self._engine, expire_on_commit=False) as session:
            user = get_or_create_user(session, user_id, username)
            session.commit()
            return user

    def get_user_progression(self, user_id: str) -> UserProgression:
        """Current XP, level and progress towards the next level.

        Raises
        ------
        NotFoundError
            If *user_id* does not exist.
        """
        with Session(self._engine) as session:
            user = session.get(User, user_id)
            if user is None:
                raise NotFoundError("user", user_id)
            table = LevelTable.load(session)
            progress = level_progress(user.xp, table)
            level_row = session.get(Level, user.level)
            return UserProgression(
                user_id=user.id,
                xp=user.xp,
                level=user.level,
                level_name=level_row.name if level_row else None,
                current_level_xp=progress.current_level_xp,
                next_level=progress.next_level,
                next_level_xp=progress.next_level_xp,
                xp_to_next=progress.xp_to_next,
                progress_percentage=progress.progress_percentage,
                active_title_id=user.active_title_id,
            )
