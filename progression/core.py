"""
progression.core — ProgressionEngine Facade
============================================

Wires the registry, limiter, resolver, distributor, XP service and
mission tracker together and exposes the surface other domains call.

Usage::

    from progression.core import ProgressionEngine

    engine = ProgressionEngine.from_env(wallet=my_wallet)
    result = engine.award_xp("user-42", "post_created")
    if result is None:
        ...  # disabled, unknown or rate limited
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING

from progression.config import ProgressionConfig, load_config
from progression.database.engine import create_db_engine, get_session, utcnow
from progression.database.models import AdjustmentMode
from progression.engine.cache import ActionRegistry
from progression.engine.events import ActionEventBus
from progression.services.audit_service import AuditLogger
from progression.services.collaborators import NotificationSink, NullWallet, Wallet
from progression.services.grant_service import BadgeGrant
from progression.services.mission_service import (
    ClaimResult,
    MissionRewards,
    MissionService,
    MissionStatus,
    ProgressDelta,
    ResetSummary,
)
from progression.services.multiplier_service import MultiplierResolver
from progression.services.notification_service import NotificationQueue
from progression.services.rate_limiter import ActionLimits, RateLimiter
from progression.services.reward_service import RewardDistributor
from progression.services.xp_service import AwardResult, UserProgression, XpService

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)


class ProgressionEngine:
    """Entry point for awarding XP, reading progression and missions."""

    def __init__(
        self,
        db: Engine,
        *,
        config: ProgressionConfig | None = None,
        wallet: Wallet | None = None,
        notifier: NotificationSink | None = None,
        clock: Callable[[], datetime] = utcnow,
        track_missions: bool = True,
    ) -> None:
        self.db = db
        self.config = config or ProgressionConfig()
        self.wallet = wallet or NullWallet()
        self.bus = ActionEventBus()

        self.registry = ActionRegistry(db, ttl_seconds=self.config.action_cache_ttl_seconds)
        self.rate_limiter = RateLimiter(db, self.registry, clock=clock)
        self.multipliers = MultiplierResolver(db, self.config)
        self.rewards = RewardDistributor(
            self.wallet,
            notifier or NotificationQueue(),
            clock=clock,
            currency_name=self.config.currency_name,
        )
        self.audit = AuditLogger(clock=clock)
        self.xp = XpService(
            db,
            registry=self.registry,
            rate_limiter=self.rate_limiter,
            multipliers=self.multipliers,
            rewards=self.rewards,
            audit=self.audit,
            bus=self.bus,
            config=self.config,
            clock=clock,
        )
        self.missions = MissionService(db, clock=clock)
        self.mission_badges = BadgeGrant(source="mission")
        if track_missions:
            self.bus.subscribe(self.missions.handle_action)

    @classmethod
    def from_env(
        cls,
        config_path: str | Path | None = None,
        **kwargs,
    ) -> ProgressionEngine:
        """Build from ``DATABASE_URL`` and an optional ``config.yaml``."""
        config = load_config(config_path) if config_path else None
        return cls(create_db_engine(), config=config, **kwargs)

    # -------------------------------------------------------------------
    # XP
    # -------------------------------------------------------------------
    def award_xp(
        self, user_id: str, action_key: str, metadata: dict | None = None
    ) -> AwardResult | None:
        return self.xp.award_xp(user_id, action_key, metadata)

    def award_xp_with_context(
        self,
        user_id: str,
        action_key: str,
        metadata: dict | None = None,
        context_id: str | None = None,
    ) -> AwardResult | None:
        return self.xp.award_xp_with_context(user_id, action_key, metadata, context_id)

    def adjust(
        self,
        user_id: str,
        amount: int,
        mode: AdjustmentMode | str,
        reason: str,
        admin_id: str | None = None,
    ) -> AwardResult:
        return self.xp.adjust(user_id, amount, mode, reason, admin_id)

    def ensure_user(self, user_id: str, username: str) -> None:
        """Create the user's progression state at ``{xp: 0, level: 1}`` if missing."""
        self.xp.ensure_user(user_id, username)

    def get_user_progression(self, user_id: str) -> UserProgression:
        return self.xp.get_user_progression(user_id)

    def get_action_limits(self, user_id: str, action_key: str) -> ActionLimits | None:
        return self.rate_limiter.get_action_limits(user_id, action_key)

    def invalidate_action_cache(self) -> None:
        self.registry.invalidate()

    # -------------------------------------------------------------------
    # Missions
    # -------------------------------------------------------------------
    def update_mission_progress(
        self, user_id: str, action_type: str, metadata: dict | None = None
    ) -> list[ProgressDelta]:
        return self.missions.update_progress(user_id, action_type, metadata)

    def claim_mission_reward(self, user_id: str, mission_id: int) -> ClaimResult:
        return self.missions.claim_reward(user_id, mission_id)

    def apply_mission_rewards(self, user_id: str, rewards: MissionRewards) -> AwardResult | None:
        """Apply a claimed mission's rewards through the XP service and wallet.

        XP goes through :meth:`adjust` so level-ups fire as usual; currency is
        credited in its own transaction.
        """
        result = None
        if rewards.xp > 0:
            result = self.xp.adjust(
                user_id,
                rewards.xp,
                AdjustmentMode.ADD,
                f"Mission reward: {rewards.title}",
                admin_id=self.config.system_actor_id,
            )
        if rewards.currency > 0:
            with get_session(self.db) as session:
                self.wallet.credit(
                    session, user_id, rewards.currency, "mission_reward",
                    {"mission_id": rewards.mission_id},
                )
        if rewards.badge_id is not None:
            with get_session(self.db) as session:
                self.mission_badges.grant(session, user_id, rewards.badge_id)
        return result

    def get_missions(self, user_id: str, cadence: str | None = None) -> list[MissionStatus]:
        return self.missions.get_missions_for_user(user_id, cadence)

    def reset_daily_missions(self) -> ResetSummary:
        return self.missions.reset_daily()

    def reset_weekly_missions(self) -> ResetSummary:
        return self.missions.reset_weekly()
