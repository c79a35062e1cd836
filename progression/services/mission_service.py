"""
progression.services.mission_service — Mission Progress Tracking
=================================================================

Missions count occurrences of one action type.  Progress rows are created
lazily on the first matching action and are only ever reset, never
deleted.

* :meth:`MissionService.update_progress` advances every eligible mission by
  exactly one per action event.  It is subscribed to the XP service's
  post-commit :class:`~progression.engine.events.ActionOccurred` events.
* :meth:`MissionService.claim_reward` only flips the claim flag and returns
  the reward descriptor.  Applying the rewards is the caller's job.
* :meth:`MissionService.reset_daily` / :meth:`reset_weekly` sweep missions
  whose ``expires_at`` has passed.  The UPDATE repeats the
  ``expires_at < now`` predicate, so overlapping sweeps reset each mission
  once.
"""

from __future__ import annotations

import enum
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, time, timedelta
from typing import TYPE_CHECKING

from sqlalchemy import or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from progression.constants import CADENCE_PERIODS
from progression.database.engine import as_utc, utcnow
from progression.database.models import Mission, MissionCadence, User, UserMissionProgress
from progression.errors import NotFoundError, ValidationError

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from progression.engine.events import ActionOccurred

logger = logging.getLogger(__name__)


class ClaimFailure(enum.StrEnum):
    NO_PROGRESS = "No progress found"
    NOT_COMPLETED = "Mission not completed"
    ALREADY_CLAIMED = "Reward already claimed"


@dataclass(frozen=True, slots=True)
class ProgressDelta:
    mission_id: int
    title: str
    previous_count: int
    current_count: int
    required_count: int
    just_completed: bool


@dataclass(frozen=True, slots=True)
class MissionRewards:
    """Reward descriptor returned by a successful claim."""

    mission_id: int
    title: str
    xp: int = 0
    currency: int = 0
    badge_id: int | None = None


@dataclass(frozen=True, slots=True)
class ClaimResult:
    success: bool
    reason: ClaimFailure | None = None
    rewards: MissionRewards | None = None


@dataclass(frozen=True, slots=True)
class ResetSummary:
    cadence: str
    missions_reset: int
    progress_rows_reset: int


@dataclass(frozen=True, slots=True)
class MissionStatus:
    """A mission as seen by one user."""

    mission_id: int
    title: str
    description: str | None
    action_type: str
    cadence: str
    required_count: int
    current_count: int
    is_completed: bool
    is_reward_claimed: bool
    expires_at: datetime | None
    eligible: bool
    xp_reward: int
    currency_reward: int
    badge_reward_id: int | None


def next_boundary(now: datetime, cadence: str) -> datetime | None:
    """Next UTC midnight (daily) or Monday midnight (weekly) after *now*."""
    midnight = datetime.combine(now.date(), time.min, tzinfo=now.tzinfo)
    if cadence == MissionCadence.DAILY:
        return midnight + timedelta(days=1)
    if cadence == MissionCadence.WEEKLY:
        return midnight + timedelta(days=7 - now.weekday())
    return None


class MissionService:
    """Tracks, claims and resets mission progress."""

    def __init__(self, engine: Engine, clock: Callable[[], datetime] = utcnow) -> None:
        self._engine = engine
        self._clock = clock

    # -------------------------------------------------------------------
    # Progress
    # -------------------------------------------------------------------
    def _advance(
        self, session: Session, user_id: str, mission: Mission, now: datetime
    ) -> ProgressDelta | None:
        progress = session.get(
            UserMissionProgress, (user_id, mission.id), with_for_update=True
        )
        if progress is None:
            progress = UserMissionProgress(
                user_id=user_id,
                mission_id=mission.id,
                current_count=0,
                is_completed=False,
                is_reward_claimed=False,
                updated_at=now,
            )
            session.add(progress)
            session.flush()

        if progress.is_completed:
            return None

        previous = progress.current_count
        progress.current_count = min(previous + 1, mission.required_count)
        progress.updated_at = now
        just_completed = progress.current_count >= mission.required_count
        if just_completed:
            progress.is_completed = True
            progress.completed_at = now
        session.flush()

        return ProgressDelta(
            mission_id=mission.id,
            title=mission.title,
            previous_count=previous,
            current_count=progress.current_count,
            required_count=mission.required_count,
            just_completed=just_completed,
        )

    def update_progress(
        self, user_id: str, action_type: str, metadata: dict | None = None
    ) -> list[ProgressDelta]:
        """Advance every active, unexpired, level-eligible mission for
        *action_type* by one.

        A failure on one mission is logged and does not stop the others.

        Raises
        ------
        NotFoundError
            If *user_id* does not exist.
        """
        now = self._clock()
        deltas: list[ProgressDelta] = []
        with Session(self._engine) as session:
            user = session.get(User, user_id)
            if user is None:
                raise NotFoundError("user", user_id)

            missions = session.scalars(
                select(Mission)
                .where(
                    Mission.action_type == action_type,
                    Mission.is_active.is_(True),
                    Mission.min_level <= user.level,
                    or_(Mission.expires_at.is_(None), Mission.expires_at > now),
                )
                .order_by(Mission.sort_order, Mission.id)
            ).all()

            for mission in missions:
                try:
                    with session.begin_nested():   # SAVEPOINT per mission
                        delta = self._advance(session, user_id, mission, now)
                except SQLAlchemyError:
                    logger.exception(
                        "Mission %d progress update failed for user %s",
                        mission.id, user_id,
                    )
                    continue
                if delta is not None:
                    deltas.append(delta)
                    if delta.just_completed:
                        logger.info("User %s completed mission %d (%s)",
                                    user_id, mission.id, mission.title)
            session.commit()

        if deltas:
            logger.debug("Action %s advanced %d missions for user %s (metadata=%s)",
                         action_type, len(deltas), user_id, metadata)
        return deltas

    def handle_action(self, event: ActionOccurred) -> None:
        """:class:`~progression.engine.events.ActionEventBus` subscriber."""
        self.update_progress(event.user_id, event.action_key, event.metadata)

    # -------------------------------------------------------------------
    # Claims
    # -------------------------------------------------------------------
    def claim_reward(self, user_id: str, mission_id: int) -> ClaimResult:
        """Mark a completed mission claimed and return its rewards.

        Raises
        ------
        NotFoundError
            If *mission_id* does not exist.
        """
        with Session(self._engine) as session:
            mission = session.get(Mission, mission_id)
            if mission is None:
                raise NotFoundError("mission", mission_id)

            progress = session.get(
                UserMissionProgress, (user_id, mission_id), with_for_update=True
            )
            if progress is None:
                return ClaimResult(success=False, reason=ClaimFailure.NO_PROGRESS)
            if not progress.is_completed:
                return ClaimResult(success=False, reason=ClaimFailure.NOT_COMPLETED)
            if progress.is_reward_claimed:
                return ClaimResult(success=False, reason=ClaimFailure.ALREADY_CLAIMED)

            now = self._clock()
            progress.is_reward_claimed = True
            progress.claimed_at = now
            progress.updated_at = now
            rewards = MissionRewards(
                mission_id=mission.id,
                title=mission.title,
                xp=mission.xp_reward,
                currency=mission.currency_reward,
                badge_id=mission.badge_reward_id,
            )
            session.commit()

        logger.info("User %s claimed mission %d", user_id, mission_id)
        return ClaimResult(success=True, rewards=rewards)

    # -------------------------------------------------------------------
    # Cadence sweeps
    # -------------------------------------------------------------------
    def _reset(self, cadence: MissionCadence) -> ResetSummary:
        now = self._clock()
        period = CADENCE_PERIODS[cadence]
        missions_reset = 0
        rows_reset = 0

        with Session(self._engine) as session:
            due = session.execute(
                select(Mission.id, Mission.expires_at).where(
                    Mission.cadence == cadence,
                    Mission.expires_at.is_not(None),
                    Mission.expires_at < now,
                )
            ).all()

            for mission_id, expires_at in due:
                new_expiry = as_utc(expires_at)
                while new_expiry <= now:
                    new_expiry += period

                claimed = session.execute(
                    update(Mission)
                    .where(Mission.id == mission_id, Mission.expires_at < now)
                    .values(expires_at=new_expiry)
                    .execution_options(synchronize_session=False)
                )
                if claimed.rowcount == 0:
                    continue

                reset = session.execute(
                    update(UserMissionProgress)
                    .where(UserMissionProgress.mission_id == mission_id)
                    .values(
                        current_count=0,
                        is_completed=False,
                        is_reward_claimed=False,
                        completed_at=None,
                        claimed_at=None,
                        updated_at=now,
                    )
                    .execution_options(synchronize_session=False)
                )
                missions_reset += 1
                rows_reset += reset.rowcount
            session.commit()

        if missions_reset:
            logger.info("%s reset: %d missions, %d progress rows",
                        cadence.capitalize(), missions_reset, rows_reset)
        return ResetSummary(
            cadence=str(cadence),
            missions_reset=missions_reset,
            progress_rows_reset=rows_reset,
        )

    def reset_daily(self) -> ResetSummary:
        return self._reset(MissionCadence.DAILY)

    def reset_weekly(self) -> ResetSummary:
        return self._reset(MissionCadence.WEEKLY)

    # -------------------------------------------------------------------
    # Listing & creation
    # -------------------------------------------------------------------
    def get_missions_for_user(
        self, user_id: str, cadence: MissionCadence | str | None = None
    ) -> list[MissionStatus]:
        """Active, unexpired missions enriched with the user's progress."""
        now = self._clock()
        with Session(self._engine) as session:
            user = session.get(User, user_id)
            if user is None:
                raise NotFoundError("user", user_id)

            stmt = (
                select(Mission, UserMissionProgress)
                .outerjoin(
                    UserMissionProgress,
                    (UserMissionProgress.mission_id == Mission.id)
                    & (UserMissionProgress.user_id == user_id),
                )
                .where(
                    Mission.is_active.is_(True),
                    or_(Mission.expires_at.is_(None), Mission.expires_at > now),
                )
                .order_by(Mission.sort_order, Mission.id)
            )
            if cadence is not None:
                stmt = stmt.where(Mission.cadence == str(cadence))

            return [
                MissionStatus(
                    mission_id=m.id,
                    title=m.title,
                    description=m.description,
                    action_type=m.action_type,
                    cadence=m.cadence,
                    required_count=m.required_count,
                    current_count=p.current_count if p else 0,
                    is_completed=bool(p and p.is_completed),
                    is_reward_claimed=bool(p and p.is_reward_claimed),
                    expires_at=as_utc(m.expires_at),
                    eligible=user.level >= m.min_level,
                    xp_reward=m.xp_reward,
                    currency_reward=m.currency_reward,
                    badge_reward_id=m.badge_reward_id,
                )
                for m, p in session.execute(stmt).all()
            ]

    def create_mission(
        self,
        session: Session,
        *,
        title: str,
        action_type: str,
        required_count: int = 1,
        xp_reward: int = 0,
        currency_reward: int = 0,
        badge_reward_id: int | None = None,
        cadence: MissionCadence | str = MissionCadence.NONE,
        min_level: int = 1,
        expires_at: datetime | None = None,
        description: str | None = None,
        sort_order: int = 0,
    ) -> Mission:
        """Add a mission to *session*.  Cadence missions without an explicit
        ``expires_at`` expire at the next daily/weekly boundary.

        Raises
        ------
        ValidationError
            On a non-positive ``required_count``, negative rewards or an
            unknown cadence.
        """
        try:
            parsed = MissionCadence(cadence)
        except ValueError:
            raise ValidationError(f"Unknown mission cadence {cadence!r}") from None
        if required_count < 1:
            raise ValidationError("required_count must be at least 1")
        if xp_reward < 0 or currency_reward < 0:
            raise ValidationError("Mission rewards must be non-negative")
        if min_level < 1:
            raise ValidationError("min_level must be at least 1")

        if expires_at is None:
            expires_at = next_boundary(self._clock(), parsed)

        mission = Mission(
            title=title,
            description=description,
            action_type=action_type,
            required_count=required_count,
            xp_reward=xp_reward,
            currency_reward=currency_reward,
            badge_reward_id=badge_reward_id,
            cadence=str(parsed),
            min_level=min_level,
            expires_at=expires_at,
            is_active=True,
            sort_order=sort_order,
        )
        session.add(mission)
        session.flush()
        return mission
