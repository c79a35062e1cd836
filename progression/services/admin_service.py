"""
progression.services.admin_service — Admin Mutation Service Layer
==================================================================

Every config write follows the pattern:
  1. Begin transaction
  2. Read "before" snapshot
  3. Apply change
  4. Write admin_log with before/after JSON
  5. Commit
  6. Invalidate the action registry (action settings only)

Operator-facing XP adjustments return ``(success, message, result)`` so a
dashboard or bot command can show the message without catching
exceptions.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from progression.database.models import (
    AdminActionType,
    AdminLog,
    Level,
    Mission,
    Role,
    XpActionSetting,
    XpContext,
)
from progression.engine.levels import LevelTable
from progression.errors import NotFoundError, ProgressionError, ValidationError

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from progression.engine.cache import ActionRegistry
    from progression.services.mission_service import MissionService
    from progression.services.xp_service import AwardResult, XpService

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Generic audit helpers
# ---------------------------------------------------------------------------

def _row_to_dict(obj: Any) -> dict | None:
    """Convert a SQLAlchemy model instance to a JSON-serializable dict."""
    if obj is None:
        return None
    result = {}
    for col in obj.__table__.columns:
        val = getattr(obj, col.key, None)
        if isinstance(val, datetime):
            val = val.isoformat()
        result[col.name] = val
    return result


def _log_admin_action(
    session: Session,
    *,
    actor_id: str,
    action_type: str,
    target_table: str,
    target_id: str | None,
    before: dict | None,
    after: dict | None,
    reason: str | None = None,
) -> None:
    """Insert a row into admin_log within the current transaction."""
    session.add(AdminLog(
        actor_id=actor_id,
        action_type=action_type,
        target_table=target_table,
        target_id=target_id,
        before_snapshot=before,
        after_snapshot=after,
        reason=reason,
    ))


def _audited_upsert(
    session: Session,
    obj: Any,
    existing_before: dict | None,
    *,
    table_name: str,
    target_id: str,
    actor_id: str,
) -> None:
    session.flush()
    _log_admin_action(
        session,
        actor_id=actor_id,
        action_type=AdminActionType.UPDATE if existing_before else AdminActionType.CREATE,
        target_table=table_name,
        target_id=target_id,
        before=existing_before,
        after=_row_to_dict(obj),
    )


# ---------------------------------------------------------------------------
# Action settings
# ---------------------------------------------------------------------------

def upsert_action_setting(
    engine: Engine,
    registry: ActionRegistry | None,
    *,
    action_key: str,
    base_value: int,
    daily_cap: int | None = None,
    cooldown_seconds: int | None = None,
    enabled: bool = True,
    description: str | None = None,
    actor_id: str,
) -> XpActionSetting:
    """Create or update an action setting, then invalidate *registry*."""
    if not action_key:
        raise ValidationError("action_key is required")
    if base_value < 0:
        raise ValidationError("base_value must be non-negative")
    if daily_cap is not None and daily_cap < 0:
        raise ValidationError("daily_cap must be non-negative")
    if cooldown_seconds is not None and cooldown_seconds < 0:
        raise ValidationError("cooldown_seconds must be non-negative")

    with Session(engine, expire_on_commit=False) as session:
        obj = session.get(XpActionSetting, action_key)
        before = _row_to_dict(obj)
        if obj is None:
            obj = XpActionSetting(action_key=action_key)
            session.add(obj)
        obj.base_value = base_value
        obj.daily_cap = daily_cap
        obj.cooldown_seconds = cooldown_seconds
        obj.enabled = enabled
        obj.description = description

        _audited_upsert(
            session, obj, before,
            table_name="xp_action_settings", target_id=action_key, actor_id=actor_id,
        )
        session.commit()
        session.expunge(obj)

    if registry is not None:
        registry.invalidate()
    logger.info("Action %s saved by %s (base=%d enabled=%s)",
                action_key, actor_id, base_value, enabled)
    return obj


def set_action_enabled(
    engine: Engine,
    registry: ActionRegistry | None,
    *,
    action_key: str,
    enabled: bool,
    actor_id: str,
) -> XpActionSetting:
    """Toggle an action.

    Raises
    ------
    NotFoundError
        If *action_key* has no settings row.
    """
    with Session(engine, expire_on_commit=False) as session:
        obj = session.get(XpActionSetting, action_key)
        if obj is None:
            raise NotFoundError("action", action_key)
        before = _row_to_dict(obj)
        obj.enabled = enabled
        _audited_upsert(
            session, obj, before,
            table_name="xp_action_settings", target_id=action_key, actor_id=actor_id,
        )
        session.commit()
        session.expunge(obj)

    if registry is not None:
        registry.invalidate()
    return obj


# ---------------------------------------------------------------------------
# Levels
# ---------------------------------------------------------------------------

def upsert_level(
    engine: Engine,
    *,
    level: int,
    min_xp: int,
    actor_id: str,
    name: str | None = None,
    rarity: str = "common",
    reward_currency: int = 0,
    reward_title_id: int | None = None,
    reward_badge_id: int | None = None,
    unlocks: dict | None = None,
) -> Level:
    """Create or update a level.  The resulting table must stay ascending
    with level 1 at ``min_xp = 0``.

    Existing users keep their stored level until their next balance change.
    """
    if level < 1:
        raise ValidationError("level must be at least 1")
    if level == 1 and min_xp != 0:
        raise ValidationError("level 1 must start at 0 XP")
    if min_xp < 0 or reward_currency < 0:
        raise ValidationError("min_xp and reward_currency must be non-negative")

    with Session(engine, expire_on_commit=False) as session:
        obj = session.get(Level, level)
        before = _row_to_dict(obj)
        if obj is None:
            obj = Level(level=level)
            session.add(obj)
        obj.min_xp = min_xp
        obj.name = name
        obj.rarity = rarity
        obj.reward_currency = reward_currency
        obj.reward_title_id = reward_title_id
        obj.reward_badge_id = reward_badge_id
        obj.unlocks = unlocks
        session.flush()

        try:
            LevelTable.load(session)
        except ValueError as exc:
            session.rollback()
            raise ValidationError(str(exc)) from exc

        _audited_upsert(
            session, obj, before,
            table_name="levels", target_id=str(level), actor_id=actor_id,
        )
        session.commit()
        session.expunge(obj)
    return obj


def delete_level(engine: Engine, *, level: int, actor_id: str) -> bool:
    """Delete a level.  Returns ``True`` if found and deleted."""
    if level == 1:
        raise ValidationError("level 1 cannot be deleted")
    with Session(engine) as session:
        obj = session.get(Level, level)
        if obj is None:
            return False
        _log_admin_action(
            session,
            actor_id=actor_id,
            action_type=AdminActionType.DELETE,
            target_table="levels",
            target_id=str(level),
            before=_row_to_dict(obj),
            after=None,
        )
        session.delete(obj)
        session.commit()
        return True


# ---------------------------------------------------------------------------
# Multiplier sources
# ---------------------------------------------------------------------------

def set_role_multiplier(
    engine: Engine, *, role_name: str, xp_multiplier: float | None, actor_id: str
) -> Role:
    """Create the role if needed and set its XP multiplier."""
    if xp_multiplier is not None and xp_multiplier < 0:
        raise ValidationError("xp_multiplier must be non-negative")
    with Session(engine, expire_on_commit=False) as session:
        obj = session.scalar(select(Role).where(Role.name == role_name))
        before = _row_to_dict(obj)
        if obj is None:
            obj = Role(name=role_name)
            session.add(obj)
        obj.xp_multiplier = xp_multiplier
        session.flush()
        _audited_upsert(
            session, obj, before,
            table_name="roles", target_id=str(obj.id), actor_id=actor_id,
        )
        session.commit()
        session.expunge(obj)
    return obj


def set_context_multiplier(
    engine: Engine,
    *,
    context_id: str,
    name: str,
    xp_multiplier: float | None,
    actor_id: str,
    kind: str = "forum",
) -> XpContext:
    """Create or update an XP context and its multiplier."""
    if xp_multiplier is not None and xp_multiplier < 0:
        raise ValidationError("xp_multiplier must be non-negative")
    with Session(engine, expire_on_commit=False) as session:
        obj = session.get(XpContext, context_id)
        before = _row_to_dict(obj)
        if obj is None:
            obj = XpContext(id=context_id)
            session.add(obj)
        obj.name = name
        obj.kind = kind
        obj.xp_multiplier = xp_multiplier
        _audited_upsert(
            session, obj, before,
            table_name="xp_contexts", target_id=context_id, actor_id=actor_id,
        )
        session.commit()
        session.expunge(obj)
    return obj


# ---------------------------------------------------------------------------
# Missions
# ---------------------------------------------------------------------------

def create_mission(
    engine: Engine,
    missions: MissionService,
    *,
    actor_id: str,
    **fields: Any,
) -> Mission:
    """Audited wrapper around :meth:`MissionService.create_mission`."""
    with Session(engine, expire_on_commit=False) as session:
        mission = missions.create_mission(session, **fields)
        _log_admin_action(
            session,
            actor_id=actor_id,
            action_type=AdminActionType.CREATE,
            target_table="missions",
            target_id=str(mission.id),
            before=None,
            after=_row_to_dict(mission),
        )
        session.commit()
        session.expunge(mission)
    return mission


# ---------------------------------------------------------------------------
# XP adjustments
# ---------------------------------------------------------------------------

def adjust_user_xp(
    xp_service: XpService,
    *,
    actor_id: str,
    user_id: str,
    amount: int,
    mode: str,
    reason: str,
) -> tuple[bool, str, AwardResult | None]:
    """Operator-facing wrapper around :meth:`XpService.adjust`.

    Returns ``(success, message, result)``; engine errors become a failed
    tuple with a readable message instead of propagating.
    """
    if not reason or not reason.strip():
        return False, "A reason is required for XP adjustments.", None
    try:
        result = xp_service.adjust(user_id, amount, mode, reason, admin_id=actor_id)
    except ProgressionError as exc:
        logger.warning("Admin %s XP adjustment for %s failed: %s", actor_id, user_id, exc)
        return False, str(exc), None

    message = f"XP for {user_id}: {result.old_xp} → {result.new_xp}"
    if result.level_changed:
        message += f" (level {result.old_level} → {result.new_level})"
    return True, message, result
