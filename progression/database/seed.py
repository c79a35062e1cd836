"""
progression.database.seed — Default Data Seeder
================================================

Baseline levels, level rewards, action settings and starter missions so a
fresh database is immediately usable.

Idempotent — only inserts rows whose natural key doesn't already exist.
Rows edited later by admins are never overwritten.
"""

from __future__ import annotations

import logging

from sqlalchemy import Engine, select
from sqlalchemy.orm import Session

from progression.database.engine import utcnow
from progression.database.models import (
    Badge,
    Level,
    Mission,
    MissionCadence,
    Rarity,
    Title,
    XpActionSetting,
)
from progression.engine.events import DEFAULT_XP_ACTIONS, XpAction

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Default catalogues
# ---------------------------------------------------------------------------
DEFAULT_TITLES: dict[str, tuple[str, str]] = {
    "Novice": (Rarity.COMMON, "Reached level 2"),
    "Regular": (Rarity.UNCOMMON, "Reached level 5"),
    "Veteran": (Rarity.RARE, "Reached level 10"),
    "Legend": (Rarity.LEGENDARY, "Reached level 20"),
}
"""``name`` → ``(rarity, description)``."""

DEFAULT_BADGES: dict[str, tuple[str, str]] = {
    "First Steps": (Rarity.COMMON, "Reached level 3"),
    "Established": (Rarity.RARE, "Reached level 10"),
}

DEFAULT_LEVELS: list[tuple[int, int, str, str, int, str | None, str | None, dict | None]] = [
    (1, 0, "Newcomer", Rarity.COMMON, 0, None, None, None),
    (2, 100, "Apprentice", Rarity.COMMON, 50, "Novice", None, None),
    (3, 250, "Member", Rarity.COMMON, 75, None, "First Steps", None),
    (4, 500, "Contributor", Rarity.UNCOMMON, 100, None, None, {"signature": True}),
    (5, 1000, "Regular", Rarity.UNCOMMON, 150, "Regular", None, None),
    (6, 1750, "Adept", Rarity.UNCOMMON, 200, None, None, None),
    (7, 2750, "Expert", Rarity.RARE, 250, None, None, {"custom_frame": True}),
    (8, 4000, "Elite", Rarity.RARE, 300, None, None, None),
    (9, 5500, "Master", Rarity.EPIC, 400, None, None, None),
    (10, 7500, "Grandmaster", Rarity.EPIC, 500, "Veteran", "Established", None),
    (20, 30000, "Legend", Rarity.LEGENDARY, 2500, "Legend", None, {"profile_banner": True}),
]
"""``(level, min_xp, name, rarity, currency, title, badge, unlocks)``."""

DEFAULT_MISSIONS: list[tuple[str, str, int, int, int, str]] = [
    ("Daily Poster", XpAction.POST_CREATED, 3, 25, 10, MissionCadence.DAILY),
    ("Show Up", XpAction.DAILY_LOGIN, 1, 10, 5, MissionCadence.DAILY),
    ("Conversation Starter", XpAction.THREAD_CREATED, 5, 150, 50, MissionCadence.WEEKLY),
]
"""``(title, action_type, required_count, xp_reward, currency_reward, cadence)``."""


# ---------------------------------------------------------------------------
# Seeders
# ---------------------------------------------------------------------------
def _seed_catalogue(session: Session, model: type, entries: dict) -> dict[str, int]:
    ids: dict[str, int] = {}
    for name, (rarity, desc) in entries.items():
        row = session.scalar(select(model).where(model.name == name))
        if row is None:
            row = model(name=name, rarity=rarity, description=desc)
            session.add(row)
            session.flush()
        ids[name] = row.id
    return ids


def seed_defaults(engine: Engine, *, missions: bool = True) -> dict[str, int]:
    """Insert default rows that don't yet exist.

    Returns a per-table count of inserted rows.
    """
    from progression.services.mission_service import next_boundary

    inserted = {"levels": 0, "xp_action_settings": 0, "missions": 0}
    session = Session(engine)
    try:
        titles = _seed_catalogue(session, Title, DEFAULT_TITLES)
        badges = _seed_catalogue(session, Badge, DEFAULT_BADGES)

        for level, min_xp, name, rarity, currency, title, badge, unlocks in DEFAULT_LEVELS:
            if session.get(Level, level) is None:
                session.add(Level(
                    level=level,
                    min_xp=min_xp,
                    name=name,
                    rarity=rarity,
                    reward_currency=currency,
                    reward_title_id=titles.get(title) if title else None,
                    reward_badge_id=badges.get(badge) if badge else None,
                    unlocks=unlocks,
                ))
                inserted["levels"] += 1

        for key, (base, cap, cooldown, desc) in DEFAULT_XP_ACTIONS.items():
            if session.get(XpActionSetting, str(key)) is None:
                session.add(XpActionSetting(
                    action_key=str(key),
                    base_value=base,
                    daily_cap=cap,
                    cooldown_seconds=cooldown,
                    enabled=True,
                    description=desc,
                ))
                inserted["xp_action_settings"] += 1

        if missions:
            now = utcnow()
            for title, action, count, xp, currency, cadence in DEFAULT_MISSIONS:
                exists = session.scalar(select(Mission.id).where(Mission.title == title))
                if exists is None:
                    session.add(Mission(
                        title=title,
                        action_type=str(action),
                        required_count=count,
                        xp_reward=xp,
                        currency_reward=currency,
                        cadence=str(cadence),
                        expires_at=next_boundary(now, cadence),
                    ))
                    inserted["missions"] += 1

        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()

    if any(inserted.values()):
        logger.info(
            "Seeded %d levels, %d action settings, %d missions.",
            inserted["levels"], inserted["xp_action_settings"], inserted["missions"],
        )
    return inserted
