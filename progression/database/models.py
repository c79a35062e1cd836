"""
progression.database.models — SQLAlchemy 2.0 Data Models
=========================================================

Tables:
- users                  — Progression state per user (opaque string id)
- levels                 — Ascending XP threshold table + per-level rewards
- titles / badges        — Reward catalogues
- user_titles / user_badges — Grant records (existence = already granted)
- level_reward_claims    — Per (user, level) currency/unlock grant record
- roles / user_roles     — Role membership with XP multipliers
- xp_contexts            — Per-context (e.g. forum) XP multipliers
- xp_action_settings     — Admin-editable action configuration
- xp_action_logs         — Append-only award journal (rate-limit source)
- xp_adjustment_logs     — Append-only balance change journal
- missions               — Bounded objectives with a reset cadence
- user_mission_progress  — Lazily created per-user mission counters
- notifications          — Default notification queue
- admin_log              — Append-only audit trail for config mutations
"""

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

# Opaque user identifier used across the whole engine.
UserId = str
USER_ID_LENGTH = 64


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all progression ORM models."""


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class AdjustmentMode(enum.StrEnum):
    """How an adjustment amount is applied to a balance."""
    ADD = "add"
    SUBTRACT = "subtract"
    SET = "set"


class MissionCadence(enum.StrEnum):
    """Reset cadence of a mission."""
    DAILY = "daily"
    WEEKLY = "weekly"
    NONE = "none"


class Rarity(enum.StrEnum):
    COMMON = "common"
    UNCOMMON = "uncommon"
    RARE = "rare"
    EPIC = "epic"
    LEGENDARY = "legendary"
    MYTHIC = "mythic"


class AdminActionType(enum.StrEnum):
    """Categories of admin mutations recorded in admin_log."""
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    XP_ADJUST = "XP_ADJUST"


# ---------------------------------------------------------------------------
# Users — progression state
# ---------------------------------------------------------------------------
class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(USER_ID_LENGTH), primary_key=True)
    username: Mapped[str] = mapped_column(String(100), nullable=False)
    xp: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    level: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    active_title_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("titles.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    roles: Mapped[list[UserRole]] = relationship(
        back_populates="user", cascade="all, delete-orphan"
    )

    __table_args__ = (
        CheckConstraint("xp >= 0", name="ck_users_xp_non_negative"),
        CheckConstraint("level >= 1", name="ck_users_level_positive"),
        Index("ix_users_xp_desc", "xp"),
    )

    def __repr__(self) -> str:
        return f"<User id={self.id!r} name={self.username!r} xp={self.xp} lvl={self.level}>"


# ---------------------------------------------------------------------------
# Reward catalogues
# ---------------------------------------------------------------------------
class Title(Base):
    __tablename__ = "titles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    description: Mapped[str | None] = mapped_column(Text, default=None)
    rarity: Mapped[str] = mapped_column(String(20), nullable=False, default=Rarity.COMMON)

    def __repr__(self) -> str:
        return f"<Title id={self.id} name={self.name!r}>"


class Badge(Base):
    __tablename__ = "badges"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    description: Mapped[str | None] = mapped_column(Text, default=None)
    icon_url: Mapped[str | None] = mapped_column(String(500), default=None)
    rarity: Mapped[str] = mapped_column(String(20), nullable=False, default=Rarity.COMMON)

    def __repr__(self) -> str:
        return f"<Badge id={self.id} name={self.name!r}>"


# ---------------------------------------------------------------------------
# Levels — ascending threshold table
# ---------------------------------------------------------------------------
class Level(Base):
    __tablename__ = "levels"

    level: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    min_xp: Mapped[int] = mapped_column(Integer, nullable=False, unique=True)
    name: Mapped[str | None] = mapped_column(String(100), default=None)
    rarity: Mapped[str] = mapped_column(String(20), nullable=False, default=Rarity.COMMON)
    reward_currency: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    reward_title_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("titles.id", ondelete="SET NULL"), nullable=True
    )
    reward_badge_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("badges.id", ondelete="SET NULL"), nullable=True
    )
    unlocks: Mapped[dict | None] = mapped_column(JSONB, nullable=True)

    reward_title: Mapped[Title | None] = relationship(foreign_keys=[reward_title_id])
    reward_badge: Mapped[Badge | None] = relationship(foreign_keys=[reward_badge_id])

    __table_args__ = (
        CheckConstraint("level >= 1", name="ck_levels_level_positive"),
        CheckConstraint("min_xp >= 0", name="ck_levels_min_xp_non_negative"),
    )

    def __repr__(self) -> str:
        return f"<Level {self.level} min_xp={self.min_xp} name={self.name!r}>"


# ---------------------------------------------------------------------------
# Grant records
# ---------------------------------------------------------------------------
class UserTitle(Base):
    __tablename__ = "user_titles"

    user_id: Mapped[str] = mapped_column(
        String(USER_ID_LENGTH), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    title_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("titles.id", ondelete="CASCADE"), primary_key=True
    )
    source: Mapped[str | None] = mapped_column(String(50), default=None)
    granted_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    def __repr__(self) -> str:
        return f"<UserTitle user={self.user_id!r} title={self.title_id}>"


class UserBadge(Base):
    __tablename__ = "user_badges"

    user_id: Mapped[str] = mapped_column(
        String(USER_ID_LENGTH), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    badge_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("badges.id", ondelete="CASCADE"), primary_key=True
    )
    source: Mapped[str | None] = mapped_column(String(50), default=None)
    granted_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    def __repr__(self) -> str:
        return f"<UserBadge user={self.user_id!r} badge={self.badge_id}>"


class LevelRewardClaim(Base):
    """One row per (user, level) whose currency/unlock reward was applied."""
    __tablename__ = "level_reward_claims"

    user_id: Mapped[str] = mapped_column(
        String(USER_ID_LENGTH), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    level: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    currency_credited: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    unlocks: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    claimed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def __repr__(self) -> str:
        return f"<LevelRewardClaim user={self.user_id!r} level={self.level}>"


# ---------------------------------------------------------------------------
# Multiplier sources
# ---------------------------------------------------------------------------
class Role(Base):
    __tablename__ = "roles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    xp_multiplier: Mapped[float | None] = mapped_column(Float, nullable=True)

    def __repr__(self) -> str:
        return f"<Role id={self.id} name={self.name!r} mult={self.xp_multiplier}>"


class UserRole(Base):
    __tablename__ = "user_roles"

    user_id: Mapped[str] = mapped_column(
        String(USER_ID_LENGTH), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    role_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True
    )

    user: Mapped[User] = relationship(back_populates="roles")
    role: Mapped[Role] = relationship()

    def __repr__(self) -> str:
        return f"<UserRole user={self.user_id!r} role={self.role_id}>"


class XpContext(Base):
    """A scope (forum, category, ...) that may scale XP awarded inside it."""
    __tablename__ = "xp_contexts"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    kind: Mapped[str] = mapped_column(String(30), nullable=False, default="forum")
    xp_multiplier: Mapped[float | None] = mapped_column(Float, nullable=True)

    def __repr__(self) -> str:
        return f"<XpContext id={self.id!r} mult={self.xp_multiplier}>"


# ---------------------------------------------------------------------------
# Action configuration and journals
# ---------------------------------------------------------------------------
class XpActionSetting(Base):
    """Admin-editable configuration for one XP-earning action.

    Cached in memory by :class:`~progression.engine.cache.ActionRegistry`;
    any write must be followed by ``ActionRegistry.invalidate()``.
    """
    __tablename__ = "xp_action_settings"

    action_key: Mapped[str] = mapped_column(String(100), primary_key=True)
    base_value: Mapped[int] = mapped_column(Integer, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, default=None)
    daily_cap: Mapped[int | None] = mapped_column(Integer, nullable=True)
    cooldown_seconds: Mapped[int | None] = mapped_column(Integer, nullable=True)
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    def __repr__(self) -> str:
        return f"<XpActionSetting {self.action_key!r} base={self.base_value} enabled={self.enabled}>"


class XpActionLog(Base):
    __tablename__ = "xp_action_logs"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(
        String(USER_ID_LENGTH), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    action_key: Mapped[str] = mapped_column(String(100), nullable=False)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    metadata_: Mapped[dict | None] = mapped_column("metadata", JSONB, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_xp_action_logs_user_action_time", "user_id", "action_key", "timestamp"),
        Index("ix_xp_action_logs_timestamp", "timestamp"),
    )

    def __repr__(self) -> str:
        return f"<XpActionLog id={self.id} user={self.user_id!r} action={self.action_key}>"


class XpAdjustmentLog(Base):
    __tablename__ = "xp_adjustment_logs"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(
        String(USER_ID_LENGTH), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    admin_id: Mapped[str | None] = mapped_column(String(USER_ID_LENGTH), nullable=True)
    mode: Mapped[str] = mapped_column(String(10), nullable=False)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    old_xp: Mapped[int] = mapped_column(Integer, nullable=False)
    new_xp: Mapped[int] = mapped_column(Integer, nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_xp_adjustment_logs_user_time", "user_id", "timestamp"),
    )

    def __repr__(self) -> str:
        return (
            f"<XpAdjustmentLog id={self.id} user={self.user_id!r} "
            f"{self.mode} {self.old_xp}->{self.new_xp}>"
        )


# ---------------------------------------------------------------------------
# Missions
# ---------------------------------------------------------------------------
class Mission(Base):
    __tablename__ = "missions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, default=None)
    action_type: Mapped[str] = mapped_column(String(100), nullable=False)
    required_count: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    xp_reward: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    currency_reward: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    badge_reward_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("badges.id", ondelete="SET NULL"), nullable=True
    )
    cadence: Mapped[str] = mapped_column(
        String(10), nullable=False, default=MissionCadence.NONE
    )
    min_level: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        CheckConstraint("required_count >= 1", name="ck_missions_required_count_positive"),
        Index("ix_missions_action_active", "action_type", "is_active"),
        Index("ix_missions_cadence_expiry", "cadence", "expires_at"),
    )

    def __repr__(self) -> str:
        return f"<Mission id={self.id} {self.title!r} action={self.action_type}>"


class UserMissionProgress(Base):
    __tablename__ = "user_mission_progress"

    user_id: Mapped[str] = mapped_column(
        String(USER_ID_LENGTH), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    mission_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("missions.id", ondelete="CASCADE"), primary_key=True
    )
    current_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_reward_claimed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    claimed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    mission: Mapped[Mission] = relationship()

    def __repr__(self) -> str:
        return (
            f"<UserMissionProgress user={self.user_id!r} mission={self.mission_id} "
            f"count={self.current_count} done={self.is_completed}>"
        )


# ---------------------------------------------------------------------------
# Notifications — default queue; delivery is someone else's job
# ---------------------------------------------------------------------------
class Notification(Base):
    __tablename__ = "notifications"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(
        String(USER_ID_LENGTH), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    type: Mapped[str] = mapped_column(String(50), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    data: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index("ix_notifications_user_unread", "user_id", "is_read"),
    )

    def __repr__(self) -> str:
        return f"<Notification id={self.id} user={self.user_id!r} type={self.type}>"


# ---------------------------------------------------------------------------
# AdminLog — append-only audit trail
# ---------------------------------------------------------------------------
class AdminLog(Base):
    __tablename__ = "admin_log"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    actor_id: Mapped[str] = mapped_column(String(USER_ID_LENGTH), nullable=False)
    action_type: Mapped[str] = mapped_column(String(50), nullable=False)
    target_table: Mapped[str] = mapped_column(String(50), nullable=False)
    target_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    before_snapshot: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    after_snapshot: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index("ix_admin_log_actor_time", "actor_id", "timestamp"),
        Index("ix_admin_log_target", "target_table", "target_id", "timestamp"),
    )

    def __repr__(self) -> str:
        return f"<AdminLog id={self.id} actor={self.actor_id!r} action={self.action_type}>"
