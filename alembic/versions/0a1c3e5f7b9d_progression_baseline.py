"""Progression baseline schema

Revision ID: 0a1c3e5f7b9d
Revises:
Create Date: 2026-10-17 09:00:00.000000

"""
from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = '0a1c3e5f7b9d'
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

USER_ID = sa.String(64)


def _now() -> sa.sql.elements.TextClause:
    return sa.text("now()")


def upgrade() -> None:
    """Create every progression table."""

    # --- reward catalogues ---
    op.create_table(
        "titles",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(100), nullable=False, unique=True),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("rarity", sa.String(20), nullable=False, server_default="common"),
    )
    op.create_table(
        "badges",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(100), nullable=False, unique=True),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("icon_url", sa.String(500), nullable=True),
        sa.Column("rarity", sa.String(20), nullable=False, server_default="common"),
    )

    # --- users ---
    op.create_table(
        "users",
        sa.Column("id", USER_ID, primary_key=True),
        sa.Column("username", sa.String(100), nullable=False),
        sa.Column("xp", sa.Integer, nullable=False, server_default="0"),
        sa.Column("level", sa.Integer, nullable=False, server_default="1"),
        sa.Column(
            "active_title_id", sa.Integer,
            sa.ForeignKey("titles.id", ondelete="SET NULL"), nullable=True,
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=_now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=_now()),
        sa.CheckConstraint("xp >= 0", name="ck_users_xp_non_negative"),
        sa.CheckConstraint("level >= 1", name="ck_users_level_positive"),
    )
    op.create_index("ix_users_xp_desc", "users", ["xp"])

    # --- levels ---
    op.create_table(
        "levels",
        sa.Column("level", sa.Integer, primary_key=True, autoincrement=False),
        sa.Column("min_xp", sa.Integer, nullable=False, unique=True),
        sa.Column("name", sa.String(100), nullable=True),
        sa.Column("rarity", sa.String(20), nullable=False, server_default="common"),
        sa.Column("reward_currency", sa.Integer, nullable=False, server_default="0"),
        sa.Column(
            "reward_title_id", sa.Integer,
            sa.ForeignKey("titles.id", ondelete="SET NULL"), nullable=True,
        ),
        sa.Column(
            "reward_badge_id", sa.Integer,
            sa.ForeignKey("badges.id", ondelete="SET NULL"), nullable=True,
        ),
        sa.Column("unlocks", postgresql.JSONB, nullable=True),
        sa.CheckConstraint("level >= 1", name="ck_levels_level_positive"),
        sa.CheckConstraint("min_xp >= 0", name="ck_levels_min_xp_non_negative"),
    )

    # --- grant records ---
    op.create_table(
        "user_titles",
        sa.Column("user_id", USER_ID, sa.ForeignKey("users.id", ondelete="CASCADE"),
                  primary_key=True),
        sa.Column("title_id", sa.Integer, sa.ForeignKey("titles.id", ondelete="CASCADE"),
                  primary_key=True),
        sa.Column("source", sa.String(50), nullable=True),
        sa.Column("granted_at", sa.DateTime(timezone=True), server_default=_now()),
    )
    op.create_table(
        "user_badges",
        sa.Column("user_id", USER_ID, sa.ForeignKey("users.id", ondelete="CASCADE"),
                  primary_key=True),
        sa.Column("badge_id", sa.Integer, sa.ForeignKey("badges.id", ondelete="CASCADE"),
                  primary_key=True),
        sa.Column("source", sa.String(50), nullable=True),
        sa.Column("granted_at", sa.DateTime(timezone=True), server_default=_now()),
    )
    op.create_table(
        "level_reward_claims",
        sa.Column("user_id", USER_ID, sa.ForeignKey("users.id", ondelete="CASCADE"),
                  primary_key=True),
        sa.Column("level", sa.Integer, primary_key=True, autoincrement=False),
        sa.Column("currency_credited", sa.Integer, nullable=False, server_default="0"),
        sa.Column("unlocks", postgresql.JSONB, nullable=True),
        sa.Column("claimed_at", sa.DateTime(timezone=True), nullable=False),
    )

    # --- multiplier sources ---
    op.create_table(
        "roles",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(100), nullable=False, unique=True),
        sa.Column("xp_multiplier", sa.Float, nullable=True),
    )
    op.create_table(
        "user_roles",
        sa.Column("user_id", USER_ID, sa.ForeignKey("users.id", ondelete="CASCADE"),
                  primary_key=True),
        sa.Column("role_id", sa.Integer, sa.ForeignKey("roles.id", ondelete="CASCADE"),
                  primary_key=True),
    )
    op.create_table(
        "xp_contexts",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("kind", sa.String(30), nullable=False, server_default="forum"),
        sa.Column("xp_multiplier", sa.Float, nullable=True),
    )

    # --- action configuration + journals ---
    op.create_table(
        "xp_action_settings",
        sa.Column("action_key", sa.String(100), primary_key=True),
        sa.Column("base_value", sa.Integer, nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("daily_cap", sa.Integer, nullable=True),
        sa.Column("cooldown_seconds", sa.Integer, nullable=True),
        sa.Column("enabled", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=_now()),
    )
    op.create_table(
        "xp_action_logs",
        sa.Column("id", sa.BigInteger, primary_key=True, autoincrement=True),
        sa.Column("user_id", USER_ID, sa.ForeignKey("users.id", ondelete="CASCADE"),
                  nullable=False),
        sa.Column("action_key", sa.String(100), nullable=False),
        sa.Column("amount", sa.Integer, nullable=False),
        sa.Column("metadata", postgresql.JSONB, nullable=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        "ix_xp_action_logs_user_action_time", "xp_action_logs",
        ["user_id", "action_key", "timestamp"],
    )
    op.create_index("ix_xp_action_logs_timestamp", "xp_action_logs", ["timestamp"])

    op.create_table(
        "xp_adjustment_logs",
        sa.Column("id", sa.BigInteger, primary_key=True, autoincrement=True),
        sa.Column("user_id", USER_ID, sa.ForeignKey("users.id", ondelete="CASCADE"),
                  nullable=False),
        sa.Column("admin_id", USER_ID, nullable=True),
        sa.Column("mode", sa.String(10), nullable=False),
        sa.Column("amount", sa.Integer, nullable=False),
        sa.Column("reason", sa.Text, nullable=True),
        sa.Column("old_xp", sa.Integer, nullable=False),
        sa.Column("new_xp", sa.Integer, nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        "ix_xp_adjustment_logs_user_time", "xp_adjustment_logs", ["user_id", "timestamp"],
    )

    # --- missions ---
    op.create_table(
        "missions",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("action_type", sa.String(100), nullable=False),
        sa.Column("required_count", sa.Integer, nullable=False, server_default="1"),
        sa.Column("xp_reward", sa.Integer, nullable=False, server_default="0"),
        sa.Column("currency_reward", sa.Integer, nullable=False, server_default="0"),
        sa.Column(
            "badge_reward_id", sa.Integer,
            sa.ForeignKey("badges.id", ondelete="SET NULL"), nullable=True,
        ),
        sa.Column("cadence", sa.String(10), nullable=False, server_default="none"),
        sa.Column("min_level", sa.Integer, nullable=False, server_default="1"),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("sort_order", sa.Integer, nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=_now()),
        sa.CheckConstraint("required_count >= 1", name="ck_missions_required_count_positive"),
    )
    op.create_index("ix_missions_action_active", "missions", ["action_type", "is_active"])
    op.create_index("ix_missions_cadence_expiry", "missions", ["cadence", "expires_at"])

    op.create_table(
        "user_mission_progress",
        sa.Column("user_id", USER_ID, sa.ForeignKey("users.id", ondelete="CASCADE"),
                  primary_key=True),
        sa.Column("mission_id", sa.Integer,
                  sa.ForeignKey("missions.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("current_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("is_completed", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("is_reward_claimed", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("claimed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )

    # --- notifications ---
    op.create_table(
        "notifications",
        sa.Column("id", sa.BigInteger, primary_key=True, autoincrement=True),
        sa.Column("user_id", USER_ID, sa.ForeignKey("users.id", ondelete="CASCADE"),
                  nullable=False),
        sa.Column("type", sa.String(50), nullable=False),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("body", sa.Text, nullable=False),
        sa.Column("data", postgresql.JSONB, nullable=True),
        sa.Column("is_read", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=_now()),
    )
    op.create_index("ix_notifications_user_unread", "notifications", ["user_id", "is_read"])

    # --- admin_log ---
    op.create_table(
        "admin_log",
        sa.Column("id", sa.BigInteger, primary_key=True, autoincrement=True),
        sa.Column("actor_id", USER_ID, nullable=False),
        sa.Column("action_type", sa.String(50), nullable=False),
        sa.Column("target_table", sa.String(50), nullable=False),
        sa.Column("target_id", sa.String(100), nullable=True),
        sa.Column("before_snapshot", postgresql.JSONB, nullable=True),
        sa.Column("after_snapshot", postgresql.JSONB, nullable=True),
        sa.Column("reason", sa.Text, nullable=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), server_default=_now()),
    )
    op.create_index("ix_admin_log_actor_time", "admin_log", ["actor_id", "timestamp"])
    op.create_index(
        "ix_admin_log_target", "admin_log", ["target_table", "target_id", "timestamp"],
    )


def downgrade() -> None:
    """Drop every progression table."""
    for table in (
        "admin_log",
        "notifications",
        "user_mission_progress",
        "missions",
        "xp_adjustment_logs",
        "xp_action_logs",
        "xp_action_settings",
        "xp_contexts",
        "user_roles",
        "roles",
        "level_reward_claims",
        "user_badges",
        "user_titles",
        "levels",
        "users",
        "badges",
        "titles",
    ):
        op.drop_table(table)
