"""
tests/test_admin_service.py — Admin Mutation Tests
===================================================
Tests that every config write records an admin_log row with before/after
snapshots and that action writes refresh the registry.
"""

from __future__ import annotations

import pytest
from conftest import make_user, seed_levels
from sqlalchemy import select
from sqlalchemy.orm import Session

from progression.database.models import AdminLog, Level, Mission, Role, XpContext
from progression.errors import NotFoundError, ValidationError
from progression.services import admin_service


def _admin_rows(engine) -> list[AdminLog]:
    with Session(engine) as session:
        return list(session.scalars(select(AdminLog).order_by(AdminLog.id)).all())


class TestActionSettings:
    def test_upsert_creates_then_updates(self, progression, db_engine):
        admin_service.upsert_action_setting(
            db_engine, progression.registry,
            action_key="post", base_value=10, daily_cap=5, actor_id="admin-1",
        )
        assert progression.registry.get_action_config("post").base_value == 10

        admin_service.upsert_action_setting(
            db_engine, progression.registry,
            action_key="post", base_value=25, actor_id="admin-1",
        )

        assert progression.registry.get_action_config("post").base_value == 25
        rows = _admin_rows(db_engine)
        assert [r.action_type for r in rows] == ["CREATE", "UPDATE"]
        assert rows[1].before_snapshot["base_value"] == 10
        assert rows[1].after_snapshot["base_value"] == 25
        assert rows[1].target_table == "xp_action_settings"

    def test_upsert_validates(self, db_engine):
        with pytest.raises(ValidationError):
            admin_service.upsert_action_setting(
                db_engine, None, action_key="post", base_value=-1, actor_id="a",
            )
        assert _admin_rows(db_engine) == []

    def test_disable_stops_awards(self, progression, db_engine):
        make_user(db_engine, "u-1")
        admin_service.upsert_action_setting(
            db_engine, progression.registry,
            action_key="post", base_value=10, actor_id="admin-1",
        )
        assert progression.award_xp("u-1", "post") is not None

        admin_service.set_action_enabled(
            db_engine, progression.registry,
            action_key="post", enabled=False, actor_id="admin-1",
        )
        assert progression.award_xp("u-1", "post") is None

    def test_toggle_unknown_action(self, db_engine):
        with pytest.raises(NotFoundError):
            admin_service.set_action_enabled(
                db_engine, None, action_key="nope", enabled=True, actor_id="a",
            )


class TestLevels:
    def test_upsert_level_audited(self, db_engine):
        seed_levels(db_engine, [(1, 0)])
        admin_service.upsert_level(
            db_engine, level=2, min_xp=100, name="Apprentice",
            reward_currency=50, actor_id="admin-1",
        )
        with Session(db_engine) as session:
            assert session.get(Level, 2).reward_currency == 50
        [row] = _admin_rows(db_engine)
        assert row.target_id == "2"
        assert row.after_snapshot["min_xp"] == 100

    def test_non_ascending_table_rejected(self, db_engine):
        seed_levels(db_engine, [(1, 0), (2, 100), (3, 250)])
        with pytest.raises(ValidationError):
            admin_service.upsert_level(db_engine, level=3, min_xp=50, actor_id="a")
        with Session(db_engine) as session:
            assert session.get(Level, 3).min_xp == 250

    def test_level_one_must_start_at_zero(self, db_engine):
        with pytest.raises(ValidationError):
            admin_service.upsert_level(db_engine, level=1, min_xp=10, actor_id="a")

    def test_delete_level(self, db_engine):
        seed_levels(db_engine, [(1, 0), (2, 100)])
        assert admin_service.delete_level(db_engine, level=2, actor_id="a") is True
        assert admin_service.delete_level(db_engine, level=2, actor_id="a") is False
        with pytest.raises(ValidationError):
            admin_service.delete_level(db_engine, level=1, actor_id="a")
        [row] = _admin_rows(db_engine)
        assert row.action_type == "DELETE"
        assert row.after_snapshot is None


class TestMultiplierSources:
    def test_role_multiplier(self, db_engine):
        role = admin_service.set_role_multiplier(
            db_engine, role_name="Moderator", xp_multiplier=1.5, actor_id="a",
        )
        admin_service.set_role_multiplier(
            db_engine, role_name="Moderator", xp_multiplier=2.0, actor_id="a",
        )
        with Session(db_engine) as session:
            assert session.get(Role, role.id).xp_multiplier == 2.0
        assert [r.action_type for r in _admin_rows(db_engine)] == ["CREATE", "UPDATE"]

    def test_context_multiplier(self, db_engine):
        admin_service.set_context_multiplier(
            db_engine, context_id="forum-3", name="Showcase",
            xp_multiplier=1.25, actor_id="a",
        )
        with Session(db_engine) as session:
            assert session.get(XpContext, "forum-3").xp_multiplier == 1.25

    def test_negative_multiplier_rejected(self, db_engine):
        with pytest.raises(ValidationError):
            admin_service.set_role_multiplier(
                db_engine, role_name="x", xp_multiplier=-1.0, actor_id="a",
            )


class TestMissionsAndAdjustments:
    def test_create_mission_audited(self, progression, db_engine):
        mission = admin_service.create_mission(
            db_engine, progression.missions, actor_id="admin-1",
            title="Weekly Helper", action_type="reply", required_count=4,
            cadence="weekly",
        )
        with Session(db_engine) as session:
            assert session.get(Mission, mission.id).required_count == 4
        [row] = _admin_rows(db_engine)
        assert row.target_table == "missions"
        assert row.after_snapshot["title"] == "Weekly Helper"

    def test_adjust_user_xp_success(self, progression, db_engine):
        seed_levels(db_engine, [(1, 0), (2, 100)])
        make_user(db_engine, "u-1", xp=50)

        ok, message, result = admin_service.adjust_user_xp(
            progression.xp, actor_id="admin-1", user_id="u-1",
            amount=60, mode="add", reason="event prize",
        )

        assert ok
        assert result.new_xp == 110
        assert message == "XP for u-1: 50 → 110 (level 1 → 2)"

    def test_adjust_user_xp_requires_reason(self, progression, db_engine):
        make_user(db_engine, "u-1")
        ok, message, result = admin_service.adjust_user_xp(
            progression.xp, actor_id="a", user_id="u-1", amount=5, mode="add", reason="  ",
        )
        assert (ok, result) == (False, None)
        assert "reason" in message

    def test_adjust_user_xp_reports_errors(self, progression, db_engine):
        ok, message, _ = admin_service.adjust_user_xp(
            progression.xp, actor_id="a", user_id="ghost", amount=5, mode="add",
            reason="test",
        )
        assert not ok
        assert "ghost" in message
