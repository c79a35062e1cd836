"""
tests/test_xp_service.py — Award & Adjustment Tests
====================================================
Exercises the single mutation primitive through awards and admin
adjustments: multipliers, level-ups, clamping, audit rows, atomicity and
post-commit event delivery.
"""

from __future__ import annotations

import pytest
from conftest import make_user, seed_action, seed_levels
from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from progression.constants import NotificationType
from progression.database.models import (
    LevelRewardClaim,
    Notification,
    Title,
    User,
    UserTitle,
    XpActionLog,
    XpAdjustmentLog,
)
from progression.engine.levels import LevelTable
from progression.errors import NotFoundError, TransactionFailure, ValidationError

LEVELS = [(1, 0), (2, 100), (3, 250), (4, 500)]


def _count(engine, column) -> int:
    with Session(engine) as session:
        return session.scalar(select(func.count(column)))


def _user(engine, user_id="u-1") -> User:
    with Session(engine) as session:
        return session.get(User, user_id)


class TestAwardXp:
    def test_level_up_scenario(self, progression, db_engine, wallet):
        """90 XP + 10 base at 1.5x crosses into level 2 and pays its rewards."""
        seed_levels(db_engine, LEVELS, rewards={2: {"reward_currency": 50, "title": "Novice"}})
        seed_action(db_engine, "post", 10)
        make_user(db_engine, "u-1", xp=90, role_multipliers=[1.5])

        result = progression.award_xp("u-1", "post")

        assert result.old_xp == 90
        assert result.new_xp == 105
        assert result.xp_change == 15
        assert (result.old_level, result.new_level) == (1, 2)
        assert result.level_changed
        assert result.action_key == "post"
        assert result.multiplier.value == pytest.approx(1.5)

        wallet.credit.assert_called_once()
        assert wallet.credit.call_args.args[1:4] == ("u-1", 50, "level_up")

        with Session(db_engine) as session:
            title = session.scalar(select(Title).where(Title.name == "Novice"))
            assert session.get(UserTitle, ("u-1", title.id)) is not None
            assert session.get(User, "u-1").active_title_id == title.id
            notes = session.scalars(select(Notification)).all()
        assert len(notes) == 1
        assert notes[0].type == NotificationType.LEVEL_UP
        assert "50 DGT" in notes[0].body
        assert 'the title "Novice"' in notes[0].body

    def test_award_writes_action_and_adjustment_rows(self, progression, db_engine):
        seed_levels(db_engine, LEVELS)
        seed_action(db_engine, "post", 10)
        make_user(db_engine, "u-1", role_multipliers=[1.5])

        progression.award_xp("u-1", "post", {"post_id": 7})

        with Session(db_engine) as session:
            action = session.scalars(select(XpActionLog)).one()
            adjustment = session.scalars(select(XpAdjustmentLog)).one()
        assert action.amount == 15
        assert action.metadata_["post_id"] == 7
        assert action.metadata_["base_value"] == 10
        assert adjustment.mode == "add"
        assert adjustment.admin_id is None
        assert (adjustment.old_xp, adjustment.new_xp) == (0, 15)
        assert adjustment.reason == "Action: post (15XP = 10 * 1.50)"

    def test_no_level_change_has_no_rewards(self, progression, db_engine, wallet):
        seed_levels(db_engine, LEVELS)
        seed_action(db_engine, "post", 10)
        make_user(db_engine, "u-1")

        result = progression.award_xp("u-1", "post")

        assert not result.level_changed
        assert result.rewards is None
        wallet.credit.assert_not_called()
        assert _count(db_engine, Notification.id) == 0

    def test_unknown_and_disabled_actions_are_soft_noops(self, progression, db_engine):
        seed_levels(db_engine, LEVELS)
        seed_action(db_engine, "quiet", 10, enabled=False)
        make_user(db_engine, "u-1")

        assert progression.award_xp("u-1", "quiet") is None
        assert progression.award_xp("u-1", "nope") is None
        assert _user(db_engine).xp == 0
        assert _count(db_engine, XpActionLog.id) == 0

    def test_unknown_user_raises(self, progression, db_engine):
        seed_levels(db_engine, LEVELS)
        seed_action(db_engine, "post", 10)
        with pytest.raises(NotFoundError):
            progression.award_xp("ghost", "post")
        assert _count(db_engine, XpActionLog.id) == 0

    def test_context_multiplier_applied(self, progression, db_engine):
        from progression.database.models import XpContext

        seed_levels(db_engine, LEVELS)
        seed_action(db_engine, "post", 10)
        make_user(db_engine, "u-1")
        with Session(db_engine) as session:
            session.add(XpContext(id="forum-1", name="Help", xp_multiplier=2.0))
            session.commit()

        result = progression.award_xp_with_context("u-1", "post", context_id="forum-1")

        assert result.xp_change == 20
        with Session(db_engine) as session:
            action = session.scalars(select(XpActionLog)).one()
        assert action.metadata_["context_id"] == "forum-1"

    def test_level_always_matches_table(self, progression, db_engine):
        seed_levels(db_engine, LEVELS)
        seed_action(db_engine, "post", 70)
        make_user(db_engine, "u-1")
        table = LevelTable.from_pairs(LEVELS)

        for _ in range(8):
            progression.award_xp("u-1", "post")
            user = _user(db_engine)
            assert user.level == table.resolve(user.xp)


class TestAdjust:
    def test_set_writes_single_row(self, progression, db_engine):
        seed_levels(db_engine, LEVELS)
        make_user(db_engine, "u-1", xp=700, level=4)

        result = progression.adjust("u-1", 500, "set", "correction", admin_id="admin-1")

        assert result.new_xp == 500
        assert result.xp_change == -200
        with Session(db_engine) as session:
            rows = session.scalars(select(XpAdjustmentLog)).all()
        assert len(rows) == 1
        row = rows[0]
        assert row.mode == "set"
        assert row.amount == 500
        assert (row.old_xp, row.new_xp) == (700, 500)
        assert row.admin_id == "admin-1"
        assert row.reason == "correction"

    def test_subtract_clamps_at_zero(self, progression, db_engine):
        seed_levels(db_engine, LEVELS)
        make_user(db_engine, "u-1", xp=30)

        result = progression.adjust("u-1", 100, "subtract", "penalty")

        assert result.new_xp == 0
        assert result.xp_change == -30
        with Session(db_engine) as session:
            row = session.scalars(select(XpAdjustmentLog)).one()
        assert row.mode == "subtract"
        assert row.amount == 30
        assert (row.old_xp, row.new_xp) == (30, 0)

    def test_add_crosses_multiple_levels(self, progression, db_engine):
        seed_levels(db_engine, LEVELS)
        make_user(db_engine, "u-1")

        result = progression.adjust("u-1", 600, "add", "import")

        assert result.new_level == 4
        assert result.rewards.failures == []
        assert _count(db_engine, LevelRewardClaim.level) == 3
        with Session(db_engine) as session:
            notes = session.scalars(select(Notification)).all()
        assert len(notes) == 1
        assert notes[0].data["old_level"] == 1
        assert notes[0].data["new_level"] == 4

    def test_level_down_notifies_without_rewards(self, progression, db_engine, wallet):
        seed_levels(db_engine, LEVELS, rewards={2: {"reward_currency": 50}})
        make_user(db_engine, "u-1", xp=300, level=3)

        result = progression.adjust("u-1", 100, "subtract", "moderation")

        assert (result.old_level, result.new_level) == (3, 2)
        wallet.credit.assert_not_called()
        with Session(db_engine) as session:
            note = session.scalars(select(Notification)).one()
        assert note.type == NotificationType.LEVEL_CHANGED

    @pytest.mark.parametrize("amount, mode", [
        (-5, "add"),
        (5, "multiply"),
        (1.5, "add"),
        (True, "add"),
    ])
    def test_invalid_adjustments_rejected(self, progression, db_engine, amount, mode):
        make_user(db_engine, "u-1", xp=10)
        with pytest.raises(ValidationError):
            progression.adjust("u-1", amount, mode, "bad")
        assert _user(db_engine).xp == 10
        assert _count(db_engine, XpAdjustmentLog.id) == 0

    def test_unknown_user_raises(self, progression, db_engine):
        seed_levels(db_engine, LEVELS)
        with pytest.raises(NotFoundError):
            progression.adjust("ghost", 5, "add", "nope")


class TestAtomicity:
    def test_failed_journal_write_rolls_back_award(self, progression, db_engine, monkeypatch):
        """If the adjustment row cannot be written, neither the balance nor
        the action log row survive."""
        seed_levels(db_engine, LEVELS)
        seed_action(db_engine, "post", 10)
        make_user(db_engine, "u-1", xp=95)

        def boom(*args, **kwargs):
            raise RuntimeError("disk full")

        monkeypatch.setattr(progression.audit, "log_adjustment", boom)
        received = []
        progression.bus.subscribe(received.append)

        with pytest.raises(TransactionFailure):
            progression.award_xp("u-1", "post")

        user = _user(db_engine)
        assert (user.xp, user.level) == (95, 1)
        assert _count(db_engine, XpActionLog.id) == 0
        assert _count(db_engine, Notification.id) == 0
        assert received == []

    def test_failure_in_adjust_leaves_balance(self, progression, db_engine, monkeypatch):
        seed_levels(db_engine, LEVELS)
        make_user(db_engine, "u-1", xp=40)

        def boom(*args, **kwargs):
            raise RuntimeError("lost connection")

        monkeypatch.setattr(progression.audit, "log_adjustment", boom)

        with pytest.raises(TransactionFailure):
            progression.adjust("u-1", 100, "add", "bonus")
        assert _user(db_engine).xp == 40


class TestBalanceRace:
    """Another writer moving the balance between the locked read and the
    compare-and-set makes the whole transaction start over."""

    @staticmethod
    def _bump_after_read(progression, monkeypatch, times):
        real_lock = progression.xp._lock_user
        reads = []

        def lock_then_bump(session, user_id):
            user = real_lock(session, user_id)
            reads.append(user.xp)
            if len(reads) <= times:
                session.execute(
                    update(User)
                    .where(User.id == user_id)
                    .values(xp=User.xp + 5)
                    .execution_options(synchronize_session=False)
                )
            return user

        monkeypatch.setattr(progression.xp, "_lock_user", lock_then_bump)
        return reads

    def test_stale_balance_reruns_from_fresh_read(self, progression, db_engine, monkeypatch):
        seed_levels(db_engine, LEVELS)
        make_user(db_engine, "u-1", xp=40)
        reads = self._bump_after_read(progression, monkeypatch, times=1)

        result = progression.adjust("u-1", 7, "add", "bonus")

        assert reads == [40, 40, 47]
        assert (result.old_xp, result.new_xp) == (40, 47)
        assert _user(db_engine).xp == 47
        assert _count(db_engine, XpAdjustmentLog.id) == 1

    def test_gives_up_after_max_retries(self, progression, db_engine, monkeypatch):
        seed_levels(db_engine, LEVELS)
        make_user(db_engine, "u-1", xp=40)
        reads = self._bump_after_read(progression, monkeypatch, times=100)

        with pytest.raises(TransactionFailure):
            progression.adjust("u-1", 7, "add", "bonus")

        assert len(reads) == 5
        assert _user(db_engine).xp == 40
        assert _count(db_engine, XpAdjustmentLog.id) == 0


class TestEvents:
    def test_award_publishes_after_commit(self, progression, db_engine):
        seed_levels(db_engine, LEVELS)
        seed_action(db_engine, "post", 10)
        make_user(db_engine, "u-1")
        seen = []

        def observer(event):
            seen.append((event.user_id, event.action_key, event.xp_awarded,
                         _user(db_engine).xp))

        progression.bus.subscribe(observer)
        progression.award_xp("u-1", "post", {"thread": 3})

        assert seen == [("u-1", "post", 10, 10)]

    def test_failing_subscriber_does_not_fail_award(self, progression, db_engine):
        seed_levels(db_engine, LEVELS)
        seed_action(db_engine, "post", 10)
        make_user(db_engine, "u-1")

        def broken(event):
            raise RuntimeError("subscriber bug")

        progression.bus.subscribe(broken)
        result = progression.award_xp("u-1", "post")

        assert result is not None
        assert _user(db_engine).xp == 10

    def test_award_drives_mission_progress(self, progression, db_engine):
        seed_levels(db_engine, LEVELS)
        seed_action(db_engine, "post", 10)
        make_user(db_engine, "u-1")
        with Session(db_engine) as session:
            mission = progression.missions.create_mission(
                session, title="Poster", action_type="post", required_count=2,
            )
            mission_id = mission.id
            session.commit()

        progression.award_xp("u-1", "post")
        progression.award_xp("u-1", "post")

        [status] = progression.get_missions("u-1")
        assert status.mission_id == mission_id
        assert status.current_count == 2
        assert status.is_completed

    def test_rate_limited_action_still_counts_for_missions(self, progression, db_engine):
        seed_levels(db_engine, LEVELS)
        seed_action(db_engine, "post", 10, cooldown_seconds=60)
        make_user(db_engine, "u-1")
        with Session(db_engine) as session:
            progression.missions.create_mission(
                session, title="Poster", action_type="post", required_count=2,
            )
            session.commit()

        assert progression.award_xp("u-1", "post") is not None
        assert progression.award_xp("u-1", "post") is None

        [status] = progression.get_missions("u-1")
        assert status.current_count == 2
        assert status.is_completed
        assert _user(db_engine).xp == 10

    def test_noop_actions_publish_zero_xp(self, progression, db_engine):
        seed_levels(db_engine, LEVELS)
        seed_action(db_engine, "quiet", 10, enabled=False)
        make_user(db_engine, "u-1")
        received = []
        progression.bus.subscribe(received.append)

        progression.award_xp("u-1", "quiet", {"thread": 1})
        progression.award_xp("u-1", "nope")

        assert [(e.action_key, e.xp_awarded) for e in received] == [("quiet", 0), ("nope", 0)]
        assert received[0].metadata == {"thread": 1}


class TestReads:
    def test_ensure_user_is_idempotent(self, progression, db_engine):
        progression.ensure_user("u-9", "nine")
        progression.ensure_user("u-9", "renamed")
        user = _user(db_engine, "u-9")
        assert (user.xp, user.level, user.username) == (0, 1, "nine")

    def test_user_progression(self, progression, db_engine):
        seed_levels(db_engine, LEVELS)
        make_user(db_engine, "u-1", xp=175, level=2)

        p = progression.get_user_progression("u-1")

        assert p.level == 2
        assert p.level_name == "Level 2"
        assert p.next_level == 3
        assert p.xp_to_next == 75
        assert p.progress_percentage == 50

    def test_user_progression_unknown_user(self, progression):
        with pytest.raises(NotFoundError):
            progression.get_user_progression("ghost")
