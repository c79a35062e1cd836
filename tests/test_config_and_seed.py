"""
tests/test_config_and_seed.py — Config, Seeding, Events & Plumbing Tests
=========================================================================
"""

from __future__ import annotations

import asyncio
import textwrap

import pytest
from conftest import make_user
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from progression.config import EnforcementMode, ProgressionConfig, StackingRule, load_config
from progression.database.engine import as_utc, get_session, init_db, run_db
from progression.database.models import Level, Mission, Title, XpActionSetting
from progression.database.seed import DEFAULT_LEVELS, seed_defaults
from progression.engine.events import DEFAULT_XP_ACTIONS, ActionEventBus, ActionOccurred
from progression.engine.levels import LevelTable
from progression.services.audit_service import (
    AuditLogger,
    get_adjustment_history,
    get_xp_history,
)


class TestLoadConfig:
    def test_reads_yaml(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(textwrap.dedent("""\
            multipliers:
              max_role: 3.0
              max_total: 4.0
              stacking_rule: multiplicative
              enforcement_mode: warn
            action_cache_ttl_seconds: 15
            currency_name: Gold
        """))

        cfg = load_config(path)

        assert cfg.max_role_multiplier == 3.0
        assert cfg.max_context_multiplier == 2.0
        assert cfg.max_total_multiplier == 4.0
        assert cfg.stacking_rule == StackingRule.MULTIPLICATIVE
        assert cfg.enforcement_mode == EnforcementMode.WARN
        assert cfg.action_cache_ttl_seconds == 15.0
        assert cfg.currency_name == "Gold"

    def test_empty_file_gives_defaults(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("")
        assert load_config(path) == ProgressionConfig()

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "nope.yaml")

    def test_bad_enum(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("multipliers:\n  stacking_rule: exponential\n")
        with pytest.raises(ValueError):
            load_config(path)

    def test_null_ttl_disables_expiry(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("action_cache_ttl_seconds: null\n")
        assert load_config(path).action_cache_ttl_seconds is None


class TestSeed:
    def test_seed_is_idempotent(self, db_engine):
        first = seed_defaults(db_engine)
        second = seed_defaults(db_engine)

        assert first["levels"] == len(DEFAULT_LEVELS)
        assert first["xp_action_settings"] == len(DEFAULT_XP_ACTIONS)
        assert first["missions"] == 3
        assert second == {"levels": 0, "xp_action_settings": 0, "missions": 0}

    def test_seeded_levels_form_valid_table(self, db_engine):
        seed_defaults(db_engine)
        with Session(db_engine) as session:
            table = LevelTable.load(session)
            novice = session.scalar(select(Title).where(Title.name == "Novice"))
            assert session.get(Level, 2).reward_title_id == novice.id
        assert table.resolve(0) == 1
        assert table.max_level == 20

    def test_seed_never_overwrites_admin_edits(self, db_engine):
        seed_defaults(db_engine, missions=False)
        with Session(db_engine) as session:
            session.get(XpActionSetting, "post_created").base_value = 99
            session.commit()

        seed_defaults(db_engine, missions=False)

        with Session(db_engine) as session:
            assert session.get(XpActionSetting, "post_created").base_value == 99
            assert session.scalar(select(func.count(Mission.id))) == 0

    def test_init_db_creates_and_seeds(self, tmp_path):
        from sqlalchemy import create_engine

        engine = create_engine(f"sqlite:///{tmp_path / 'fresh.db'}")
        init_db(engine)
        with Session(engine) as session:
            assert session.scalar(select(func.count(Level.level))) == len(DEFAULT_LEVELS)
        engine.dispose()


class TestEventBus:
    def test_publish_counts_successful_deliveries(self):
        bus = ActionEventBus()
        seen = []

        def broken(event):
            raise RuntimeError("nope")

        bus.subscribe(seen.append)
        bus.subscribe(broken)

        delivered = bus.publish(ActionOccurred(user_id="u-1", action_key="post"))

        assert delivered == 1
        assert [e.action_key for e in seen] == ["post"]

    def test_subscribe_is_idempotent_and_unsubscribe_works(self):
        bus = ActionEventBus()
        seen = []
        bus.subscribe(seen.append)
        bus.subscribe(seen.append)
        bus.publish(ActionOccurred(user_id="u-1", action_key="a"))
        bus.unsubscribe(seen.append)
        bus.publish(ActionOccurred(user_id="u-1", action_key="b"))
        assert [e.action_key for e in seen] == ["a"]


class TestAuditHistory:
    def test_newest_first(self, db_engine, clock):
        make_user(db_engine, "u-1")
        audit = AuditLogger(clock=clock)
        with get_session(db_engine) as session:
            audit.log_action(session, "u-1", "post", 10)
            clock.advance(minutes=1)
            audit.log_action(session, "u-1", "reply", 5, {"thread": 1})
            audit.log_adjustment(session, user_id="u-1", mode="add", amount=15,
                                 old_xp=0, new_xp=15, reason="batch")

        with Session(db_engine) as session:
            history = get_xp_history(session, "u-1")
            adjustments = get_adjustment_history(session, "u-1")
            assert [h.action_key for h in history] == ["reply", "post"]
            assert history[0].metadata_ == {"thread": 1}
            assert history[1].metadata_ is None
            assert as_utc(history[0].timestamp) == clock.now
            assert [a.new_xp for a in adjustments] == [15]

    def test_history_is_per_user(self, db_engine, clock):
        make_user(db_engine, "u-1")
        make_user(db_engine, "u-2")
        audit = AuditLogger(clock=clock)
        with get_session(db_engine) as session:
            audit.log_action(session, "u-2", "post", 10)
        with Session(db_engine) as session:
            assert get_xp_history(session, "u-1") == []


class TestCli:
    def test_init_db_then_sweep(self, tmp_path, monkeypatch):
        from progression.__main__ import main

        monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'cli.db'}")

        assert main(["init-db"]) == 0
        assert main(["reset-daily"]) == 0
        assert main(["reset-weekly"]) == 0

    def test_unknown_command_exits(self):
        from progression.__main__ import main

        with pytest.raises(SystemExit):
            main(["explode"])


class TestPlumbing:
    def test_run_db_runs_in_thread(self):
        assert asyncio.run(run_db(lambda a, b=0: a + b, 2, b=3)) == 5

    def test_get_session_rolls_back_on_error(self, db_engine):
        make_user(db_engine, "u-1")
        with pytest.raises(RuntimeError):
            with get_session(db_engine) as session:
                session.add(XpActionSetting(action_key="temp", base_value=1))
                session.flush()
                raise RuntimeError("abort")
        with Session(db_engine) as session:
            assert session.get(XpActionSetting, "temp") is None
