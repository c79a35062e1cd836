"""
tests/conftest.py — Shared Test Fixtures
=========================================
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from unittest.mock import MagicMock

import pytest
from sqlalchemy import Engine, create_engine, event

# ---------------------------------------------------------------------------
# Make JSONB columns work in SQLite for testing.
# SQLite doesn't support JSONB natively, but SQLAlchemy's JSON type works.
# We register a custom type compiler so SQLite renders JSONB as TEXT.
# ---------------------------------------------------------------------------
from sqlalchemy.dialects.postgresql import JSONB as PG_JSONB
from sqlalchemy.orm import Session

from progression.config import ProgressionConfig
from progression.core import ProgressionEngine
from progression.database.models import (
    Base,
    Level,
    Role,
    Title,
    User,
    UserRole,
    XpActionSetting,
)
from progression.services.collaborators import Wallet

_jsonb_sqlite_registered = False


def _register_jsonb_sqlite_compat():
    """Register SQLite compilation for PG JSONB type (idempotent).

    Also maps BigInteger → INTEGER so autoincrement works on SQLite.
    """
    global _jsonb_sqlite_registered
    if _jsonb_sqlite_registered:
        return
    from sqlalchemy import BigInteger
    from sqlalchemy.ext.compiler import compiles

    @compiles(PG_JSONB, "sqlite")
    def _compile_jsonb_as_text(type_, compiler, **kw):
        return "TEXT"

    @compiles(BigInteger, "sqlite")
    def _compile_bigint_as_integer(type_, compiler, **kw):
        return "INTEGER"

    _jsonb_sqlite_registered = True


_register_jsonb_sqlite_compat()


def _enable_sqlite_transactions(engine: Engine, begin_sql: str = "BEGIN") -> None:
    """Let SQLAlchemy own BEGIN so SAVEPOINT and ROLLBACK behave on pysqlite."""

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql(begin_sql)


# ---------------------------------------------------------------------------
# Clock
# ---------------------------------------------------------------------------
class FakeClock:
    """Controllable UTC clock shared by every service under test."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 3, 10, 12, 0, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


# ---------------------------------------------------------------------------
# Engines
# ---------------------------------------------------------------------------
@pytest.fixture
def db_engine() -> Engine:
    """Create an in-memory SQLite engine with all progression tables.

    JSONB columns are transparently mapped to TEXT for SQLite compatibility.
    Uses StaticPool so all threads share the same in-memory database.
    """
    from sqlalchemy.pool import StaticPool

    engine = create_engine(
        "sqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    _enable_sqlite_transactions(engine)
    Base.metadata.create_all(engine)
    return engine


@pytest.fixture
def file_engine(tmp_path) -> Engine:
    """File-backed SQLite engine for tests that run real threads.

    ``BEGIN IMMEDIATE`` takes the write lock at transaction start, so
    concurrent writers queue up (for up to 30 s) instead of failing.
    """
    engine = create_engine(
        f"sqlite:///{tmp_path / 'progression.db'}",
        echo=False,
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    _enable_sqlite_transactions(engine, "BEGIN IMMEDIATE")
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_session(db_engine: Engine):
    """Provide a transactional session that rolls back after each test."""
    with Session(db_engine) as session:
        yield session
        session.rollback()


# ---------------------------------------------------------------------------
# Collaborators + facade
# ---------------------------------------------------------------------------
@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def wallet() -> MagicMock:
    """A wallet that records credits."""
    return MagicMock(spec=Wallet)


@pytest.fixture
def config() -> ProgressionConfig:
    return ProgressionConfig(action_cache_ttl_seconds=None)


@pytest.fixture
def progression(db_engine, wallet, clock, config) -> ProgressionEngine:
    """A fully wired engine on the in-memory database."""
    return ProgressionEngine(db_engine, config=config, wallet=wallet, clock=clock)


# ---------------------------------------------------------------------------
# Seeding helpers (importable from test modules)
# ---------------------------------------------------------------------------
def seed_levels(engine: Engine, levels: list[tuple[int, int]],
                rewards: dict[int, dict] | None = None) -> None:
    """Insert ``(level, min_xp)`` rows; *rewards* maps level → Level kwargs.

    A ``title`` key in the reward dict creates the Title and links it.
    """
    rewards = rewards or {}
    with Session(engine) as session:
        for level, min_xp in levels:
            extra = dict(rewards.get(level, {}))
            title_name = extra.pop("title", None)
            if title_name is not None:
                title = Title(name=title_name)
                session.add(title)
                session.flush()
                extra["reward_title_id"] = title.id
            session.add(Level(level=level, min_xp=min_xp, name=f"Level {level}", **extra))
        session.commit()


def seed_action(engine: Engine, key: str, base_value: int, *,
                daily_cap: int | None = None, cooldown_seconds: int | None = None,
                enabled: bool = True) -> None:
    with Session(engine) as session:
        session.merge(XpActionSetting(
            action_key=key,
            base_value=base_value,
            daily_cap=daily_cap,
            cooldown_seconds=cooldown_seconds,
            enabled=enabled,
        ))
        session.commit()


def make_user(engine: Engine, user_id: str = "u-1", xp: int = 0, level: int = 1,
              role_multipliers: list[float] | None = None) -> str:
    with Session(engine) as session:
        session.add(User(id=user_id, username=f"user-{user_id}", xp=xp, level=level))
        session.flush()
        for i, mult in enumerate(role_multipliers or []):
            role = Role(name=f"{user_id}-role-{i}", xp_multiplier=mult)
            session.add(role)
            session.flush()
            session.add(UserRole(user_id=user_id, role_id=role.id))
        session.commit()
    return user_id
