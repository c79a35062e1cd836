"""
progression.engine.cache — Action Registry
===========================================

In-memory cache of ``xp_action_settings``.  One registry instance is owned
by the :class:`~progression.core.ProgressionEngine`; there is no module
level singleton.

Freshness rules:

* ``invalidate()`` is the single entry point after any persisted change.
  It marks every snapshot taken so far as stale and reloads immediately.
* An optional TTL reloads on the first read after it expires.
* Reloads are generation-numbered.  A reload takes its generation before
  reading, and installs its snapshot only if nothing newer has been
  installed, so a slow reload that started before a config write can never
  overwrite the result of one that started after it.

When the table is empty the built-in catalogue
(:data:`~progression.engine.events.DEFAULT_XP_ACTIONS`) is served instead.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from sqlalchemy import select
from sqlalchemy.orm import Session

from progression.database.models import XpActionSetting
from progression.engine.events import DEFAULT_XP_ACTIONS

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ActionConfig:
    action_key: str
    base_value: int
    daily_cap: int | None = None
    cooldown_seconds: int | None = None
    enabled: bool = True
    description: str | None = None

    @classmethod
    def from_row(cls, row: XpActionSetting) -> ActionConfig:
        return cls(
            action_key=row.action_key,
            base_value=row.base_value,
            daily_cap=row.daily_cap,
            cooldown_seconds=row.cooldown_seconds,
            enabled=bool(row.enabled),
            description=row.description,
        )


def default_action_configs() -> dict[str, ActionConfig]:
    return {
        str(key): ActionConfig(
            action_key=str(key),
            base_value=base,
            daily_cap=cap,
            cooldown_seconds=cooldown,
            enabled=True,
            description=desc,
        )
        for key, (base, cap, cooldown, desc) in DEFAULT_XP_ACTIONS.items()
    }


class ActionRegistry:
    """Thread-safe, generation-guarded cache of action configuration.

    Usage::

        registry = ActionRegistry(engine, ttl_seconds=60)
        cfg = registry.get_action_config("post_created")
        ...
        registry.invalidate()    # after writing xp_action_settings
    """

    def __init__(
        self,
        engine: Engine,
        *,
        ttl_seconds: float | None = 60.0,
        use_defaults_when_empty: bool = True,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._engine = engine
        self._ttl = ttl_seconds
        self._use_defaults = use_defaults_when_empty
        self._clock = clock
        self._lock = threading.Lock()

        self._actions: dict[str, ActionConfig] | None = None
        self._loaded_at: float = 0.0
        self._next_generation = 0
        self._installed_generation = 0
        # Snapshots from generations below this are stale.
        self._fresh_from_generation = 0

    # -------------------------------------------------------------------
    # Loading
    # -------------------------------------------------------------------
    def _fetch(self) -> dict[str, ActionConfig]:
        with Session(self._engine) as session:
            rows = session.scalars(select(XpActionSetting)).all()
            actions = {row.action_key: ActionConfig.from_row(row) for row in rows}
        if not actions and self._use_defaults:
            logger.info("No action settings in database, using built-in defaults.")
            return default_action_configs()
        return actions

    def refresh(self) -> dict[str, ActionConfig]:
        """Reload from the database and return the installed snapshot."""
        with self._lock:
            self._next_generation += 1
            generation = self._next_generation

        actions = self._fetch()

        with self._lock:
            if generation > self._installed_generation:
                self._actions = actions
                self._installed_generation = generation
                self._loaded_at = self._clock()
                logger.debug(
                    "Action registry loaded %d actions (generation %d)",
                    len(actions), generation,
                )
            else:
                logger.debug(
                    "Discarded action snapshot generation %d; %d already installed",
                    generation, self._installed_generation,
                )
            return dict(self._actions or {})

    def invalidate(self) -> None:
        """Discard every snapshot taken so far and reload."""
        with self._lock:
            self._fresh_from_generation = self._next_generation + 1
        self.refresh()

    def _snapshot(self) -> dict[str, ActionConfig]:
        with self._lock:
            actions = self._actions
            expired = (
                actions is None
                or self._installed_generation < self._fresh_from_generation
                or (
                    self._ttl is not None
                    and self._clock() - self._loaded_at >= self._ttl
                )
            )
        if expired:
            return self.refresh()
        return actions

    # -------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------
    def get_action_config(self, action_key: str) -> ActionConfig | None:
        """Config for *action_key* (enabled or not), or ``None`` if unknown."""
        return self._snapshot().get(action_key)

    def list_actions(self) -> list[ActionConfig]:
        return sorted(self._snapshot().values(), key=lambda a: a.action_key)
