"""
progression.engine.levels — Level Resolution
=============================================

Pure functions over an ascending threshold table.  No database access:
:meth:`LevelTable.load` builds the table from the ``levels`` rows, the
rest of this module only does arithmetic.
"""

from __future__ import annotations

import bisect
from dataclasses import dataclass
from typing import TYPE_CHECKING

from sqlalchemy import select

from progression.database.models import Level

if TYPE_CHECKING:
    from sqlalchemy.orm import Session


@dataclass(frozen=True, slots=True)
class LevelThreshold:
    level: int
    min_xp: int


@dataclass(frozen=True, slots=True)
class LevelProgress:
    """Where a user sits between two thresholds."""

    level: int
    current_level_xp: int
    next_level: int | None
    next_level_xp: int | None
    xp_to_next: int
    progress_percentage: int


class LevelTable:
    """Immutable, ascending level threshold table.

    Raises :class:`ValueError` if thresholds are not strictly increasing
    with level, since lookups would otherwise be ambiguous.
    """

    __slots__ = ("_thresholds", "_min_xps")

    def __init__(self, thresholds: list[LevelThreshold] | None = None) -> None:
        ordered = sorted(thresholds or [], key=lambda t: t.level)
        for prev, cur in zip(ordered, ordered[1:]):
            if cur.min_xp <= prev.min_xp:
                raise ValueError(
                    f"Level {cur.level} threshold {cur.min_xp} must exceed "
                    f"level {prev.level} threshold {prev.min_xp}"
                )
        self._thresholds = tuple(ordered)
        self._min_xps = [t.min_xp for t in ordered]

    @classmethod
    def from_pairs(cls, pairs: list[tuple[int, int]]) -> LevelTable:
        """Build from ``(level, min_xp)`` pairs."""
        return cls([LevelThreshold(level, min_xp) for level, min_xp in pairs])

    @classmethod
    def load(cls, session: Session) -> LevelTable:
        rows = session.execute(select(Level.level, Level.min_xp)).all()
        return cls([LevelThreshold(r.level, r.min_xp) for r in rows])

    def __len__(self) -> int:
        return len(self._thresholds)

    def __iter__(self):
        return iter(self._thresholds)

    @property
    def max_level(self) -> int:
        return self._thresholds[-1].level if self._thresholds else 1

    def resolve(self, xp: int) -> int:
        """Highest level whose ``min_xp <= xp``; 1 when nothing matches."""
        idx = bisect.bisect_right(self._min_xps, xp) - 1
        if idx < 0:
            return 1
        return self._thresholds[idx].level

    def threshold_for(self, level: int) -> int | None:
        for t in self._thresholds:
            if t.level == level:
                return t.min_xp
        return None

    def next_after(self, level: int) -> LevelThreshold | None:
        for t in self._thresholds:
            if t.level > level:
                return t
        return None


def resolve_level(xp: int, table: LevelTable) -> int:
    """Map *xp* to a level.  See :meth:`LevelTable.resolve`."""
    return table.resolve(xp)


def level_progress(xp: int, table: LevelTable) -> LevelProgress:
    """Compute progress towards the next level.

    ``progress_percentage`` is floored and capped at 100; at the top level
    it is 100 and ``xp_to_next`` is 0.
    """
    level = table.resolve(xp)
    current = table.threshold_for(level) or 0
    nxt = table.next_after(level)
    if nxt is None:
        return LevelProgress(
            level=level,
            current_level_xp=current,
            next_level=None,
            next_level_xp=None,
            xp_to_next=0,
            progress_percentage=100,
        )

    span = nxt.min_xp - current
    gained = xp - current
    pct = min(gained * 100 // span, 100) if span > 0 else 100
    return LevelProgress(
        level=level,
        current_level_xp=current,
        next_level=nxt.level,
        next_level_xp=nxt.min_xp,
        xp_to_next=max(nxt.min_xp - xp, 0),
        progress_percentage=max(pct, 0),
    )
