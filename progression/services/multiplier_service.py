"""
progression.services.multiplier_service — Multiplier Resolution
================================================================

Looks up a user's role multipliers and a context multiplier, then hands
both to :func:`~progression.engine.multipliers.sanitize_multiplier`.

* Role multiplier = max over the user's roles, 1.0 when none is > 0.
* Context multiplier = the context's ``xp_multiplier``, 1.0 when unset or
  when the context is unknown.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from progression.config import ProgressionConfig
from progression.database.models import Role, UserRole, XpContext
from progression.engine.multipliers import MultiplierResult, sanitize_multiplier

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)


def get_role_multiplier(session: Session, user_id: str) -> float:
    best = session.scalar(
        select(func.max(Role.xp_multiplier))
        .join(UserRole, UserRole.role_id == Role.id)
        .where(UserRole.user_id == user_id, Role.xp_multiplier > 0)
    )
    return float(best) if best else 1.0


def get_context_multiplier(session: Session, context_id: str | None) -> float:
    if context_id is None:
        return 1.0
    ctx = session.get(XpContext, context_id)
    if ctx is None:
        logger.debug("Unknown XP context %r, using 1.0", context_id)
        return 1.0
    return float(ctx.xp_multiplier) if ctx.xp_multiplier else 1.0


class MultiplierResolver:
    """Combines role and context multipliers into one capped value."""

    def __init__(self, engine: Engine, config: ProgressionConfig | None = None) -> None:
        self._engine = engine
        self._config = config or ProgressionConfig()

    def resolve(self, user_id: str, context_id: str | None = None) -> MultiplierResult:
        with Session(self._engine) as session:
            role = get_role_multiplier(session, user_id)
            context = get_context_multiplier(session, context_id)

        result = sanitize_multiplier(role, context, self._config)
        if result.was_capped:
            logger.info(
                "Multiplier capped for user %s: %.2f → %.2f (%s)",
                user_id, result.original_value, result.value,
                "; ".join(result.violations),
            )
        return result
