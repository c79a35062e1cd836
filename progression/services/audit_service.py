"""
progression.services.audit_service — Award & Adjustment Journals
=================================================================

Append-only writers for ``xp_action_logs`` and ``xp_adjustment_logs``.
Rows are added to the caller's session so they commit or roll back with
the balance change they describe.  Nothing in the engine updates or
deletes these rows.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from progression.database.engine import utcnow
from progression.database.models import AdjustmentMode, XpActionLog, XpAdjustmentLog

logger = logging.getLogger(__name__)


class AuditLogger:
    """Writes journal rows stamped by an injectable clock."""

    def __init__(self, clock: Callable[[], datetime] = utcnow) -> None:
        self._clock = clock

    def log_action(
        self,
        session: Session,
        user_id: str,
        action_key: str,
        amount: int,
        metadata: dict | None = None,
    ) -> XpActionLog:
        row = XpActionLog(
            user_id=user_id,
            action_key=action_key,
            amount=amount,
            metadata_=metadata or None,
            timestamp=self._clock(),
        )
        session.add(row)
        session.flush()
        return row

    def log_adjustment(
        self,
        session: Session,
        *,
        user_id: str,
        mode: AdjustmentMode,
        amount: int,
        old_xp: int,
        new_xp: int,
        reason: str | None = None,
        admin_id: str | None = None,
    ) -> XpAdjustmentLog:
        row = XpAdjustmentLog(
            user_id=user_id,
            admin_id=admin_id,
            mode=str(mode),
            amount=amount,
            reason=reason,
            old_xp=old_xp,
            new_xp=new_xp,
            timestamp=self._clock(),
        )
        session.add(row)
        session.flush()
        logger.debug(
            "Adjustment logged: user=%s %s %d (%d → %d)",
            user_id, mode, amount, old_xp, new_xp,
        )
        return row


# ---------------------------------------------------------------------------
# Read helpers
# ---------------------------------------------------------------------------
def get_xp_history(session: Session, user_id: str, limit: int = 50) -> list[XpActionLog]:
    """Most recent award rows for *user_id*, newest first."""
    return list(session.scalars(
        select(XpActionLog)
        .where(XpActionLog.user_id == user_id)
        .order_by(XpActionLog.timestamp.desc(), XpActionLog.id.desc())
        .limit(limit)
    ).all())


def get_adjustment_history(
    session: Session, user_id: str, limit: int = 50
) -> list[XpAdjustmentLog]:
    """Most recent adjustment rows for *user_id*, newest first."""
    return list(session.scalars(
        select(XpAdjustmentLog)
        .where(XpAdjustmentLog.user_id == user_id)
        .order_by(XpAdjustmentLog.timestamp.desc(), XpAdjustmentLog.id.desc())
        .limit(limit)
    ).all())
