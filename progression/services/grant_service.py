"""
progression.services.grant_service — Idempotent Title & Badge Grants
=====================================================================

``grant(session, user_id, reward_id)`` returns
:attr:`GrantOutcome.ALREADY_HELD` when the grant record exists and
:attr:`GrantOutcome.NEWLY_GRANTED` after inserting it.  The existence check
runs immediately before the insert, inside the caller's transaction; a
concurrent insert that wins the race surfaces as an ``IntegrityError`` on
flush, which is reported as ``ALREADY_HELD``.
"""

from __future__ import annotations

import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from progression.database.models import Badge, Title, UserBadge, UserTitle
from progression.errors import NotFoundError
from progression.services.collaborators import GrantOutcome

logger = logging.getLogger(__name__)


def _grant(session: Session, record) -> GrantOutcome:
    try:
        with session.begin_nested():   # SAVEPOINT
            session.add(record)
            session.flush()
    except IntegrityError:
        return GrantOutcome.ALREADY_HELD
    return GrantOutcome.NEWLY_GRANTED


class TitleGrant:
    """Grants rows in ``user_titles``."""

    def __init__(self, source: str = "level_up") -> None:
        self.source = source

    def grant(self, session: Session, user_id: str, reward_id: int) -> GrantOutcome:
        if session.get(UserTitle, (user_id, reward_id)) is not None:
            return GrantOutcome.ALREADY_HELD
        if session.get(Title, reward_id) is None:
            raise NotFoundError("title", reward_id)
        outcome = _grant(
            session, UserTitle(user_id=user_id, title_id=reward_id, source=self.source)
        )
        if outcome == GrantOutcome.NEWLY_GRANTED:
            logger.info("Granted title %d to user %s", reward_id, user_id)
        return outcome


class BadgeGrant:
    """Grants rows in ``user_badges``."""

    def __init__(self, source: str = "level_up") -> None:
        self.source = source

    def grant(self, session: Session, user_id: str, reward_id: int) -> GrantOutcome:
        if session.get(UserBadge, (user_id, reward_id)) is not None:
            return GrantOutcome.ALREADY_HELD
        if session.get(Badge, reward_id) is None:
            raise NotFoundError("badge", reward_id)
        outcome = _grant(
            session, UserBadge(user_id=user_id, badge_id=reward_id, source=self.source)
        )
        if outcome == GrantOutcome.NEWLY_GRANTED:
            logger.info("Granted badge %d to user %s", reward_id, user_id)
        return outcome
