"""
progression.services.notification_service — Default Notification Queue
=======================================================================

Writes ``notifications`` rows in the caller's transaction.  Delivery
(push, e-mail, websocket) is handled elsewhere by whatever reads the queue.
"""

from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from progression.database.models import Notification

logger = logging.getLogger(__name__)


class NotificationQueue:
    """Database-backed :class:`~progression.services.collaborators.NotificationSink`."""

    def enqueue(
        self,
        session: Session,
        user_id: str,
        type: str,
        title: str,
        body: str,
        data: dict | None = None,
    ) -> None:
        session.add(Notification(
            user_id=user_id,
            type=type,
            title=title,
            body=body,
            data=data,
        ))
        session.flush()
        logger.debug("Queued %s notification for user %s", type, user_id)


def get_unread(session: Session, user_id: str, limit: int = 50) -> list[Notification]:
    return list(session.scalars(
        select(Notification)
        .where(Notification.user_id == user_id, Notification.is_read.is_(False))
        .order_by(Notification.id.desc())
        .limit(limit)
    ).all())
