"""
progression.services.collaborators — External Collaborator Contracts
=====================================================================

The engine calls out to a wallet, a notification sink and reward grant
capabilities.  Each is a structural :class:`~typing.Protocol`, so hosts can
plug in their own implementation without subclassing.

Every collaborator call receives the caller's :class:`Session` so that
database-backed implementations join the award's transaction (and its
per-reward SAVEPOINT).  Implementations talking to remote systems may
ignore it.
"""

from __future__ import annotations

import enum
import logging
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)


class GrantOutcome(enum.StrEnum):
    ALREADY_HELD = "already_held"
    NEWLY_GRANTED = "newly_granted"


@runtime_checkable
class Wallet(Protocol):
    def credit(
        self,
        session: Session,
        user_id: str,
        amount: int,
        reason: str,
        metadata: dict | None = None,
    ) -> None: ...


@runtime_checkable
class NotificationSink(Protocol):
    def enqueue(
        self,
        session: Session,
        user_id: str,
        type: str,
        title: str,
        body: str,
        data: dict | None = None,
    ) -> None: ...


@runtime_checkable
class RewardGrant(Protocol):
    def grant(self, session: Session, user_id: str, reward_id: int) -> GrantOutcome: ...


class NullWallet:
    """Development wallet: logs credits and keeps no ledger."""

    def credit(
        self,
        session: Session,
        user_id: str,
        amount: int,
        reason: str,
        metadata: dict | None = None,
    ) -> None:
        logger.info("Wallet credit (not persisted): user=%s amount=%d reason=%s",
                    user_id, amount, reason)
