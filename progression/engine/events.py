"""
progression.engine.events — Actions, ActionOccurred and the Event Bus
======================================================================

Every XP-earning behaviour is identified by an action key.  Each action
attempt ends with the XP service publishing an :class:`ActionOccurred`
envelope on the :class:`ActionEventBus`, whether or not it earned XP; the
mission tracker is the main subscriber.

Delivery is synchronous, in-process and best-effort: a failing subscriber
is logged and skipped, and never affects the publisher or other
subscribers.
"""

from __future__ import annotations

import enum
import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime

__all__ = [
    "XpAction",
    "DEFAULT_XP_ACTIONS",
    "ActionOccurred",
    "ActionEventBus",
]

logger = logging.getLogger(__name__)


class XpAction(enum.StrEnum):
    """Built-in action keys.  Admins may add more in ``xp_action_settings``."""
    POST_CREATED = "post_created"
    THREAD_CREATED = "thread_created"
    RECEIVED_LIKE = "received_like"
    DAILY_LOGIN = "daily_login"
    USER_MENTIONED = "user_mentioned"
    REPLY_RECEIVED = "reply_received"
    PROFILE_COMPLETED = "profile_completed"
    FRAME_EQUIPPED = "frame_equipped"
    TIP_GIVEN = "tip_given"
    TIP_RECEIVED = "tip_received"
    CURRENCY_PURCHASE = "currency_purchase"


# ---------------------------------------------------------------------------
# Built-in action catalogue
# ---------------------------------------------------------------------------
DEFAULT_XP_ACTIONS: dict[str, tuple[int, int | None, int | None, str]] = {
    XpAction.POST_CREATED: (10, 100, None, "Creating a new post"),
    XpAction.THREAD_CREATED: (30, None, None, "Starting a new thread"),
    XpAction.RECEIVED_LIKE: (5, 50, None, "Receiving a like on a post"),
    XpAction.DAILY_LOGIN: (5, None, 86400, "Logging in (once per day)"),
    XpAction.USER_MENTIONED: (2, 20, None, "Being mentioned by another user"),
    XpAction.REPLY_RECEIVED: (3, 50, None, "Receiving a reply to a post"),
    XpAction.PROFILE_COMPLETED: (50, None, 604800, "Completing the profile"),
    XpAction.FRAME_EQUIPPED: (5, None, None, "Equipping an avatar frame"),
    XpAction.TIP_GIVEN: (2, 20, None, "Tipping another user"),
    XpAction.TIP_RECEIVED: (5, 50, None, "Receiving a tip"),
    XpAction.CURRENCY_PURCHASE: (10, 5, None, "Purchasing currency"),
}
"""Each entry maps ``action_key`` → ``(base_value, daily_cap, cooldown_seconds, description)``."""


# ---------------------------------------------------------------------------
# ActionOccurred — post-commit envelope
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class ActionOccurred:
    """Published for every attempt at *action_key*.

    ``xp_awarded`` is 0 when the attempt was a no-op; otherwise the award
    has already committed.
    """

    user_id: str
    action_key: str
    xp_awarded: int = 0
    metadata: dict = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))


Subscriber = Callable[[ActionOccurred], object]


class ActionEventBus:
    """Minimal synchronous publish/subscribe hub."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subscribers: list[Subscriber] = []

    def subscribe(self, callback: Subscriber) -> None:
        with self._lock:
            if callback not in self._subscribers:
                self._subscribers.append(callback)

    def unsubscribe(self, callback: Subscriber) -> None:
        with self._lock:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

    def publish(self, event: ActionOccurred) -> int:
        """Deliver *event* to every subscriber.

        Returns the number of subscribers that handled it without raising.
        """
        with self._lock:
            subscribers = list(self._subscribers)

        delivered = 0
        for callback in subscribers:
            try:
                callback(event)
                delivered += 1
            except Exception:
                logger.exception(
                    "Subscriber %r failed for %s by user %s",
                    callback, event.action_key, event.user_id,
                )
        return delivered
