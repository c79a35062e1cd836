"""
progression.errors — Exception Taxonomy
========================================

Hard failures raise; soft outcomes do not.  A disabled/unknown action or a
rate-limited award returns ``None`` (see :class:`SkipReason`), so callers can
tell "nothing happened by design" apart from "something broke".
"""

from __future__ import annotations

import enum


class ProgressionError(Exception):
    """Base class for every error raised by the engine."""


class NotFoundError(ProgressionError):
    """An unknown user, level, mission or action key was referenced."""

    def __init__(self, kind: str, key: object) -> None:
        self.kind = kind
        self.key = key
        super().__init__(f"{kind} not found: {key!r}")


class ValidationError(ProgressionError, ValueError):
    """Malformed parameters, rejected before any mutation."""


class TransactionFailure(ProgressionError):
    """The storage transaction aborted; no partial state was persisted."""


class RewardGrantFailure(ProgressionError):
    """A secondary reward step failed.

    Never propagated out of an award: it is logged and reported in the
    award's reward report while the XP mutation stands.
    """

    def __init__(self, level: int, reward_type: str, detail: str) -> None:
        self.level = level
        self.reward_type = reward_type
        self.detail = detail
        super().__init__(f"level {level} {reward_type} reward failed: {detail}")


class SkipReason(enum.StrEnum):
    """Why an award ended as a soft no-op."""
    UNKNOWN_ACTION = "unknown_action"
    DISABLED = "disabled"
    DAILY_CAP = "daily_cap"
    COOLDOWN = "cooldown"
