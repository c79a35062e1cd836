"""
progression.constants — Shared Constants
=========================================

Single source of truth for values shared between services, the seeder and
the CLI.
"""

from __future__ import annotations

import enum
from datetime import timedelta


class NotificationType(enum.StrEnum):
    LEVEL_UP = "level_up"
    LEVEL_CHANGED = "level_changed"


# Reason recorded on award-driven adjustment log rows
AWARD_REASON_TEMPLATE = "Action: {action} ({final_xp}XP = {base} * {multiplier:.2f})"

# Mission cadence → reset period
CADENCE_PERIODS: dict[str, timedelta] = {
    "daily": timedelta(days=1),
    "weekly": timedelta(weeks=1),
}
