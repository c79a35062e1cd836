"""
progression.config — YAML Configuration Loader
===============================================

``config.yaml`` holds engine policy that operators tune per deployment
(multiplier ceilings, stacking rule, cache TTL).  Gameplay data (levels,
actions, missions) lives in the database and is edited through
:mod:`progression.services.admin_service`.  The database URL comes from
the ``DATABASE_URL`` environment variable, never from this file.

Usage::

    from progression.config import load_config

    cfg = load_config()                  # reads ./config.yaml by default
    print(cfg.max_total_multiplier)      # 3.5
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from pathlib import Path

import yaml


class StackingRule(enum.StrEnum):
    """How role and context multipliers are combined."""
    ADDITIVE = "additive"
    MULTIPLICATIVE = "multiplicative"
    BEST_OF = "best_of"
    WEIGHTED_AVERAGE = "weighted_average"


class EnforcementMode(enum.StrEnum):
    """What happens when a multiplier exceeds its cap."""
    STRICT = "strict"      # clamp to the cap
    WARN = "warn"          # keep uncapped value, log a warning
    LOG_ONLY = "log_only"  # keep uncapped value, log at debug


# ---------------------------------------------------------------------------
# Typed settings object
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class ProgressionConfig:
    """Immutable configuration loaded from ``config.yaml``.

    Every field has a default, so ``ProgressionConfig()`` is a valid
    configuration for tests and development.
    """

    # Multiplier policy
    max_role_multiplier: float = 2.5
    max_context_multiplier: float = 2.0
    max_total_multiplier: float = 3.5
    stacking_rule: StackingRule = StackingRule.ADDITIVE
    enforcement_mode: EnforcementMode = EnforcementMode.STRICT
    role_weight: float = 0.6  # weighted_average only; context gets the rest

    # Action registry
    action_cache_ttl_seconds: float | None = 60.0

    # Balance mutation
    cas_max_retries: int = 5

    # Actor recorded for engine-initiated adjustments
    system_actor_id: str = "system"

    # Currency name used in notification text
    currency_name: str = "DGT"


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def load_config(path: str | Path = "config.yaml") -> ProgressionConfig:
    """Read *path* and return a :class:`ProgressionConfig` instance.

    Parameters
    ----------
    path:
        Filesystem path to the YAML configuration file.
        Defaults to ``config.yaml`` in the current working directory.

    Raises
    ------
    FileNotFoundError
        If the YAML file doesn't exist.
    ValueError
        If an enum-valued key holds an unknown value.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path.resolve()}\n"
            "Hint: copy config.yaml.example → config.yaml and edit it."
        )

    with open(config_path, encoding="utf-8") as fh:
        raw: dict = yaml.safe_load(fh) or {}

    multipliers: dict = raw.get("multipliers") or {}
    defaults = ProgressionConfig()
    ttl = raw.get("action_cache_ttl_seconds", defaults.action_cache_ttl_seconds)

    return ProgressionConfig(
        max_role_multiplier=float(
            multipliers.get("max_role", defaults.max_role_multiplier)
        ),
        max_context_multiplier=float(
            multipliers.get("max_context", defaults.max_context_multiplier)
        ),
        max_total_multiplier=float(
            multipliers.get("max_total", defaults.max_total_multiplier)
        ),
        stacking_rule=StackingRule(
            multipliers.get("stacking_rule", defaults.stacking_rule)
        ),
        enforcement_mode=EnforcementMode(
            multipliers.get("enforcement_mode", defaults.enforcement_mode)
        ),
        role_weight=float(multipliers.get("role_weight", defaults.role_weight)),
        action_cache_ttl_seconds=float(ttl) if ttl is not None else None,
        cas_max_retries=int(raw.get("cas_max_retries", defaults.cas_max_retries)),
        system_actor_id=str(raw.get("system_actor_id", defaults.system_actor_id)),
        currency_name=str(raw.get("currency_name", defaults.currency_name)),
    )
