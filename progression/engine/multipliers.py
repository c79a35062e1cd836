"""
progression.engine.multipliers — Multiplier Sanitization & Capping
===================================================================

Pure policy: given a role multiplier and a context multiplier, produce the
single multiplier applied to an action's base value.

Pipeline::

    floor each source at 1.0
      → cap each source (role / context ceilings)
      → combine per stacking rule
      → cap the total
      → apply enforcement mode (strict clamps the total, warn/log_only
        keep the pre-total-cap value)
      → never below 1.0

Per-source caps hold in every mode; only the total cap depends on the
enforcement mode.  Every cap hit is recorded as a human-readable violation
so callers can log why an award was clamped.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field

from progression.config import EnforcementMode, ProgressionConfig, StackingRule

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class MultiplierResult:
    """Outcome of :func:`sanitize_multiplier`."""

    value: float
    original_value: float
    was_capped: bool
    violations: list[str] = field(default_factory=list)
    role_multiplier: float = 1.0
    context_multiplier: float = 1.0


def _clean(value: float | None) -> float:
    if value is None or not math.isfinite(value) or value < 1.0:
        return 1.0
    return float(value)


def _combine(role: float, context: float, cfg: ProgressionConfig) -> float:
    rule = cfg.stacking_rule
    if rule == StackingRule.MULTIPLICATIVE:
        return role * context
    if rule == StackingRule.BEST_OF:
        return max(role, context)
    if rule == StackingRule.WEIGHTED_AVERAGE:
        return role * cfg.role_weight + context * (1.0 - cfg.role_weight)
    # additive: bonuses above 1.0 are summed
    return (role - 1.0) + (context - 1.0) + 1.0


def sanitize_multiplier(
    role_multiplier: float | None,
    context_multiplier: float | None = None,
    config: ProgressionConfig | None = None,
) -> MultiplierResult:
    """Combine and cap the two multiplier sources.

    Parameters
    ----------
    role_multiplier:
        Highest multiplier among the user's roles (``None`` → 1.0).
    context_multiplier:
        Multiplier of the context the action happened in (``None`` → 1.0).
    config:
        Caps, stacking rule and enforcement mode.  Defaults apply when
        omitted.

    Returns
    -------
    MultiplierResult
        ``value`` is what the caller multiplies by; ``original_value`` is the
        combined value after the per-source caps and before the total cap.
    """
    cfg = config or ProgressionConfig()
    strict = cfg.enforcement_mode == EnforcementMode.STRICT
    violations: list[str] = []

    role = _clean(role_multiplier)
    context = _clean(context_multiplier)

    capped_role = role
    if role > cfg.max_role_multiplier:
        violations.append(
            f"Role multiplier {role:.2f} exceeds cap {cfg.max_role_multiplier:.2f}"
        )
        capped_role = cfg.max_role_multiplier

    capped_context = context
    if context > cfg.max_context_multiplier:
        violations.append(
            f"Context multiplier {context:.2f} exceeds cap {cfg.max_context_multiplier:.2f}"
        )
        capped_context = cfg.max_context_multiplier

    original = _combine(capped_role, capped_context, cfg)
    combined = original

    if original > cfg.max_total_multiplier:
        violations.append(
            f"Total multiplier {original:.2f} exceeds cap {cfg.max_total_multiplier:.2f}"
        )
        if strict:
            combined = cfg.max_total_multiplier

    if violations:
        if cfg.enforcement_mode == EnforcementMode.WARN:
            logger.warning("Multiplier cap exceeded: %s", "; ".join(violations))
        elif cfg.enforcement_mode == EnforcementMode.LOG_ONLY:
            logger.debug("Multiplier cap exceeded: %s", "; ".join(violations))

    value = max(combined, 1.0)
    return MultiplierResult(
        value=value,
        original_value=original,
        was_capped=bool(violations),
        violations=violations,
        role_multiplier=role,
        context_multiplier=context,
    )


def apply_multiplier(base_value: int, multiplier: float) -> int:
    """Final award amount: ``floor(base_value * multiplier)``.

    The product is rounded to 6 decimals first so binary float error
    (``100 * 1.15 == 114.99999999999999``) cannot cost a point.
    """
    return math.floor(round(base_value * multiplier, 6))
