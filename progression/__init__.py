"""
Progression — XP, Levels, Rewards and Missions for Community Platforms
=======================================================================
Turns user actions into experience points, resolves level transitions,
hands out level-up rewards exactly once, enforces per-action rate limits
and tracks bounded missions driven by the same action stream.

Package layout::

    progression/
    ├── __main__.py        # CLI: init-db, seed, reset-daily, reset-weekly
    ├── config.py          # YAML → typed Python config
    ├── constants.py       # Shared constants
    ├── core.py            # ProgressionEngine facade
    ├── errors.py          # Exception taxonomy + soft skip reasons
    ├── database/
    │   ├── engine.py      # SQLAlchemy engine, sessions, async helper
    │   ├── models.py      # All ORM models
    │   └── seed.py        # Default levels / actions / missions
    ├── engine/
    │   ├── cache.py       # ActionRegistry (generation-guarded cache)
    │   ├── events.py      # Action keys, ActionOccurred, event bus
    │   ├── levels.py      # Level threshold table + progress maths
    │   └── multipliers.py # Multiplier sanitize/cap policy
    └── services/
        ├── xp_service.py          # Awards, adjustments, atomic primitive
        ├── rate_limiter.py        # Daily caps and cooldowns
        ├── multiplier_service.py  # Role / context multiplier lookup
        ├── reward_service.py      # Level-up reward saga
        ├── grant_service.py       # Idempotent title / badge grants
        ├── mission_service.py     # Mission progress, claims, resets
        ├── audit_service.py       # Award + adjustment journals
        ├── notification_service.py # Default notification queue
        ├── collaborators.py       # Wallet / notifier / grant protocols
        └── admin_service.py       # Audit-logged admin mutations
"""

__version__ = "0.1.0"
