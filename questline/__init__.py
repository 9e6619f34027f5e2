"""
Questline — Quest Progress & Reward Engine for Discord
=======================================================
Admins define quests (goals over member activity, with rewards, reset
cadences and gating rules); members make progress just by being active,
and the engine hands out rewards exactly once per completion.

Package layout::

    questline/
    ├── config.py          # YAML → typed Python config
    ├── errors.py          # Domain exceptions
    ├── database/
    │   ├── engine.py      # SQLAlchemy engine + async helper
    │   └── models.py      # Quest, chain, progress and journal tables
    ├── engine/
    │   ├── events.py      # ActivityEvent dataclass
    │   ├── gating.py      # Availability / eligibility rules
    │   ├── schedule.py    # Reset-time arithmetic
    │   ├── rewards.py     # Reward descriptor parsing
    │   ├── notices.py     # Completion / milestone notice text
    │   └── cache.py       # Tracking Gate + PG LISTEN/NOTIFY
    ├── services/
    │   ├── progress_service.py    # Activity → progress pipeline
    │   ├── completion_service.py  # Exactly-once completion + rewards
    │   ├── reset_service.py       # Periodic reset / expiry sweeps
    │   ├── catalog_service.py     # Audit-logged quest/chain CRUD
    │   ├── query_service.py       # Member quest board, manual completion
    │   ├── collaborators.py       # Reward collaborator protocols
    │   └── embeds.py              # Discord embed builders
    ├── bot/
    │   ├── core.py        # Bot subclass, cog loader
    │   ├── collaborators.py  # Discord-backed role grantor / notifier
    │   └── cogs/
    │       ├── activity.py  # Message / reaction / voice / thread capture
    │       ├── admin.py     # /quests, /quest-complete
    │       └── tasks.py     # Reset, expiry and cache sweeps
    └── api/
        ├── main.py        # FastAPI app
        └── routes/        # Public + admin REST endpoints
"""

__version__ = "0.1.0"
