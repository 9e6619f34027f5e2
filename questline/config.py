"""
questline.config — YAML Configuration Loader
=============================================

Reads ``config.yaml`` for deployment settings: Discord identity, the quest
engine's timers and cache lifetimes, and the import paths of the reward
collaborators that live outside this package (currency ledger, experience
ledger, item grantor).  Secrets stay in ``.env``.

Usage::

    from questline.config import load_config

    cfg = load_config()              # reads ./config.yaml by default
    print(cfg.guild_id)              # 1468816181854081229
    print(cfg.tracking_cache_ttl_seconds)   # 300
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import yaml


# ---------------------------------------------------------------------------
# Typed settings object
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class QuestlineConfig:
    """Immutable configuration loaded from ``config.yaml``."""

    # Identity
    community_name: str

    # Discord
    bot_prefix: str
    guild_id: int  # Primary guild snowflake
    admin_role_id: int  # Role required for /quest-complete

    # Quest engine timing
    timezone: str = "UTC"  # Zone in which reset_time / day-of-week are read
    tracking_cache_ttl_seconds: int = 300
    reset_interval_hours: float = 1.0
    reset_initial_delay_seconds: int = 60
    expiry_interval_minutes: float = 5.0
    reward_timeout_seconds: float = 10.0
    notify_completions: bool = True

    # Reward collaborators — "package.module:attribute" import paths
    currency_ledger: str | None = None
    experience_ledger: str | None = None
    item_grantor: str | None = None


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def load_config(path: str | Path = "config.yaml") -> QuestlineConfig:
    """Read *path* and return a :class:`QuestlineConfig` instance.

    Parameters
    ----------
    path:
        Filesystem path to the YAML configuration file.
        Defaults to ``config.yaml`` in the current working directory.

    Raises
    ------
    FileNotFoundError
        If the YAML file doesn't exist.
    KeyError
        If a required key is missing from the YAML file.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path.resolve()}\n"
            "Hint: copy config.yaml.example → config.yaml and edit it."
        )

    with open(config_path, encoding="utf-8") as fh:
        raw: dict = yaml.safe_load(fh) or {}

    quests: dict = raw.get("quests") or {}
    collaborators: dict = raw.get("collaborators") or {}

    return QuestlineConfig(
        community_name=raw["community_name"],
        bot_prefix=raw.get("bot_prefix", "!"),
        guild_id=int(raw["guild_id"]),
        admin_role_id=int(raw["admin_role_id"]),
        timezone=quests.get("timezone", "UTC"),
        tracking_cache_ttl_seconds=int(quests.get("tracking_cache_ttl_seconds", 300)),
        reset_interval_hours=float(quests.get("reset_interval_hours", 1.0)),
        reset_initial_delay_seconds=int(quests.get("reset_initial_delay_seconds", 60)),
        expiry_interval_minutes=float(quests.get("expiry_interval_minutes", 5.0)),
        reward_timeout_seconds=float(quests.get("reward_timeout_seconds", 10.0)),
        notify_completions=bool(quests.get("notify_completions", True)),
        currency_ledger=collaborators.get("currency_ledger") or None,
        experience_ledger=collaborators.get("experience_ledger") or None,
        item_grantor=collaborators.get("item_grantor") or None,
    )
