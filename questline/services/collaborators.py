"""
questline.services.collaborators — Reward Collaborator Contracts
=================================================================

The engine does no currency or experience arithmetic of its own.  Every
reward is delegated to an async collaborator; any of them may be absent,
in which case rewards of that kind are recorded as ``skipped``.

Discord-backed role and notification collaborators live in
``questline.bot.collaborators``.  Ledgers and the item grantor belong to
other subsystems and are wired in from ``config.yaml`` by dotted path::

    collaborators:
      currency_ledger: "economy.ledger:CoinLedger"
      experience_ledger: "leveling.ledger:XpLedger"
"""

from __future__ import annotations

import importlib
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from questline.config import QuestlineConfig

logger = logging.getLogger(__name__)


@runtime_checkable
class CurrencyLedger(Protocol):
    async def credit(self, guild_id: int, user_id: int, amount: int, reason: str) -> None: ...


@runtime_checkable
class ExperienceLedger(Protocol):
    async def credit(self, guild_id: int, user_id: int, amount: int) -> None: ...


@runtime_checkable
class RoleGrantor(Protocol):
    async def grant(self, guild_id: int, user_id: int, role_id: int) -> None: ...


@runtime_checkable
class ItemGrantor(Protocol):
    async def grant(self, guild_id: int, user_id: int, item_id: str, quantity: int) -> None: ...


@runtime_checkable
class Notifier(Protocol):
    async def notify(self, user_id: int, message: Any) -> None: ...


@dataclass(slots=True)
class RewardCollaborators:
    """Everything the dispatcher may call out to.

    ``reward_timeout_seconds`` bounds every single collaborator call.
    """

    currency: CurrencyLedger | None = None
    experience: ExperienceLedger | None = None
    roles: RoleGrantor | None = None
    items: ItemGrantor | None = None
    notifier: Notifier | None = None
    reward_timeout_seconds: float = 10.0


def load_collaborator(path: str | None, *args: Any) -> Any | None:
    """Instantiate ``"package.module:ClassName"`` (or ``package.module.ClassName``).

    Returns None for an empty path.  Import errors propagate; a typo in
    ``config.yaml`` should stop the bot at startup rather than silently skip
    every reward.
    """
    if not path:
        return None
    if ":" in path:
        module_name, _, attr = path.partition(":")
    else:
        module_name, _, attr = path.rpartition(".")
    if not module_name or not attr:
        raise ValueError(f"Invalid collaborator path {path!r}")
    factory = getattr(importlib.import_module(module_name), attr)
    instance = factory(*args) if isinstance(factory, type) else factory
    logger.info("Loaded collaborator %s", path)
    return instance


def build_collaborators(
    cfg: QuestlineConfig,
    *,
    roles: RoleGrantor | None = None,
    notifier: Notifier | None = None,
) -> RewardCollaborators:
    """Assemble collaborators from config plus the process's own adapters."""
    return RewardCollaborators(
        currency=load_collaborator(cfg.currency_ledger),
        experience=load_collaborator(cfg.experience_ledger),
        roles=roles,
        items=load_collaborator(cfg.item_grantor),
        notifier=notifier if cfg.notify_completions else None,
        reward_timeout_seconds=cfg.reward_timeout_seconds,
    )
