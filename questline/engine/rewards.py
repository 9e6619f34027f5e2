"""
questline.engine.rewards — Reward Variants
===========================================

Quest, milestone and chain rewards are stored as a small JSON descriptor::

    {"coins": 50, "xp": 20, "role_id": 123, "item_id": "potion", "item_quantity": 2}

Any subset of the keys may be present.  The dispatcher never iterates the
raw dict; it works on the tagged list produced by :func:`parse_rewards`, so
every reward kind is handled by an exhaustive ``match``.

This module is pure — no database I/O, no Discord I/O.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any, ClassVar

__all__ = [
    "CurrencyReward",
    "ExperienceReward",
    "ItemReward",
    "Reward",
    "RewardKind",
    "RewardOutcome",
    "describe_reward",
    "parse_rewards",
    "validate_reward_descriptor",
]


class RewardKind(enum.StrEnum):
    CURRENCY = "currency"
    EXPERIENCE = "experience"
    ROLE = "role"
    ITEM = "item"


class RewardOutcome(enum.StrEnum):
    """What happened to one reward of one completion."""
    GRANTED = "granted"
    FAILED = "failed"      # collaborator raised or timed out
    SKIPPED = "skipped"    # no collaborator configured for this kind


@dataclass(frozen=True, slots=True)
class CurrencyReward:
    amount: int
    kind: ClassVar[RewardKind] = RewardKind.CURRENCY


@dataclass(frozen=True, slots=True)
class ExperienceReward:
    amount: int
    kind: ClassVar[RewardKind] = RewardKind.EXPERIENCE


@dataclass(frozen=True, slots=True)
class RoleReward:
    role_id: int
    kind: ClassVar[RewardKind] = RewardKind.ROLE


@dataclass(frozen=True, slots=True)
class ItemReward:
    item_id: str
    quantity: int = 1
    kind: ClassVar[RewardKind] = RewardKind.ITEM


Reward = CurrencyReward | ExperienceReward | RoleReward | ItemReward


def _positive_int(value: Any) -> int:
    if value is None or value == "":
        return 0
    return int(value)


def parse_rewards(descriptor: dict | None) -> list[Reward]:
    """Turn a reward descriptor into reward variants.

    Zero or missing amounts produce no variant, so ``{"coins": 50, "xp": 20}``
    yields exactly one currency and one experience reward.
    """
    if not descriptor:
        return []

    rewards: list[Reward] = []
    coins = _positive_int(descriptor.get("coins"))
    if coins > 0:
        rewards.append(CurrencyReward(amount=coins))

    xp = _positive_int(descriptor.get("xp"))
    if xp > 0:
        rewards.append(ExperienceReward(amount=xp))

    role_id = descriptor.get("role_id")
    if role_id:
        rewards.append(RoleReward(role_id=int(role_id)))

    item_id = descriptor.get("item_id")
    if item_id:
        quantity = _positive_int(descriptor.get("item_quantity")) or 1
        rewards.append(ItemReward(item_id=str(item_id), quantity=quantity))

    return rewards


def validate_reward_descriptor(descriptor: dict | None) -> None:
    """Raise :class:`ValueError` for a descriptor the dispatcher can't grant."""
    if descriptor is None:
        return
    if not isinstance(descriptor, dict):
        raise ValueError("rewards must be an object")
    for key in ("coins", "xp", "item_quantity"):
        value = descriptor.get(key)
        if value is None:
            continue
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise ValueError(f"rewards.{key} must be a non-negative integer")
    role_id = descriptor.get("role_id")
    if role_id not in (None, ""):
        try:
            int(role_id)
        except (TypeError, ValueError):
            raise ValueError("rewards.role_id must be a Discord role ID") from None


def describe_reward(reward: Reward) -> str:
    """One notification line per reward."""
    match reward:
        case CurrencyReward(amount=amount):
            return f"\U0001f4b0 {amount:,} coins"
        case ExperienceReward(amount=amount):
            return f"⭐ {amount:,} XP"
        case RoleReward(role_id=role_id):
            return f"\U0001f3ad <@&{role_id}>"
        case ItemReward(item_id=item_id, quantity=quantity):
            return f"\U0001f392 {quantity}× {item_id}"
    raise TypeError(f"Unknown reward variant: {reward!r}")
