"""
questline.engine.notices — Member Notification Payloads
========================================================

The dispatcher describes what to tell a member as a :class:`QuestNotice`;
the Discord notifier turns it into an embed (see
``questline.services.embeds``).  Keeping the payload plain means the
engine never imports discord.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from questline.engine.rewards import Reward, describe_reward

if TYPE_CHECKING:
    from questline.database.models import Quest, QuestChain


DEFAULT_QUEST_EMOJI = "\U0001f3af"


class NoticeKind(enum.StrEnum):
    COMPLETION = "completion"
    MILESTONE = "milestone"
    CHAIN = "chain"


@dataclass(frozen=True, slots=True)
class QuestNotice:
    kind: NoticeKind
    title: str
    description: str
    reward_lines: list[str] = field(default_factory=list)
    guild_id: int | None = None


def completion_notice(quest: Quest, rewards: list[Reward], completion_number: int) -> QuestNotice:
    title = f"{quest.emoji or DEFAULT_QUEST_EMOJI} Quest Complete!"
    description = f"You completed **{quest.name}**!"
    if completion_number > 1:
        description += f" (completion #{completion_number})"
    return QuestNotice(
        kind=NoticeKind.COMPLETION,
        title=title,
        description=description,
        reward_lines=[describe_reward(r) for r in rewards],
        guild_id=quest.guild_id,
    )


def milestone_notice(
    quest: Quest, percent: int, rewards: list[Reward], message: str | None = None,
) -> QuestNotice:
    return QuestNotice(
        kind=NoticeKind.MILESTONE,
        title="\U0001f6a9 Milestone Reached!",
        description=message or f"You're {percent}% of the way through **{quest.name}**.",
        reward_lines=[describe_reward(r) for r in rewards],
        guild_id=quest.guild_id,
    )


def chain_notice(chain: QuestChain, rewards: list[Reward]) -> QuestNotice:
    return QuestNotice(
        kind=NoticeKind.CHAIN,
        title="\U0001f517 Quest Chain Complete!",
        description=f"You finished every quest in **{chain.name}**!",
        reward_lines=[describe_reward(r) for r in rewards],
        guild_id=chain.guild_id,
    )
