"""
questline.services.embeds — Discord embed builders for quest notices
=====================================================================

The engine describes a notification as a plain
:class:`~questline.engine.notices.QuestNotice`; this module owns every
layout decision for turning one into a ``discord.Embed``.
"""

from __future__ import annotations

import discord

from questline.engine.notices import NoticeKind, QuestNotice

_COLORS = {
    NoticeKind.COMPLETION: discord.Color.green,
    NoticeKind.MILESTONE: discord.Color.blue,
    NoticeKind.CHAIN: discord.Color.gold,
}


def build_notice_embed(notice: QuestNotice, guild_name: str | None = None) -> discord.Embed:
    """Build the DM embed for a completion, milestone or chain notice."""
    color = _COLORS.get(notice.kind, discord.Color.purple)()
    embed = discord.Embed(title=notice.title, description=notice.description, color=color)
    if notice.reward_lines:
        embed.add_field(name="Rewards", value="\n".join(notice.reward_lines), inline=False)
    if guild_name:
        embed.set_footer(text=guild_name)
    return embed


def build_quest_list_embed(entries: list[dict], member_name: str) -> discord.Embed:
    """Summarize a member's quest board (``UserQuest.to_dict`` rows)."""
    embed = discord.Embed(
        title=f"\U0001f4dc Quests — {member_name}",
        color=discord.Color.blurple(),
    )
    if not entries:
        embed.description = "No quests available right now."
        return embed
    for entry in entries[:25]:   # Discord's per-embed field limit
        status = "✅" if entry["completed"] else f"{entry['percent']}%"
        embed.add_field(
            name=f"{entry['emoji'] or '•'} {entry['name']}",
            value=f"{entry['current_progress']}/{entry['target_progress']} · {status}",
            inline=False,
        )
    return embed
