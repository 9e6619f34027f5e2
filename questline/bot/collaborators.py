"""
questline.bot.collaborators — Discord-backed reward collaborators
==================================================================

The role grantor and the DM notifier need a live gateway connection, so
they are built by the bot and handed to the dispatcher alongside the
ledgers loaded from ``config.yaml``.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import discord

from questline.engine.notices import QuestNotice
from questline.services.embeds import build_notice_embed

if TYPE_CHECKING:
    from discord.ext import commands

logger = logging.getLogger(__name__)


class DiscordRoleGrantor:
    """Adds a role to a guild member.  Raises on any failure."""

    def __init__(self, bot: commands.Bot) -> None:
        self.bot = bot

    async def grant(self, guild_id: int, user_id: int, role_id: int) -> None:
        guild = self.bot.get_guild(guild_id)
        if guild is None:
            raise LookupError(f"Guild {guild_id} is not available")
        role = guild.get_role(role_id)
        if role is None:
            raise LookupError(f"Role {role_id} not found in guild {guild_id}")
        member = guild.get_member(user_id) or await guild.fetch_member(user_id)
        if role in member.roles:
            return
        await member.add_roles(role, reason="Quest reward")
        logger.info("Granted role %s to user %s in guild %s", role.name, user_id, guild_id)


class DiscordNotifier:
    """Sends quest notices as DMs.

    DMs fail routinely (closed DMs, left the server); the dispatcher treats
    any exception from here as non-fatal.
    """

    def __init__(self, bot: commands.Bot) -> None:
        self.bot = bot

    async def notify(self, user_id: int, message: QuestNotice | str) -> None:
        user = self.bot.get_user(user_id) or await self.bot.fetch_user(user_id)
        if isinstance(message, str):
            await user.send(message)
            return
        guild = self.bot.get_guild(message.guild_id) if message.guild_id else None
        try:
            await user.send(embed=build_notice_embed(message, guild.name if guild else None))
        except discord.Forbidden:
            logger.debug("User %s has DMs closed — quest notice dropped", user_id)
