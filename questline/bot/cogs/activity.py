"""
questline.bot.cogs.activity — Activity Listeners
=================================================

Turns gateway events into quest activity:

- ``message_sent``   — every non-bot guild message
- ``reaction_added`` — raw reaction adds (works on uncached messages)
- ``thread_created`` — new threads, credited to the owner
- ``voice_minutes``  — a periodic tick for members in voice, carrying the
  tick length as ``amount``

Each event is handed to :meth:`QuestlineBot.track_activity`, which checks
the Tracking Gate first and runs the pipeline as a background task, so
listeners never wait on the database.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import discord
from discord.ext import commands, tasks

from questline.database.models import ActivityType

if TYPE_CHECKING:
    from questline.bot.core import QuestlineBot

logger = logging.getLogger(__name__)

VOICE_TICK_MINUTES = 5


class Activity(commands.Cog, name="Activity"):
    """Feeds member activity into the quest pipeline."""

    def __init__(self, bot: QuestlineBot) -> None:
        self.bot = bot

    async def cog_load(self) -> None:
        self.voice_tick_loop.start()

    async def cog_unload(self) -> None:
        self.voice_tick_loop.cancel()

    @commands.Cog.listener()
    async def on_message(self, message: discord.Message) -> None:
        if message.author.bot or message.guild is None:
            return
        self.bot.track_activity(
            message.guild.id,
            message.author.id,
            ActivityType.MESSAGE_SENT,
            {"channel_id": message.channel.id},
        )

    @commands.Cog.listener()
    async def on_raw_reaction_add(self, payload: discord.RawReactionActionEvent) -> None:
        if payload.guild_id is None:
            return
        if payload.member is not None and payload.member.bot:
            return
        self.bot.track_activity(
            payload.guild_id,
            payload.user_id,
            ActivityType.REACTION_ADDED,
            {"channel_id": payload.channel_id},
        )

    @commands.Cog.listener()
    async def on_thread_create(self, thread: discord.Thread) -> None:
        if thread.owner_id is None:
            return
        owner = thread.owner
        if owner is not None and owner.bot:
            return
        self.bot.track_activity(
            thread.guild.id,
            thread.owner_id,
            ActivityType.THREAD_CREATED,
            {"channel_id": thread.parent_id},
        )

    @tasks.loop(minutes=VOICE_TICK_MINUTES)
    async def voice_tick_loop(self) -> None:
        """Credit members in voice with the minutes since the last tick."""
        for guild in self.bot.guilds:
            afk_id = guild.afk_channel.id if guild.afk_channel else None
            for vc in guild.voice_channels:
                if vc.id == afk_id:
                    continue
                for member in vc.members:
                    if member.bot:
                        continue
                    # Anti-idle: muted AND deafened doesn't count
                    voice = member.voice
                    if voice and voice.self_mute and voice.self_deaf:
                        continue
                    self.bot.track_activity(
                        guild.id,
                        member.id,
                        ActivityType.VOICE_MINUTES,
                        {"channel_id": vc.id, "amount": VOICE_TICK_MINUTES},
                    )

    @voice_tick_loop.before_loop
    async def _wait_voice(self) -> None:
        await self.bot.wait_until_ready()


async def setup(bot: QuestlineBot) -> None:
    await bot.add_cog(Activity(bot))
