"""
questline.bot.cogs.tasks — Periodic Quest Sweeps
=================================================

Scheduled jobs that run on ``discord.ext.tasks`` loops:

- **Reset sweep** — every ``reset_interval_hours`` (default 1), with the
  first run ``reset_initial_delay_seconds`` (default 60) after startup.
  Reopens daily / weekly / monthly quest records whose ``reset_at`` passed.
- **Expiry sweep** — every ``expiry_interval_minutes`` (default 5),
  zeroes records whose deadline or time limit passed.
- **Gate housekeeping** — drops expired Tracking Gate entries.

The sweeps run via ``run_db()`` to avoid blocking the event loop.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from discord.ext import commands, tasks

from questline.database.engine import run_db
from questline.services.reset_service import process_expired_quests, process_quest_resets

if TYPE_CHECKING:
    from questline.bot.core import QuestlineBot

logger = logging.getLogger(__name__)


class QuestTasks(commands.Cog):
    """Cog for scheduled quest maintenance."""

    def __init__(self, bot: QuestlineBot) -> None:
        self.bot = bot
        cfg = bot.cfg
        self.reset_loop.change_interval(hours=cfg.reset_interval_hours)
        self.expiry_loop.change_interval(minutes=cfg.expiry_interval_minutes)

    async def cog_load(self) -> None:
        """Start task loops when the cog is loaded."""
        self.reset_loop.start()
        self.expiry_loop.start()
        self.gate_housekeeping_loop.start()

    async def cog_unload(self) -> None:
        """Cancel task loops on unload."""
        self.reset_loop.cancel()
        self.expiry_loop.cancel()
        self.gate_housekeeping_loop.cancel()

    # -------------------------------------------------------------------
    # Reset sweep
    # -------------------------------------------------------------------
    @tasks.loop(hours=1)
    async def reset_loop(self):
        try:
            result = await run_db(
                process_quest_resets, self.bot.engine, self.bot.gate, tz=self.bot.cfg.timezone,
            )
            logger.debug("Reset sweep complete: %s", result)
        except Exception:
            logger.exception("Quest reset sweep failed", extra={"task": "quest_reset"})

    @reset_loop.before_loop
    async def _wait_reset(self):
        await self.bot.wait_until_ready()
        await asyncio.sleep(self.bot.cfg.reset_initial_delay_seconds)

    # -------------------------------------------------------------------
    # Expiry sweep
    # -------------------------------------------------------------------
    @tasks.loop(minutes=5)
    async def expiry_loop(self):
        try:
            result = await run_db(process_expired_quests, self.bot.engine)
            logger.debug("Expiry sweep complete: %s", result)
        except Exception:
            logger.exception("Quest expiry sweep failed", extra={"task": "quest_expiry"})

    @expiry_loop.before_loop
    async def _wait_expiry(self):
        await self.bot.wait_until_ready()

    # -------------------------------------------------------------------
    # Tracking Gate housekeeping
    # -------------------------------------------------------------------
    @tasks.loop(minutes=10)
    async def gate_housekeeping_loop(self):
        dropped = self.bot.gate.expire()
        if dropped:
            logger.debug("Dropped %d expired tracking gate entries", dropped)


async def setup(bot: QuestlineBot) -> None:
    await bot.add_cog(QuestTasks(bot))
