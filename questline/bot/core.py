"""
questline.bot.core — Bot Instance & Cog Loader
===============================================

Defines :class:`QuestlineBot`, a ``commands.Bot`` subclass that:

1. Carries the shared config (``bot.cfg``), DB engine (``bot.engine``),
   Tracking Gate (``bot.gate``) and reward collaborators
   (``bot.collaborators``) so every Cog can reach them via ``self.bot``.
2. Loads the activity, admin and task Cogs.
3. Syncs the slash-command tree on startup (guild-scoped for dev, global
   for production — controlled by the ``DEV_GUILD_ID`` env var).
4. Registers PG NOTIFY event callbacks so the dashboard can hand manual
   completions to the bot.
5. Fires activity tracking as background tasks, holding references until
   each finishes.
"""

from __future__ import annotations

import asyncio
import logging
import os

import discord
from discord.ext import commands
from sqlalchemy import Engine

from questline.bot.collaborators import DiscordNotifier, DiscordRoleGrantor
from questline.config import QuestlineConfig
from questline.engine.cache import MANUAL_COMPLETE_EVENT, TrackingGate
from questline.errors import QuestNotFoundError
from questline.services.collaborators import build_collaborators
from questline.services.progress_service import record_activity
from questline.services.query_service import manual_complete

logger = logging.getLogger(__name__)

EXTENSIONS: list[str] = [
    "questline.bot.cogs.activity",
    "questline.bot.cogs.admin",
    "questline.bot.cogs.tasks",
]


class QuestlineBot(commands.Bot):
    """Custom Bot subclass that carries project-wide state.

    Parameters
    ----------
    cfg:
        The parsed :class:`QuestlineConfig` from ``config.yaml``.
    engine:
        A SQLAlchemy :class:`Engine` connected to PostgreSQL.
    gate:
        The process-wide :class:`TrackingGate`.
    """

    def __init__(self, cfg: QuestlineConfig, engine: Engine, gate: TrackingGate) -> None:
        intents = discord.Intents.default()
        intents.message_content = False   # quests count messages, never read them
        intents.members = True            # role rewards need the member cache
        intents.presences = False

        super().__init__(
            command_prefix=cfg.bot_prefix,
            intents=intents,
            description=f"{cfg.community_name} quests",
        )

        self.cfg = cfg
        self.engine = engine
        self.gate = gate
        self.collaborators = build_collaborators(
            cfg,
            roles=DiscordRoleGrantor(self),
            notifier=DiscordNotifier(self),
        )

        # In-flight activity tasks; the loop only keeps weak references
        self._activity_tasks: set[asyncio.Task] = set()

    # -----------------------------------------------------------------------
    # Activity fan-out
    # -----------------------------------------------------------------------
    def track_activity(
        self, guild_id: int, user_id: int, quest_type: str, data: dict | None = None,
    ) -> asyncio.Task:
        """Fire-and-forget a :func:`record_activity` run for one event."""
        task = asyncio.create_task(
            record_activity(
                self.engine, self.gate, self.collaborators,
                guild_id, user_id, quest_type, data or {},
                tz=self.cfg.timezone,
            ),
            name=f"quest-activity:{quest_type}:{user_id}",
        )
        self._activity_tasks.add(task)
        task.add_done_callback(self._activity_tasks.discard)
        return task

    # -----------------------------------------------------------------------
    # Lifecycle hooks
    # -----------------------------------------------------------------------
    async def setup_hook(self) -> None:
        """Load every Cog; one broken Cog shouldn't take down the whole bot."""
        for ext in EXTENSIONS:
            try:
                await self.load_extension(ext)
                logger.info("Loaded extension: %s", ext)
            except Exception as exc:
                logger.error("Failed to load extension %s: %s", ext, exc)

    async def on_ready(self) -> None:
        assert self.user is not None  # guaranteed after on_ready
        logger.info("Logged in as %s (ID: %s)", self.user.name, self.user.id)

        dev_guild_id = os.getenv("DEV_GUILD_ID")
        if dev_guild_id:
            guild = discord.Object(id=int(dev_guild_id))
            self.tree.copy_global_to(guild=guild)
            synced = await self.tree.sync(guild=guild)
            logger.info("Synced %d commands to dev guild %s", len(synced), dev_guild_id)
        else:
            synced = await self.tree.sync()
            logger.info("Synced %d commands globally", len(synced))

        self.gate.register_event_callback(
            MANUAL_COMPLETE_EVENT, self._on_manual_complete, loop=asyncio.get_running_loop(),
        )

    async def close(self) -> None:
        """Graceful shutdown: stop the listener, let in-flight tracking finish."""
        logger.info("Bot shutting down…")
        self.gate.stop_listener()
        if self._activity_tasks:
            await asyncio.gather(*self._activity_tasks, return_exceptions=True)
        await super().close()

    # -----------------------------------------------------------------------
    # Cross-service event callbacks (PG NOTIFY → bot actions)
    # -----------------------------------------------------------------------
    async def _on_manual_complete(self, data: dict) -> None:
        """Run a completion requested from the dashboard."""
        try:
            result = await manual_complete(
                self.engine,
                self.collaborators,
                int(data["guild_id"]),
                int(data["quest_id"]),
                int(data["user_id"]),
                tz=self.cfg.timezone,
            )
        except QuestNotFoundError:
            logger.warning("Dashboard completion for unknown quest: %s", data)
            return
        except Exception:
            logger.exception("Dashboard completion failed: %s", data)
            return
        logger.info(
            "Dashboard completion by %s: quest %s user %s → %s",
            data.get("admin_id"), result.quest_id, result.user_id,
            "ok" if result.success else result.error,
        )
