"""
questline.bot.cogs.admin — Quest Slash Commands
================================================

- /quests — show a member's quest board (ephemeral)
- /quest-complete — admin: complete a quest for a member, bypassing gates

/quest-complete requires the configured admin_role_id.  The member gets
the usual completion DM; the admin sees an ephemeral confirmation.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import discord
from discord import app_commands
from discord.ext import commands

from questline.database.engine import run_db
from questline.errors import QuestNotFoundError
from questline.services.embeds import build_quest_list_embed
from questline.services.query_service import get_user_quests, manual_complete

if TYPE_CHECKING:
    from questline.bot.core import QuestlineBot

logger = logging.getLogger(__name__)


def is_admin():
    """Decorator that checks if the user has the configured admin role."""
    async def predicate(interaction: discord.Interaction) -> bool:
        bot: QuestlineBot = interaction.client  # type: ignore[assignment]
        if not interaction.user or not hasattr(interaction.user, "roles"):
            return False
        admin_role_id = bot.cfg.admin_role_id
        return any(role.id == admin_role_id for role in interaction.user.roles)
    return app_commands.check(predicate)


class Admin(commands.Cog, name="Admin"):
    """Quest board and admin completion commands."""

    def __init__(self, bot: QuestlineBot) -> None:
        self.bot = bot

    # -------------------------------------------------------------------
    # /quests
    # -------------------------------------------------------------------
    @app_commands.command(name="quests", description="Show your quest progress.")
    @app_commands.describe(category="Only show quests in this category")
    async def quests(self, interaction: discord.Interaction, category: str | None = None) -> None:
        if interaction.guild_id is None:
            await interaction.response.send_message("Quests live in servers.", ephemeral=True)
            return
        await interaction.response.defer(ephemeral=True)
        rows = await run_db(
            get_user_quests, self.bot.engine, interaction.guild_id, interaction.user.id, category,
        )
        embed = build_quest_list_embed(
            [uq.to_dict() for uq in rows], interaction.user.display_name,
        )
        await interaction.followup.send(embed=embed, ephemeral=True)

    # -------------------------------------------------------------------
    # /quest-complete
    # -------------------------------------------------------------------
    @app_commands.command(name="quest-complete", description="Complete a quest for a member.")
    @app_commands.describe(member="The member to credit", quest_id="ID of the quest to complete")
    @is_admin()
    async def quest_complete(
        self,
        interaction: discord.Interaction,
        member: discord.Member,
        quest_id: int,
    ) -> None:
        guild_id = interaction.guild_id or 0
        await interaction.response.defer(ephemeral=True)
        try:
            result = await manual_complete(
                self.bot.engine,
                self.bot.collaborators,
                guild_id,
                quest_id,
                member.id,
                tz=self.bot.cfg.timezone,
            )
        except QuestNotFoundError:
            await interaction.followup.send(f"❌ Quest {quest_id} not found.", ephemeral=True)
            return
        except Exception:
            logger.exception("Manual completion of quest %s for %s failed", quest_id, member.id)
            await interaction.followup.send(
                f"❌ Quest {quest_id} could not be completed; see the bot log.", ephemeral=True,
            )
            return

        if not result.success:
            await interaction.followup.send(
                f"⚠️ Quest {quest_id} was not completed: {result.error}", ephemeral=True,
            )
            return

        failed = [kind for kind, outcome in result.outcomes.items() if outcome != "granted"]
        summary = f"✅ Completed quest {quest_id} for **{member.display_name}** (#{result.completion_number})."
        if failed:
            summary += f"\nRewards not granted: {', '.join(failed)}"
        if result.error:
            summary += f"\n⚠️ {result.error}"
        await interaction.followup.send(summary, ephemeral=True)
        logger.info(
            "Admin %s completed quest %s for %s", interaction.user.id, quest_id, member.id,
        )


async def setup(bot: QuestlineBot) -> None:
    await bot.add_cog(Admin(bot))
