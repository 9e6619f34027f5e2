"""
tests/test_notices.py — Quest Notice & Embed Tests
===================================================
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import discord
import pytest

from questline.bot.collaborators import DiscordNotifier, DiscordRoleGrantor
from questline.database.models import Quest, QuestChain
from questline.engine.notices import (
    DEFAULT_QUEST_EMOJI,
    NoticeKind,
    chain_notice,
    completion_notice,
    milestone_notice,
)
from questline.engine.rewards import CurrencyReward, ExperienceReward
from questline.services.embeds import build_notice_embed, build_quest_list_embed


# Helper to run async tests without pytest-asyncio
def _run(coro):
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def _quest(**overrides) -> Quest:
    fields = {"id": 1, "guild_id": 100, "name": "Chatterbox", "emoji": None}
    fields.update(overrides)
    return Quest(**fields)


class TestNotices:
    def test_first_completion(self):
        notice = completion_notice(_quest(), [CurrencyReward(amount=50)], 1)
        assert notice.kind == NoticeKind.COMPLETION
        assert notice.title.startswith(DEFAULT_QUEST_EMOJI)
        assert "#" not in notice.description
        assert notice.guild_id == 100
        assert len(notice.reward_lines) == 1

    def test_repeat_completion_numbered(self):
        notice = completion_notice(_quest(emoji="\U0001f4ac"), [], 3)
        assert notice.title.startswith("\U0001f4ac")
        assert "completion #3" in notice.description

    def test_milestone_default_message(self):
        notice = milestone_notice(_quest(), 50, [])
        assert "50%" in notice.description

    def test_chain(self):
        chain = QuestChain(id=1, guild_id=100, name="Onboarding")
        notice = chain_notice(chain, [ExperienceReward(amount=10)])
        assert notice.kind == NoticeKind.CHAIN
        assert "Onboarding" in notice.description


class TestEmbeds:
    def test_notice_embed(self):
        notice = completion_notice(_quest(), [CurrencyReward(amount=50)], 1)
        embed = build_notice_embed(notice, "Test Guild")
        assert embed.title == notice.title
        assert embed.fields[0].name == "Rewards"
        assert embed.footer.text == "Test Guild"

    def test_empty_board(self):
        embed = build_quest_list_embed([], "Alice")
        assert "No quests" in embed.description

    def test_board_rows(self):
        rows = [
            {"emoji": None, "name": "Chatterbox", "current_progress": 1,
             "target_progress": 3, "percent": 33, "completed": False},
            {"emoji": "\U0001f3a4", "name": "Voice", "current_progress": 30,
             "target_progress": 30, "percent": 100, "completed": True},
        ]
        embed = build_quest_list_embed(rows, "Alice")
        assert embed.fields[0].value == "1/3 · 33%"
        assert embed.fields[1].value.endswith("✅")


class TestDiscordCollaborators:
    def test_notifier_sends_embed(self):
        bot = MagicMock()
        user = MagicMock()
        user.send = AsyncMock()
        bot.get_user.return_value = user
        bot.get_guild.return_value = None

        notice = completion_notice(_quest(), [], 1)
        _run(DiscordNotifier(bot).notify(1000, notice))

        embed = user.send.await_args.kwargs["embed"]
        assert isinstance(embed, discord.Embed)

    def test_role_grantor_missing_guild(self):
        bot = MagicMock()
        bot.get_guild.return_value = None
        with pytest.raises(LookupError, match="Guild 100"):
            _run(DiscordRoleGrantor(bot).grant(100, 1000, 7))

    def test_role_grantor_adds_role(self):
        role = MagicMock()
        member = MagicMock()
        member.roles = []
        member.add_roles = AsyncMock()
        guild = MagicMock()
        guild.get_role.return_value = role
        guild.get_member.return_value = member
        bot = MagicMock()
        bot.get_guild.return_value = guild

        _run(DiscordRoleGrantor(bot).grant(100, 1000, 7))

        member.add_roles.assert_awaited_once_with(role, reason="Quest reward")
