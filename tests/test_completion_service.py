"""
tests/test_completion_service.py — Completion Dispatcher Tests
===============================================================

Exactly-once completion under repeated / concurrent dispatch, and the
chain bonus claim.
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime
from unittest.mock import patch

from sqlalchemy import select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from questline.database.models import (
    QuestChain,
    QuestChainProgress,
    QuestCompletion,
    QuestProgress,
)
from questline.engine.notices import NoticeKind
from questline.engine.rewards import CurrencyReward, ItemReward, RoleReward
from questline.services.completion_service import (
    check_chain_completion,
    complete_quest,
    grant_rewards,
    mark_complete,
)

GUILD = 100
USER = 1000
NOW = datetime(2026, 10, 19, 12, 0, tzinfo=UTC)


# Helper to run async tests without pytest-asyncio
def _run(coro):
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def _seed_progress(engine, quest, *, current: int = 3, completed: bool = False) -> QuestProgress:
    with Session(engine, expire_on_commit=False) as session:
        progress = QuestProgress(
            quest_id=quest.id,
            guild_id=quest.guild_id,
            user_id=USER,
            current_progress=current,
            target_progress=quest.target,
            completed=completed,
            completion_count=1 if completed else 0,
            version=0,
        )
        session.add(progress)
        session.commit()
        session.expunge(progress)
    return progress


def _make_chain(engine, rewards: dict | None = None) -> QuestChain:
    with Session(engine, expire_on_commit=False) as session:
        chain = QuestChain(guild_id=GUILD, name="Onboarding", chain_rewards=rewards or {"coins": 100})
        session.add(chain)
        session.commit()
        session.expunge(chain)
    return chain


class TestMarkComplete:
    def test_first_caller_wins(self, db_engine, make_quest):
        quest = make_quest()
        progress = _seed_progress(db_engine, quest)

        assert mark_complete(db_engine, progress.id, progress.version, 3, NOW) == 1
        assert mark_complete(db_engine, progress.id, progress.version, 3, NOW) is None

        with Session(db_engine) as session:
            row = session.get(QuestProgress, progress.id)
            assert row.completed
            assert row.completion_count == 1
            assert row.version == 1

    def test_stale_version_rejected(self, db_engine, make_quest):
        quest = make_quest()
        progress = _seed_progress(db_engine, quest)
        assert mark_complete(db_engine, progress.id, progress.version + 1, 3, NOW) is None


class TestCompleteQuest:
    def test_duplicate_dispatch_pays_once(self, db_engine, collaborators, make_quest):
        """Two dispatches from the same record snapshot: only one may win."""
        quest = make_quest()
        progress = _seed_progress(db_engine, quest)

        results = [
            _run(complete_quest(db_engine, collaborators, quest, USER, 3, progress, now=NOW)),
            _run(complete_quest(db_engine, collaborators, quest, USER, 3, progress, now=NOW)),
        ]

        assert sorted(r.success for r in results) == [False, True]
        loser = next(r for r in results if not r.success)
        assert loser.error == "already completed"
        collaborators.currency.credit.assert_awaited_once()
        collaborators.experience.credit.assert_awaited_once()

        with Session(db_engine) as session:
            journal = session.scalars(select(QuestCompletion)).all()
            assert len(journal) == 1
            assert journal[0].source == "activity"

    def test_completion_notice(self, db_engine, collaborators, make_quest):
        quest = make_quest(emoji="\U0001f4ac")
        progress = _seed_progress(db_engine, quest)
        _run(complete_quest(db_engine, collaborators, quest, USER, 3, progress, now=NOW))

        user_id, notice = collaborators.notifier.notify.await_args.args
        assert user_id == USER
        assert notice.kind == NoticeKind.COMPLETION
        assert notice.title.startswith("\U0001f4ac")
        assert "Chatterbox" in notice.description
        assert len(notice.reward_lines) == 2

    def test_no_notifier_configured(self, db_engine, collaborators, make_quest):
        quest = make_quest()
        progress = _seed_progress(db_engine, quest)
        collaborators.notifier = None
        result = _run(complete_quest(db_engine, collaborators, quest, USER, 3, progress, now=NOW))
        assert result.success

    def test_journal_failure_still_notifies(self, db_engine, collaborators, make_quest):
        """A store error on the journal row must not undo or hide the completion."""
        quest = make_quest()
        progress = _seed_progress(db_engine, quest)

        with patch(
            "questline.services.completion_service.log_completion",
            side_effect=OperationalError("INSERT", {}, Exception("db down")),
        ):
            result = _run(complete_quest(db_engine, collaborators, quest, USER, 3, progress, now=NOW))

        assert result.success
        assert result.completion_number == 1
        assert result.error == "completion not journaled"
        collaborators.currency.credit.assert_awaited_once()
        collaborators.notifier.notify.assert_awaited_once()

        with Session(db_engine) as session:
            assert session.get(QuestProgress, progress.id).completed
            assert session.scalars(select(QuestCompletion)).all() == []

    def test_journal_failure_still_checks_chain(self, db_engine, collaborators, make_quest):
        chain = _make_chain(db_engine)
        first = make_quest(name="Step 1", chain_id=chain.id, chain_position=1)
        second = make_quest(name="Step 2", chain_id=chain.id, chain_position=2)
        _seed_progress(db_engine, first, completed=True)
        progress = _seed_progress(db_engine, second)

        with patch(
            "questline.services.completion_service.log_completion",
            side_effect=OperationalError("INSERT", {}, Exception("db down")),
        ):
            _run(complete_quest(db_engine, collaborators, second, USER, 3, progress, now=NOW))

        reasons = [call.args[3] for call in collaborators.currency.credit.await_args_list]
        assert reasons == ["Quest completed: Step 2", "Quest chain completed: Onboarding"]


class TestGrantRewards:
    def test_role_and_item(self, collaborators):
        outcomes = _run(grant_rewards(
            collaborators, GUILD, USER,
            [RoleReward(role_id=7), ItemReward(item_id="potion", quantity=2)],
            reason="test",
        ))
        assert outcomes == {"role": "granted", "item": "granted"}
        collaborators.roles.grant.assert_awaited_once_with(GUILD, USER, 7)
        collaborators.items.grant.assert_awaited_once_with(GUILD, USER, "potion", 2)

    def test_independent_failures(self, collaborators):
        collaborators.roles.grant.side_effect = LookupError("role gone")
        outcomes = _run(grant_rewards(
            collaborators, GUILD, USER,
            [RoleReward(role_id=7), CurrencyReward(amount=5)],
            reason="test",
        ))
        assert outcomes == {"role": "failed", "currency": "granted"}


class TestChainCompletion:
    def _chain_with_two_quests(self, db_engine, make_quest):
        chain = _make_chain(db_engine)
        first = make_quest(name="Step 1", chain_id=chain.id, chain_position=1)
        second = make_quest(name="Step 2", chain_id=chain.id, chain_position=2)
        return chain, first, second

    def test_bonus_paid_once(self, db_engine, collaborators, make_quest):
        chain, first, second = self._chain_with_two_quests(db_engine, make_quest)
        _seed_progress(db_engine, first, completed=True)
        _seed_progress(db_engine, second, completed=True)

        assert _run(check_chain_completion(db_engine, collaborators, chain.id, USER)) == {
            "currency": "granted",
        }
        assert _run(check_chain_completion(db_engine, collaborators, chain.id, USER)) is None

        collaborators.currency.credit.assert_awaited_once_with(
            GUILD, USER, 100, "Quest chain completed: Onboarding",
        )
        notice = collaborators.notifier.notify.await_args.args[1]
        assert notice.kind == NoticeKind.CHAIN

        with Session(db_engine) as session:
            record = session.scalar(select(QuestChainProgress))
            assert record.chain_rewards_given
            assert record.completed_quest_ids == sorted([first.id, second.id])

    def test_unfinished_chain_pays_nothing(self, db_engine, collaborators, make_quest):
        chain, first, _second = self._chain_with_two_quests(db_engine, make_quest)
        _seed_progress(db_engine, first, completed=True)
        assert _run(check_chain_completion(db_engine, collaborators, chain.id, USER)) is None
        collaborators.currency.credit.assert_not_awaited()

    def test_last_quest_completion_triggers_bonus(self, db_engine, collaborators, make_quest):
        chain, first, second = self._chain_with_two_quests(db_engine, make_quest)
        _seed_progress(db_engine, first, completed=True)
        progress = _seed_progress(db_engine, second)

        _run(complete_quest(db_engine, collaborators, second, USER, 3, progress, now=NOW))

        reasons = [call.args[3] for call in collaborators.currency.credit.await_args_list]
        assert reasons == ["Quest completed: Step 2", "Quest chain completed: Onboarding"]
