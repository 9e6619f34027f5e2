"""
tests/test_gating.py — Quest Eligibility Rule Tests
====================================================

Pure functions over transient model instances; no database needed.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from questline.database.models import Quest, QuestProgress
from questline.engine.events import ActivityEvent
from questline.engine.gating import (
    GATE_CHECKS,
    GateContext,
    can_rearm,
    cap_reached,
    cooldown_elapsed,
    evaluate_gates,
    is_available,
    is_expired,
    is_terminal,
    requirements_met,
)

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=UTC)


def _make_quest(**overrides) -> Quest:
    fields = {
        "id": 1,
        "guild_id": 100,
        "name": "Chatterbox",
        "quest_type": "message_sent",
        "requirements": {"target": 3},
        "reset_type": "never",
        "max_completions": None,
        "completion_cooldown_hours": None,
        "prerequisite_quest_ids": [],
        "chain_id": None,
        "chain_position": None,
        "start_date": None,
        "end_date": None,
        "deadline_at": None,
        "time_limit_hours": None,
    }
    fields.update(overrides)
    return Quest(**fields)


def _make_progress(**overrides) -> QuestProgress:
    fields = {
        "id": 10,
        "quest_id": 1,
        "guild_id": 100,
        "user_id": 1000,
        "current_progress": 0,
        "target_progress": 3,
        "completed": False,
        "completion_count": 0,
        "last_completed_at": None,
        "started_at": None,
        "version": 0,
    }
    fields.update(overrides)
    return QuestProgress(**fields)


def _event(channel_id: int | None = 500) -> ActivityEvent:
    data = {"channel_id": channel_id} if channel_id is not None else {}
    return ActivityEvent(guild_id=100, user_id=1000, quest_type="message_sent", data=data)


class TestTerminal:
    def test_completed_one_shot_is_terminal(self):
        assert is_terminal(_make_quest(), _make_progress(completed=True))

    def test_not_completed_is_not_terminal(self):
        assert not is_terminal(_make_quest(), _make_progress())

    def test_periodic_is_never_terminal(self):
        assert not is_terminal(_make_quest(reset_type="daily"), _make_progress(completed=True))

    def test_capped_never_quest_is_not_terminal(self):
        """A completion cap means the quest may be repeated up to the cap."""
        quest = _make_quest(max_completions=3)
        assert not is_terminal(quest, _make_progress(completed=True, completion_count=1))

    def test_no_record_is_not_terminal(self):
        assert not is_terminal(_make_quest(), None)


class TestCapAndCooldown:
    def test_cap_reached(self):
        quest = _make_quest(max_completions=2)
        assert cap_reached(quest, _make_progress(completion_count=2))
        assert not cap_reached(quest, _make_progress(completion_count=1))

    def test_no_cap(self):
        assert not cap_reached(_make_quest(), _make_progress(completion_count=99))

    def test_cooldown_pending(self):
        quest = _make_quest(completion_cooldown_hours=2)
        progress = _make_progress(last_completed_at=NOW - timedelta(hours=1))
        assert not cooldown_elapsed(quest, progress, NOW)

    def test_cooldown_elapsed(self):
        quest = _make_quest(completion_cooldown_hours=2)
        progress = _make_progress(last_completed_at=NOW - timedelta(hours=2))
        assert cooldown_elapsed(quest, progress, NOW)

    def test_cooldown_with_naive_stored_timestamp(self):
        quest = _make_quest(completion_cooldown_hours=2)
        naive = (NOW - timedelta(minutes=30)).replace(tzinfo=None)
        assert not cooldown_elapsed(quest, _make_progress(last_completed_at=naive), NOW)


class TestRequirements:
    def test_no_channel_filter(self):
        assert requirements_met({"target": 3}, _event(None))

    def test_matching_channel(self):
        assert requirements_met({"target": 3, "channel_ids": [500, 501]}, _event(500))

    def test_string_channel_ids(self):
        assert requirements_met({"target": 3, "channel_ids": ["500"]}, _event(500))

    def test_other_channel(self):
        assert not requirements_met({"target": 3, "channel_ids": [501]}, _event(500))

    def test_filter_without_channel(self):
        assert not requirements_met({"target": 3, "channel_ids": [501]}, _event(None))


class TestWindowAndExpiry:
    def test_before_start(self):
        assert not is_available(_make_quest(start_date=NOW + timedelta(days=1)), NOW)

    def test_after_end(self):
        assert not is_available(_make_quest(end_date=NOW - timedelta(seconds=1)), NOW)

    def test_inside_window(self):
        quest = _make_quest(start_date=NOW - timedelta(days=1), end_date=NOW + timedelta(days=1))
        assert is_available(quest, NOW)

    def test_deadline_passed(self):
        assert is_expired(_make_quest(deadline_at=NOW - timedelta(minutes=1)), None, NOW)

    def test_time_limit_ran_out(self):
        quest = _make_quest(time_limit_hours=24)
        progress = _make_progress(started_at=NOW - timedelta(hours=25))
        assert is_expired(quest, progress, NOW)

    def test_time_limit_running(self):
        quest = _make_quest(time_limit_hours=24)
        progress = _make_progress(started_at=NOW - timedelta(hours=1))
        assert not is_expired(quest, progress, NOW)


class TestRearm:
    def test_capped_never_quest_rearms_below_cap(self):
        quest = _make_quest(max_completions=3)
        assert can_rearm(quest, _make_progress(completed=True, completion_count=1), NOW)

    def test_not_at_cap(self):
        quest = _make_quest(max_completions=1)
        assert not can_rearm(quest, _make_progress(completed=True, completion_count=1), NOW)

    def test_cooldown_blocks_rearm(self):
        quest = _make_quest(max_completions=3, completion_cooldown_hours=4)
        progress = _make_progress(
            completed=True, completion_count=1, last_completed_at=NOW - timedelta(hours=1),
        )
        assert not can_rearm(quest, progress, NOW)

    def test_periodic_waits_for_reset_sweep(self):
        quest = _make_quest(reset_type="daily", max_completions=3)
        assert not can_rearm(quest, _make_progress(completed=True, completion_count=1), NOW)


class TestEvaluateGates:
    def test_all_pass(self):
        ctx = GateContext(now=NOW, event=_event())
        assert evaluate_gates(_make_quest(), ctx) is None

    def test_missing_prerequisite(self):
        ctx = GateContext(now=NOW, event=_event(), completed_quest_ids=frozenset({7}))
        assert evaluate_gates(_make_quest(prerequisite_quest_ids=[7, 8]), ctx) == "prerequisites"

    def test_prerequisites_met(self):
        ctx = GateContext(now=NOW, event=_event(), completed_quest_ids=frozenset({7, 8}))
        assert evaluate_gates(_make_quest(prerequisite_quest_ids=[7, 8]), ctx) is None

    def test_chain_predecessor_required(self):
        quest = _make_quest(chain_id=1, chain_position=2)
        ctx = GateContext(now=NOW, event=_event(), chain_predecessor_id=5)
        assert evaluate_gates(quest, ctx) == "prerequisites"

    def test_terminal_checked_first(self):
        quest = _make_quest(prerequisite_quest_ids=[7])
        ctx = GateContext(now=NOW, event=_event(), progress=_make_progress(completed=True))
        assert evaluate_gates(quest, ctx) == "terminal"

    @pytest.mark.parametrize(
        "overrides, expected",
        [
            ({"requirements": {"target": 3, "channel_ids": [999]}}, "requirements"),
            ({"start_date": NOW + timedelta(hours=1)}, "availability"),
            ({"deadline_at": NOW - timedelta(hours=1)}, "deadline"),
        ],
    )
    def test_named_rejections(self, overrides, expected):
        ctx = GateContext(now=NOW, event=_event())
        assert evaluate_gates(_make_quest(**overrides), ctx) == expected

    def test_registry_order(self):
        assert [name for name, _ in GATE_CHECKS] == [
            "terminal", "prerequisites", "cooldown", "requirements", "availability", "deadline",
        ]
