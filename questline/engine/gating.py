"""
questline.engine.gating — Quest Eligibility Checks
===================================================

Decides whether an activity event may advance a quest for a member.
Each check is a pure function ``(quest, ctx) -> bool`` registered in
:data:`GATE_CHECKS`; :func:`evaluate_gates` runs them in order and returns
the name of the first one that rejects.

A rejection is not an error — the pipeline simply skips that quest.

This module is pure calculation — no database I/O, no Discord I/O.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from questline.database.models import ResetType
from questline.engine.schedule import ensure_utc

if TYPE_CHECKING:
    from questline.database.models import Quest, QuestProgress
    from questline.engine.events import ActivityEvent

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Gate context — what the checks may look at
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class GateContext:
    """Snapshot of a member's state for one quest.

    Parameters
    ----------
    now : Evaluation instant (UTC).
    progress : The member's record for this quest, or None.
    completed_quest_ids : Quest IDs the member currently has completed.
    chain_predecessor_id : Quest at ``chain_position - 1`` in the same
        chain (None when unchained, first in chain, or the slot is empty).
    event : The triggering activity, or None for non-event evaluation.
    """

    now: datetime
    progress: QuestProgress | None = None
    completed_quest_ids: frozenset[int] = field(default_factory=frozenset)
    chain_predecessor_id: int | None = None
    event: ActivityEvent | None = None


# ---------------------------------------------------------------------------
# Individual rules
# ---------------------------------------------------------------------------
def is_terminal(quest: Quest, progress: QuestProgress | None) -> bool:
    """Completed, never resets, and no completion cap — nothing left to do."""
    return (
        progress is not None
        and progress.completed
        and quest.reset_type == ResetType.NEVER
        and not quest.max_completions
    )


def cap_reached(quest: Quest, progress: QuestProgress | None) -> bool:
    if not quest.max_completions or progress is None:
        return False
    return progress.completion_count >= quest.max_completions


def cooldown_elapsed(quest: Quest, progress: QuestProgress | None, now: datetime) -> bool:
    if not quest.completion_cooldown_hours or progress is None:
        return True
    last = ensure_utc(progress.last_completed_at)
    if last is None:
        return True
    return ensure_utc(now) - last >= timedelta(hours=quest.completion_cooldown_hours)


def requirements_met(requirements: dict | None, event: ActivityEvent | None) -> bool:
    """Channel filter: when ``channel_ids`` is set the event must match one."""
    channel_ids = (requirements or {}).get("channel_ids") or []
    if not channel_ids:
        return True
    if event is None or event.channel_id is None:
        return False
    return event.channel_id in {int(c) for c in channel_ids}


def is_available(quest: Quest, now: datetime) -> bool:
    """Inside the optional ``start_date`` / ``end_date`` window."""
    now = ensure_utc(now)
    start = ensure_utc(quest.start_date)
    end = ensure_utc(quest.end_date)
    if start is not None and now < start:
        return False
    if end is not None and now > end:
        return False
    return True


def is_expired(quest: Quest, progress: QuestProgress | None, now: datetime) -> bool:
    """Past the absolute deadline, or past the per-member time limit."""
    now = ensure_utc(now)
    deadline = ensure_utc(quest.deadline_at)
    if deadline is not None and now > deadline:
        return True
    if quest.time_limit_hours and progress is not None:
        started = ensure_utc(progress.started_at)
        if started is not None and now - started >= timedelta(hours=quest.time_limit_hours):
            return True
    return False


def can_rearm(quest: Quest, progress: QuestProgress | None, now: datetime) -> bool:
    """A completed record of a capped ``never`` quest may start another round.

    Periodic quests are re-opened by the reset sweep instead.
    """
    if progress is None or not progress.completed:
        return False
    if quest.reset_type != ResetType.NEVER or not quest.max_completions:
        return False
    return not cap_reached(quest, progress) and cooldown_elapsed(quest, progress, now)


# ---------------------------------------------------------------------------
# Registered checks, evaluated in order
# ---------------------------------------------------------------------------
def _check_not_terminal(quest: Quest, ctx: GateContext) -> bool:
    return not is_terminal(quest, ctx.progress)


def _check_prerequisites(quest: Quest, ctx: GateContext) -> bool:
    required = {int(q) for q in (quest.prerequisite_quest_ids or [])}
    if ctx.chain_predecessor_id is not None:
        required.add(ctx.chain_predecessor_id)
    return required <= ctx.completed_quest_ids


def _check_cooldown(quest: Quest, ctx: GateContext) -> bool:
    return cooldown_elapsed(quest, ctx.progress, ctx.now)


def _check_requirements(quest: Quest, ctx: GateContext) -> bool:
    return requirements_met(quest.requirements, ctx.event)


def _check_availability(quest: Quest, ctx: GateContext) -> bool:
    return is_available(quest, ctx.now)


def _check_deadline(quest: Quest, ctx: GateContext) -> bool:
    return not is_expired(quest, ctx.progress, ctx.now)


GATE_CHECKS: list[tuple[str, Callable[[Quest, GateContext], bool]]] = [
    ("terminal", _check_not_terminal),
    ("prerequisites", _check_prerequisites),
    ("cooldown", _check_cooldown),
    ("requirements", _check_requirements),
    ("availability", _check_availability),
    ("deadline", _check_deadline),
]


def evaluate_gates(quest: Quest, ctx: GateContext) -> str | None:
    """Return the name of the first failing check, or None if all pass."""
    for name, check in GATE_CHECKS:
        if not check(quest, ctx):
            logger.debug(
                "Quest %s gated for user %s by %s",
                quest.id, ctx.progress.user_id if ctx.progress else "?", name,
            )
            return name
    return None
