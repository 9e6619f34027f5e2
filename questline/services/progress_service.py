"""
questline.services.progress_service — Progress Update Pipeline
===============================================================

Inbound entry point for member activity.  The bot builds an activity
dict from a Discord event and fires :func:`record_activity` as a task.

Pipeline, per enabled + visible quest of the event's type:

  1. Gate checks (terminal, prerequisites + chain order, cooldown,
     channel filter, availability window, deadline)
  2. Create the progress record if absent (SAVEPOINT + IntegrityError)
  3. Re-arm a finished capped ``never`` quest whose cooldown elapsed
  4. Version-checked increment, clamped to the record's target
  5. Milestone rewards, each at most once per record and threshold
  6. Hand off to the dispatcher when the target is reached

A failure on one quest is logged and the next quest still runs.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import case, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from questline.database.engine import run_db
from questline.database.models import (
    CompletionSource,
    Quest,
    QuestMilestoneLog,
    QuestProgress,
)
from questline.engine.events import ActivityEvent
from questline.engine.gating import GateContext, can_rearm, evaluate_gates
from questline.engine.notices import milestone_notice
from questline.engine.rewards import parse_rewards
from questline.engine.schedule import ensure_utc, next_reset_for, utcnow
from questline.services.completion_service import (
    CompletionResult,
    complete_quest,
    grant_rewards,
    send_notice,
)

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from questline.engine.cache import TrackingGate
    from questline.services.collaborators import RewardCollaborators

logger = logging.getLogger(__name__)

# Attempts at the version-checked UPDATE before giving up on one event
MAX_VERSION_RETRIES = 5


@dataclass(frozen=True, slots=True)
class MilestoneHit:
    percent: int
    rewards: dict
    message: str | None = None


@dataclass(slots=True)
class ProgressStep:
    """What one increment did to one record."""

    progress: QuestProgress
    old_progress: int
    new_progress: int
    milestones: list[MilestoneHit] = field(default_factory=list)

    @property
    def reached_target(self) -> bool:
        return self.new_progress >= self.progress.target_progress


# ---------------------------------------------------------------------------
# Record helpers (sync, session-scoped)
# ---------------------------------------------------------------------------
def get_progress(session: Session, quest_id: int, user_id: int) -> QuestProgress | None:
    return session.scalar(
        select(QuestProgress).where(
            QuestProgress.quest_id == quest_id,
            QuestProgress.user_id == user_id,
        )
    )


def ensure_progress(
    session: Session,
    quest: Quest,
    user_id: int,
    now: datetime,
    tz: str = "UTC",
) -> QuestProgress:
    """Fetch or atomically create the (quest, user) record.

    Two tasks racing on a member's first event both try the INSERT; the
    unique constraint lets one win and the other re-reads the winner's row.
    """
    progress = get_progress(session, quest.id, user_id)
    if progress is not None:
        return progress

    row = QuestProgress(
        quest_id=quest.id,
        guild_id=quest.guild_id,
        user_id=user_id,
        current_progress=0,
        target_progress=quest.target,
        completed=False,
        completion_count=0,
        reset_at=next_reset_for(quest, now, tz),
        started_at=now,
        version=0,
    )
    try:
        with session.begin_nested():   # SAVEPOINT
            session.add(row)
            session.flush()
    except IntegrityError:
        progress = get_progress(session, quest.id, user_id)
        if progress is None:
            raise
        return progress
    return row


def completed_quest_ids(session: Session, guild_id: int, user_id: int) -> frozenset[int]:
    rows = session.scalars(
        select(QuestProgress.quest_id).where(
            QuestProgress.guild_id == guild_id,
            QuestProgress.user_id == user_id,
            QuestProgress.completed.is_(True),
        )
    ).all()
    return frozenset(rows)


def chain_predecessor_id(session: Session, quest: Quest) -> int | None:
    """Quest at ``chain_position - 1`` of the same chain, if any."""
    if quest.chain_id is None or not quest.chain_position or quest.chain_position <= 1:
        return None
    return session.scalar(
        select(Quest.id).where(
            Quest.chain_id == quest.chain_id,
            Quest.chain_position == quest.chain_position - 1,
        )
    )


def _rearm(session: Session, progress: QuestProgress, now: datetime) -> bool:
    result = session.execute(
        update(QuestProgress)
        .where(
            QuestProgress.id == progress.id,
            QuestProgress.version == progress.version,
            QuestProgress.completed.is_(True),
        )
        .values(
            completed=False,
            current_progress=0,
            completed_at=None,
            started_at=now,
            version=QuestProgress.version + 1,
        )
        .execution_options(synchronize_session=False)
    )
    session.refresh(progress)
    return result.rowcount == 1


def _crossed_milestones(quest: Quest, target: int, old: int, new: int) -> list[MilestoneHit]:
    hits: list[MilestoneHit] = []
    for raw in quest.milestones or []:
        try:
            percent = int(raw.get("progress"))
        except (AttributeError, TypeError, ValueError):
            logger.warning("Quest %s has a malformed milestone: %r", quest.id, raw)
            continue
        # rounds down; a threshold that rounds to zero fires on the first unit
        threshold = max(target * percent // 100, 1)
        if old < threshold <= new:
            hits.append(MilestoneHit(
                percent=percent,
                rewards=dict(raw.get("rewards") or {}),
                message=raw.get("message"),
            ))
    return hits


def _claim_milestones(
    session: Session, progress: QuestProgress, hits: list[MilestoneHit], now: datetime,
) -> list[MilestoneHit]:
    """Log each crossed milestone; keep only the ones not logged before."""
    claimed: list[MilestoneHit] = []
    for hit in hits:
        try:
            with session.begin_nested():   # SAVEPOINT
                session.add(QuestMilestoneLog(
                    progress_id=progress.id,
                    milestone_progress=hit.percent,
                    rewards_given=hit.rewards,
                    reached_at=now,
                ))
                session.flush()
        except IntegrityError:
            continue  # already rewarded for this record
        claimed.append(hit)
    return claimed


# ---------------------------------------------------------------------------
# One quest, one event (sync)
# ---------------------------------------------------------------------------
def load_candidate_quests(engine: Engine, guild_id: int, quest_type: str) -> list[Quest]:
    """Enabled + visible quests of *quest_type* in *guild_id*, detached."""
    with Session(engine, expire_on_commit=False) as session:
        quests = list(session.scalars(
            select(Quest)
            .where(
                Quest.guild_id == guild_id,
                Quest.quest_type == quest_type,
                Quest.enabled.is_(True),
                Quest.visible.is_(True),
            )
            .order_by(Quest.id)
        ).all())
        session.expunge_all()
    return quests


def apply_increment(
    engine: Engine,
    quest: Quest,
    event: ActivityEvent,
    *,
    now: datetime | None = None,
    tz: str = "UTC",
) -> ProgressStep | None:
    """Run gates, ensure the record and apply the increment.

    Returns None when the quest does not advance for this event.
    """
    now = ensure_utc(now) or utcnow()
    with Session(engine, expire_on_commit=False) as session:
        progress = get_progress(session, quest.id, event.user_id)
        ctx = GateContext(
            now=now,
            progress=progress,
            completed_quest_ids=completed_quest_ids(session, event.guild_id, event.user_id),
            chain_predecessor_id=chain_predecessor_id(session, quest),
            event=event,
        )
        if evaluate_gates(quest, ctx) is not None:
            return None

        progress = ensure_progress(session, quest, event.user_id, now, tz)

        for _ in range(MAX_VERSION_RETRIES):
            if progress.completed:
                if not can_rearm(quest, progress, now):
                    session.commit()
                    return None
                if not _rearm(session, progress, now):
                    continue

            old = progress.current_progress
            target = progress.target_progress
            new = min(old + event.increment, target)
            if new == old and new < target:
                session.commit()
                return None

            result = session.execute(
                update(QuestProgress)
                .where(
                    QuestProgress.id == progress.id,
                    QuestProgress.version == progress.version,
                    QuestProgress.completed.is_(False),
                )
                .values(
                    current_progress=case(
                        (QuestProgress.current_progress + event.increment > QuestProgress.target_progress,
                         QuestProgress.target_progress),
                        else_=QuestProgress.current_progress + event.increment,
                    ),
                    started_at=func.coalesce(QuestProgress.started_at, now),
                    version=QuestProgress.version + 1,
                )
                .execution_options(synchronize_session=False)
            )
            session.refresh(progress)
            if result.rowcount == 1:
                break
            logger.debug(
                "Version conflict on progress %s (quest %s user %s), retrying",
                progress.id, quest.id, event.user_id,
            )
        else:
            session.rollback()
            logger.warning(
                "Gave up on quest %s for user %s after %d version conflicts",
                quest.id, event.user_id, MAX_VERSION_RETRIES,
            )
            return None

        new = progress.current_progress
        milestones = _claim_milestones(
            session, progress, _crossed_milestones(quest, target, old, new), now,
        )
        session.commit()
        session.expunge(progress)

    return ProgressStep(progress=progress, old_progress=old, new_progress=new, milestones=milestones)


def prepare_manual_completion(
    engine: Engine,
    quest: Quest,
    user_id: int,
    *,
    now: datetime | None = None,
    tz: str = "UTC",
) -> QuestProgress:
    """Ensure a record exists and is open, bypassing every gate."""
    now = ensure_utc(now) or utcnow()
    with Session(engine, expire_on_commit=False) as session:
        progress = ensure_progress(session, quest, user_id, now, tz)
        for _ in range(MAX_VERSION_RETRIES):
            if not progress.completed or _rearm(session, progress, now):
                break
        session.commit()
        session.refresh(progress)
        session.expunge(progress)
    return progress


# ---------------------------------------------------------------------------
# Async pipeline
# ---------------------------------------------------------------------------
async def _advance_quest(
    engine: Engine,
    collaborators: RewardCollaborators,
    quest: Quest,
    event: ActivityEvent,
    tz: str,
) -> CompletionResult | None:
    step = await run_db(apply_increment, engine, quest, event, now=event.timestamp, tz=tz)
    if step is None:
        return None

    logger.debug(
        "Quest %s user %s: %d → %d / %d",
        quest.id, event.user_id, step.old_progress, step.new_progress,
        step.progress.target_progress,
    )

    for hit in step.milestones:
        rewards = parse_rewards(hit.rewards)
        await grant_rewards(
            collaborators, quest.guild_id, event.user_id, rewards,
            reason=f"Quest milestone {hit.percent}%: {quest.name}",
        )
        await send_notice(
            collaborators, event.user_id,
            milestone_notice(quest, hit.percent, rewards, hit.message),
        )

    if not step.reached_target:
        return None
    return await complete_quest(
        engine,
        collaborators,
        quest,
        event.user_id,
        step.new_progress,
        step.progress,
        source=CompletionSource.ACTIVITY,
        now=event.timestamp,
    )


async def update_progress(
    engine: Engine,
    gate: TrackingGate,
    collaborators: RewardCollaborators,
    event: ActivityEvent,
    *,
    tz: str = "UTC",
) -> list[CompletionResult]:
    """Apply *event* to every matching quest.  Returns the completions."""
    quests = await run_db(load_candidate_quests, engine, event.guild_id, event.quest_type)
    if not quests:
        # Catalog says nothing tracks this type any more; stop asking.
        gate.put(event.guild_id, event.quest_type, False)
        return []

    results: list[CompletionResult] = []
    for quest in quests:
        try:
            result = await _advance_quest(engine, collaborators, quest, event, tz)
        except Exception:
            logger.exception(
                "Progress update failed for quest %s user %s", quest.id, event.user_id,
            )
            continue
        if result is not None:
            results.append(result)
    return results


async def record_activity(
    engine: Engine,
    gate: TrackingGate,
    collaborators: RewardCollaborators,
    guild_id: int,
    user_id: int,
    quest_type: str,
    data: dict | None = None,
    *,
    tz: str = "UTC",
) -> list[CompletionResult]:
    """Inbound entry point.  Never raises; failures are logged."""
    try:
        if not await run_db(gate.is_tracking, guild_id, quest_type):
            return []
        event = ActivityEvent(
            guild_id=guild_id, user_id=user_id, quest_type=quest_type, data=data or {},
        )
        return await update_progress(engine, gate, collaborators, event, tz=tz)
    except Exception:
        logger.exception(
            "Activity tracking failed for guild %s user %s type %s",
            guild_id, user_id, quest_type,
        )
        return []
