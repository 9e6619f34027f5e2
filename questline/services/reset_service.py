"""
questline.services.reset_service — Periodic Reset & Expiry Sweeps
==================================================================

Two timer-driven sweeps, scheduled by ``questline.bot.cogs.tasks``:

* :func:`process_quest_resets` — reopens daily / weekly / monthly quest
  records whose ``reset_at`` has passed, unless the member already hit the
  quest's completion cap.
* :func:`process_expired_quests` — zeroes in-flight records of quests
  whose deadline passed or whose per-member time limit ran out.

Every write is the same version-checked UPDATE the pipeline uses, so a
record that changed under the sweep is left for the next run.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import or_, select, update
from sqlalchemy.orm import Session

from questline.database.models import PERIODIC_RESET_TYPES, Quest, QuestProgress
from questline.engine.gating import is_expired
from questline.engine.schedule import ensure_utc, next_reset_for, utcnow

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from questline.engine.cache import TrackingGate

logger = logging.getLogger(__name__)


def _versioned_update(session: Session, progress: QuestProgress, **values) -> bool:
    result = session.execute(
        update(QuestProgress)
        .where(
            QuestProgress.id == progress.id,
            QuestProgress.version == progress.version,
        )
        .values(version=QuestProgress.version + 1, **values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def process_quest_resets(
    engine: Engine,
    gate: TrackingGate | None = None,
    *,
    now: datetime | None = None,
    tz: str = "UTC",
) -> dict[str, int]:
    """Reset every due record of every enabled periodic quest.

    Returns counters: ``quests`` examined, records ``reset``, records left
    alone because the cap was reached (``capped``), records that changed
    under the sweep (``conflicts``) and records that were given their
    first ``reset_at`` (``scheduled``).
    """
    now = ensure_utc(now) or utcnow()
    counters = {"quests": 0, "reset": 0, "capped": 0, "conflicts": 0, "scheduled": 0}

    with Session(engine, expire_on_commit=False) as session:
        quests = session.scalars(
            select(Quest).where(
                Quest.enabled.is_(True),
                Quest.reset_type.in_([str(t) for t in PERIODIC_RESET_TYPES]),
            ).order_by(Quest.id)
        ).all()

        for quest in quests:
            counters["quests"] += 1
            try:
                next_reset = next_reset_for(quest, now, tz)
            except ValueError:
                logger.exception("Quest %s has an invalid reset schedule — skipping", quest.id)
                continue

            due = session.scalars(
                select(QuestProgress).where(
                    QuestProgress.quest_id == quest.id,
                    or_(QuestProgress.reset_at.is_(None), QuestProgress.reset_at <= now),
                )
            ).all()

            for progress in due:
                if progress.reset_at is None:
                    if _versioned_update(session, progress, reset_at=next_reset):
                        counters["scheduled"] += 1
                    else:
                        counters["conflicts"] += 1
                    continue

                if quest.max_completions and progress.completion_count >= quest.max_completions:
                    counters["capped"] += 1
                    continue

                if _versioned_update(
                    session,
                    progress,
                    completed=False,
                    current_progress=0,
                    completed_at=None,
                    started_at=None,
                    reset_at=next_reset,
                ):
                    counters["reset"] += 1
                else:
                    counters["conflicts"] += 1

            session.commit()
            if gate is not None:
                gate.invalidate(quest.guild_id, quest.quest_type)

    if counters["reset"] or counters["conflicts"]:
        logger.info(
            "Quest reset sweep: %d quests, %d reset, %d capped, %d conflicts, %d scheduled",
            counters["quests"], counters["reset"], counters["capped"],
            counters["conflicts"], counters["scheduled"],
        )
    return counters


def process_expired_quests(engine: Engine, *, now: datetime | None = None) -> dict[str, int]:
    """Zero in-flight records whose deadline or time limit has passed."""
    now = ensure_utc(now) or utcnow()
    counters = {"quests": 0, "expired": 0, "conflicts": 0}

    with Session(engine, expire_on_commit=False) as session:
        quests = session.scalars(
            select(Quest).where(
                Quest.enabled.is_(True),
                or_(Quest.deadline_at.is_not(None), Quest.time_limit_hours.is_not(None)),
            ).order_by(Quest.id)
        ).all()

        for quest in quests:
            counters["quests"] += 1
            in_flight = session.scalars(
                select(QuestProgress).where(
                    QuestProgress.quest_id == quest.id,
                    QuestProgress.completed.is_(False),
                    or_(QuestProgress.current_progress > 0, QuestProgress.started_at.is_not(None)),
                )
            ).all()
            for progress in in_flight:
                if not is_expired(quest, progress, now):
                    continue
                if _versioned_update(session, progress, current_progress=0, started_at=None):
                    counters["expired"] += 1
                else:
                    counters["conflicts"] += 1
            session.commit()

    if counters["expired"]:
        logger.info("Quest expiry sweep: %d records expired", counters["expired"])
    return counters
