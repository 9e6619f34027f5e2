"""
questline.services.completion_service — Completion & Reward Dispatcher
=======================================================================

Turns "progress reached target" into exactly one completion:

  1. Conditional mark-complete on the record's version (at-most-once gate)
  2. Grant each reward through its collaborator, bounded by a timeout
  3. Append the QuestCompletion journal row
  4. Best-effort DM
  5. Chain completion check

Steps 2–5 only run for the caller whose UPDATE matched.  A reward that
fails is recorded as ``failed`` and never rolls back step 1; a journal
row that cannot be written is logged and flagged on the result.

Sync functions here take an ``engine``; the async orchestration runs their
database half through :func:`~questline.database.engine.run_db`.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from questline.database.engine import run_db
from questline.database.models import (
    CompletionSource,
    Quest,
    QuestChain,
    QuestChainProgress,
    QuestCompletion,
    QuestProgress,
)
from questline.engine.notices import QuestNotice, chain_notice, completion_notice
from questline.engine.rewards import (
    CurrencyReward,
    ExperienceReward,
    ItemReward,
    Reward,
    RewardOutcome,
    RoleReward,
    parse_rewards,
)
from questline.engine.schedule import utcnow

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from questline.services.collaborators import RewardCollaborators

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class CompletionResult:
    """Outcome of one dispatcher run."""

    success: bool
    quest_id: int
    user_id: int
    completion_number: int | None = None
    rewards: list[Reward] = field(default_factory=list)
    outcomes: dict[str, str] = field(default_factory=dict)
    error: str | None = None


# ---------------------------------------------------------------------------
# Database half (sync)
# ---------------------------------------------------------------------------
def mark_complete(
    engine: Engine,
    progress_id: int,
    expected_version: int,
    achieved: int,
    now: datetime,
) -> int | None:
    """Flip the record to completed if nobody else did first.

    Returns the new ``completion_count`` or None when the conditional
    UPDATE matched no row.
    """
    with Session(engine) as session:
        result = session.execute(
            update(QuestProgress)
            .where(
                QuestProgress.id == progress_id,
                QuestProgress.version == expected_version,
                QuestProgress.completed.is_(False),
            )
            .values(
                completed=True,
                completed_at=now,
                current_progress=achieved,
                completion_count=QuestProgress.completion_count + 1,
                last_completed_at=now,
                version=QuestProgress.version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            session.rollback()
            return None
        count = session.scalar(
            select(QuestProgress.completion_count).where(QuestProgress.id == progress_id)
        )
        session.commit()
        return count


def log_completion(
    engine: Engine,
    quest: Quest,
    user_id: int,
    achieved: int,
    completion_number: int,
    outcomes: dict[str, str],
    source: str,
    now: datetime,
) -> None:
    """Append the journal row for a completion that already won the race."""
    with Session(engine) as session:
        session.add(QuestCompletion(
            quest_id=quest.id,
            guild_id=quest.guild_id,
            user_id=user_id,
            progress_achieved=achieved,
            rewards_given=dict(quest.rewards or {}),
            reward_outcomes=outcomes,
            completion_number=completion_number,
            source=str(source),
            completed_at=now,
        ))
        try:
            session.commit()
        except IntegrityError:
            session.rollback()
            logger.error(
                "Completion #%d for quest %s user %s already journaled",
                completion_number, quest.id, user_id,
            )


def claim_chain_completion(
    engine: Engine,
    chain_id: int,
    user_id: int,
    now: datetime,
) -> QuestChain | None:
    """Return the chain if *user_id* just finished all of it for the first time.

    The claim flips ``chain_rewards_given`` with a conditional UPDATE so
    concurrent completions of the last two quests pay the bonus once.
    """
    with Session(engine, expire_on_commit=False) as session:
        chain = session.get(QuestChain, chain_id)
        if chain is None or not chain.enabled:
            return None

        quest_ids = set(session.scalars(
            select(Quest.id).where(Quest.chain_id == chain_id, Quest.enabled.is_(True))
        ).all())
        if not quest_ids:
            return None
        done = set(session.scalars(
            select(QuestProgress.quest_id).where(
                QuestProgress.user_id == user_id,
                QuestProgress.quest_id.in_(quest_ids),
                QuestProgress.completed.is_(True),
            )
        ).all())
        if quest_ids - done:
            return None

        record = session.scalar(
            select(QuestChainProgress).where(
                QuestChainProgress.chain_id == chain_id,
                QuestChainProgress.user_id == user_id,
            )
        )
        if record is None:
            try:
                with session.begin_nested():   # SAVEPOINT
                    session.add(QuestChainProgress(
                        chain_id=chain_id,
                        guild_id=chain.guild_id,
                        user_id=user_id,
                        completed_quest_ids=sorted(quest_ids),
                        chain_rewards_given=False,
                    ))
                    session.flush()
            except IntegrityError:
                pass  # concurrent insert; the claim below decides

        claimed = session.execute(
            update(QuestChainProgress)
            .where(
                QuestChainProgress.chain_id == chain_id,
                QuestChainProgress.user_id == user_id,
                QuestChainProgress.chain_rewards_given.is_(False),
            )
            .values(
                chain_rewards_given=True,
                completed_at=now,
                completed_quest_ids=sorted(quest_ids),
            )
            .execution_options(synchronize_session=False)
        )
        if claimed.rowcount != 1:
            session.rollback()
            return None
        session.commit()
        session.expunge(chain)
        return chain


# ---------------------------------------------------------------------------
# Collaborator calls (async)
# ---------------------------------------------------------------------------
def _reward_call(
    collaborators: RewardCollaborators,
    guild_id: int,
    user_id: int,
    reward: Reward,
    reason: str,
) -> Any | None:
    """Build the collaborator coroutine for *reward*, or None if unconfigured."""
    match reward:
        case CurrencyReward(amount=amount):
            if collaborators.currency is None:
                return None
            return collaborators.currency.credit(guild_id, user_id, amount, reason)
        case ExperienceReward(amount=amount):
            if collaborators.experience is None:
                return None
            return collaborators.experience.credit(guild_id, user_id, amount)
        case RoleReward(role_id=role_id):
            if collaborators.roles is None:
                return None
            return collaborators.roles.grant(guild_id, user_id, role_id)
        case ItemReward(item_id=item_id, quantity=quantity):
            if collaborators.items is None:
                return None
            return collaborators.items.grant(guild_id, user_id, item_id, quantity)
    raise TypeError(f"Unknown reward variant: {reward!r}")


async def grant_rewards(
    collaborators: RewardCollaborators,
    guild_id: int,
    user_id: int,
    rewards: list[Reward],
    *,
    reason: str,
) -> dict[str, str]:
    """Grant each reward independently.  Returns ``{kind: outcome}``."""
    outcomes: dict[str, str] = {}
    for reward in rewards:
        call = _reward_call(collaborators, guild_id, user_id, reward, reason)
        if call is None:
            logger.warning(
                "No %s collaborator configured — skipping reward for user %s",
                reward.kind, user_id,
            )
            outcomes[reward.kind.value] = RewardOutcome.SKIPPED.value
            continue
        try:
            await asyncio.wait_for(call, timeout=collaborators.reward_timeout_seconds)
        except TimeoutError:
            logger.error(
                "%s reward for user %s timed out after %.1fs (%s)",
                reward.kind, user_id, collaborators.reward_timeout_seconds, reason,
            )
            outcomes[reward.kind.value] = RewardOutcome.FAILED.value
        except Exception:
            logger.exception("%s reward for user %s failed (%s)", reward.kind, user_id, reason)
            outcomes[reward.kind.value] = RewardOutcome.FAILED.value
        else:
            outcomes[reward.kind.value] = RewardOutcome.GRANTED.value
    return outcomes


async def send_notice(
    collaborators: RewardCollaborators, user_id: int, notice: QuestNotice,
) -> bool:
    """Best-effort notification.  Failures are logged and swallowed."""
    if collaborators.notifier is None:
        return False
    try:
        await asyncio.wait_for(
            collaborators.notifier.notify(user_id, notice),
            timeout=collaborators.reward_timeout_seconds,
        )
    except Exception:
        logger.warning("Could not notify user %s (%s)", user_id, notice.kind, exc_info=True)
        return False
    return True


# ---------------------------------------------------------------------------
# Dispatcher
# ---------------------------------------------------------------------------
async def complete_quest(
    engine: Engine,
    collaborators: RewardCollaborators,
    quest: Quest,
    user_id: int,
    achieved: int,
    progress: QuestProgress,
    *,
    source: str = CompletionSource.ACTIVITY,
    now: datetime | None = None,
) -> CompletionResult:
    """Complete *quest* for *user_id* from the record snapshot *progress*.

    *progress* must carry the ``id`` and ``version`` observed by the caller;
    a concurrent writer that changed either makes this a no-op.
    """
    now = now or utcnow()
    number = await run_db(mark_complete, engine, progress.id, progress.version, achieved, now)
    if number is None:
        logger.info(
            "Quest %s for user %s already completed by a concurrent run", quest.id, user_id,
        )
        return CompletionResult(
            success=False, quest_id=quest.id, user_id=user_id, error="already completed",
        )

    rewards = parse_rewards(quest.rewards)
    outcomes = await grant_rewards(
        collaborators, quest.guild_id, user_id, rewards,
        reason=f"Quest completed: {quest.name}",
    )

    error = None
    try:
        await run_db(log_completion, engine, quest, user_id, achieved, number, outcomes, source, now)
    except Exception:
        # The completion and its rewards stand; the journal row is reconciled by hand.
        logger.exception(
            "Could not journal completion #%d of quest %s for user %s (%s, outcomes=%s)",
            number, quest.id, user_id, source, outcomes,
        )
        error = "completion not journaled"
    logger.info(
        "User %s completed quest %s (%s) #%d via %s — %s",
        user_id, quest.id, quest.name, number, source, outcomes or "no rewards",
    )

    await send_notice(collaborators, user_id, completion_notice(quest, rewards, number))

    if quest.chain_id is not None:
        try:
            await check_chain_completion(engine, collaborators, quest.chain_id, user_id, now=now)
        except Exception:
            logger.exception("Chain check failed for chain %s user %s", quest.chain_id, user_id)

    return CompletionResult(
        success=True,
        quest_id=quest.id,
        user_id=user_id,
        completion_number=number,
        rewards=rewards,
        outcomes=outcomes,
        error=error,
    )


async def check_chain_completion(
    engine: Engine,
    collaborators: RewardCollaborators,
    chain_id: int,
    user_id: int,
    *,
    now: datetime | None = None,
) -> dict[str, str] | None:
    """Pay the chain bonus if *user_id* just finished the whole chain.

    Returns the chain reward outcomes, or None when nothing was due.
    """
    chain = await run_db(claim_chain_completion, engine, chain_id, user_id, now or utcnow())
    if chain is None:
        return None

    rewards = parse_rewards(chain.chain_rewards)
    outcomes = await grant_rewards(
        collaborators, chain.guild_id, user_id, rewards,
        reason=f"Quest chain completed: {chain.name}",
    )
    logger.info("User %s completed chain %s (%s) — %s", user_id, chain.id, chain.name, outcomes)
    await send_notice(collaborators, user_id, chain_notice(chain, rewards))
    return outcomes
