"""
questline.services.query_service — Member-Facing Quest Queries
===============================================================

Read side of the engine plus the manual-completion entry point used by
the admin slash command and the dashboard.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import select
from sqlalchemy.orm import Session

from questline.database.engine import run_db
from questline.database.models import CompletionSource, Quest, QuestProgress
from questline.engine.gating import cap_reached, is_available, is_terminal
from questline.engine.schedule import utcnow
from questline.errors import QuestNotFoundError
from questline.services.completion_service import CompletionResult, complete_quest
from questline.services.progress_service import prepare_manual_completion

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from questline.services.collaborators import RewardCollaborators

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class UserQuest:
    """A quest paired with one member's record (None before first progress)."""

    quest: Quest
    progress: QuestProgress | None

    @property
    def current(self) -> int:
        return self.progress.current_progress if self.progress else 0

    @property
    def target(self) -> int:
        return self.progress.target_progress if self.progress else self.quest.target

    @property
    def completed(self) -> bool:
        return bool(self.progress and self.progress.completed)

    @property
    def percent(self) -> int:
        if self.target <= 0:
            return 0
        return min(100, self.current * 100 // self.target)

    def to_dict(self, now: datetime | None = None) -> dict:
        quest, progress = self.quest, self.progress
        now = now or utcnow()
        return {
            "quest_id": quest.id,
            "name": quest.name,
            "description": quest.description,
            "emoji": quest.emoji,
            "category": quest.category,
            "quest_type": quest.quest_type,
            "reset_type": quest.reset_type,
            "chain_id": quest.chain_id,
            "chain_position": quest.chain_position,
            "rewards": quest.rewards or {},
            "current_progress": self.current,
            "target_progress": self.target,
            "percent": self.percent,
            "completed": self.completed,
            "completion_count": progress.completion_count if progress else 0,
            "max_completions": quest.max_completions,
            "capped": cap_reached(quest, progress),
            "available": is_available(quest, now),
            "reset_at": progress.reset_at.isoformat() if progress and progress.reset_at else None,
            "deadline_at": quest.deadline_at.isoformat() if quest.deadline_at else None,
        }


def get_user_quests(
    engine: Engine,
    guild_id: int,
    user_id: int,
    category: str | None = None,
    include_completed: bool = False,
) -> list[UserQuest]:
    """Enabled, visible quests of *guild_id* with *user_id*'s records.

    Ordered by category, then chain position (unchained last), then age.
    Without *include_completed*, one-shot quests the member already
    finished are left out.
    """
    with Session(engine, expire_on_commit=False) as session:
        stmt = (
            select(Quest, QuestProgress)
            .outerjoin(
                QuestProgress,
                (QuestProgress.quest_id == Quest.id) & (QuestProgress.user_id == user_id),
            )
            .where(
                Quest.guild_id == guild_id,
                Quest.enabled.is_(True),
                Quest.visible.is_(True),
            )
            .order_by(
                Quest.category,
                Quest.chain_position.is_(None),
                Quest.chain_position,
                Quest.created_at,
                Quest.id,
            )
        )
        if category is not None:
            stmt = stmt.where(Quest.category == category)
        rows = session.execute(stmt).all()
        session.expunge_all()

    result = [UserQuest(quest=quest, progress=progress) for quest, progress in rows]
    if not include_completed:
        result = [uq for uq in result if not is_terminal(uq.quest, uq.progress)]
    return result


def _load_quest(engine: Engine, guild_id: int, quest_id: int) -> Quest:
    with Session(engine, expire_on_commit=False) as session:
        quest = session.get(Quest, quest_id)
        if quest is None or quest.guild_id != guild_id:
            raise QuestNotFoundError(quest_id, guild_id)
        session.expunge(quest)
    return quest


async def manual_complete(
    engine: Engine,
    collaborators: RewardCollaborators,
    guild_id: int,
    quest_id: int,
    user_id: int,
    *,
    tz: str = "UTC",
) -> CompletionResult:
    """Complete *quest_id* for *user_id* regardless of gating.

    Raises
    ------
    QuestNotFoundError
        If the quest does not exist in *guild_id*.
    """
    quest = await run_db(_load_quest, engine, guild_id, quest_id)
    progress = await run_db(prepare_manual_completion, engine, quest, user_id, tz=tz)
    logger.info("Manual completion of quest %s for user %s", quest_id, user_id)
    return await complete_quest(
        engine,
        collaborators,
        quest,
        user_id,
        progress.target_progress,
        progress,
        source=CompletionSource.MANUAL,
    )
