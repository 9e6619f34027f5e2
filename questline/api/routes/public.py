"""
questline.api.routes.public — Read-only public endpoints
=========================================================
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from questline.api.deps import get_config, get_engine
from questline.config import QuestlineConfig
from questline.services.query_service import get_user_quests

router = APIRouter(tags=["public"])


@router.get("/quests/{user_id}")
def user_quests(
    user_id: int,
    category: str | None = Query(None, max_length=50),
    include_completed: bool = Query(False),
    engine=Depends(get_engine),
    cfg: QuestlineConfig = Depends(get_config),
):
    """A member's quest board: available quests with their progress."""
    rows = get_user_quests(
        engine, cfg.guild_id, user_id,
        category=category, include_completed=include_completed,
    )
    return {
        "user_id": str(user_id),
        "quests": [uq.to_dict() for uq in rows],
    }
