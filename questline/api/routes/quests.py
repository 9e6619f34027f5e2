"""
questline.api.routes.quests — Quest & chain administration
===========================================================

Thin HTTP layer over :mod:`questline.services.catalog_service`.  Every
write is audited and invalidates the Tracking Gate (here directly, in the
bot through PG NOTIFY).

Manual completion needs the Discord client for role rewards and DMs, so
the API validates the request and hands it to the bot as a
``quest_manual_complete`` event, answering 202.
"""

from __future__ import annotations

import logging
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from questline.api.deps import get_config, get_current_admin, get_engine, get_gate
from questline.config import QuestlineConfig
from questline.database.models import Quest, QuestChain
from questline.engine.cache import MANUAL_COMPLETE_EVENT, TrackingGate, send_event_notify
from questline.errors import QuestNotFoundError, QuestValidationError
from questline.services import catalog_service

router = APIRouter(prefix="/admin", tags=["admin"])
logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class QuestCreate(BaseModel):
    name: str
    quest_type: str
    requirements: dict
    description: str | None = None
    emoji: str | None = None
    category: str = "general"
    rewards: dict | None = None
    milestones: list[dict] | None = None
    reset_type: str = "never"
    reset_time: str | None = None
    reset_day_of_week: int | None = None
    completion_cooldown_hours: float | None = None
    max_completions: int | None = None
    prerequisite_quest_ids: list[int] | None = None
    chain_id: int | None = None
    chain_position: int | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    deadline_at: datetime | None = None
    time_limit_hours: float | None = None
    enabled: bool = True
    visible: bool = True


class QuestUpdate(BaseModel):
    name: str | None = None
    quest_type: str | None = None
    requirements: dict | None = None
    description: str | None = None
    emoji: str | None = None
    category: str | None = None
    rewards: dict | None = None
    milestones: list[dict] | None = None
    reset_type: str | None = None
    reset_time: str | None = None
    reset_day_of_week: int | None = None
    completion_cooldown_hours: float | None = None
    max_completions: int | None = None
    prerequisite_quest_ids: list[int] | None = None
    chain_id: int | None = None
    chain_position: int | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    deadline_at: datetime | None = None
    time_limit_hours: float | None = None
    visible: bool | None = None


class ChainCreate(BaseModel):
    name: str
    description: str | None = None
    chain_rewards: dict | None = None
    enabled: bool = True


class ChainUpdate(BaseModel):
    name: str | None = None
    description: str | None = None
    chain_rewards: dict | None = None
    enabled: bool | None = None


class ManualComplete(BaseModel):
    user_id: int = Field(gt=0)


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------
def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _quest_dict(q: Quest) -> dict:
    return {
        "id": q.id,
        "name": q.name,
        "description": q.description,
        "emoji": q.emoji,
        "category": q.category,
        "quest_type": q.quest_type,
        "requirements": q.requirements or {},
        "rewards": q.rewards or {},
        "milestones": q.milestones or [],
        "reset_type": q.reset_type,
        "reset_time": q.reset_time,
        "reset_day_of_week": q.reset_day_of_week,
        "completion_cooldown_hours": q.completion_cooldown_hours,
        "max_completions": q.max_completions,
        "prerequisite_quest_ids": q.prerequisite_quest_ids or [],
        "chain_id": q.chain_id,
        "chain_position": q.chain_position,
        "start_date": _iso(q.start_date),
        "end_date": _iso(q.end_date),
        "deadline_at": _iso(q.deadline_at),
        "time_limit_hours": q.time_limit_hours,
        "enabled": q.enabled,
        "visible": q.visible,
    }


def _chain_dict(c: QuestChain) -> dict:
    return {
        "id": c.id,
        "name": c.name,
        "description": c.description,
        "chain_rewards": c.chain_rewards or {},
        "enabled": c.enabled,
    }


# ---------------------------------------------------------------------------
# Quests
# ---------------------------------------------------------------------------
@router.get("/quests")
def list_quests(
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
    cfg: QuestlineConfig = Depends(get_config),
):
    return {"quests": [_quest_dict(q) for q in catalog_service.list_quests(engine, cfg.guild_id)]}


@router.get("/quests/{quest_id}")
def get_quest(
    quest_id: int,
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
    cfg: QuestlineConfig = Depends(get_config),
):
    try:
        quest = catalog_service.get_quest(engine, cfg.guild_id, quest_id)
    except QuestNotFoundError as exc:
        raise HTTPException(404, str(exc))
    return _quest_dict(quest)


@router.post("/quests", status_code=201)
def create_quest(
    body: QuestCreate,
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
    gate: TrackingGate = Depends(get_gate),
    cfg: QuestlineConfig = Depends(get_config),
):
    try:
        quest = catalog_service.create_quest(
            engine, gate,
            guild_id=cfg.guild_id,
            actor_id=int(admin["sub"]),
            **body.model_dump(exclude_none=True),
        )
    except QuestValidationError as exc:
        raise HTTPException(400, str(exc))
    return _quest_dict(quest)


@router.patch("/quests/{quest_id}")
def update_quest(
    quest_id: int,
    body: QuestUpdate,
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
    gate: TrackingGate = Depends(get_gate),
    cfg: QuestlineConfig = Depends(get_config),
):
    kwargs = body.model_dump(exclude_none=True)
    if not kwargs:
        raise HTTPException(400, "No fields to update")
    try:
        quest = catalog_service.update_quest(
            engine, gate,
            guild_id=cfg.guild_id,
            quest_id=quest_id,
            actor_id=int(admin["sub"]),
            **kwargs,
        )
    except QuestNotFoundError as exc:
        raise HTTPException(404, str(exc))
    except QuestValidationError as exc:
        raise HTTPException(400, str(exc))
    return _quest_dict(quest)


@router.post("/quests/{quest_id}/enable")
def enable_quest(
    quest_id: int,
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
    gate: TrackingGate = Depends(get_gate),
    cfg: QuestlineConfig = Depends(get_config),
):
    return _set_enabled(engine, gate, cfg, quest_id, True, admin)


@router.post("/quests/{quest_id}/disable")
def disable_quest(
    quest_id: int,
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
    gate: TrackingGate = Depends(get_gate),
    cfg: QuestlineConfig = Depends(get_config),
):
    return _set_enabled(engine, gate, cfg, quest_id, False, admin)


def _set_enabled(engine, gate, cfg: QuestlineConfig, quest_id: int, enabled: bool, admin: dict):
    try:
        quest = catalog_service.set_quest_enabled(
            engine, gate,
            guild_id=cfg.guild_id,
            quest_id=quest_id,
            enabled=enabled,
            actor_id=int(admin["sub"]),
        )
    except QuestNotFoundError as exc:
        raise HTTPException(404, str(exc))
    return {"id": quest.id, "enabled": quest.enabled}


@router.delete("/quests/{quest_id}", status_code=204)
def delete_quest(
    quest_id: int,
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
    gate: TrackingGate = Depends(get_gate),
    cfg: QuestlineConfig = Depends(get_config),
):
    try:
        catalog_service.delete_quest(
            engine, gate, guild_id=cfg.guild_id, quest_id=quest_id, actor_id=int(admin["sub"]),
        )
    except QuestNotFoundError as exc:
        raise HTTPException(404, str(exc))
    return None


@router.post("/quests/{quest_id}/complete", status_code=202)
def complete_quest(
    quest_id: int,
    body: ManualComplete,
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
    cfg: QuestlineConfig = Depends(get_config),
):
    """Queue a manual completion for the bot to run.

    Answers 202 once the quest exists and the bot has been notified.  The
    completion itself (rewards, journal row, DM) happens in the bot, which
    logs the outcome; use the ``/quest-complete`` slash command when the
    admin needs the result reported back.
    """
    try:
        catalog_service.get_quest(engine, cfg.guild_id, quest_id)
    except QuestNotFoundError as exc:
        raise HTTPException(404, str(exc))

    try:
        send_event_notify(engine, {
            "type": MANUAL_COMPLETE_EVENT,
            "guild_id": str(cfg.guild_id),
            "quest_id": quest_id,
            "user_id": str(body.user_id),
            "admin_id": admin.get("sub"),
        })
    except Exception:
        logger.exception("Failed to hand manual completion of quest %s to the bot", quest_id)
        raise HTTPException(503, "Bot could not be notified; try again")

    return {"status": "queued", "quest_id": quest_id, "user_id": str(body.user_id)}


# ---------------------------------------------------------------------------
# Chains
# ---------------------------------------------------------------------------
@router.get("/quest-chains")
def list_chains(
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
    cfg: QuestlineConfig = Depends(get_config),
):
    return {"chains": [_chain_dict(c) for c in catalog_service.list_chains(engine, cfg.guild_id)]}


@router.post("/quest-chains", status_code=201)
def create_chain(
    body: ChainCreate,
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
    gate: TrackingGate = Depends(get_gate),
    cfg: QuestlineConfig = Depends(get_config),
):
    try:
        chain = catalog_service.create_chain(
            engine, gate,
            guild_id=cfg.guild_id,
            actor_id=int(admin["sub"]),
            **body.model_dump(exclude_none=True),
        )
    except QuestValidationError as exc:
        raise HTTPException(400, str(exc))
    return _chain_dict(chain)


@router.patch("/quest-chains/{chain_id}")
def update_chain(
    chain_id: int,
    body: ChainUpdate,
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
    gate: TrackingGate = Depends(get_gate),
    cfg: QuestlineConfig = Depends(get_config),
):
    kwargs = body.model_dump(exclude_none=True)
    if not kwargs:
        raise HTTPException(400, "No fields to update")
    try:
        chain = catalog_service.update_chain(
            engine, gate,
            guild_id=cfg.guild_id,
            chain_id=chain_id,
            actor_id=int(admin["sub"]),
            **kwargs,
        )
    except QuestNotFoundError as exc:
        raise HTTPException(404, str(exc))
    except QuestValidationError as exc:
        raise HTTPException(400, str(exc))
    return _chain_dict(chain)


@router.delete("/quest-chains/{chain_id}", status_code=204)
def delete_chain(
    chain_id: int,
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
    gate: TrackingGate = Depends(get_gate),
    cfg: QuestlineConfig = Depends(get_config),
):
    try:
        catalog_service.delete_chain(
            engine, gate, guild_id=cfg.guild_id, chain_id=chain_id, actor_id=int(admin["sub"]),
        )
    except QuestNotFoundError as exc:
        raise HTTPException(404, str(exc))
    return None
