"""
questline.services.catalog_service — Quest Catalog Administration
==================================================================

Every catalog write follows the same pattern:
  1. Validate the merged definition (raises QuestValidationError)
  2. Begin transaction, read "before" snapshot
  3. Apply change
  4. Write admin_log with before/after JSONB
  5. NOTIFY quest_catalog_changed, '<guild_id>[:<quest_type>]'
  6. Commit, then drop the matching Tracking Gate entries in this process

Quests and chains are always addressed within a guild; an ID from another
guild behaves exactly like an unknown ID.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from questline.database.models import (
    AdminActionType,
    AdminLog,
    Quest,
    QuestChain,
    ResetType,
)
from questline.engine.cache import notify_before_commit
from questline.engine.rewards import validate_reward_descriptor
from questline.engine.schedule import ensure_utc, parse_reset_time
from questline.errors import QuestNotFoundError, QuestValidationError

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from questline.engine.cache import TrackingGate

logger = logging.getLogger(__name__)

# Columns an admin may set on a quest
QUEST_FIELDS: frozenset[str] = frozenset({
    "name", "description", "emoji", "category", "quest_type",
    "requirements", "rewards", "milestones",
    "reset_type", "reset_time", "reset_day_of_week",
    "completion_cooldown_hours", "max_completions",
    "prerequisite_quest_ids", "chain_id", "chain_position",
    "start_date", "end_date", "deadline_at", "time_limit_hours",
    "enabled", "visible",
})

CHAIN_FIELDS: frozenset[str] = frozenset({"name", "description", "chain_rewards", "enabled"})


# ---------------------------------------------------------------------------
# Audit helpers
# ---------------------------------------------------------------------------
def _row_to_dict(obj: Any) -> dict | None:
    """Convert a model instance to a JSON-serializable dict."""
    if obj is None:
        return None
    result = {}
    for col in obj.__table__.columns:
        val = getattr(obj, col.key, None)
        if isinstance(val, datetime):
            val = val.isoformat()
        result[col.name] = val
    return result


def _log_admin_action(
    session: Session,
    *,
    actor_id: int,
    action_type: str,
    target_table: str,
    target_id: str | None,
    before: dict | None,
    after: dict | None,
    reason: str | None = None,
) -> None:
    session.add(AdminLog(
        actor_id=actor_id,
        action_type=str(action_type),
        target_table=target_table,
        target_id=target_id,
        before_snapshot=before,
        after_snapshot=after,
        reason=reason,
    ))


def _invalidate(gate: TrackingGate | None, guild_id: int, quest_type: str | None = None) -> None:
    if gate is not None:
        gate.invalidate(guild_id, quest_type)


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------
def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _optional_number(data: dict, key: str, *, minimum: float, strict: bool = False) -> None:
    value = data.get(key)
    if value is None:
        return
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise QuestValidationError(key, "must be a number")
    if value < minimum or (strict and value == minimum):
        bound = "greater than" if strict else "at least"
        raise QuestValidationError(key, f"must be {bound} {minimum:g}")


def validate_quest(session: Session, guild_id: int, data: dict, quest_id: int | None = None) -> None:
    """Validate a complete quest definition before it is written.

    *data* is the merged definition (existing row + changes for updates).

    Raises
    ------
    QuestValidationError
        On the first field that fails.
    """
    if not (data.get("name") or "").strip():
        raise QuestValidationError("name", "is required")
    if not (data.get("quest_type") or "").strip():
        raise QuestValidationError("quest_type", "is required")

    requirements = data.get("requirements")
    if not isinstance(requirements, dict):
        raise QuestValidationError("requirements", "must be an object with a target")
    target = requirements.get("target")
    if not _is_int(target) or target < 1:
        raise QuestValidationError("requirements.target", "must be an integer of at least 1")
    channel_ids = requirements.get("channel_ids")
    if channel_ids is not None:
        if not isinstance(channel_ids, list) or not all(
            _is_int(c) or (isinstance(c, str) and c.isdigit()) for c in channel_ids
        ):
            raise QuestValidationError("requirements.channel_ids", "must be a list of channel IDs")

    try:
        validate_reward_descriptor(data.get("rewards"))
    except ValueError as exc:
        raise QuestValidationError("rewards", str(exc)) from None

    reset_type = data.get("reset_type") or ResetType.NEVER
    if reset_type not in {t.value for t in ResetType}:
        raise QuestValidationError("reset_type", f"unknown reset type {reset_type!r}")
    if data.get("reset_time"):
        try:
            parse_reset_time(data["reset_time"])
        except ValueError:
            raise QuestValidationError("reset_time", "must be HH:MM (24-hour)") from None
    day = data.get("reset_day_of_week")
    if day is not None and (not _is_int(day) or not 0 <= day <= 6):
        raise QuestValidationError("reset_day_of_week", "must be 0 (Sunday) to 6 (Saturday)")
    if reset_type == ResetType.WEEKLY and day is None:
        raise QuestValidationError("reset_day_of_week", "is required for weekly quests")

    max_completions = data.get("max_completions")
    if max_completions is not None and (not _is_int(max_completions) or max_completions < 1):
        raise QuestValidationError("max_completions", "must be a positive integer")
    _optional_number(data, "completion_cooldown_hours", minimum=0)
    _optional_number(data, "time_limit_hours", minimum=0, strict=True)

    start, end = ensure_utc(data.get("start_date")), ensure_utc(data.get("end_date"))
    if start is not None and end is not None and end <= start:
        raise QuestValidationError("end_date", "must be after start_date")

    prereqs = data.get("prerequisite_quest_ids") or []
    if not isinstance(prereqs, list) or not all(_is_int(p) for p in prereqs):
        raise QuestValidationError("prerequisite_quest_ids", "must be a list of quest IDs")
    if quest_id is not None and quest_id in prereqs:
        raise QuestValidationError("prerequisite_quest_ids", "a quest cannot require itself")
    if prereqs:
        known = set(session.scalars(
            select(Quest.id).where(Quest.guild_id == guild_id, Quest.id.in_(prereqs))
        ).all())
        missing = sorted(set(prereqs) - known)
        if missing:
            raise QuestValidationError("prerequisite_quest_ids", f"unknown quests {missing}")

    chain_id = data.get("chain_id")
    position = data.get("chain_position")
    if chain_id is not None:
        chain = session.get(QuestChain, chain_id)
        if chain is None or chain.guild_id != guild_id:
            raise QuestValidationError("chain_id", f"unknown chain {chain_id}")
        if not _is_int(position) or position < 1:
            raise QuestValidationError("chain_position", "is required (1 or more) for chained quests")
    elif position is not None:
        raise QuestValidationError("chain_position", "only applies to chained quests")

    milestones = data.get("milestones") or []
    if not isinstance(milestones, list):
        raise QuestValidationError("milestones", "must be a list")
    seen: set[int] = set()
    for milestone in milestones:
        percent = milestone.get("progress") if isinstance(milestone, dict) else None
        if not _is_int(percent) or not 1 <= percent <= 99:
            raise QuestValidationError("milestones", "progress must be a percentage from 1 to 99")
        if percent in seen:
            raise QuestValidationError("milestones", f"duplicate milestone at {percent}%")
        seen.add(percent)
        try:
            validate_reward_descriptor(milestone.get("rewards"))
        except ValueError as exc:
            raise QuestValidationError("milestones", str(exc)) from None


def _validate_chain(data: dict) -> None:
    if not (data.get("name") or "").strip():
        raise QuestValidationError("name", "is required")
    try:
        validate_reward_descriptor(data.get("chain_rewards"))
    except ValueError as exc:
        raise QuestValidationError("chain_rewards", str(exc)) from None


def _quest_in_guild(session: Session, guild_id: int, quest_id: int) -> Quest:
    quest = session.get(Quest, quest_id)
    if quest is None or quest.guild_id != guild_id:
        raise QuestNotFoundError(quest_id, guild_id)
    return quest


def _chain_in_guild(session: Session, guild_id: int, chain_id: int) -> QuestChain:
    chain = session.get(QuestChain, chain_id)
    if chain is None or chain.guild_id != guild_id:
        raise QuestNotFoundError(chain_id, guild_id, kind="Quest chain")
    return chain


# ---------------------------------------------------------------------------
# Quest reads
# ---------------------------------------------------------------------------
def list_quests(engine: Engine, guild_id: int) -> list[Quest]:
    """Every quest of *guild_id*, including disabled and hidden ones."""
    with Session(engine, expire_on_commit=False) as session:
        quests = list(session.scalars(
            select(Quest).where(Quest.guild_id == guild_id)
            .order_by(Quest.category, Quest.chain_position.is_(None),
                      Quest.chain_position, Quest.created_at, Quest.id)
        ).all())
        session.expunge_all()
    return quests


def get_quest(engine: Engine, guild_id: int, quest_id: int) -> Quest:
    with Session(engine, expire_on_commit=False) as session:
        quest = _quest_in_guild(session, guild_id, quest_id)
        session.expunge(quest)
    return quest


# ---------------------------------------------------------------------------
# Quest writes
# ---------------------------------------------------------------------------
def create_quest(
    engine: Engine,
    gate: TrackingGate | None = None,
    *,
    guild_id: int,
    actor_id: int,
    **fields: Any,
) -> Quest:
    """Create a quest after validating its definition."""
    unknown = set(fields) - QUEST_FIELDS
    if unknown:
        raise QuestValidationError(sorted(unknown)[0], "is not a quest field")
    data = {"reset_type": ResetType.NEVER.value, "category": "general", **fields}
    if data.get("reset_type") in (ResetType.DAILY, ResetType.WEEKLY) and not data.get("reset_time"):
        data["reset_time"] = "00:00"

    with Session(engine, expire_on_commit=False) as session:
        validate_quest(session, guild_id, data)
        quest = Quest(guild_id=guild_id, **data)
        session.add(quest)
        session.flush()
        _log_admin_action(
            session,
            actor_id=actor_id,
            action_type=AdminActionType.CREATE,
            target_table="quests",
            target_id=str(quest.id),
            before=None,
            after=_row_to_dict(quest),
        )
        notify_before_commit(session, guild_id, quest.quest_type)
        session.commit()
        session.refresh(quest)
        session.expunge(quest)

    _invalidate(gate, guild_id, quest.quest_type)
    logger.info("Quest %s (%s) created in guild %s by %s", quest.id, quest.name, guild_id, actor_id)
    return quest


def update_quest(
    engine: Engine,
    gate: TrackingGate | None = None,
    *,
    guild_id: int,
    quest_id: int,
    actor_id: int,
    **fields: Any,
) -> Quest:
    """Apply *fields* to a quest.  Existing progress keeps its snapshot target."""
    unknown = set(fields) - QUEST_FIELDS
    if unknown:
        raise QuestValidationError(sorted(unknown)[0], "is not a quest field")

    with Session(engine, expire_on_commit=False) as session:
        quest = _quest_in_guild(session, guild_id, quest_id)
        before = _row_to_dict(quest)
        merged = {key: getattr(quest, key) for key in QUEST_FIELDS}
        merged.update(fields)
        validate_quest(session, guild_id, merged, quest_id=quest_id)

        for key, value in fields.items():
            setattr(quest, key, value)
        session.flush()
        _log_admin_action(
            session,
            actor_id=actor_id,
            action_type=AdminActionType.UPDATE,
            target_table="quests",
            target_id=str(quest.id),
            before=before,
            after=_row_to_dict(quest),
        )
        notify_before_commit(session, guild_id)
        session.commit()
        session.refresh(quest)
        session.expunge(quest)

    # quest_type may have changed; drop the whole guild
    _invalidate(gate, guild_id)
    return quest


def set_quest_enabled(
    engine: Engine,
    gate: TrackingGate | None = None,
    *,
    guild_id: int,
    quest_id: int,
    enabled: bool,
    actor_id: int,
) -> Quest:
    with Session(engine, expire_on_commit=False) as session:
        quest = _quest_in_guild(session, guild_id, quest_id)
        before = _row_to_dict(quest)
        quest.enabled = enabled
        session.flush()
        _log_admin_action(
            session,
            actor_id=actor_id,
            action_type=AdminActionType.ENABLE if enabled else AdminActionType.DISABLE,
            target_table="quests",
            target_id=str(quest.id),
            before=before,
            after=_row_to_dict(quest),
        )
        notify_before_commit(session, guild_id, quest.quest_type)
        session.commit()
        session.refresh(quest)
        session.expunge(quest)

    _invalidate(gate, guild_id, quest.quest_type)
    return quest


def delete_quest(
    engine: Engine,
    gate: TrackingGate | None = None,
    *,
    guild_id: int,
    quest_id: int,
    actor_id: int,
) -> None:
    """Delete a quest; its progress records and completion journal cascade."""
    with Session(engine) as session:
        quest = _quest_in_guild(session, guild_id, quest_id)
        quest_type = quest.quest_type
        _log_admin_action(
            session,
            actor_id=actor_id,
            action_type=AdminActionType.DELETE,
            target_table="quests",
            target_id=str(quest.id),
            before=_row_to_dict(quest),
            after=None,
        )
        session.delete(quest)
        notify_before_commit(session, guild_id, quest_type)
        session.commit()

    _invalidate(gate, guild_id, quest_type)
    logger.info("Quest %s deleted from guild %s by %s", quest_id, guild_id, actor_id)


# ---------------------------------------------------------------------------
# Chain CRUD
# ---------------------------------------------------------------------------
def list_chains(engine: Engine, guild_id: int) -> list[QuestChain]:
    with Session(engine, expire_on_commit=False) as session:
        chains = list(session.scalars(
            select(QuestChain).where(QuestChain.guild_id == guild_id).order_by(QuestChain.id)
        ).all())
        session.expunge_all()
    return chains


def create_chain(
    engine: Engine,
    gate: TrackingGate | None = None,
    *,
    guild_id: int,
    actor_id: int,
    name: str,
    description: str | None = None,
    chain_rewards: dict | None = None,
    enabled: bool = True,
) -> QuestChain:
    data = {"name": name, "description": description,
            "chain_rewards": chain_rewards or {}, "enabled": enabled}
    _validate_chain(data)

    with Session(engine, expire_on_commit=False) as session:
        chain = QuestChain(guild_id=guild_id, **data)
        session.add(chain)
        session.flush()
        _log_admin_action(
            session,
            actor_id=actor_id,
            action_type=AdminActionType.CREATE,
            target_table="quest_chains",
            target_id=str(chain.id),
            before=None,
            after=_row_to_dict(chain),
        )
        notify_before_commit(session, guild_id)
        session.commit()
        session.refresh(chain)
        session.expunge(chain)

    _invalidate(gate, guild_id)
    return chain


def update_chain(
    engine: Engine,
    gate: TrackingGate | None = None,
    *,
    guild_id: int,
    chain_id: int,
    actor_id: int,
    **fields: Any,
) -> QuestChain:
    unknown = set(fields) - CHAIN_FIELDS
    if unknown:
        raise QuestValidationError(sorted(unknown)[0], "is not a chain field")

    with Session(engine, expire_on_commit=False) as session:
        chain = _chain_in_guild(session, guild_id, chain_id)
        before = _row_to_dict(chain)
        merged = {key: getattr(chain, key) for key in CHAIN_FIELDS}
        merged.update(fields)
        _validate_chain(merged)

        for key, value in fields.items():
            setattr(chain, key, value)
        session.flush()
        _log_admin_action(
            session,
            actor_id=actor_id,
            action_type=AdminActionType.UPDATE,
            target_table="quest_chains",
            target_id=str(chain.id),
            before=before,
            after=_row_to_dict(chain),
        )
        notify_before_commit(session, guild_id)
        session.commit()
        session.refresh(chain)
        session.expunge(chain)

    _invalidate(gate, guild_id)
    return chain


def delete_chain(
    engine: Engine,
    gate: TrackingGate | None = None,
    *,
    guild_id: int,
    chain_id: int,
    actor_id: int,
) -> None:
    """Delete a chain.  Its quests stay, unchained."""
    with Session(engine) as session:
        chain = _chain_in_guild(session, guild_id, chain_id)
        for quest in chain.quests:
            quest.chain_id = None
            quest.chain_position = None
        _log_admin_action(
            session,
            actor_id=actor_id,
            action_type=AdminActionType.DELETE,
            target_table="quest_chains",
            target_id=str(chain.id),
            before=_row_to_dict(chain),
            after=None,
        )
        session.delete(chain)
        notify_before_commit(session, guild_id)
        session.commit()

    _invalidate(gate, guild_id)
