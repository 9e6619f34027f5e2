"""
questline.database.models — SQLAlchemy 2.0 Data Models
=======================================================

Tables:
- quests               — Per-guild quest catalog (admin-edited definitions)
- quest_chains         — Ordered groups of quests with a completion bonus
- quest_progress       — Per (quest, user) mutable progress records
- quest_completions    — Append-only completion journal (audit + leaderboards)
- quest_chain_progress — Per (chain, user) chain-completion bookkeeping
- quest_milestones     — Partial-progress milestones already rewarded
- admin_log            — Append-only audit trail for catalog writes
"""

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all Questline ORM models."""


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class ResetType(enum.StrEnum):
    """How often a quest's progress is wiped for another round."""
    NEVER = "never"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


PERIODIC_RESET_TYPES: frozenset[str] = frozenset({
    ResetType.DAILY, ResetType.WEEKLY, ResetType.MONTHLY,
})


class ActivityType(enum.StrEnum):
    """Activity keys emitted by the bot's listeners.

    Quests may use any string as ``quest_type``; these are the ones the
    bundled cogs produce.
    """
    MESSAGE_SENT = "message_sent"
    REACTION_ADDED = "reaction_added"
    VOICE_MINUTES = "voice_minutes"
    THREAD_CREATED = "thread_created"


class CompletionSource(enum.StrEnum):
    """What drove a completion."""
    ACTIVITY = "activity"
    MANUAL = "manual"


class AdminActionType(enum.StrEnum):
    """Categories of admin mutations recorded in admin_log."""
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    ENABLE = "ENABLE"
    DISABLE = "DISABLE"


# ---------------------------------------------------------------------------
# QuestChain — ordered quest groups with a bonus for finishing them all
# ---------------------------------------------------------------------------
class QuestChain(Base):
    __tablename__ = "quest_chains"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    guild_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, default=None)
    chain_rewards: Mapped[dict | None] = mapped_column(JSONB, default=dict)
    enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    quests: Mapped[list[Quest]] = relationship(
        back_populates="chain", order_by="Quest.chain_position"
    )

    __table_args__ = (
        UniqueConstraint("guild_id", "name", name="uq_quest_chains_guild_name"),
    )

    def __repr__(self) -> str:
        return f"<QuestChain id={self.id} name={self.name!r}>"


# ---------------------------------------------------------------------------
# Quest — admin-defined goal with requirements, rewards and a reset policy
# ---------------------------------------------------------------------------
class Quest(Base):
    """One quest definition.

    ``requirements`` holds ``{"target": int, "channel_ids": [int, ...]}``;
    ``rewards`` holds any subset of ``coins``, ``xp``, ``role_id``,
    ``item_id`` and ``item_quantity``.  ``milestones`` is a list of
    ``{"progress": percent, "rewards": {...}, "message": str}``.
    """
    __tablename__ = "quests"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    guild_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, default=None)
    emoji: Mapped[str | None] = mapped_column(String(50), default=None)
    category: Mapped[str] = mapped_column(String(50), nullable=False, default="general")

    # What is tracked and how much of it
    quest_type: Mapped[str] = mapped_column(String(50), nullable=False)
    requirements: Mapped[dict] = mapped_column(JSONB, nullable=False, default=dict)
    rewards: Mapped[dict | None] = mapped_column(JSONB, default=dict)
    milestones: Mapped[list | None] = mapped_column(JSONB, default=list)

    # Repetition
    reset_type: Mapped[str] = mapped_column(
        String(10), nullable=False, default=ResetType.NEVER.value
    )
    reset_time: Mapped[str | None] = mapped_column(String(5), default=None)  # "HH:MM"
    reset_day_of_week: Mapped[int | None] = mapped_column(Integer, default=None)  # 0 = Sunday
    completion_cooldown_hours: Mapped[float | None] = mapped_column(Float, default=None)
    max_completions: Mapped[int | None] = mapped_column(Integer, default=None)

    # Gating
    prerequisite_quest_ids: Mapped[list | None] = mapped_column(JSONB, default=list)
    chain_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("quest_chains.id", ondelete="SET NULL"), nullable=True
    )
    chain_position: Mapped[int | None] = mapped_column(Integer, nullable=True)
    start_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    end_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    deadline_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    time_limit_hours: Mapped[float | None] = mapped_column(Float, default=None)

    # Controls
    enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    visible: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    chain: Mapped[QuestChain | None] = relationship(back_populates="quests")
    progress: Mapped[list[QuestProgress]] = relationship(
        back_populates="quest", cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index("ix_quests_guild_type_enabled", "guild_id", "quest_type", "enabled"),
        Index("ix_quests_chain", "chain_id", "chain_position"),
    )

    @property
    def target(self) -> int:
        """Requirement target from the live definition."""
        return int((self.requirements or {}).get("target") or 0)

    def __repr__(self) -> str:
        return f"<Quest id={self.id} name={self.name!r} type={self.quest_type!r}>"


# ---------------------------------------------------------------------------
# QuestProgress — per (quest, user) progress record
# ---------------------------------------------------------------------------
class QuestProgress(Base):
    """Mutable progress for one member on one quest.

    ``target_progress`` is snapshotted at creation so later catalog edits
    don't move an in-flight goal.  ``version`` is bumped on every write and
    guards all conditional updates.
    """
    __tablename__ = "quest_progress"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    quest_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("quests.id", ondelete="CASCADE"), nullable=False
    )
    guild_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    user_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    current_progress: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    target_progress: Mapped[int] = mapped_column(Integer, nullable=False)
    completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    completion_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )
    reset_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    quest: Mapped[Quest] = relationship(back_populates="progress")

    __table_args__ = (
        UniqueConstraint("quest_id", "user_id", name="uq_quest_progress_quest_user"),
        Index("ix_quest_progress_guild_user", "guild_id", "user_id"),
        Index("ix_quest_progress_reset_at", "quest_id", "reset_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<QuestProgress quest={self.quest_id} user={self.user_id} "
            f"{self.current_progress}/{self.target_progress} done={self.completed}>"
        )


# ---------------------------------------------------------------------------
# QuestCompletion — append-only completion journal
# ---------------------------------------------------------------------------
class QuestCompletion(Base):
    __tablename__ = "quest_completions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    quest_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("quests.id", ondelete="CASCADE"), nullable=False
    )
    guild_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    user_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    progress_achieved: Mapped[int] = mapped_column(Integer, nullable=False)
    rewards_given: Mapped[dict | None] = mapped_column(JSONB, default=dict)
    reward_outcomes: Mapped[dict | None] = mapped_column(JSONB, default=dict)
    completion_number: Mapped[int] = mapped_column(Integer, nullable=False)
    source: Mapped[str] = mapped_column(
        String(20), nullable=False, default=CompletionSource.ACTIVITY.value
    )
    completed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint(
            "quest_id", "user_id", "completion_number",
            name="uq_quest_completions_sequence",
        ),
        Index("ix_quest_completions_guild_time", "guild_id", "completed_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<QuestCompletion quest={self.quest_id} user={self.user_id} "
            f"n={self.completion_number}>"
        )


# ---------------------------------------------------------------------------
# QuestChainProgress — chain completion bookkeeping
# ---------------------------------------------------------------------------
class QuestChainProgress(Base):
    __tablename__ = "quest_chain_progress"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    chain_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("quest_chains.id", ondelete="CASCADE"), nullable=False
    )
    guild_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    user_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    completed_quest_ids: Mapped[list | None] = mapped_column(JSONB, default=list)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    chain_rewards_given: Mapped[bool] = mapped_column(Boolean, default=False)

    __table_args__ = (
        UniqueConstraint("chain_id", "user_id", name="uq_quest_chain_progress_chain_user"),
    )

    def __repr__(self) -> str:
        return f"<QuestChainProgress chain={self.chain_id} user={self.user_id}>"


# ---------------------------------------------------------------------------
# QuestMilestoneLog — partial-progress rewards already handed out
# ---------------------------------------------------------------------------
class QuestMilestoneLog(Base):
    __tablename__ = "quest_milestones"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    progress_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("quest_progress.id", ondelete="CASCADE"), nullable=False
    )
    milestone_progress: Mapped[int] = mapped_column(Integer, nullable=False)
    rewards_given: Mapped[dict | None] = mapped_column(JSONB, default=dict)
    reached_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint(
            "progress_id", "milestone_progress", name="uq_quest_milestones_progress_value",
        ),
    )

    def __repr__(self) -> str:
        return f"<QuestMilestoneLog progress={self.progress_id} at={self.milestone_progress}>"


# ---------------------------------------------------------------------------
# AdminLog — append-only audit trail
# ---------------------------------------------------------------------------
class AdminLog(Base):
    __tablename__ = "admin_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    actor_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    action_type: Mapped[str] = mapped_column(String(50), nullable=False)
    target_table: Mapped[str] = mapped_column(String(50), nullable=False)
    target_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    before_snapshot: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    after_snapshot: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index("ix_admin_log_actor_time", "actor_id", "timestamp"),
        Index("ix_admin_log_target", "target_table", "target_id", "timestamp"),
    )

    def __repr__(self) -> str:
        return f"<AdminLog id={self.id} actor={self.actor_id} action={self.action_type}>"
