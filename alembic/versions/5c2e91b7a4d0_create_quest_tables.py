"""Create quest catalog, progress and journal tables

Revision ID: 5c2e91b7a4d0
Revises:
Create Date: 2026-10-19 09:12:40.118274

"""
from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = '5c2e91b7a4d0'
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Create quest_chains, quests, quest_progress and their journals."""

    # --- quest_chains ---
    op.create_table(
        "quest_chains",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("guild_id", sa.BigInteger, nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("chain_rewards", postgresql.JSONB, nullable=True),
        sa.Column("enabled", sa.Boolean, nullable=True),
        sa.Column(
            "created_at", sa.DateTime(timezone=True),
            server_default=sa.func.now(), nullable=True,
        ),
        sa.UniqueConstraint("guild_id", "name", name="uq_quest_chains_guild_name"),
    )

    # --- quests ---
    op.create_table(
        "quests",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("guild_id", sa.BigInteger, nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("emoji", sa.String(50), nullable=True),
        sa.Column("category", sa.String(50), nullable=False, server_default="general"),
        sa.Column("quest_type", sa.String(50), nullable=False),
        sa.Column("requirements", postgresql.JSONB, nullable=False, server_default="{}"),
        sa.Column("rewards", postgresql.JSONB, nullable=True),
        sa.Column("milestones", postgresql.JSONB, nullable=True),
        sa.Column("reset_type", sa.String(10), nullable=False, server_default="never"),
        sa.Column("reset_time", sa.String(5), nullable=True),
        sa.Column("reset_day_of_week", sa.Integer, nullable=True),
        sa.Column("completion_cooldown_hours", sa.Float, nullable=True),
        sa.Column("max_completions", sa.Integer, nullable=True),
        sa.Column("prerequisite_quest_ids", postgresql.JSONB, nullable=True),
        sa.Column(
            "chain_id", sa.Integer,
            sa.ForeignKey("quest_chains.id", ondelete="SET NULL"), nullable=True,
        ),
        sa.Column("chain_position", sa.Integer, nullable=True),
        sa.Column("start_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("end_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("deadline_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("time_limit_hours", sa.Float, nullable=True),
        sa.Column("enabled", sa.Boolean, nullable=True),
        sa.Column("visible", sa.Boolean, nullable=True),
        sa.Column(
            "created_at", sa.DateTime(timezone=True),
            server_default=sa.func.now(), nullable=True,
        ),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True),
            server_default=sa.func.now(), nullable=True,
        ),
    )
    op.create_index(
        "ix_quests_guild_type_enabled", "quests", ["guild_id", "quest_type", "enabled"],
    )
    op.create_index("ix_quests_chain", "quests", ["chain_id", "chain_position"])

    # --- quest_progress ---
    op.create_table(
        "quest_progress",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "quest_id", sa.Integer,
            sa.ForeignKey("quests.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("guild_id", sa.BigInteger, nullable=False),
        sa.Column("user_id", sa.BigInteger, nullable=False),
        sa.Column("current_progress", sa.Integer, nullable=False, server_default="0"),
        sa.Column("target_progress", sa.Integer, nullable=False),
        sa.Column("completed", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completion_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("last_completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reset_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer, nullable=False, server_default="0"),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True),
            server_default=sa.func.now(), nullable=True,
        ),
        sa.UniqueConstraint("quest_id", "user_id", name="uq_quest_progress_quest_user"),
    )
    op.create_index("ix_quest_progress_guild_user", "quest_progress", ["guild_id", "user_id"])
    op.create_index("ix_quest_progress_reset_at", "quest_progress", ["quest_id", "reset_at"])

    # --- quest_completions ---
    op.create_table(
        "quest_completions",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "quest_id", sa.Integer,
            sa.ForeignKey("quests.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("guild_id", sa.BigInteger, nullable=False),
        sa.Column("user_id", sa.BigInteger, nullable=False),
        sa.Column("progress_achieved", sa.Integer, nullable=False),
        sa.Column("rewards_given", postgresql.JSONB, nullable=True),
        sa.Column("reward_outcomes", postgresql.JSONB, nullable=True),
        sa.Column("completion_number", sa.Integer, nullable=False),
        sa.Column("source", sa.String(20), nullable=False, server_default="activity"),
        sa.Column(
            "completed_at", sa.DateTime(timezone=True),
            server_default=sa.func.now(), nullable=True,
        ),
        sa.UniqueConstraint(
            "quest_id", "user_id", "completion_number",
            name="uq_quest_completions_sequence",
        ),
    )
    op.create_index(
        "ix_quest_completions_guild_time", "quest_completions", ["guild_id", "completed_at"],
    )

    # --- quest_chain_progress ---
    op.create_table(
        "quest_chain_progress",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "chain_id", sa.Integer,
            sa.ForeignKey("quest_chains.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("guild_id", sa.BigInteger, nullable=False),
        sa.Column("user_id", sa.BigInteger, nullable=False),
        sa.Column("completed_quest_ids", postgresql.JSONB, nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("chain_rewards_given", sa.Boolean, nullable=True),
        sa.UniqueConstraint("chain_id", "user_id", name="uq_quest_chain_progress_chain_user"),
    )

    # --- quest_milestones ---
    op.create_table(
        "quest_milestones",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "progress_id", sa.Integer,
            sa.ForeignKey("quest_progress.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("milestone_progress", sa.Integer, nullable=False),
        sa.Column("rewards_given", postgresql.JSONB, nullable=True),
        sa.Column(
            "reached_at", sa.DateTime(timezone=True),
            server_default=sa.func.now(), nullable=True,
        ),
        sa.UniqueConstraint(
            "progress_id", "milestone_progress", name="uq_quest_milestones_progress_value",
        ),
    )

    # --- admin_log ---
    op.create_table(
        "admin_log",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("actor_id", sa.BigInteger, nullable=False),
        sa.Column("action_type", sa.String(50), nullable=False),
        sa.Column("target_table", sa.String(50), nullable=False),
        sa.Column("target_id", sa.String(100), nullable=True),
        sa.Column("before_snapshot", postgresql.JSONB, nullable=True),
        sa.Column("after_snapshot", postgresql.JSONB, nullable=True),
        sa.Column("reason", sa.Text, nullable=True),
        sa.Column(
            "timestamp", sa.DateTime(timezone=True),
            server_default=sa.func.now(), nullable=True,
        ),
    )
    op.create_index("ix_admin_log_actor_time", "admin_log", ["actor_id", "timestamp"])
    op.create_index(
        "ix_admin_log_target", "admin_log", ["target_table", "target_id", "timestamp"],
    )


def downgrade() -> None:
    """Drop every quest table."""
    op.drop_index("ix_admin_log_target", table_name="admin_log")
    op.drop_index("ix_admin_log_actor_time", table_name="admin_log")
    op.drop_table("admin_log")
    op.drop_table("quest_milestones")
    op.drop_table("quest_chain_progress")
    op.drop_index("ix_quest_completions_guild_time", table_name="quest_completions")
    op.drop_table("quest_completions")
    op.drop_index("ix_quest_progress_reset_at", table_name="quest_progress")
    op.drop_index("ix_quest_progress_guild_user", table_name="quest_progress")
    op.drop_table("quest_progress")
    op.drop_index("ix_quests_chain", table_name="quests")
    op.drop_index("ix_quests_guild_type_enabled", table_name="quests")
    op.drop_table("quests")
    op.drop_table("quest_chains")
