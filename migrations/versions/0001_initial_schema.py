"""streak engine schema

Revision ID: 0001
Revises:
Create Date: 2026-10-16 00:00:00.000000

users, habits, habit_completions (ledger), streak_states (one per user,
versioned for optimistic concurrency), squads, squad_members.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # --- ENUM types ---
    habit_type_enum = sa.Enum("build", "break", name="habit_type_enum")
    habit_type_enum.create(op.get_bind(), checkfirst=True)

    habit_visibility_enum = sa.Enum("public", "private", name="habit_visibility_enum")
    habit_visibility_enum.create(op.get_bind(), checkfirst=True)

    # --- users ---
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("username", sa.String(64), nullable=False),
        sa.Column("display_name", sa.String(128), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_users_id", "users", ["id"])
    op.create_index("ix_users_username", "users", ["username"], unique=True)

    # --- habits ---
    op.create_table(
        "habits",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.String(128), nullable=False),
        sa.Column("identity", sa.String(128), nullable=False, server_default=""),
        sa.Column("habit_type", sa.Enum(
            "build", "break", name="habit_type_enum", create_type=False,
        ), nullable=False),
        sa.Column("goal", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("active_days", sa.Text(), nullable=False),
        sa.Column("duration_target", sa.Integer(), nullable=True),
        sa.Column("visibility", sa.Enum(
            "public", "private", name="habit_visibility_enum", create_type=False,
        ), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_habits_id", "habits", ["id"])
    op.create_index("ix_habits_user_id", "habits", ["user_id"])

    # --- habit_completions ---
    op.create_table(
        "habit_completions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("habit_id", sa.Integer(), sa.ForeignKey("habits.id", ondelete="CASCADE"), nullable=False),
        sa.Column("day", sa.Date(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("habit_id", "day", name="uq_habit_completion_day"),
    )
    op.create_index("ix_habit_completions_id", "habit_completions", ["id"])
    op.create_index("ix_habit_completions_habit_id", "habit_completions", ["habit_id"])
    op.create_index("ix_habit_completions_day", "habit_completions", ["day"])

    # --- streak_states ---
    op.create_table(
        "streak_states",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("streak_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("history", sa.Text(), nullable=False, server_default="[]"),
        sa.Column("ember_days", sa.Text(), nullable=False, server_default="[]"),
        sa.Column("frozen_days", sa.Text(), nullable=False, server_default="[]"),
        sa.Column("streak_freezes", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("awarded_milestones", sa.Text(), nullable=False, server_default="[]"),
        sa.Column("streak_state", sa.String(16), nullable=False, server_default="extinguished"),
        sa.Column("completion_percentage", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_completed_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_completed_date_ist", sa.Date(), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("streak_count >= 0", name="ck_streak_states_count_non_negative"),
        sa.CheckConstraint("streak_freezes >= 0", name="ck_streak_states_freezes_non_negative"),
        sa.CheckConstraint(
            "completion_percentage BETWEEN 0 AND 100", name="ck_streak_states_percentage_range",
        ),
        sa.CheckConstraint(
            "streak_state IN ('active','frozen','extinguished')", name="ck_streak_states_state",
        ),
    )
    op.create_index("ix_streak_states_id", "streak_states", ["id"])
    op.create_index("ix_streak_states_user_id", "streak_states", ["user_id"], unique=True)

    # --- squads ---
    op.create_table(
        "squads",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(128), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("creator_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("group_streak", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_completed_date_ist", sa.Date(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_squads_id", "squads", ["id"])

    # --- squad_members ---
    op.create_table(
        "squad_members",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("squad_id", sa.Integer(), sa.ForeignKey("squads.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("habit_id", sa.Integer(), sa.ForeignKey("habits.id", ondelete="SET NULL"), nullable=True),
        sa.Column("joined_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("squad_id", "user_id", name="uq_squad_member"),
    )
    op.create_index("ix_squad_members_id", "squad_members", ["id"])
    op.create_index("ix_squad_members_squad_id", "squad_members", ["squad_id"])
    op.create_index("ix_squad_members_user_id", "squad_members", ["user_id"])
    op.create_index("ix_squad_members_habit_id", "squad_members", ["habit_id"])


def downgrade() -> None:
    op.drop_table("squad_members")
    op.drop_table("squads")
    op.drop_table("streak_states")
    op.drop_table("habit_completions")
    op.drop_table("habits")
    op.drop_table("users")
    sa.Enum(name="habit_visibility_enum").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="habit_type_enum").drop(op.get_bind(), checkfirst=True)
