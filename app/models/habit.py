"""
Habit + HabitCompletion — the per-user habit records and the completion ledger.

The ledger is a set: one row per (habit_id, day), enforced by a unique
constraint. `day` is a civil date in the streak timezone.

active_days: JSON-encoded list of ISO weekdays (1=Mon .. 7=Sun) stored as Text.
"""
import enum
import json
from datetime import datetime, date
from sqlalchemy import Integer, String, Text, DateTime, Date, Enum, ForeignKey, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base

ALL_WEEKDAYS = [1, 2, 3, 4, 5, 6, 7]
DEFAULT_DURATION_TARGET = 21


class HabitType(str, enum.Enum):
    build = "build"
    break_ = "break"


class HabitVisibility(str, enum.Enum):
    public = "public"
    private = "private"


class Habit(Base):
    __tablename__ = "habits"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    identity: Mapped[str] = mapped_column(String(128), nullable=False, default="")
    habit_type: Mapped[str] = mapped_column(
        Enum(HabitType, name="habit_type_enum", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=HabitType.build,
    )
    goal: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    active_days: Mapped[str] = mapped_column(
        Text, nullable=False, default=lambda: json.dumps(ALL_WEEKDAYS),
        comment="JSON list of ISO weekdays, 1=Mon .. 7=Sun",
    )
    duration_target: Mapped[int | None] = mapped_column(
        Integer, nullable=True,
        comment="Number of completions after which the habit is finished; NULL never finishes",
    )
    visibility: Mapped[str] = mapped_column(
        Enum(HabitVisibility, name="habit_visibility_enum"),
        nullable=False,
        default=HabitVisibility.private,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    completions: Mapped[list["HabitCompletion"]] = relationship(
        back_populates="habit",
        cascade="all, delete-orphan",
        order_by="HabitCompletion.day",
    )

    @property
    def active_day_set(self) -> frozenset[int]:
        return frozenset(json.loads(self.active_days or "[]"))

    @property
    def completion_days(self) -> frozenset[date]:
        return frozenset(c.day for c in self.completions)


class HabitCompletion(Base):
    __tablename__ = "habit_completions"
    __table_args__ = (
        UniqueConstraint("habit_id", "day", name="uq_habit_completion_day"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    habit_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("habits.id", ondelete="CASCADE"), nullable=False, index=True
    )
    day: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    habit: Mapped[Habit] = relationship(back_populates="completions")
