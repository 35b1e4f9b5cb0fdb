"""
StreakRecord — persisted streak state, one row per user.

Derived data: every field here is written exclusively by
app/services/streak_sync.py. Day sets are JSON-encoded lists of
"YYYY-MM-DD" strings stored as Text; awarded_milestones is a JSON list of ints.

`version` is the SQLAlchemy version counter: a write against a row that
changed underneath raises StaleDataError, which the sync service retries.
"""
from datetime import datetime, date
from sqlalchemy import Integer, String, Text, DateTime, Date, ForeignKey, CheckConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base


class StreakRecord(Base):
    __tablename__ = "streak_states"
    __table_args__ = (
        CheckConstraint("streak_count >= 0", name="ck_streak_states_count_non_negative"),
        CheckConstraint("streak_freezes >= 0", name="ck_streak_states_freezes_non_negative"),
        CheckConstraint(
            "completion_percentage BETWEEN 0 AND 100",
            name="ck_streak_states_percentage_range",
        ),
        CheckConstraint(
            "streak_state IN ('active','frozen','extinguished')",
            name="ck_streak_states_state",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True, index=True
    )
    streak_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    history: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    ember_days: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    frozen_days: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    streak_freezes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    awarded_milestones: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    streak_state: Mapped[str] = mapped_column(String(16), nullable=False, default="extinguished")
    completion_percentage: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_completed_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_completed_date_ist: Mapped[date | None] = mapped_column(
        Date, nullable=True,
        comment="Most recent civil day added to history or ember days",
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    __mapper_args__ = {"version_id_col": version}
