"""
Squad + SquadMember — friend groups with their own simplified group streak.

The squad streak is independent of per-user streak state: it only counts days
on which every member with a linked habit completed that habit. No freezes,
no partial days. Maintained by app/services/squads.py.
"""
from datetime import datetime, date
from sqlalchemy import Integer, String, Text, Boolean, DateTime, Date, ForeignKey, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base


class Squad(Base):
    __tablename__ = "squads"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    creator_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    group_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_completed_date_ist: Mapped[date | None] = mapped_column(Date, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )


class SquadMember(Base):
    __tablename__ = "squad_members"
    __table_args__ = (
        UniqueConstraint("squad_id", "user_id", name="uq_squad_member"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    squad_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("squads.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    habit_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("habits.id", ondelete="SET NULL"), nullable=True, index=True
    )
    joined_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
