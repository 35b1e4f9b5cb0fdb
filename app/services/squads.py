"""
Squad service: membership plus the squad (group) streak.

The squad streak is a deliberately small state machine, separate from the
per-user engine:

  - credit  : every member with a linked habit completed it today
              -> +1 if the squad was last credited yesterday, else restart at 1
  - revoke  : a credited day stops qualifying the same day (toggle off,
              habit deleted) -> give the day back
  - stale   : last credited day older than yesterday -> streak 0

Members without a linked habit do not take part. No freezes, no partial days.
Member streaks shown in squad views are read from persisted snapshots only.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from app.core.errors import NotFoundError, ValidationError
from app.models.habit import Habit
from app.models.squad import Squad, SquadMember
from app.services.streak_state import StreakSnapshot
from app.services.streak_sync import StreakSyncService
from app.services.users import get_user

logger = logging.getLogger("streaks.squads")


@dataclass
class MemberView:
    user_id: int
    username: str
    habit_id: Optional[int]
    completed_today: bool
    streak: StreakSnapshot


# ---------------------------------------------------------------------------
# Membership
# ---------------------------------------------------------------------------

def get_squad(db: Session, squad_id: int) -> Squad:
    squad = db.get(Squad, squad_id)
    if squad is None:
        raise NotFoundError("Squad", squad_id)
    return squad


def create_squad(db: Session, creator_id: int, name: str, description: Optional[str] = None) -> Squad:
    get_user(db, creator_id)
    if not name or not name.strip():
        raise ValidationError("name", "Squad name must not be empty.")
    squad = Squad(name=name.strip(), description=description, creator_id=creator_id)
    db.add(squad)
    db.flush()
    db.add(SquadMember(squad_id=squad.id, user_id=creator_id))
    db.commit()
    db.refresh(squad)
    logger.info("squad created", extra={"squad_id": squad.id, "creator_id": creator_id})
    return squad


def add_member(
    db: Session, squad_id: int, user_id: int, habit_id: Optional[int] = None
) -> SquadMember:
    """Add `user_id` to the squad, or re-point an existing member's habit link."""
    get_squad(db, squad_id)
    get_user(db, user_id)
    if habit_id is not None:
        habit = db.get(Habit, habit_id)
        if habit is None:
            raise NotFoundError("Habit", habit_id)
        if habit.user_id != user_id:
            raise ValidationError("habit_id", "Linked habit must belong to the member.", habit_id)

    member = (
        db.query(SquadMember)
        .filter(SquadMember.squad_id == squad_id, SquadMember.user_id == user_id)
        .first()
    )
    if member is None:
        member = SquadMember(squad_id=squad_id, user_id=user_id, habit_id=habit_id)
        db.add(member)
    else:
        member.habit_id = habit_id
    db.commit()
    db.refresh(member)
    return member


def list_members(db: Session, squad_id: int) -> list[SquadMember]:
    return (
        db.query(SquadMember)
        .filter(SquadMember.squad_id == squad_id)
        .order_by(SquadMember.id)
        .all()
    )


def member_views(db: Session, sync: StreakSyncService, squad_id: int) -> list[MemberView]:
    """Members with their persisted streak snapshot (never triggers a sync)."""
    today = sync.anchor.today()
    views = []
    for m in list_members(db, squad_id):
        user = get_user(db, m.user_id)
        habit = db.get(Habit, m.habit_id) if m.habit_id else None
        views.append(MemberView(
            user_id=m.user_id,
            username=user.username,
            habit_id=m.habit_id,
            completed_today=habit is not None and today in habit.completion_days,
            streak=sync.get_snapshot(db, m.user_id),
        ))
    return views


# ---------------------------------------------------------------------------
# Squad streak state machine
# ---------------------------------------------------------------------------

def _linked_habits(db: Session, squad_id: int) -> list[Habit]:
    return (
        db.query(Habit)
        .join(SquadMember, SquadMember.habit_id == Habit.id)
        .filter(SquadMember.squad_id == squad_id)
        .all()
    )


def _revoke_today(squad: Squad, today: date) -> None:
    squad.group_streak = max(0, squad.group_streak - 1)
    squad.last_completed_date_ist = today - timedelta(days=1) if squad.group_streak > 0 else None


def reset_if_stale(squad: Squad, today: date) -> bool:
    last = squad.last_completed_date_ist
    if squad.group_streak > 0 and (last is None or last < today - timedelta(days=1)):
        squad.group_streak = 0
        return True
    return False


def refresh_squad_streak(db: Session, squad: Squad, today: date) -> bool:
    """Apply credit / revoke / stale rules for `today`. Caller commits."""
    changed = reset_if_stale(squad, today)
    linked = _linked_habits(db, squad.id)
    if not linked:
        return changed

    all_done = all(today in h.completion_days for h in linked)
    last = squad.last_completed_date_ist
    if all_done and last != today:
        if last == today - timedelta(days=1):
            squad.group_streak += 1
        else:
            squad.group_streak = 1
        squad.last_completed_date_ist = today
        changed = True
    elif not all_done and last == today:
        _revoke_today(squad, today)
        changed = True

    if changed:
        logger.info(
            "squad streak updated",
            extra={"squad_id": squad.id, "group_streak": squad.group_streak},
        )
    return changed


def refresh_squads_for_user(db: Session, user_id: int, today: date) -> None:
    """Re-evaluate every active squad where `user_id` has a linked habit."""
    squads = (
        db.query(Squad)
        .join(SquadMember, SquadMember.squad_id == Squad.id)
        .filter(
            SquadMember.user_id == user_id,
            SquadMember.habit_id.isnot(None),
            Squad.is_active.is_(True),
        )
        .all()
    )
    if any([refresh_squad_streak(db, s, today) for s in squads]):
        db.commit()


def unlink_habit(db: Session, habit_id: int, today: date) -> None:
    """Drop squad links to a habit about to be deleted. Caller commits."""
    members = db.query(SquadMember).filter(SquadMember.habit_id == habit_id).all()
    for m in members:
        m.habit_id = None
        squad = db.get(Squad, m.squad_id)
        if squad is not None and squad.last_completed_date_ist == today:
            _revoke_today(squad, today)


def reset_stale_squad_streaks(db: Session, today: date) -> int:
    """Zero every squad streak whose last credited day is older than yesterday."""
    stale = [s for s in db.query(Squad).filter(Squad.group_streak > 0).all() if reset_if_stale(s, today)]
    if stale:
        db.commit()
        logger.info("stale squad streaks reset", extra={"count": len(stale)})
    return len(stale)
