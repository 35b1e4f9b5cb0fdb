"""
Squad request / response schemas.
"""
from typing import Optional
from pydantic import BaseModel, Field

from app.schemas.streak import StreakSnapshotResponse


class SquadCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=128)
    creator_id: int
    description: Optional[str] = None


class AddMemberRequest(BaseModel):
    user_id: int
    habit_id: Optional[int] = Field(default=None, description="Habit counted toward the squad streak.")


class SquadMemberResponse(BaseModel):
    user_id: int
    username: str
    habit_id: Optional[int]
    completed_today: bool
    streak: StreakSnapshotResponse


class SquadResponse(BaseModel):
    id: int
    name: str
    description: Optional[str]
    creator_id: int
    group_streak: int
    last_completed_date_ist: Optional[str]
    members: list[SquadMemberResponse] = Field(default_factory=list)


class StaleResetResponse(BaseModel):
    reset: int
