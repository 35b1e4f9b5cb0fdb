"""
Habit request / response schemas.

POST   /users/{id}/habits   → HabitCreateRequest → HabitWithStreakResponse
GET    /users/{id}/habits   → list[HabitResponse]
PUT    /habits/{id}         → HabitUpdateRequest → HabitWithStreakResponse
POST   /habits/{id}/toggle  → ToggleRequest      → ToggleResponse
DELETE /habits/{id}         → HabitDeletedResponse
"""
from __future__ import annotations

from datetime import date
from typing import Annotated, Literal, Optional

from pydantic import BaseModel, Field, field_validator

from app.models.habit import ALL_WEEKDAYS, DEFAULT_DURATION_TARGET, Habit
from app.schemas.streak import StreakSnapshotResponse


def _ev(v) -> str:
    return v.value if hasattr(v, "value") else str(v)


class HabitCreateRequest(BaseModel):
    name: Annotated[str, Field(min_length=1, max_length=128, examples=["Morning run"])]
    identity: str = Field(default="", max_length=128, examples=["I am a runner"])
    type: Literal["build", "break"] = "build"
    goal: int = Field(default=1, ge=1)
    days: list[int] = Field(
        default_factory=lambda: list(ALL_WEEKDAYS),
        description="Active ISO weekdays, 1=Mon .. 7=Sun.",
    )
    duration: Optional[int] = Field(
        default=DEFAULT_DURATION_TARGET, ge=1,
        description="Completions after which the habit is finished. Null for open-ended.",
    )
    visibility: Literal["public", "private"] = "private"

    @field_validator("name", mode="before")
    @classmethod
    def strip_and_check_empty(cls, v: str) -> str:
        stripped = v.strip() if isinstance(v, str) else v
        if not stripped:
            raise ValueError("name must not be empty after stripping whitespace")
        return stripped


class HabitUpdateRequest(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=128)
    completions: Optional[list[date]] = Field(
        default=None, description="Full replacement of the completion ledger. Days after today are rejected."
    )


class ToggleRequest(BaseModel):
    day: Optional[date] = Field(
        default=None, description="Civil day to toggle. Defaults to today in the streak timezone."
    )


class HabitResponse(BaseModel):
    id: int
    userId: int
    name: str
    identity: str
    type: str
    goal: int
    activeDays: list[int]
    durationTarget: Optional[int]
    visibility: str
    completions: list[str]
    finished: bool

    @classmethod
    def from_habit(cls, h: Habit) -> "HabitResponse":
        days = sorted(h.completion_days)
        return cls(
            id=h.id,
            userId=h.user_id,
            name=h.name,
            identity=h.identity,
            type=_ev(h.habit_type),
            goal=h.goal,
            activeDays=sorted(h.active_day_set),
            durationTarget=h.duration_target,
            visibility=_ev(h.visibility),
            completions=[str(d) for d in days],
            finished=h.duration_target is not None and len(days) >= h.duration_target,
        )


class HabitWithStreakResponse(BaseModel):
    habit: HabitResponse
    streak: StreakSnapshotResponse


class ToggleResponse(BaseModel):
    habit: HabitResponse
    day: str
    completed: bool
    streak: StreakSnapshotResponse


class HabitDeletedResponse(BaseModel):
    message: str
    streak: StreakSnapshotResponse
