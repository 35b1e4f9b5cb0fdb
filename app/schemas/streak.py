"""
Streak request / response schemas.

GET  /users/{id}/streak             → StreakSnapshotResponse
POST /users/{id}/streak/sync        → StreakSnapshotResponse
GET  /users/{id}/streak/recovery    → RecoveryPlanResponse
POST /users/{id}/streak/freeze      → FreezeResponse
GET  /users/{id}/streak/count       → StreakCountResponse
"""
from __future__ import annotations

from datetime import date
from typing import Literal, Optional

from pydantic import BaseModel, Field, StrictInt

from app.services.recovery import RecoveryPlan
from app.services.streak_state import StreakSnapshot


class StreakSnapshotResponse(BaseModel):
    streak: int = Field(description="Consecutive full or frozen days ending today or yesterday.")
    streakUpdated: bool = Field(description="True if this call wrote a change.")
    lastCompletedDate: Optional[str] = Field(default=None, description="Timestamp of the last credited day.")
    lastCompletedDateIST: Optional[str] = Field(default=None, description="Last full or ember civil day.")
    history: list[str]
    emberDays: list[str]
    frozenDays: list[str]
    streakFreezes: int
    streakState: Literal["active", "frozen", "extinguished"]
    completionPercentage: int = Field(ge=0, le=100)
    completedHabits: int
    totalHabits: int

    @classmethod
    def from_snapshot(cls, s: StreakSnapshot) -> "StreakSnapshotResponse":
        return cls(
            streak=s.streak,
            streakUpdated=s.streak_updated,
            lastCompletedDate=s.last_completed_date.isoformat() if s.last_completed_date else None,
            lastCompletedDateIST=str(s.last_completed_date_ist) if s.last_completed_date_ist else None,
            history=[str(d) for d in s.history],
            emberDays=[str(d) for d in s.ember_days],
            frozenDays=[str(d) for d in s.frozen_days],
            streakFreezes=s.streak_freezes,
            streakState=s.streak_state.value,
            completionPercentage=s.completion_percentage,
            completedHabits=s.completed_habits,
            totalHabits=s.total_habits,
        )


class RecoveryPlanResponse(BaseModel):
    recoverable: bool
    missingDates: list[str] = Field(description="Missing civil days, newest first.")
    daysNeeded: int

    @classmethod
    def from_plan(cls, plan: RecoveryPlan) -> "RecoveryPlanResponse":
        return cls(
            recoverable=plan.recoverable,
            missingDates=[str(d) for d in plan.missing_dates],
            daysNeeded=plan.days_needed,
        )


class FreezeResponse(BaseModel):
    message: str
    recovery: RecoveryPlanResponse
    streak: StreakSnapshotResponse


class StreakCountResponse(BaseModel):
    userId: int
    streak: int
    asOf: date


# ---------------------------------------------------------------------------
# Admin / debug
# ---------------------------------------------------------------------------

class SetFreezesRequest(BaseModel):
    freezes: StrictInt = Field(description="New freeze balance (0 .. MAX_STREAK_FREEZES).")


class AddHistoryRequest(BaseModel):
    dates: list[str] = Field(description="Civil days to mark as full, YYYY-MM-DD.", examples=[["2026-02-18"]])


class PresetRequest(BaseModel):
    preset: str = Field(examples=["test-freeze", "test-recovery", "test-long-streak"])


class AdminStreakResponse(BaseModel):
    message: str
    streak: StreakSnapshotResponse
