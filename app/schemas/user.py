from typing import Optional
from pydantic import BaseModel, Field

from app.schemas.streak import StreakSnapshotResponse


class UserCreateRequest(BaseModel):
    username: str = Field(min_length=1, max_length=64, examples=["asha"])
    display_name: Optional[str] = Field(default=None, max_length=128)


class LoginRequest(BaseModel):
    username: str = Field(min_length=1, max_length=64)


class UserResponse(BaseModel):
    id: int
    username: str
    display_name: Optional[str] = None


class ProfileResponse(BaseModel):
    user: UserResponse
    streak: StreakSnapshotResponse
