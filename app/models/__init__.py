from .user import User
from .habit import Habit, HabitCompletion
from .streak import StreakRecord
from .squad import Squad, SquadMember

__all__ = [
    "User",
    "Habit",
    "HabitCompletion",
    "StreakRecord",
    "Squad",
    "SquadMember",
]
