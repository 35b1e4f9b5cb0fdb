"""
User service: thin account store. Authentication is handled upstream; login
here only resolves the account and refreshes its streak.
"""
from __future__ import annotations

from typing import Optional

from sqlalchemy.orm import Session

from app.core.errors import NotFoundError, ValidationError
from app.models.user import User


def create_user(db: Session, username: str, display_name: Optional[str] = None) -> User:
    username = (username or "").strip()
    if not username:
        raise ValidationError("username", "Username must not be empty.")
    if db.query(User.id).filter(User.username == username).first() is not None:
        raise ValidationError("username", f"Username {username!r} is already taken.", username)
    user = User(username=username, display_name=display_name)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def get_user(db: Session, user_id: int) -> User:
    user = db.get(User, user_id)
    if user is None:
        raise NotFoundError("User", user_id)
    return user


def get_user_by_username(db: Session, username: str) -> User:
    user = db.query(User).filter(User.username == username.strip()).first()
    if user is None:
        raise NotFoundError("User", username)
    return user
