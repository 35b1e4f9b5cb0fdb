"""
Shared pytest fixtures.

Uses a throwaway SQLite database so no Postgres is required for tests.
Tables are rebuilt per test; "today" is pinned by a FixedTimeAnchor
(2024-01-10, a Wednesday) unless a test moves it.
"""
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

import app.models  # noqa: F401
from app.db.base import Base, get_db
from app.main import app
from app.services.streak_sync import StreakSyncService, get_streak_sync
from app.services.time_anchor import FixedTimeAnchor

SQLITE_URL = "sqlite:///./test_streaks.db"

engine = create_engine(SQLITE_URL, connect_args={"check_same_thread": False})
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

TODAY = "2024-01-10"


def override_get_db():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture(autouse=True)
def create_tables():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def db():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture()
def other_db():
    """A second, independent session: another worker writing the same rows."""
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture()
def anchor():
    return FixedTimeAnchor(TODAY)


@pytest.fixture()
def sync(anchor):
    return StreakSyncService(anchor)


@pytest.fixture()
def client(sync):
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_streak_sync] = lambda: sync
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
