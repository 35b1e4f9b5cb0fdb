"""
Tests for settings defaults that deployment depends on.
"""
from sqlalchemy.engine import make_url

from app.core.config import Settings


class TestDatabaseUrl:
    def test_default_names_the_installed_driver(self):
        url = make_url(Settings.model_fields["DATABASE_URL"].default)
        assert url.drivername == "postgresql+psycopg2"
        assert url.database == "streaks"

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", "sqlite:///./other.db")
        assert Settings().DATABASE_URL == "sqlite:///./other.db"
