from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    DATABASE_URL: str = "postgresql+psycopg2://streaks:streaks@db:5432/streaks"
    APP_ENV: str = "development"
    SECRET_KEY: str = "changeme-secret-key"
    LOG_LEVEL: str = "INFO"

    # Comma-separated allowed origins, or "*" to allow all.
    # Example: "https://myapp.com,https://api.myapp.com"
    CORS_ORIGINS: str = "*"

    # Every civil date in the streak engine is evaluated in this zone.
    STREAK_TIMEZONE: str = "Asia/Kolkata"

    # One freeze is paid out every N streak days (at most once per milestone).
    FREEZE_MILESTONE_INTERVAL: int = 7
    # How many missing days the recovery planner scans before giving up.
    RECOVERY_SCAN_CAP: int = 30
    # Upper bound accepted by the admin set-freezes operation.
    MAX_STREAK_FREEZES: int = 10
    # Optimistic-concurrency retries for one streak write.
    SYNC_MAX_RETRIES: int = 3

    @property
    def cors_origins_list(self) -> list[str]:
        if self.CORS_ORIGINS.strip() == "*":
            return ["*"]
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]


settings = Settings()
