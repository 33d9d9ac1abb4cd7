"""Application configuration managed via environment variables."""
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from sentinel.core.policy import NotificationPolicy


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    app_name: str = "Schedule Sentinel"
    debug: bool = False
    log_level: str = "INFO"
    database_url: str = "postgresql+psycopg2://sentinel@localhost:5432/sentinel"
    db_pool_timeout_seconds: float = 5.0
    db_statement_timeout_ms: int = 5000
    opik_enabled: bool = False
    opik_api_key: str | None = None
    opik_project: str = "schedule-sentinel"
    scheduler_enabled: bool = False
    # Run the periodic cycle inside the API process instead of the worker.
    scheduler_embedded: bool = False
    scheduler_timezone: str = "UTC"
    scheduler_interval_seconds: int = 300
    jobs_run_on_startup: bool = False
    notifications_enabled: bool = False
    notifications_provider: str = "noop"
    memory_provider: str = "noop"
    policy: NotificationPolicy = Field(default_factory=NotificationPolicy)


@lru_cache
def get_settings() -> Settings:
    """Return a cached Settings instance."""
    return Settings()


settings = get_settings()
