from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    database_url: str = "sqlite:///./data/metrics.db"

    # Samples older than this are removed by the daily retention sweep
    metrics_retention_days: int = 30
    # Hour of day (UTC) the retention sweep runs
    cleanup_hour: int = 3

    scheduler_enabled: bool = True

    # Version info (injected at build time)
    app_version: str = "0.1.0"


def get_settings() -> Settings:
    return Settings()
