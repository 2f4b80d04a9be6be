"""Application configuration managed via environment variables."""
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = "Cadence Backend"
    debug: bool = False
    log_level: str = "INFO"
    database_url: str = "postgresql+psycopg2://cadence@localhost:5432/cadence"
    calendar_timezone: str = "UTC"
    # 0 = Monday ... 6 = Sunday, same numbering as date.weekday().
    week_starts_on: int = 0
    opik_enabled: bool = False
    opik_api_key: str | None = None
    opik_project: str = "cadence"
    openai_api_key: str | None = None
    openai_model: str = "gpt-4o"


@lru_cache
def get_settings() -> Settings:
    """Return a cached Settings instance."""
    return Settings()


settings = get_settings()
