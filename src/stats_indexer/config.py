from functools import lru_cache
from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Core API Settings
    api_host: str = Field("0.0.0.0", alias="API_HOST")
    api_port: int = Field(8000, alias="API_PORT")
    environment: str = Field("development", alias="ENVIRONMENT")
    app_env: str = Field("dev", alias="APP_ENV")
    log_level: str = Field("INFO", alias="LOG_LEVEL")

    # Storage
    database_url: str = Field("sqlite:///./stats_indexer.db", alias="DATABASE_URL")
    redis_url: str = Field("redis://localhost:6379/0", alias="REDIS_URL")
    migrate_on_start: bool = Field(False, alias="MIGRATE_ON_START")

    # Indexer behaviour
    default_index_mode: str = Field("immediate", alias="DEFAULT_INDEX_MODE")  # immediate|scheduled
    reindex_batch_size: int = Field(500, alias="REINDEX_BATCH_SIZE")
    changelog_batch_size: int = Field(1000, alias="CHANGELOG_BATCH_SIZE")
    changelog_max_batches_per_run: int = Field(10, alias="CHANGELOG_MAX_BATCHES_PER_RUN")
    changelog_poll_seconds: int = Field(60, alias="CHANGELOG_POLL_SECONDS")
    immediate_fallback_to_changelog: bool = Field(True, alias="IMMEDIATE_FALLBACK_TO_CHANGELOG")
    reindex_invalid_on_schedule: bool = Field(True, alias="REINDEX_INVALID_ON_SCHEDULE")

    # Per-index mutual exclusion
    index_lock_backend: str = Field("local", alias="INDEX_LOCK_BACKEND")  # local|redis
    index_lock_timeout_seconds: int = Field(600, alias="INDEX_LOCK_TIMEOUT_SECONDS")
    index_lock_wait_seconds: float = Field(30.0, alias="INDEX_LOCK_WAIT_SECONDS")

    # Admin surface
    admin_api_keys: str | None = Field(None, alias="ADMIN_API_KEYS")  # comma-separated list of admin keys

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "allow"  # Allow extra environment variables


@lru_cache
def get_settings() -> Settings:
    return Settings()


def reset_settings():
    """Clear cached settings (useful in tests when env vars change)."""
    get_settings.cache_clear()


def parse_api_keys(raw: str | None) -> list[str]:
    if not raw:
        return []
    return [k.strip() for k in raw.split(",") if k.strip()]
