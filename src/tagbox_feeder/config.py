from functools import lru_cache
from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Core settings
    environment: str = Field("development", alias="ENVIRONMENT")
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    database_url: str = Field("sqlite:///./tagbox.db", alias="DATABASE_URL")
    redis_url: str = Field("redis://localhost:6379/0", alias="REDIS_URL")
    migrate_on_start: bool = Field(False, alias="MIGRATE_ON_START")

    # Tagbox installation
    enabled_tagboxes: str | None = Field(None, alias="ENABLED_TAGBOXES")  # comma list; empty means all registered

    # Feeder / aggregation tunables
    feeder_top_limit: int = Field(10, alias="FEEDER_TOP_LIMIT")
    feeder_min_weightsum: float = Field(1.0, alias="FEEDER_MIN_WEIGHTSUM")
    feed_batch_size: int = Field(500, alias="FEED_BATCH_SIZE")
    force_recalc_importance: float = Field(999999, alias="FORCE_RECALC_IMPORTANCE")
    run_interval_seconds: int = Field(60, alias="RUN_INTERVAL_SECONDS")
    feed_interval_seconds: int = Field(15, alias="FEED_INTERVAL_SECONDS")

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "allow"


@lru_cache
def get_settings() -> Settings:
    return Settings()


def reset_settings():
    """Clear cached settings (useful in tests when env vars change)."""
    get_settings.cache_clear()


def parse_enabled_tagboxes(raw: str | None) -> set[str]:
    return {n.strip() for n in raw.split(",") if n.strip()} if raw else set()
