import os
from functools import lru_cache
from pathlib import Path
from typing import Mapping
from urllib.parse import quote_plus

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from edgeline.core.errors import ConfigurationError


DATABASE_URL_PLACEHOLDER = "REPLACE_WITH_STRONG_DB_PASSWORD"

DEFAULT_FROZEN_CONFIG_PATH = Path(__file__).resolve().parent.parent / "frozen" / "t60-ensemble-v1.json"


def resolve_database_url(
    *,
    database_url: str | None,
    postgres_user: str | None,
    postgres_password: str | None,
    postgres_host: str | None = "db",
    postgres_port: int | str | None = "5432",
    postgres_db: str | None = "edgeline",
) -> tuple[str, str]:
    raw_database_url = (database_url or "").strip()
    if raw_database_url and DATABASE_URL_PLACEHOLDER not in raw_database_url:
        return raw_database_url, "env"

    user = quote_plus((postgres_user or "edgeline").strip())
    password = quote_plus((postgres_password or "edgeline").strip())
    host = (postgres_host or "db").strip() or "db"
    port = str(postgres_port or "5432").strip() or "5432"
    db_name = (postgres_db or "edgeline").strip() or "edgeline"
    constructed = f"postgresql+asyncpg://{user}:{password}@{host}:{port}/{db_name}"
    return constructed, "postgres_fallback"


def resolve_database_url_from_env(
    env: Mapping[str, str] | None = None,
    *,
    default_database_url: str | None = None,
) -> tuple[str, str]:
    source_env = os.environ if env is None else env
    database_url = source_env.get("DATABASE_URL", default_database_url or "")
    return resolve_database_url(
        database_url=database_url,
        postgres_user=source_env.get("POSTGRES_USER"),
        postgres_password=source_env.get("POSTGRES_PASSWORD"),
        postgres_host=source_env.get("POSTGRES_HOST", "db"),
        postgres_port=source_env.get("POSTGRES_PORT", "5432"),
        postgres_db=source_env.get("POSTGRES_DB", "edgeline"),
    )


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    @model_validator(mode="after")
    def _check_sync_bounds(self) -> "Settings":
        if not 0 <= self.sync_snapshot_hour_utc <= 23:
            raise ValueError("SYNC_SNAPSHOT_HOUR_UTC must be between 0 and 23")
        if self.tick_chunk_size < 1:
            raise ValueError("TICK_CHUNK_SIZE must be at least 1")
        return self

    log_level: str = "INFO"

    database_url: str = ""
    postgres_user: str = "edgeline"
    postgres_password: str = "edgeline"
    postgres_host: str = "db"
    postgres_port: int = 5432
    postgres_db: str = "edgeline"
    redis_url: str = ""

    odds_api_key: str = ""
    odds_api_base_url: str = "https://api.the-odds-api.com/v4"
    odds_api_sport_key: str = "americanfootball_ncaaf"
    odds_api_regions: str = "us"
    odds_api_markets: str = "spreads,totals"
    odds_api_bookmakers: str = "draftkings"
    odds_api_timeout_seconds: float = 25.0
    odds_api_retry_attempts: int = 4
    odds_api_retry_delay_seconds: float = 2.0
    odds_api_default_retry_after_seconds: float = 60.0
    odds_api_credits_per_call: int = 10
    odds_api_budget_report_every: int = 25

    sync_min_call_interval_seconds: float = 0.3
    sync_snapshot_hour_utc: int = 17
    sync_snapshot_lead_hours: int = 24
    sync_event_match_window_hours: float = 36.0
    sync_allow_home_away_swap: bool = False

    tick_chunk_size: int = 50
    tick_chunk_retry_attempts: int = 2
    tick_dedupe_ttl_seconds: int = 86400

    edge_lookahead_days: int = 8

    frozen_config_path: str = str(DEFAULT_FROZEN_CONFIG_PATH)

    @property
    def odds_api_markets_list(self) -> list[str]:
        return [v.strip() for v in self.odds_api_markets.split(",") if v.strip()]

    @property
    def database_url_resolution(self) -> tuple[str, str]:
        return resolve_database_url(
            database_url=self.database_url,
            postgres_user=self.postgres_user,
            postgres_password=self.postgres_password,
            postgres_host=self.postgres_host,
            postgres_port=self.postgres_port,
            postgres_db=self.postgres_db,
        )

    def require_odds_api_key(self) -> str:
        key = self.odds_api_key.strip()
        if not key:
            raise ConfigurationError("ODDS_API_KEY is required for historical odds sync")
        return key


@lru_cache
def get_settings() -> Settings:
    return Settings()
