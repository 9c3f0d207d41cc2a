# Backend/app/core/config.py
from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Backend/app/core/config.py -> parents[2] = Backend, parents[3] = repo root
BACKEND_DIR = Path(__file__).resolve().parents[2]
REPO_ROOT = BACKEND_DIR.parent
ENV_FILE = BACKEND_DIR / ".env"
DEFAULT_NEWS_SOURCES_CONFIG = REPO_ROOT / "configs" / "news_sources.yml"

load_dotenv(ENV_FILE, override=False)


class Settings(BaseSettings):
    # ---- Ephemeral feed aggregation ----
    FEED_EPHEMERAL_TTL_MINUTES: int = Field(default=15, ge=1)
    FEED_EPHEMERAL_DEFAULT_LIMIT: int = Field(default=20, ge=1)
    MAX_AGGREGATION_LIMIT: int = Field(default=100, ge=1)

    # ---- Scheduled bulk fetch ----
    NEWS_FETCH_DEFAULT_CONCURRENCY: int = Field(default=5, ge=1)
    NEWS_FETCH_MAX_CONCURRENCY: int = Field(default=20, ge=1)
    NEWS_FETCH_DEFAULT_SOURCE_LIMIT: int = Field(default=50, ge=1)

    # ---- Source fetcher ----
    RSS_FETCH_TIMEOUT_S: int = Field(default=10, ge=1)
    RSS_USER_AGENT: str = "liberty-lens-rss-reader/1.0"

    # ---- Infra ----
    # Optional: without a DSN the in-memory cache and sink are used.
    DATABASE_URL: Optional[str] = None
    DB_POOL_MIN_SIZE: int = Field(default=1, ge=1)
    DB_POOL_MAX_SIZE: int = Field(default=4, ge=1)
    DB_QUERY_TIMEOUT_S: int = Field(default=30, ge=1)
    NEWS_SOURCES_CONFIG: Path = DEFAULT_NEWS_SOURCES_CONFIG
    LOG_LEVEL: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @model_validator(mode="after")
    def _check_bounds(self) -> "Settings":
        if self.FEED_EPHEMERAL_DEFAULT_LIMIT > self.MAX_AGGREGATION_LIMIT:
            raise ValueError(
                "FEED_EPHEMERAL_DEFAULT_LIMIT must not exceed MAX_AGGREGATION_LIMIT"
            )
        if self.NEWS_FETCH_DEFAULT_CONCURRENCY > self.NEWS_FETCH_MAX_CONCURRENCY:
            raise ValueError(
                "NEWS_FETCH_DEFAULT_CONCURRENCY must not exceed NEWS_FETCH_MAX_CONCURRENCY"
            )
        if self.DB_POOL_MIN_SIZE > self.DB_POOL_MAX_SIZE:
            raise ValueError("DB_POOL_MIN_SIZE must not exceed DB_POOL_MAX_SIZE")
        return self


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
