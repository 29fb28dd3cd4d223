"""Configuration models for the ingestion service."""

from __future__ import annotations

from functools import lru_cache
from typing import List, Optional

from pydantic import (
    Field,
    PositiveInt,
    SecretStr,
    ValidationError,
    field_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment settings for news ingestion and job scheduling."""

    model_config = SettingsConfigDict(
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
        populate_by_name=True,
    )

    redis_url: str = Field(..., alias="INGESTION_REDIS_URL", description="Celery broker/backend Redis DSN.")
    postgres_dsn: str = Field(..., alias="POSTGRES_DSN", description="Database connection string.")

    alpha_vantage_api_key: Optional[SecretStr] = Field(
        None, alias="ALPHA_VANTAGE_API_KEY", description="Alpha Vantage API key."
    )
    alpha_vantage_endpoint: str = Field(
        "https://www.alphavantage.co/query",
        alias="ALPHA_VANTAGE_ENDPOINT",
        description="Alpha Vantage query endpoint.",
    )

    news_api_key: Optional[SecretStr] = Field(None, alias="NEWS_API_KEY", description="News API key.")
    news_api_endpoint: str = Field(
        "https://newsapi.org/v2/everything",
        alias="NEWS_API_ENDPOINT",
        description="News API endpoint.",
    )
    news_api_page_size: PositiveInt = Field(20, alias="NEWS_API_PAGE_SIZE", description="News API page size (<=100).")
    news_api_lang: str = Field("en", alias="NEWS_API_LANG", description="News API language filter.")
    news_api_sort_by: str = Field("publishedAt", alias="NEWS_API_SORT_BY", description="News API sort order.")

    reddit_client_id: Optional[str] = Field(None, alias="REDDIT_CLIENT_ID", description="Reddit OAuth client id.")
    reddit_client_secret: Optional[SecretStr] = Field(
        None, alias="REDDIT_CLIENT_SECRET", description="Reddit OAuth client secret."
    )
    reddit_user_agent: str = Field("news_sentiment/1.0", alias="REDDIT_USER_AGENT", description="Reddit User-Agent.")
    reddit_subreddits: str = Field(
        "wallstreetbets,stocks,investing,stockmarket,options",
        alias="REDDIT_SUBREDDITS",
        description="Comma separated subreddit list.",
    )
    reddit_min_score: int = Field(10, alias="REDDIT_MIN_SCORE", description="Minimum post score to keep.")
    reddit_limit_per_subreddit: PositiveInt = Field(
        25, alias="REDDIT_LIMIT_PER_SUBREDDIT", description="Search results per subreddit and term."
    )

    provider_timeout_seconds: PositiveInt = Field(
        30, alias="PROVIDER_TIMEOUT_SECONDS", description="HTTP timeout for one provider call."
    )
    fetch_timeout_seconds: PositiveInt = Field(
        30, alias="FETCH_TIMEOUT_SECONDS", description="Total wait budget of one multi-source fetch."
    )
    provider_cooldown_seconds: PositiveInt = Field(
        60, alias="PROVIDER_COOLDOWN_SECONDS", description="Cooldown applied after a throttling response."
    )

    fetch_window_hours: PositiveInt = Field(6, alias="FETCH_WINDOW_HOURS", description="Window of the all-tickers fetch.")
    ticker_fetch_hours: PositiveInt = Field(24, alias="TICKER_FETCH_HOURS", description="Window of a single-ticker fetch.")
    analysis_batch_size: PositiveInt = Field(10, alias="ANALYSIS_BATCH_SIZE", description="Pending items per analysis run.")

    scheduler_enabled: bool = Field(False, alias="SCHEDULER_ENABLED", description="Register beat schedules.")
    news_fetch_interval_minutes: PositiveInt = Field(
        30, alias="NEWS_FETCH_INTERVAL_MINUTES", description="Interval of the scheduled fetch job."
    )
    analysis_interval_minutes: PositiveInt = Field(
        5, alias="ANALYSIS_INTERVAL_MINUTES", description="Interval of the scheduled analysis job."
    )
    job_stale_after_seconds: PositiveInt = Field(
        3600,
        alias="JOB_STALE_AFTER_SECONDS",
        description="A job left RUNNING longer than this (crashed worker) may be claimed again.",
    )

    structlog_level: str = Field("INFO", alias="STRUCTLOG_LEVEL", description="Log level.")
    log_json: bool = Field(False, alias="LOG_JSON", description="Emit logs as JSON.")
    celery_worker_concurrency: PositiveInt = Field(
        4,
        alias="CELERY_WORKER_CONCURRENCY",
        description="Celery worker concurrency.",
    )
    celery_task_soft_time_limit: PositiveInt = Field(
        300,
        alias="CELERY_TASK_SOFT_TIME_LIMIT",
        description="Celery task soft time limit (seconds).",
    )

    @field_validator("postgres_dsn")
    @classmethod
    def _validate_postgres_dsn(cls, value: str) -> str:
        if "://" not in value:
            raise ValueError("POSTGRES_DSN must be a valid DSN string.")
        return value

    @field_validator("news_api_page_size")
    @classmethod
    def _validate_page_size(cls, v: int) -> int:
        if v > 100:
            raise ValueError("NEWS_API_PAGE_SIZE must be 100 or less.")
        return v

    @field_validator("reddit_client_id")
    @classmethod
    def _blank_client_id_is_none(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        s = v.strip()
        return s or None

    def subreddit_list(self) -> List[str]:
        return [part.strip() for part in self.reddit_subreddits.split(",") if part.strip()]


@lru_cache()
def get_settings() -> Settings:
    """Return a Settings instance built from the environment."""
    try:
        return Settings()
    except ValidationError as exc:
        raise RuntimeError(f"Environment validation failed: {exc}") from exc


def reset_settings_cache() -> None:
    """Clear the Settings LRU cache (tests)."""
    get_settings.cache_clear()  # type: ignore[attr-defined]
