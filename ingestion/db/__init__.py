"""Database utilities for the ingestion service."""

from .models import (  # noqa: F401
    Base,
    JobRun,
    JobStage,
    JobStateRow,
    JobStatus,
    NewsRecord,
    NewsStatus,
    ServiceCooldownRow,
    TickerSentiment,
    WatchlistTicker,
)
from .session import get_engine, get_sessionmaker, session_scope  # noqa: F401

__all__ = [
    "Base",
    "JobRun",
    "JobStage",
    "JobStateRow",
    "JobStatus",
    "NewsRecord",
    "NewsStatus",
    "ServiceCooldownRow",
    "TickerSentiment",
    "WatchlistTicker",
    "get_engine",
    "get_sessionmaker",
    "session_scope",
]
