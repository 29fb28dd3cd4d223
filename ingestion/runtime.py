"""Process-wide singletons shared by the API, Celery tasks and the job runner.

Job claims and cooldowns are kept in the database so that every process
(API server, each Celery worker child) sees the same state.
"""

from __future__ import annotations

from functools import lru_cache
from typing import TYPE_CHECKING, List

from ingestion.connectors.alpha_vantage import AlphaVantageConnector
from ingestion.connectors.base import SourceFetcher
from ingestion.connectors.news_api import NewsAPIConnector
from ingestion.connectors.reddit import RedditConnector
from ingestion.repositories.shared_state import DatabaseCooldownStore, DatabaseJobStore
from ingestion.services.cooldown import CooldownGate
from ingestion.services.job_tracker import JobTracker
from ingestion.services.orchestrator import FetchOrchestrator
from ingestion.settings import Settings, get_settings

if TYPE_CHECKING:  # pragma: no cover
    from ingestion.services.job_runner import JobRunner


@lru_cache()
def get_cooldown_gate() -> CooldownGate:
    return CooldownGate(store=DatabaseCooldownStore())


@lru_cache()
def get_job_tracker() -> JobTracker:
    return JobTracker(DatabaseJobStore(stale_after_seconds=get_settings().job_stale_after_seconds))


def build_fetchers(settings: Settings | None = None, gate: CooldownGate | None = None) -> List[SourceFetcher]:
    """Fetchers in priority order (primary feed first)."""
    config = settings or get_settings()
    shared_gate = gate or get_cooldown_gate()
    return [
        AlphaVantageConnector(shared_gate, config),
        NewsAPIConnector(shared_gate, config),
        RedditConnector(shared_gate, config),
    ]


@lru_cache()
def get_orchestrator() -> FetchOrchestrator:
    settings = get_settings()
    return FetchOrchestrator(
        build_fetchers(settings),
        timeout_seconds=float(settings.fetch_timeout_seconds),
    )


@lru_cache()
def get_job_runner() -> "JobRunner":
    from ingestion.services.job_runner import JobRunner

    return JobRunner(get_job_tracker(), get_cooldown_gate())


def reset_runtime() -> None:
    """Drop every cached singleton (tests, settings reload)."""
    if get_job_runner.cache_info().currsize:  # type: ignore[attr-defined]
        get_job_runner().shutdown(wait=False)
    if get_orchestrator.cache_info().currsize:  # type: ignore[attr-defined]
        for fetcher in get_orchestrator().fetchers:
            fetcher.close()
    for cached in (get_job_runner, get_orchestrator, get_job_tracker, get_cooldown_gate):
        cached.cache_clear()  # type: ignore[attr-defined]
