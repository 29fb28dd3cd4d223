from __future__ import annotations

from typing import Annotated, Generator

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from analysis.tasks.analyze import ANALYZE_ALL_BATCH_SIZE
from ingestion.db.session import session_scope
from ingestion.repositories.news import NewsRepository
from ingestion.repositories.watchlist import WatchlistRepository
from ingestion.runtime import get_job_runner
from ingestion.services.job_runner import JobRunner

from .models import (
    JobInfo,
    JobStatusResponse,
    JobTriggerResponse,
    NewsCounts,
    ServiceStatus,
    ServiceStatusResponse,
    TickerSentimentResponse,
    WatchlistTicker,
    WatchlistTickerCreate,
)

router = APIRouter(prefix="/api")


def session_dependency() -> Generator[Session, None, None]:
    with session_scope() as session:
        yield session


def job_runner_dependency() -> JobRunner:
    return get_job_runner()


SessionDep = Annotated[Session, Depends(session_dependency)]
RunnerDep = Annotated[JobRunner, Depends(job_runner_dependency)]


@router.post("/jobs/fetch-news", response_model=JobTriggerResponse, status_code=202, tags=["jobs"])
def trigger_fetch_news(runner: RunnerDep) -> JobTriggerResponse:
    return JobTriggerResponse(**runner.fetch_all_news())


@router.post("/jobs/fetch-news/{symbol}", response_model=JobTriggerResponse, status_code=202, tags=["jobs"])
def trigger_fetch_news_ticker(
    symbol: str,
    runner: RunnerDep,
    hours: Annotated[int | None, Query(ge=1, le=24 * 30)] = None,
) -> JobTriggerResponse:
    return JobTriggerResponse(**runner.fetch_news_for_ticker(symbol, hours))


@router.post("/jobs/analyze", response_model=JobTriggerResponse, status_code=202, tags=["jobs"])
def trigger_analyze(
    runner: RunnerDep,
    batch_size: Annotated[int, Query(ge=1, le=ANALYZE_ALL_BATCH_SIZE)] = ANALYZE_ALL_BATCH_SIZE,
) -> JobTriggerResponse:
    return JobTriggerResponse(**runner.analyze_pending(batch_size))


@router.get("/jobs/status", response_model=JobStatusResponse, tags=["jobs"])
def jobs_status(runner: RunnerDep) -> JobStatusResponse:
    return JobStatusResponse(
        jobs={job_id: JobInfo(**state) for job_id, state in runner.all_job_statuses().items()}
    )


@router.get("/jobs/status/{job_id}", response_model=JobInfo, tags=["jobs"])
def job_status(job_id: str, runner: RunnerDep) -> JobInfo:
    return JobInfo(**runner.job_status(job_id))


@router.get("/services/status", response_model=ServiceStatusResponse, tags=["services"])
def services_status(runner: RunnerDep) -> ServiceStatusResponse:
    return ServiceStatusResponse(
        services={name: ServiceStatus(**status) for name, status in runner.all_service_statuses().items()}
    )


@router.get("/services/{provider}/status", response_model=ServiceStatus, tags=["services"])
def service_status(provider: str, runner: RunnerDep) -> ServiceStatus:
    return ServiceStatus(**runner.service_status(provider))


@router.get("/tickers/{symbol}/sentiment", response_model=TickerSentimentResponse, tags=["tickers"])
def ticker_sentiment(symbol: str, session: SessionDep) -> TickerSentimentResponse:
    repo = NewsRepository(session)
    row = repo.require_sentiment(symbol)
    return TickerSentimentResponse(
        ticker=row.ticker,
        score=row.score,
        normalized_score=row.normalized_score,
        sentiment_label=row.sentiment_label,
        signal=row.signal,
        confidence=row.confidence,
        positive_count=row.positive_count,
        negative_count=row.negative_count,
        neutral_count=row.neutral_count,
        total_analyzed=row.total_analyzed,
        total_pending=row.total_pending,
        snapshot_at=row.snapshot_at,
        news=NewsCounts(**repo.news_counts(symbol)),
    )


@router.get("/watchlist", response_model=list[str], tags=["watchlist"])
def list_watchlist(session: SessionDep) -> list[str]:
    return WatchlistRepository(session).list_active_tickers()


@router.post("/watchlist", response_model=WatchlistTicker, status_code=201, tags=["watchlist"])
def add_watchlist_ticker(payload: WatchlistTickerCreate, session: SessionDep) -> WatchlistTicker:
    entry = WatchlistRepository(session).add_ticker(payload.ticker, payload.name)
    return WatchlistTicker.model_validate(entry, from_attributes=True)


@router.delete("/watchlist/{symbol}", response_model=WatchlistTicker, tags=["watchlist"])
def remove_watchlist_ticker(symbol: str, session: SessionDep) -> WatchlistTicker:
    entry = WatchlistRepository(session).remove_ticker(symbol)
    return WatchlistTicker.model_validate(entry, from_attributes=True)
