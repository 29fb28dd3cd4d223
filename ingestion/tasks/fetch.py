"""News fetch jobs: watchlist-wide and single-ticker."""

from __future__ import annotations

import time
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Sequence, Tuple

from celery import shared_task
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ingestion.db.models import JobStage
from ingestion.db.session import ensure_schema, session_scope
from ingestion.models.domain import RawNewsItem
from ingestion.repositories.jobs import JobRunRecorder
from ingestion.repositories.news import NewsRepository
from ingestion.repositories.watchlist import WatchlistRepository
from ingestion.runtime import get_job_runner, get_orchestrator
from ingestion.services.orchestrator import FetchOrchestrator
from ingestion.settings import get_settings
from ingestion.utils.logging import get_logger

FETCH_ALL_JOB_ID = "fetch_all_news"
FETCH_TICKER_JOB_PREFIX = "fetch_news_ticker"

# Orchestrator factory is kept pluggable for tests.
ORCHESTRATOR_FACTORY: Callable[[], FetchOrchestrator] | None = None

logger = get_logger(__name__)


def ticker_job_id(ticker: str) -> str:
    return f"{FETCH_TICKER_JOB_PREFIX}:{ticker.upper()}"


def _get_orchestrator() -> FetchOrchestrator:
    if ORCHESTRATOR_FACTORY is not None:
        return ORCHESTRATOR_FACTORY()
    return get_orchestrator()


def _save_items(session: Session, ticker: str, items: Sequence[RawNewsItem], trace_id: str) -> Tuple[int, int]:
    """Persist items one by one; a failing item is counted and skipped."""
    repo = NewsRepository(session)
    saved = 0
    errors = 0
    for item in items:
        try:
            if repo.save_if_not_duplicate_by_url(ticker, item):
                saved += 1
        except SQLAlchemyError as exc:
            errors += 1
            logger.warning(
                "fetch.save_failed",
                extra={"trace_id": trace_id, "ticker": ticker, "url": item.url, "error": str(exc)},
            )
    session.commit()
    return saved, errors


def _fetch_ticker(
    session: Session,
    orchestrator: FetchOrchestrator,
    ticker: str,
    time_from: datetime,
    time_to: datetime,
    trace_id: str,
) -> Tuple[int, int, int]:
    items = orchestrator.fetch_all(ticker, time_from, time_to)
    if not items:
        logger.info("fetch.no_news", extra={"trace_id": trace_id, "ticker": ticker})
        return 0, 0, 0
    saved, errors = _save_items(session, ticker, items, trace_id)
    logger.info(
        "fetch.saved",
        extra={"trace_id": trace_id, "ticker": ticker, "found": len(items), "saved": saved, "errors": errors},
    )
    return saved, len(items), errors


def fetch_news_for_ticker_core(ticker: str, hours: int | None = None) -> Dict[str, Any]:
    """Fetch and store the last `hours` of news for one ticker."""
    ensure_schema()
    symbol = ticker.upper()
    window = hours if hours is not None else get_settings().ticker_fetch_hours
    trace_id = str(uuid.uuid4())
    started = time.monotonic()
    time_to = datetime.now(timezone.utc)
    time_from = time_to - timedelta(hours=window)
    logger.info("fetch.ticker.start", extra={"trace_id": trace_id, "ticker": symbol, "hours": window})

    try:
        with session_scope() as session, JobRunRecorder(
            session,
            stage=JobStage.FETCH,
            job_id=ticker_job_id(symbol),
            ticker=symbol,
            task_name="fetch_news_for_ticker",
            trace_id=trace_id,
        ):
            saved, found, errors = _fetch_ticker(session, _get_orchestrator(), symbol, time_from, time_to, trace_id)
    except Exception as exc:
        logger.exception("fetch.ticker.failed", extra={"trace_id": trace_id, "ticker": symbol})
        return {
            "success": False,
            "ticker": symbol,
            "duration": round(time.monotonic() - started, 3),
            "error": str(exc) or exc.__class__.__name__,
        }
    return {
        "success": True,
        "ticker": symbol,
        "duration": round(time.monotonic() - started, 3),
        "saved": saved,
        "found": found,
        "errors": errors,
    }


def fetch_all_news_core() -> Dict[str, Any]:
    """Fetch the recent window for every active watchlist ticker."""
    ensure_schema()
    settings = get_settings()
    trace_id = str(uuid.uuid4())
    started = time.monotonic()
    orchestrator = _get_orchestrator()

    if not orchestrator.available_sources():
        logger.info("fetch.all.skipped", extra={"trace_id": trace_id, "reason": "no_source_available"})
        return {"success": False, "reason": "no_source_available"}

    time_to = datetime.now(timezone.utc)
    time_from = time_to - timedelta(hours=settings.fetch_window_hours)
    total_saved = 0
    error_count = 0

    with session_scope() as session, JobRunRecorder(
        session,
        stage=JobStage.FETCH,
        job_id=FETCH_ALL_JOB_ID,
        task_name="fetch_all_news",
        trace_id=trace_id,
    ):
        tickers = WatchlistRepository(session).list_active_tickers()
        logger.info("fetch.all.start", extra={"trace_id": trace_id, "tickers": len(tickers)})
        for index, ticker in enumerate(tickers, start=1):
            logger.info(
                "fetch.all.ticker",
                extra={"trace_id": trace_id, "ticker": ticker, "position": index, "of": len(tickers)},
            )
            try:
                saved, _found, errors = _fetch_ticker(session, orchestrator, ticker, time_from, time_to, trace_id)
            except Exception:
                logger.exception("fetch.all.ticker_failed", extra={"trace_id": trace_id, "ticker": ticker})
                session.rollback()
                error_count += 1
                continue
            total_saved += saved
            error_count += errors

    duration = round(time.monotonic() - started, 3)
    logger.info(
        "fetch.all.completed",
        extra={
            "trace_id": trace_id,
            "duration": duration,
            "total_saved": total_saved,
            "tickers_processed": len(tickers),
            "error_count": error_count,
        },
    )
    return {
        "success": True,
        "duration": duration,
        "total_saved": total_saved,
        "tickers_processed": len(tickers),
        "error_count": error_count,
    }


@shared_task(name="ingestion.tasks.fetch.fetch_all_news")
def fetch_all_news() -> Dict[str, Any]:  # pragma: no cover - thin wrapper
    return get_job_runner().run_exclusive(FETCH_ALL_JOB_ID, fetch_all_news_core)


@shared_task(name="ingestion.tasks.fetch.fetch_news_for_ticker")
def fetch_news_for_ticker(ticker: str, hours: int | None = None) -> Dict[str, Any]:  # pragma: no cover - thin wrapper
    return get_job_runner().run_exclusive(ticker_job_id(ticker), fetch_news_for_ticker_core, ticker, hours)
