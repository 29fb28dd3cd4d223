"""Celery tasks for the analysis stage: classify pending news, refresh snapshots."""

from __future__ import annotations

import time
import uuid
from typing import Any, Callable, Dict, List, Optional, Protocol, Set, Tuple

from celery import shared_task
from sqlalchemy.orm import Session

from analysis.models.domain import ClassificationResult
from analysis.services.aggregator import SentimentAggregator
from ingestion.db.models import JobStage, NewsRecord
from ingestion.db.session import ensure_schema, session_scope
from ingestion.repositories.jobs import JobRunRecorder
from ingestion.repositories.news import NewsRepository
from ingestion.runtime import get_cooldown_gate, get_job_runner
from ingestion.settings import get_settings
from ingestion.utils.logging import get_logger
from llm.client.openai_client import OpenAIClient

ANALYZE_JOB_ID = "analyze_pending"
ANALYZE_ALL_BATCH_SIZE = 1000
TICKER_ANALYZE_LIMIT = 100


def ticker_analyze_job_id(ticker: str) -> str:
    return f"{ANALYZE_JOB_ID}:{ticker.upper()}"


class Classifier(Protocol):
    def classify(self, ticker: str, text: str) -> Optional[ClassificationResult]: ...

    def remaining_cooldown(self) -> int: ...


# Classifier factory injection point for tests (defaults to OpenAI sharing the process gate)
CLASSIFIER_FACTORY: Callable[[], Classifier] | None = None

logger = get_logger(__name__)


def _get_classifier() -> Classifier:
    if CLASSIFIER_FACTORY is not None:
        return CLASSIFIER_FACTORY()
    return OpenAIClient.from_env(gate=get_cooldown_gate())


def _text_of(record: NewsRecord) -> str:
    if record.summary and record.summary.strip():
        return f"{record.title}\n\n{record.summary}"
    return record.title


def _cooldown_result(classifier: Classifier, trace_id: str) -> Optional[Dict[str, Any]]:
    remaining = classifier.remaining_cooldown()
    if remaining <= 0:
        return None
    logger.info("analyze.skipped_cooldown", extra={"trace_id": trace_id, "remaining_seconds": remaining})
    return {"success": False, "reason": "openai_cooldown", "remaining_seconds": remaining}


def _classify_records(
    session: Session,
    classifier: Classifier,
    records: List[NewsRecord],
    trace_id: str,
) -> Tuple[int, int, Set[str]]:
    """Classify each record; an unavailable or failed item stays pending."""
    repo = NewsRepository(session)
    success_count = 0
    error_count = 0
    tickers: Set[str] = set()
    for index, record in enumerate(records, start=1):
        extra = {"trace_id": trace_id, "news_id": str(record.id), "ticker": record.ticker}
        logger.debug("analyze.item", extra={**extra, "position": index, "of": len(records)})
        try:
            result = classifier.classify(record.ticker, _text_of(record))
            if result is None:
                logger.warning("analyze.no_result", extra=extra)
                error_count += 1
                continue
            with session.begin_nested():
                repo.update_analysis(record.id, result.label.value, result.justification)
        except Exception:
            logger.exception("analyze.item_failed", extra=extra)
            error_count += 1
            continue
        success_count += 1
        tickers.add(record.ticker)
        logger.info("analyze.item_done", extra={**extra, "sentiment": result.label.value})
    session.commit()
    return success_count, error_count, tickers


def _recompute(session: Session, tickers: Set[str], trace_id: str) -> int:
    aggregator = SentimentAggregator(NewsRepository(session))
    updated = 0
    for ticker in sorted(tickers):
        try:
            with session.begin_nested():
                aggregator.recompute(ticker)
        except Exception:
            logger.exception("analyze.recompute_failed", extra={"trace_id": trace_id, "ticker": ticker})
            continue
        updated += 1
    session.commit()
    return updated


def analyze_pending_core(batch_size: int | None = None) -> Dict[str, Any]:
    """Classify up to `batch_size` pending news items and refresh affected tickers."""
    ensure_schema()
    limit = batch_size if batch_size is not None else get_settings().analysis_batch_size
    trace_id = str(uuid.uuid4())
    started = time.monotonic()
    classifier = _get_classifier()

    skipped = _cooldown_result(classifier, trace_id)
    if skipped is not None:
        return skipped

    with session_scope() as session, JobRunRecorder(
        session,
        stage=JobStage.ANALYZE,
        job_id=ANALYZE_JOB_ID,
        task_name="analyze_pending",
        trace_id=trace_id,
    ):
        pending = NewsRepository(session).find_pending_news(limit)
        if not pending:
            logger.info("analyze.no_pending", extra={"trace_id": trace_id})
            success_count, error_count, tickers = 0, 0, set()
        else:
            logger.info("analyze.start", extra={"trace_id": trace_id, "pending": len(pending)})
            success_count, error_count, tickers = _classify_records(session, classifier, pending, trace_id)
            _recompute(session, tickers, trace_id)

    duration = round(time.monotonic() - started, 3)
    logger.info(
        "analyze.completed",
        extra={
            "trace_id": trace_id,
            "duration": duration,
            "success_count": success_count,
            "error_count": error_count,
            "tickers_updated": len(tickers),
        },
    )
    return {
        "success": True,
        "duration": duration,
        "success_count": success_count,
        "error_count": error_count,
        "tickers_updated": len(tickers),
    }


def analyze_pending_for_ticker_core(ticker: str, limit: int = TICKER_ANALYZE_LIMIT) -> Dict[str, Any]:
    """Classify pending news of one ticker and always refresh its snapshot."""
    ensure_schema()
    symbol = ticker.upper()
    trace_id = str(uuid.uuid4())
    started = time.monotonic()
    classifier = _get_classifier()

    skipped = _cooldown_result(classifier, trace_id)
    if skipped is not None:
        return {**skipped, "ticker": symbol}

    with session_scope() as session, JobRunRecorder(
        session,
        stage=JobStage.ANALYZE,
        job_id=ticker_analyze_job_id(symbol),
        ticker=symbol,
        task_name="analyze_pending_for_ticker",
        trace_id=trace_id,
    ):
        pending = NewsRepository(session).find_pending_news_for_ticker(symbol, limit)
        if not pending:
            logger.info("analyze.no_pending", extra={"trace_id": trace_id, "ticker": symbol})
            return {
                "success": True,
                "ticker": symbol,
                "duration": round(time.monotonic() - started, 3),
                "success_count": 0,
                "error_count": 0,
            }
        success_count, error_count, _ = _classify_records(session, classifier, pending, trace_id)
        _recompute(session, {symbol}, trace_id)

    return {
        "success": True,
        "ticker": symbol,
        "duration": round(time.monotonic() - started, 3),
        "success_count": success_count,
        "error_count": error_count,
    }


@shared_task(name="analysis.tasks.analyze.analyze_pending")
def analyze_pending(batch_size: int | None = None) -> Dict[str, Any]:  # pragma: no cover - thin wrapper
    return get_job_runner().run_exclusive(ANALYZE_JOB_ID, analyze_pending_core, batch_size)


@shared_task(name="analysis.tasks.analyze.analyze_all_pending")
def analyze_all_pending() -> Dict[str, Any]:
    """Drain the backlog in one large batch under the regular analysis job id."""
    return get_job_runner().run_exclusive(ANALYZE_JOB_ID, analyze_pending_core, ANALYZE_ALL_BATCH_SIZE)


@shared_task(name="analysis.tasks.analyze.analyze_pending_for_ticker")
def analyze_pending_for_ticker(ticker: str) -> Dict[str, Any]:  # pragma: no cover - thin wrapper
    return get_job_runner().run_exclusive(ticker_analyze_job_id(ticker), analyze_pending_for_ticker_core, ticker)
