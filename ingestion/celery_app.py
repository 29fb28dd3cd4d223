"""Celery 애플리케이션 부트스트랩."""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any, Dict

from celery import Celery
from celery.schedules import schedule as celery_schedule

from .settings import Settings, get_settings
from .utils.logging import configure_logging

_CELERY_APP: Celery | None = None

FETCH_ALL_TASK = "ingestion.tasks.fetch.fetch_all_news"
ANALYZE_PENDING_TASK = "analysis.tasks.analyze.analyze_pending"
TASK_MODULES = ("ingestion.tasks.fetch", "analysis.tasks.analyze")


def create_celery_app(settings: Settings | None = None) -> Celery:
    """설정을 기반으로 Celery 인스턴스를 생성한다."""
    config = settings or get_settings()
    configure_logging(config.structlog_level, json_enabled=config.log_json)

    app = Celery("news_sentiment", broker=config.redis_url, backend=config.redis_url)
    app.conf.update(
        task_default_queue="ingestion.default",
        task_default_exchange="ingestion",
        task_default_routing_key="ingestion.default",
        task_soft_time_limit=config.celery_task_soft_time_limit,
        worker_concurrency=config.celery_worker_concurrency,
        beat_schedule=_build_beat_schedule(config),
        timezone="UTC",
        enable_utc=True,
        worker_send_task_events=True,
        task_send_sent_event=True,
    )

    app.autodiscover_tasks(list(TASK_MODULES), related_name=None)
    _install_signal_handlers(app)
    return app


def get_celery_app() -> Celery:
    """싱글톤 Celery 인스턴스를 반환한다."""
    global _CELERY_APP
    if _CELERY_APP is None:
        _CELERY_APP = create_celery_app()
    return _CELERY_APP


def _build_beat_schedule(settings: Settings) -> Dict[str, Dict[str, Any]]:
    """SCHEDULER_ENABLED일 때만 주기 작업을 등록한다."""
    if not settings.scheduler_enabled:
        return {}
    return {
        "fetch.all_news": {
            "task": FETCH_ALL_TASK,
            "schedule": celery_schedule(timedelta(minutes=settings.news_fetch_interval_minutes)),
            "options": {"queue": "ingestion.fetch"},
        },
        "analyze.pending": {
            "task": ANALYZE_PENDING_TASK,
            "schedule": celery_schedule(timedelta(minutes=settings.analysis_interval_minutes)),
            "kwargs": {"batch_size": settings.analysis_batch_size},
            "options": {"queue": "analysis.analyze"},
        },
    }


def _install_signal_handlers(app: Celery) -> None:
    from celery import signals

    logger = logging.getLogger("ingestion.worker")

    @signals.worker_shutdown.connect  # type: ignore[attr-defined]
    def _on_worker_shutdown(sender=None, **kwargs):  # noqa: ANN001
        logger.info("worker.shutdown", extra={"sender": str(sender)})
        from ingestion.runtime import reset_runtime

        reset_runtime()
