import pytest

celery = pytest.importorskip("celery")  # noqa: F841

from ingestion.celery_app import ANALYZE_PENDING_TASK, FETCH_ALL_TASK, create_celery_app
from ingestion.settings import Settings


def _make_settings(**overrides) -> Settings:
    values = dict(
        redis_url="redis://localhost:6379/0",
        postgres_dsn="sqlite:///./var/test.db",
        structlog_level="DEBUG",
        celery_worker_concurrency=2,
    )
    values.update(overrides)
    return Settings(**values)


def test_scheduler_disabled_registers_no_beat_entries():
    app = create_celery_app(_make_settings(scheduler_enabled=False))

    assert app.conf.beat_schedule == {}
    assert app.conf.worker_concurrency == 2


def test_scheduler_enabled_registers_fetch_and_analyze():
    settings = _make_settings(
        scheduler_enabled=True,
        news_fetch_interval_minutes=15,
        analysis_interval_minutes=2,
        analysis_batch_size=25,
    )

    app = create_celery_app(settings)
    schedule = app.conf.beat_schedule

    assert set(schedule) == {"fetch.all_news", "analyze.pending"}
    fetch = schedule["fetch.all_news"]
    assert fetch["task"] == FETCH_ALL_TASK
    assert fetch["schedule"].run_every.total_seconds() == 15 * 60
    assert fetch["options"] == {"queue": "ingestion.fetch"}

    analyze = schedule["analyze.pending"]
    assert analyze["task"] == ANALYZE_PENDING_TASK
    assert analyze["schedule"].run_every.total_seconds() == 2 * 60
    assert analyze["kwargs"] == {"batch_size": 25}


def test_broker_and_backend_use_redis_url():
    app = create_celery_app(_make_settings(redis_url="redis://broker:6379/3"))

    assert app.conf.broker_url == "redis://broker:6379/3"
    assert app.conf.result_backend == "redis://broker:6379/3"
    assert app.conf.timezone == "UTC"
