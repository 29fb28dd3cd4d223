from __future__ import annotations

import threading

import pytest

from ingestion.services.cooldown import CooldownGate
from ingestion.services.job_runner import KNOWN_SERVICES, JobRunner
from ingestion.services.job_tracker import JobAlreadyRunning, JobStatus, JobTracker


@pytest.fixture
def runner():
    job_runner = JobRunner(JobTracker(), CooldownGate(), max_workers=2)
    yield job_runner
    job_runner.shutdown(wait=True)


def test_trigger_returns_immediately_and_records_completion(runner):
    release = threading.Event()

    def job(value):
        release.wait(5)
        return {"success": True, "value": value}

    response = runner.trigger("demo", job, 7, message="Demo started")

    assert response == {"message": "Demo started", "job_id": "demo", "status": "running"}
    assert runner.job_status("demo")["status"] == "running"

    release.set()
    assert runner.wait("demo", timeout=5) == {"success": True, "value": 7}

    status = runner.job_status("demo")
    assert status["status"] == "completed"
    assert status["last_result"] == {"success": True, "value": 7}
    assert status["last_duration_seconds"] is not None


def test_second_trigger_while_running_is_rejected(runner):
    release = threading.Event()
    runner.trigger("demo", lambda: release.wait(5) and {"success": True})

    try:
        with pytest.raises(JobAlreadyRunning):
            runner.trigger("demo", lambda: {"success": True})
    finally:
        release.set()
    runner.wait("demo", timeout=5)

    # Released once the first run has finished
    runner.trigger("demo", lambda: {"success": True})
    runner.wait("demo", timeout=5)
    assert runner.job_status("demo")["status"] == "completed"


def test_crashing_job_is_recorded_as_failed(runner):
    def boom():
        raise RuntimeError("db down")

    runner.trigger("crash", boom)
    result = runner.wait("crash", timeout=5)

    assert result == {"success": False, "error": "db down"}
    status = runner.job_status("crash")
    assert status["status"] == "failed"
    assert status["last_error"] == "db down"
    assert runner.tracker.is_running("crash") is False


def test_unsuccessful_result_with_error_marks_failed(runner):
    runner.run_exclusive("ticker", lambda: {"success": False, "error": "timeout"})
    assert runner.job_status("ticker")["status"] == "failed"

    runner.run_exclusive("skip", lambda: {"success": False, "reason": "openai_cooldown"})
    skipped = runner.job_status("skip")
    assert skipped["status"] == "completed"
    assert skipped["last_result"]["reason"] == "openai_cooldown"


def test_run_exclusive_skips_when_already_running(runner):
    runner.tracker.start("fetch_all_news")

    result = runner.run_exclusive("fetch_all_news", lambda: {"success": True})

    assert result == {"success": False, "reason": "already_running"}
    assert runner.tracker.is_running("fetch_all_news") is True


def test_unknown_job_status_is_idle(runner):
    status = runner.job_status("never")

    assert status["status"] == "idle"
    assert status["last_run_at"] is None
    assert runner.wait("never") is None


def test_trigger_after_shutdown_releases_claim():
    job_runner = JobRunner(JobTracker(), CooldownGate(), max_workers=1)
    job_runner.shutdown(wait=True)

    with pytest.raises(RuntimeError):
        job_runner.trigger("late", lambda: {"success": True})
    assert job_runner.tracker.is_running("late") is False


def test_service_statuses_include_known_services():
    gate = CooldownGate()
    gate.enter_cooldown("openai", "quota", 30)
    job_runner = JobRunner(JobTracker(), gate, max_workers=1)
    try:
        statuses = job_runner.all_service_statuses()
        assert set(KNOWN_SERVICES) <= set(statuses)
        assert statuses["openai"]["available"] is False
        assert statuses["reddit"]["available"] is True
        assert job_runner.service_status("openai")["available"] is False
    finally:
        job_runner.shutdown()
