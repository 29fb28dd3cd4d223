from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone

import pytest

from ingestion.repositories.shared_state import DatabaseCooldownStore, DatabaseJobStore
from ingestion.runtime import get_cooldown_gate, get_job_tracker
from ingestion.services.cooldown import CooldownGate
from ingestion.services.job_runner import JobRunner
from ingestion.services.job_tracker import JobAlreadyRunning, JobStatus, JobTracker


class FakeClock:
    def __init__(self) -> None:
        self.now = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def db(base_env):
    return base_env


def test_second_tracker_on_same_store_is_rejected(db):
    api_side = JobTracker(DatabaseJobStore())
    worker_side = JobTracker(DatabaseJobStore())

    api_side.start("analyze_pending")

    with pytest.raises(JobAlreadyRunning):
        worker_side.start("analyze_pending")
    assert worker_side.is_running("analyze_pending") is True

    api_side.complete("analyze_pending", 0.5, result={"success": True, "success_count": 2})

    seen = worker_side.status_of("analyze_pending")
    assert seen.status is JobStatus.COMPLETED
    assert seen.last_result == {"success": True, "success_count": 2}
    assert seen.last_run_at.tzinfo is not None

    worker_side.start("analyze_pending")
    assert api_side.is_running("analyze_pending") is True


def test_failed_run_and_listing_are_shared(db):
    first = JobTracker(DatabaseJobStore())
    second = JobTracker(DatabaseJobStore())

    first.start("fetch_all_news")
    first.complete("fetch_all_news", 1.0, error="db down")
    second.start("fetch_news_ticker:AAPL")

    statuses = second.all_statuses()
    assert set(statuses) == {"fetch_all_news", "fetch_news_ticker:AAPL"}
    assert statuses["fetch_all_news"].status is JobStatus.FAILED
    assert statuses["fetch_all_news"].last_error == "db down"
    assert statuses["fetch_news_ticker:AAPL"].status is JobStatus.RUNNING


def test_concurrent_trackers_admit_exactly_one(db):
    trackers = [JobTracker(DatabaseJobStore()) for _ in range(6)]
    barrier = threading.Barrier(len(trackers))
    wins = []

    def worker(tracker: JobTracker) -> None:
        barrier.wait()
        try:
            tracker.start("fetch_all_news")
        except JobAlreadyRunning:
            return
        wins.append(1)

    threads = [threading.Thread(target=worker, args=(t,)) for t in trackers]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(wins) == 1


def test_abandoned_claim_can_be_taken_over(db):
    store = DatabaseJobStore(stale_after_seconds=60)
    started = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)

    assert store.claim("analyze_pending", started) is True
    assert store.claim("analyze_pending", started + timedelta(seconds=30)) is False
    assert store.claim("analyze_pending", started + timedelta(seconds=61)) is True


def test_runner_in_another_process_sees_running_job(db):
    release = threading.Event()
    api_runner = JobRunner(JobTracker(DatabaseJobStore()), CooldownGate(), max_workers=1)
    worker_runner = JobRunner(JobTracker(DatabaseJobStore()), CooldownGate(), max_workers=1)
    try:
        api_runner.trigger("analyze_pending", lambda: release.wait(5) and {"success": True})

        skipped = worker_runner.run_exclusive("analyze_pending", lambda: {"success": True})

        assert skipped == {"success": False, "reason": "already_running"}
        assert worker_runner.job_status("analyze_pending")["status"] == "running"
    finally:
        release.set()
    api_runner.wait("analyze_pending", timeout=5)
    assert worker_runner.job_status("analyze_pending")["status"] == "completed"
    api_runner.shutdown()
    worker_runner.shutdown()


def test_cooldown_entered_elsewhere_is_visible(db):
    clock = FakeClock()
    worker_gate = CooldownGate(clock=clock, store=DatabaseCooldownStore())
    api_gate = CooldownGate(clock=clock, store=DatabaseCooldownStore())

    worker_gate.enter_cooldown("reddit", "Rate limit exceeded (429)", 60)

    assert api_gate.is_available("reddit") is False
    assert api_gate.remaining_cooldown("reddit") == 60
    status = api_gate.status("reddit")
    assert status["message"] == "Rate limit exceeded (429)"
    assert status["cooldown_until"] == (clock.now + timedelta(seconds=60)).isoformat()
    assert set(api_gate.all_statuses()) == {"reddit"}

    clock.now += timedelta(seconds=60)
    assert api_gate.is_available("reddit") is True
    assert worker_gate.status("reddit") == {"available": True, "cooldown_until": None, "message": None}


def test_cooldown_cleared_elsewhere_is_visible(db):
    first = CooldownGate(store=DatabaseCooldownStore())
    second = CooldownGate(store=DatabaseCooldownStore())

    first.enter_cooldown("openai", "quota", 120)
    first.enter_cooldown("openai", "quota again", 30)
    assert 0 < second.remaining_cooldown("openai") <= 30

    second.clear_cooldown("openai")
    assert first.is_available("openai") is True


def test_runtime_uses_database_stores(db):
    get_cooldown_gate().enter_cooldown("news_api", "429", 60)
    get_job_tracker().start("fetch_all_news")

    assert CooldownGate(store=DatabaseCooldownStore()).is_available("news_api") is False
    assert JobTracker(DatabaseJobStore()).is_running("fetch_all_news") is True
