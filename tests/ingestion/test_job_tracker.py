from __future__ import annotations

import threading

import pytest

from ingestion.services.job_tracker import JobAlreadyRunning, JobStatus, JobTracker


def test_start_and_complete_cycle():
    tracker = JobTracker()
    assert tracker.is_running("analyze_pending") is False
    assert tracker.status_of("analyze_pending") is None

    tracker.start("analyze_pending")
    assert tracker.is_running("analyze_pending") is True

    with pytest.raises(JobAlreadyRunning) as excinfo:
        tracker.start("analyze_pending")
    assert excinfo.value.job_id == "analyze_pending"

    tracker.complete("analyze_pending", 1.5, result={"success_count": 3})
    assert tracker.is_running("analyze_pending") is False

    state = tracker.status_of("analyze_pending")
    assert state is not None
    assert state.status is JobStatus.COMPLETED
    assert state.last_duration_seconds == 1.5
    assert state.last_result == {"success_count": 3}
    assert state.last_error is None
    assert state.last_run_at is not None


def test_complete_with_error_marks_failed_and_restart_clears_error():
    tracker = JobTracker()
    tracker.start("fetch_all_news")
    tracker.complete("fetch_all_news", 0.2, error="boom")

    state = tracker.status_of("fetch_all_news")
    assert state.status is JobStatus.FAILED
    assert state.last_error == "boom"

    tracker.start("fetch_all_news")
    assert tracker.status_of("fetch_all_news").last_error is None


def test_snapshots_are_detached_from_live_state():
    tracker = JobTracker()
    tracker.start("job")
    tracker.complete("job", 1.0, result={"saved": 1})

    snapshot = tracker.status_of("job")
    snapshot.last_result["saved"] = 99
    snapshot.status = JobStatus.RUNNING

    fresh = tracker.status_of("job")
    assert fresh.last_result == {"saved": 1}
    assert fresh.status is JobStatus.COMPLETED
    assert tracker.is_running("job") is False


def test_different_jobs_do_not_block_each_other():
    tracker = JobTracker()
    tracker.start("fetch_all_news")
    tracker.start("analyze_pending")

    statuses = tracker.all_statuses()
    assert set(statuses) == {"fetch_all_news", "analyze_pending"}
    assert all(s.status is JobStatus.RUNNING for s in statuses.values())


def test_concurrent_start_admits_exactly_one_caller():
    tracker = JobTracker()
    barrier = threading.Barrier(16)
    wins = []
    losses = []

    def worker() -> None:
        barrier.wait()
        try:
            tracker.start("analyze_pending")
        except JobAlreadyRunning:
            losses.append(1)
        else:
            wins.append(1)

    threads = [threading.Thread(target=worker) for _ in range(16)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(wins) == 1
    assert len(losses) == 15


def test_as_dict_serializes_state():
    tracker = JobTracker()
    tracker.start("job")
    tracker.complete("job", 2.0, result={"ok": True})

    data = tracker.status_of("job").as_dict()
    assert data["status"] == "completed"
    assert data["last_duration_seconds"] == 2.0
    assert data["last_result"] == {"ok": True}
    assert isinstance(data["last_run_at"], str)
