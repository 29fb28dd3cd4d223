"""State machine for named background jobs."""

from __future__ import annotations

import copy
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol

from ingestion.utils.logging import get_logger

logger = get_logger(__name__)


class JobAlreadyRunning(Exception):
    """Raised when a job id is started while a previous run is still active."""

    def __init__(self, job_id: str) -> None:
        super().__init__(f"Job {job_id} is already running. Poll the job status for progress.")
        self.job_id = job_id


class JobStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class JobState:
    status: JobStatus = JobStatus.IDLE
    last_run_at: Optional[datetime] = None
    last_duration_seconds: Optional[float] = None
    last_result: Optional[Dict[str, Any]] = None
    last_error: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "last_run_at": self.last_run_at.isoformat() if self.last_run_at else None,
            "last_duration_seconds": self.last_duration_seconds,
            "last_result": self.last_result,
            "last_error": self.last_error,
        }


class JobStore(Protocol):
    """Persistence for job states.

    `claim` is the only transition into RUNNING and must be atomic for the
    store's scope: two claimers of one id, in any process sharing the store,
    never both get True.
    """

    def claim(self, job_id: str, now: datetime) -> bool: ...

    def load(self, job_id: str) -> Optional[JobState]: ...

    def save(self, job_id: str, state: JobState) -> None: ...

    def job_ids(self) -> List[str]: ...


class MemoryJobStore:
    """Process-local store; atomic under the tracker's per-job lock."""

    def __init__(self) -> None:
        self._jobs: Dict[str, JobState] = {}

    def claim(self, job_id: str, now: datetime) -> bool:
        job = self._jobs.setdefault(job_id, JobState())
        if job.status is JobStatus.RUNNING:
            return False
        job.status = JobStatus.RUNNING
        job.last_run_at = now
        job.last_error = None
        return True

    def load(self, job_id: str) -> Optional[JobState]:
        job = self._jobs.get(job_id)
        return copy.deepcopy(job) if job is not None else None

    def save(self, job_id: str, state: JobState) -> None:
        self._jobs[job_id] = copy.deepcopy(state)

    def job_ids(self) -> List[str]:
        return list(self._jobs)


class JobTracker:
    """Tracks job status with one lock per job id.

    The lock serializes callers inside this process; the store's `claim`
    decides between processes when the store is shared.
    """

    def __init__(self, store: JobStore | None = None) -> None:
        self._store: JobStore = store if store is not None else MemoryJobStore()
        self._locks: Dict[str, threading.Lock] = {}

    def _lock_for(self, job_id: str) -> threading.Lock:
        return self._locks.setdefault(job_id, threading.Lock())

    def is_running(self, job_id: str) -> bool:
        with self._lock_for(job_id):
            job = self._store.load(job_id)
            return job is not None and job.status is JobStatus.RUNNING

    def start(self, job_id: str) -> None:
        with self._lock_for(job_id):
            if not self._store.claim(job_id, datetime.now(timezone.utc)):
                raise JobAlreadyRunning(job_id)
        logger.info("job.started", extra={"job_id": job_id})

    def complete(
        self,
        job_id: str,
        duration_seconds: float,
        result: Optional[Dict[str, Any]] = None,
        error: Optional[str] = None,
    ) -> None:
        with self._lock_for(job_id):
            job = self._store.load(job_id) or JobState()
            job.status = JobStatus.FAILED if error is not None else JobStatus.COMPLETED
            job.last_duration_seconds = duration_seconds
            job.last_result = dict(result) if result is not None else None
            job.last_error = error
            self._store.save(job_id, job)
        if error is not None:
            logger.error("job.failed", extra={"job_id": job_id, "duration": duration_seconds, "error": error})
        else:
            logger.info("job.completed", extra={"job_id": job_id, "duration": duration_seconds})

    def status_of(self, job_id: str) -> Optional[JobState]:
        with self._lock_for(job_id):
            return self._store.load(job_id)

    def all_statuses(self) -> Dict[str, JobState]:
        snapshots: Dict[str, JobState] = {}
        for job_id in self._store.job_ids():
            snapshot = self.status_of(job_id)
            if snapshot is not None:
                snapshots[job_id] = snapshot
        return snapshots
