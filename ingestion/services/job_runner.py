"""Fire-and-forget execution of named jobs with status tracking.

`trigger` claims the job id synchronously (so a second trigger for the same
id fails with JobAlreadyRunning in the caller) and then hands the work to a
thread pool. The outcome is only visible via `job_status`.
"""

from __future__ import annotations

import time
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable, Dict, Optional

from analysis.tasks.analyze import ANALYZE_ALL_BATCH_SIZE, ANALYZE_JOB_ID, analyze_pending_core
from ingestion.models.domain import SourceType
from ingestion.services.cooldown import CooldownGate
from ingestion.services.job_tracker import JobAlreadyRunning, JobState, JobTracker
from ingestion.tasks.fetch import FETCH_ALL_JOB_ID, fetch_all_news_core, fetch_news_for_ticker_core, ticker_job_id
from ingestion.utils.logging import get_logger
from llm.client.openai_client import OPENAI_SERVICE

logger = get_logger(__name__)

JobFn = Callable[..., Dict[str, Any]]

KNOWN_SERVICES = tuple(s.value for s in SourceType) + (OPENAI_SERVICE,)


class JobRunner:
    def __init__(
        self,
        tracker: JobTracker,
        gate: CooldownGate,
        *,
        executor: Optional[ThreadPoolExecutor] = None,
        max_workers: int = 4,
    ) -> None:
        self._tracker = tracker
        self._gate = gate
        self._executor = executor or ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="job-runner")
        self._futures: Dict[str, Future[Dict[str, Any]]] = {}

    @property
    def tracker(self) -> JobTracker:
        return self._tracker

    def trigger(self, job_id: str, fn: JobFn, *args: Any, message: str | None = None) -> Dict[str, Any]:
        """Claim `job_id` and run `fn` in the background."""
        self._tracker.start(job_id)
        try:
            self._futures[job_id] = self._executor.submit(self._run_claimed, job_id, fn, *args)
        except RuntimeError as exc:
            # Executor already shut down; release the claim
            self._tracker.complete(job_id, 0.0, error=str(exc))
            raise
        logger.info("job.triggered", extra={"job_id": job_id})
        return {
            "message": message or f"Job {job_id} started in background",
            "job_id": job_id,
            "status": "running",
        }

    def run_exclusive(self, job_id: str, fn: JobFn, *args: Any) -> Dict[str, Any]:
        """Claim `job_id` and run `fn` on the calling thread; skip if already running."""
        try:
            self._tracker.start(job_id)
        except JobAlreadyRunning:
            logger.warning("job.skipped_already_running", extra={"job_id": job_id})
            return {"success": False, "reason": "already_running"}
        return self._run_claimed(job_id, fn, *args)

    def _run_claimed(self, job_id: str, fn: JobFn, *args: Any) -> Dict[str, Any]:
        started = time.monotonic()
        try:
            result = fn(*args)
        except Exception as exc:
            duration = round(time.monotonic() - started, 3)
            logger.exception("job.crashed", extra={"job_id": job_id})
            self._tracker.complete(job_id, duration, error=str(exc) or exc.__class__.__name__)
            return {"success": False, "error": str(exc)}
        duration = round(time.monotonic() - started, 3)
        error = result.get("error") if not result.get("success", True) else None
        self._tracker.complete(job_id, duration, result=result, error=error)
        return result

    def wait(self, job_id: str, timeout: float | None = None) -> Optional[Dict[str, Any]]:
        """Block until the last triggered run of `job_id` finishes."""
        future = self._futures.get(job_id)
        if future is None:
            return None
        return future.result(timeout=timeout)

    def fetch_all_news(self) -> Dict[str, Any]:
        return self.trigger(
            FETCH_ALL_JOB_ID,
            fetch_all_news_core,
            message="News fetch job started in background",
        )

    def fetch_news_for_ticker(self, ticker: str, hours: int | None = None) -> Dict[str, Any]:
        symbol = ticker.upper()
        return self.trigger(
            ticker_job_id(symbol),
            fetch_news_for_ticker_core,
            symbol,
            hours,
            message=f"News fetch job for {symbol} started in background",
        )

    def analyze_pending(self, batch_size: int | None = ANALYZE_ALL_BATCH_SIZE) -> Dict[str, Any]:
        return self.trigger(
            ANALYZE_JOB_ID,
            analyze_pending_core,
            batch_size,
            message="Analysis job started in background",
        )

    def job_status(self, job_id: str) -> Dict[str, Any]:
        state = self._tracker.status_of(job_id)
        if state is None:
            return JobState().as_dict()
        return state.as_dict()

    def all_job_statuses(self) -> Dict[str, Dict[str, Any]]:
        return {job_id: state.as_dict() for job_id, state in self._tracker.all_statuses().items()}

    def service_status(self, provider: str) -> Dict[str, Any]:
        return self._gate.status(provider)

    def all_service_statuses(self) -> Dict[str, Dict[str, Any]]:
        statuses = {service: self._gate.status(service) for service in KNOWN_SERVICES}
        statuses.update(self._gate.all_statuses())
        return statuses

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
