"""Durable job-run records."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import List

from sqlalchemy import select
from sqlalchemy.orm import Session

from ingestion.db.models import JobRun, JobStage, JobStatus


class JobRunRecorder:
    """Context manager to record job run lifecycle."""

    def __init__(
        self,
        session: Session,
        *,
        stage: JobStage,
        job_id: str,
        ticker: str | None = None,
        task_name: str,
        trace_id: str | None = None,
    ) -> None:
        self._session = session
        self._job = JobRun(
            stage=stage,
            status=JobStatus.RUNNING,
            job_id=job_id,
            ticker=ticker,
            task_name=task_name,
            trace_id=trace_id,
            started_at=datetime.now(timezone.utc),
        )

    def __enter__(self) -> JobRun:
        self._session.add(self._job)
        # RUNNING is committed first so a crash still leaves a record
        self._session.commit()
        return self._job

    def __exit__(self, exc_type, exc, tb) -> None:  # noqa: ANN001
        if exc is None:
            self._job.status = JobStatus.SUCCEEDED
        else:
            self._job.status = JobStatus.FAILED
            self._job.error_message = str(exc)[:512]
        self._job.finished_at = datetime.now(timezone.utc)
        self._session.add(self._job)
        try:
            self._session.commit()
        except Exception:  # pragma: no cover - do not mask original error
            self._session.rollback()


def recent_job_runs(session: Session, job_id: str, limit: int = 10) -> List[JobRun]:
    stmt = (
        select(JobRun)
        .where(JobRun.job_id == job_id)
        .order_by(JobRun.started_at.desc())
        .limit(limit)
    )
    return list(session.execute(stmt).scalars().all())
