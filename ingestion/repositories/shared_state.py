"""Database-backed job and cooldown stores.

The API process and every Celery worker see the same rows, so a job claimed
by a beat-fired task cannot be started again from the API (and the other way
round), and a provider throttled in a worker stays throttled everywhere.
"""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError

from ingestion.db.models import JobStateRow, ServiceCooldownRow
from ingestion.db.session import ensure_schema, session_scope
from ingestion.services.cooldown import CooldownState
from ingestion.services.job_tracker import JobState, JobStatus
from ingestion.utils.logging import get_logger

DEFAULT_STALE_AFTER_SECONDS = 3600

logger = get_logger(__name__)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes; everything is stored in UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _jsonable(result: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if result is None:
        return None
    return json.loads(json.dumps(result, default=str))


class DatabaseJobStore:
    """Job states in the `job_states` table.

    A RUNNING row older than `stale_after_seconds` is treated as abandoned
    (its worker died without completing) and can be claimed again.
    """

    def __init__(self, stale_after_seconds: int = DEFAULT_STALE_AFTER_SECONDS) -> None:
        self._stale_after = timedelta(seconds=stale_after_seconds)
        ensure_schema()

    def claim(self, job_id: str, now: datetime) -> bool:
        running = JobStatus.RUNNING.value
        stmt = (
            update(JobStateRow)
            .where(JobStateRow.job_id == job_id)
            .where(or_(JobStateRow.status != running, JobStateRow.last_run_at < now - self._stale_after))
            .values(status=running, last_run_at=now, last_error=None)
            .execution_options(synchronize_session=False)
        )
        with session_scope() as session:
            if session.execute(stmt).rowcount == 1:
                return True
            if session.get(JobStateRow, job_id) is not None:
                return False
        try:
            with session_scope() as session:
                session.add(JobStateRow(job_id=job_id, status=running, last_run_at=now))
        except IntegrityError:
            # Another process inserted (and so claimed) the row first
            logger.debug("job_store.claim_race", extra={"job_id": job_id})
            return False
        return True

    def load(self, job_id: str) -> Optional[JobState]:
        with session_scope() as session:
            row = session.get(JobStateRow, job_id)
            if row is None:
                return None
            return JobState(
                status=JobStatus(row.status),
                last_run_at=_as_utc(row.last_run_at),
                last_duration_seconds=row.last_duration_seconds,
                last_result=dict(row.last_result) if row.last_result is not None else None,
                last_error=row.last_error,
            )

    def save(self, job_id: str, state: JobState) -> None:
        values = {
            "status": state.status.value,
            "last_run_at": state.last_run_at,
            "last_duration_seconds": state.last_duration_seconds,
            "last_result": _jsonable(state.last_result),
            "last_error": state.last_error,
        }
        with session_scope() as session:
            row = session.get(JobStateRow, job_id)
            if row is None:
                session.add(JobStateRow(job_id=job_id, **values))
                return
            for key, value in values.items():
                setattr(row, key, value)

    def job_ids(self) -> List[str]:
        with session_scope() as session:
            return list(session.execute(select(JobStateRow.job_id).order_by(JobStateRow.job_id)).scalars())


class DatabaseCooldownStore:
    """Cooldown windows in the `service_cooldowns` table."""

    def __init__(self) -> None:
        ensure_schema()

    def load(self, service: str) -> CooldownState:
        with session_scope() as session:
            row = session.get(ServiceCooldownRow, service)
            if row is None:
                return CooldownState()
            return CooldownState(cooldown_until=_as_utc(row.cooldown_until), reason=row.reason)

    def save(self, service: str, state: CooldownState) -> None:
        try:
            with session_scope() as session:
                row = session.get(ServiceCooldownRow, service)
                if row is None:
                    session.add(
                        ServiceCooldownRow(service=service, cooldown_until=state.cooldown_until, reason=state.reason)
                    )
                    return
                row.cooldown_until = state.cooldown_until
                row.reason = state.reason
        except IntegrityError:
            # Lost the insert race; the last writer wins, so overwrite
            with session_scope() as session:
                session.execute(
                    update(ServiceCooldownRow)
                    .where(ServiceCooldownRow.service == service)
                    .values(cooldown_until=state.cooldown_until, reason=state.reason)
                )

    def services(self) -> List[str]:
        with session_scope() as session:
            stmt = select(ServiceCooldownRow.service).order_by(ServiceCooldownRow.service)
            return list(session.execute(stmt).scalars())
