"""
Job Repository
==============

Typed access to the append-only job log. Wraps :class:`JobOperations` and
converts rows to :class:`JobRecord` with typed condition snapshots.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any

from homecontrol.domain.jobs import JobConditions, JobRecord, conditions_from_dict, conditions_to_dict
from homecontrol.utils.time import coerce_datetime, to_iso

if TYPE_CHECKING:
    from infrastructure.database.ops.jobs import JobOperations

logger = logging.getLogger(__name__)


def elapsed_minutes(start: datetime, end: datetime) -> int:
    """Whole minutes between two instants (rounded, never negative)."""
    return max(0, round((end - start).total_seconds() / 60))


class JobRepository:
    """Repository for job records."""

    def __init__(self, backend: "JobOperations") -> None:
        self._backend = backend

    # ==================== Writes ====================

    def start_job(
        self,
        device: str,
        session: str | None,
        conditions: JobConditions | None,
        *,
        started_at: datetime,
    ) -> int:
        """Open a job (null end time) and return its id."""
        job_id = self._backend.insert_job(
            device=device,
            session=session,
            start_time=to_iso(started_at),
            conditions=self._dump(conditions),
            created_at=to_iso(started_at),
        )
        logger.info("Job %s started for %s (%s)", job_id, device, session)
        return job_id

    def finish_job(self, job_id: int, *, ended_at: datetime) -> int | None:
        """
        Close an open job, computing duration from elapsed wall time.

        Returns:
            Duration in minutes, or None when the job does not exist or was
            already closed.
        """
        row = self._backend.get_job_row(job_id)
        if row is None:
            logger.warning("Cannot close job %s: not found", job_id)
            return None
        if row.get("end_time") is not None:
            logger.debug("Job %s already closed", job_id)
            return None

        started_at = coerce_datetime(row["start_time"]) or ended_at
        duration = elapsed_minutes(started_at, ended_at)
        if not self._backend.close_job(job_id, end_time=to_iso(ended_at), duration=duration):
            return None
        logger.info("Job %s closed after %s min", job_id, duration)
        return duration

    def log_event(
        self,
        device: str,
        session: str | None,
        conditions: JobConditions | None,
        *,
        at: datetime,
    ) -> int:
        """Append an instant event (start == end, duration 0)."""
        stamp = to_iso(at)
        return self._backend.insert_job(
            device=device,
            session=session,
            start_time=stamp,
            end_time=stamp,
            duration=0,
            conditions=self._dump(conditions),
            created_at=stamp,
        )

    def purge_before(self, cutoff: datetime) -> int:
        removed = self._backend.purge_jobs_before(to_iso(cutoff))
        if removed:
            logger.info("Purged %s job(s) older than %s", removed, cutoff.isoformat())
        return removed

    # ==================== Reads ====================

    def get(self, job_id: int) -> JobRecord | None:
        row = self._backend.get_job_row(job_id)
        return self._to_record(row) if row else None

    def get_active(self, device: str) -> JobRecord | None:
        row = self._backend.get_active_job_row(device)
        return self._to_record(row) if row else None

    def list_jobs(
        self,
        device: str,
        *,
        limit: int = 50,
        since: datetime | None = None,
        until: datetime | None = None,
        completed_only: bool = False,
    ) -> list[JobRecord]:
        rows = self._backend.get_job_rows(
            device,
            limit=limit,
            since=to_iso(since),
            until=to_iso(until),
            completed_only=completed_only,
        )
        return [self._to_record(row) for row in rows]

    # ==================== Helpers ====================

    @staticmethod
    def _dump(conditions: JobConditions | None) -> str | None:
        payload = conditions_to_dict(conditions)
        return json.dumps(payload) if payload is not None else None

    @staticmethod
    def _load(raw: str | None) -> JobConditions | None:
        if not raw:
            return None
        try:
            payload: Any = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Job conditions are not valid JSON, ignoring")
            return None
        return conditions_from_dict(payload) if isinstance(payload, dict) else None

    def _to_record(self, row: dict[str, Any]) -> JobRecord:
        return JobRecord(
            id=int(row["id"]),
            device=row["device"],
            session=row.get("session"),
            start_time=coerce_datetime(row["start_time"]),
            end_time=coerce_datetime(row.get("end_time")),
            duration=row.get("duration"),
            conditions=self._load(row.get("conditions")),
            created_at=coerce_datetime(row.get("created_at")),
        )
