"""
Job Database Operations
=======================

Append-only job log. Rows are created when a device session starts and closed
once (end time + duration) when it completes.
"""

from __future__ import annotations

import logging
import sqlite3
from contextlib import AbstractContextManager
from typing import TYPE_CHECKING, Any

from homecontrol.domain.exceptions import RepositoryError

if TYPE_CHECKING:
    from sqlite3 import Connection

logger = logging.getLogger(__name__)


class JobOperations:
    """Job-related helpers for database handlers."""

    def connection(self) -> AbstractContextManager["Connection"]:
        """Get a committing connection context. Must be implemented by mixing class."""
        raise NotImplementedError("Subclass must implement connection()")

    def insert_job(
        self,
        *,
        device: str,
        session: str | None,
        start_time: str,
        conditions: str | None,
        created_at: str,
        end_time: str | None = None,
        duration: int | None = None,
    ) -> int:
        """Append a job row and return its id."""
        try:
            with self.connection() as db:
                cursor = db.execute(
                    """
                    INSERT INTO jobs (device, session, start_time, end_time, duration, conditions, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (device, session, start_time, end_time, duration, conditions, created_at),
                )
                return int(cursor.lastrowid)
        except sqlite3.Error as exc:
            logger.error("Error inserting job for %s: %s", device, exc)
            raise RepositoryError(f"Could not insert job for {device}", detail={"device": device}) from exc

    def close_job(self, job_id: int, *, end_time: str, duration: int) -> bool:
        """Fill end time and duration of an open job. Returns False if it was already closed."""
        try:
            with self.connection() as db:
                cursor = db.execute(
                    "UPDATE jobs SET end_time = ?, duration = ? WHERE id = ? AND end_time IS NULL",
                    (end_time, duration, job_id),
                )
                return cursor.rowcount > 0
        except sqlite3.Error as exc:
            logger.error("Error closing job %s: %s", job_id, exc)
            raise RepositoryError(f"Could not close job {job_id}", detail={"job_id": job_id}) from exc

    def get_job_row(self, job_id: int) -> dict[str, Any] | None:
        try:
            with self.connection() as db:
                row = db.execute("SELECT * FROM jobs WHERE id = ?", (job_id,)).fetchone()
                return dict(row) if row else None
        except sqlite3.Error as exc:
            logger.error("Error reading job %s: %s", job_id, exc)
            return None

    def get_job_rows(
        self,
        device: str,
        *,
        limit: int = 50,
        since: str | None = None,
        until: str | None = None,
        completed_only: bool = False,
    ) -> list[dict[str, Any]]:
        """Jobs for a device, newest first, optionally bounded by start time."""
        query = "SELECT * FROM jobs WHERE device = ?"
        params: list[Any] = [device]
        if since is not None:
            query += " AND start_time >= ?"
            params.append(since)
        if until is not None:
            query += " AND start_time < ?"
            params.append(until)
        if completed_only:
            query += " AND end_time IS NOT NULL"
        query += " ORDER BY start_time DESC, id DESC LIMIT ?"
        params.append(int(limit))

        try:
            with self.connection() as db:
                return [dict(row) for row in db.execute(query, params).fetchall()]
        except sqlite3.Error as exc:
            logger.error("Error listing jobs for %s: %s", device, exc)
            return []

    def get_active_job_row(self, device: str) -> dict[str, Any] | None:
        """Most recent job with no end time for the device."""
        try:
            with self.connection() as db:
                row = db.execute(
                    """
                    SELECT * FROM jobs
                    WHERE device = ? AND end_time IS NULL
                    ORDER BY start_time DESC, id DESC
                    LIMIT 1
                    """,
                    (device,),
                ).fetchone()
                return dict(row) if row else None
        except sqlite3.Error as exc:
            logger.error("Error reading active job for %s: %s", device, exc)
            return None

    def purge_jobs_before(self, cutoff: str) -> int:
        """Delete closed jobs that started before ``cutoff``. Maintenance only."""
        try:
            with self.connection() as db:
                cursor = db.execute(
                    "DELETE FROM jobs WHERE start_time < ? AND end_time IS NOT NULL",
                    (cutoff,),
                )
                return cursor.rowcount
        except sqlite3.Error as exc:
            logger.error("Error purging jobs before %s: %s", cutoff, exc)
            raise RepositoryError("Could not purge old jobs") from exc
