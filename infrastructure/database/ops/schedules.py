"""
Schedule Database Operations
=============================

Keyed schedule documents: one JSON ``config`` per device name, written with
last-writer-wins upserts.
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


class ScheduleOperations:
    """Schedule-related CRUD helpers for database handlers."""

    def connection(self) -> AbstractContextManager["Connection"]:
        """Get a committing connection context. Must be implemented by mixing class."""
        raise NotImplementedError("Subclass must implement connection()")

    def get_schedule_row(self, device: str) -> dict[str, Any] | None:
        try:
            with self.connection() as db:
                row = db.execute("SELECT * FROM schedules WHERE device = ?", (device,)).fetchone()
                return dict(row) if row else None
        except sqlite3.Error as exc:
            logger.error("Error reading schedule for %s: %s", device, exc)
            return None

    def upsert_schedule(self, device: str, config: str, updated_at: str) -> None:
        try:
            with self.connection() as db:
                db.execute(
                    """
                    INSERT INTO schedules (device, config, updated_at)
                    VALUES (?, ?, ?)
                    ON CONFLICT(device) DO UPDATE SET
                        config = excluded.config,
                        updated_at = excluded.updated_at
                    """,
                    (device, config, updated_at),
                )
        except sqlite3.Error as exc:
            logger.error("Error saving schedule for %s: %s", device, exc)
            raise RepositoryError(f"Could not save schedule for {device}", detail={"device": device}) from exc

    def delete_schedule(self, device: str) -> bool:
        try:
            with self.connection() as db:
                cursor = db.execute("DELETE FROM schedules WHERE device = ?", (device,))
                return cursor.rowcount > 0
        except sqlite3.Error as exc:
            logger.error("Error deleting schedule for %s: %s", device, exc)
            raise RepositoryError(f"Could not delete schedule for {device}", detail={"device": device}) from exc

    def list_schedule_rows(self) -> list[dict[str, Any]]:
        try:
            with self.connection() as db:
                return [dict(row) for row in db.execute("SELECT * FROM schedules ORDER BY device").fetchall()]
        except sqlite3.Error as exc:
            logger.error("Error listing schedules: %s", exc)
            return []
