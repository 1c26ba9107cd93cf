"""
Feedback Database Operations
============================

Occupant comfort feedback for the climate loop.
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


class FeedbackOperations:
    """Comfort feedback helpers for database handlers."""

    def connection(self) -> AbstractContextManager["Connection"]:
        """Get a committing connection context. Must be implemented by mixing class."""
        raise NotImplementedError("Subclass must implement connection()")

    def insert_feedback(self, values: dict[str, Any]) -> int:
        try:
            with self.connection() as db:
                cursor = db.execute(
                    """
                    INSERT INTO user_feedback (
                        feedback_type, office_temp, thermostat_setpoint, hvac_mode,
                        temp_change_rate_15min, temp_change_rate_30min, created_at
                    ) VALUES (
                        :feedback_type, :office_temp, :thermostat_setpoint, :hvac_mode,
                        :temp_change_rate_15min, :temp_change_rate_30min, :created_at
                    )
                    """,
                    values,
                )
                return int(cursor.lastrowid)
        except sqlite3.Error as exc:
            logger.error("Error saving feedback: %s", exc)
            raise RepositoryError("Could not save feedback") from exc

    def get_feedback_rows(self, limit: int = 50) -> list[dict[str, Any]]:
        try:
            with self.connection() as db:
                rows = db.execute(
                    "SELECT * FROM user_feedback ORDER BY created_at DESC, id DESC LIMIT ?",
                    (int(limit),),
                ).fetchall()
                return [dict(row) for row in rows]
        except sqlite3.Error as exc:
            logger.error("Error listing feedback: %s", exc)
            return []
