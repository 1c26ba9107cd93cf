"""
AI Decision Database Operations
===============================

One watering decision per (device, date); recomputing the same day replaces it.
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


class DecisionOperations:
    """AI decision helpers for database handlers."""

    def connection(self) -> AbstractContextManager["Connection"]:
        """Get a committing connection context. Must be implemented by mixing class."""
        raise NotImplementedError("Subclass must implement connection()")

    def upsert_decision(self, values: dict[str, Any]) -> None:
        """Insert or replace the decision for ``values['device']`` on ``values['date']``."""
        try:
            with self.connection() as db:
                db.execute(
                    """
                    INSERT INTO ai_decisions (
                        device, date, duration, temperature, humidity, forecast,
                        reasoning, should_water, source, outcome, created_at
                    ) VALUES (
                        :device, :date, :duration, :temperature, :humidity, :forecast,
                        :reasoning, :should_water, :source, :outcome, :created_at
                    )
                    ON CONFLICT(device, date) DO UPDATE SET
                        duration = excluded.duration,
                        temperature = excluded.temperature,
                        humidity = excluded.humidity,
                        forecast = excluded.forecast,
                        reasoning = excluded.reasoning,
                        should_water = excluded.should_water,
                        source = excluded.source,
                        outcome = excluded.outcome,
                        created_at = excluded.created_at
                    """,
                    values,
                )
        except sqlite3.Error as exc:
            logger.error("Error saving decision for %s on %s: %s", values.get("device"), values.get("date"), exc)
            raise RepositoryError("Could not save AI decision", detail={"device": values.get("device")}) from exc

    def get_decision_row(self, device: str, day: str) -> dict[str, Any] | None:
        try:
            with self.connection() as db:
                row = db.execute(
                    "SELECT * FROM ai_decisions WHERE device = ? AND date = ?",
                    (device, day),
                ).fetchone()
                return dict(row) if row else None
        except sqlite3.Error as exc:
            logger.error("Error reading decision for %s on %s: %s", device, day, exc)
            return None

    def get_decision_rows(self, device: str, limit: int = 30) -> list[dict[str, Any]]:
        try:
            with self.connection() as db:
                rows = db.execute(
                    "SELECT * FROM ai_decisions WHERE device = ? ORDER BY date DESC LIMIT ?",
                    (device, int(limit)),
                ).fetchall()
                return [dict(row) for row in rows]
        except sqlite3.Error as exc:
            logger.error("Error listing decisions for %s: %s", device, exc)
            return []

    def set_decision_outcome(self, device: str, day: str, outcome: str) -> bool:
        try:
            with self.connection() as db:
                cursor = db.execute(
                    "UPDATE ai_decisions SET outcome = ? WHERE device = ? AND date = ?",
                    (outcome, device, day),
                )
                return cursor.rowcount > 0
        except sqlite3.Error as exc:
            logger.error("Error updating decision outcome for %s on %s: %s", device, day, exc)
            return False
