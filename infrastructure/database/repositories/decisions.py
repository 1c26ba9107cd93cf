"""
Decision Repository
===================

Per-day watering decisions produced by the irrigation advisor.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import TYPE_CHECKING, Any

from homecontrol.domain.irrigation import AIDecisionRecord, DecisionOutcome, DecisionSource
from homecontrol.utils.time import coerce_datetime, iso_now, to_iso

if TYPE_CHECKING:
    from infrastructure.database.ops.decisions import DecisionOperations

logger = logging.getLogger(__name__)


class DecisionRepository:
    """Repository for AI decision records."""

    def __init__(self, backend: "DecisionOperations") -> None:
        self._backend = backend

    def save(self, record: AIDecisionRecord) -> None:
        """Upsert the decision for ``record.device`` on ``record.decision_date``."""
        self._backend.upsert_decision(
            {
                "device": record.device,
                "date": record.decision_date.isoformat(),
                "duration": int(record.duration),
                "temperature": record.temperature,
                "humidity": record.humidity,
                "forecast": record.forecast,
                "reasoning": record.reasoning,
                "should_water": 1 if record.should_water else 0,
                "source": record.source.value,
                "outcome": record.outcome.value,
                "created_at": to_iso(record.created_at) if record.created_at else iso_now(),
            }
        )
        logger.info(
            "Decision saved for %s on %s: %s (%s min, %s)",
            record.device,
            record.decision_date,
            "water" if record.should_water else "skip",
            record.duration,
            record.source.value,
        )

    def get(self, device: str, day: date) -> AIDecisionRecord | None:
        row = self._backend.get_decision_row(device, day.isoformat())
        return self._to_record(row) if row else None

    def history(self, device: str, limit: int = 30) -> list[AIDecisionRecord]:
        return [self._to_record(row) for row in self._backend.get_decision_rows(device, limit)]

    def set_outcome(self, device: str, day: date, outcome: DecisionOutcome) -> bool:
        return self._backend.set_decision_outcome(device, day.isoformat(), outcome.value)

    @staticmethod
    def _to_record(row: dict[str, Any]) -> AIDecisionRecord:
        try:
            source = DecisionSource(row.get("source") or DecisionSource.LLM.value)
        except ValueError:
            source = DecisionSource.LLM
        try:
            outcome = DecisionOutcome(row.get("outcome") or DecisionOutcome.PENDING.value)
        except ValueError:
            outcome = DecisionOutcome.PENDING
        return AIDecisionRecord(
            id=row.get("id"),
            device=row["device"],
            decision_date=date.fromisoformat(row["date"]),
            should_water=bool(row.get("should_water", 1)),
            duration=int(row.get("duration") or 0),
            reasoning=row.get("reasoning") or "",
            temperature=row.get("temperature"),
            humidity=row.get("humidity"),
            forecast=row.get("forecast"),
            source=source,
            outcome=outcome,
            created_at=coerce_datetime(row.get("created_at")),
        )
