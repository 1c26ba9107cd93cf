"""
Feedback Repository
===================
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from homecontrol.domain.climate import FeedbackRecord, FeedbackType
from homecontrol.utils.time import coerce_datetime, iso_now, to_iso

if TYPE_CHECKING:
    from infrastructure.database.ops.feedback import FeedbackOperations


class FeedbackRepository:
    """Repository for occupant comfort feedback."""

    def __init__(self, backend: "FeedbackOperations") -> None:
        self._backend = backend

    def add(self, record: FeedbackRecord) -> int:
        record.id = self._backend.insert_feedback(
            {
                "feedback_type": record.feedback_type.value,
                "office_temp": record.office_temp,
                "thermostat_setpoint": record.thermostat_setpoint,
                "hvac_mode": record.hvac_mode,
                "temp_change_rate_15min": record.temp_change_rate_15min,
                "temp_change_rate_30min": record.temp_change_rate_30min,
                "created_at": to_iso(record.created_at) if record.created_at else iso_now(),
            }
        )
        return record.id

    def recent(self, limit: int = 50) -> list[FeedbackRecord]:
        return [self._to_record(row) for row in self._backend.get_feedback_rows(limit)]

    @staticmethod
    def _to_record(row: dict[str, Any]) -> FeedbackRecord:
        return FeedbackRecord(
            id=row.get("id"),
            feedback_type=FeedbackType(row["feedback_type"]),
            office_temp=row.get("office_temp"),
            thermostat_setpoint=row.get("thermostat_setpoint"),
            hvac_mode=row.get("hvac_mode"),
            temp_change_rate_15min=row.get("temp_change_rate_15min"),
            temp_change_rate_30min=row.get("temp_change_rate_30min"),
            created_at=coerce_datetime(row.get("created_at")),
        )
