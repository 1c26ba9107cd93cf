"""
Schedule Domain Objects
=======================
Documents stored in the keyed ``schedules`` table.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Any

from homecontrol.utils.time import coerce_datetime, to_iso

ACTIVE_JOB_SUFFIX = "Active Job"


def active_job_key(device: str) -> str:
    """Schedule key under which a device's in-flight session is recorded."""
    return f"{device} {ACTIVE_JOB_SUFFIX}"


@dataclass
class ActiveJobState:
    """Marker for a long-running session that may survive a restart."""

    job_id: int | None  # None when the job row could not be written
    end_time: datetime
    started_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "job_id": self.job_id,
            "end_time": to_iso(self.end_time),
            "started_at": to_iso(self.started_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ActiveJobState | None":
        end_time = coerce_datetime(data.get("end_time"))
        started_at = coerce_datetime(data.get("started_at"))
        if end_time is None:
            return None
        job_id = data.get("job_id")
        return cls(job_id=int(job_id) if job_id is not None else None, end_time=end_time, started_at=started_at or end_time)


@dataclass
class PumpSchedule:
    """Daily pump plan produced by the morning calculation."""

    hours: float = 8.0
    total_hours: float = 8.0
    reason: str = "Not calculated yet"
    start_time: str = "10:00"
    temperature: float | None = None
    next_start: datetime | None = None
    next_end: datetime | None = None
    rain_extension_applied: bool = False
    extension_date: date | None = None
    calculated_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "hours": self.hours,
            "total_hours": self.total_hours,
            "reason": self.reason,
            "start_time": self.start_time,
            "temperature": self.temperature,
            "next_start": to_iso(self.next_start),
            "next_end": to_iso(self.next_end),
            "rain_extension_applied": self.rain_extension_applied,
            "extension_date": self.extension_date.isoformat() if self.extension_date else None,
            "calculated_at": to_iso(self.calculated_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PumpSchedule":
        extension_date = data.get("extension_date")
        return cls(
            hours=float(data.get("hours", 8.0)),
            total_hours=float(data.get("total_hours", data.get("hours", 8.0))),
            reason=str(data.get("reason", "Not calculated yet")),
            start_time=str(data.get("start_time", "10:00")),
            temperature=data.get("temperature"),
            next_start=coerce_datetime(data.get("next_start")),
            next_end=coerce_datetime(data.get("next_end")),
            rain_extension_applied=bool(data.get("rain_extension_applied", False)),
            extension_date=date.fromisoformat(extension_date) if extension_date else None,
            calculated_at=coerce_datetime(data.get("calculated_at")),
        )
