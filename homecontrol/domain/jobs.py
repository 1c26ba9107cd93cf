"""
Job Domain Objects
==================
Job records and the typed condition snapshots attached to them.

Each job kind carries its own condition dataclass. The snapshot is only turned
into a plain dict (tagged with ``kind``) at the persistence boundary, via
:func:`conditions_to_dict` / :func:`conditions_from_dict`.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from datetime import datetime
from typing import Any, ClassVar

from homecontrol.utils.time import to_iso


@dataclass
class JobConditions:
    """Base class for condition snapshots."""

    kind: ClassVar[str] = "raw"

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["kind"] = self.kind
        return payload


@dataclass
class DutyCycleConditions(JobConditions):
    """Pump session: the temperature and rationale behind the run length."""

    kind: ClassVar[str] = "duty_cycle"

    temperature: float
    reason: str
    start_time: str
    expected_hours: float
    rain_extension_applied: bool = False


@dataclass
class IrrigationConditions(JobConditions):
    """Sprinkler zone cycle."""

    kind: ClassVar[str] = "irrigation"

    duration_minutes: float
    break_minutes: float
    zones: int
    reasoning: str = ""
    auto_triggered: bool = False
    simulation: bool = False
    temperature: float | None = None
    humidity: float | None = None
    forecast: str | None = None


@dataclass
class ClimateAdjustmentConditions(JobConditions):
    """Thermostat setpoint change."""

    kind: ClassVar[str] = "climate_adjustment"

    office_temp: float
    target_temp: float
    delta: float
    old_setpoint: float
    new_setpoint: float
    action: str
    adjustment_step: float
    hvac_mode: str | None = None
    rate_15min: dict[str, Any] = field(default_factory=dict)
    rate_30min: dict[str, Any] = field(default_factory=dict)


@dataclass
class MonitoringConditions(JobConditions):
    """Periodic in-band snapshot of the climate loop."""

    kind: ClassVar[str] = "monitoring"

    office_temp: float
    target_temp: float
    delta: float
    setpoint: float | None
    hvac_mode: str | None = None
    hvac_action: str | None = None
    rate_15min: dict[str, Any] = field(default_factory=dict)
    rate_30min: dict[str, Any] = field(default_factory=dict)


@dataclass
class HvacEventConditions(JobConditions):
    """Thermostat action transition (cooling/heating/idle/off)."""

    kind: ClassVar[str] = "hvac_event"

    event: str
    hvac_action: str | None
    previous_action: str | None
    office_temp: float
    setpoint: float | None
    target_temp: float
    hvac_mode: str | None = None


@dataclass
class RawConditions(JobConditions):
    """Snapshot of an unknown kind, kept as-is."""

    data: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return dict(self.data)


_CONDITION_TYPES: dict[str, type[JobConditions]] = {
    cls.kind: cls
    for cls in (
        DutyCycleConditions,
        IrrigationConditions,
        ClimateAdjustmentConditions,
        MonitoringConditions,
        HvacEventConditions,
    )
}


def conditions_to_dict(conditions: JobConditions | None) -> dict[str, Any] | None:
    if conditions is None:
        return None
    return conditions.to_dict()


def conditions_from_dict(payload: dict[str, Any] | None) -> JobConditions | None:
    """Rebuild a typed snapshot; unknown kinds or shapes come back as RawConditions."""
    if not payload:
        return None
    cls = _CONDITION_TYPES.get(str(payload.get("kind", "")))
    if cls is None:
        return RawConditions(data=dict(payload))
    accepted = {f.name for f in fields(cls)}
    try:
        return cls(**{k: v for k, v in payload.items() if k in accepted})
    except TypeError:
        return RawConditions(data=dict(payload))


@dataclass
class JobRecord:
    """One device session (or instant event) in the append-only job log."""

    id: int
    device: str
    start_time: datetime
    session: str | None = None
    end_time: datetime | None = None
    duration: int | None = None  # minutes
    conditions: JobConditions | None = None
    created_at: datetime | None = None

    @property
    def is_active(self) -> bool:
        return self.end_time is None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "device": self.device,
            "session": self.session,
            "start_time": to_iso(self.start_time),
            "end_time": to_iso(self.end_time),
            "duration": self.duration,
            "conditions": conditions_to_dict(self.conditions),
            "created_at": to_iso(self.created_at),
        }
