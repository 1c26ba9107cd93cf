"""
Climate Domain Objects
======================
Rate readings, thermostat state, trend analysis and comfort feedback.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from homecontrol.utils.time import to_iso


class RateConfidence(str, Enum):
    """Confidence grade of a rate-of-change estimate, by sample density."""

    HIGH = "high"  # >= 10 samples in window
    MEDIUM = "medium"  # >= 5 samples in window
    LOW = "low"
    INSUFFICIENT_DATA = "insufficient_data"  # < 2 samples total


class TrendDirection(str, Enum):
    RISING = "rising"
    FALLING = "falling"
    STABLE = "stable"


class FeedbackType(str, Enum):
    TOO_HOT = "too_hot"
    TOO_COLD = "too_cold"
    COMFORTABLE = "comfortable"


# hvac_action reported by the thermostat -> event label written to the job log
HVAC_EVENT_LABELS = {
    "cooling": "ac_on",
    "heating": "heat_on",
    "idle": "hvac_idle",
    "off": "hvac_off",
}


@dataclass
class RateReading:
    """Average rate of change over a trailing window (units per minute)."""

    rate: float
    sample_count: int
    confidence: RateConfidence
    window_minutes: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "rate": self.rate,
            "sample_count": self.sample_count,
            "confidence": self.confidence.value,
            "window_minutes": self.window_minutes,
        }


@dataclass
class ThermostatState:
    """What the thermostat reports about itself."""

    setpoint: float | None
    mode: str | None
    action: str | None

    @property
    def event_label(self) -> str:
        return HVAC_EVENT_LABELS.get((self.action or "").lower(), f"hvac_{self.action or 'unknown'}")


@dataclass
class TrendAnalysis:
    """Result of the hourly trend pass over sensor history."""

    sample_count: int
    average: float | None = None
    minimum: float | None = None
    maximum: float | None = None
    variance: float | None = None  # spread (max - min) across the window
    direction: TrendDirection = TrendDirection.STABLE
    adjustment_step: float | None = None
    sufficient: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "sample_count": self.sample_count,
            "average": self.average,
            "minimum": self.minimum,
            "maximum": self.maximum,
            "variance": self.variance,
            "direction": self.direction.value,
            "adjustment_step": self.adjustment_step,
            "sufficient": self.sufficient,
        }


@dataclass
class FeedbackRecord:
    """Occupant comfort feedback with the loop state at that moment."""

    feedback_type: FeedbackType
    office_temp: float | None
    thermostat_setpoint: float | None
    hvac_mode: str | None
    temp_change_rate_15min: float | None
    temp_change_rate_30min: float | None
    id: int | None = None
    created_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "feedback_type": self.feedback_type.value,
            "office_temp": self.office_temp,
            "thermostat_setpoint": self.thermostat_setpoint,
            "hvac_mode": self.hvac_mode,
            "temp_change_rate_15min": self.temp_change_rate_15min,
            "temp_change_rate_30min": self.temp_change_rate_30min,
            "created_at": to_iso(self.created_at),
        }
