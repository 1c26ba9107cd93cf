"""
Irrigation Domain Objects
=========================
Weather snapshots, watering history summaries, advisory recommendations and
the per-day decision record used by the sprinkler controller.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any

from homecontrol.utils.time import to_iso

RAIN_KEYWORDS = ("rain", "storm", "shower")
NEVER_WATERED_DAYS = 999


class DecisionSource(str, Enum):
    """Where a watering decision came from."""

    LLM = "llm"
    RULE = "rule"  # deterministic local rule
    FALLBACK = "fallback"  # conservative default after an error


class DecisionOutcome(str, Enum):
    """What happened when the water trigger read the decision."""

    PENDING = "pending"
    WATERED = "watered"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class WeatherSnapshot:
    """Current outdoor conditions as reported by the gateway."""

    temperature: float = 75.0
    humidity: float = 50.0
    forecast: str = "Clear"
    source: str = "default"

    @property
    def indicates_rain(self) -> bool:
        text = (self.forecast or "").lower()
        return any(word in text for word in RAIN_KEYWORDS)

    def to_dict(self) -> dict[str, Any]:
        return {
            "temperature": self.temperature,
            "humidity": self.humidity,
            "forecast": self.forecast,
            "source": self.source,
        }


@dataclass
class WateringHistory:
    """Summary of completed watering sessions over a trailing window."""

    days: int = 7
    last_watered: date | None = None
    days_since_last_watering: int = NEVER_WATERED_DAYS
    total_minutes: int = 0
    daily_history: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "days": self.days,
            "last_watered": self.last_watered.isoformat() if self.last_watered else None,
            "days_since_last_watering": self.days_since_last_watering,
            "total_minutes": self.total_minutes,
            "daily_history": self.daily_history,
        }


@dataclass
class WateringRecommendation:
    """Advisor answer to "should we water today, and for how long per zone"."""

    should_water: bool
    duration_minutes: int
    reasoning: str
    source: DecisionSource = DecisionSource.LLM

    def to_dict(self) -> dict[str, Any]:
        return {
            "should_water": self.should_water,
            "duration_minutes": self.duration_minutes,
            "reasoning": self.reasoning,
            "source": self.source.value,
        }


@dataclass
class WateringTiming:
    """Advisor answer to "when should tomorrow's watering start"."""

    hour: int
    minute: int
    sunrise: str = "Unknown"
    reasoning: str = ""
    source: DecisionSource = DecisionSource.LLM

    @property
    def time_of_day(self) -> str:
        return f"{self.hour:02d}:{self.minute:02d}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "hour": self.hour,
            "minute": self.minute,
            "time_of_day": self.time_of_day,
            "sunrise": self.sunrise,
            "reasoning": self.reasoning,
            "source": self.source.value,
        }


@dataclass
class AIDecisionRecord:
    """One watering decision per device and local calendar date."""

    device: str
    decision_date: date
    should_water: bool
    duration: int
    reasoning: str = ""
    temperature: float | None = None
    humidity: float | None = None
    forecast: str | None = None
    source: DecisionSource = DecisionSource.LLM
    outcome: DecisionOutcome = DecisionOutcome.PENDING
    id: int | None = None
    created_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "device": self.device,
            "date": self.decision_date.isoformat(),
            "should_water": self.should_water,
            "duration": self.duration,
            "reasoning": self.reasoning,
            "temperature": self.temperature,
            "humidity": self.humidity,
            "forecast": self.forecast,
            "source": self.source.value,
            "outcome": self.outcome.value,
            "created_at": to_iso(self.created_at),
        }


@dataclass
class ZoneCycleResult:
    """Result of a sequential zone run."""

    success: bool
    message: str
    zones_completed: int = 0
    total_zones: int = 0
    duration_minutes: float = 0
    break_minutes: float = 0
    job_id: int | None = None
    skipped: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "message": self.message,
            "zones_completed": self.zones_completed,
            "total_zones": self.total_zones,
            "duration_minutes": self.duration_minutes,
            "break_minutes": self.break_minutes,
            "job_id": self.job_id,
            "skipped": self.skipped,
        }
