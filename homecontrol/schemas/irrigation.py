"""
Irrigation Schemas
==================

Validation for advisor JSON payloads and the simulation request.
"""

from typing import Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

MIN_ZONE_MINUTES = 10
MAX_ZONE_MINUTES = 25


class WateringDecisionSchema(BaseModel):
    """Advisor answer to "water today, and for how long per zone"."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    should_water: bool = Field(
        default=True,
        validation_alias=AliasChoices("should_water", "shouldWater"),
    )
    duration: int = Field(
        default=15,
        validation_alias=AliasChoices("duration", "duration_minutes"),
        description="Minutes per zone, clamped to 10-25",
    )
    reasoning: str = Field(default="No reasoning provided")

    @field_validator("duration", mode="before")
    @classmethod
    def clamp_duration(cls, v):
        """Round and clamp to the per-zone range; non-numbers are rejected."""
        if isinstance(v, bool):
            raise ValueError("duration must be a number")
        minutes = round(float(v))
        return max(MIN_ZONE_MINUTES, min(MAX_ZONE_MINUTES, minutes))

    @field_validator("reasoning", mode="before")
    @classmethod
    def default_reasoning(cls, v):
        if v is None or (isinstance(v, str) and not v.strip()):
            return "No reasoning provided"
        return v


class WateringTimingSchema(BaseModel):
    """Advisor answer to "when should tomorrow's watering start"."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    hour: int = Field(
        ...,
        ge=0,
        le=23,
        validation_alias=AliasChoices("optimal_watering_hour", "hour"),
    )
    minute: int = Field(
        ...,
        ge=0,
        le=59,
        validation_alias=AliasChoices("optimal_watering_minute", "minute"),
    )
    sunrise: str = Field(default="Unknown", validation_alias=AliasChoices("sunrise_time", "sunrise"))
    reasoning: str = Field(default="No reasoning provided")


class SimulationRequest(BaseModel):
    """Request schema for a test run of the zone cycle."""
    duration: float = Field(default=3, gt=0, le=60, description="Minutes per zone")
    break_time: float = Field(default=1, ge=0, le=30, description="Minutes between zones")
    zones: Optional[int] = Field(default=None, ge=1, le=16, description="Override zone count")
