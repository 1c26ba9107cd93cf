"""
Climate Schemas
===============

Request schemas for the manual thermostat operations.
"""

from pydantic import BaseModel, Field, field_validator

from homecontrol.domain.climate import FeedbackType

MIN_TARGET_TEMP = 65
MAX_TARGET_TEMP = 80


class SetTargetRequest(BaseModel):
    """Request schema for changing the comfort target."""
    target_temp: float = Field(
        ...,
        ge=MIN_TARGET_TEMP,
        le=MAX_TARGET_TEMP,
        description="Target temperature in °F (65-80)",
    )


class FeedbackRequest(BaseModel):
    """Request schema for comfort feedback."""
    feedback_type: FeedbackType = Field(..., description="too_hot, too_cold or comfortable")

    @field_validator("feedback_type", mode="before")
    @classmethod
    def normalize_feedback(cls, v):
        """Normalize feedback string to enum."""
        if isinstance(v, str):
            return FeedbackType(v.strip().lower())
        return v
