"""
Schemas Module
==============

Pydantic models validating advisor payloads and manual-operation requests.
"""

from homecontrol.schemas.climate import FeedbackRequest, SetTargetRequest
from homecontrol.schemas.irrigation import (
    SimulationRequest,
    WateringDecisionSchema,
    WateringTimingSchema,
)

__all__ = [
    "FeedbackRequest",
    "SetTargetRequest",
    "SimulationRequest",
    "WateringDecisionSchema",
    "WateringTimingSchema",
]
