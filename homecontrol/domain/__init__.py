"""
Domain Objects Package
======================
Dataclasses shared by the controllers, the store and the advisory layer.
"""

from .climate import (
    FeedbackRecord,
    FeedbackType,
    RateConfidence,
    RateReading,
    ThermostatState,
    TrendAnalysis,
    TrendDirection,
)
from .irrigation import (
    AIDecisionRecord,
    DecisionOutcome,
    DecisionSource,
    WateringHistory,
    WateringRecommendation,
    WateringTiming,
    WeatherSnapshot,
    ZoneCycleResult,
)
from .jobs import (
    ClimateAdjustmentConditions,
    DutyCycleConditions,
    HvacEventConditions,
    IrrigationConditions,
    JobConditions,
    JobRecord,
    MonitoringConditions,
    RawConditions,
)
from .schedules import ActiveJobState, PumpSchedule, active_job_key

__all__ = [
    # Climate
    "FeedbackRecord",
    "FeedbackType",
    "RateConfidence",
    "RateReading",
    "ThermostatState",
    "TrendAnalysis",
    "TrendDirection",
    # Irrigation
    "AIDecisionRecord",
    "DecisionOutcome",
    "DecisionSource",
    "WateringHistory",
    "WateringRecommendation",
    "WateringTiming",
    "WeatherSnapshot",
    "ZoneCycleResult",
    # Jobs
    "ClimateAdjustmentConditions",
    "DutyCycleConditions",
    "HvacEventConditions",
    "IrrigationConditions",
    "JobConditions",
    "JobRecord",
    "MonitoringConditions",
    "RawConditions",
    # Schedules
    "ActiveJobState",
    "PumpSchedule",
    "active_job_key",
]
