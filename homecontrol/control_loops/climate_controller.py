"""
ClimateController: keeps a room at a target temperature by nudging the
thermostat setpoint.

The room sensor and the thermostat's own sensor disagree, so the loop steers
the setpoint one step at a time and waits for the HVAC to settle between
changes.

Schedule:
- Every 2 minutes: read sensor + thermostat, adjust when outside the band
- Every hour: widen or narrow the adjustment step from 6 h of sensor history

Author: HomeControl Team
Date: October 2026
"""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError as PydanticValidationError

from homecontrol.control_loops.performance import PerformanceMetrics, track_performance
from homecontrol.control_loops.rate_tracker import DEFAULT_MAX_SAMPLES, RateTracker
from homecontrol.domain.climate import FeedbackRecord, ThermostatState, TrendAnalysis, TrendDirection
from homecontrol.domain.exceptions import HomeControlError, RepositoryError, ValidationError
from homecontrol.domain.jobs import ClimateAdjustmentConditions, HvacEventConditions, MonitoringConditions
from homecontrol.schemas.climate import FeedbackRequest, SetTargetRequest
from homecontrol.utils.time import SYSTEM_CLOCK, Clock, to_iso

if TYPE_CHECKING:
    from homecontrol.config import AppConfig
    from homecontrol.services.gateway.home_assistant import HomeAssistantGateway
    from homecontrol.workers.unified_scheduler import UnifiedScheduler
    from infrastructure.database.repositories.feedback import FeedbackRepository
    from infrastructure.database.repositories.jobs import JobRepository

logger = logging.getLogger(__name__)

DEVICE_NAME = "Office Temperature"
SESSION_ADJUSTMENT = "Auto Climate Control"
SESSION_MONITORING = "Temperature Monitoring"
SESSION_HVAC_EVENT = "HVAC Event"

JOB_POLL = "climate.poll"
JOB_TRENDS = "climate.trends"

MIN_TREND_POINTS = 3
TREND_DEADBAND = 0.5


@dataclass
class ClimateControlConfig:
    """Tunables for the thermostat loop."""

    timezone: str = "America/New_York"
    target_temp: float = 73.0
    threshold: float = 0.5
    default_step: float = 1.0
    wide_step: float = 2.0
    cooldown_minutes: int = 15
    min_setpoint: float = 68.0
    max_setpoint: float = 78.0
    poll_minutes: int = 2
    trend_hours: int = 6
    variance_threshold: float = 4.0
    monitoring_interval_minutes: int = 10
    sensor_entity: str = "sensor.walkway_temperature"
    thermostat_entity: str = "climate.walkway"
    min_valid_temperature: float = 40.0
    max_valid_temperature: float = 100.0
    max_samples: int = DEFAULT_MAX_SAMPLES

    @classmethod
    def from_app_config(cls, config: "AppConfig") -> "ClimateControlConfig":
        return cls(
            timezone=config.timezone,
            target_temp=config.climate_target_temp,
            threshold=config.climate_threshold,
            cooldown_minutes=config.climate_cooldown_minutes,
            min_setpoint=config.climate_min_setpoint,
            max_setpoint=config.climate_max_setpoint,
            poll_minutes=config.climate_poll_minutes,
            variance_threshold=config.climate_variance_threshold,
            sensor_entity=config.climate_sensor_entity,
            thermostat_entity=config.climate_thermostat_entity,
        )


def compute_setpoint(
    old: float,
    delta: float,
    step: float,
    target: float,
    min_sp: float = 68,
    max_sp: float = 78,
) -> float:
    """
    Next thermostat setpoint for ``delta = target - room``.

    Room too cold raises the setpoint by ``step`` up to ``max_sp``. Room too
    warm lowers it by ``step`` but never below ``target`` or ``min_sp``. A
    setpoint already beyond a bound is never pushed further out.
    """
    if delta > 0:
        return max(old, min(old + step, max_sp))
    if delta < 0:
        return min(old, max(old - step, target, min_sp))
    return old


def analyze_series(
    values: list[float],
    variance_threshold: float = 4.0,
    default_step: float = 1.0,
    wide_step: float = 2.0,
) -> TrendAnalysis:
    """Statistics and step choice for a window of readings (oldest first)."""
    if len(values) < MIN_TREND_POINTS:
        return TrendAnalysis(sample_count=len(values))

    average = sum(values) / len(values)
    minimum, maximum = min(values), max(values)
    spread = maximum - minimum

    mid = len(values) // 2
    first_half = sum(values[:mid]) / mid
    second_half = sum(values[mid:]) / (len(values) - mid)
    diff = second_half - first_half
    if diff > TREND_DEADBAND:
        direction = TrendDirection.RISING
    elif diff < -TREND_DEADBAND:
        direction = TrendDirection.FALLING
    else:
        direction = TrendDirection.STABLE

    return TrendAnalysis(
        sample_count=len(values),
        average=round(average, 2),
        minimum=minimum,
        maximum=maximum,
        variance=round(spread, 2),
        direction=direction,
        adjustment_step=wide_step if spread > variance_threshold else default_step,
        sufficient=True,
    )


class ClimateController:
    """
    Closed-loop thermostat controller.

    Note:
        The poll and the trend pass may run concurrently. They share only
        ``adjustment_step``; the last write wins.
    """

    def __init__(
        self,
        gateway: "HomeAssistantGateway",
        scheduler: "UnifiedScheduler",
        jobs: "JobRepository",
        feedback: "FeedbackRepository",
        config: ClimateControlConfig | None = None,
        clock: Clock | None = None,
        rate_tracker: RateTracker | None = None,
    ):
        """
        Args:
            gateway: Sensor/thermostat gateway
            scheduler: Shared time-trigger scheduler
            jobs: Job log for adjustments, monitoring snapshots and HVAC events
            feedback: Comfort feedback store
            config: Tunables (defaults when omitted)
            clock: Time source
            rate_tracker: Sample buffer (a new one is created when omitted)
        """
        self.gateway = gateway
        self.scheduler = scheduler
        self.jobs = jobs
        self.feedback = feedback
        self.config = config or ClimateControlConfig()
        self._clock = clock or SYSTEM_CLOCK
        self.rate_tracker = rate_tracker or RateTracker(self.config.max_samples, clock=self._clock)

        self.target_temp = float(self.config.target_temp)
        self.adjustment_step = float(self.config.default_step)
        self.last_adjustment_at: datetime | None = None
        self.last_monitoring_at: datetime | None = None
        self.last_hvac_action: str | None = None
        self.last_office_temp: float | None = None
        self.last_thermostat: ThermostatState | None = None
        self.last_trend: TrendAnalysis | None = None

        self.performance_metrics = PerformanceMetrics()
        self.started = False
        self._lock = threading.RLock()

        logger.info(
            "ClimateController initialized (target %s°F ±%s, sensor %s, thermostat %s)",
            self.target_temp,
            self.config.threshold,
            self.config.sensor_entity,
            self.config.thermostat_entity,
        )

    # ==================== Lifecycle ====================

    def start(self) -> None:
        if self.started:
            logger.warning("ClimateController already started")
            return
        self.started = True

        self.scheduler.schedule_interval(
            JOB_POLL, self.config.poll_minutes * 60, func=self.check_and_adjust, job_id=JOB_POLL
        )
        self.scheduler.schedule_hourly(
            JOB_TRENDS, 0, func=self.analyze_trends, timezone=self.config.timezone, job_id=JOB_TRENDS
        )

        self.check_and_adjust()
        logger.info("ClimateController started: poll every %s min, trends hourly", self.config.poll_minutes)

    def stop(self) -> None:
        if not self.started:
            return
        self.scheduler.cancel(JOB_POLL)
        self.scheduler.cancel(JOB_TRENDS)
        self.started = False
        logger.info("ClimateController stopped")

    # ==================== Poll ====================

    @track_performance("check_and_adjust")
    def check_and_adjust(self) -> str:
        """
        One control step.

        Returns:
            Outcome label: ``adjusted``, ``in_band``, ``cooldown``,
            ``at_limit``, ``thermostat_unavailable`` or ``error``.
        """
        now = self._clock.now()
        office_temp = self._read_office_temperature()
        try:
            thermostat = self._read_thermostat()
        except HomeControlError as exc:
            logger.error("Thermostat unavailable, skipping adjustment: %s", exc)
            return "thermostat_unavailable"

        with self._lock:
            self.last_office_temp = office_temp
            self.last_thermostat = thermostat
            previous_action = self.last_hvac_action
            self.last_hvac_action = thermostat.action
            target = self.target_temp
            step = self.adjustment_step
            cooldown_left = self._cooldown_remaining(now)

        if previous_action is not None and thermostat.action != previous_action:
            self._log_hvac_event(thermostat, previous_action, office_temp, target, now)

        if cooldown_left is not None:
            logger.info("Too soon since last adjustment (wait %.0f min), skipping", cooldown_left.total_seconds() / 60)
            return "cooldown"

        self.rate_tracker.record(office_temp, {"setpoint": thermostat.setpoint, "mode": thermostat.mode})
        rate_15 = self.rate_tracker.rate_over_window(15)
        rate_30 = self.rate_tracker.rate_over_window(30)
        delta = target - office_temp

        logger.info(
            "Room %.1f°F | target %.1f°F | delta %.1f | setpoint %s | mode %s | rate15 %s (%s) | rate30 %s (%s)",
            office_temp,
            target,
            delta,
            thermostat.setpoint,
            thermostat.mode,
            rate_15.rate,
            rate_15.confidence.value,
            rate_30.rate,
            rate_30.confidence.value,
        )

        if abs(delta) < self.config.threshold:
            if self._monitoring_due(now):
                self._log_event(
                    SESSION_MONITORING,
                    MonitoringConditions(
                        office_temp=round(office_temp, 1),
                        target_temp=target,
                        delta=round(delta, 2),
                        setpoint=thermostat.setpoint,
                        hvac_mode=thermostat.mode,
                        hvac_action=thermostat.action,
                        rate_15min=rate_15.to_dict(),
                        rate_30min=rate_30.to_dict(),
                    ),
                    now,
                )
                with self._lock:
                    self.last_monitoring_at = now
            return "in_band"

        if thermostat.setpoint is None:
            logger.warning("Thermostat reports no setpoint; cannot adjust")
            return "thermostat_unavailable"

        old_setpoint = thermostat.setpoint
        new_setpoint = compute_setpoint(
            old_setpoint,
            delta,
            step,
            target,
            min_sp=self.config.min_setpoint,
            max_sp=self.config.max_setpoint,
        )
        action = "increase" if delta > 0 else "decrease"
        if new_setpoint == old_setpoint:
            logger.info("Setpoint already at its %s limit (%s°F)", "upper" if delta > 0 else "lower", old_setpoint)
            return "at_limit"

        try:
            self.gateway.call_action(
                "climate", "set_temperature", self.config.thermostat_entity, {"temperature": new_setpoint}
            )
        except HomeControlError as exc:
            logger.error("Failed to set thermostat to %s°F: %s", new_setpoint, exc)
            return "error"

        with self._lock:
            self.last_adjustment_at = now

        logger.info("Setpoint %s %s°F -> %s°F", action, old_setpoint, new_setpoint)
        self._log_event(
            SESSION_ADJUSTMENT,
            ClimateAdjustmentConditions(
                office_temp=round(office_temp, 1),
                target_temp=target,
                delta=round(delta, 2),
                old_setpoint=old_setpoint,
                new_setpoint=new_setpoint,
                action=action,
                adjustment_step=step,
                hvac_mode=thermostat.mode,
                rate_15min=rate_15.to_dict(),
                rate_30min=rate_30.to_dict(),
            ),
            now,
        )
        return "adjusted"

    # ==================== Trends ====================

    @track_performance("analyze_trends")
    def analyze_trends(self) -> TrendAnalysis:
        """Choose the adjustment step from the spread of recent sensor history."""
        end = self._clock.now()
        start = end - timedelta(hours=self.config.trend_hours)
        try:
            history = self.gateway.get_history(self.config.sensor_entity, start, end)
        except HomeControlError as exc:
            logger.warning("Temperature history unavailable: %s", exc)
            return TrendAnalysis(sample_count=0)

        values = []
        for entry in history:
            value = entry.numeric_state()
            if value is not None:
                values.append(value)

        analysis = analyze_series(
            values,
            variance_threshold=self.config.variance_threshold,
            default_step=self.config.default_step,
            wide_step=self.config.wide_step,
        )
        if not analysis.sufficient:
            logger.info("Insufficient data for trend analysis (%s points)", analysis.sample_count)
            return analysis

        with self._lock:
            self.adjustment_step = analysis.adjustment_step
            self.last_trend = analysis

        logger.info(
            "Trend (%sh): avg %.1f°F, min %s, max %s, spread %.1f, %s -> step %s",
            self.config.trend_hours,
            analysis.average,
            analysis.minimum,
            analysis.maximum,
            analysis.variance,
            analysis.direction.value,
            analysis.adjustment_step,
        )
        return analysis

    # ==================== Manual operations ====================

    def set_target_temperature(self, temperature: float) -> float:
        """Change the comfort target (65-80°F) and allow an immediate adjustment."""
        try:
            request = SetTargetRequest(target_temp=temperature)
        except PydanticValidationError as exc:
            raise ValidationError(
                "Target temperature must be between 65-80°F", detail={"target_temp": temperature}
            ) from exc

        with self._lock:
            previous = self.target_temp
            self.target_temp = float(request.target_temp)
            self.last_adjustment_at = None
        logger.info("Target temperature changed: %s°F -> %s°F", previous, self.target_temp)
        return self.target_temp

    def submit_feedback(self, feedback_type: str) -> FeedbackRecord:
        """Store occupant comfort feedback with the loop's current readings."""
        try:
            request = FeedbackRequest(feedback_type=feedback_type)
        except (PydanticValidationError, ValueError) as exc:
            raise ValidationError(f"Invalid feedback type: {feedback_type!r}") from exc

        office_temp = self._read_office_temperature()
        try:
            thermostat = self._read_thermostat()
        except HomeControlError as exc:
            logger.warning("Thermostat unavailable while recording feedback: %s", exc)
            thermostat = ThermostatState(setpoint=None, mode=None, action=None)

        record = FeedbackRecord(
            feedback_type=request.feedback_type,
            office_temp=office_temp,
            thermostat_setpoint=thermostat.setpoint,
            hvac_mode=thermostat.mode,
            temp_change_rate_15min=self.rate_tracker.rate_over_window(15).rate,
            temp_change_rate_30min=self.rate_tracker.rate_over_window(30).rate,
            created_at=self._clock.now(),
        )
        self.feedback.add(record)
        logger.info("Comfort feedback recorded: %s at %.1f°F", record.feedback_type.value, office_temp)
        return record

    # ==================== Status ====================

    def get_status(self) -> dict[str, Any]:
        rate_15 = self.rate_tracker.rate_over_window(15)
        rate_30 = self.rate_tracker.rate_over_window(30)
        with self._lock:
            return {
                "device": DEVICE_NAME,
                "started": self.started,
                "target_temp": self.target_temp,
                "threshold": self.config.threshold,
                "adjustment_step": self.adjustment_step,
                "min_setpoint": self.config.min_setpoint,
                "max_setpoint": self.config.max_setpoint,
                "cooldown_minutes": self.config.cooldown_minutes,
                "last_adjustment": to_iso(self.last_adjustment_at),
                "office_sensor": self.config.sensor_entity,
                "thermostat": self.config.thermostat_entity,
                "office_temp": self.last_office_temp,
                "setpoint": self.last_thermostat.setpoint if self.last_thermostat else None,
                "hvac_mode": self.last_thermostat.mode if self.last_thermostat else None,
                "hvac_action": self.last_hvac_action,
                "rate_15min": rate_15.to_dict(),
                "rate_30min": rate_30.to_dict(),
                "samples": len(self.rate_tracker),
                "last_trend": self.last_trend.to_dict() if self.last_trend else None,
                "performance": self.performance_metrics.to_dict(),
                "timestamp": to_iso(self._clock.now()),
            }

    # ==================== Internals ====================

    def _read_office_temperature(self) -> float:
        try:
            value = self.gateway.read_state(self.config.sensor_entity).numeric_state()
        except HomeControlError as exc:
            logger.warning("Room sensor read failed, using target %s°F: %s", self.target_temp, exc)
            return self.target_temp

        if value is None or not self.config.min_valid_temperature <= value <= self.config.max_valid_temperature:
            logger.warning("Invalid room temperature reading %r, using target %s°F", value, self.target_temp)
            return self.target_temp
        return value

    def _read_thermostat(self) -> ThermostatState:
        entity = self.gateway.read_state(self.config.thermostat_entity)
        mode = entity.state if entity.is_available else entity.attributes.get("hvac_mode")
        return ThermostatState(
            setpoint=entity.numeric_attribute("temperature"),
            mode=mode,
            action=entity.attributes.get("hvac_action") or "idle",
        )

    def _cooldown_remaining(self, now: datetime) -> timedelta | None:
        if self.last_adjustment_at is None:
            return None
        remaining = self.last_adjustment_at + timedelta(minutes=self.config.cooldown_minutes) - now
        return remaining if remaining > timedelta(0) else None

    def _monitoring_due(self, now: datetime) -> bool:
        with self._lock:
            last = self.last_monitoring_at
        return last is None or now - last >= timedelta(minutes=self.config.monitoring_interval_minutes)

    def _log_hvac_event(
        self,
        thermostat: ThermostatState,
        previous_action: str | None,
        office_temp: float,
        target: float,
        at: datetime,
    ) -> None:
        event = thermostat.event_label
        logger.info(
            "HVAC %s -> %s (%s) room %.1f°F, setpoint %s",
            previous_action,
            thermostat.action,
            event,
            office_temp,
            thermostat.setpoint,
        )
        self._log_event(
            SESSION_HVAC_EVENT,
            HvacEventConditions(
                event=event,
                hvac_action=thermostat.action,
                previous_action=previous_action,
                office_temp=round(office_temp, 1),
                setpoint=thermostat.setpoint,
                target_temp=target,
                hvac_mode=thermostat.mode,
            ),
            at,
        )

    def _log_event(self, session: str, conditions: Any, at: datetime) -> None:
        try:
            self.jobs.log_event(DEVICE_NAME, session, conditions, at=at)
        except RepositoryError as exc:
            logger.error("Failed to log %s: %s", session, exc)
