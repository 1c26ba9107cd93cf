"""
PumpController: daily duty cycle for the pool recirculation pump.

Daily Schedule:
- 05:00: compute run hours from the outdoor temperature (1 hour per 10°F,
  clamped to 4-10 hours, half-hour steps)
- 10:00: start the pump and arm a one-shot stop at start + hours
- Hourly: while running, extend the session once per day when rain is reported

The in-flight session is mirrored to the schedule store under
``"Pool Pump Active Job"`` so a restart can either resume the stop timer or
switch off a pump whose session already ended.

Author: HomeControl Team
Date: October 2026
"""

import logging
import math
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import TYPE_CHECKING, Any

from homecontrol.control_loops.performance import PerformanceMetrics, track_performance
from homecontrol.domain.exceptions import HomeControlError, RepositoryError, StateInconsistencyError
from homecontrol.domain.jobs import DutyCycleConditions
from homecontrol.domain.schedules import ActiveJobState, PumpSchedule
from homecontrol.utils.time import SYSTEM_CLOCK, Clock, local_date, next_local_time, parse_time_of_day, to_iso

if TYPE_CHECKING:
    from homecontrol.config import AppConfig
    from homecontrol.services.gateway.home_assistant import HomeAssistantGateway
    from homecontrol.services.weather_service import WeatherService
    from homecontrol.workers.unified_scheduler import UnifiedScheduler
    from infrastructure.database.repositories.jobs import JobRepository
    from infrastructure.database.repositories.schedules import ScheduleRepository

logger = logging.getLogger(__name__)

DEVICE_NAME = "Pool Pump"
SESSION_LABEL = "Daily Peak Sun"

JOB_CALCULATE = "pump.daily_calculation"
JOB_START = "pump.start"
JOB_RAIN_CHECK = "pump.rain_check"
JOB_STOP = "pump.stop"


class PumpState(str, Enum):
    IDLE = "idle"
    SCHEDULED = "scheduled"
    RUNNING = "running"


@dataclass
class PumpControlConfig:
    """Tunables for the pump duty cycle."""

    timezone: str = "America/New_York"
    calculation_time: str = "05:00"
    start_time: str = "10:00"
    min_hours: float = 4.0
    max_hours: float = 10.0
    degrees_per_hour: float = 10.0
    rain_extension_hours: float = 3.0
    stop_retry_minutes: int = 5
    temperature_entity: str = "sensor.nws_temperature"
    fallback_temperature: float = 80.0
    min_valid_temperature: float = 30.0
    max_valid_temperature: float = 120.0
    on_script: str = "script.turn_on_pool_pump"
    off_script: str = "script.turn_off_pool_pump"

    @classmethod
    def from_app_config(cls, config: "AppConfig") -> "PumpControlConfig":
        return cls(
            timezone=config.timezone,
            calculation_time=config.pump_calculation_time,
            start_time=config.pump_start_time,
            min_hours=config.pump_min_hours,
            max_hours=config.pump_max_hours,
            degrees_per_hour=config.pump_degrees_per_hour,
            rain_extension_hours=config.pump_rain_extension_hours,
            temperature_entity=config.pump_temperature_entity,
        )


def compute_duty_hours(
    temperature: float,
    min_hours: float = 4,
    max_hours: float = 10,
    degrees_per_hour: float = 10,
) -> float:
    """
    Run hours for a temperature: ``T / degrees_per_hour`` rounded to the
    nearest half hour (halves round up), then clamped to ``[min_hours, max_hours]``.
    """
    if degrees_per_hour <= 0:
        raise ValueError("degrees_per_hour must be positive")
    raw = float(temperature) / float(degrees_per_hour)
    hours = math.floor(raw * 2 + 0.5) / 2
    return float(max(min_hours, min(max_hours, hours)))


def describe_duty_hours(temperature: float, hours: float, config: PumpControlConfig) -> str:
    """Human rationale, e.g. ``"82°F = 8.0hrs (1hr per 10°F, min 4, max 10)"``."""
    reason = (
        f"{temperature:g}°F = {hours:.1f}hrs "
        f"(1hr per {config.degrees_per_hour:g}°F, min {config.min_hours:g}, max {config.max_hours:g})"
    )
    if temperature < 40:
        reason += f" - minimum {config.min_hours:g}hrs for circulation"
    if temperature > 100:
        reason += f" - capped at {config.max_hours:g}hrs maximum"
    return reason


class PumpController:
    """
    Cyclic duty controller for the pool pump.

    State machine: IDLE -> SCHEDULED -> RUNNING -> IDLE. Only one session is
    open at a time; ``start_session`` is a no-op while one is active.
    """

    def __init__(
        self,
        gateway: "HomeAssistantGateway",
        scheduler: "UnifiedScheduler",
        schedules: "ScheduleRepository",
        jobs: "JobRepository",
        weather: "WeatherService",
        config: PumpControlConfig | None = None,
        clock: Clock | None = None,
    ):
        """
        Args:
            gateway: Actuator/sensor gateway
            scheduler: Shared time-trigger scheduler
            schedules: Schedule documents and active-job markers
            jobs: Job log
            weather: Weather lookup used by the rain check
            config: Tunables (defaults when omitted)
            clock: Time source
        """
        self.gateway = gateway
        self.scheduler = scheduler
        self.schedules = schedules
        self.jobs = jobs
        self.weather = weather
        self.config = config or PumpControlConfig()
        self._clock = clock or SYSTEM_CLOCK

        self.state = PumpState.IDLE
        self.schedule = PumpSchedule(start_time=self.config.start_time)
        self.current_job_id: int | None = None
        self.session_started_at: datetime | None = None
        self.session_end: datetime | None = None
        self.last_error: str | None = None
        # Set while an actuator call runs outside the lock
        self._switching = False

        self.performance_metrics = PerformanceMetrics()
        self.started = False
        self._lock = threading.RLock()

        logger.info("PumpController initialized (tz=%s)", self.config.timezone)

    # ==================== Lifecycle ====================

    def start(self) -> None:
        """Load the schedule, register triggers, calculate, then recover any open session."""
        if self.started:
            logger.warning("PumpController already started")
            return
        self.started = True

        self._load_schedule()

        tz = self.config.timezone
        self.scheduler.schedule_daily(
            JOB_CALCULATE, self.config.calculation_time, func=self.calculate_schedule, timezone=tz, job_id=JOB_CALCULATE
        )
        self.scheduler.schedule_daily(
            JOB_START, self.config.start_time, func=self.start_session, timezone=tz, job_id=JOB_START
        )
        self.scheduler.schedule_hourly(
            JOB_RAIN_CHECK, 0, func=self.check_rain_and_extend, timezone=tz, job_id=JOB_RAIN_CHECK
        )

        self.calculate_schedule()
        self.recover_active_job()

        logger.info(
            "PumpController started: calculate %s, start %s, rain check hourly",
            self.config.calculation_time,
            self.config.start_time,
        )

    def stop(self) -> None:
        """Cancel this controller's triggers. The pump itself is left as it is."""
        if not self.started:
            return
        for job_id in (JOB_CALCULATE, JOB_START, JOB_RAIN_CHECK, JOB_STOP):
            self.scheduler.cancel(job_id)
        self.started = False
        logger.info("PumpController stopped")

    # ==================== Daily calculation ====================

    @track_performance("calculate_schedule")
    def calculate_schedule(self) -> PumpSchedule:
        """Compute today's run hours from the current temperature and persist the plan."""
        temperature = self._read_temperature()
        hours = compute_duty_hours(
            temperature,
            min_hours=self.config.min_hours,
            max_hours=self.config.max_hours,
            degrees_per_hour=self.config.degrees_per_hour,
        )
        reason = describe_duty_hours(temperature, hours, self.config)

        now = self._clock.now()
        today = local_date(now, self.config.timezone)
        start_hour, start_minute = parse_time_of_day(self.config.start_time)
        next_start = next_local_time(now, start_hour, start_minute, self.config.timezone)

        with self._lock:
            previous = self.schedule
            extended_today = previous.extension_date == today
            total_hours = hours
            carried = max(0.0, previous.total_hours - previous.hours) if extended_today else 0.0
            if carried:
                # A same-day recalculation keeps the extension already granted
                total_hours += carried
                reason += f" + {carried:g}hrs rain extension"
            self.schedule = PumpSchedule(
                hours=hours,
                total_hours=total_hours,
                reason=reason,
                start_time=self.config.start_time,
                temperature=temperature,
                next_start=next_start,
                next_end=next_start + timedelta(hours=hours),
                rain_extension_applied=extended_today,
                extension_date=previous.extension_date if extended_today else None,
                calculated_at=now,
            )
            if self.state != PumpState.RUNNING:
                self.state = PumpState.SCHEDULED
            self._save_schedule()
            schedule = self.schedule

        logger.info("Pump schedule calculated: %s hrs (%s), next start %s", hours, reason, to_iso(next_start))
        return schedule

    def force_recalculate(self) -> dict[str, Any]:
        """Recompute the plan now and return the schedule document."""
        return self.calculate_schedule().to_dict()

    def _read_temperature(self) -> float:
        fallback = self.config.fallback_temperature
        try:
            value = self.gateway.read_state(self.config.temperature_entity).numeric_state()
        except HomeControlError as exc:
            logger.warning("Temperature read failed, using %s°F fallback: %s", fallback, exc)
            return fallback

        if value is None or not self.config.min_valid_temperature <= value <= self.config.max_valid_temperature:
            logger.warning("Invalid temperature reading %r, using %s°F fallback", value, fallback)
            return fallback
        return value

    # ==================== Session ====================

    @track_performance("start_session")
    def start_session(self) -> int | None:
        """
        Switch the pump on and open a job.

        The active marker is written as soon as the pump is on, even when the
        job row cannot be recorded, so recovery can still switch it off.

        Returns:
            The new job id, or None when a session is already active, the
            actuator call failed, or the job row could not be written.
        """
        with self._lock:
            if self._switching or self.state == PumpState.RUNNING or self.current_job_id is not None:
                logger.info("Pump session already active (job %s); not starting another", self.current_job_id)
                return None
            self._switching = True
            hours = self.schedule.hours
            temperature = self.schedule.temperature
            reason = self.schedule.reason

        try:
            self._switch(on=True)
        except HomeControlError as exc:
            with self._lock:
                self._switching = False
                self.last_error = str(exc)
            logger.error("Failed to start pump: %s", exc)
            return None

        now = self._clock.now()
        end = now + timedelta(hours=hours)
        conditions = DutyCycleConditions(
            temperature=temperature if temperature is not None else self._read_temperature(),
            reason=reason,
            start_time=self.config.start_time,
            expected_hours=hours,
        )
        job_id: int | None = None
        try:
            job_id = self.jobs.start_job(DEVICE_NAME, SESSION_LABEL, conditions, started_at=now)
        except RepositoryError as exc:
            logger.error("Failed to record pump session, continuing without a job row: %s", exc)

        with self._lock:
            self._switching = False
            self.current_job_id = job_id
            self.session_started_at = now
            self.session_end = end
            self.state = PumpState.RUNNING
            self._save_active_job()
            self._arm_stop(end)

        logger.info("Pump started, running until %s (%s hrs)", to_iso(end), hours)
        return job_id

    @track_performance("stop_session")
    def stop_session(self) -> bool:
        """
        Switch the pump off and close the session.

        If the off call fails the job and active marker are kept and a retry
        is armed ``stop_retry_minutes`` later.
        """
        with self._lock:
            if self.state != PumpState.RUNNING:
                logger.debug("No pump session to stop")
                return False
            if self._switching:
                logger.info("Pump switch already in progress; not stopping twice")
                return False
            self._switching = True

        if not self._switch_off_or_retry():
            return False

        with self._lock:
            self._close_session(self._clock.now())
            self.scheduler.cancel(JOB_STOP)

        logger.info("Pump session stopped")
        return True

    def _switch_off_or_retry(self) -> bool:
        """Off call for a session claimed via ``_switching``; arms a retry stop on failure."""
        try:
            self._switch(on=False)
        except HomeControlError as exc:
            retry_at = self._clock.now() + timedelta(minutes=self.config.stop_retry_minutes)
            with self._lock:
                self._switching = False
                self.last_error = str(exc)
                self._arm_stop(retry_at)
            logger.error("Failed to stop pump, retrying at %s: %s", to_iso(retry_at), exc)
            return False
        return True

    def _on_stop_due(self) -> None:
        logger.info("Pump session complete (%s hrs total)", self.schedule.total_hours)
        self.stop_session()

    # ==================== Rain extension ====================

    @track_performance("check_rain_and_extend")
    def check_rain_and_extend(self) -> bool:
        """Extend a running session once per day when the forecast reports rain."""
        today = local_date(self._clock.now(), self.config.timezone)
        with self._lock:
            if self.state != PumpState.RUNNING or self.session_end is None:
                return False
            if self.schedule.extension_date == today:
                return False

        weather = self.weather.get_current_weather()
        if not weather.indicates_rain:
            return False

        extension = self.config.rain_extension_hours
        with self._lock:
            if self._switching or self.state != PumpState.RUNNING or self.session_end is None:
                return False
            if self.schedule.extension_date == today:
                return False

            self.session_end = self.session_end + timedelta(hours=extension)
            self._arm_stop(self.session_end)
            self._save_active_job()

            self.schedule.total_hours += extension
            self.schedule.reason += f" + {extension:g}hrs rain extension"
            self.schedule.rain_extension_applied = True
            self.schedule.extension_date = today
            self._save_schedule()
            new_end = self.session_end

        logger.info(
            "Rain detected (%s); pump extended by %s hrs until %s",
            weather.forecast,
            extension,
            to_iso(new_end),
        )
        return True

    # ==================== Recovery ====================

    def recover_active_job(self) -> str | None:
        """
        Reconcile a session persisted before a restart.

        Returns:
            ``"closed"`` when an expired session was switched off,
            ``"resumed"`` when the stop timer was re-armed, ``"retry"`` when the
            off call failed, or None when nothing was persisted.
        """
        active = self.schedules.load_active_job(DEVICE_NAME)
        if active is None:
            return None

        now = self._clock.now()
        with self._lock:
            if self._switching or self.state == PumpState.RUNNING:
                logger.info("Pump session already tracked; nothing to recover")
                return None
            self.current_job_id = active.job_id
            self.session_started_at = active.started_at
            self.session_end = active.end_time
            self.state = PumpState.RUNNING

            try:
                self._ensure_session_current(active, now)
            except StateInconsistencyError as exc:
                logger.warning("%s; switching pump off", exc)
                self._switching = True
            else:
                self._arm_stop(active.end_time)
                logger.info("Resumed pump session %s, stopping at %s", active.job_id, to_iso(active.end_time))
                return "resumed"

        if not self._switch_off_or_retry():
            return "retry"

        with self._lock:
            self._close_session(now)
        return "closed"

    @staticmethod
    def _ensure_session_current(active: ActiveJobState, now: datetime) -> None:
        if active.end_time <= now:
            raise StateInconsistencyError(
                f"Pump session {active.job_id} ended at {to_iso(active.end_time)} while offline",
                detail={"job_id": active.job_id, "end_time": to_iso(active.end_time)},
            )

    # ==================== Status ====================

    def get_schedule(self) -> dict[str, Any]:
        with self._lock:
            return self.schedule.to_dict()

    def get_status(self) -> dict[str, Any]:
        with self._lock:
            return {
                "device": DEVICE_NAME,
                "started": self.started,
                "state": self.state.value,
                "current_job_id": self.current_job_id,
                "session_started_at": to_iso(self.session_started_at),
                "session_end": to_iso(self.session_end),
                "schedule": self.schedule.to_dict(),
                "last_error": self.last_error,
                "performance": self.performance_metrics.to_dict(),
                "timestamp": to_iso(self._clock.now()),
            }

    # ==================== Internals ====================

    def _switch(self, *, on: bool) -> None:
        script = self.config.on_script if on else self.config.off_script
        self.gateway.call_action("script", "turn_on", script)
        logger.info("Pump %s via %s", "started" if on else "stopped", script)

    def _arm_stop(self, at: datetime) -> None:
        self.scheduler.schedule_once(JOB_STOP, at, func=self._on_stop_due, job_id=JOB_STOP)

    def _close_session(self, ended_at: datetime) -> None:
        """Close the job, drop the active marker and return to IDLE. Caller holds the lock."""
        if self.current_job_id is None:
            logger.warning("Closing pump session that has no job row")
        else:
            try:
                self.jobs.finish_job(self.current_job_id, ended_at=ended_at)
            except RepositoryError as exc:
                logger.error("Failed to close pump job %s: %s", self.current_job_id, exc)
        try:
            self.schedules.clear_active_job(DEVICE_NAME)
        except RepositoryError as exc:
            logger.error("Failed to clear pump active job marker: %s", exc)

        self.current_job_id = None
        self.session_started_at = None
        self.session_end = None
        self.state = PumpState.IDLE
        self._switching = False

    def _save_active_job(self) -> None:
        state = ActiveJobState(
            job_id=self.current_job_id,
            end_time=self.session_end,
            started_at=self.session_started_at,
        )
        try:
            self.schedules.save_active_job(DEVICE_NAME, state)
        except RepositoryError as exc:
            logger.error("Failed to persist pump active job marker: %s", exc)

    def _save_schedule(self) -> None:
        try:
            self.schedules.save_config(DEVICE_NAME, self.schedule.to_dict(), updated_at=self._clock.now())
        except RepositoryError as exc:
            logger.error("Failed to persist pump schedule: %s", exc)

    def _load_schedule(self) -> None:
        stored = self.schedules.get_config(DEVICE_NAME)
        if stored:
            self.schedule = PumpSchedule.from_dict(stored)
            logger.info("Loaded pump schedule: %s hrs (%s)", self.schedule.hours, self.schedule.reason)
