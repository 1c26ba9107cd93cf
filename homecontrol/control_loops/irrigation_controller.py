"""
IrrigationController: advisor-driven daily watering for a multi-zone sprinkler.

Two chained cycles:
- Timing: ask the advisor for tomorrow's start time (anchored on sunrise),
  then arm a one-shot decision 30 minutes before it and a one-shot water
  trigger at it. The water trigger re-runs the timing cycle afterwards.
- Decision: weather + last 7 days of completed sprinkler jobs -> advisor ->
  one decision per local calendar day, upserted.

Zones run strictly in sequence through a single valve-rotating pump: zone on,
hold, zone off, break (except after the last zone). One job row spans the
whole cycle.

Author: HomeControl Team
Date: October 2026
"""

import logging
import threading
from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError as PydanticValidationError

from homecontrol.control_loops.performance import PerformanceMetrics, track_performance
from homecontrol.domain.exceptions import ConflictError, HomeControlError, RepositoryError, ValidationError
from homecontrol.domain.irrigation import (
    NEVER_WATERED_DAYS,
    AIDecisionRecord,
    DecisionOutcome,
    DecisionSource,
    WateringHistory,
    WateringTiming,
    WeatherSnapshot,
    ZoneCycleResult,
)
from homecontrol.domain.jobs import IrrigationConditions
from homecontrol.schemas.irrigation import SimulationRequest
from homecontrol.utils.time import SYSTEM_CLOCK, Clock, at_local_time, local_date, to_iso

if TYPE_CHECKING:
    from homecontrol.config import AppConfig
    from homecontrol.services.ai.irrigation_advisor import IrrigationAdvisor
    from homecontrol.services.gateway.home_assistant import HomeAssistantGateway
    from homecontrol.services.weather_service import WeatherService
    from homecontrol.workers.unified_scheduler import UnifiedScheduler
    from infrastructure.database.repositories.decisions import DecisionRepository
    from infrastructure.database.repositories.jobs import JobRepository

logger = logging.getLogger(__name__)

DEVICE_NAME = "Sprinkler"

JOB_CALCULATE = "irrigation.calculate"
JOB_WATER = "irrigation.water"
JOB_RETRY_TIMING = "irrigation.retry_timing"


@dataclass
class IrrigationControlConfig:
    """Tunables for the sprinkler controller."""

    timezone: str = "America/New_York"
    zones: int = 4
    break_minutes: float = 3.0
    calculation_lead_minutes: int = 30
    retry_minutes: int = 60
    fallback_duration: int = 15
    history_days: int = 7
    on_script: str = "script.turn_on_sprinkler"
    off_script: str = "script.turn_off_sprinkler"

    @classmethod
    def from_app_config(cls, config: "AppConfig") -> "IrrigationControlConfig":
        return cls(
            timezone=config.timezone,
            zones=config.sprinkler_zones,
            break_minutes=config.sprinkler_break_minutes,
            calculation_lead_minutes=config.sprinkler_lead_minutes,
            retry_minutes=config.sprinkler_retry_minutes,
            fallback_duration=config.sprinkler_fallback_duration,
        )


class IrrigationController:
    """Decides once per day whether to water, and runs the zone cycle."""

    def __init__(
        self,
        gateway: "HomeAssistantGateway",
        scheduler: "UnifiedScheduler",
        advisor: "IrrigationAdvisor",
        weather: "WeatherService",
        jobs: "JobRepository",
        decisions: "DecisionRepository",
        config: IrrigationControlConfig | None = None,
        clock: Clock | None = None,
    ):
        self.gateway = gateway
        self.scheduler = scheduler
        self.advisor = advisor
        self.weather = weather
        self.jobs = jobs
        self.decisions = decisions
        self.config = config or IrrigationControlConfig()
        self._clock = clock or SYSTEM_CLOCK

        self.next_watering_at: datetime | None = None
        self.next_calculation_at: datetime | None = None
        self.last_timing: WateringTiming | None = None
        self.last_result: ZoneCycleResult | None = None
        self.current_zone: int | None = None
        self.current_job_id: int | None = None

        self.performance_metrics = PerformanceMetrics()
        self.started = False
        self._cycle_lock = threading.Lock()

        logger.info("IrrigationController initialized (%s zones)", self.config.zones)

    # ==================== Lifecycle ====================

    def start(self) -> None:
        """Make sure today has a decision, then arm tomorrow's triggers."""
        if self.started:
            logger.warning("IrrigationController already started")
            return
        self.started = True

        if self.get_todays_decision() is None:
            self.calculate_daily_decision()
        self.schedule_next_watering()
        logger.info("IrrigationController started (advisor: %s)", self.advisor.provider_name)

    def stop(self) -> None:
        """Cancel pending triggers. A running cycle finishes on its own."""
        if not self.started:
            return
        for job_id in (JOB_CALCULATE, JOB_WATER, JOB_RETRY_TIMING):
            self.scheduler.cancel(job_id)
        self.next_watering_at = None
        self.next_calculation_at = None
        self.started = False
        logger.info("IrrigationController stopped")

    # ==================== Timing cycle ====================

    def schedule_next_watering(self) -> datetime | None:
        """
        Arm tomorrow's decision and water triggers.

        Returns:
            The watering instant, or None when a retry was armed instead.
        """
        now = self._clock.now()
        tz = self.config.timezone
        try:
            target = local_date(now, tz) + timedelta(days=1)
            timing = self.advisor.optimal_watering_time(target)
            water_at = at_local_time(target, timing.hour, timing.minute, tz)
            if water_at <= now:
                raise ValidationError(
                    f"Watering time {timing.time_of_day} on {target} is already past",
                    detail={"water_at": to_iso(water_at)},
                )

            calculate_at = water_at - timedelta(minutes=self.config.calculation_lead_minutes)
            if calculate_at > now:
                self.scheduler.schedule_once(
                    JOB_CALCULATE, calculate_at, func=self.calculate_daily_decision, job_id=JOB_CALCULATE
                )
                self.next_calculation_at = calculate_at
            else:
                self.next_calculation_at = None
            self.scheduler.schedule_once(JOB_WATER, water_at, func=self._on_watering_due, job_id=JOB_WATER)
        except Exception as exc:
            retry_at = now + timedelta(minutes=self.config.retry_minutes)
            logger.error("Failed to schedule next watering, retrying at %s: %s", to_iso(retry_at), exc, exc_info=True)
            self.scheduler.schedule_once(
                JOB_RETRY_TIMING, retry_at, func=self.schedule_next_watering, job_id=JOB_RETRY_TIMING
            )
            return None

        self.last_timing = timing
        self.next_watering_at = water_at
        logger.info(
            "Watering scheduled for %s %s local (sunrise %s, %s): %s",
            target,
            timing.time_of_day,
            timing.sunrise,
            timing.source.value,
            timing.reasoning,
        )
        return water_at

    def _on_watering_due(self) -> None:
        try:
            self.auto_water()
        finally:
            self.schedule_next_watering()

    # ==================== Decision cycle ====================

    @track_performance("calculate_daily_decision")
    def calculate_daily_decision(self) -> AIDecisionRecord:
        """Compute and store today's decision; on failure store a conservative fallback."""
        now = self._clock.now()
        today = local_date(now, self.config.timezone)
        try:
            weather = self.weather.get_current_weather()
            history = self.get_watering_history(self.config.history_days)
            recommendation = self.advisor.recommend_watering(weather, history)
            record = AIDecisionRecord(
                device=DEVICE_NAME,
                decision_date=today,
                should_water=recommendation.should_water,
                duration=recommendation.duration_minutes,
                reasoning=recommendation.reasoning,
                temperature=weather.temperature,
                humidity=weather.humidity,
                forecast=weather.forecast,
                source=recommendation.source,
                created_at=now,
            )
            self.decisions.save(record)
            return record
        except Exception as exc:
            logger.error("Error calculating watering decision: %s", exc, exc_info=True)
            fallback = AIDecisionRecord(
                device=DEVICE_NAME,
                decision_date=today,
                should_water=True,
                duration=self.config.fallback_duration,
                reasoning=f"Fallback due to error: {exc}",
                forecast="Error",
                source=DecisionSource.FALLBACK,
                created_at=now,
            )
            try:
                self.decisions.save(fallback)
            except RepositoryError as save_exc:
                logger.error("Failed to store fallback decision: %s", save_exc)
            return fallback

    def trigger_manually(self) -> AIDecisionRecord:
        """Force a fresh decision for today."""
        logger.info("Manual watering decision requested")
        return self.calculate_daily_decision()

    def get_watering_history(self, days: int = 7) -> WateringHistory:
        """Summarize completed sprinkler jobs over the trailing ``days``."""
        now = self._clock.now()
        today = local_date(now, self.config.timezone)
        recent = self.jobs.list_jobs(
            DEVICE_NAME,
            limit=1000,
            since=now - timedelta(days=days),
            completed_only=True,
        )

        minutes_by_day: dict[date, int] = defaultdict(int)
        runs_by_day: dict[date, int] = defaultdict(int)
        for job in recent:
            day = local_date(job.start_time, self.config.timezone)
            minutes_by_day[day] += int(job.duration or 0)
            runs_by_day[day] += 1

        daily_history = [
            {"date": day.isoformat(), "total_minutes": minutes_by_day[day], "num_runs": runs_by_day[day]}
            for day in sorted(minutes_by_day, reverse=True)
        ]
        last_watered = max(minutes_by_day) if minutes_by_day else None
        return WateringHistory(
            days=days,
            last_watered=last_watered,
            days_since_last_watering=(today - last_watered).days if last_watered else NEVER_WATERED_DAYS,
            total_minutes=sum(minutes_by_day.values()),
            daily_history=daily_history,
        )

    def get_todays_decision(self) -> AIDecisionRecord | None:
        return self.decisions.get(DEVICE_NAME, local_date(self._clock.now(), self.config.timezone))

    def get_decision_history(self, limit: int = 30) -> list[dict[str, Any]]:
        return [record.to_dict() for record in self.decisions.history(DEVICE_NAME, limit)]

    # ==================== Watering ====================

    @track_performance("auto_water")
    def auto_water(self) -> ZoneCycleResult:
        """Act on today's decision."""
        today = local_date(self._clock.now(), self.config.timezone)
        decision = self.decisions.get(DEVICE_NAME, today)
        if decision is None:
            logger.warning("No watering decision for %s; skipping", today)
            return ZoneCycleResult(success=False, message="No AI decision available")

        if not decision.should_water:
            logger.info("Skipping watering today: %s", decision.reasoning)
            self._set_outcome(today, DecisionOutcome.SKIPPED)
            return ZoneCycleResult(success=True, message=f"Skipped: {decision.reasoning}", skipped=True)

        weather = WeatherSnapshot(
            temperature=decision.temperature if decision.temperature is not None else 75.0,
            humidity=decision.humidity if decision.humidity is not None else 50.0,
            forecast=decision.forecast or "Unknown",
            source="decision",
        )
        try:
            result = self.run_zone_cycle(
                decision.duration,
                reasoning=decision.reasoning,
                auto_triggered=True,
                weather=weather,
            )
        except ConflictError as exc:
            logger.warning("Automatic watering not started: %s", exc)
            result = ZoneCycleResult(success=False, message=str(exc))

        self._set_outcome(today, DecisionOutcome.WATERED if result.success else DecisionOutcome.FAILED)
        return result

    def simulate(self, duration: float = 3, break_time: float = 1, zones: int | None = None) -> ZoneCycleResult:
        """Run a short real cycle with caller-supplied timings, bypassing the decision."""
        try:
            request = SimulationRequest(duration=duration, break_time=break_time, zones=zones)
        except PydanticValidationError as exc:
            raise ValidationError(f"Invalid simulation request: {exc}") from exc

        logger.info("Simulation requested: %s min/zone, %s min break", request.duration, request.break_time)
        return self.run_zone_cycle(
            request.duration,
            request.break_time,
            zones=request.zones,
            reasoning="Simulation run",
            simulation=True,
        )

    def run_zone_cycle(
        self,
        duration_minutes: float,
        break_minutes: float | None = None,
        *,
        zones: int | None = None,
        reasoning: str = "",
        auto_triggered: bool = False,
        simulation: bool = False,
        weather: WeatherSnapshot | None = None,
    ) -> ZoneCycleResult:
        """
        Water every zone in order.

        Raises:
            ConflictError: another cycle is running
            ValidationError: non-positive duration

        A gateway failure mid-cycle switches the current zone off and is
        reported in the returned result; the job is closed either way.
        """
        if duration_minutes <= 0:
            raise ValidationError(f"Zone duration must be positive, got {duration_minutes}")
        if not self._cycle_lock.acquire(blocking=False):
            raise ConflictError("A sprinkler cycle is already running")

        try:
            zone_count = int(zones or self.config.zones)
            pause = self.config.break_minutes if break_minutes is None else float(break_minutes)
            label = "Simulation" if simulation else "AI Auto-Water"
            session = f"{label} ({duration_minutes:g}m/zone)"
            conditions = IrrigationConditions(
                duration_minutes=duration_minutes,
                break_minutes=pause,
                zones=zone_count,
                reasoning=reasoning,
                auto_triggered=auto_triggered,
                simulation=simulation,
                temperature=weather.temperature if weather else None,
                humidity=weather.humidity if weather else None,
                forecast=weather.forecast if weather else None,
            )

            job_id: int | None = None
            try:
                job_id = self.jobs.start_job(DEVICE_NAME, session, conditions, started_at=self._clock.now())
            except RepositoryError as exc:
                logger.error("Failed to record sprinkler job: %s", exc)
            self.current_job_id = job_id

            logger.info("Starting sprinkler cycle: %s zones, %s min each, %s min break", zone_count, duration_minutes, pause)
            completed = 0
            try:
                for zone in range(1, zone_count + 1):
                    self.current_zone = zone
                    self._switch_zone(zone, on=True)
                    self._clock.sleep(duration_minutes * 60)
                    self._switch_zone(zone, on=False)
                    self.current_zone = None
                    completed += 1
                    if zone < zone_count:
                        logger.info("Break: %s min for valve rotation to zone %s", pause, zone + 1)
                        self._clock.sleep(pause * 60)
            except Exception as exc:
                self._emergency_off()
                if not isinstance(exc, HomeControlError):
                    raise
                logger.error("Sprinkler cycle aborted after %s/%s zones: %s", completed, zone_count, exc)
                result = ZoneCycleResult(
                    success=False,
                    message=f"Sprinkler cycle failed: {exc}",
                    zones_completed=completed,
                    total_zones=zone_count,
                    duration_minutes=duration_minutes,
                    break_minutes=pause,
                    job_id=job_id,
                )
            else:
                logger.info("Sprinkler cycle complete")
                result = ZoneCycleResult(
                    success=True,
                    message="Sprinkler cycle completed successfully",
                    zones_completed=completed,
                    total_zones=zone_count,
                    duration_minutes=duration_minutes,
                    break_minutes=pause,
                    job_id=job_id,
                )
            finally:
                self.current_zone = None
                self.current_job_id = None
                if job_id is not None:
                    try:
                        self.jobs.finish_job(job_id, ended_at=self._clock.now())
                    except RepositoryError as exc:
                        logger.error("Failed to close sprinkler job %s: %s", job_id, exc)

            self.last_result = result
            return result
        finally:
            self._cycle_lock.release()

    # ==================== Status ====================

    def get_status(self) -> dict[str, Any]:
        todays = self.get_todays_decision()
        return {
            "device": DEVICE_NAME,
            "started": self.started,
            "zones": self.config.zones,
            "break_minutes": self.config.break_minutes,
            "cycle_running": self._cycle_lock.locked(),
            "current_zone": self.current_zone,
            "current_job_id": self.current_job_id,
            "next_watering_at": to_iso(self.next_watering_at),
            "next_calculation_at": to_iso(self.next_calculation_at),
            "last_timing": self.last_timing.to_dict() if self.last_timing else None,
            "todays_decision": todays.to_dict() if todays else None,
            "last_result": self.last_result.to_dict() if self.last_result else None,
            "advisor": self.advisor.provider_name,
            "performance": self.performance_metrics.to_dict(),
            "timestamp": to_iso(self._clock.now()),
        }

    # ==================== Internals ====================

    def _switch_zone(self, zone: int, *, on: bool) -> None:
        script = self.config.on_script if on else self.config.off_script
        logger.info("Zone %s: %s", zone, "ON" if on else "OFF")
        self.gateway.call_action("script", "turn_on", script, {"variables": {"zone": zone}})

    def _emergency_off(self) -> None:
        zone = self.current_zone
        if zone is None:
            return
        try:
            self._switch_zone(zone, on=False)
        except HomeControlError as exc:
            logger.critical("Zone %s may still be running; off call failed: %s", zone, exc)

    def _set_outcome(self, day: date, outcome: DecisionOutcome) -> None:
        try:
            self.decisions.set_outcome(DEVICE_NAME, day, outcome)
        except RepositoryError as exc:
            logger.error("Failed to record watering outcome %s: %s", outcome.value, exc)
