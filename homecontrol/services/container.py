from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Optional

from homecontrol.config import AppConfig
from homecontrol.control_loops.climate_controller import ClimateControlConfig, ClimateController
from homecontrol.control_loops.irrigation_controller import IrrigationControlConfig, IrrigationController
from homecontrol.control_loops.pump_controller import PumpControlConfig, PumpController
from homecontrol.domain.exceptions import RepositoryError
from homecontrol.services.ai.irrigation_advisor import IrrigationAdvisor
from homecontrol.services.ai.llm_backends import create_backend
from homecontrol.services.gateway.home_assistant import HomeAssistantGateway
from homecontrol.services.utilities.sun_times_service import SunTimesService
from homecontrol.services.weather_service import WeatherService
from homecontrol.utils.time import SYSTEM_CLOCK, Clock, to_iso
from homecontrol.workers.unified_scheduler import UnifiedScheduler
from infrastructure.database.repositories import (
    DecisionRepository,
    FeedbackRepository,
    JobRepository,
    ScheduleRepository,
)
from infrastructure.database.sqlite_handler import SQLiteDatabaseHandler

logger = logging.getLogger(__name__)

JOB_PURGE = "maintenance.purge_jobs"
PURGE_TIME = "03:30"


@dataclass
class ServiceContainer:
    """Aggregate and manage the engine's services and controllers."""

    config: AppConfig
    clock: Clock
    database: SQLiteDatabaseHandler
    job_repo: JobRepository
    schedule_repo: ScheduleRepository
    decision_repo: DecisionRepository
    feedback_repo: FeedbackRepository
    gateway: HomeAssistantGateway
    weather_service: WeatherService
    sun_times_service: SunTimesService
    advisor: IrrigationAdvisor
    scheduler: UnifiedScheduler
    pump_controller: Optional[PumpController]
    irrigation_controller: Optional[IrrigationController]
    climate_controller: Optional[ClimateController]

    @classmethod
    def build(cls, config: AppConfig, *, clock: Clock | None = None) -> "ServiceContainer":
        """Construct the container. Nothing is started until :meth:`start`.

        Args:
            config: Application configuration
            clock: Time source shared by every component (system clock by default)
        """
        clock = clock or SYSTEM_CLOCK
        logger.info("Building ServiceContainer...")

        database = SQLiteDatabaseHandler(config.database_path)
        database.create_tables()
        job_repo = JobRepository(database)
        schedule_repo = ScheduleRepository(database)
        decision_repo = DecisionRepository(database)
        feedback_repo = FeedbackRepository(database)

        gateway = HomeAssistantGateway(config.ha_url, config.ha_token, timeout=config.ha_timeout)
        weather_service = WeatherService(gateway)
        sun_times_service = SunTimesService(
            latitude=config.latitude,
            longitude=config.longitude,
            timezone=config.timezone,
            cache_hours=config.sun_times_cache_hours,
            clock=clock,
        )
        backend = create_backend(
            config.llm_provider,
            api_key=config.llm_api_key,
            model=config.llm_model,
            base_url=config.llm_base_url or None,
            timeout=config.llm_timeout,
        )
        advisor = IrrigationAdvisor(
            backend,
            location=config.location,
            sun_times=sun_times_service,
            max_tokens=config.llm_max_tokens,
            temperature=config.llm_temperature,
        )

        scheduler = UnifiedScheduler(
            check_interval_seconds=config.scheduler_check_interval,
            max_workers=config.scheduler_max_workers,
            clock=clock,
        )

        pump_controller = None
        if config.enable_pump:
            pump_controller = PumpController(
                gateway,
                scheduler,
                schedule_repo,
                job_repo,
                weather_service,
                config=PumpControlConfig.from_app_config(config),
                clock=clock,
            )

        irrigation_controller = None
        if config.enable_irrigation:
            irrigation_controller = IrrigationController(
                gateway,
                scheduler,
                advisor,
                weather_service,
                job_repo,
                decision_repo,
                config=IrrigationControlConfig.from_app_config(config),
                clock=clock,
            )

        climate_controller = None
        if config.enable_climate:
            climate_controller = ClimateController(
                gateway,
                scheduler,
                job_repo,
                feedback_repo,
                config=ClimateControlConfig.from_app_config(config),
                clock=clock,
            )

        logger.info(
            "ServiceContainer built (pump=%s, irrigation=%s, climate=%s, advisor=%s)",
            pump_controller is not None,
            irrigation_controller is not None,
            climate_controller is not None,
            advisor.provider_name,
        )
        return cls(
            config=config,
            clock=clock,
            database=database,
            job_repo=job_repo,
            schedule_repo=schedule_repo,
            decision_repo=decision_repo,
            feedback_repo=feedback_repo,
            gateway=gateway,
            weather_service=weather_service,
            sun_times_service=sun_times_service,
            advisor=advisor,
            scheduler=scheduler,
            pump_controller=pump_controller,
            irrigation_controller=irrigation_controller,
            climate_controller=climate_controller,
        )

    @property
    def controllers(self) -> list[Any]:
        return [
            c
            for c in (self.pump_controller, self.irrigation_controller, self.climate_controller)
            if c is not None
        ]

    def start(self) -> None:
        """Register maintenance, start every enabled controller, then the scheduler loop."""
        self.scheduler.schedule_daily(
            JOB_PURGE,
            PURGE_TIME,
            func=self.purge_old_jobs,
            timezone=self.config.timezone,
            job_id=JOB_PURGE,
        )
        for controller in self.controllers:
            controller.start()
        self.scheduler.start()
        logger.info("✓ Engine started with %s controller(s)", len(self.controllers))

    def purge_old_jobs(self) -> int:
        """Delete job rows older than the retention window."""
        cutoff = self.clock.now() - timedelta(days=self.config.job_retention_days)
        try:
            return self.job_repo.purge_before(cutoff)
        except RepositoryError as exc:
            logger.error("Job purge failed: %s", exc)
            return 0

    def get_status(self) -> dict[str, Any]:
        return {
            "timestamp": to_iso(self.clock.now()),
            "gateway_configured": self.gateway.is_configured,
            "advisor": self.advisor.provider_name,
            "scheduler": self.scheduler.get_status(),
            "pump": self.pump_controller.get_status() if self.pump_controller else None,
            "irrigation": self.irrigation_controller.get_status() if self.irrigation_controller else None,
            "climate": self.climate_controller.get_status() if self.climate_controller else None,
        }

    def shutdown(self) -> None:
        """Stop controllers, then the scheduler, then close connections."""
        for controller in self.controllers:
            try:
                controller.stop()
            except Exception as e:
                logger.warning(f"Failed to stop {type(controller).__name__}: {e}")

        try:
            self.scheduler.shutdown(timeout=self.config.shutdown_grace_seconds)
            logger.info("✓ UnifiedScheduler stopped")
        except Exception as e:
            logger.warning(f"Failed to stop UnifiedScheduler: {e}")

        try:
            self.database.close_db()
        except Exception as e:
            logger.warning(f"Failed to close database: {e}")
        logger.info("ServiceContainer shutdown complete.")
