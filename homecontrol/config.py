"""
Configuration for the HomeControl scheduling & control engine
=============================================================
Runtime settings for the gateway, the advisory LLM, the scheduler and the
three controllers, all loaded from environment variables with sensible
defaults. Sets up the logging configuration as well.
"""

import os
from contextlib import suppress
from dataclasses import dataclass, field


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.lower() in {"1", "true", "t", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"Environment variable {name} must be an integer.") from None


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        raise ValueError(f"Environment variable {name} must be a number.") from None


def _env_optional_float(name: str) -> float | None:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return None
    return _env_float(name, 0.0)


@dataclass
class AppConfig:
    """Runtime configuration loaded from environment variables."""

    environment: str = field(default_factory=lambda: os.getenv("HOMECONTROL_ENV", "development"))
    DEBUG: bool = field(default_factory=lambda: _env_bool("HOMECONTROL_DEBUG", False))
    database_path: str = field(
        default_factory=lambda: os.getenv("HOMECONTROL_DATABASE_PATH", "database/homecontrol.db")
    )
    log_dir: str = field(default_factory=lambda: os.getenv("HOMECONTROL_LOG_DIR", "logs"))

    # Home Assistant gateway
    ha_url: str = field(default_factory=lambda: os.getenv("HA_URL", "http://homeassistant.local:8123"))
    ha_token: str = field(default_factory=lambda: os.getenv("HA_TOKEN", ""))
    ha_timeout: int = field(default_factory=lambda: _env_int("HA_TIMEOUT", 10))

    # LLM Configuration
    # Provider: "openai", "anthropic", or "none"
    llm_provider: str = field(default_factory=lambda: os.getenv("LLM_PROVIDER", "none"))
    llm_api_key: str = field(default_factory=lambda: os.getenv("LLM_API_KEY", ""))
    llm_model: str = field(default_factory=lambda: os.getenv("LLM_MODEL", ""))
    llm_base_url: str = field(default_factory=lambda: os.getenv("LLM_BASE_URL", ""))
    llm_max_tokens: int = field(default_factory=lambda: _env_int("LLM_MAX_TOKENS", 512))
    llm_temperature: float = field(default_factory=lambda: _env_float("LLM_TEMPERATURE", 0.3))
    llm_timeout: int = field(default_factory=lambda: _env_int("LLM_TIMEOUT", 30))

    # Location (advisor context and sunrise lookup)
    location: str = field(default_factory=lambda: os.getenv("LOCATION", "Miami, FL"))
    latitude: float | None = field(default_factory=lambda: _env_optional_float("LATITUDE"))
    longitude: float | None = field(default_factory=lambda: _env_optional_float("LONGITUDE"))
    timezone: str = field(default_factory=lambda: os.getenv("HOMECONTROL_TIMEZONE", "America/New_York"))
    sun_times_cache_hours: int = field(default_factory=lambda: _env_int("SUN_TIMES_CACHE_HOURS", 12))

    # Scheduler
    scheduler_max_workers: int = field(default_factory=lambda: _env_int("SCHEDULER_MAX_WORKERS", 6))
    scheduler_check_interval: float = field(default_factory=lambda: _env_float("SCHEDULER_CHECK_INTERVAL", 1.0))
    shutdown_grace_seconds: float = field(default_factory=lambda: _env_float("SHUTDOWN_GRACE_SECONDS", 10.0))

    # Controllers
    enable_pump: bool = field(default_factory=lambda: _env_bool("ENABLE_POOL_PUMP", True))
    enable_irrigation: bool = field(default_factory=lambda: _env_bool("ENABLE_SPRINKLER", True))
    enable_climate: bool = field(default_factory=lambda: _env_bool("ENABLE_CLIMATE", True))

    # Pool pump
    pump_calculation_time: str = field(default_factory=lambda: os.getenv("POOL_CALCULATION_TIME", "05:00"))
    pump_start_time: str = field(default_factory=lambda: os.getenv("POOL_START_TIME", "10:00"))
    pump_min_hours: float = field(default_factory=lambda: _env_float("POOL_MIN_HOURS", 4.0))
    pump_max_hours: float = field(default_factory=lambda: _env_float("POOL_MAX_HOURS", 10.0))
    pump_degrees_per_hour: float = field(default_factory=lambda: _env_float("POOL_DEGREES_PER_HOUR", 10.0))
    pump_rain_extension_hours: float = field(
        default_factory=lambda: _env_float("POOL_RAIN_EXTENSION_HOURS", 3.0)
    )
    pump_temperature_entity: str = field(
        default_factory=lambda: os.getenv("POOL_TEMPERATURE_ENTITY", "sensor.nws_temperature")
    )

    # Sprinkler
    sprinkler_zones: int = field(default_factory=lambda: _env_int("SPRINKLER_ZONES", 4))
    sprinkler_break_minutes: float = field(default_factory=lambda: _env_float("SPRINKLER_BREAK_MINUTES", 3.0))
    sprinkler_lead_minutes: int = field(default_factory=lambda: _env_int("SPRINKLER_CALCULATION_LEAD_MINUTES", 30))
    sprinkler_retry_minutes: int = field(default_factory=lambda: _env_int("SPRINKLER_RETRY_MINUTES", 60))
    sprinkler_fallback_duration: int = field(
        default_factory=lambda: _env_int("SPRINKLER_FALLBACK_DURATION", 15)
    )

    # Climate
    climate_target_temp: float = field(default_factory=lambda: _env_float("CLIMATE_TARGET_TEMP", 73.0))
    climate_threshold: float = field(default_factory=lambda: _env_float("CLIMATE_THRESHOLD", 0.5))
    climate_cooldown_minutes: int = field(default_factory=lambda: _env_int("CLIMATE_COOLDOWN_MINUTES", 15))
    climate_min_setpoint: float = field(default_factory=lambda: _env_float("CLIMATE_MIN_SETPOINT", 68.0))
    climate_max_setpoint: float = field(default_factory=lambda: _env_float("CLIMATE_MAX_SETPOINT", 78.0))
    climate_poll_minutes: int = field(default_factory=lambda: _env_int("CLIMATE_POLL_MINUTES", 2))
    climate_variance_threshold: float = field(
        default_factory=lambda: _env_float("CLIMATE_VARIANCE_THRESHOLD", 4.0)
    )
    climate_sensor_entity: str = field(
        default_factory=lambda: os.getenv("CLIMATE_SENSOR_ENTITY", "sensor.walkway_temperature")
    )
    climate_thermostat_entity: str = field(
        default_factory=lambda: os.getenv("CLIMATE_THERMOSTAT_ENTITY", "climate.walkway")
    )

    # Maintenance
    job_retention_days: int = field(default_factory=lambda: _env_int("JOB_RETENTION_DAYS", 365))


# ==================== CONFIGURATION VALIDATION ====================


def validate_config(config: AppConfig) -> list[str]:
    """
    Validate configuration and return list of warnings.

    Missing credentials are warnings, not errors: the affected collaborator
    degrades to fallback-only behaviour.

    Args:
        config: AppConfig instance

    Returns:
        List of warning messages (empty if all valid)
    """
    warnings = []

    if not config.ha_token:
        warnings.append("HA_TOKEN is not set; sensor reads fall back to defaults and actuator calls will fail")

    if config.llm_provider.lower() not in {"none", ""} and not config.llm_api_key and not config.llm_base_url:
        warnings.append(
            f"LLM_PROVIDER={config.llm_provider} but LLM_API_KEY is empty; irrigation advice uses local rules"
        )
    elif config.llm_provider.lower() in {"none", ""}:
        warnings.append("LLM_PROVIDER is 'none'; irrigation advice uses local rules")

    if (config.latitude is None) != (config.longitude is None):
        warnings.append("Set both LATITUDE and LONGITUDE for sunrise lookups; using fallback sun times")

    if config.pump_min_hours > config.pump_max_hours:
        warnings.append(
            f"POOL_MIN_HOURS ({config.pump_min_hours}) exceeds POOL_MAX_HOURS ({config.pump_max_hours})"
        )

    if config.climate_min_setpoint > config.climate_max_setpoint:
        warnings.append(
            f"CLIMATE_MIN_SETPOINT ({config.climate_min_setpoint}) exceeds "
            f"CLIMATE_MAX_SETPOINT ({config.climate_max_setpoint})"
        )

    if not 65 <= config.climate_target_temp <= 80:
        warnings.append(f"CLIMATE_TARGET_TEMP ({config.climate_target_temp}) is outside 65-80°F")

    if config.scheduler_max_workers < 3:
        warnings.append(
            f"SCHEDULER_MAX_WORKERS ({config.scheduler_max_workers}) is low; "
            "a long sprinkler cycle can starve the other controllers"
        )

    return warnings


_CONSOLE_HANDLER = "homecontrol_console"
_FILE_HANDLER = "homecontrol_file"


def setup_logging(debug: bool = False, log_dir: str = "logs") -> None:
    """Attach console and rotating-file handlers to the root logger once.

    Repeat calls only adjust the level of the handlers already attached.
    """
    import logging
    import sys
    from logging.handlers import RotatingFileHandler

    level = logging.DEBUG if debug else logging.INFO
    root = logging.getLogger()
    root.setLevel(level)
    formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    present = {getattr(h, "name", "") for h in root.handlers}

    def attach(name: str, handler: logging.Handler) -> None:
        handler.name = name
        handler.setFormatter(formatter)
        root.addHandler(handler)

    if _CONSOLE_HANDLER not in present:
        with suppress(AttributeError, ValueError):
            sys.stdout.reconfigure(encoding="utf-8", errors="replace")
        attach(_CONSOLE_HANDLER, logging.StreamHandler(stream=sys.stdout))
    if _FILE_HANDLER not in present:
        os.makedirs(log_dir, exist_ok=True)
        attach(
            _FILE_HANDLER,
            RotatingFileHandler(
                os.path.join(log_dir, "homecontrol.log"),
                maxBytes=10 * 1024 * 1024,
                backupCount=5,
                encoding="utf-8",
            ),
        )

    for handler in root.handlers:
        if getattr(handler, "name", "") in {_CONSOLE_HANDLER, _FILE_HANDLER}:
            handler.setLevel(level)

    if {_CONSOLE_HANDLER, _FILE_HANDLER} - present:
        root.info("Logging initialized at level: %s", logging.getLevelName(level))

    # Gateway polling every 2 minutes makes urllib3 connection logs noisy
    if _env_bool("HOMECONTROL_SILENCE_URLLIB3", True):
        logging.getLogger("urllib3").setLevel(logging.WARNING)


def load_config() -> AppConfig:
    """Helper for callers to load and validate configuration."""
    import logging

    logger = logging.getLogger("config_loader")
    config = AppConfig()
    for warning in validate_config(config):
        logger.warning(warning)
    return config
