"""
Weather lookup over the gateway's entity list.

Outdoor temperature, humidity and a forecast string are discovered from
whatever entities the installation exposes. Any failure degrades to defaults.
"""

from __future__ import annotations

import logging

from homecontrol.domain.exceptions import HomeControlError
from homecontrol.domain.irrigation import WeatherSnapshot
from homecontrol.services.gateway.home_assistant import EntityState, HomeAssistantGateway

logger = logging.getLogger(__name__)

DEFAULT_TEMPERATURE = 75.0
DEFAULT_HUMIDITY = 50.0
DEFAULT_FORECAST = "Clear"

TEMPERATURE_ENTITIES = (
    "sensor.outdoor_temperature",
    "sensor.outside_temperature",
    "sensor.temperature",
    "sensor.temperature_outdoor",
)
HUMIDITY_ENTITIES = (
    "sensor.outdoor_humidity",
    "sensor.outside_humidity",
    "sensor.humidity",
    "sensor.humidity_outdoor",
)


class WeatherService:
    """Current outdoor conditions; never raises."""

    def __init__(self, gateway: HomeAssistantGateway):
        self.gateway = gateway

    def get_current_weather(self) -> WeatherSnapshot:
        try:
            states = self.gateway.read_states()
        except HomeControlError as exc:
            logger.warning("Weather unavailable, using defaults: %s", exc)
            return WeatherSnapshot(
                temperature=DEFAULT_TEMPERATURE,
                humidity=DEFAULT_HUMIDITY,
                forecast=DEFAULT_FORECAST,
                source="default",
            )

        by_id = {s.entity_id: s for s in states}
        weather_entity = next(
            (s for s in states if s.entity_id.startswith("weather.") and s.is_available),
            None,
        )

        snapshot = WeatherSnapshot(
            temperature=self._find_value(by_id, TEMPERATURE_ENTITIES, weather_entity, "temperature", DEFAULT_TEMPERATURE),
            humidity=self._find_value(by_id, HUMIDITY_ENTITIES, weather_entity, "humidity", DEFAULT_HUMIDITY),
            forecast=self._find_forecast(states, weather_entity),
            source="gateway",
        )
        logger.debug("Weather data fetched: %s", snapshot.to_dict())
        return snapshot

    @staticmethod
    def _find_value(
        by_id: dict[str, EntityState],
        entity_ids: tuple[str, ...],
        weather_entity: EntityState | None,
        attribute: str,
        default: float,
    ) -> float:
        for entity_id in entity_ids:
            entity = by_id.get(entity_id)
            if entity is None:
                continue
            value = entity.numeric_state()
            if value is not None:
                return value
        if weather_entity is not None:
            value = weather_entity.numeric_attribute(attribute)
            if value is not None:
                return value
        return default

    @staticmethod
    def _find_forecast(states: list[EntityState], weather_entity: EntityState | None) -> str:
        if weather_entity is not None:
            return weather_entity.state or DEFAULT_FORECAST
        sensor = next((s for s in states if "forecast" in s.entity_id and s.is_available), None)
        if sensor is not None:
            return sensor.state
        return DEFAULT_FORECAST
