"""
Irrigation Advisor
==================
Wraps an :class:`LLMBackend` and answers the sprinkler controller's two
questions:

* should the lawn be watered today, and for how many minutes per zone;
* at what time should tomorrow's watering start.

Both calls always return an answer. When no backend is configured, or the
model's reply is unusable, the deterministic local rules below are used and
the answer is tagged ``source="rule"``.

Usage
-----
::

    advisor = IrrigationAdvisor(backend=create_backend("openai", api_key="sk-..."))
    rec = advisor.recommend_watering(weather, history)
    print(rec.should_water, rec.duration_minutes, rec.reasoning)
"""

from __future__ import annotations

import json
import logging
import re
from datetime import date, datetime, time, timedelta
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError as PydanticValidationError

from homecontrol.domain.exceptions import ValidationError
from homecontrol.domain.irrigation import (
    DecisionSource,
    WateringHistory,
    WateringRecommendation,
    WateringTiming,
    WeatherSnapshot,
)
from homecontrol.schemas.irrigation import (
    MAX_ZONE_MINUTES,
    MIN_ZONE_MINUTES,
    WateringDecisionSchema,
    WateringTimingSchema,
)

if TYPE_CHECKING:
    from homecontrol.services.ai.llm_backends import LLMBackend
    from homecontrol.services.utilities.sun_times_service import SunTimesService

logger = logging.getLogger(__name__)

BASE_ZONE_MINUTES = 15
DEFAULT_WATERING_TIME = (5, 0)
SUNRISE_LEAD_MINUTES = 45

_JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)


# ---------------------------------------------------------------------------
# System prompts
# ---------------------------------------------------------------------------

_DECISION_SYSTEM_PROMPT = """\
You are the irrigation planner of a home lawn sprinkler system. You decide \
whether the lawn needs water today and how many minutes each zone should run.

Lawn care practice:
• Lawns need roughly 1 to 1.5 inches of water per week, about 60-90 minutes \
  summed over all zones.
• Prefer deep, infrequent watering (2-3 times per week) over daily runs.
• Leave 1-2 days between waterings unless it is extremely hot.
• Skip when it watered in the last 24 hours, unless above 95°F.
• Skip when heavy rain is forecast, humidity is above 80% or it is below 65°F.
• Hotter and drier means longer; light rain means shorter.
• Be conservative when the last 7 days already exceed 90 minutes.

Response format (JSON):
{
  "should_water": <true|false>,
  "duration": <minutes per zone, 10-25>,
  "reasoning": "<one or two sentences covering frequency and conditions>"
}

Respond ONLY with valid JSON. No markdown fences."""

_TIMING_SYSTEM_PROMPT = """\
You are a lawn irrigation timing expert. Pick tomorrow's watering start time.

Watering 30-60 minutes before sunrise lets water soak in while wind and \
evaporation are low, and lets the grass dry during the day.

Response format (JSON):
{
  "sunrise_time": "HH:MM",
  "optimal_watering_hour": <0-23>,
  "optimal_watering_minute": <0-59>,
  "reasoning": "<brief explanation>"
}

Respond ONLY with valid JSON. No markdown fences."""


# ---------------------------------------------------------------------------
# Local rules
# ---------------------------------------------------------------------------


def rule_based_recommendation(weather: WeatherSnapshot) -> WateringRecommendation:
    """
    Deterministic watering decision from current weather alone.

    Skip below 65°F, above 80% humidity or when rain is forecast. Otherwise
    start at 15 minutes, +5 above 85°F, -3 below 70°F, +3 below 30% humidity,
    -3 above 70% humidity, clamped to 10-25.
    """
    temperature = weather.temperature
    humidity = weather.humidity

    if temperature < 65:
        return WateringRecommendation(
            should_water=False,
            duration_minutes=0,
            reasoning=f"Skipping: Temperature too low ({temperature:g}°F)",
            source=DecisionSource.RULE,
        )
    if humidity > 80:
        return WateringRecommendation(
            should_water=False,
            duration_minutes=0,
            reasoning=f"Skipping: Humidity too high ({humidity:g}%)",
            source=DecisionSource.RULE,
        )
    if weather.indicates_rain:
        return WateringRecommendation(
            should_water=False,
            duration_minutes=0,
            reasoning=f"Skipping: Rain in forecast ({weather.forecast})",
            source=DecisionSource.RULE,
        )

    duration = BASE_ZONE_MINUTES
    notes = []
    if temperature > 85:
        duration += 5
        notes.append("hot")
    elif temperature < 70:
        duration -= 3
        notes.append("cool")
    if humidity < 30:
        duration += 3
        notes.append("dry air")
    elif humidity > 70:
        duration -= 3
        notes.append("humid")

    duration = max(MIN_ZONE_MINUTES, min(MAX_ZONE_MINUTES, duration))
    detail = f" ({', '.join(notes)})" if notes else ""
    return WateringRecommendation(
        should_water=True,
        duration_minutes=duration,
        reasoning=f"Rule-based: {temperature:g}°F, {humidity:g}% humidity{detail} -> {duration} min per zone",
        source=DecisionSource.RULE,
    )


def fallback_timing(sunrise: time | None = None, reason: str = "") -> WateringTiming:
    """45 minutes before sunrise when it is known, else 05:00."""
    suffix = f" ({reason})" if reason else ""
    if sunrise is None:
        hour, minute = DEFAULT_WATERING_TIME
        return WateringTiming(
            hour=hour,
            minute=minute,
            sunrise="Unknown",
            reasoning=f"Default 05:00 start{suffix}",
            source=DecisionSource.RULE,
        )

    anchor = datetime.combine(date(2000, 1, 2), sunrise) - timedelta(minutes=SUNRISE_LEAD_MINUTES)
    return WateringTiming(
        hour=anchor.hour,
        minute=anchor.minute,
        sunrise=sunrise.strftime("%H:%M"),
        reasoning=f"{SUNRISE_LEAD_MINUTES} minutes before sunrise{suffix}",
        source=DecisionSource.RULE,
    )


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class IrrigationAdvisor:
    """
    Watering advice backed by an LLM with local fallbacks.

    Parameters
    ----------
    backend:
        An initialised :class:`LLMBackend`, or ``None`` for rules only.
    location:
        Human-readable location included in the prompts.
    sun_times:
        Optional :class:`SunTimesService` supplying sunrise for the timing
        question and its fallback.
    """

    def __init__(
        self,
        backend: "LLMBackend" | None = None,
        *,
        location: str = "Miami, FL",
        sun_times: "SunTimesService" | None = None,
        max_tokens: int = 512,
        temperature: float = 0.3,
    ):
        self._backend = backend
        self.location = location
        self.sun_times = sun_times
        self._max_tokens = max_tokens
        self._temperature = temperature

    @property
    def is_available(self) -> bool:
        return self._backend is not None and self._backend.is_available

    @property
    def provider_name(self) -> str:
        if self._backend is not None:
            return self._backend.name
        return "none"

    # -- watering decision ---------------------------------------------------

    def recommend_watering(self, weather: WeatherSnapshot, history: WateringHistory) -> WateringRecommendation:
        """Decide whether to water today. Never raises."""
        if not self.is_available:
            return rule_based_recommendation(weather)

        try:
            data = self._ask(_DECISION_SYSTEM_PROMPT, self._build_decision_prompt(weather, history))
            parsed = WateringDecisionSchema.model_validate(data)
        except (ValidationError, PydanticValidationError) as exc:
            logger.warning("Unusable watering advice, using local rules: %s", exc)
            return rule_based_recommendation(weather)
        except Exception as exc:
            logger.error("Irrigation advisor error: %s", exc, exc_info=True)
            return rule_based_recommendation(weather)

        return WateringRecommendation(
            should_water=parsed.should_water,
            duration_minutes=parsed.duration if parsed.should_water else 0,
            reasoning=parsed.reasoning,
            source=DecisionSource.LLM,
        )

    # -- watering time -------------------------------------------------------

    def optimal_watering_time(self, target_date: date) -> WateringTiming:
        """Pick the local start time for ``target_date``. Never raises."""
        sunrise = self._sunrise_for(target_date)

        if not self.is_available:
            return fallback_timing(sunrise, "advisor not configured")

        try:
            data = self._ask(_TIMING_SYSTEM_PROMPT, self._build_timing_prompt(target_date, sunrise))
            parsed = WateringTimingSchema.model_validate(data)
        except (ValidationError, PydanticValidationError) as exc:
            logger.warning("Unusable timing advice, using sunrise rule: %s", exc)
            return fallback_timing(sunrise, "invalid advisor response")
        except Exception as exc:
            logger.error("Irrigation advisor timing error: %s", exc, exc_info=True)
            return fallback_timing(sunrise, "advisor error")

        sunrise_text = parsed.sunrise
        if sunrise is not None and sunrise_text == "Unknown":
            sunrise_text = sunrise.strftime("%H:%M")
        return WateringTiming(
            hour=parsed.hour,
            minute=parsed.minute,
            sunrise=sunrise_text,
            reasoning=parsed.reasoning,
            source=DecisionSource.LLM,
        )

    # -- internal ------------------------------------------------------------

    def _sunrise_for(self, target_date: date) -> time | None:
        if self.sun_times is None:
            return None
        try:
            return self.sun_times.get_sun_times(target_date).sunrise
        except Exception as exc:
            logger.warning("Sunrise lookup failed for %s: %s", target_date, exc)
            return None

    def _ask(self, system_prompt: str, user_prompt: str) -> dict[str, Any]:
        response = self._backend.generate(  # type: ignore[union-attr]
            system_prompt=system_prompt,
            user_prompt=user_prompt,
            max_tokens=self._max_tokens,
            temperature=self._temperature,
            json_mode=True,
        )
        logger.debug("Advisor reply in %.0f ms: %s", response.latency_ms, response.text)
        return parse_json_object(response.text)

    def _build_decision_prompt(self, weather: WeatherSnapshot, history: WateringHistory) -> str:
        last_watered = history.last_watered.isoformat() if history.last_watered else "Never"
        return "\n".join(
            [
                f"Location: {self.location}",
                "Weather now:",
                f"  temperature: {weather.temperature:g}°F",
                f"  humidity: {weather.humidity:g}%",
                f"  forecast: {weather.forecast}",
                f"Watering history (last {history.days} days):",
                f"  last watered: {last_watered}",
                f"  days since last watering: {history.days_since_last_watering}",
                f"  total minutes: {history.total_minutes}",
                f"  per day: {json.dumps(history.daily_history)}",
                "Question: should the lawn be watered today, and for how long per zone?",
            ]
        )

    def _build_timing_prompt(self, target_date: date, sunrise: time | None) -> str:
        parts = [f"Location: {self.location}", f"Date: {target_date.isoformat()}"]
        if sunrise is not None:
            parts.append(f"Sunrise (local): {sunrise.strftime('%H:%M')}")
        else:
            parts.append("Sunrise: determine it for this location and date")
        parts.append("Question: at what local time should watering start?")
        return "\n".join(parts)


def parse_json_object(text: str) -> dict[str, Any]:
    """
    Extract the first JSON object from a model reply.

    Markdown fences and surrounding prose are tolerated; anything else raises
    :class:`ValidationError`.
    """
    cleaned = (text or "").strip()
    if cleaned.startswith("```"):
        lines = [ln for ln in cleaned.split("\n") if not ln.strip().startswith("```")]
        cleaned = "\n".join(lines).strip()

    match = _JSON_OBJECT.search(cleaned)
    if not match:
        raise ValidationError("Advisor reply contains no JSON object", detail={"text": text[:200] if text else ""})
    try:
        data = json.loads(match.group(0))
    except json.JSONDecodeError as exc:
        raise ValidationError(f"Advisor reply is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise ValidationError("Advisor reply is not a JSON object")
    return data
