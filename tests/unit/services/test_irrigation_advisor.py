"""
Irrigation advisor tests.

The LLM backend is a MagicMock returning canned LLMResponse objects, so these
cover prompt plumbing, reply parsing and every fallback path without network.
"""

from __future__ import annotations

from datetime import date, time
from unittest.mock import MagicMock

import pytest

from homecontrol.domain.exceptions import ValidationError
from homecontrol.domain.irrigation import DecisionSource, WateringHistory, WeatherSnapshot
from homecontrol.services.ai.irrigation_advisor import (
    IrrigationAdvisor,
    fallback_timing,
    parse_json_object,
    rule_based_recommendation,
)
from homecontrol.services.ai.llm_backends import LLMResponse
from homecontrol.services.utilities.sun_times_service import SunTimes


def _backend(text: str | None = None, error: Exception | None = None) -> MagicMock:
    backend = MagicMock()
    backend.is_available = True
    backend.name = "openai"
    if error is not None:
        backend.generate.side_effect = error
    else:
        backend.generate.return_value = LLMResponse(text=text or "", model="test-model", latency_ms=12.0)
    return backend


def _sun_times(sunrise: time) -> MagicMock:
    service = MagicMock()
    service.get_sun_times.return_value = SunTimes(
        date=date(2026, 6, 17),
        sunrise=sunrise,
        sunset=time(20, 15),
        day_length_hours=13.7,
    )
    return service


# ========================== Local rules =====================================


@pytest.mark.parametrize(
    "temperature,humidity,forecast,expected",
    [
        (88, 50, "Sunny", 20),
        (75, 50, "Clear", 15),
        (68, 20, "Clear", 15),
        (68, 75, "Cloudy", 10),  # 9 clamped up
        (92, 20, "Sunny", 23),
    ],
)
def test_rule_durations(temperature, humidity, forecast, expected):
    rec = rule_based_recommendation(WeatherSnapshot(temperature=temperature, humidity=humidity, forecast=forecast))
    assert rec.should_water is True
    assert rec.duration_minutes == expected
    assert rec.source == DecisionSource.RULE


@pytest.mark.parametrize(
    "weather,fragment",
    [
        (WeatherSnapshot(temperature=60), "Temperature too low"),
        (WeatherSnapshot(humidity=85), "Humidity too high"),
        (WeatherSnapshot(forecast="Scattered Showers"), "Rain in forecast"),
    ],
)
def test_rule_skips(weather, fragment):
    rec = rule_based_recommendation(weather)
    assert rec.should_water is False
    assert rec.duration_minutes == 0
    assert fragment in rec.reasoning


def test_fallback_timing_before_sunrise():
    timing = fallback_timing(time(6, 30))
    assert timing.time_of_day == "05:45"
    assert timing.sunrise == "06:30"


def test_fallback_timing_wraps_past_midnight():
    assert fallback_timing(time(0, 30)).time_of_day == "23:45"


def test_fallback_timing_without_sunrise_is_five_am():
    timing = fallback_timing(None, "no data")
    assert timing.time_of_day == "05:00"
    assert timing.sunrise == "Unknown"
    assert "no data" in timing.reasoning


# ========================== Reply parsing ===================================


def test_parse_json_object_strips_fences_and_prose():
    assert parse_json_object('```json\n{"should_water": true}\n```') == {"should_water": True}
    assert parse_json_object('Sure! {"duration": 12} Hope that helps.') == {"duration": 12}


@pytest.mark.parametrize("text", ["", "no json here", "{not: valid}", None])
def test_parse_json_object_rejects_bad_replies(text):
    with pytest.raises(ValidationError):
        parse_json_object(text)


# ========================== Watering decision ===============================


def test_without_backend_uses_rules():
    advisor = IrrigationAdvisor()
    assert advisor.is_available is False
    assert advisor.provider_name == "none"

    rec = advisor.recommend_watering(WeatherSnapshot(temperature=88), WateringHistory())
    assert rec.source == DecisionSource.RULE
    assert rec.duration_minutes == 20


def test_llm_decision_is_clamped():
    backend = _backend('```json\n{"should_water": true, "duration": 40, "reasoning": "Very hot week"}\n```')
    advisor = IrrigationAdvisor(backend)

    rec = advisor.recommend_watering(WeatherSnapshot(temperature=97), WateringHistory(total_minutes=30))

    assert rec.source == DecisionSource.LLM
    assert rec.should_water is True
    assert rec.duration_minutes == 25
    assert rec.reasoning == "Very hot week"

    kwargs = backend.generate.call_args.kwargs
    assert kwargs["json_mode"] is True
    assert "total minutes: 30" in kwargs["user_prompt"]
    assert "97°F" in kwargs["user_prompt"]


def test_llm_skip_zeroes_duration():
    advisor = IrrigationAdvisor(_backend('{"should_water": false, "duration": 15, "reasoning": "Watered yesterday"}'))
    rec = advisor.recommend_watering(WeatherSnapshot(), WateringHistory(days_since_last_watering=1))
    assert rec.should_water is False
    assert rec.duration_minutes == 0


@pytest.mark.parametrize(
    "backend",
    [
        _backend("I would water for a while."),
        _backend('{"should_water": true, "duration": "lots"}'),
        _backend(error=RuntimeError("rate limited")),
    ],
)
def test_unusable_llm_answer_falls_back_to_rules(backend):
    rec = IrrigationAdvisor(backend).recommend_watering(WeatherSnapshot(temperature=88), WateringHistory())
    assert rec.source == DecisionSource.RULE
    assert rec.duration_minutes == 20


# ========================== Watering time ===================================


def test_timing_without_backend_uses_sunrise():
    advisor = IrrigationAdvisor(sun_times=_sun_times(time(6, 30)))

    timing = advisor.optimal_watering_time(date(2026, 6, 17))

    assert timing.time_of_day == "05:45"
    assert timing.source == DecisionSource.RULE


def test_timing_from_llm():
    backend = _backend(
        '{"sunrise_time": "Unknown", "optimal_watering_hour": 5, '
        '"optimal_watering_minute": 50, "reasoning": "Before dawn"}'
    )
    advisor = IrrigationAdvisor(backend, sun_times=_sun_times(time(6, 31)))

    timing = advisor.optimal_watering_time(date(2026, 6, 17))

    assert (timing.hour, timing.minute) == (5, 50)
    assert timing.sunrise == "06:31"
    assert timing.source == DecisionSource.LLM
    assert "Sunrise (local): 06:31" in backend.generate.call_args.kwargs["user_prompt"]


def test_out_of_range_timing_falls_back():
    backend = _backend('{"optimal_watering_hour": 25, "optimal_watering_minute": 0}')
    advisor = IrrigationAdvisor(backend, sun_times=_sun_times(time(6, 30)))

    timing = advisor.optimal_watering_time(date(2026, 6, 17))

    assert timing.time_of_day == "05:45"
    assert "invalid advisor response" in timing.reasoning


def test_sunrise_lookup_failure_uses_five_am():
    sun_times = MagicMock()
    sun_times.get_sun_times.side_effect = RuntimeError("boom")
    advisor = IrrigationAdvisor(sun_times=sun_times)

    assert advisor.optimal_watering_time(date(2026, 6, 17)).time_of_day == "05:00"
