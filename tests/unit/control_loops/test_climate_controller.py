"""Tests for the thermostat setpoint controller."""

import pytest

from homecontrol.control_loops.climate_controller import (
    DEVICE_NAME,
    JOB_POLL,
    JOB_TRENDS,
    ClimateController,
    analyze_series,
    compute_setpoint,
)
from homecontrol.domain.climate import FeedbackType, TrendDirection
from homecontrol.domain.exceptions import ConnectivityError, ValidationError
from homecontrol.domain.jobs import ClimateAdjustmentConditions, HvacEventConditions, MonitoringConditions

SENSOR = "sensor.walkway_temperature"
THERMOSTAT = "climate.walkway"


@pytest.fixture
def climate(gateway, scheduler, job_repo, feedback_repo, clock):
    gateway.set_state(SENSOR, "73.1")
    gateway.set_state(THERMOSTAT, "cool", temperature=72, hvac_action="cooling")
    return ClimateController(gateway, scheduler, job_repo, feedback_repo, clock=clock)


def sessions(job_repo, session):
    return [job for job in job_repo.list_jobs(DEVICE_NAME) if job.session == session]


# ==================== Setpoint rule ====================


@pytest.mark.parametrize(
    "old,delta,step,target,expected",
    [
        (72, 2.0, 1, 73, 73),  # too cold: raise by one step
        (77, 2.0, 2, 73, 78),  # clamped at max setpoint
        (79, 2.0, 1, 73, 79),  # never lowered while the room is cold
        (74, -2.0, 1, 73, 73),  # too warm: lower by one step
        (73.5, -2.0, 1, 73, 73),  # never below target
        (70, -1.0, 1, 73, 70),  # never raised while the room is warm
        (73.5, -3.0, 2, 70, 71.5),
        (69, -3.0, 2, 65, 68),  # floor at min setpoint
        (72, 0.0, 1, 72, 72),
    ],
)
def test_compute_setpoint(old, delta, step, target, expected):
    assert compute_setpoint(old, delta, step, target) == expected


# ==================== Poll ====================


def test_in_band_makes_no_actuator_call(climate, gateway, job_repo):
    assert climate.check_and_adjust() == "in_band"
    assert gateway.calls == []

    snapshots = sessions(job_repo, "Temperature Monitoring")
    assert len(snapshots) == 1
    assert isinstance(snapshots[0].conditions, MonitoringConditions)
    assert snapshots[0].conditions.setpoint == 72
    assert snapshots[0].duration == 0


def test_monitoring_snapshots_are_throttled(climate, job_repo, clock):
    climate.check_and_adjust()
    clock.advance(minutes=2)
    climate.check_and_adjust()
    assert len(sessions(job_repo, "Temperature Monitoring")) == 1

    clock.advance(minutes=8)
    climate.check_and_adjust()
    assert len(sessions(job_repo, "Temperature Monitoring")) == 2


def test_cold_room_raises_setpoint(climate, gateway, job_repo):
    gateway.set_state(SENSOR, "71.0")

    assert climate.check_and_adjust() == "adjusted"

    assert len(gateway.calls) == 1
    call = gateway.calls[0]
    assert (call.domain, call.action, call.entity_id) == ("climate", "set_temperature", THERMOSTAT)
    assert call.params == {"temperature": 73}

    adjustments = sessions(job_repo, "Auto Climate Control")
    assert len(adjustments) == 1
    conditions = adjustments[0].conditions
    assert isinstance(conditions, ClimateAdjustmentConditions)
    assert (conditions.old_setpoint, conditions.new_setpoint, conditions.action) == (72, 73, "increase")
    assert conditions.delta == 2.0


def test_warm_room_lowers_setpoint_toward_target(climate, gateway):
    gateway.set_state(SENSOR, "75.0")
    gateway.set_state(THERMOSTAT, "cool", temperature=74, hvac_action="cooling")

    assert climate.check_and_adjust() == "adjusted"
    assert gateway.calls[0].params == {"temperature": 73}


def test_setpoint_at_limit_makes_no_call(climate, gateway):
    gateway.set_state(SENSOR, "75.0")
    gateway.set_state(THERMOSTAT, "cool", temperature=73, hvac_action="cooling")

    assert climate.check_and_adjust() == "at_limit"
    assert gateway.calls == []


def test_cooldown_allows_one_call(climate, gateway, clock):
    gateway.set_state(SENSOR, "71.0")

    assert climate.check_and_adjust() == "adjusted"
    clock.advance(minutes=2)
    assert climate.check_and_adjust() == "cooldown"
    assert len(gateway.calls) == 1

    clock.advance(minutes=14)
    assert climate.check_and_adjust() == "adjusted"
    assert len(gateway.calls) == 2


def test_failed_set_temperature_does_not_start_cooldown(climate, gateway, failing_action):
    gateway.set_state(SENSOR, "71.0")
    gateway.action_error = failing_action(THERMOSTAT)

    assert climate.check_and_adjust() == "error"
    assert climate.last_adjustment_at is None
    assert climate.check_and_adjust() == "adjusted"


def test_hvac_transition_is_logged(climate, gateway, job_repo):
    climate.check_and_adjust()
    assert sessions(job_repo, "HVAC Event") == []

    gateway.set_state(THERMOSTAT, "cool", temperature=72, hvac_action="idle")
    climate.check_and_adjust()

    events = sessions(job_repo, "HVAC Event")
    assert len(events) == 1
    conditions = events[0].conditions
    assert isinstance(conditions, HvacEventConditions)
    assert conditions.event == "hvac_idle"
    assert conditions.previous_action == "cooling"
    assert conditions.hvac_action == "idle"


def test_thermostat_unavailable_skips_poll(climate, gateway):
    del gateway.states[THERMOSTAT]

    assert climate.check_and_adjust() == "thermostat_unavailable"
    assert gateway.calls == []
    assert len(climate.rate_tracker) == 0


@pytest.mark.parametrize("reading", ["unavailable", "140"])
def test_bad_sensor_reading_falls_back_to_target(climate, gateway, reading):
    gateway.set_state(SENSOR, reading)
    assert climate.check_and_adjust() == "in_band"
    assert climate.last_office_temp == 73.0


def test_samples_feed_rate_tracker(climate, gateway, clock):
    climate.check_and_adjust()
    clock.advance(minutes=15)
    gateway.set_state(SENSOR, "73.4")
    climate.check_and_adjust()

    assert len(climate.rate_tracker) == 2
    assert climate.rate_tracker.rate_over_window(15).rate == pytest.approx(0.02)
    assert climate.rate_tracker.latest().context == {"setpoint": 72.0, "mode": "cool"}


# ==================== Trends ====================


def test_wide_spread_selects_larger_step(climate, gateway):
    gateway.set_history(SENSOR, [70, 71, "unavailable", 72, 73, 76])

    analysis = climate.analyze_trends()

    assert analysis.sufficient is True
    assert analysis.sample_count == 5
    assert analysis.variance == 6
    assert analysis.direction == TrendDirection.RISING
    assert climate.adjustment_step == 2

    gateway.set_state(SENSOR, "70.0")
    climate.check_and_adjust()
    assert gateway.calls[0].params == {"temperature": 74}


def test_narrow_spread_keeps_default_step(climate, gateway):
    climate.adjustment_step = 2
    gateway.set_history(SENSOR, [72.5, 73.0, 72.8, 73.1])

    assert climate.analyze_trends().adjustment_step == 1
    assert climate.adjustment_step == 1


def test_too_few_points_change_nothing(climate, gateway):
    climate.adjustment_step = 2
    gateway.set_history(SENSOR, [72, 73])

    analysis = climate.analyze_trends()

    assert analysis.sufficient is False
    assert climate.adjustment_step == 2


def test_history_failure_changes_nothing(climate, gateway):
    climate.adjustment_step = 2
    gateway.read_error = ConnectivityError("history endpoint down")

    assert climate.analyze_trends().sample_count == 0
    assert climate.adjustment_step == 2


def test_analyze_series_direction():
    assert analyze_series([75, 75, 74, 73, 72, 71]).direction == TrendDirection.FALLING
    assert analyze_series([72, 72.2, 72.1, 72.3]).direction == TrendDirection.STABLE


# ==================== Manual operations ====================


def test_set_target_resets_cooldown(climate, gateway, clock):
    gateway.set_state(SENSOR, "71.0")
    climate.check_and_adjust()
    clock.advance(minutes=2)

    assert climate.set_target_temperature(72) == 72.0
    assert climate.check_and_adjust() == "adjusted"
    assert len(gateway.calls) == 2


@pytest.mark.parametrize("value", [64.9, 80.5, "warm"])
def test_set_target_rejects_out_of_range(climate, value):
    with pytest.raises(ValidationError):
        climate.set_target_temperature(value)
    assert climate.target_temp == 73.0


def test_feedback_is_stored_with_loop_state(climate, feedback_repo):
    record = climate.submit_feedback(" Too_Hot ")

    assert record.id is not None
    stored = feedback_repo.recent()[0]
    assert stored.feedback_type == FeedbackType.TOO_HOT
    assert stored.office_temp == 73.1
    assert stored.thermostat_setpoint == 72
    assert stored.hvac_mode == "cool"


def test_feedback_rejects_unknown_type(climate):
    with pytest.raises(ValidationError):
        climate.submit_feedback("meh")


# ==================== Lifecycle ====================


def test_start_registers_poll_and_trends(climate, scheduler, job_repo):
    climate.start()

    assert scheduler.get_job(JOB_POLL).interval_seconds == 120
    assert scheduler.get_job(JOB_TRENDS).kind == "hourly"
    assert len(sessions(job_repo, "Temperature Monitoring")) == 1


def test_stop_is_idempotent(climate, scheduler):
    climate.start()
    climate.stop()
    climate.stop()
    assert scheduler.cancelled == [JOB_POLL, JOB_TRENDS]
    assert climate.started is False


def test_status_document(climate, clock):
    climate.check_and_adjust()
    status = climate.get_status()

    assert status["target_temp"] == 73.0
    assert status["office_temp"] == 73.1
    assert status["setpoint"] == 72
    assert status["hvac_action"] == "cooling"
    assert status["rate_15min"]["confidence"] == "insufficient_data"
    assert status["last_adjustment"] is None
