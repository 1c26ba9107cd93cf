"""Tests for UnifiedScheduler trigger evaluation, driven by a manual clock."""

import logging
import threading
from concurrent.futures import wait
from datetime import datetime, timedelta, timezone

import pytest

from homecontrol.workers.unified_scheduler import ScheduleType, UnifiedScheduler


@pytest.fixture
def sched(clock):
    scheduler = UnifiedScheduler(max_workers=2, clock=clock)
    yield scheduler
    scheduler.shutdown(timeout=1.0)


def run_due(scheduler):
    futures = scheduler._process_due_jobs()
    wait(futures, timeout=5)
    return futures


def test_interval_job_fires_each_period(sched, clock):
    calls = []
    job = sched.schedule_interval("climate.poll", 120, func=lambda: calls.append(clock.now()), job_id="climate.poll")

    assert run_due(sched) == []
    clock.advance(seconds=120)
    run_due(sched)

    assert len(calls) == 1
    assert job.next_run == calls[0] + timedelta(seconds=120)
    assert job.namespace == "climate"


def test_interval_start_immediately(sched, clock):
    calls = []
    sched.schedule_interval("climate.poll", 60, func=lambda: calls.append(1), start_immediately=True)
    run_due(sched)
    assert calls == [1]


def test_interval_rejects_non_positive_period(sched):
    with pytest.raises(ValueError):
        sched.schedule_interval("bad", 0, func=lambda: None)


def test_daily_job_uses_local_wall_clock(sched):
    # Clock starts at 10:00 EDT; the same slot today is not strictly after now
    job = sched.schedule_daily(
        "pump.start", "10:00", func=lambda: None, timezone="America/New_York", job_id="pump.start"
    )
    assert job.schedule_type == ScheduleType.DAILY
    assert job.next_run == datetime(2026, 6, 16, 14, 0, tzinfo=timezone.utc)


def test_daily_job_follows_dst_change(sched, clock):
    # 2026-03-07 11:00 EST; DST starts on 2026-03-08
    clock.set(datetime(2026, 3, 7, 16, 0, tzinfo=timezone.utc))
    job = sched.schedule_daily("pump.start", "10:00", func=lambda: None, timezone="America/New_York")
    assert job.next_run == datetime(2026, 3, 8, 14, 0, tzinfo=timezone.utc)


def test_daily_rejects_bad_time(sched):
    with pytest.raises(ValueError):
        sched.schedule_daily("pump.start", "25:00", func=lambda: None)


def test_hourly_job_next_slot(sched, clock):
    clock.advance(minutes=5)
    job = sched.schedule_hourly("pump.rain_check", 0, func=lambda: None, timezone="America/New_York")
    assert job.next_run == datetime(2026, 6, 15, 15, 0, tzinfo=timezone.utc)


def test_hourly_rejects_bad_minute(sched):
    with pytest.raises(ValueError):
        sched.schedule_hourly("x.y", 60, func=lambda: None)


def test_once_job_fires_once_and_is_removed(sched, clock):
    calls = []
    sched.schedule_once("pump.stop", clock.now() + timedelta(minutes=5), func=lambda: calls.append(1), job_id="pump.stop")

    clock.advance(minutes=5)
    run_due(sched)
    clock.advance(minutes=5)
    run_due(sched)

    assert calls == [1]
    assert sched.get_job("pump.stop") is None


def test_once_job_in_the_past_fires_on_next_pass(sched, clock):
    calls = []
    sched.schedule_once("x.late", clock.now() - timedelta(minutes=1), func=lambda: calls.append(1))
    run_due(sched)
    assert calls == [1]


def test_cancel_before_due_prevents_firing(sched, clock):
    calls = []
    sched.schedule_once("pump.stop", clock.now() + timedelta(minutes=1), func=lambda: calls.append(1), job_id="pump.stop")

    assert sched.cancel("pump.stop") is True
    clock.advance(minutes=2)
    run_due(sched)

    assert calls == []


def test_cancel_unknown_or_none_is_noop(sched):
    assert sched.cancel(None) is False
    assert sched.cancel("") is False
    assert sched.cancel("nope") is False


def test_reregistering_same_id_replaces_trigger(sched, clock):
    calls = []
    sched.schedule_once("x.job", clock.now() + timedelta(minutes=1), func=lambda: calls.append("old"), job_id="x.job")
    sched.schedule_once("x.job", clock.now() + timedelta(minutes=2), func=lambda: calls.append("new"), job_id="x.job")

    clock.advance(minutes=1)
    run_due(sched)
    assert calls == []

    clock.advance(minutes=1)
    run_due(sched)
    assert calls == ["new"]


def test_once_job_may_reschedule_itself(sched, clock):
    fired = []

    def chain():
        fired.append(clock.now())
        sched.schedule_once("irrigation.water", clock.now() + timedelta(days=1), func=chain, job_id="irrigation.water")

    sched.schedule_once("irrigation.water", clock.now() + timedelta(minutes=1), func=chain, job_id="irrigation.water")
    clock.advance(minutes=1)
    run_due(sched)

    job = sched.get_job("irrigation.water")
    assert len(fired) == 1
    assert job is not None
    assert job.run_at == fired[0] + timedelta(days=1)


def test_failing_job_stays_registered(sched, clock):
    def boom():
        raise RuntimeError("gateway exploded")

    job = sched.schedule_interval("climate.poll", 60, func=boom, job_id="climate.poll")
    clock.advance(seconds=60)
    run_due(sched)

    assert sched.get_job("climate.poll") is job
    assert job.failure_count == 1
    assert job.last_error == "gateway exploded"
    assert sched.get_history("climate.poll")[0].success is False


def test_overlapping_slot_is_skipped(sched, clock):
    release = threading.Event()
    started = threading.Event()
    calls = []

    def slow():
        calls.append(1)
        started.set()
        release.wait(timeout=5)

    job = sched.schedule_interval("climate.trends", 60, func=slow, job_id="climate.trends")
    clock.advance(seconds=60)
    first = sched._process_due_jobs()
    assert started.wait(timeout=5)

    clock.advance(seconds=60)
    assert sched._process_due_jobs() == []
    assert job.skipped_count == 1

    release.set()
    wait(first, timeout=5)
    assert calls == [1]
    assert job.running is False


def test_run_now_executes_on_caller_thread(sched):
    job = sched.schedule_interval("pump.daily_calculation", 3600, func=lambda: 42, job_id="pump.daily_calculation")
    result = sched.run_now("pump.daily_calculation")
    assert result.success is True
    assert result.result == 42
    assert job.run_count == 1
    assert sched.run_now("missing") is None


def test_job_registered_disabled_does_not_fire(sched, clock):
    calls = []
    sched.schedule_interval("x.job", 60, func=lambda: calls.append(1), job_id="x.job", enabled=False)
    clock.advance(seconds=120)
    run_due(sched)
    assert calls == []


def test_status_and_health(sched):
    sched.schedule_interval("climate.poll", 60, func=lambda: None)
    status = sched.get_status()
    assert status["total_jobs"] == 1
    assert status["running"] is False
    assert sched.health_check()["health"] == "unhealthy"


def _gated(calls, started, release, *, active=None, peak=None, lock=None):
    def work():
        if lock is not None:
            with lock:
                active[0] += 1
                peak[0] = max(peak[0], active[0])
        calls.append(1)
        started.set()
        release.wait(timeout=5)
        if lock is not None:
            with lock:
                active[0] -= 1

    return work


def test_reregistered_id_does_not_overlap_running_firing(sched, clock):
    release, started = threading.Event(), threading.Event()
    calls, active, peak = [], [0], [0]
    work = _gated(calls, started, release, active=active, peak=peak, lock=threading.Lock())

    sched.schedule_interval("climate.poll", 120, func=work, job_id="climate.poll")
    clock.advance(seconds=120)
    first = sched._process_due_jobs()
    assert started.wait(timeout=5)

    sched.cancel("climate.poll")
    replacement = sched.schedule_interval("climate.poll", 120, func=work, job_id="climate.poll")
    clock.advance(seconds=120)
    assert sched._process_due_jobs() == []
    assert replacement.skipped_count == 1
    assert sched.run_now("climate.poll") is None

    release.set()
    wait(first, timeout=5)
    clock.advance(seconds=120)
    run_due(sched)

    assert calls == [1, 1]
    assert peak == [1]
    assert replacement.run_count == 1


def test_once_reregistered_during_firing_waits_for_it(sched, clock):
    release, started = threading.Event(), threading.Event()
    calls = []
    sched.schedule_once("pump.stop", clock.now(), func=_gated(calls, started, release), job_id="pump.stop")
    first = sched._process_due_jobs()
    assert started.wait(timeout=5)

    sched.schedule_once("pump.stop", clock.now(), func=lambda: calls.append("retry"), job_id="pump.stop")
    assert sched._process_due_jobs() == []
    assert sched.get_job("pump.stop") is not None

    release.set()
    wait(first, timeout=5)
    clock.advance(seconds=1)
    run_due(sched)

    assert calls == [1, "retry"]
    assert sched.get_job("pump.stop") is None


def test_cancel_during_firing_lets_it_finish(sched, clock):
    release, started = threading.Event(), threading.Event()
    calls = []
    sched.schedule_once("pump.stop", clock.now(), func=_gated(calls, started, release), job_id="pump.stop")
    first = sched._process_due_jobs()
    assert started.wait(timeout=5)

    assert sched.cancel("pump.stop") is True
    release.set()
    wait(first, timeout=5)

    assert calls == [1]
    assert [r.success for r in sched.get_history("pump.stop")] == [True]
    assert sched.get_job("pump.stop") is None


def test_shutdown_waits_for_grace_period_then_warns(sched, clock, caplog):
    release, started = threading.Event(), threading.Event()
    calls = []
    sched.schedule_once("irrigation.water", clock.now(), func=_gated(calls, started, release))
    first = sched._process_due_jobs()
    assert started.wait(timeout=5)

    try:
        with caplog.at_level(logging.WARNING, logger="homecontrol.workers.unified_scheduler"):
            sched.shutdown(timeout=0.2)
        assert "still running after 0.2s grace period" in caplog.text
        assert not first[0].done()
    finally:
        release.set()
    wait(first, timeout=5)
    assert calls == [1]


def test_shutdown_returns_once_firings_finish(sched, clock):
    release, started = threading.Event(), threading.Event()
    calls = []
    sched.schedule_once("irrigation.water", clock.now(), func=_gated(calls, started, release))
    first = sched._process_due_jobs()
    assert started.wait(timeout=5)

    threading.Timer(0.1, release.set).start()
    sched.shutdown(timeout=5.0)

    assert first[0].done()
    assert calls == [1]
