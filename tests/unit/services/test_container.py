from datetime import timedelta

import pytest

from homecontrol.config import AppConfig
from homecontrol.control_loops import ClimateController, IrrigationController, PumpController
from homecontrol.services.container import JOB_PURGE, ServiceContainer


def _config(**overrides) -> AppConfig:
    values = dict(
        database_path=":memory:",
        ha_token="",
        llm_provider="none",
        latitude=None,
        longitude=None,
        enable_pump=True,
        enable_irrigation=True,
        enable_climate=True,
        shutdown_grace_seconds=1.0,
    )
    values.update(overrides)
    return AppConfig(**values)


@pytest.fixture
def bare_container(clock):
    container = ServiceContainer.build(
        _config(enable_pump=False, enable_irrigation=False, enable_climate=False), clock=clock
    )
    yield container
    container.shutdown()


def test_build_wires_enabled_controllers(clock):
    container = ServiceContainer.build(_config(enable_irrigation=False), clock=clock)
    try:
        assert isinstance(container.pump_controller, PumpController)
        assert isinstance(container.climate_controller, ClimateController)
        assert container.irrigation_controller is None
        assert len(container.controllers) == 2
        assert container.advisor.provider_name == "none"
        assert container.scheduler.is_running() is False
    finally:
        container.shutdown()


def test_irrigation_controller_gets_advisor(clock):
    container = ServiceContainer.build(_config(enable_pump=False, enable_climate=False), clock=clock)
    try:
        assert isinstance(container.irrigation_controller, IrrigationController)
        assert container.controllers == [container.irrigation_controller]
    finally:
        container.shutdown()


def test_start_registers_purge_and_runs_scheduler(bare_container):
    bare_container.start()

    job = bare_container.scheduler.get_job(JOB_PURGE)
    assert job is not None
    assert job.time_of_day == "03:30"
    assert bare_container.scheduler.is_running() is True

    bare_container.shutdown()
    assert bare_container.scheduler.is_running() is False


def test_purge_uses_retention_window(bare_container, clock):
    repo = bare_container.job_repo
    old = repo.start_job("Pool Pump", "Daily Peak Sun", None, started_at=clock.now() - timedelta(days=400))
    repo.finish_job(old, ended_at=clock.now() - timedelta(days=399))
    recent = repo.start_job("Pool Pump", "Daily Peak Sun", None, started_at=clock.now() - timedelta(days=2))
    repo.finish_job(recent, ended_at=clock.now() - timedelta(days=1))

    assert bare_container.purge_old_jobs() == 1
    assert repo.get(recent) is not None


def test_purge_failure_returns_zero(bare_container):
    with bare_container.database.connection() as db:
        db.execute("DROP TABLE jobs")
    assert bare_container.purge_old_jobs() == 0


def test_status_document(bare_container):
    status = bare_container.get_status()

    assert status["gateway_configured"] is False
    assert status["advisor"] == "none"
    assert status["pump"] is None
    assert status["scheduler"]["total_jobs"] == 0
