"""
Shared test fixtures for the HomeControl engine test suite.

Provides:
- In-memory SQLite database with all tables created
- Repository instances wired to the test database
- A manual clock whose ``sleep`` advances time instead of blocking
- A recording fake gateway and a stub scheduler for controller tests

Usage:
    def test_example(clock, gateway, job_repo):
        gateway.set_state("sensor.nws_temperature", "82")
        ...
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

import pytest

from homecontrol.domain.exceptions import ConnectivityError, NotFoundError
from homecontrol.services.gateway.home_assistant import EntityState
from infrastructure.database.repositories import (
    DecisionRepository,
    FeedbackRepository,
    JobRepository,
    ScheduleRepository,
)
from infrastructure.database.sqlite_handler import SQLiteDatabaseHandler

# ---------------------------------------------------------------------------
# Logging - keep test output clean
# ---------------------------------------------------------------------------
logging.getLogger("infrastructure").setLevel(logging.WARNING)
logging.getLogger("homecontrol").setLevel(logging.WARNING)

# 2026-06-15 10:00 in America/New_York (EDT)
DEFAULT_START = datetime(2026, 6, 15, 14, 0, tzinfo=timezone.utc)


# ========================== Time ==========================================


class FakeClock:
    """Manually driven clock. ``sleep`` advances time and returns immediately."""

    def __init__(self, start: datetime = DEFAULT_START):
        self._now = start
        self._lock = threading.Lock()
        self.sleeps: list[float] = []

    def now(self) -> datetime:
        with self._lock:
            return self._now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.advance(seconds=seconds)

    def advance(self, **delta: float) -> datetime:
        with self._lock:
            self._now = self._now + timedelta(**delta)
            return self._now

    def set(self, moment: datetime) -> None:
        with self._lock:
            self._now = moment


@pytest.fixture()
def clock():
    return FakeClock()


# ========================== Gateway =======================================


@dataclass
class ActionCall:
    domain: str
    action: str
    entity_id: str | None
    params: dict[str, Any] | None
    at: datetime | None = None


@dataclass
class FakeGateway:
    """In-memory stand-in for HomeAssistantGateway that records every action."""

    clock: FakeClock | None = None
    states: dict[str, EntityState] = field(default_factory=dict)
    history: dict[str, list[EntityState]] = field(default_factory=dict)
    calls: list[ActionCall] = field(default_factory=list)
    read_error: Exception | None = None
    action_error: Callable[[ActionCall], Exception | None] | None = None
    is_configured: bool = True

    def set_state(self, entity_id: str, state: Any, **attributes: Any) -> None:
        self.states[entity_id] = EntityState(entity_id=entity_id, state=str(state), attributes=attributes)

    def set_history(self, entity_id: str, values: list[Any]) -> None:
        self.history[entity_id] = [EntityState(entity_id=entity_id, state=str(v)) for v in values]

    def read_state(self, entity_id: str) -> EntityState:
        if self.read_error is not None:
            raise self.read_error
        if entity_id not in self.states:
            raise NotFoundError(f"Entity {entity_id} not found")
        return self.states[entity_id]

    def read_states(self) -> list[EntityState]:
        if self.read_error is not None:
            raise self.read_error
        return list(self.states.values())

    def get_history(self, entity_id: str, start: datetime, end: datetime | None = None) -> list[EntityState]:
        if self.read_error is not None:
            raise self.read_error
        return list(self.history.get(entity_id, []))

    def call_action(
        self,
        domain: str,
        action: str,
        entity_id: str | None = None,
        params: dict[str, Any] | None = None,
    ) -> Any:
        call = ActionCall(domain, action, entity_id, params, self.clock.now() if self.clock else None)
        if self.action_error is not None:
            error = self.action_error(call)
            if error is not None:
                raise error
        self.calls.append(call)
        return []

    def calls_for(self, entity_id: str) -> list[ActionCall]:
        return [c for c in self.calls if c.entity_id == entity_id]


def fail_on(entity_id: str, times: int = 1) -> Callable[[ActionCall], Exception | None]:
    """Make the first ``times`` actions on ``entity_id`` raise ConnectivityError."""
    remaining = {"count": times}

    def _check(call: ActionCall) -> Exception | None:
        if call.entity_id == entity_id and remaining["count"] > 0:
            remaining["count"] -= 1
            return ConnectivityError(f"gateway down for {entity_id}")
        return None

    return _check


@pytest.fixture()
def gateway(clock):
    return FakeGateway(clock=clock)


@pytest.fixture()
def failing_action():
    """Factory: ``gateway.action_error = failing_action("script.x", times=2)``."""
    return fail_on


# ========================== Scheduler =====================================


@dataclass
class Registration:
    kind: str
    job_id: str
    func: Callable[..., Any]
    run_at: datetime | None = None
    time_of_day: str | None = None
    minute: int | None = None
    interval_seconds: int | None = None
    timezone: str | None = None


class StubScheduler:
    """Records registrations; tests fire them by hand."""

    def __init__(self):
        self.jobs: dict[str, Registration] = {}
        self.cancelled: list[str] = []

    def schedule_interval(self, task_name, interval_seconds, *, func, job_id=None, **_kwargs):
        job_id = job_id or task_name
        self.jobs[job_id] = Registration("interval", job_id, func, interval_seconds=interval_seconds)
        return self.jobs[job_id]

    def schedule_daily(self, task_name, time_of_day, *, func, timezone="UTC", job_id=None, **_kwargs):
        job_id = job_id or task_name
        self.jobs[job_id] = Registration("daily", job_id, func, time_of_day=time_of_day, timezone=timezone)
        return self.jobs[job_id]

    def schedule_hourly(self, task_name, minute=0, *, func, timezone="UTC", job_id=None, **_kwargs):
        job_id = job_id or task_name
        self.jobs[job_id] = Registration("hourly", job_id, func, minute=minute, timezone=timezone)
        return self.jobs[job_id]

    def schedule_once(self, task_name, run_at, *, func, job_id=None, **_kwargs):
        job_id = job_id or task_name
        self.jobs[job_id] = Registration("once", job_id, func, run_at=run_at)
        return self.jobs[job_id]

    def cancel(self, job_id):
        if not job_id:
            return False
        self.cancelled.append(job_id)
        return self.jobs.pop(job_id, None) is not None

    def get_job(self, job_id):
        return self.jobs.get(job_id)

    def fire(self, job_id: str) -> Any:
        """Run a registered trigger the way the scheduler would (one-shots are removed first)."""
        registration = self.jobs[job_id]
        if registration.kind == "once":
            del self.jobs[job_id]
        return registration.func()


@pytest.fixture()
def scheduler():
    return StubScheduler()


# ========================== Database Fixtures ==============================


@pytest.fixture()
def db_handler():
    """In-memory SQLite database with all tables created.

    Each test gets a fresh database - no cross-test contamination.
    """
    handler = SQLiteDatabaseHandler(":memory:")
    handler.create_tables()
    yield handler
    handler.close_db()


@pytest.fixture()
def job_repo(db_handler):
    return JobRepository(db_handler)


@pytest.fixture()
def schedule_repo(db_handler):
    return ScheduleRepository(db_handler)


@pytest.fixture()
def decision_repo(db_handler):
    return DecisionRepository(db_handler)


@pytest.fixture()
def feedback_repo(db_handler):
    return FeedbackRepository(db_handler)
