"""
Centralized time-trigger scheduler for all controller callbacks.

Controllers register four kinds of trigger here: a fixed local time each day,
a fixed minute each hour, a fixed interval, and a single instant. Daily and
hourly triggers are evaluated in an IANA timezone, so a 10:00 pump start
stays at 10:00 local across DST changes.

Rules the loop keeps:
- One loop thread; firings run on a bounded worker pool
- A trigger never overlaps itself, even across re-registration of its id.
  A recurring slot that comes due while the previous firing is still running
  is counted in ``skipped_count`` and dropped; a one-time trigger waits
- A failing callback is logged and counted; its trigger stays registered
- Cancelling removes the trigger before its next firing. A firing already
  in progress runs to completion

Author: HomeControl Team
Date: October 2026
"""

from __future__ import annotations

import heapq
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import wait as wait_futures
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone as dt_timezone
from enum import Enum
from typing import Any, Callable

from homecontrol.utils.time import SYSTEM_CLOCK, Clock, get_zone, next_local_time, parse_time_of_day

logger = logging.getLogger(__name__)


class ScheduleType(Enum):
    INTERVAL = "interval"
    DAILY = "daily"  # HH:MM local
    HOURLY = "hourly"  # minute M of every local hour
    ONCE = "once"


@dataclass
class JobResult:
    """Outcome of one firing."""

    job_id: str
    success: bool
    started_at: datetime
    completed_at: datetime
    result: Any = None
    error: str | None = None

    @property
    def duration_seconds(self) -> float:
        return (self.completed_at - self.started_at).total_seconds()


_EXPORTED_FIELDS = (
    "job_id",
    "task_name",
    "namespace",
    "enabled",
    "interval_seconds",
    "time_of_day",
    "minute",
    "timezone",
    "running",
    "run_count",
    "success_count",
    "failure_count",
    "skipped_count",
    "last_error",
)


@dataclass
class ScheduledJob:
    """A registered trigger plus its firing counters."""

    job_id: str
    task_name: str
    namespace: str  # "pump", "irrigation", "climate", "maintenance"
    schedule_type: ScheduleType
    func: Callable[..., Any]
    enabled: bool = True
    args: tuple = field(default_factory=tuple)
    kwargs: dict[str, Any] = field(default_factory=dict)

    interval_seconds: int | None = None
    time_of_day: str | None = None
    minute: int | None = None
    timezone: str = "UTC"
    run_at: datetime | None = None

    next_run: datetime | None = None
    last_run: datetime | None = None
    running: bool = False
    run_count: int = 0
    success_count: int = 0
    failure_count: int = 0
    skipped_count: int = 0
    last_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data = {name: getattr(self, name) for name in _EXPORTED_FIELDS}
        data["schedule_type"] = self.schedule_type.value
        data["next_run"] = self.next_run.isoformat() if self.next_run else None
        data["last_run"] = self.last_run.isoformat() if self.last_run else None
        return data


class UnifiedScheduler:
    """
    Time-trigger scheduler shared by all controllers.

    Due times live in a min-heap of ``(timestamp, seq, job_id)`` entries.
    Nothing is ever removed from the heap directly: when an entry surfaces,
    it is ignored if its job is gone, disabled, replaced, or has since moved
    to a different ``next_run``.
    """

    def __init__(
        self,
        check_interval_seconds: float = 1.0,
        max_history: int = 500,
        max_workers: int = 4,
        clock: Clock | None = None,
    ):
        """
        Args:
            check_interval_seconds: Loop wake-up period
            max_history: Firing results kept in memory
            max_workers: Size of the firing pool
            clock: Time source; tests pass a manual clock
        """
        self._check_interval = float(check_interval_seconds)
        self._max_history = int(max_history)
        self._max_workers = int(max_workers)
        self._clock = clock or SYSTEM_CLOCK

        self._jobs: dict[str, ScheduledJob] = {}
        self._due: list[tuple[float, int, str]] = []
        self._seq = 0
        self._history: list[JobResult] = []
        self._inflight: set[Future] = set()
        # Ids with a firing in progress; survives re-registration of the id
        self._busy_ids: set[str] = set()

        self._running = False
        self._thread: threading.Thread | None = None
        self._stop_event = threading.Event()
        self._job_lock = threading.RLock()
        self._executor: ThreadPoolExecutor | None = None
        self._ensure_executor()

        logger.info("UnifiedScheduler initialized (max_workers=%s)", self._max_workers)

    def _ensure_executor(self) -> None:
        # Recreated on start() after a stop()
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=self._max_workers, thread_name_prefix="SchedulerJob")

    def _enqueue(self, job: ScheduledJob) -> None:
        if job.enabled and job.next_run:
            self._seq += 1
            heapq.heappush(self._due, (job.next_run.timestamp(), self._seq, job.job_id))

    # ==================== Registration ====================

    def _register(
        self,
        schedule_type: ScheduleType,
        task_name: str,
        default_id: str,
        *,
        func: Callable[..., Any],
        job_id: str | None,
        namespace: str | None,
        args: tuple,
        kwargs: dict[str, Any] | None,
        enabled: bool = True,
        **trigger: Any,
    ) -> ScheduledJob:
        if not namespace:
            namespace = task_name.split(".", 1)[0] if "." in task_name else "default"
        job = ScheduledJob(
            job_id=job_id or default_id,
            task_name=task_name,
            namespace=namespace,
            schedule_type=schedule_type,
            func=func,
            enabled=enabled,
            args=args,
            kwargs=kwargs or {},
            **trigger,
        )
        if job.next_run is None:
            job.next_run = self._next_run_after(job, self._clock.now())

        with self._job_lock:
            if job.job_id in self._jobs:
                logger.debug("Replacing job %s", job.job_id)
            self._jobs[job.job_id] = job
            self._enqueue(job)
        return job

    def schedule_interval(
        self,
        task_name: str,
        interval_seconds: int,
        *,
        func: Callable[..., Any],
        job_id: str | None = None,
        namespace: str | None = None,
        args: tuple = (),
        kwargs: dict[str, Any] | None = None,
        enabled: bool = True,
        start_immediately: bool = False,
    ) -> ScheduledJob:
        """Fixed-rate trigger every ``interval_seconds``."""
        period = int(interval_seconds)
        if period <= 0:
            raise ValueError("interval_seconds must be positive")

        now = self._clock.now()
        job = self._register(
            ScheduleType.INTERVAL,
            task_name,
            f"{task_name}_every_{period}s",
            func=func,
            job_id=job_id,
            namespace=namespace,
            args=args,
            kwargs=kwargs,
            enabled=enabled,
            interval_seconds=period,
            next_run=now if start_immediately else now + timedelta(seconds=period),
        )
        logger.info("Scheduled interval job: %s (every %ss)", job.job_id, period)
        return job

    def schedule_daily(
        self,
        task_name: str,
        time_of_day: str,
        *,
        func: Callable[..., Any],
        timezone: str = "UTC",
        job_id: str | None = None,
        namespace: str | None = None,
        args: tuple = (),
        kwargs: dict[str, Any] | None = None,
        enabled: bool = True,
    ) -> ScheduledJob:
        """Trigger at ``time_of_day`` (HH:MM) local wall-clock time every day."""
        parse_time_of_day(time_of_day)
        get_zone(timezone)

        job = self._register(
            ScheduleType.DAILY,
            task_name,
            f"{task_name}_daily_{time_of_day.replace(':', '')}",
            func=func,
            job_id=job_id,
            namespace=namespace,
            args=args,
            kwargs=kwargs,
            enabled=enabled,
            time_of_day=time_of_day,
            timezone=timezone,
        )
        logger.info("Scheduled daily job: %s (at %s %s)", job.job_id, time_of_day, timezone)
        return job

    def schedule_hourly(
        self,
        task_name: str,
        minute: int = 0,
        *,
        func: Callable[..., Any],
        timezone: str = "UTC",
        job_id: str | None = None,
        namespace: str | None = None,
        args: tuple = (),
        kwargs: dict[str, Any] | None = None,
        enabled: bool = True,
    ) -> ScheduledJob:
        """Trigger at ``minute`` past every local hour."""
        minute = int(minute)
        if not 0 <= minute <= 59:
            raise ValueError(f"minute must be within 0-59, got {minute}")
        get_zone(timezone)

        job = self._register(
            ScheduleType.HOURLY,
            task_name,
            f"{task_name}_hourly_{minute:02d}",
            func=func,
            job_id=job_id,
            namespace=namespace,
            args=args,
            kwargs=kwargs,
            enabled=enabled,
            minute=minute,
            timezone=timezone,
        )
        logger.info("Scheduled hourly job: %s (at :%02d)", job.job_id, minute)
        return job

    def schedule_once(
        self,
        task_name: str,
        run_at: datetime,
        *,
        func: Callable[..., Any],
        job_id: str | None = None,
        namespace: str | None = None,
        args: tuple = (),
        kwargs: dict[str, Any] | None = None,
    ) -> ScheduledJob:
        """Trigger once at ``run_at``. Naive datetimes are read as UTC; past instants fire on the next pass."""
        if run_at.tzinfo is None:
            run_at = run_at.replace(tzinfo=dt_timezone.utc)

        job = self._register(
            ScheduleType.ONCE,
            task_name,
            f"{task_name}_once_{int(run_at.timestamp())}",
            func=func,
            job_id=job_id,
            namespace=namespace,
            args=args,
            kwargs=kwargs,
            run_at=run_at,
            next_run=run_at,
        )
        logger.info("Scheduled one-time job: %s (at %s)", job.job_id, run_at.isoformat())
        return job

    def run_now(self, job_id: str) -> JobResult | None:
        """Fire a registered job on the calling thread.

        Returns None for an unknown job or one that is already running.
        """
        with self._job_lock:
            job = self._jobs.get(job_id)
            if job is None:
                logger.error("Job not found: %s", job_id)
                return None
            if job.running or job_id in self._busy_ids:
                logger.warning("Job %s is already running; not starting another", job_id)
                return None
            job.running = True
            self._busy_ids.add(job_id)
        return self._execute_job(job, self._clock.now())

    # ==================== Job Management ====================

    def remove_job(self, job_id: str) -> bool:
        with self._job_lock:
            removed = self._jobs.pop(job_id, None) is not None
        if removed:
            logger.info("Removed job: %s", job_id)
        return removed

    def cancel(self, job_id: str | None) -> bool:
        """Cancel by handle. ``None``, empty and unknown handles are a no-op."""
        return bool(job_id) and self.remove_job(job_id)

    def get_job(self, job_id: str) -> ScheduledJob | None:
        return self._jobs.get(job_id)

    def get_jobs(self, namespace: str | None = None, enabled_only: bool = False) -> list[ScheduledJob]:
        return [
            job
            for job in list(self._jobs.values())
            if (not namespace or job.namespace == namespace) and (job.enabled or not enabled_only)
        ]

    # ==================== Lifecycle ====================

    def start(self) -> None:
        if self._running:
            logger.warning("Scheduler already running")
            return
        self._ensure_executor()
        self._stop_event.clear()
        self._running = True
        self._thread = threading.Thread(target=self._run_loop, daemon=True, name="UnifiedScheduler")
        self._thread.start()
        logger.info("UnifiedScheduler started")

    def stop(self, wait: bool = True, timeout: float = 5.0) -> None:
        """Stop the loop. With ``wait``, in-flight firings get ``timeout`` seconds to finish."""
        if not self._running and self._executor is None:
            return

        self._running = False
        self._stop_event.set()
        if wait and self._thread:
            self._thread.join(timeout=timeout)

        executor, self._executor = self._executor, None
        if executor is None:
            return
        if wait:
            with self._job_lock:
                pending = set(self._inflight)
            if pending:
                _, unfinished = wait_futures(pending, timeout=timeout)
                if unfinished:
                    logger.warning("%s job(s) still running after %.1fs grace period", len(unfinished), timeout)
        executor.shutdown(wait=False, cancel_futures=True)
        logger.info("UnifiedScheduler stopped")

    def shutdown(self, wait: bool = True, timeout: float = 5.0) -> None:
        self.stop(wait=wait, timeout=timeout)

    def is_running(self) -> bool:
        return self._running

    def _run_loop(self) -> None:
        logger.debug("Scheduler loop started")
        while self._running:
            try:
                self._process_due_jobs()
            except Exception as e:
                logger.error("Error in scheduler loop: %s", e, exc_info=True)
            self._stop_event.wait(self._check_interval)
        logger.debug("Scheduler loop ended")

    # ==================== Dispatch ====================

    def _pop_due(self, now_ts: float) -> ScheduledJob | None:
        """Pop heap entries until a live due job surfaces; None when nothing is due."""
        while self._due and self._due[0][0] <= now_ts:
            run_at_ts, _, job_id = heapq.heappop(self._due)
            job = self._jobs.get(job_id)
            if job and job.enabled and job.next_run and abs(job.next_run.timestamp() - run_at_ts) <= 1e-6:
                return job
        return None

    def _process_due_jobs(self) -> list[Future]:
        """Submit every due job. Returns the futures submitted in this pass."""
        now = self._clock.now()
        submitted: list[Future] = []

        with self._job_lock:
            while (job := self._pop_due(now.timestamp())) is not None:
                slot = job.next_run
                # Advance first so a slow firing cannot pile up slots
                if job.schedule_type is ScheduleType.ONCE:
                    job.next_run = None
                else:
                    job.next_run = self._next_run_after(job, max(slot, now))
                    self._enqueue(job)

                if job.running or job.job_id in self._busy_ids:
                    if job.schedule_type is ScheduleType.ONCE:
                        # An earlier firing under this id is still running; retry next pass
                        job.next_run = now + timedelta(seconds=self._check_interval or 1.0)
                        self._enqueue(job)
                        logger.debug("Job %s waiting for its previous firing", job.job_id)
                        continue
                    job.skipped_count += 1
                    logger.warning("Job %s still running; skipping slot %s", job.job_id, slot.isoformat())
                    continue
                if self._executor is None:
                    logger.warning("Executor unavailable; skipping job %s", job.job_id)
                    continue

                job.running = True
                self._busy_ids.add(job.job_id)
                try:
                    future = self._executor.submit(self._execute_job, job, slot)
                except RuntimeError as e:
                    job.running = False
                    self._busy_ids.discard(job.job_id)
                    logger.error("Failed to submit job %s to executor: %s", job.job_id, e)
                    continue
                self._inflight.add(future)
                future.add_done_callback(self._forget_future)
                submitted.append(future)

        return submitted

    def _forget_future(self, future: Future) -> None:
        with self._job_lock:
            self._inflight.discard(future)

    def _execute_job(self, job: ScheduledJob, scheduled_for: datetime) -> JobResult | None:
        """Run one firing. Callback errors are caught and recorded, never raised."""
        try:
            with self._job_lock:
                if self._jobs.get(job.job_id) is not job:
                    logger.debug("Job %s was cancelled before it started", job.job_id)
                    return None

            started_at = self._clock.now()
            value, error = None, None
            try:
                value = job.func(*job.args, **job.kwargs)
            except Exception as e:
                error = str(e)
                logger.error("Job %s failed: %s", job.job_id, e, exc_info=True)
            outcome = JobResult(
                job_id=job.job_id,
                success=error is None,
                started_at=started_at,
                completed_at=self._clock.now(),
                result=value,
                error=error,
            )

            with self._job_lock:
                job.last_run = started_at
                job.run_count += 1
                job.last_error = error
                if outcome.success:
                    job.success_count += 1
                else:
                    job.failure_count += 1
                self._history.append(outcome)
                del self._history[: -self._max_history]

            if outcome.success:
                logger.debug(
                    "Job %s completed in %.2fs (slot %s)",
                    job.job_id,
                    outcome.duration_seconds,
                    scheduled_for.isoformat(),
                )
            return outcome
        finally:
            with self._job_lock:
                job.running = False
                self._busy_ids.discard(job.job_id)
                # A ONCE callback may have registered a replacement under the same id
                if job.schedule_type is ScheduleType.ONCE and self._jobs.get(job.job_id) is job:
                    del self._jobs[job.job_id]

    def _next_run_after(self, job: ScheduledJob, after: datetime) -> datetime | None:
        """First slot strictly after ``after``. Missed interval slots are skipped, not replayed."""
        if job.schedule_type is ScheduleType.INTERVAL:
            period = timedelta(seconds=int(job.interval_seconds or 60))
            candidate = (job.next_run or after) + period
            if candidate <= after:
                candidate += (int((after - candidate) / period) + 1) * period
            return candidate

        if job.schedule_type is ScheduleType.DAILY:
            hour, minute = parse_time_of_day(job.time_of_day or "00:00")
            return next_local_time(after, hour, minute, job.timezone)

        if job.schedule_type is ScheduleType.HOURLY:
            local = after.astimezone(get_zone(job.timezone))
            candidate = local.replace(minute=int(job.minute or 0), second=0, microsecond=0).astimezone(dt_timezone.utc)
            while candidate <= after:
                candidate += timedelta(hours=1)
            return candidate

        return job.run_at

    # ==================== Status & History ====================

    def get_status(self) -> dict[str, Any]:
        with self._job_lock:
            jobs = list(self._jobs.values())
            return {
                "running": self._running,
                "total_jobs": len(jobs),
                "enabled_jobs": sum(1 for j in jobs if j.enabled),
                "running_jobs": sum(1 for j in jobs if j.running),
                "namespaces": sorted({j.namespace for j in jobs}),
                "pending_jobs": sum(1 for j in jobs if j.enabled and j.next_run is not None),
                "history_size": len(self._history),
                "recent_failures": sum(1 for r in self._history[-20:] if not r.success),
                "max_workers": self._max_workers,
            }

    def health_check(self) -> dict[str, Any]:
        """Rate the loop healthy, degraded or unhealthy from the last 50 firings."""
        with self._job_lock:
            recent = self._history[-50:]
            job_count = len(self._jobs)

        failures = [r for r in recent if not r.success]
        failure_rate = len(failures) / len(recent) if recent else 0.0

        if not self._running:
            health, reason = "unhealthy", "Scheduler is not running"
        elif failure_rate > 0.5:
            health, reason = "unhealthy", f"High failure rate: {failure_rate:.0%}"
        elif failure_rate > 0.2:
            health, reason = "degraded", f"Elevated failure rate: {failure_rate:.0%}"
        else:
            health, reason = "healthy", "All triggers firing normally"

        by_job: dict[str, dict[str, Any]] = {}
        for r in failures:
            entry = by_job.setdefault(r.job_id, {"count": 0, "last_error": None})
            entry["count"] += 1
            entry["last_error"] = r.error

        return {
            "health": health,
            "reason": reason,
            "timestamp": self._clock.now().isoformat(),
            "scheduler_running": self._running,
            "statistics": {
                "total_jobs": job_count,
                "recent_executions": len(recent),
                "recent_failures": len(failures),
                "failure_rate": round(failure_rate, 3),
            },
            "failure_summary": by_job,
        }

    def get_history(self, job_id: str | None = None, limit: int = 100) -> list[JobResult]:
        with self._job_lock:
            results = [r for r in self._history if not job_id or r.job_id == job_id]
        return sorted(results, key=lambda r: r.started_at, reverse=True)[: int(limit)]
