"""Dispatcher running one sweep over the job registry.

A sweep loads the registry and run-state, runs every due job under its
per-job lock, and writes back the updated run-state and registry. One job's
failure never stops the others: resolution, binding and execution errors are
turned into a failed JobRunResult and a ``cron.job.failed`` event.
"""

import inspect
import logging
import time
from dataclasses import dataclass
from datetime import datetime, tzinfo
from typing import Any, Callable, Dict, Optional, Set

from cronsweep.cron.exceptions import CronError, ScheduleError
from cronsweep.cron.expression import is_due
from cronsweep.cron.job import DispatchReport, JobDefinition, JobOutcome, JobRunResult
from cronsweep.cron.locks import LockManager, LockState, StateLock
from cronsweep.cron.store import JobRegistry, RunStateStore
from cronsweep.cron.targets import TargetResolver
from cronsweep.events import Event, EventBus, EventType
from cronsweep.timing import Timer

logger = logging.getLogger(__name__)


@dataclass
class InvocationResult:
    """Outcome of calling a job's entry point.

    Attributes:
        ok: Whether the entry point returned without raising
        error: Description of the failure
        exception: The exception raised, if any
        elapsed: Wall-clock seconds spent
        memory_peak: Peak traced memory in bytes
    """

    ok: bool
    error: Optional[str] = None
    exception: Optional[BaseException] = None
    elapsed: float = 0.0
    memory_peak: int = 0


def describe_error(exc: BaseException) -> str:
    if isinstance(exc, CronError):
        return exc.message
    if isinstance(exc, SystemExit):
        return f"Job called exit with status {exc.code}"
    return str(exc) or type(exc).__name__


class Dispatcher:
    """Runs due jobs and keeps the registry and run-state up to date.

    Example:
        dispatcher = Dispatcher(registry, run_state, locks, resolver, event_bus)
        report = await dispatcher.dispatch()
        for result in report.failed:
            print(result.job_id, result.error)
    """

    def __init__(
        self,
        registry: JobRegistry,
        run_state: RunStateStore,
        locks: LockManager,
        resolver: TargetResolver,
        event_bus: Optional[EventBus] = None,
        timer: Optional[Timer] = None,
        state_lock: Optional[Callable[[], StateLock]] = None,
        tz: Optional[tzinfo] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the dispatcher.

        Args:
            registry: Job registry store
            run_state: Last-run timestamp store
            locks: Per-job lock manager
            resolver: Resolves targets and binds arguments
            event_bus: Receives lifecycle events
            timer: Measures elapsed time and peak memory per job
            state_lock: Factory for the lock around registry/run-state updates
            tz: Timezone for schedule evaluation (None for local time)
            clock: Returns the current Unix time
        """
        self._registry = registry
        self._run_state = run_state
        self._locks = locks
        self._resolver = resolver
        self._event_bus = event_bus or EventBus()
        self._timer = timer or Timer()
        self._state_lock = state_lock
        self._tz = tz
        self._clock = clock

    async def dispatch(self, now: Optional[int] = None) -> DispatchReport:
        """Run one sweep over all registered jobs.

        Args:
            now: Unix timestamp to evaluate schedules against (default: current time)

        Returns:
            Per-job results of the sweep

        Raises:
            PersistenceError: If the registry, run-state or lock files
                cannot be read or written
        """
        now = int(self._clock()) if now is None else int(now)
        self._locks.ensure_dir()

        with self._locked_state():
            jobs = self._registry.load()
            last_runs = self._run_state.load()

        logger.info(f"Starting sweep over {len(jobs)} jobs")
        report = DispatchReport(now=now)
        completed: Dict[str, int] = {}
        removed: Set[str] = set()

        try:
            for job_id, job in jobs.items():
                result = await self._dispatch_job(job, now, last_runs.get(job_id, 0))
                report.results.append(result)

                if result.success:
                    completed[job_id] = now
                    if result.removed:
                        removed.add(job_id)
        finally:
            self._persist(jobs, completed, removed)

        logger.info(
            f"Sweep finished: {len(report.completed)} completed, "
            f"{len(report.failed)} failed, {len(report.skipped)} skipped"
        )
        return report

    async def _dispatch_job(self, job: JobDefinition, now: int, last_run: int) -> JobRunResult:
        """Handle one job: due check, locking and execution."""
        try:
            due = is_due(job.schedule, now, last_run, self._tz)
        except ScheduleError as e:
            logger.error(f"Job {job.id} has an invalid schedule: {e.message}")
            await self._publish(EventType.JOB_FAILED, {
                "job_id": job.id,
                "error": e.message,
                "exception": e,
            })
            return JobRunResult(job_id=job.id, outcome=JobOutcome.FAILED, error=e.message)

        if not due:
            return JobRunResult(job_id=job.id, outcome=JobOutcome.NOT_DUE)

        lock = self._locks.lock_for(job.id)
        acquired = lock.try_acquire()

        if acquired.state is LockState.HELD_FRESH:
            return await self._skip_locked(job, acquired.age)

        stale_age: Optional[float] = None
        if acquired.state is LockState.HELD_STALE:
            if not lock.reclaim():
                return await self._skip_locked(job, lock.age() or 0.0)
            stale_age = acquired.age

        with lock:
            if stale_age is not None:
                await self._publish(EventType.LOCK_STALE, {"job_id": job.id, "age": stale_age})
            result = await self._run(job)
            result.lock_age = stale_age
            return result

    async def _skip_locked(self, job: JobDefinition, age: float) -> JobRunResult:
        logger.debug(f"Job {job.id} is locked by another sweep ({age:.0f}s)")
        await self._publish(EventType.JOB_SKIPPED, {
            "job_id": job.id,
            "reason": "locked",
            "age": age,
        })
        return JobRunResult(job_id=job.id, outcome=JobOutcome.SKIPPED_LOCKED, lock_age=age)

    async def _run(self, job: JobDefinition) -> JobRunResult:
        """Run a due job whose lock is held."""
        started_at = datetime.now()
        await self._publish(EventType.JOB_STARTING, {"job_id": job.id, "job": job.to_dict()})

        invocation = await self._invoke(job)
        completed_at = datetime.now()

        if not invocation.ok:
            logger.error(f"Job {job.id} failed: {invocation.error}")
            await self._publish(EventType.JOB_FAILED, {
                "job_id": job.id,
                "error": invocation.error,
                "exception": invocation.exception,
            })
            return JobRunResult(
                job_id=job.id,
                outcome=JobOutcome.FAILED,
                started_at=started_at,
                completed_at=completed_at,
                error=invocation.error,
                elapsed=invocation.elapsed,
                memory_peak=invocation.memory_peak,
            )

        await self._publish(EventType.JOB_COMPLETED, {
            "job_id": job.id,
            "elapsed": invocation.elapsed,
            "memory_peak": invocation.memory_peak,
        })

        if job.once:
            await self._publish(EventType.JOB_REMOVED, {"job_id": job.id, "reason": "one-time"})

        return JobRunResult(
            job_id=job.id,
            outcome=JobOutcome.COMPLETED,
            started_at=started_at,
            completed_at=completed_at,
            elapsed=invocation.elapsed,
            memory_peak=invocation.memory_peak,
            removed=job.once,
        )

    async def _invoke(self, job: JobDefinition) -> InvocationResult:
        """Resolve, bind and call the job's entry point.

        Never raises for ordinary exceptions or SystemExit: any failure is
        returned as a non-ok InvocationResult.
        """
        self._timer.start(job.id, job.target)
        try:
            func = self._resolver.resolve(job.target)
            args, kwargs = self._resolver.bind(func, job.args, job_id=job.id)
            outcome: Any = func(*args, **kwargs)
            if inspect.isawaitable(outcome):
                await outcome
        except (Exception, SystemExit) as e:
            elapsed, memory_peak = self._stop_timer(job.id)
            return InvocationResult(
                ok=False,
                error=describe_error(e),
                exception=e,
                elapsed=elapsed,
                memory_peak=memory_peak,
            )

        elapsed, memory_peak = self._stop_timer(job.id)
        return InvocationResult(ok=True, elapsed=elapsed, memory_peak=memory_peak)

    def _stop_timer(self, key: str) -> tuple[float, int]:
        elapsed = self._timer.stop(key)
        memory_peak = self._timer.get_timer(key).get("memory_peak", 0)
        self._timer.remove(key)
        return elapsed, memory_peak

    def _persist(
        self,
        swept_jobs: Dict[str, JobDefinition],
        completed: Dict[str, int],
        removed: Set[str],
    ) -> None:
        """Merge this sweep's changes onto the current documents and save them.

        The documents are re-read under the state lock so that jobs scheduled
        or unscheduled while the sweep ran are preserved. A one-time job is
        only removed if its definition is still the one that ran.
        """
        with self._locked_state():
            jobs = self._registry.load()
            last_runs = self._run_state.load()

            last_runs.update(
                {job_id: stamp for job_id, stamp in completed.items() if job_id in jobs}
            )

            for job_id in removed:
                current = jobs.get(job_id)
                if current is not None and current == swept_jobs.get(job_id):
                    del jobs[job_id]
                    logger.info(f"Removed one-time job {job_id}")

            self._run_state.save(last_runs)
            self._registry.save(jobs)

    def _locked_state(self) -> Any:
        if self._state_lock is None:
            return _NullLock()
        return self._state_lock()

    async def _publish(self, event_type: EventType, payload: Dict[str, Any]) -> None:
        await self._event_bus.publish(Event(event_type, payload, source="dispatcher"))


class _NullLock:
    def __enter__(self) -> "_NullLock":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        return None
