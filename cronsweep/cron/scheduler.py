"""CronScheduler: registration API and dispatch entry point.

Ties together the stores, locks, target resolver and dispatcher for one base
directory. Registration calls are synchronous; dispatch is a coroutine so
that coroutine targets and async event handlers run on the caller's loop.
"""

import logging
import time
from datetime import datetime
from typing import TYPE_CHECKING, Any, Callable, Dict, Optional

from cronsweep.cron.dispatcher import Dispatcher
from cronsweep.cron.exceptions import ConfigurationError
from cronsweep.cron.expression import next_run, parse_schedule
from cronsweep.cron.job import DispatchReport, JobDefinition, split_target
from cronsweep.cron.locks import LockManager, StateLock
from cronsweep.cron.store import JobRegistry, JsonDocumentStore, RunStateStore
from cronsweep.cron.targets import TargetResolver
from cronsweep.events import Event, EventBus, EventType
from cronsweep.timing import Timer

if TYPE_CHECKING:
    from cronsweep.config import CronsweepConfig

logger = logging.getLogger(__name__)


class CronScheduler:
    """Registers recurring jobs and runs due ones.

    Example:
        scheduler = CronScheduler(load_config())
        scheduler.schedule("0 3 * * *", "nightly-report", "reports::build", {"days": 1})
        report = await scheduler.dispatch()
    """

    def __init__(
        self,
        config: "CronsweepConfig",
        event_bus: Optional[EventBus] = None,
        resolver: Optional[TargetResolver] = None,
        timer: Optional[Timer] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the scheduler.

        Args:
            config: Configuration naming the base directory and cron settings
            event_bus: Receives registry and dispatch events
            resolver: Resolves job targets (default searches the base directory
                and configured target paths)
            timer: Measures job runtime and memory
            clock: Returns the current Unix time

        Raises:
            ConfigurationError: If the base directory is missing or not writable,
                or the configured timezone is unknown
        """
        from cronsweep.config import ensure_base_dir

        ensure_base_dir(config)

        self.config = config
        self.event_bus = event_bus or EventBus()
        self.resolver = resolver or TargetResolver(config.target_search_paths)
        self._clock = clock
        self._tz = config.get_tzinfo()

        settings = config.cron
        self._registry = JobRegistry(JsonDocumentStore(config.registry_path))
        self._run_state = RunStateStore(JsonDocumentStore(config.timestamps_path))
        self.locks = LockManager(config.lock_path, settings.stale_lock_seconds, clock)

        self._dispatcher = Dispatcher(
            registry=self._registry,
            run_state=self._run_state,
            locks=self.locks,
            resolver=self.resolver,
            event_bus=self.event_bus,
            timer=timer or Timer(track_memory=settings.track_memory),
            state_lock=self.state_lock,
            tz=self._tz,
            clock=clock,
        )

    def state_lock(self) -> StateLock:
        """Create the lock guarding registry and run-state updates."""
        settings = self.config.cron
        return StateLock(
            self.config.state_lock_path,
            timeout=settings.state_lock_timeout,
            stale_after=settings.state_lock_stale_seconds,
            clock=self._clock,
        )

    def schedule(
        self,
        expression: str,
        job_id: str,
        target: str,
        args: Optional[Dict[str, Any]] = None,
        once: bool = False,
    ) -> JobDefinition:
        """Add or replace a job.

        Args:
            expression: Five-field cron expression
            job_id: Unique job identifier; an existing job with this id is replaced
            target: Entry point in 'module::entrypoint' form
            args: Named arguments passed to the entry point
            once: Remove the job after its first successful run

        Returns:
            The stored job definition

        Raises:
            ScheduleError: If the expression is malformed
            TargetFormatError: If the target lacks the '::' separator
            ConfigurationError: If the job id is empty
            PersistenceError: If the registry cannot be read or written
        """
        if not isinstance(job_id, str) or not job_id:
            raise ConfigurationError("Job id must be a non-empty string")

        parse_schedule(expression)
        split_target(target)

        job = JobDefinition(
            id=job_id,
            schedule=expression.strip(),
            target=target,
            args=dict(args or {}),
            once=once,
        )

        with self.state_lock():
            jobs = self._registry.load()
            replaced = job_id in jobs
            jobs[job_id] = job
            self._registry.save(jobs)

        logger.info(f"{'Replaced' if replaced else 'Scheduled'} job {job_id} ({expression})")
        self._publish(EventType.JOB_SCHEDULED, {"job_id": job_id, "job": job.to_dict()})
        return job

    def unschedule(self, job_id: str) -> bool:
        """Remove a job.

        Returns:
            True if the job existed and was removed
        """
        with self.state_lock():
            jobs = self._registry.load()
            if job_id not in jobs:
                return False
            del jobs[job_id]
            self._registry.save(jobs)

        logger.info(f"Unscheduled job {job_id}")
        self._publish(EventType.JOB_UNSCHEDULED, {"job_id": job_id})
        return True

    def list_jobs(self) -> Dict[str, JobDefinition]:
        return self._registry.load()

    def get_job(self, job_id: str) -> Optional[JobDefinition]:
        return self._registry.load().get(job_id)

    def last_runs(self) -> Dict[str, int]:
        """Get the Unix timestamp of each job's last successful run."""
        return self._run_state.load()

    def next_run(self, job_id: str, after: Optional[datetime] = None) -> Optional[datetime]:
        """Get the next time a job's schedule fires, or None if unknown or never."""
        job = self.get_job(job_id)
        if job is None:
            return None
        return next_run(job.schedule, after, self._tz)

    async def dispatch(self, now: Optional[int] = None) -> DispatchReport:
        """Run one sweep, executing every job due at ``now``.

        Raises:
            PersistenceError: If the registry, run-state or lock files
                cannot be read or written
        """
        return await self._dispatcher.dispatch(now)

    def _publish(self, event_type: EventType, payload: Dict[str, Any]) -> None:
        self.event_bus.publish_sync(Event(event_type, payload, source="scheduler"))
