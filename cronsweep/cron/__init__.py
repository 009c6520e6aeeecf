"""Cron job registry, locking and dispatch.

Jobs are registered with a five-field cron expression and a
'module::entrypoint' target. An external trigger (usually the system cron
running ``cronsweep dispatch`` every minute) calls CronScheduler.dispatch(),
which runs every job due at that minute.
"""

from cronsweep.cron.dispatcher import Dispatcher
from cronsweep.cron.exceptions import (
    BindingError,
    ConfigurationError,
    CronError,
    LockTimeoutError,
    PersistenceError,
    ResolutionError,
    ScheduleError,
    TargetFormatError,
)
from cronsweep.cron.expression import CronSchedule, is_due, matches, next_run, parse_schedule
from cronsweep.cron.job import DispatchReport, JobDefinition, JobOutcome, JobRunResult
from cronsweep.cron.locks import JobLock, LockManager, StateLock
from cronsweep.cron.scheduler import CronScheduler
from cronsweep.cron.store import JobRegistry, JsonDocumentStore, RunStateStore
from cronsweep.cron.targets import TargetResolver

__all__ = [
    "CronScheduler",
    "Dispatcher",
    "TargetResolver",
    # Schedules
    "CronSchedule",
    "is_due",
    "matches",
    "next_run",
    "parse_schedule",
    # Jobs
    "DispatchReport",
    "JobDefinition",
    "JobOutcome",
    "JobRunResult",
    # Storage and locking
    "JobLock",
    "JobRegistry",
    "JsonDocumentStore",
    "LockManager",
    "RunStateStore",
    "StateLock",
    # Errors
    "BindingError",
    "ConfigurationError",
    "CronError",
    "LockTimeoutError",
    "PersistenceError",
    "ResolutionError",
    "ScheduleError",
    "TargetFormatError",
]
