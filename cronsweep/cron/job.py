"""Job definitions and dispatch results."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from cronsweep.cron.exceptions import TargetFormatError

TARGET_SEPARATOR = "::"


class JobOutcome(Enum):
    """What happened to a job during one sweep."""

    NOT_DUE = "not_due"
    SKIPPED_LOCKED = "skipped_locked"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class JobDefinition:
    """Definition of a scheduled job.

    Attributes:
        id: Unique identifier, also used for the job's lock file name
        schedule: Five-field cron expression
        target: Entry point in 'module::entrypoint' format
        args: Named arguments matched to the entry point's parameters by name
        once: Remove the job after its first successful run
    """

    id: str
    schedule: str
    target: str
    args: Dict[str, Any] = field(default_factory=dict)
    once: bool = False

    @property
    def module_name(self) -> str:
        return split_target(self.target)[0]

    @property
    def entrypoint(self) -> str:
        return split_target(self.target)[1]

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for the registry document (the id is the document key)."""
        return {
            "schedule": self.schedule,
            "target": self.target,
            "args": dict(self.args),
            "once": self.once,
        }

    @classmethod
    def from_dict(cls, job_id: str, data: Dict[str, Any]) -> "JobDefinition":
        """Build a job from a registry entry.

        Entries written with a ``callback`` key instead of ``target`` are
        accepted as well.
        """
        return cls(
            id=job_id,
            schedule=data["schedule"],
            target=data.get("target") or data.get("callback", ""),
            args=dict(data.get("args") or {}),
            once=bool(data.get("once", False)),
        )


def split_target(target: str) -> tuple[str, str]:
    """Split 'module::entrypoint' into its two parts.

    Raises:
        TargetFormatError: If the separator is missing or either side is empty
    """
    module_name, sep, entrypoint = target.partition(TARGET_SEPARATOR)
    if not sep or not module_name or not entrypoint:
        raise TargetFormatError(f"Expected 'module::entrypoint' format for target, got '{target}'")
    return module_name, entrypoint


@dataclass
class JobRunResult:
    """Result of handling one job during a sweep.

    Attributes:
        job_id: ID of the job
        outcome: What happened to the job
        started_at: When execution started (None if it never started)
        completed_at: When execution finished
        error: Error description if the job failed
        elapsed: Wall-clock seconds spent in the entry point
        memory_peak: Peak traced memory in bytes during the call
        lock_age: Age of the lock that caused a skip, or of a reclaimed stale lock
        removed: Whether a one-time job was removed from the registry
    """

    job_id: str
    outcome: JobOutcome
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error: Optional[str] = None
    elapsed: float = 0.0
    memory_peak: int = 0
    lock_age: Optional[float] = None
    removed: bool = False

    @property
    def success(self) -> bool:
        return self.outcome == JobOutcome.COMPLETED


@dataclass
class DispatchReport:
    """Summary of one sweep over the registry."""

    now: int
    results: List[JobRunResult] = field(default_factory=list)

    def by_outcome(self, outcome: JobOutcome) -> List[JobRunResult]:
        return [r for r in self.results if r.outcome == outcome]

    @property
    def completed(self) -> List[JobRunResult]:
        return self.by_outcome(JobOutcome.COMPLETED)

    @property
    def failed(self) -> List[JobRunResult]:
        return self.by_outcome(JobOutcome.FAILED)

    @property
    def skipped(self) -> List[JobRunResult]:
        return self.by_outcome(JobOutcome.SKIPPED_LOCKED)

    @property
    def removed(self) -> List[str]:
        return [r.job_id for r in self.results if r.removed]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "now": self.now,
            "results": [
                {
                    "job_id": r.job_id,
                    "outcome": r.outcome.value,
                    "started_at": r.started_at.isoformat() if r.started_at else None,
                    "completed_at": r.completed_at.isoformat() if r.completed_at else None,
                    "error": r.error,
                    "elapsed": r.elapsed,
                    "memory_peak": r.memory_peak,
                    "lock_age": r.lock_age,
                    "removed": r.removed,
                }
                for r in self.results
            ],
        }
