"""File-based locks shared between dispatcher processes.

Each job gets a marker file ``<lock_dir>/<job_id>.lock`` while it runs. The
file's modification time records when the lock was taken and its content is
the owner's PID. A marker older than the staleness threshold is presumed
abandoned by a crashed process and may be reclaimed.

A separate StateLock serializes the short read-modify-write cycles on the
registry and run-state documents.
"""

import hashlib
import logging
import os
import re
import time
import uuid
from dataclasses import dataclass
from enum import Enum, auto
from pathlib import Path
from types import TracebackType
from typing import Callable, Dict, Optional, Type

from cronsweep.cron.exceptions import LockTimeoutError, PersistenceError

logger = logging.getLogger(__name__)

DEFAULT_STALE_AFTER = 3600
LOCK_SUFFIX = ".lock"
STALE_SUFFIX = ".stale"

Clock = Callable[[], float]

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]")


class LockState(Enum):
    """Outcome of trying to take a job lock."""

    ACQUIRED = auto()  # Marker created, we own it
    HELD_FRESH = auto()  # Another sweep holds it, skip the job
    HELD_STALE = auto()  # Abandoned marker, may be reclaimed


@dataclass
class AcquireResult:
    """Result of JobLock.try_acquire().

    Attributes:
        state: Lock state observed
        age: Age in seconds of an existing marker (0.0 when freshly acquired)
    """

    state: LockState
    age: float = 0.0


class LockFile:
    """An exclusive marker file.

    Creation uses O_CREAT | O_EXCL so that at most one process can create
    the marker. The content is the creating process's PID.
    """

    def __init__(self, path: Path, clock: Clock = time.time) -> None:
        """Initialize the lock file.

        Args:
            path: Path to the marker file
            clock: Returns the current time in seconds (for age calculation)
        """
        self.path = Path(path)
        self._clock = clock

    def exists(self) -> bool:
        return self.path.exists()

    def create(self) -> bool:
        """Create the marker if it does not exist.

        Returns:
            True if this call created the marker, False if it already existed

        Raises:
            PersistenceError: If the marker cannot be written
        """
        try:
            fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            return False
        except OSError as e:
            raise PersistenceError(f"Cannot create lock file: {e}", path=str(self.path)) from e

        try:
            os.write(fd, str(os.getpid()).encode())
        finally:
            os.close(fd)
        return True

    def read(self) -> Optional[int]:
        """Read the owner PID, or None if missing or unreadable."""
        try:
            return int(self.path.read_text().strip())
        except (ValueError, OSError):
            return None

    def age(self) -> Optional[float]:
        """Seconds since the marker was written, or None if it does not exist."""
        try:
            mtime = self.path.stat().st_mtime
        except FileNotFoundError:
            return None
        return max(0.0, self._clock() - mtime)

    def remove(self) -> None:
        """Remove the marker. Silently ignores a missing file."""
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            raise PersistenceError(f"Cannot remove lock file: {e}", path=str(self.path)) from e

    def is_owned_by_current_process(self) -> bool:
        return self.read() == os.getpid()


class JobLock(LockFile):
    """Per-job execution lock.

    Example:
        lock = manager.lock_for("nightly-report")
        result = lock.try_acquire()
        if result.state is LockState.HELD_FRESH:
            return  # running elsewhere
        if result.state is LockState.HELD_STALE and not lock.reclaim():
            return  # someone else reclaimed it first
        with lock:
            run_job()
    """

    def __init__(
        self,
        job_id: str,
        path: Path,
        stale_after: float = DEFAULT_STALE_AFTER,
        clock: Clock = time.time,
    ) -> None:
        super().__init__(path, clock)
        self.job_id = job_id
        self.stale_after = stale_after
        self._owned = False

    @property
    def owned(self) -> bool:
        return self._owned

    def try_acquire(self) -> AcquireResult:
        """Try to take the lock.

        Returns:
            ACQUIRED if the marker was created, otherwise HELD_FRESH or
            HELD_STALE with the existing marker's age
        """
        if self.create():
            self._owned = True
            logger.debug(f"Acquired lock for job {self.job_id}")
            return AcquireResult(LockState.ACQUIRED)

        age = self.age()
        if age is None:
            # Released between our create attempt and stat
            if self.create():
                self._owned = True
                return AcquireResult(LockState.ACQUIRED)
            age = self.age() or 0.0

        if age < self.stale_after:
            return AcquireResult(LockState.HELD_FRESH, age)
        return AcquireResult(LockState.HELD_STALE, age)

    def reclaim(self) -> bool:
        """Take over a stale marker.

        The marker is first renamed to a side path private to this call. Only
        one process can win that rename, and the renamed file is checked again
        before it is discarded: if it turns out to be a fresh marker written
        by a faster reclaimer, it is put back untouched.

        Returns:
            True if the lock is now ours, False if another process
            reclaimed it first
        """
        age = self.age()
        if age is not None and age < self.stale_after:
            logger.debug(f"Stale lock for job {self.job_id} was already reclaimed")
            return False

        side = self.path.with_name(f"{self.path.name}.{os.getpid()}.{uuid.uuid4().hex}{STALE_SUFFIX}")
        try:
            os.rename(self.path, side)
        except FileNotFoundError:
            logger.debug(f"Stale lock for job {self.job_id} was taken by another sweep")
            return False
        except OSError as e:
            raise PersistenceError(f"Cannot move stale lock file: {e}", path=str(self.path)) from e

        taken = LockFile(side, self._clock)
        side_age = taken.age()
        if side_age is not None and side_age < self.stale_after:
            self._restore(side)
            logger.debug(f"Stale lock for job {self.job_id} was already reclaimed")
            return False

        taken.remove()
        if self.create():
            self._owned = True
            logger.warning(f"Reclaimed stale lock for job {self.job_id}")
            return True
        return False

    def _restore(self, side: Path) -> None:
        """Put a marker moved aside by mistake back in place.

        If a new marker appeared in the meantime, that one is left alone.
        """
        try:
            os.link(side, self.path)
        except FileExistsError:
            pass
        except OSError as e:
            raise PersistenceError(f"Cannot restore lock file: {e}", path=str(self.path)) from e
        finally:
            LockFile(side).remove()

    def release(self) -> None:
        """Release the lock if this instance owns it.

        A marker that now belongs to another process (after it reclaimed our
        lock as stale) is left in place.
        """
        if not self._owned:
            return
        self._owned = False

        if self.exists() and not self.is_owned_by_current_process():
            logger.warning(
                f"Lock for job {self.job_id} was taken over by PID {self.read()}; not removing"
            )
            return

        self.remove()
        logger.debug(f"Released lock for job {self.job_id}")

    def __enter__(self) -> "JobLock":
        if not self._owned:
            raise PersistenceError("Lock is not held", job_id=self.job_id, path=str(self.path))
        return self

    def __exit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc: Optional[BaseException],
        tb: Optional[TracebackType],
    ) -> None:
        self.release()


class LockManager:
    """Creates and inspects job locks under a directory."""

    def __init__(
        self,
        lock_dir: Path,
        stale_after: float = DEFAULT_STALE_AFTER,
        clock: Clock = time.time,
    ) -> None:
        """Initialize the lock manager.

        Args:
            lock_dir: Directory holding the lock markers
            stale_after: Seconds after which a marker is considered abandoned
            clock: Returns the current time in seconds
        """
        self.lock_dir = Path(lock_dir)
        self.stale_after = stale_after
        self._clock = clock

    def ensure_dir(self) -> None:
        try:
            self.lock_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise PersistenceError(f"Cannot create lock directory: {e}", path=str(self.lock_dir)) from e

    def path_for(self, job_id: str) -> Path:
        """Get the marker path for a job.

        Characters outside ``[A-Za-z0-9._-]`` are replaced. When that changes
        the id, a short digest of the original id is appended so that ids
        such as ``a/b`` and ``a_b`` never share a marker.
        """
        name = _UNSAFE_CHARS.sub("_", job_id)
        if name != job_id:
            digest = hashlib.sha1(job_id.encode("utf-8")).hexdigest()[:8]
            name = f"{name}-{digest}"
        return self.lock_dir / f"{name}{LOCK_SUFFIX}"

    def lock_for(self, job_id: str) -> JobLock:
        return JobLock(job_id, self.path_for(job_id), self.stale_after, self._clock)

    def held_locks(self) -> Dict[str, float]:
        """Get the age of every lock marker currently present, keyed by file stem."""
        if not self.lock_dir.exists():
            return {}

        ages: Dict[str, float] = {}
        for path in sorted(self.lock_dir.glob(f"*{LOCK_SUFFIX}")):
            age = LockFile(path, self._clock).age()
            if age is not None:
                ages[path.stem] = age
        return ages


class StateLock(LockFile):
    """Short-lived lock around registry and run-state read-modify-write.

    Example:
        with StateLock(base_dir / "cron-state.lock"):
            jobs = registry.load()
            jobs[job.id] = job
            registry.save(jobs)
    """

    def __init__(
        self,
        path: Path,
        timeout: float = 10.0,
        stale_after: float = 300.0,
        poll_interval: float = 0.05,
        clock: Clock = time.time,
    ) -> None:
        super().__init__(path, clock)
        self.timeout = timeout
        self.stale_after = stale_after
        self.poll_interval = poll_interval

    def acquire(self) -> None:
        """Block until the lock is taken.

        Raises:
            LockTimeoutError: If the lock is not acquired within the timeout
        """
        deadline = time.monotonic() + self.timeout

        while True:
            if self.create():
                return

            age = self.age()
            if age is not None and age >= self.stale_after:
                logger.warning(f"Removing stale state lock {self.path} (age {age:.0f}s)")
                self.remove()
                continue

            if time.monotonic() >= deadline:
                raise LockTimeoutError(
                    f"Timed out after {self.timeout}s waiting for state lock",
                    path=str(self.path),
                )
            time.sleep(self.poll_interval)

    def release(self) -> None:
        self.remove()

    def __enter__(self) -> "StateLock":
        self.acquire()
        return self

    def __exit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc: Optional[BaseException],
        tb: Optional[TracebackType],
    ) -> None:
        self.release()
