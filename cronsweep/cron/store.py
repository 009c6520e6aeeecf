"""JSON-backed job registry and run-state stores.

Each store is a single JSON document that is read whole and rewritten whole.
Writes go to a temporary file in the same directory which is then renamed
over the target, so a crash mid-write never leaves a truncated document.
"""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict

from cronsweep.cron.exceptions import PersistenceError
from cronsweep.cron.job import JobDefinition

logger = logging.getLogger(__name__)


class JsonDocumentStore:
    """A JSON object persisted to one file.

    Example:
        store = JsonDocumentStore(Path("/var/lib/cron/cron-jobs.json"))
        data = store.load()
        data["key"] = "value"
        store.save(data)
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def load(self) -> Dict[str, Any]:
        """Load the document.

        Returns:
            The stored mapping, or an empty dict if the file does not exist

        Raises:
            PersistenceError: If the file cannot be read or is not a JSON object
        """
        if not self.path.exists():
            return {}

        try:
            content = self.path.read_text(encoding="utf-8")
        except OSError as e:
            raise PersistenceError(f"Cannot read {self.path.name}: {e}", path=str(self.path)) from e

        if not content.strip():
            return {}

        try:
            data = json.loads(content)
        except json.JSONDecodeError as e:
            raise PersistenceError(f"Malformed JSON in {self.path.name}: {e}", path=str(self.path)) from e

        # An empty registry written as a JSON list by older writers
        if data == []:
            return {}
        if not isinstance(data, dict):
            raise PersistenceError(
                f"Expected a JSON object in {self.path.name}, got {type(data).__name__}",
                path=str(self.path),
            )
        return data

    def save(self, data: Dict[str, Any]) -> None:
        """Atomically replace the document.

        Raises:
            PersistenceError: If the file cannot be written
        """
        try:
            payload = json.dumps(data, indent=4)
        except (TypeError, ValueError) as e:
            raise PersistenceError(f"Cannot serialize {self.path.name}: {e}", path=str(self.path)) from e

        tmp_path = None
        try:
            fd, tmp_path = tempfile.mkstemp(
                prefix=f".{self.path.name}.",
                suffix=".tmp",
                dir=self.path.parent,
            )
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.path)
            tmp_path = None
        except OSError as e:
            raise PersistenceError(f"Cannot write {self.path.name}: {e}", path=str(self.path)) from e
        finally:
            if tmp_path is not None and os.path.exists(tmp_path):
                os.unlink(tmp_path)

        logger.debug(f"Saved {len(data)} entries to {self.path}")


class JobRegistry:
    """Durable mapping of job id to JobDefinition."""

    def __init__(self, store: JsonDocumentStore) -> None:
        self._store = store

    @property
    def path(self) -> Path:
        return self._store.path

    def load(self) -> Dict[str, JobDefinition]:
        """Load all jobs in document order.

        Raises:
            PersistenceError: If the document is unreadable or an entry is malformed
        """
        jobs: Dict[str, JobDefinition] = {}
        for job_id, entry in self._store.load().items():
            if not isinstance(entry, dict) or "schedule" not in entry:
                raise PersistenceError(
                    f"Malformed registry entry for job '{job_id}'",
                    job_id=job_id,
                    path=str(self.path),
                )
            jobs[job_id] = JobDefinition.from_dict(job_id, entry)
        return jobs

    def save(self, jobs: Dict[str, JobDefinition]) -> None:
        self._store.save({job_id: job.to_dict() for job_id, job in jobs.items()})


class RunStateStore:
    """Durable mapping of job id to last successful run (Unix seconds)."""

    def __init__(self, store: JsonDocumentStore) -> None:
        self._store = store

    @property
    def path(self) -> Path:
        return self._store.path

    def load(self) -> Dict[str, int]:
        state: Dict[str, int] = {}
        for job_id, value in self._store.load().items():
            try:
                state[job_id] = int(value)
            except (TypeError, ValueError):
                logger.warning(f"Ignoring invalid last-run value for job {job_id}: {value!r}")
        return state

    def save(self, state: Dict[str, int]) -> None:
        self._store.save(dict(state))
