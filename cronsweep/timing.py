"""Named timers measuring wall-clock time and peak memory.

Memory is measured with tracemalloc, so the peak covers Python allocations
made between start() and stop(). Starting a timer resets the tracemalloc
peak; overlapping timers therefore share one peak measurement.
"""

import logging
import time
import tracemalloc
from dataclasses import dataclass
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


@dataclass
class TimerRecord:
    """State of one named timer."""

    key: str
    description: str
    started_at: float
    start_counter: float
    stopped_at: Optional[float] = None
    elapsed: Optional[float] = None
    memory_peak: int = 0

    @property
    def running(self) -> bool:
        return self.stopped_at is None


class Timer:
    """Collection of named timers.

    Example:
        timer = Timer()
        timer.start("nightly-report")
        run_report()
        elapsed = timer.stop("nightly-report")
        peak = timer.get_timer("nightly-report")["memory_peak"]
    """

    def __init__(self, track_memory: bool = True) -> None:
        """Initialize the timer collection.

        Args:
            track_memory: Measure peak memory with tracemalloc
        """
        self.track_memory = track_memory
        self._timers: Dict[str, TimerRecord] = {}
        self._owns_tracing = False

    def start(self, key: str, description: str = "") -> float:
        """Start (or restart) a named timer.

        Returns:
            The start time as a Unix timestamp
        """
        if self.track_memory:
            if not tracemalloc.is_tracing():
                tracemalloc.start()
                self._owns_tracing = True
            tracemalloc.reset_peak()

        record = TimerRecord(
            key=key,
            description=description,
            started_at=time.time(),
            start_counter=time.perf_counter(),
        )
        self._timers[key] = record
        return record.started_at

    def stop(self, key: str) -> float:
        """Stop a timer.

        Returns:
            Elapsed seconds

        Raises:
            KeyError: If no timer with this key was started
        """
        record = self._timers[key]
        if not record.running:
            return record.elapsed or 0.0

        record.elapsed = time.perf_counter() - record.start_counter
        record.stopped_at = time.time()

        if self.track_memory and tracemalloc.is_tracing():
            _, record.memory_peak = tracemalloc.get_traced_memory()
            self._stop_tracing_if_idle()

        return record.elapsed

    def _stop_tracing_if_idle(self) -> None:
        if self._owns_tracing and not any(t.running for t in self._timers.values()):
            tracemalloc.stop()
            self._owns_tracing = False

    def elapsed(self, key: str) -> Optional[float]:
        """Elapsed seconds so far (or total, if stopped); None for unknown keys."""
        record = self._timers.get(key)
        if record is None:
            return None
        if record.running:
            return time.perf_counter() - record.start_counter
        return record.elapsed

    def get_timer(self, key: str) -> Dict[str, Any]:
        """Get a timer's data as a dict, or an empty dict if it does not exist."""
        record = self._timers.get(key)
        if record is None:
            return {}
        return {
            "key": record.key,
            "description": record.description,
            "started_at": record.started_at,
            "stopped_at": record.stopped_at,
            "elapsed": self.elapsed(key),
            "memory_peak": record.memory_peak,
            "running": record.running,
        }

    def has(self, key: str) -> bool:
        return key in self._timers

    def remove(self, key: str) -> None:
        self._timers.pop(key, None)
        self._stop_tracing_if_idle()

    def clear(self) -> None:
        self._timers.clear()
        self._stop_tracing_if_idle()
