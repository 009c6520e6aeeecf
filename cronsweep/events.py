"""Event types and in-process EventBus for cron lifecycle notifications.

The dispatcher reports what happens to each job by publishing events. The bus
is fire-and-forget: a handler that raises is logged and never affects the
publisher or other handlers.
"""

import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union
from uuid import UUID, uuid4

logger = logging.getLogger(__name__)


class EventType(Enum):
    """Cron lifecycle events."""

    JOB_SKIPPED = "cron.job.skipped"
    LOCK_STALE = "cron.lock.stale"
    JOB_STARTING = "cron.job.starting"
    JOB_COMPLETED = "cron.job.completed"
    JOB_REMOVED = "cron.job.removed"
    JOB_FAILED = "cron.job.failed"

    # Registry changes
    JOB_SCHEDULED = "cron.job.scheduled"
    JOB_UNSCHEDULED = "cron.job.unscheduled"


@dataclass
class Event:
    """A published notification.

    Attributes:
        event_type: The type of event
        payload: Event-specific data
        event_id: Unique identifier for this event
        timestamp: When the event was created
        source: Component that emitted the event
    """

    event_type: EventType
    payload: Dict[str, Any] = field(default_factory=dict)
    event_id: UUID = field(default_factory=uuid4)
    timestamp: datetime = field(default_factory=datetime.now)
    source: str = ""

    @property
    def name(self) -> str:
        return self.event_type.value

    @property
    def job_id(self) -> Optional[str]:
        return self.payload.get("job_id")


# Handlers may be plain functions or coroutine functions
EventHandler = Callable[[Event], Union[None, Awaitable[None]]]


class EventBus:
    """In-process publish/subscribe bus.

    Example:
        bus = EventBus()

        async def on_failed(event: Event) -> None:
            print(f"{event.job_id} failed: {event.payload['error']}")

        bus.subscribe(EventType.JOB_FAILED, on_failed)
        await bus.publish(Event(EventType.JOB_FAILED, {"job_id": "x", "error": "boom"}))
    """

    def __init__(self) -> None:
        """Initialize the event bus."""
        self._handlers: Dict[EventType, List[EventHandler]] = {}
        self._global_handlers: List[EventHandler] = []
        self._event_history: List[Event] = []
        self._history_enabled: bool = False
        self._max_history: int = 1000

    def subscribe(
        self,
        event_type: EventType,
        handler: EventHandler,
    ) -> Callable[[], None]:
        """Subscribe a handler to a specific event type.

        Args:
            event_type: The event type to subscribe to
            handler: Function or coroutine function called with the event

        Returns:
            Unsubscribe function to remove this subscription
        """
        self._handlers.setdefault(event_type, []).append(handler)

        def unsubscribe() -> None:
            self._handlers[event_type].remove(handler)

        return unsubscribe

    def subscribe_all(self, handler: EventHandler) -> Callable[[], None]:
        """Subscribe a handler to all event types.

        Returns:
            Unsubscribe function to remove this subscription
        """
        self._global_handlers.append(handler)

        def unsubscribe() -> None:
            self._global_handlers.remove(handler)

        return unsubscribe

    def _collect(self, event: Event) -> List[EventHandler]:
        self._record(event)
        handlers: List[EventHandler] = list(self._global_handlers)
        handlers.extend(self._handlers.get(event.event_type, []))
        return handlers

    def _record(self, event: Event) -> None:
        if not self._history_enabled:
            return
        self._event_history.append(event)
        if len(self._event_history) > self._max_history:
            self._event_history = self._event_history[-self._max_history:]

    async def publish(self, event: Event) -> None:
        """Publish an event to all subscribed handlers.

        Coroutine handlers run concurrently via asyncio.gather(); plain
        handlers are called directly.
        """
        handlers = self._collect(event)
        if not handlers:
            return

        await asyncio.gather(
            *[self._safe_call(handler, event) for handler in handlers],
            return_exceptions=True,
        )

    def publish_sync(self, event: Event) -> None:
        """Publish from synchronous code.

        Plain handlers are called in order. Coroutine handlers are run to
        completion when no event loop is running, otherwise scheduled on the
        running loop.
        """
        for handler in self._collect(event):
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    self._run_awaitable(result, event)
            except Exception:
                logger.exception(f"Event handler error for {event.name}")

    def _run_awaitable(self, awaitable: Awaitable[None], event: Event) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        if loop is None:
            asyncio.run(_as_coroutine(awaitable))
        else:
            task = loop.create_task(_as_coroutine(awaitable))
            task.add_done_callback(lambda t: _log_task_error(t, event))

    async def _safe_call(self, handler: EventHandler, event: Event) -> None:
        """Call a handler, logging instead of propagating exceptions."""
        try:
            result = handler(event)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception(f"Event handler error for {event.name}")

    def enable_history(self, max_size: int = 1000) -> None:
        """Enable event history tracking.

        Args:
            max_size: Maximum number of events to retain
        """
        self._history_enabled = True
        self._max_history = max_size

    def disable_history(self) -> None:
        """Disable event history tracking and clear history."""
        self._history_enabled = False
        self._event_history.clear()

    def get_history(
        self,
        event_type: Optional[EventType] = None,
        job_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[Event]:
        """Get event history, optionally filtered.

        Args:
            event_type: Filter by event type
            job_id: Filter by the job the event is about
            limit: Maximum number of events to return (most recent)
        """
        events = self._event_history

        if event_type is not None:
            events = [e for e in events if e.event_type == event_type]

        if job_id is not None:
            events = [e for e in events if e.job_id == job_id]

        if limit is not None:
            events = events[-limit:]

        return list(events)

    def clear(self) -> None:
        """Clear all subscriptions and history."""
        self._handlers.clear()
        self._global_handlers.clear()
        self._event_history.clear()


async def _as_coroutine(awaitable: Awaitable[None]) -> None:
    await awaitable


def _log_task_error(task: "asyncio.Task[None]", event: Event) -> None:
    if not task.cancelled() and task.exception() is not None:
        logger.error(f"Event handler error for {event.name}: {task.exception()}")


class EventLogger:
    """Mirrors cron events into the logging hierarchy.

    Example:
        bus.subscribe_all(EventLogger())
    """

    LEVELS = {
        EventType.JOB_SKIPPED: logging.INFO,
        EventType.LOCK_STALE: logging.WARNING,
        EventType.JOB_STARTING: logging.INFO,
        EventType.JOB_COMPLETED: logging.INFO,
        EventType.JOB_REMOVED: logging.INFO,
        EventType.JOB_FAILED: logging.ERROR,
        EventType.JOB_SCHEDULED: logging.INFO,
        EventType.JOB_UNSCHEDULED: logging.INFO,
    }

    def __init__(self, log: Optional[logging.Logger] = None) -> None:
        self._log = log or logging.getLogger("cronsweep.cron.events")

    def __call__(self, event: Event) -> None:
        level = self.LEVELS.get(event.event_type, logging.DEBUG)
        self._log.log(level, self.format(event))

    @staticmethod
    def format(event: Event) -> str:
        payload = event.payload
        job_id = payload.get("job_id", "?")

        if event.event_type == EventType.JOB_SKIPPED:
            return f"Skipping job {job_id}: {payload.get('reason')} ({payload.get('age', 0):.0f}s)"
        if event.event_type == EventType.LOCK_STALE:
            return f"Reclaiming stale lock for job {job_id} ({payload.get('age', 0):.0f}s old)"
        if event.event_type == EventType.JOB_STARTING:
            return f"Running cron job {job_id}"
        if event.event_type == EventType.JOB_COMPLETED:
            return (
                f"Cron job {job_id} finished in {payload.get('elapsed', 0.0):.3f}s "
                f"using {payload.get('memory_peak', 0)} bytes peak memory"
            )
        if event.event_type == EventType.JOB_REMOVED:
            return f"Removed job {job_id} ({payload.get('reason')})"
        if event.event_type == EventType.JOB_FAILED:
            return f"Cron job {job_id} failed: {payload.get('error')}"
        if event.event_type == EventType.JOB_SCHEDULED:
            return f"Scheduled job {job_id}"
        if event.event_type == EventType.JOB_UNSCHEDULED:
            return f"Unscheduled job {job_id}"
        return f"{event.name}: {payload}"
