"""Cron expression matching and due-time evaluation.

Only a subset of the cron grammar is supported. Each of the five fields
(minute hour day-of-month month day-of-week) is one of:

- ``*``    matches any value
- ``*/n``  matches values where ``value % n == 0``
- ``n``    matches exactly ``n``

Day-of-month and day-of-week are combined with AND like every other field.
Day-of-week uses 0-6 with Sunday = 0.
"""

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, tzinfo
from typing import List, NamedTuple, Optional, Tuple

from cronsweep.cron.exceptions import ScheduleError

logger = logging.getLogger(__name__)

_STEP_PATTERN = re.compile(r"^\*/(\d+)$")
_NUMBER_PATTERN = re.compile(r"^\d+$")

# How far next_run() searches before giving up
_MAX_LOOKAHEAD = timedelta(days=366)


class FieldSpec(NamedTuple):
    """Name and inclusive value range of a schedule field."""

    name: str
    minimum: int
    maximum: int


FIELDS: Tuple[FieldSpec, ...] = (
    FieldSpec("minute", 0, 59),
    FieldSpec("hour", 0, 23),
    FieldSpec("day_of_month", 1, 31),
    FieldSpec("month", 1, 12),
    FieldSpec("day_of_week", 0, 6),
)


@dataclass(frozen=True)
class CronSchedule:
    """A validated five-field schedule."""

    minute: str
    hour: str
    day_of_month: str
    month: str
    day_of_week: str

    @property
    def fields(self) -> Tuple[str, str, str, str, str]:
        return (self.minute, self.hour, self.day_of_month, self.month, self.day_of_week)

    def __str__(self) -> str:
        return " ".join(self.fields)

    def matches_time(self, moment: datetime) -> bool:
        """Check whether every field matches the calendar fields of a datetime."""
        return all(
            matches(expr, value)
            for expr, value in zip(self.fields, _datetime_fields(moment))
        )


def matches(expr: str, value: int) -> bool:
    """Check whether a single cron field matches a time value.

    Unsupported or malformed expressions never match.

    Args:
        expr: Field expression ('*', '*/n' or an integer)
        value: Calendar value to test

    Returns:
        True if the expression matches the value
    """
    if expr == "*":
        return True

    step = _STEP_PATTERN.match(expr)
    if step:
        divisor = int(step.group(1))
        if divisor == 0:
            return False
        return value % divisor == 0

    if _NUMBER_PATTERN.match(expr):
        return int(expr) == value

    return False


def split_fields(schedule: str) -> List[str]:
    """Split a schedule into its five fields.

    Raises:
        ScheduleError: If the schedule is not a string of exactly five fields
    """
    if not isinstance(schedule, str):
        raise ScheduleError(f"Invalid cron schedule: expected a string, got {type(schedule).__name__}")
    parts = schedule.split()
    if len(parts) != len(FIELDS):
        raise ScheduleError(
            f"Invalid cron schedule: '{schedule}'. "
            "Expected 5 fields (minute hour day-of-month month day-of-week)"
        )
    return parts


def parse_schedule(schedule: str) -> CronSchedule:
    """Validate a schedule strictly and return it as a CronSchedule.

    Used when jobs are registered so that a bad schedule is rejected up front
    rather than silently never firing.

    Raises:
        ScheduleError: If any field is malformed or out of range
    """
    parts = split_fields(schedule)

    for expr, spec in zip(parts, FIELDS):
        if expr == "*":
            continue

        step = _STEP_PATTERN.match(expr)
        if step:
            if int(step.group(1)) == 0:
                raise ScheduleError(f"Step must be positive in {spec.name} field: '{expr}'")
            continue

        if not _NUMBER_PATTERN.match(expr):
            raise ScheduleError(
                f"Unsupported {spec.name} field: '{expr}' "
                "(expected '*', '*/n' or an integer)"
            )

        number = int(expr)
        if not spec.minimum <= number <= spec.maximum:
            raise ScheduleError(
                f"{spec.name} value {number} out of range "
                f"{spec.minimum}-{spec.maximum}"
            )

    return CronSchedule(*parts)


def calendar_fields(timestamp: int, tz: Optional[tzinfo] = None) -> Tuple[int, int, int, int, int]:
    """Get (minute, hour, day, month, weekday) for a Unix timestamp.

    Args:
        timestamp: Unix timestamp in seconds
        tz: Timezone to evaluate in (None for the local timezone)
    """
    return _datetime_fields(datetime.fromtimestamp(timestamp, tz))


def _datetime_fields(moment: datetime) -> Tuple[int, int, int, int, int]:
    # isoweekday() is Monday=1..Sunday=7; cron wants Sunday=0
    return (
        moment.minute,
        moment.hour,
        moment.day,
        moment.month,
        moment.isoweekday() % 7,
    )


def is_due(
    schedule: str,
    now: int,
    last_run: int,
    tz: Optional[tzinfo] = None,
) -> bool:
    """Check if a job should fire at ``now``.

    A job never fires twice within the same minute: if ``now`` and
    ``last_run`` fall into the same 60-second bucket the job is not due,
    however often this is polled.

    Args:
        schedule: Five-field cron expression
        now: Current Unix timestamp
        last_run: Unix timestamp of the last successful run (0 if never)
        tz: Timezone for calendar fields (None for local time)

    Returns:
        True if every field matches and the job has not run this minute

    Raises:
        ScheduleError: If the schedule does not have exactly five fields
    """
    if int(now // 60) == int(last_run // 60):
        return False

    fields = split_fields(schedule)
    values = calendar_fields(now, tz)

    return all(matches(expr, value) for expr, value in zip(fields, values))


def next_run(
    schedule: str,
    after: Optional[datetime] = None,
    tz: Optional[tzinfo] = None,
) -> Optional[datetime]:
    """Calculate the next minute after ``after`` at which a schedule fires.

    Args:
        schedule: Five-field cron expression
        after: Starting point (default: now in ``tz``)
        tz: Timezone used when ``after`` is not given

    Returns:
        The next matching datetime, or None if nothing matches within a year
    """
    cron = parse_schedule(schedule)
    minute, hour, day_of_month, month, day_of_week = cron.fields

    if after is None:
        after = datetime.now(tz)

    candidate = after.replace(second=0, microsecond=0) + timedelta(minutes=1)
    limit = candidate + _MAX_LOOKAHEAD

    while candidate <= limit:
        if not (
            matches(day_of_month, candidate.day)
            and matches(month, candidate.month)
            and matches(day_of_week, candidate.isoweekday() % 7)
        ):
            candidate = candidate.replace(hour=0, minute=0) + timedelta(days=1)
            continue

        if not matches(hour, candidate.hour):
            candidate = candidate.replace(minute=0) + timedelta(hours=1)
            continue

        if matches(minute, candidate.minute):
            return candidate

        candidate += timedelta(minutes=1)

    logger.debug(f"No fire time for '{schedule}' within {_MAX_LOOKAHEAD.days} days")
    return None
