"""Tests for cron expression matching and due-time evaluation."""

from datetime import datetime, timedelta, timezone

import pytest

from cronsweep.cron.exceptions import ScheduleError
from cronsweep.cron.expression import (
    CronSchedule,
    calendar_fields,
    is_due,
    matches,
    next_run,
    parse_schedule,
    split_fields,
)

UTC = timezone.utc


def ts(year: int, month: int, day: int, hour: int = 0, minute: int = 0, second: int = 0) -> int:
    """Unix timestamp for a UTC wall-clock time."""
    return int(datetime(year, month, day, hour, minute, second, tzinfo=UTC).timestamp())


class TestMatches:
    """Tests for single-field matching."""

    @pytest.mark.parametrize("value", [0, 1, 7, 30, 59])
    def test_star_matches_everything(self, value: int) -> None:
        assert matches("*", value) is True

    @pytest.mark.parametrize("n", [1, 2, 5, 15, 7])
    def test_step_matches_multiples(self, n: int) -> None:
        for value in range(60):
            assert matches(f"*/{n}", value) == (value % n == 0)

    def test_step_zero_never_matches(self) -> None:
        assert matches("*/0", 0) is False
        assert matches("*/0", 5) is False

    def test_exact_value(self) -> None:
        assert matches("5", 5) is True
        assert matches("5", 6) is False
        assert matches("05", 5) is True

    @pytest.mark.parametrize("expr", ["1-5", "1,2", "*/", "abc", "MON", "", "-1", "*/x"])
    def test_unsupported_syntax_never_matches(self, expr: str) -> None:
        """Anything outside '*', '*/n' and integers is treated as no match."""
        assert matches(expr, 1) is False
        assert matches(expr, 5) is False


class TestSplitFields:
    """Tests for splitting schedules into fields."""

    def test_five_fields(self) -> None:
        assert split_fields("*/15 * * * *") == ["*/15", "*", "*", "*", "*"]

    def test_extra_whitespace_is_ignored(self) -> None:
        assert split_fields("  0   3 * *  1 ") == ["0", "3", "*", "*", "1"]

    @pytest.mark.parametrize("schedule", ["* * * *", "* * * * * *", "", "0"])
    def test_wrong_field_count_raises(self, schedule: str) -> None:
        with pytest.raises(ScheduleError, match="Expected 5 fields"):
            split_fields(schedule)

    @pytest.mark.parametrize("schedule", [5, None, ["*"] * 5])
    def test_non_string_raises(self, schedule) -> None:
        with pytest.raises(ScheduleError, match="expected a string"):
            split_fields(schedule)


class TestParseSchedule:
    """Tests for strict schedule validation."""

    def test_valid_schedule(self) -> None:
        schedule = parse_schedule("0 3 * * 1")

        assert isinstance(schedule, CronSchedule)
        assert schedule.minute == "0"
        assert schedule.hour == "3"
        assert schedule.day_of_week == "1"
        assert str(schedule) == "0 3 * * 1"

    @pytest.mark.parametrize("schedule", ["* * * *", "* * * * * *"])
    def test_rejects_wrong_field_count(self, schedule: str) -> None:
        with pytest.raises(ScheduleError):
            parse_schedule(schedule)

    @pytest.mark.parametrize(
        "schedule",
        ["60 * * * *", "* 24 * * *", "* * 0 * *", "* * 32 * *", "* * * 13 * ", "* * * * 7"],
    )
    def test_rejects_out_of_range_values(self, schedule: str) -> None:
        with pytest.raises(ScheduleError, match="out of range"):
            parse_schedule(schedule)

    @pytest.mark.parametrize("schedule", ["1-5 * * * *", "* * * * MON", "1,2 * * * *"])
    def test_rejects_unsupported_syntax(self, schedule: str) -> None:
        with pytest.raises(ScheduleError, match="Unsupported"):
            parse_schedule(schedule)

    def test_rejects_zero_step(self) -> None:
        with pytest.raises(ScheduleError, match="positive"):
            parse_schedule("*/0 * * * *")

    def test_matches_time(self) -> None:
        schedule = parse_schedule("30 12 * * *")

        assert schedule.matches_time(datetime(2024, 5, 1, 12, 30))
        assert not schedule.matches_time(datetime(2024, 5, 1, 12, 31))


class TestCalendarFields:
    """Tests for timestamp decomposition."""

    def test_fields_in_utc(self) -> None:
        # 2024-01-07 is a Sunday
        assert calendar_fields(ts(2024, 1, 7, 13, 45), UTC) == (45, 13, 7, 1, 0)

    def test_saturday_is_six(self) -> None:
        assert calendar_fields(ts(2024, 1, 6, 0, 0), UTC)[4] == 6

    def test_respects_timezone(self) -> None:
        plus_two = timezone(timedelta(hours=2))
        assert calendar_fields(ts(2024, 1, 1, 23, 0), plus_two)[:3] == (0, 1, 2)


class TestIsDue:
    """Tests for the due-time evaluator."""

    def test_same_minute_is_never_due(self) -> None:
        now = ts(2024, 3, 4, 10, 0, 50)
        last_run = ts(2024, 3, 4, 10, 0, 5)

        assert is_due("* * * * *", now, last_run, UTC) is False

    def test_same_minute_check_runs_before_field_count_check(self) -> None:
        now = ts(2024, 3, 4, 10, 0, 30)

        assert is_due("not a schedule", now, now, UTC) is False

    def test_hourly_due_only_at_minute_zero(self) -> None:
        start = ts(2024, 3, 4, 10, 0)
        for minute in range(60):
            now = start + minute * 60
            assert is_due("0 * * * *", now, 0, UTC) == (minute == 0)

    def test_every_fifteen_minutes_scenario(self) -> None:
        at_30 = ts(2024, 3, 4, 10, 30)
        at_31 = ts(2024, 3, 4, 10, 31)
        at_45 = ts(2024, 3, 4, 10, 45)

        assert is_due("*/15 * * * *", at_30, 0, UTC) is True
        assert is_due("*/15 * * * *", at_31, at_30, UTC) is False
        assert is_due("*/15 * * * *", at_45, at_30, UTC) is True

    def test_day_of_month_and_day_of_week_are_both_required(self) -> None:
        # 2024-01-01 is a Monday
        monday_first = ts(2024, 1, 1, 0, 0)
        monday_eighth = ts(2024, 1, 8, 0, 0)

        assert is_due("0 0 1 * 1", monday_first, 0, UTC) is True
        assert is_due("0 0 1 * 1", monday_eighth, 0, UTC) is False

    def test_unparsable_field_never_fires(self) -> None:
        assert is_due("1-5 * * * *", ts(2024, 1, 1, 0, 1), 0, UTC) is False

    def test_wrong_field_count_raises(self) -> None:
        with pytest.raises(ScheduleError):
            is_due("* * * *", ts(2024, 1, 1), 0, UTC)


class TestNextRun:
    """Tests for next fire time calculation."""

    def test_next_minute(self) -> None:
        after = datetime(2024, 3, 4, 10, 0, 30, tzinfo=UTC)

        assert next_run("* * * * *", after) == datetime(2024, 3, 4, 10, 1, tzinfo=UTC)

    def test_never_returns_the_starting_minute(self) -> None:
        after = datetime(2024, 3, 4, 10, 15, tzinfo=UTC)

        assert next_run("*/15 * * * *", after) == datetime(2024, 3, 4, 10, 30, tzinfo=UTC)

    def test_daily(self) -> None:
        after = datetime(2024, 3, 4, 3, 0, tzinfo=UTC)

        assert next_run("0 3 * * *", after) == datetime(2024, 3, 5, 3, 0, tzinfo=UTC)

    def test_weekday(self) -> None:
        # 2024-03-04 is a Monday; next Sunday is 2024-03-10
        after = datetime(2024, 3, 4, 12, 0, tzinfo=UTC)

        assert next_run("0 9 * * 0", after) == datetime(2024, 3, 10, 9, 0, tzinfo=UTC)

    def test_day_of_month_step_counts_from_zero(self) -> None:
        # */10 on day-of-month matches days 10, 20, 30
        after = datetime(2024, 3, 1, 0, 0, tzinfo=UTC)

        assert next_run("0 0 */10 * *", after) == datetime(2024, 3, 10, 0, 0, tzinfo=UTC)

    def test_impossible_schedule_returns_none(self) -> None:
        # February 31st never exists
        after = datetime(2024, 1, 1, tzinfo=UTC)

        assert next_run("0 0 31 2 *", after) is None

    def test_agrees_with_is_due(self) -> None:
        after = datetime(2024, 3, 4, 10, 7, tzinfo=UTC)
        fire = next_run("*/20 */2 * * *", after)

        assert fire is not None
        assert is_due("*/20 */2 * * *", int(fire.timestamp()), 0, UTC) is True

    def test_invalid_schedule_raises(self) -> None:
        with pytest.raises(ScheduleError):
            next_run("61 * * * *")
