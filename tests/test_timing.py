"""Tests for named timers."""

import tracemalloc

import pytest

from cronsweep.timing import Timer


class TestTimer:
    """Test Timer start/stop and inspection."""

    def test_start_and_stop(self) -> None:
        timer = Timer(track_memory=False)
        timer.start("job", "a job")

        elapsed = timer.stop("job")

        assert elapsed >= 0.0
        data = timer.get_timer("job")
        assert data["description"] == "a job"
        assert data["running"] is False
        assert data["elapsed"] == elapsed

    def test_stop_twice_returns_same_elapsed(self) -> None:
        timer = Timer(track_memory=False)
        timer.start("job")
        first = timer.stop("job")

        assert timer.stop("job") == first

    def test_stop_unknown_raises(self) -> None:
        with pytest.raises(KeyError):
            Timer().stop("missing")

    def test_elapsed_unknown(self) -> None:
        assert Timer().elapsed("missing") is None

    def test_get_timer_unknown(self) -> None:
        assert Timer().get_timer("missing") == {}

    def test_remove_and_clear(self) -> None:
        timer = Timer(track_memory=False)
        timer.start("a")
        timer.start("b")

        timer.remove("a")
        assert not timer.has("a")
        assert timer.has("b")

        timer.clear()
        assert not timer.has("b")

    def test_memory_peak_recorded(self) -> None:
        timer = Timer(track_memory=True)
        timer.start("job")
        data = [bytearray(1024) for _ in range(100)]
        timer.stop("job")

        assert timer.get_timer("job")["memory_peak"] >= 100 * 1024
        del data

    def test_tracing_stopped_when_idle(self) -> None:
        if tracemalloc.is_tracing():
            pytest.skip("tracemalloc already active")

        timer = Timer(track_memory=True)
        timer.start("job")
        assert tracemalloc.is_tracing()

        timer.stop("job")
        assert not tracemalloc.is_tracing()
