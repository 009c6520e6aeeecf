"""Tests for job and state lock files."""

import os
import time
from pathlib import Path

import pytest

from cronsweep.cron.exceptions import LockTimeoutError, PersistenceError
from cronsweep.cron.locks import (
    JobLock,
    LockFile,
    LockManager,
    LockState,
    StateLock,
)


def make_marker(path: Path, age: float, pid: int = 999999) -> None:
    """Write a lock marker owned by another PID, backdated by ``age`` seconds."""
    path.write_text(str(pid))
    stamp = time.time() - age
    os.utime(path, (stamp, stamp))


class TestLockFile:
    """Tests for the exclusive marker file."""

    def test_create_writes_pid(self, tmp_path):
        lock = LockFile(tmp_path / "a.lock")

        assert lock.create() is True
        assert lock.read() == os.getpid()
        assert lock.is_owned_by_current_process()

    def test_create_fails_when_present(self, tmp_path):
        lock = LockFile(tmp_path / "a.lock")
        lock.create()

        assert LockFile(tmp_path / "a.lock").create() is False

    def test_create_in_missing_directory_raises(self, tmp_path):
        lock = LockFile(tmp_path / "missing" / "a.lock")

        with pytest.raises(PersistenceError):
            lock.create()

    def test_age(self, tmp_path):
        path = tmp_path / "a.lock"
        make_marker(path, age=120)

        assert LockFile(path).age() == pytest.approx(120, abs=5)

    def test_age_of_missing_marker(self, tmp_path):
        assert LockFile(tmp_path / "a.lock").age() is None

    def test_age_uses_clock(self, tmp_path):
        path = tmp_path / "a.lock"
        LockFile(path).create()
        mtime = path.stat().st_mtime

        lock = LockFile(path, clock=lambda: mtime + 500)

        assert lock.age() == pytest.approx(500)

    def test_read_invalid_content(self, tmp_path):
        path = tmp_path / "a.lock"
        path.write_text("not a pid")

        assert LockFile(path).read() is None

    def test_remove_missing_is_silent(self, tmp_path):
        LockFile(tmp_path / "a.lock").remove()


class TestJobLock:
    """Tests for per-job execution locks."""

    def test_acquire_free_lock(self, tmp_path):
        lock = JobLock("job", tmp_path / "job.lock")

        result = lock.try_acquire()

        assert result.state is LockState.ACQUIRED
        assert lock.owned
        assert lock.path.exists()

    def test_fresh_lock_is_held(self, tmp_path):
        path = tmp_path / "job.lock"
        make_marker(path, age=60)
        lock = JobLock("job", path, stale_after=3600)

        result = lock.try_acquire()

        assert result.state is LockState.HELD_FRESH
        assert result.age == pytest.approx(60, abs=5)
        assert not lock.owned

    def test_old_lock_is_stale(self, tmp_path):
        path = tmp_path / "job.lock"
        make_marker(path, age=4000)
        lock = JobLock("job", path, stale_after=3600)

        result = lock.try_acquire()

        assert result.state is LockState.HELD_STALE
        assert result.age >= 3600

    def test_reclaim_stale_lock(self, tmp_path):
        path = tmp_path / "job.lock"
        make_marker(path, age=4000)
        lock = JobLock("job", path, stale_after=3600)
        lock.try_acquire()

        assert lock.reclaim() is True
        assert lock.owned
        assert lock.read() == os.getpid()
        assert lock.age() < 60

    def test_reclaim_refuses_fresh_lock(self, tmp_path):
        """A marker refreshed by another process after we saw it stale is left alone."""
        path = tmp_path / "job.lock"
        make_marker(path, age=10)
        lock = JobLock("job", path, stale_after=3600)

        assert lock.reclaim() is False
        assert not lock.owned
        assert lock.read() == 999999

    def test_reclaim_race_only_one_winner(self, tmp_path, monkeypatch):
        """Two sweeps that both saw the marker stale: the slower one backs off."""
        path = tmp_path / "job.lock"
        make_marker(path, age=4000)
        first = JobLock("job", path, stale_after=3600)
        second = JobLock("job", path, stale_after=3600)
        assert first.try_acquire().state is LockState.HELD_STALE
        assert second.try_acquire().state is LockState.HELD_STALE

        assert first.reclaim() is True
        fresh_mtime = path.stat().st_mtime
        # The second sweep still acts on the age it observed before
        monkeypatch.setattr(second, "age", lambda: 4000.0)

        assert second.reclaim() is False
        assert first.owned
        assert not second.owned
        assert path.stat().st_mtime == fresh_mtime
        assert [p.name for p in tmp_path.iterdir()] == ["job.lock"]

    def test_reclaim_marker_already_moved(self, tmp_path, monkeypatch):
        path = tmp_path / "job.lock"
        lock = JobLock("job", path, stale_after=3600)
        monkeypatch.setattr(lock, "age", lambda: 4000.0)

        assert lock.reclaim() is False
        assert not lock.owned
        assert list(tmp_path.iterdir()) == []

    def test_release_removes_marker(self, tmp_path):
        lock = JobLock("job", tmp_path / "job.lock")
        lock.try_acquire()

        lock.release()

        assert not lock.path.exists()
        assert not lock.owned

    def test_release_without_ownership_keeps_marker(self, tmp_path):
        path = tmp_path / "job.lock"
        make_marker(path, age=10)
        lock = JobLock("job", path)
        lock.try_acquire()

        lock.release()

        assert path.exists()

    def test_release_keeps_marker_taken_over_by_other_process(self, tmp_path):
        path = tmp_path / "job.lock"
        lock = JobLock("job", path)
        lock.try_acquire()
        path.write_text("999999")

        lock.release()

        assert path.exists()

    def test_context_manager_releases_on_error(self, tmp_path):
        lock = JobLock("job", tmp_path / "job.lock")
        lock.try_acquire()

        with pytest.raises(RuntimeError):
            with lock:
                raise RuntimeError("boom")

        assert not lock.path.exists()

    def test_context_manager_requires_ownership(self, tmp_path):
        lock = JobLock("job", tmp_path / "job.lock")

        with pytest.raises(PersistenceError, match="not held"):
            with lock:
                pass


class TestLockManager:
    """Tests for the lock directory manager."""

    def test_ensure_dir(self, tmp_path):
        manager = LockManager(tmp_path / "cron-locks")

        manager.ensure_dir()

        assert (tmp_path / "cron-locks").is_dir()

    def test_path_for_job(self, tmp_path):
        manager = LockManager(tmp_path)

        assert manager.path_for("nightly-report") == tmp_path / "nightly-report.lock"

    def test_path_for_sanitizes_unsafe_characters(self, tmp_path):
        manager = LockManager(tmp_path)

        path = manager.path_for("../etc/passwd")

        assert path.parent == tmp_path
        assert path.name.startswith(".._etc_passwd-")
        assert path.name.endswith(".lock")

    def test_path_for_keeps_sanitized_ids_apart(self, tmp_path):
        manager = LockManager(tmp_path)

        assert manager.path_for("a/b") != manager.path_for("a_b")
        assert manager.path_for("a_b") == tmp_path / "a_b.lock"
        assert manager.path_for("a/b") == manager.path_for("a/b")

    def test_lock_for_uses_threshold(self, tmp_path):
        manager = LockManager(tmp_path, stale_after=120)

        lock = manager.lock_for("job")

        assert lock.job_id == "job"
        assert lock.stale_after == 120

    def test_held_locks(self, tmp_path):
        manager = LockManager(tmp_path)
        make_marker(tmp_path / "a.lock", age=30)
        make_marker(tmp_path / "b.lock", age=5000)
        (tmp_path / "other.txt").write_text("x")

        held = manager.held_locks()

        assert set(held) == {"a", "b"}
        assert held["b"] >= 5000 - 5

    def test_held_locks_missing_dir(self, tmp_path):
        assert LockManager(tmp_path / "missing").held_locks() == {}


class TestStateLock:
    """Tests for the registry/run-state lock."""

    def test_acquire_and_release(self, tmp_path):
        path = tmp_path / "cron-state.lock"

        with StateLock(path):
            assert path.exists()

        assert not path.exists()

    def test_times_out_when_held(self, tmp_path):
        path = tmp_path / "cron-state.lock"
        make_marker(path, age=0)

        with pytest.raises(LockTimeoutError):
            StateLock(path, timeout=0.1, poll_interval=0.01).acquire()

    def test_removes_stale_marker(self, tmp_path):
        path = tmp_path / "cron-state.lock"
        make_marker(path, age=1000)

        lock = StateLock(path, timeout=0.1, stale_after=300)
        lock.acquire()

        assert lock.is_owned_by_current_process()
        lock.release()
