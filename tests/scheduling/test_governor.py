"""Tests for ConcurrencyGovernor."""

import threading

from jobspine.scheduling.governor import ConcurrencyGovernor


class TestNonConcurrent:
    def test_second_acquire_rejected(self):
        governor = ConcurrencyGovernor()
        assert governor.try_acquire("report", allow_concurrent=False) is True
        assert governor.try_acquire("report", allow_concurrent=False) is False
        assert governor.running("report") == 1

    def test_release_frees_slot(self):
        governor = ConcurrencyGovernor()
        governor.try_acquire("report", allow_concurrent=False)
        governor.release("report")
        assert governor.running("report") == 0
        assert governor.try_acquire("report", allow_concurrent=False) is True

    def test_max_concurrent_ignored_when_not_concurrent(self):
        governor = ConcurrencyGovernor()
        assert governor.try_acquire("report", allow_concurrent=False, max_concurrent=5) is True
        assert governor.try_acquire("report", allow_concurrent=False, max_concurrent=5) is False

    def test_jobs_are_independent(self):
        governor = ConcurrencyGovernor()
        assert governor.try_acquire("a", allow_concurrent=False) is True
        assert governor.try_acquire("b", allow_concurrent=False) is True


class TestConcurrent:
    def test_bounded(self):
        governor = ConcurrencyGovernor()
        results = [governor.try_acquire("sync", True, 2) for _ in range(3)]
        assert results == [True, True, False]
        assert governor.running("sync") == 2

    def test_unbounded(self):
        governor = ConcurrencyGovernor()
        assert all(governor.try_acquire("sync", True, None) for _ in range(50))
        assert governor.running("sync") == 50


class TestBookkeeping:
    def test_release_unknown_is_noop(self):
        governor = ConcurrencyGovernor()
        governor.release("never-acquired")
        assert governor.running("never-acquired") == 0

    def test_snapshot_and_total(self):
        governor = ConcurrencyGovernor()
        governor.try_acquire("a", True)
        governor.try_acquire("a", True)
        governor.try_acquire("b", False)
        assert governor.snapshot() == {"a": 2, "b": 1}
        assert governor.total_running == 3

        governor.clear()
        assert governor.snapshot() == {}

    def test_threads_never_exceed_limit(self):
        governor = ConcurrencyGovernor()
        acquired: list[bool] = []
        lock = threading.Lock()
        barrier = threading.Barrier(16)

        def worker():
            barrier.wait()
            ok = governor.try_acquire("shared", True, 3)
            with lock:
                acquired.append(ok)

        threads = [threading.Thread(target=worker) for _ in range(16)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert acquired.count(True) == 3
        assert governor.running("shared") == 3
