"""
Tests for the bounded worker pool.
"""
import threading
import time

import pytest

from takeout_s3_migration.utils.worker_pool import WorkerPool


class TestWorkerPool:
    """Tests for WorkerPool."""

    def test_invalid_size(self):
        """Test that the pool needs at least one slot."""
        with pytest.raises(ValueError):
            WorkerPool(0)

    def test_runs_all_tasks(self):
        """Test that wait() returns after every task finished."""
        results = []
        lock = threading.Lock()

        def task(value):
            with lock:
                results.append(value)

        with WorkerPool(3) as pool:
            for i in range(20):
                pool.submit(lambda i=i: task(i))
            pool.wait()
            assert sorted(results) == list(range(20))

    def test_concurrency_bound(self):
        """Test that no more than size tasks run at the same time."""
        size = 3
        active = 0
        peak = 0
        lock = threading.Lock()

        def task():
            nonlocal active, peak
            with lock:
                active += 1
                peak = max(peak, active)
            time.sleep(0.02)
            with lock:
                active -= 1

        with WorkerPool(size) as pool:
            for _ in range(15):
                pool.submit(task)
            pool.wait()

        assert 1 <= peak <= size

    def test_slot_released_when_task_raises(self):
        """Test that failing tasks do not leak slots."""
        done = []

        def failing():
            raise RuntimeError("boom")

        with WorkerPool(2) as pool:
            for _ in range(5):
                pool.submit(failing)
            pool.wait()
            # Would block forever if the failing tasks had kept their slots
            for i in range(4):
                pool.submit(lambda i=i: done.append(i))
            pool.wait()

        assert sorted(done) == [0, 1, 2, 3]

    def test_wait_without_tasks(self):
        """Test that wait() on an idle pool returns immediately."""
        pool = WorkerPool(1)
        pool.wait()
        pool.shutdown()
