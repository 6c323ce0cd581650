"""
Bounded-concurrency worker pool for I/O-bound upload tasks.

Submission blocks while every slot is busy, which gives callers natural
backpressure instead of an unbounded queue of pending work. ``wait()`` is the
join barrier for everything submitted so far.
"""
import logging
import threading
from concurrent.futures import ThreadPoolExecutor, wait as wait_futures
from typing import Callable, List

logger = logging.getLogger(__name__)


class WorkerPool:
    """Runs at most ``size`` tasks concurrently."""

    def __init__(self, size: int, name: str = "worker"):
        """
        Initialize the worker pool.

        Args:
            size: Maximum number of tasks running at the same time
            name: Thread name prefix (useful in logs)
        """
        if size < 1:
            raise ValueError("worker pool size must be at least 1")
        self.size = size
        self._slots = threading.BoundedSemaphore(size)
        self._executor = ThreadPoolExecutor(max_workers=size, thread_name_prefix=name)
        self._futures: List = []
        self._futures_lock = threading.Lock()

    def submit(self, task: Callable[[], None]) -> None:
        """
        Run ``task`` on the pool, blocking until a slot is free.

        Tasks have no return value. An exception raised by a task is logged
        and does not affect the pool.
        """
        self._slots.acquire()
        try:
            future = self._executor.submit(self._run, task)
        except BaseException:
            self._slots.release()
            raise
        with self._futures_lock:
            self._futures.append(future)

    def _run(self, task: Callable[[], None]) -> None:
        try:
            task()
        except Exception as e:
            logger.error(f"Worker task raised an unhandled exception: {e}", exc_info=True)
        finally:
            self._slots.release()

    def wait(self) -> None:
        """Block until every submitted task has finished."""
        with self._futures_lock:
            futures = list(self._futures)
            self._futures.clear()
        if futures:
            wait_futures(futures)

    def shutdown(self) -> None:
        """Wait for outstanding tasks and release the worker threads."""
        self.wait()
        self._executor.shutdown(wait=True)

    def __enter__(self) -> 'WorkerPool':
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.shutdown()
