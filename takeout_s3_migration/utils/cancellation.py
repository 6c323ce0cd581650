"""
Cancellation contexts shared by the scheduler, the upload driver and the retry policy.

A context is cancelled explicitly with ``cancel()`` or implicitly when its
deadline passes. Cancelling a context cancels every context derived from it,
so an interrupt on the root reaches each archive, each file and each pending
backoff sleep.
"""
import threading
import time
from typing import Optional, Set

from takeout_s3_migration.exceptions import OperationCancelledError

DEADLINE_EXCEEDED = "deadline exceeded"
CANCELLED = "cancelled"


class CancellationContext:
    """Cancellable scope with an optional deadline and a parent."""

    def __init__(self, parent: Optional['CancellationContext'] = None,
                 timeout: Optional[float] = None):
        """
        Initialize the context.

        Args:
            parent: Context whose cancellation also cancels this one
            timeout: Seconds from now until the context expires (None = no deadline)
        """
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._children: Set['CancellationContext'] = set()
        self._reason: Optional[str] = None
        self._parent = parent

        deadline = time.monotonic() + timeout if timeout is not None else None
        if parent is not None and parent._deadline is not None:
            deadline = parent._deadline if deadline is None else min(deadline, parent._deadline)
        self._deadline = deadline

        if parent is not None:
            parent._attach(self)

    def _attach(self, child: 'CancellationContext') -> None:
        with self._lock:
            reason = self._reason
            if reason is None:
                self._children.add(child)
        if reason is not None:
            child.cancel(reason)

    def _detach(self, child: 'CancellationContext') -> None:
        with self._lock:
            self._children.discard(child)

    def child(self, timeout: Optional[float] = None) -> 'CancellationContext':
        """Derive a context that is cancelled together with this one."""
        return CancellationContext(parent=self, timeout=timeout)

    def cancel(self, reason: str = CANCELLED) -> None:
        """Cancel this context and everything derived from it."""
        with self._lock:
            if self._reason is not None:
                return
            self._reason = reason
            children = list(self._children)
            self._children.clear()
        self._event.set()
        for child in children:
            child.cancel(reason)

    def close(self) -> None:
        """Cancel the context and release it from its parent."""
        self.cancel()
        if self._parent is not None:
            self._parent._detach(self)

    def _check_deadline(self) -> None:
        if self._deadline is not None and self._reason is None and time.monotonic() >= self._deadline:
            self.cancel(DEADLINE_EXCEEDED)

    @property
    def cancelled(self) -> bool:
        self._check_deadline()
        return self._event.is_set()

    @property
    def reason(self) -> Optional[str]:
        self._check_deadline()
        return self._reason

    def remaining(self) -> Optional[float]:
        """Seconds until the deadline, or None when there is no deadline."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    def wait(self, timeout: float) -> bool:
        """
        Sleep for up to ``timeout`` seconds, waking early on cancellation.

        Returns:
            True if the context was cancelled (or expired) before the time elapsed
        """
        remaining = self.remaining()
        if remaining is not None and remaining < timeout:
            self._event.wait(remaining)
            return self.cancelled
        if self._event.wait(timeout):
            return True
        return self.cancelled

    def raise_if_cancelled(self, operation: str) -> None:
        """Raise OperationCancelledError if the context is no longer active."""
        if self.cancelled:
            raise OperationCancelledError(f"{operation} canceled: {self._reason}")

    def __enter__(self) -> 'CancellationContext':
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


def background() -> CancellationContext:
    """Root context that is never cancelled unless told to."""
    return CancellationContext()
