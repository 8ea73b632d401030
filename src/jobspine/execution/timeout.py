"""Deadlines and cooperative cancellation for task attempts.

The executor enforces a job's timeout from the outside by racing the task
against its deadline. Tasks can also look inward: the ``DeadlineContext``
on their ``JobContext`` tells them how much time is left, and the
``CancellationToken`` tells them the executor has given up on them
(timeout) or the scheduler is shutting down.

Async tasks are interrupted at their next ``await``. Sync tasks run on a
worker thread that Python cannot interrupt, so long-running sync tasks
should call ``ctx.raise_if_cancelled()`` between units of work.

Example:
    >>> token = CancellationToken()
    >>> deadline = DeadlineContext.start(30.0, operation="nightly-report")
    >>> for chunk in chunks:
    ...     token.raise_if_cancelled()
    ...     deadline.check()
    ...     process(chunk)

Tags:
    jobspine, execution, timeout, deadline, cancellation
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field


class TimeoutExpired(TimeoutError):
    """A task attempt ran past its job's ``timeout``.

    The executor records these attempts with status ``timeout``.
    """

    def __init__(self, timeout: float, elapsed: float | None = None, operation: str = "task"):
        self.timeout = timeout
        self.elapsed = elapsed
        self.operation = operation
        detail = f", ran {elapsed:.2f}s" if elapsed is not None else ""
        super().__init__(f"{operation} exceeded its {timeout}s timeout{detail}")


@dataclass
class DeadlineContext:
    """Monotonic deadline for one attempt, exposed to tasks as ``ctx.deadline``."""

    deadline: float
    timeout_seconds: float
    operation: str = "task"
    start_time: float = field(default_factory=time.monotonic)

    @classmethod
    def start(cls, seconds: float, operation: str = "task") -> DeadlineContext:
        if seconds <= 0:
            raise ValueError(f"timeout must be > 0, got {seconds}")
        began = time.monotonic()
        return cls(began + seconds, seconds, operation, began)

    @property
    def elapsed(self) -> float:
        return time.monotonic() - self.start_time

    def remaining(self) -> float:
        """Seconds left; goes negative after expiry."""
        return self.deadline - time.monotonic()

    def is_expired(self) -> bool:
        return self.remaining() <= 0

    def check(self, op_name: str | None = None) -> None:
        if self.is_expired():
            raise TimeoutExpired(self.timeout_seconds, self.elapsed, op_name or self.operation)


class CancellationToken:
    """Thread-safe, one-shot cancellation signal.

    Set by the executor on timeout and by the scheduler on shutdown; read
    by tasks from any thread.
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self._reason: str | None = None

    def cancel(self, reason: str = "cancelled") -> None:
        # First reason wins
        if not self._event.is_set():
            self._reason = reason
            self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    def wait(self, timeout: float | None = None) -> bool:
        """Block the calling thread until cancelled or *timeout* elapses."""
        return self._event.wait(timeout)

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            from jobspine.core.errors import TaskCancelledError

            raise TaskCancelledError(f"Task cancelled: {self._reason}")

    def __repr__(self) -> str:
        return f"CancellationToken(cancelled={self.is_cancelled}, reason={self._reason!r})"


__all__ = [
    "TimeoutExpired",
    "DeadlineContext",
    "CancellationToken",
]
