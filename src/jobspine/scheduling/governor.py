"""Concurrency governor: per-job in-flight accounting.

ARCHITECTURE
────────────
::

    ConcurrencyGovernor()
      ├── .try_acquire(name, allow_concurrent, max_concurrent)  ─ admit or reject
      ├── .release(name)                                       ─ one attempt finished
      ├── .running(name)                                       ─ current count
      └── .snapshot()                                          ─ copy of all counts

    Admission rules:
      allow_concurrent=False             → admit iff running == 0
      allow_concurrent=True, max=N       → admit iff running < N
      allow_concurrent=True, max=None    → always admit

State is process-local. The lock guards an O(1) check-and-increment and is
never held across I/O. Entries are dropped when their count returns to
zero, so the map only holds jobs that are running right now.

Tags:
    jobspine, scheduling, concurrency, governor
"""

from __future__ import annotations

import threading

from jobspine.core.logging import get_logger

logger = get_logger(__name__)


class ConcurrencyGovernor:
    """Tracks running attempts per job name and enforces per-job limits."""

    def __init__(self) -> None:
        self._running: dict[str, int] = {}
        self._lock = threading.Lock()

    def try_acquire(
        self,
        name: str,
        allow_concurrent: bool,
        max_concurrent: int | None = None,
    ) -> bool:
        """Atomically check the job's limit and take a slot if admitted.

        Returns:
            True if the attempt may start, False if it must be skipped.
        """
        with self._lock:
            current = self._running.get(name, 0)
            if not allow_concurrent:
                admitted = current == 0
            elif max_concurrent is not None:
                admitted = current < max_concurrent
            else:
                admitted = True
            if admitted:
                self._running[name] = current + 1
        if not admitted:
            logger.debug(
                "concurrency_slot_rejected",
                job_name=name,
                running=current,
                allow_concurrent=allow_concurrent,
                max_concurrent=max_concurrent,
            )
        return admitted

    def release(self, name: str) -> None:
        """Give back one slot. Releasing a name with no slots is a no-op."""
        with self._lock:
            current = self._running.get(name, 0)
            if current <= 1:
                self._running.pop(name, None)
            else:
                self._running[name] = current - 1

    def running(self, name: str) -> int:
        with self._lock:
            return self._running.get(name, 0)

    def snapshot(self) -> dict[str, int]:
        with self._lock:
            return dict(self._running)

    @property
    def total_running(self) -> int:
        with self._lock:
            return sum(self._running.values())

    def clear(self) -> None:
        """Forget all counts (scheduler shutdown)."""
        with self._lock:
            self._running.clear()
