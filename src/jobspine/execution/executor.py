"""Job executor: run one task under a deadline and report what happened.

ARCHITECTURE
────────────
::

    JobExecutor(max_threads=8)
      └── await .run(task, ctx, timeout) -> ExecutionOutcome
             │
             ├── async execute()  → asyncio task on the running loop
             ├── sync execute()   → executor-owned ThreadPoolExecutor
             │                      (an awaitable it returns is awaited on the loop)
             │
             └── asyncio.wait({inner}, timeout)
                    ├── done, returned  → SUCCESS (result made JSON-safe)
                    ├── done, raised    → FAILED  (message + error_details)
                    └── not done        → TIMEOUT: trip ctx.cancel_token,
                                          cancel inner, stop waiting

``run`` never raises for task failures; the scheduler only ever sees an
``ExecutionOutcome``. The one exception is cancellation of ``run`` itself
(scheduler shutdown): the token is tripped, the inner work is cancelled
and ``CancelledError`` propagates to the caller.

A timed-out sync task keeps its worker thread until it returns; it is
expected to notice the tripped token. That thread no longer counts
against capacity: the pool holding it is retired and later sync tasks get
a fresh one.

Tags:
    jobspine, execution, executor, timeout, thread-pool
"""

from __future__ import annotations

import asyncio
import inspect
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any

from pydantic_core import to_jsonable_python

from jobspine.core.errors import (
    TaskCancelledError,
    TaskExecutionError,
    TaskTimeoutError,
    error_details,
)
from jobspine.core.logging import get_logger
from jobspine.execution.context import JobContext
from jobspine.execution.registry import Task
from jobspine.execution.timeout import DeadlineContext
from jobspine.scheduling.models import ExecutionOutcome, JobStatus

logger = get_logger(__name__)


def _is_async(task: Task) -> bool:
    return inspect.iscoroutinefunction(task.execute)


def _drain(future: asyncio.Future[Any]) -> None:
    # Abandoned work may finish later; mark its exception retrieved
    if not future.cancelled():
        future.exception()


class JobExecutor:
    """Runs tasks with a timeout and converts every result into an outcome.

    Example:
        >>> executor = JobExecutor(max_threads=4)
        >>> outcome = await executor.run(task, ctx, timeout=300)
        >>> outcome.status
        <JobStatus.SUCCESS: 'success'>
    """

    def __init__(self, max_threads: int = 8) -> None:
        self.max_threads = max_threads
        self._pool: ThreadPoolExecutor | None = None
        self.retired_pools = 0

    @property
    def pool(self) -> ThreadPoolExecutor:
        if self._pool is None:
            self._pool = ThreadPoolExecutor(
                max_workers=self.max_threads, thread_name_prefix="jobspine-task"
            )
        return self._pool

    async def run(self, task: Task, ctx: JobContext, timeout: float) -> ExecutionOutcome:
        """Execute *task* once and report the outcome.

        Args:
            task: Built task
            ctx: Attempt context; its deadline is set here
            timeout: Seconds before the attempt is abandoned as TIMEOUT

        Raises:
            asyncio.CancelledError: Only if this coroutine itself is cancelled.
        """
        ctx.deadline = DeadlineContext.start(timeout, operation=ctx.job_name)
        started = time.monotonic()

        is_async = _is_async(task)
        inner: asyncio.Future[Any] = asyncio.ensure_future(
            task.execute(ctx) if is_async else self._call_in_thread(task, ctx)
        )

        try:
            done, _ = await asyncio.wait({inner}, timeout=timeout)
        except asyncio.CancelledError:
            ctx.cancel_token.cancel("shutdown")
            inner.cancel()
            inner.add_done_callback(_drain)
            raise

        elapsed = time.monotonic() - started

        if not done:
            ctx.cancel_token.cancel("timeout")
            inner.cancel()
            inner.add_done_callback(_drain)
            if not is_async:
                self._retire_pool()
            error = TaskTimeoutError(timeout, elapsed=elapsed).with_context(
                job_name=ctx.job_name,
                execution_id=ctx.execution_id,
                retry_attempt=ctx.retry_attempt,
            )
            logger.warning(
                "task_timed_out",
                job_name=ctx.job_name,
                execution_id=ctx.execution_id,
                timeout=timeout,
            )
            return ExecutionOutcome(
                status=JobStatus.TIMEOUT,
                duration=elapsed,
                error=error.message,
                error_details=error.to_dict(),
            )

        if inner.cancelled():
            error = TaskCancelledError("Task cancelled itself").with_context(
                job_name=ctx.job_name, execution_id=ctx.execution_id
            )
            return ExecutionOutcome(
                status=JobStatus.CANCELLED,
                duration=elapsed,
                error=error.message,
                error_details=error.to_dict(),
            )

        exc = inner.exception()
        if exc is not None:
            if not isinstance(exc, Exception):
                raise exc
            if isinstance(exc, TaskCancelledError):
                status = JobStatus.CANCELLED
            else:
                status = JobStatus.FAILED
            details = error_details(exc)
            details.setdefault("context", {}).update(
                job_name=ctx.job_name,
                execution_id=ctx.execution_id,
                retry_attempt=ctx.retry_attempt,
            )
            message = str(exc) or type(exc).__name__
            logger.warning(
                "task_failed",
                job_name=ctx.job_name,
                execution_id=ctx.execution_id,
                error_type=type(exc).__name__,
                error=message,
            )
            return ExecutionOutcome(
                status=status,
                duration=elapsed,
                error=message,
                error_details=details,
            )

        try:
            result = to_jsonable_python(inner.result(), fallback=str)
        except (TypeError, ValueError) as e:
            error = TaskExecutionError(f"Task result is not serializable: {e}", cause=e)
            return ExecutionOutcome(
                status=JobStatus.FAILED,
                duration=elapsed,
                error=error.message,
                error_details=error.to_dict(),
            )
        return ExecutionOutcome(status=JobStatus.SUCCESS, duration=elapsed, result=result)

    async def _call_in_thread(self, task: Task, ctx: JobContext) -> Any:
        loop = asyncio.get_running_loop()
        result = await loop.run_in_executor(self.pool, task.execute, ctx)
        if inspect.isawaitable(result):
            result = await result
        return result

    def _retire_pool(self) -> None:
        # Running work finishes on the old pool; new work goes elsewhere
        if self._pool is not None:
            self._pool.shutdown(wait=False)
            self._pool = None
            self.retired_pools += 1
            logger.info("thread_pool_retired", retired_pools=self.retired_pools)

    def shutdown(self, wait: bool = False) -> None:
        """Shut down the thread pool; queued sync tasks are dropped."""
        if self._pool is not None:
            self._pool.shutdown(wait=wait, cancel_futures=True)
            self._pool = None
