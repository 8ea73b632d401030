"""Job scheduler - polls the store and dispatches due jobs.

Manifesto:
    The JobScheduler is the only component with a loop. It asks the store
    which jobs are due, claims each one's next fire time before doing
    anything else, asks the governor for a slot, builds the task and hands
    it to the executor as an independent asyncio task. When an attempt
    ends it releases the slot, consults the retry policy and writes the
    audit trail. A failing job never affects another job or the loop.

Tags:
    jobspine, scheduling, orchestrator, poll-loop, asyncio

Doc-Types:
    api-reference, architecture-diagram


┌──────────────────────────────────────────────────────────────────────────────┐
│  JOB SCHEDULER                                                                │
│                                                                               │
│   _run_loop()  every poll_interval_seconds                                    │
│      └── tick(now)                                                            │
│            1. store.due_jobs(now)                                             │
│            2. for each due job:                                               │
│               ├── CronTrigger.next() → store.update_schedule()   (claim)     │
│               │     invalid cron → disable job, log, continue                 │
│               ├── governor.try_acquire()   rejected → skip (no record)        │
│               ├── registry.build()         failed → terminal FAILED record   │
│               └── create_task(_run_attempt)                                   │
│                                                                               │
│   _run_attempt()                                                              │
│      ├── async with worker semaphore (max_workers)                            │
│      ├── store.start_execution()           → RUNNING record                   │
│      ├── executor.run(task, ctx, timeout)  → ExecutionOutcome                 │
│      ├── governor.release()                                                   │
│      ├── retry_policy.decide()                                                │
│      ├── store.complete_execution()                                           │
│      └── Retry → _retry_later(after)  |  Terminal → store.record_last_run()   │
│                                                                               │
│   stop(grace)                                                                 │
│      stop loop → drop pending retries → wait grace → cancel the rest →        │
│      mark their records CANCELLED → release slots                             │
│                                                                               │
│  All store calls go through asyncio.to_thread.                                │
└──────────────────────────────────────────────────────────────────────────────┘
"""

from __future__ import annotations

import asyncio
import contextlib
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from jobspine.core.errors import (
    ConfigError,
    InvalidCronExpressionError,
    JobNotFoundError,
    PersistenceError,
    TaskCancelledError,
)
from jobspine.core.logging import LogContext, get_logger
from jobspine.core.settings import JobsSettings, get_settings
from jobspine.execution.context import JobContext
from jobspine.execution.executor import JobExecutor
from jobspine.execution.registry import Task, TaskRegistry
from jobspine.execution.retry import Retry, RetryPolicy
from jobspine.scheduling.cron import CronTrigger
from jobspine.scheduling.governor import ConcurrencyGovernor
from jobspine.scheduling.models import ExecutionOutcome, JobDefinition, JobStatus
from jobspine.scheduling.store import JobStore

logger = get_logger(__name__)


def utcnow() -> datetime:
    return datetime.now(UTC)


class Admission(str, Enum):
    """Result of trying to start an attempt."""

    DISPATCHED = "dispatched"
    REJECTED = "rejected"  # governor said no
    INVALID = "invalid"  # task could not be built


@dataclass
class SchedulerStats:
    """Statistics for the scheduler."""

    tick_count: int = 0
    dispatched: int = 0
    skipped: int = 0
    failed: int = 0
    retries_scheduled: int = 0
    cancelled: int = 0
    last_tick: datetime | None = None
    last_error: str | None = None


@dataclass
class SchedulerHealth:
    """Health status for the scheduler."""

    healthy: bool
    running: bool
    jobs_enabled: int = 0
    in_flight: int = 0
    pending_retries: int = 0
    running_by_job: dict[str, int] = field(default_factory=dict)
    last_tick: datetime | None = None
    stats: SchedulerStats = field(default_factory=SchedulerStats)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "healthy": self.healthy,
            "running": self.running,
            "jobs_enabled": self.jobs_enabled,
            "in_flight": self.in_flight,
            "pending_retries": self.pending_retries,
            "running_by_job": dict(self.running_by_job),
            "last_tick": self.last_tick.isoformat() if self.last_tick else None,
            "stats": {
                "tick_count": self.stats.tick_count,
                "dispatched": self.stats.dispatched,
                "skipped": self.stats.skipped,
                "failed": self.stats.failed,
                "retries_scheduled": self.stats.retries_scheduled,
                "cancelled": self.stats.cancelled,
                "last_error": self.stats.last_error,
            },
        }


@dataclass
class _Attempt:
    """Book-keeping for one in-flight attempt."""

    job: JobDefinition
    execution_id: str
    attempt: int
    ctx: JobContext
    task: asyncio.Task[None] | None = None
    started_at: datetime | None = None
    finalized: bool = False


@dataclass
class _PendingRetry:
    job: JobDefinition
    attempt: int
    last_status: JobStatus


class JobScheduler:
    """Cron-driven dispatcher with per-job concurrency limits and retries.

    Example:
        >>> store = SqlJobStore(engine)
        >>> registry = get_default_registry()
        >>> scheduler = JobScheduler(store, registry)
        >>> await scheduler.start()
        >>> ...
        >>> await scheduler.stop()

    Tests drive the scheduler without the loop by calling ``tick(now)``
    directly and ``wait_idle()`` for attempts and retries to settle.
    """

    def __init__(
        self,
        store: JobStore,
        registry: TaskRegistry,
        *,
        settings: JobsSettings | None = None,
        executor: JobExecutor | None = None,
        retry_policy: RetryPolicy | None = None,
        governor: ConcurrencyGovernor | None = None,
    ) -> None:
        self.store = store
        self.registry = registry
        self.settings = settings or get_settings()
        self.poll_interval = self.settings.poll_interval_seconds
        self.executor = executor or JobExecutor(max_threads=self.settings.max_workers)
        self.retry_policy = retry_policy or RetryPolicy()
        self.governor = governor or ConcurrencyGovernor()

        self._workers = asyncio.Semaphore(self.settings.max_workers)
        self._attempts: dict[str, _Attempt] = {}
        self._attempt_tasks: set[asyncio.Task[None]] = set()
        self._retry_tasks: dict[asyncio.Task[None], _PendingRetry] = {}

        self._stats = SchedulerStats()
        self._running = False
        self._stopping = False
        self._stop_event: asyncio.Event | None = None
        self._loop_task: asyncio.Task[None] | None = None

    # === Lifecycle ===

    async def start(self) -> None:
        """Schedule enabled jobs that have no ``next_run_at`` and start polling."""
        if self._running:
            logger.warning("scheduler_already_running")
            return

        self._stopping = False
        self._stop_event = asyncio.Event()
        primed = await asyncio.to_thread(self.store.prime_schedules, utcnow())
        self._loop_task = asyncio.create_task(self._run_loop(), name="jobspine-scheduler")
        self._running = True
        logger.info(
            "scheduler_started",
            poll_interval=self.poll_interval,
            max_workers=self.settings.max_workers,
            primed_jobs=primed,
        )

    async def stop(self, grace: float | None = None) -> None:
        """Stop gracefully.

        New dispatch stops immediately and pending retries are dropped.
        Running attempts get *grace* seconds (default
        ``shutdown_grace_seconds``) to finish; any still running are
        cancelled and recorded as CANCELLED.
        """
        grace = self.settings.shutdown_grace_seconds if grace is None else grace
        self._stopping = True
        if self._stop_event is not None:
            self._stop_event.set()

        if self._loop_task is not None:
            await self._loop_task
            self._loop_task = None

        logger.info("scheduler_stopping", in_flight=len(self._attempt_tasks), grace=grace)
        await self._drop_pending_retries()

        pending: set[asyncio.Task[None]] = set()
        if self._attempt_tasks:
            _, pending = await asyncio.wait(set(self._attempt_tasks), timeout=grace)

        if pending:
            stranded = [a for a in self._attempts.values() if a.task in pending]
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
            for attempt in stranded:
                await self._finalize_cancelled(attempt)

        self._attempts.clear()
        self.governor.clear()
        self.executor.shutdown(wait=False)
        self._running = False
        logger.info("scheduler_stopped", cancelled=self._stats.cancelled)

    @property
    def is_running(self) -> bool:
        return self._running

    async def _run_loop(self) -> None:
        assert self._stop_event is not None
        while not self._stopping:
            await self.tick()
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.poll_interval)

    # === Tick Processing ===

    async def tick(self, now: datetime | None = None) -> int:
        """Evaluate and dispatch all due jobs once.

        Returns:
            Number of attempts dispatched.
        """
        now = now or utcnow()
        self._stats.tick_count += 1
        self._stats.last_tick = now
        dispatched = 0

        try:
            due = await asyncio.to_thread(self.store.due_jobs, now)
        except PersistenceError as e:
            self._stats.last_error = str(e)
            logger.error("tick_skipped", reason="persistence_error", error=str(e))
            return 0
        except Exception as e:
            self._stats.last_error = str(e)
            logger.exception("tick_failed", error=str(e))
            return 0
        if not due:
            logger.debug("no_jobs_due")
            return 0
        if self.settings.max_jobs_per_tick is not None:
            due = due[: self.settings.max_jobs_per_tick]
        logger.debug("jobs_due", count=len(due))

        for job in due:
            if self._stopping:
                break
            # One job failing must not hold back the rest of the tick
            try:
                if await self._process_due_job(job, now) is Admission.DISPATCHED:
                    dispatched += 1
            except PersistenceError as e:
                self._stats.last_error = str(e)
                logger.error(
                    "job_tick_failed",
                    job_name=job.name,
                    reason="persistence_error",
                    error=str(e),
                )
            except Exception as e:
                self._stats.last_error = str(e)
                logger.exception("job_tick_failed", job_name=job.name, error=str(e))
        return dispatched

    async def _process_due_job(self, job: JobDefinition, now: datetime) -> Admission | None:
        try:
            next_run_at = CronTrigger.next(job.cron_expression, now)
        except InvalidCronExpressionError as e:
            await asyncio.to_thread(self.store.set_enabled, job.id, False)
            self._stats.failed += 1
            logger.error(
                "job_disabled_invalid_cron",
                job_name=job.name,
                cron_expression=job.cron_expression,
                error=e.to_dict(),
            )
            return None

        # Claim before dispatch so a slow attempt never makes the job due twice
        await asyncio.to_thread(self.store.update_schedule, job.id, next_run_at)
        job.next_run_at = next_run_at
        return await self._admit(job, attempt=0, trigger="schedule")

    async def _admit(self, job: JobDefinition, attempt: int, trigger: str) -> Admission:
        if not self.governor.try_acquire(job.name, job.allow_concurrent, job.max_concurrent):
            self._stats.skipped += 1
            logger.debug(
                "job_skipped_concurrency_limit",
                job_name=job.name,
                running=self.governor.running(job.name),
                trigger=trigger,
            )
            return Admission.REJECTED

        try:
            task = self.registry.build(job.task_type, job.payload)
        except ConfigError as e:
            self.governor.release(job.name)
            await self._record_build_failure(job, attempt, e)
            return Admission.INVALID

        self._launch(job, task, attempt, trigger)
        return Admission.DISPATCHED

    async def _record_build_failure(self, job: JobDefinition, attempt: int, error: ConfigError) -> None:
        self._stats.failed += 1
        error.with_context(job_name=job.name, job_id=job.id, retry_attempt=attempt)
        now = utcnow()
        outcome = ExecutionOutcome(
            status=JobStatus.FAILED,
            error=error.message,
            error_details=error.to_dict(),
        )
        execution_id = str(uuid.uuid4())
        logger.error(
            "task_build_failed",
            job_name=job.name,
            task_type=job.task_type,
            execution_id=execution_id,
            error=error.message,
        )
        await asyncio.to_thread(
            self.store.record_execution, job, execution_id, attempt, outcome, now, now
        )
        await asyncio.to_thread(self.store.record_last_run, job.id, now, JobStatus.FAILED)

    def _launch(self, job: JobDefinition, task: Task, attempt: int, trigger: str) -> _Attempt:
        execution_id = str(uuid.uuid4())
        ctx = JobContext(
            execution_id=execution_id,
            job_id=job.id,
            job_name=job.name,
            task_type=job.task_type,
            retry_attempt=attempt,
            store=self.store,
        )
        entry = _Attempt(job=job, execution_id=execution_id, attempt=attempt, ctx=ctx)
        entry.task = asyncio.create_task(
            self._run_attempt(entry, task), name=f"jobspine-{job.name}-{execution_id[:8]}"
        )
        self._attempts[execution_id] = entry
        self._attempt_tasks.add(entry.task)
        entry.task.add_done_callback(self._attempt_done)
        self._stats.dispatched += 1
        logger.info(
            "job_dispatched",
            job_name=job.name,
            execution_id=execution_id,
            retry_attempt=attempt,
            trigger=trigger,
        )
        return entry

    def _attempt_done(self, task: asyncio.Task[None]) -> None:
        self._attempt_tasks.discard(task)
        for execution_id, entry in list(self._attempts.items()):
            if entry.task is task:
                del self._attempts[execution_id]

    # === Attempt Lifecycle ===

    async def _run_attempt(self, entry: _Attempt, task: Task) -> None:
        job = entry.job
        released = False
        try:
            async with LogContext(job_name=job.name, execution_id=entry.execution_id):
                async with self._workers:
                    entry.started_at = utcnow()
                    await asyncio.to_thread(
                        self.store.start_execution,
                        job,
                        entry.execution_id,
                        entry.attempt,
                        entry.started_at,
                    )
                    outcome = await self.executor.run(task, entry.ctx, job.timeout)

                self.governor.release(job.name)
                released = True
                decision = self.retry_policy.decide(job, entry.attempt, outcome)

                entry.finalized = True
                completed_at = utcnow()
                await asyncio.to_thread(
                    self.store.complete_execution, entry.execution_id, outcome, completed_at
                )
                logger.info(
                    "job_attempt_finished",
                    job_name=job.name,
                    execution_id=entry.execution_id,
                    retry_attempt=entry.attempt,
                    status=outcome.status.value,
                    duration_ms=outcome.duration_ms,
                )

                if isinstance(decision, Retry) and not self._stopping:
                    self._schedule_retry(job, decision, outcome.status)
                else:
                    if outcome.status != JobStatus.SUCCESS:
                        self._stats.failed += 1
                    await asyncio.to_thread(
                        self.store.record_last_run, job.id, completed_at, outcome.status
                    )
        except PersistenceError as e:
            self._stats.last_error = str(e)
            logger.error(
                "attempt_persistence_failed",
                job_name=job.name,
                execution_id=entry.execution_id,
                error=str(e),
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._stats.last_error = str(e)
            logger.exception(
                "attempt_crashed", job_name=job.name, execution_id=entry.execution_id
            )
        finally:
            if not released:
                self.governor.release(job.name)

    async def _finalize_cancelled(self, entry: _Attempt) -> None:
        """Record an attempt cut off by shutdown as CANCELLED."""
        if entry.finalized or entry.started_at is None:
            return
        entry.finalized = True
        completed_at = utcnow()
        error = TaskCancelledError("Scheduler shut down before the task finished").with_context(
            job_name=entry.job.name,
            execution_id=entry.execution_id,
            retry_attempt=entry.attempt,
        )
        outcome = ExecutionOutcome(
            status=JobStatus.CANCELLED,
            duration=(completed_at - entry.started_at).total_seconds(),
            error=error.message,
            error_details=error.to_dict(),
        )
        try:
            if await asyncio.to_thread(
                self.store.complete_execution, entry.execution_id, outcome, completed_at
            ):
                await asyncio.to_thread(
                    self.store.record_last_run, entry.job.id, completed_at, JobStatus.CANCELLED
                )
                self._stats.cancelled += 1
        except PersistenceError as e:
            logger.error(
                "cancel_record_failed", execution_id=entry.execution_id, error=str(e)
            )
        logger.warning(
            "job_attempt_cancelled",
            job_name=entry.job.name,
            execution_id=entry.execution_id,
        )

    # === Retries ===

    def _schedule_retry(self, job: JobDefinition, decision: Retry, last_status: JobStatus) -> None:
        self._stats.retries_scheduled += 1
        pending = _PendingRetry(job=job, attempt=decision.attempt, last_status=last_status)
        task = asyncio.create_task(
            self._retry_later(pending, decision.after),
            name=f"jobspine-retry-{job.name}-{decision.attempt}",
        )
        self._retry_tasks[task] = pending
        task.add_done_callback(lambda t: self._retry_tasks.pop(t, None))
        logger.info(
            "job_retry_scheduled",
            job_name=job.name,
            retry_attempt=decision.attempt,
            delay_seconds=decision.after,
        )

    async def _retry_later(self, pending: _PendingRetry, delay: float) -> None:
        await asyncio.sleep(delay)
        job = pending.job
        try:
            while not self._stopping:
                current = await asyncio.to_thread(self.store.get_job, job.id)
                if current is None:
                    logger.info("job_retry_dropped", job_name=job.name, reason="job_deleted")
                    return
                if pending.attempt > current.max_retries:
                    logger.info(
                        "job_retry_dropped",
                        job_name=job.name,
                        retry_attempt=pending.attempt,
                        max_retries=current.max_retries,
                        reason="max_retries_lowered",
                    )
                    self._stats.failed += 1
                    await asyncio.to_thread(
                        self.store.record_last_run, job.id, utcnow(), pending.last_status
                    )
                    return
                admission = await self._admit(current, pending.attempt, trigger="retry")
                if admission is not Admission.REJECTED:
                    return
                # Slot still held by another attempt of this job
                await asyncio.sleep(self.poll_interval)
        except PersistenceError as e:
            self._stats.last_error = str(e)
            logger.error("job_retry_failed", job_name=job.name, error=str(e))

    async def _drop_pending_retries(self) -> None:
        if not self._retry_tasks:
            return
        dropped = dict(self._retry_tasks)
        for task in dropped:
            task.cancel()
        await asyncio.gather(*dropped, return_exceptions=True)
        now = utcnow()
        for task, pending in dropped.items():
            if task.cancelled():
                logger.info(
                    "job_retry_dropped",
                    job_name=pending.job.name,
                    retry_attempt=pending.attempt,
                    reason="shutdown",
                )
                try:
                    await asyncio.to_thread(
                        self.store.record_last_run, pending.job.id, now, pending.last_status
                    )
                except PersistenceError as e:
                    logger.error("last_run_update_failed", job_name=pending.job.name, error=str(e))

    # === Manual Operations ===

    async def trigger(self, job_name: str) -> Admission:
        """Dispatch a job now, through the same admission path as a tick.

        Does not change ``next_run_at``.

        Raises:
            JobNotFoundError: No job named *job_name*
        """
        job = await asyncio.to_thread(self.store.get_job_by_name, job_name)
        if job is None:
            raise JobNotFoundError(job_name)
        return await self._admit(job, attempt=0, trigger="manual")

    async def pause(self, job_name: str) -> bool:
        """Disable a job. Returns False if it does not exist."""
        job = await asyncio.to_thread(self.store.get_job_by_name, job_name)
        if job is None:
            return False
        await asyncio.to_thread(self.store.set_enabled, job.id, False)
        logger.info("job_paused", job_name=job_name)
        return True

    async def resume(self, job_name: str) -> bool:
        """Re-enable a job; its next run is computed from now."""
        job = await asyncio.to_thread(self.store.get_job_by_name, job_name)
        if job is None:
            return False
        next_run_at = CronTrigger.next(job.cron_expression, utcnow())
        await asyncio.to_thread(self.store.set_enabled, job.id, True, next_run_at)
        logger.info("job_resumed", job_name=job_name, next_run_at=next_run_at.isoformat())
        return True

    # === Health & Stats ===

    @property
    def in_flight(self) -> int:
        return len(self._attempt_tasks)

    @property
    def pending_retries(self) -> int:
        return len(self._retry_tasks)

    async def wait_idle(self, timeout: float | None = None) -> bool:
        """Wait until no attempts are running and no retries are pending.

        Returns:
            True if idle, False if *timeout* elapsed first.
        """
        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout
        while self._attempt_tasks or self._retry_tasks:
            remaining = None if deadline is None else deadline - loop.time()
            if remaining is not None and remaining <= 0:
                return False
            waiting = set(self._attempt_tasks) | set(self._retry_tasks)
            await asyncio.wait(waiting, timeout=remaining, return_when=asyncio.FIRST_COMPLETED)
        return True

    async def health(self) -> SchedulerHealth:
        """Get scheduler health status."""
        try:
            enabled = await asyncio.to_thread(self.store.count_enabled)
            store_ok = True
        except PersistenceError as e:
            enabled = 0
            store_ok = False
            self._stats.last_error = str(e)
        return SchedulerHealth(
            healthy=self._running and store_ok,
            running=self._running,
            jobs_enabled=enabled,
            in_flight=self.in_flight,
            pending_retries=self.pending_retries,
            running_by_job=self.governor.snapshot(),
            last_tick=self._stats.last_tick,
            stats=self._stats,
        )

    def get_stats(self) -> SchedulerStats:
        return self._stats

    def reset_stats(self) -> None:
        self._stats = SchedulerStats()
