"""Job store - durable repository of job definitions and execution records.

Manifesto:
    The scheduler never touches SQL. Everything it needs - the due-jobs
    query, claiming the next fire time, writing the audit trail - goes
    through the ``JobStore`` protocol, and ``SqlJobStore`` implements it on
    SQLAlchemy 2.0. All methods are synchronous; the scheduler calls them
    through ``asyncio.to_thread`` so the event loop never blocks on I/O.

Tags:
    jobspine, scheduling, repository, CRUD, sqlalchemy

Doc-Types:
    api-reference, data-access


┌──────────────────────────────────────────────────────────────────────────────┐
│  JOB STORE                                                                    │
│                                                                               │
│  Definitions (scheduled_jobs)          Executions (job_executions)           │
│  ├── create_job(JobCreate)             ├── start_execution()   → running     │
│  ├── get_job / get_job_by_name         ├── complete_execution() running→end  │
│  ├── list_jobs                         ├── record_execution()  terminal row  │
│  ├── update_job(JobUpdate)             ├── get_execution / list_executions   │
│  ├── delete_job  (cascades)            └── cleanup_executions(older_than)    │
│  ├── due_jobs(now)                                                           │
│  ├── update_schedule(next_run_at)      Invariants:                           │
│  ├── set_enabled                       - job_name unique                     │
│  └── record_last_run                   - max_concurrent NULL or > 0          │
│                                        - a record is finalized at most once  │
│                                                                               │
│  Every SQLAlchemy failure (including pool exhaustion) → PersistenceError     │
└──────────────────────────────────────────────────────────────────────────────┘
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import Any, Protocol, runtime_checkable

from sqlalchemy import delete, func, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from jobspine.core.errors import (
    InvalidCronExpressionError,
    JobAlreadyExistsError,
    JobNotFoundError,
    PersistenceError,
)
from jobspine.core.logging import get_logger
from jobspine.core.orm.session import jobs_session_factory
from jobspine.core.orm.tables import JobExecutionTable, ScheduledJobTable
from jobspine.core.settings import JobsSettings, get_settings
from jobspine.scheduling.cron import CronTrigger
from jobspine.scheduling.models import (
    ExecutionOutcome,
    ExecutionRecord,
    JobCreate,
    JobDefinition,
    JobStatus,
    JobUpdate,
)

logger = get_logger(__name__)


def utcnow() -> datetime:
    return datetime.now(UTC)


@runtime_checkable
class JobStore(Protocol):
    """Operations the scheduler and the management surface need."""

    # --- definitions ---
    def create_job(self, spec: JobCreate) -> JobDefinition: ...
    def get_job(self, job_id: int) -> JobDefinition | None: ...
    def get_job_by_name(self, name: str) -> JobDefinition | None: ...
    def list_jobs(self, *, enabled_only: bool = False) -> list[JobDefinition]: ...
    def update_job(self, job_id: int, updates: JobUpdate) -> JobDefinition: ...
    def delete_job(self, job_id: int) -> bool: ...

    # --- scheduling ---
    def due_jobs(self, now: datetime) -> list[JobDefinition]: ...
    def update_schedule(self, job_id: int, next_run_at: datetime | None) -> None: ...
    def set_enabled(
        self, job_id: int, enabled: bool, next_run_at: datetime | None = None
    ) -> None: ...
    def record_last_run(self, job_id: int, at: datetime, status: JobStatus) -> None: ...
    def prime_schedules(self, now: datetime) -> int: ...
    def count_enabled(self) -> int: ...

    # --- executions ---
    def start_execution(
        self, job: JobDefinition, execution_id: str, retry_attempt: int, started_at: datetime
    ) -> ExecutionRecord: ...
    def complete_execution(
        self, execution_id: str, outcome: ExecutionOutcome, completed_at: datetime
    ) -> bool: ...
    def record_execution(
        self,
        job: JobDefinition,
        execution_id: str,
        retry_attempt: int,
        outcome: ExecutionOutcome,
        started_at: datetime,
        completed_at: datetime,
    ) -> ExecutionRecord: ...
    def get_execution(self, execution_id: str) -> ExecutionRecord | None: ...
    def list_executions(
        self,
        *,
        job_id: int | None = None,
        status: JobStatus | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[ExecutionRecord]: ...
    def cleanup_executions(self, older_than: datetime) -> int: ...


class SqlJobStore:
    """``JobStore`` backed by a SQLAlchemy engine.

    Example:
        >>> engine = create_jobs_engine("sqlite:///jobs.db")
        >>> init_db(engine)
        >>> store = SqlJobStore(engine)
        >>> job = store.create_job(JobCreate(
        ...     name="nightly-report",
        ...     task_type="report",
        ...     cron_expression="0 2 * * *",
        ... ))
    """

    def __init__(self, engine: Engine, settings: JobsSettings | None = None) -> None:
        self.engine = engine
        self.settings = settings or get_settings()
        self._session_factory = jobs_session_factory(engine)

    @contextmanager
    def _session(self) -> Iterator[Session]:
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            raise PersistenceError(f"Job store operation failed: {e}", cause=e) from e
        except BaseException:
            session.rollback()
            raise
        finally:
            session.close()

    # === Definition CRUD ===

    def create_job(self, spec: JobCreate) -> JobDefinition:
        """Validate and persist a new job definition.

        ``next_run_at`` is computed from the cron expression when the job
        is created enabled.

        Raises:
            InvalidCronExpressionError / InvalidJobDefinitionError: Bad input
            JobAlreadyExistsError: Name is taken
        """
        spec.validate()
        spec = spec.with_defaults(self.settings)
        now = utcnow()
        next_run_at = CronTrigger.next(spec.cron_expression, now) if spec.enabled else None

        with self._session() as session:
            existing = session.scalar(
                select(ScheduledJobTable.id).where(ScheduledJobTable.job_name == spec.name)
            )
            if existing is not None:
                raise JobAlreadyExistsError(spec.name)

            row = ScheduledJobTable(
                job_name=spec.name,
                description=spec.description,
                task_type=spec.task_type,
                cron_expression=spec.cron_expression,
                enabled=spec.enabled,
                allow_concurrent=spec.allow_concurrent,
                max_concurrent=spec.max_concurrent,
                max_retries=spec.max_retries,
                retry_delay=spec.retry_delay,
                retry_backoff_multiplier=spec.retry_backoff_multiplier,
                timeout=spec.timeout,
                payload=spec.payload or {},
                next_run_at=next_run_at,
                created_at=now,
                updated_at=now,
                created_by=spec.created_by,
            )
            session.add(row)
            try:
                session.flush()
            except IntegrityError as e:
                raise JobAlreadyExistsError(spec.name) from e
            job = self._to_definition(row)

        logger.info("job_created", job_name=job.name, job_id=job.id, next_run_at=str(next_run_at))
        return job

    def get_job(self, job_id: int) -> JobDefinition | None:
        with self._session() as session:
            row = session.get(ScheduledJobTable, job_id)
            return self._to_definition(row) if row else None

    def get_job_by_name(self, name: str) -> JobDefinition | None:
        with self._session() as session:
            row = session.scalar(
                select(ScheduledJobTable).where(ScheduledJobTable.job_name == name)
            )
            return self._to_definition(row) if row else None

    def list_jobs(self, *, enabled_only: bool = False) -> list[JobDefinition]:
        stmt = select(ScheduledJobTable).order_by(ScheduledJobTable.job_name)
        if enabled_only:
            stmt = stmt.where(ScheduledJobTable.enabled.is_(True))
        with self._session() as session:
            return [self._to_definition(row) for row in session.scalars(stmt)]

    def count_enabled(self) -> int:
        with self._session() as session:
            return session.scalar(
                select(func.count()).select_from(ScheduledJobTable).where(
                    ScheduledJobTable.enabled.is_(True)
                )
            ) or 0

    def update_job(self, job_id: int, updates: JobUpdate) -> JobDefinition:
        """Apply a partial update.

        Changing the cron expression, or re-enabling the job, recomputes
        ``next_run_at``; disabling it clears ``next_run_at``.

        Raises:
            JobNotFoundError: No job with *job_id*
        """
        updates.validate()
        changes = updates.changes()

        with self._session() as session:
            row = session.get(ScheduledJobTable, job_id)
            if row is None:
                raise JobNotFoundError(job_id)

            if changes.get("max_concurrent") is not None and not changes.get(
                "allow_concurrent", row.allow_concurrent
            ):
                logger.warning(
                    "max_concurrent_ignored",
                    job_name=row.job_name,
                    reason="allow_concurrent is false",
                )

            reschedule = (
                "cron_expression" in changes and changes["cron_expression"] != row.cron_expression
            ) or (changes.get("enabled") is True and not row.enabled)

            for key, value in changes.items():
                setattr(row, key, value)

            if not row.enabled:
                row.next_run_at = None
            elif reschedule or row.next_run_at is None:
                row.next_run_at = CronTrigger.next(row.cron_expression, utcnow())

            row.updated_at = utcnow()
            session.flush()
            job = self._to_definition(row)

        logger.info("job_updated", job_name=job.name, fields=sorted(changes))
        return job

    def delete_job(self, job_id: int) -> bool:
        """Delete a job and, by cascade, all its execution records."""
        with self._session() as session:
            row = session.get(ScheduledJobTable, job_id)
            if row is None:
                return False
            name = row.job_name
            session.delete(row)
        logger.info("job_deleted", job_name=name, job_id=job_id)
        return True

    # === Scheduling Operations ===

    def due_jobs(self, now: datetime) -> list[JobDefinition]:
        """Enabled jobs whose ``next_run_at`` is at or before *now*, oldest first."""
        stmt = (
            select(ScheduledJobTable)
            .where(
                ScheduledJobTable.enabled.is_(True),
                ScheduledJobTable.next_run_at.is_not(None),
                ScheduledJobTable.next_run_at <= now,
            )
            .order_by(ScheduledJobTable.next_run_at, ScheduledJobTable.id)
        )
        with self._session() as session:
            return [self._to_definition(row) for row in session.scalars(stmt)]

    def update_schedule(self, job_id: int, next_run_at: datetime | None) -> None:
        """Persist the claimed next fire time."""
        with self._session() as session:
            session.execute(
                update(ScheduledJobTable)
                .where(ScheduledJobTable.id == job_id)
                .values(next_run_at=next_run_at)
            )

    def set_enabled(
        self, job_id: int, enabled: bool, next_run_at: datetime | None = None
    ) -> None:
        """Enable or disable a job. Disabling always clears ``next_run_at``."""
        with self._session() as session:
            result = session.execute(
                update(ScheduledJobTable)
                .where(ScheduledJobTable.id == job_id)
                .values(
                    enabled=enabled,
                    next_run_at=next_run_at if enabled else None,
                    updated_at=utcnow(),
                )
            )
            if result.rowcount == 0:
                raise JobNotFoundError(job_id)

    def record_last_run(self, job_id: int, at: datetime, status: JobStatus) -> None:
        with self._session() as session:
            session.execute(
                update(ScheduledJobTable)
                .where(ScheduledJobTable.id == job_id)
                .values(last_run_at=at, last_run_status=JobStatus(status).value)
            )

    def prime_schedules(self, now: datetime) -> int:
        """Fill in ``next_run_at`` for enabled jobs that have none.

        Jobs whose cron expression no longer parses are disabled.

        Returns:
            Number of jobs that were scheduled.
        """
        primed = 0
        with self._session() as session:
            rows = session.scalars(
                select(ScheduledJobTable).where(
                    ScheduledJobTable.enabled.is_(True),
                    ScheduledJobTable.next_run_at.is_(None),
                )
            ).all()
            for row in rows:
                try:
                    row.next_run_at = CronTrigger.next(row.cron_expression, now)
                    primed += 1
                except InvalidCronExpressionError as e:
                    row.enabled = False
                    logger.error("job_disabled_invalid_cron", job_name=row.job_name, error=str(e))
        return primed

    # === Execution Records ===

    def start_execution(
        self,
        job: JobDefinition,
        execution_id: str,
        retry_attempt: int,
        started_at: datetime,
    ) -> ExecutionRecord:
        """Insert a ``running`` record for an attempt that is about to start."""
        with self._session() as session:
            row = JobExecutionTable(
                job_id=job.id,
                job_name=job.name,
                execution_id=execution_id,
                started_at=started_at,
                status=JobStatus.RUNNING.value,
                retry_attempt=retry_attempt,
            )
            session.add(row)
            session.flush()
            return self._to_record(row)

    def complete_execution(
        self,
        execution_id: str,
        outcome: ExecutionOutcome,
        completed_at: datetime,
    ) -> bool:
        """Finalize a ``running`` record.

        Only a record still in ``running`` is touched, so a record is
        finalized at most once.

        Returns:
            True if the record was finalized by this call.
        """
        with self._session() as session:
            result = session.execute(
                update(JobExecutionTable)
                .where(
                    JobExecutionTable.execution_id == execution_id,
                    JobExecutionTable.status == JobStatus.RUNNING.value,
                )
                .values(
                    status=outcome.status.value,
                    completed_at=completed_at,
                    duration_ms=outcome.duration_ms,
                    error_message=outcome.error,
                    error_details=outcome.error_details,
                    result=outcome.result,
                )
            )
            finalized = result.rowcount == 1
        if not finalized:
            logger.warning(
                "execution_already_finalized",
                execution_id=execution_id,
                status=outcome.status.value,
            )
        return finalized

    def record_execution(
        self,
        job: JobDefinition,
        execution_id: str,
        retry_attempt: int,
        outcome: ExecutionOutcome,
        started_at: datetime,
        completed_at: datetime,
    ) -> ExecutionRecord:
        """Insert an already-terminal record (the attempt never ran)."""
        with self._session() as session:
            row = JobExecutionTable(
                job_id=job.id,
                job_name=job.name,
                execution_id=execution_id,
                started_at=started_at,
                completed_at=completed_at,
                duration_ms=outcome.duration_ms,
                status=outcome.status.value,
                retry_attempt=retry_attempt,
                error_message=outcome.error,
                error_details=outcome.error_details,
                result=outcome.result,
            )
            session.add(row)
            session.flush()
            return self._to_record(row)

    def get_execution(self, execution_id: str) -> ExecutionRecord | None:
        with self._session() as session:
            row = session.scalar(
                select(JobExecutionTable).where(JobExecutionTable.execution_id == execution_id)
            )
            return self._to_record(row) if row else None

    def list_executions(
        self,
        *,
        job_id: int | None = None,
        status: JobStatus | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[ExecutionRecord]:
        """Execution history, newest first."""
        stmt = select(JobExecutionTable)
        if job_id is not None:
            stmt = stmt.where(JobExecutionTable.job_id == job_id)
        if status is not None:
            stmt = stmt.where(JobExecutionTable.status == JobStatus(status).value)
        stmt = (
            stmt.order_by(JobExecutionTable.started_at.desc(), JobExecutionTable.id.desc())
            .limit(limit)
            .offset(offset)
        )
        with self._session() as session:
            return [self._to_record(row) for row in session.scalars(stmt)]

    def cleanup_executions(self, older_than: datetime) -> int:
        """Delete finished records that started before *older_than*.

        Running records are never deleted.

        Returns:
            Number of records deleted.
        """
        with self._session() as session:
            result = session.execute(
                delete(JobExecutionTable).where(
                    JobExecutionTable.started_at < older_than,
                    JobExecutionTable.status != JobStatus.RUNNING.value,
                )
            )
            deleted = result.rowcount or 0
        logger.info("executions_cleaned_up", deleted=deleted, older_than=older_than.isoformat())
        return deleted

    # === Private Helpers ===

    @staticmethod
    def _to_definition(row: ScheduledJobTable) -> JobDefinition:
        return JobDefinition(
            id=row.id,
            name=row.job_name,
            task_type=row.task_type,
            cron_expression=row.cron_expression,
            enabled=bool(row.enabled),
            allow_concurrent=bool(row.allow_concurrent),
            max_concurrent=row.max_concurrent,
            max_retries=row.max_retries,
            retry_delay=float(row.retry_delay),
            retry_backoff_multiplier=float(row.retry_backoff_multiplier),
            timeout=float(row.timeout),
            payload=dict(row.payload or {}),
            description=row.description,
            last_run_at=row.last_run_at,
            last_run_status=JobStatus(row.last_run_status) if row.last_run_status else None,
            next_run_at=row.next_run_at,
            created_at=row.created_at,
            updated_at=row.updated_at,
            created_by=row.created_by,
        )

    @staticmethod
    def _to_record(row: JobExecutionTable) -> ExecutionRecord:
        details: dict[str, Any] | None = row.error_details
        return ExecutionRecord(
            id=row.id,
            job_id=row.job_id,
            job_name=row.job_name,
            execution_id=row.execution_id,
            started_at=row.started_at,
            status=JobStatus(row.status),
            retry_attempt=row.retry_attempt,
            completed_at=row.completed_at,
            duration_ms=row.duration_ms,
            error_message=row.error_message,
            error_details=details,
            result=row.result,
        )
