"""Job scheduling domain models.

Plain dataclasses handed across the store boundary. ORM rows never leave
the store; callers work with these.

    JobDefinition    ─ persisted description of a recurring job
    ExecutionRecord  ─ audit row for exactly one attempt
    JobCreate        ─ validated input for a new definition
    JobUpdate        ─ partial update (``UNSET`` / ``None`` = leave unchanged)
    ExecutionOutcome ─ what the executor reports for one attempt

Tags:
    jobspine, scheduling, models, dataclasses

Doc-Types:
    api-reference, data-model
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from datetime import datetime
from enum import Enum
from typing import Any

from jobspine.core.errors import InvalidJobDefinitionError
from jobspine.core.settings import JobsSettings


class _Unset:
    def __repr__(self) -> str:
        return "UNSET"


# Marks a nullable JobUpdate field as untouched, so None can clear it
UNSET: Any = _Unset()

# JobUpdate fields where None is a real value
_CLEARABLE = frozenset({"description", "max_concurrent"})


class JobStatus(str, Enum):
    """Lifecycle status of one attempt, as persisted."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self not in (JobStatus.PENDING, JobStatus.RUNNING)


@dataclass
class JobDefinition:
    """A recurring job as stored in ``scheduled_jobs``."""

    id: int
    name: str
    task_type: str
    cron_expression: str
    enabled: bool = True

    allow_concurrent: bool = False
    max_concurrent: int | None = None

    max_retries: int = 3
    retry_delay: float = 60.0
    retry_backoff_multiplier: float = 2.0
    timeout: float = 300.0

    payload: dict[str, Any] = field(default_factory=dict)
    description: str | None = None

    last_run_at: datetime | None = None
    last_run_status: JobStatus | None = None
    next_run_at: datetime | None = None

    created_at: datetime | None = None
    updated_at: datetime | None = None
    created_by: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        if self.last_run_status is not None:
            data["last_run_status"] = self.last_run_status.value
        for key in ("last_run_at", "next_run_at", "created_at", "updated_at"):
            if data[key] is not None:
                data[key] = data[key].isoformat()
        return data


@dataclass
class ExecutionRecord:
    """One attempt of one job. Append-only once terminal."""

    id: int
    job_id: int
    job_name: str
    execution_id: str
    started_at: datetime
    status: JobStatus
    retry_attempt: int = 0
    completed_at: datetime | None = None
    duration_ms: int | None = None
    error_message: str | None = None
    error_details: dict[str, Any] | None = None
    result: Any = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        data["started_at"] = self.started_at.isoformat()
        if self.completed_at is not None:
            data["completed_at"] = self.completed_at.isoformat()
        return data


@dataclass
class ExecutionOutcome:
    """Result of running one task once."""

    status: JobStatus
    duration: float = 0.0
    error: str | None = None
    error_details: dict[str, Any] | None = None
    result: Any = None

    @property
    def duration_ms(self) -> int:
        return int(self.duration * 1000)

    @property
    def succeeded(self) -> bool:
        return self.status == JobStatus.SUCCESS


# ---------------------------------------------------------------------------
# Create/Update DTOs
# ---------------------------------------------------------------------------


def _check_limits(
    *,
    max_concurrent: int | None,
    max_retries: int | None,
    retry_delay: float | None,
    retry_backoff_multiplier: float | None,
    timeout: float | None,
) -> None:
    if max_concurrent is not None and max_concurrent <= 0:
        raise InvalidJobDefinitionError(
            "max_concurrent", max_concurrent, "max_concurrent must be greater than 0"
        )
    if max_retries is not None and max_retries < 0:
        raise InvalidJobDefinitionError("max_retries", max_retries, "max_retries must be >= 0")
    if retry_delay is not None and retry_delay <= 0:
        raise InvalidJobDefinitionError("retry_delay", retry_delay, "retry_delay must be > 0")
    if retry_backoff_multiplier is not None and retry_backoff_multiplier < 1.0:
        raise InvalidJobDefinitionError(
            "retry_backoff_multiplier",
            retry_backoff_multiplier,
            "retry_backoff_multiplier must be >= 1.0",
        )
    if timeout is not None and timeout <= 0:
        raise InvalidJobDefinitionError("timeout", timeout, "timeout must be > 0")


@dataclass
class JobCreate:
    """DTO for creating a new job definition.

    Unset retry/timeout fields take their values from ``JobsSettings``.
    """

    name: str
    task_type: str
    cron_expression: str
    payload: dict[str, Any] | None = None
    description: str | None = None
    enabled: bool = True
    allow_concurrent: bool = False
    max_concurrent: int | None = None
    max_retries: int | None = None
    retry_delay: float | None = None
    retry_backoff_multiplier: float | None = None
    timeout: float | None = None
    created_by: str | None = None

    def validate(self) -> None:
        """Raise if any field is out of range or the cron expression is bad."""
        from jobspine.scheduling.cron import CronTrigger

        if not self.name or not self.name.strip():
            raise InvalidJobDefinitionError("name", self.name, "name must not be empty")
        if not self.task_type:
            raise InvalidJobDefinitionError("task_type", self.task_type, "task_type must not be empty")
        CronTrigger.validate(self.cron_expression)
        _check_limits(
            max_concurrent=self.max_concurrent,
            max_retries=self.max_retries,
            retry_delay=self.retry_delay,
            retry_backoff_multiplier=self.retry_backoff_multiplier,
            timeout=self.timeout,
        )

    def with_defaults(self, settings: JobsSettings) -> JobCreate:
        """Return a copy with unset fields filled from *settings*."""
        return JobCreate(
            name=self.name.strip(),
            task_type=self.task_type,
            cron_expression=self.cron_expression.strip(),
            payload=dict(self.payload or {}),
            description=self.description,
            enabled=self.enabled,
            allow_concurrent=self.allow_concurrent,
            max_concurrent=self.max_concurrent,
            max_retries=(
                self.max_retries if self.max_retries is not None else settings.default_max_retries
            ),
            retry_delay=(
                self.retry_delay if self.retry_delay is not None else settings.default_retry_delay
            ),
            retry_backoff_multiplier=(
                self.retry_backoff_multiplier
                if self.retry_backoff_multiplier is not None
                else settings.default_retry_backoff_multiplier
            ),
            timeout=self.timeout if self.timeout is not None else settings.default_timeout,
            created_by=self.created_by,
        )


@dataclass
class JobUpdate:
    """DTO for updating a job definition.

    ``description`` and ``max_concurrent`` accept ``None`` to clear the
    stored value (no description, unlimited concurrency); leave them
    ``UNSET`` to keep it. For every other field ``None`` means unchanged.
    """

    description: str | None = UNSET
    task_type: str | None = None
    cron_expression: str | None = None
    enabled: bool | None = None
    allow_concurrent: bool | None = None
    max_concurrent: int | None = UNSET
    max_retries: int | None = None
    retry_delay: float | None = None
    retry_backoff_multiplier: float | None = None
    timeout: float | None = None
    payload: dict[str, Any] | None = None

    def validate(self) -> None:
        from jobspine.scheduling.cron import CronTrigger

        if self.cron_expression is not None:
            CronTrigger.validate(self.cron_expression)
        if self.task_type is not None and not self.task_type:
            raise InvalidJobDefinitionError("task_type", self.task_type, "task_type must not be empty")
        _check_limits(
            max_concurrent=None if self.max_concurrent is UNSET else self.max_concurrent,
            max_retries=self.max_retries,
            retry_delay=self.retry_delay,
            retry_backoff_multiplier=self.retry_backoff_multiplier,
            timeout=self.timeout,
        )

    def changes(self) -> dict[str, Any]:
        """Fields that were set, keyed by attribute name."""
        changes = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if value is UNSET or (value is None and f.name not in _CLEARABLE):
                continue
            changes[f.name] = value
        return changes

