"""
Structured error types for jobspine.

Every failure the scheduler can observe is expressed as a typed error that
carries the metadata needed to decide what happens next: whether the attempt
may be retried, which subsystem is at fault, and which job and execution it
belongs to. Errors serialize to plain dictionaries so they can be stored in
an ExecutionRecord's ``error_details`` column verbatim.

Manifesto:
    - **Typed hierarchy:** Configuration, validation, execution and
      persistence failures are different types, not different strings
    - **Explicit retry semantics:** Each error knows if it's retryable
    - **Rich context:** Errors carry job name, execution id and attempt
    - **Error chaining:** The original exception is preserved as ``cause``

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────────┐
        │                       JobspineError                              │
        │  (kind, category, retryable, context, cause)                    │
        ├─────────────────────────────────────────────────────────────────┤
        │                                                                  │
        │  ConfigError              ValidationError       ExecutionError  │
        │  (CONFIG, never retried)  (VALIDATION)          (EXECUTION)     │
        │       │                        │                     │          │
        │  InvalidCronExpression    InvalidJobDefinition  TaskExecution   │
        │  UnknownTaskType                                TaskTimeout     │
        │  PayloadDecode                                  TaskCancelled   │
        │                                                                  │
        │  DatabaseError            SchedulerError                        │
        │  (DATABASE)               (SCHEDULING)                          │
        │       │                                                         │
        │  PersistenceError                                               │
        │  JobNotFound                                                    │
        │  JobAlreadyExists                                               │
        └─────────────────────────────────────────────────────────────────┘

Examples:
    >>> error = UnknownTaskTypeError("send_report", available=["data_cleanup"])
    >>> error.retryable
    False
    >>> error.to_dict()["kind"]
    'InvalidConfig'

    >>> err = TaskExecutionError("boom").with_context(job_name="nightly")
    >>> err.context.job_name
    'nightly'

Guardrails:
    ❌ DON'T: Raise bare Exception from store or scheduler code
    ✅ DO: Raise the narrowest JobspineError subclass

    ❌ DON'T: Mark configuration errors retryable
    ✅ DO: Let ``default_retryable`` decide

Tags:
    error-handling, exception-hierarchy, retry-logic, error-context, jobspine

Doc-Types:
    - API Reference
    - Error Handling Guide
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """
    Standard error categories for classification and routing.

    Categories group errors by the subsystem at fault:
    - **CONFIG:** Bad job definition, unknown task type, undecodable payload
    - **VALIDATION:** Rejected input at the management surface
    - **EXECUTION:** The task body failed, timed out or was cancelled
    - **DATABASE:** The job store could not complete an operation
    - **SCHEDULING:** The scheduler loop itself misbehaved
    """

    CONFIG = "CONFIG"
    VALIDATION = "VALIDATION"
    EXECUTION = "EXECUTION"
    DATABASE = "DATABASE"
    SCHEDULING = "SCHEDULING"
    INTERNAL = "INTERNAL"
    UNKNOWN = "UNKNOWN"


@dataclass
class ErrorContext:
    """Structured metadata attached to an error."""

    job_name: str | None = None
    job_id: int | None = None
    execution_id: str | None = None
    task_type: str | None = None
    retry_attempt: int | None = None

    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["job_name", "job_id", "execution_id", "task_type", "retry_attempt"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class JobspineError(Exception):
    """
    Base class for all jobspine errors.

    Subclasses set ``kind`` (the stable label written to
    ``error_details.kind``), ``default_category`` and ``default_retryable``.
    """

    kind: str = "Internal"
    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        context: ErrorContext | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.context = context or ErrorContext()
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> JobspineError:
        """
        Add context to this error (fluent API).

        Usage:
            raise TaskExecutionError("Failed").with_context(
                job_name="nightly-report", retry_attempt=2
            )
        """
        for key, value in kwargs.items():
            if hasattr(self.context, key) and key != "metadata":
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result: dict[str, Any] = {
            "kind": self.kind,
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = f"{type(self.cause).__name__}: {self.cause}"
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# CONFIGURATION ERRORS (Never Retryable)
# =============================================================================


class ConfigError(JobspineError):
    """
    A job definition cannot be turned into runnable work.

    Never retryable - the definition must be fixed.
    """

    kind = "InvalidConfig"
    default_category = ErrorCategory.CONFIG
    default_retryable = False


class InvalidCronExpressionError(ConfigError):
    """Cron expression failed to parse or has no future occurrence."""

    def __init__(self, expression: str, reason: str | None = None, **kwargs: Any):
        self.expression = expression
        self.reason = reason
        message = f"Invalid cron expression {expression!r}"
        if reason:
            message += f": {reason}"
        super().__init__(message, **kwargs)


class UnknownTaskTypeError(ConfigError):
    """No factory is registered for the job's task type."""

    def __init__(self, task_type: str, available: list[str] | None = None, **kwargs: Any):
        self.task_type = task_type
        self.available = sorted(available or [])
        super().__init__(
            f"No task registered for type {task_type!r}. "
            f"Available: {self.available or 'none'}",
            **kwargs,
        )
        self.context.task_type = task_type


class PayloadDecodeError(ConfigError):
    """The stored payload could not be decoded into a task."""

    def __init__(self, task_type: str, reason: str, **kwargs: Any):
        self.task_type = task_type
        super().__init__(f"Cannot build task {task_type!r} from payload: {reason}", **kwargs)
        self.context.task_type = task_type


# =============================================================================
# VALIDATION ERRORS
# =============================================================================


class ValidationError(JobspineError):
    """Input rejected at the management surface."""

    kind = "Validation"
    default_category = ErrorCategory.VALIDATION
    default_retryable = False


class InvalidJobDefinitionError(ValidationError):
    """A job definition field holds a value outside its allowed range."""

    def __init__(self, field_name: str, value: Any, message: str | None = None):
        self.field_name = field_name
        self.value = value
        super().__init__(message or f"Invalid value for {field_name}: {value!r}")


# =============================================================================
# EXECUTION ERRORS
# =============================================================================


class ExecutionError(JobspineError):
    """A task attempt did not complete successfully."""

    kind = "TaskFailed"
    default_category = ErrorCategory.EXECUTION
    default_retryable = True


class TaskExecutionError(ExecutionError):
    """The task body raised."""


class TaskTimeoutError(ExecutionError):
    """The task exceeded its job's timeout."""

    kind = "Timeout"

    def __init__(self, timeout: float, elapsed: float | None = None, **kwargs: Any):
        self.timeout = timeout
        self.elapsed = elapsed
        message = f"Task timed out after {timeout}s"
        if elapsed is not None:
            message += f" (ran for {elapsed:.2f}s)"
        super().__init__(message, **kwargs)


class TaskCancelledError(ExecutionError):
    """The attempt was cancelled, normally by scheduler shutdown."""

    kind = "Cancelled"
    default_retryable = False


# =============================================================================
# PERSISTENCE ERRORS
# =============================================================================


class DatabaseError(JobspineError):
    """Job store failure."""

    kind = "Persistence"
    default_category = ErrorCategory.DATABASE
    default_retryable = False


class PersistenceError(DatabaseError):
    """
    The store could not complete an operation.

    Covers connection pool exhaustion and driver errors. Usually transient,
    so the scheduler skips the tick and tries again on the next one.
    """

    default_retryable = True


class JobNotFoundError(DatabaseError):
    """Requested job definition does not exist."""

    kind = "NotFound"

    def __init__(self, identifier: int | str):
        self.identifier = identifier
        super().__init__(f"Job not found: {identifier!r}")


class JobAlreadyExistsError(DatabaseError):
    """A job with the same name already exists."""

    kind = "Conflict"

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Job already exists: {name!r}")


# =============================================================================
# SCHEDULER ERRORS
# =============================================================================


class SchedulerError(JobspineError):
    """The scheduler was used incorrectly or failed internally."""

    kind = "Scheduler"
    default_category = ErrorCategory.SCHEDULING
    default_retryable = False


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================


def is_retryable(error: BaseException) -> bool:
    """Check if an error is retryable."""
    if isinstance(error, JobspineError):
        return error.retryable
    return isinstance(error, (ConnectionError, TimeoutError))


def error_details(error: BaseException) -> dict[str, Any]:
    """Serialize any exception into the shape stored in ``error_details``."""
    if isinstance(error, JobspineError):
        return error.to_dict()
    return TaskExecutionError(str(error) or type(error).__name__, cause=error).to_dict()


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "JobspineError",
    # Config
    "ConfigError",
    "InvalidCronExpressionError",
    "UnknownTaskTypeError",
    "PayloadDecodeError",
    # Validation
    "ValidationError",
    "InvalidJobDefinitionError",
    # Execution
    "ExecutionError",
    "TaskExecutionError",
    "TaskTimeoutError",
    "TaskCancelledError",
    # Persistence
    "DatabaseError",
    "PersistenceError",
    "JobNotFoundError",
    "JobAlreadyExistsError",
    # Scheduler
    "SchedulerError",
    # Utilities
    "is_retryable",
    "error_details",
]
