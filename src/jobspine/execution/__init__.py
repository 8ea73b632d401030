"""Task execution: registry, context, deadlines, retry policy and the executor."""

from jobspine.execution.context import JobContext
from jobspine.execution.executor import JobExecutor
from jobspine.execution.registry import (
    AsyncFunctionTask,
    FunctionTask,
    Task,
    TaskFactory,
    TaskRegistry,
    get_default_registry,
    reset_default_registry,
)
from jobspine.execution.retry import (
    ExponentialBackoff,
    Retry,
    RetryDecision,
    RetryPolicy,
    RetryStrategy,
    Terminal,
)
from jobspine.execution.timeout import CancellationToken, DeadlineContext, TimeoutExpired

__all__ = [
    "JobContext",
    "JobExecutor",
    "Task",
    "TaskFactory",
    "TaskRegistry",
    "FunctionTask",
    "AsyncFunctionTask",
    "get_default_registry",
    "reset_default_registry",
    "RetryStrategy",
    "ExponentialBackoff",
    "Retry",
    "Terminal",
    "RetryDecision",
    "RetryPolicy",
    "CancellationToken",
    "DeadlineContext",
    "TimeoutExpired",
]
