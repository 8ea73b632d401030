"""
jobspine - cron-triggered background job scheduling.

Persisted job definitions, per-job concurrency limits, exponential-backoff
retries, timeouts and a full execution audit trail, in a single process.
"""

__version__ = "0.1.0"

from jobspine.scheduling import (  # noqa: E402
    CronTrigger,
    ExecutionRecord,
    JobCreate,
    JobDefinition,
    JobScheduler,
    JobStatus,
    JobUpdate,
    SqlJobStore,
)
from jobspine.execution import (  # noqa: E402
    JobContext,
    JobExecutor,
    RetryPolicy,
    TaskRegistry,
    get_default_registry,
)

__all__ = [
    "__version__",
    "CronTrigger",
    "ExecutionRecord",
    "JobCreate",
    "JobDefinition",
    "JobScheduler",
    "JobStatus",
    "JobUpdate",
    "SqlJobStore",
    "JobContext",
    "JobExecutor",
    "RetryPolicy",
    "TaskRegistry",
    "get_default_registry",
]
