"""Job scheduling: definitions, cron evaluation, the store and the scheduler loop.

┌──────────────────────────────────────────────────────────────────────────────┐
│  SCHEDULING PACKAGE                                                           │
│                                                                               │
│  models     JobStatus, JobDefinition, ExecutionRecord, JobCreate, JobUpdate   │
│  cron       CronTrigger.next(expression, after)  (croniter, UTC)              │
│  governor   ConcurrencyGovernor  per-job running counts                       │
│  store      JobStore protocol + SqlJobStore (SQLAlchemy 2.0)                  │
│  scheduler  JobScheduler  poll → claim → admit → dispatch → retry → persist   │
└──────────────────────────────────────────────────────────────────────────────┘

Tags:
    jobspine, scheduling, package-overview
"""

from jobspine.scheduling.models import (
    ExecutionOutcome,
    ExecutionRecord,
    JobCreate,
    JobDefinition,
    JobStatus,
    JobUpdate,
    UNSET,
)
from jobspine.scheduling.cron import CronTrigger
from jobspine.scheduling.governor import ConcurrencyGovernor
from jobspine.scheduling.store import JobStore, SqlJobStore
from jobspine.scheduling.scheduler import (
    Admission,
    JobScheduler,
    SchedulerHealth,
    SchedulerStats,
)

__all__ = [
    "JobStatus",
    "JobDefinition",
    "ExecutionRecord",
    "ExecutionOutcome",
    "JobCreate",
    "JobUpdate",
    "UNSET",
    "CronTrigger",
    "ConcurrencyGovernor",
    "JobStore",
    "SqlJobStore",
    "Admission",
    "JobScheduler",
    "SchedulerHealth",
    "SchedulerStats",
]
