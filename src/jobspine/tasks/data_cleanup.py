"""Built-in ``data_cleanup`` task - execution history retention.

Deletes finished ExecutionRecords that started more than
``retention_days`` ago. Running records are never touched. The task is an
ordinary job: ``ensure_retention_job`` registers it with a nightly cron
so it is scheduled, retried and audited like any other.

Example:
    >>> register_builtin_tasks(registry)
    >>> ensure_retention_job(store)          # "0 3 * * *", 30 days
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict, Field

from jobspine.core.errors import TaskExecutionError
from jobspine.core.logging import get_logger
from jobspine.core.settings import JobsSettings, get_settings
from jobspine.execution.context import JobContext
from jobspine.execution.registry import TaskRegistry
from jobspine.scheduling.models import JobCreate, JobDefinition
from jobspine.scheduling.store import JobStore

logger = get_logger(__name__)

RETENTION_JOB_NAME = "data_cleanup"
RETENTION_CRON = "0 3 * * *"


class DataCleanupTask(BaseModel):
    """Delete execution history older than the retention window."""

    task_type: ClassVar[str] = "data_cleanup"

    model_config = ConfigDict(extra="forbid")

    retention_days: int = Field(default=30, gt=0)

    def execute(self, ctx: JobContext) -> dict[str, Any]:
        if ctx.store is None:
            raise TaskExecutionError("data_cleanup needs a job store on its context")
        ctx.raise_if_cancelled()
        cutoff = datetime.now(UTC) - timedelta(days=self.retention_days)
        deleted = ctx.store.cleanup_executions(cutoff)
        ctx.logger.info("history_cleaned", deleted=deleted, retention_days=self.retention_days)
        return {
            "deleted": deleted,
            "retention_days": self.retention_days,
            "cutoff": cutoff.isoformat(),
        }


def register_builtin_tasks(registry: TaskRegistry) -> TaskRegistry:
    """Register every task that ships with jobspine."""
    registry.register_model(DataCleanupTask)
    return registry


def ensure_retention_job(
    store: JobStore,
    settings: JobsSettings | None = None,
    *,
    cron_expression: str = RETENTION_CRON,
) -> JobDefinition:
    """Create the retention job if it does not exist yet and return it."""
    settings = settings or get_settings()
    existing = store.get_job_by_name(RETENTION_JOB_NAME)
    if existing is not None:
        return existing
    job = store.create_job(
        JobCreate(
            name=RETENTION_JOB_NAME,
            task_type=DataCleanupTask.task_type,
            cron_expression=cron_expression,
            payload={"retention_days": settings.history_retention_days},
            description="Delete execution history older than the retention window",
            max_retries=1,
            created_by="jobspine",
        )
    )
    logger.info(
        "retention_job_registered",
        job_name=job.name,
        retention_days=settings.history_retention_days,
    )
    return job
