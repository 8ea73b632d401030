"""Tasks that ship with jobspine."""

from jobspine.tasks.data_cleanup import (
    RETENTION_JOB_NAME,
    DataCleanupTask,
    ensure_retention_job,
    register_builtin_tasks,
)

__all__ = [
    "RETENTION_JOB_NAME",
    "DataCleanupTask",
    "ensure_retention_job",
    "register_builtin_tasks",
]
