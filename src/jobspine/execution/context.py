"""Per-attempt context handed to ``Task.execute``."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from jobspine.core.logging import get_logger
from jobspine.execution.timeout import CancellationToken, DeadlineContext

if TYPE_CHECKING:
    from jobspine.scheduling.store import JobStore


@dataclass
class JobContext:
    """Everything a task may need while it runs.

    Attributes:
        execution_id: Unique id of this attempt (matches its ExecutionRecord)
        job_id: Id of the job definition
        job_name: Name of the job definition
        task_type: Registered task type that was built
        retry_attempt: Zero-based attempt number within the chain
        store: Job store handle (sync; call it from sync tasks or via to_thread)
        cancel_token: Tripped on timeout or shutdown
        deadline: Set by the executor when the attempt starts
    """

    execution_id: str
    job_id: int
    job_name: str
    task_type: str
    retry_attempt: int = 0
    store: JobStore | None = None
    cancel_token: CancellationToken = field(default_factory=CancellationToken)
    deadline: DeadlineContext | None = None

    @property
    def is_cancelled(self) -> bool:
        return self.cancel_token.is_cancelled

    def raise_if_cancelled(self) -> None:
        """Raise ``TaskCancelledError`` if the attempt has been abandoned."""
        self.cancel_token.raise_if_cancelled()

    def remaining(self) -> float | None:
        """Seconds left before the timeout, or None outside the executor."""
        return self.deadline.remaining() if self.deadline else None

    @property
    def logger(self) -> Any:
        return get_logger("jobspine.task").bind(
            job_name=self.job_name,
            execution_id=self.execution_id,
            retry_attempt=self.retry_attempt,
        )
