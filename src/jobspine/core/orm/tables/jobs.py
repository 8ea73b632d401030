"""Job table definitions: scheduled jobs and their executions.

Tags:
    jobspine, orm, sqlalchemy, tables, scheduling

Doc-Types:
    api-reference, data-model
"""

from __future__ import annotations

import datetime
from typing import Any

from sqlalchemy import JSON, CheckConstraint, ForeignKey, Index, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from jobspine.core.orm.base import JobsBase


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.UTC)


class ScheduledJobTable(JobsBase):
    __tablename__ = "scheduled_jobs"
    __table_args__ = (
        CheckConstraint(
            "max_concurrent IS NULL OR max_concurrent > 0",
            name="ck_scheduled_jobs_max_concurrent",
        ),
        CheckConstraint("max_retries >= 0", name="ck_scheduled_jobs_max_retries"),
        CheckConstraint("timeout > 0", name="ck_scheduled_jobs_timeout"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    job_name: Mapped[str] = mapped_column(Text, unique=True, nullable=False)
    description: Mapped[str | None]
    task_type: Mapped[str] = mapped_column(nullable=False)
    cron_expression: Mapped[str] = mapped_column(nullable=False)
    enabled: Mapped[bool] = mapped_column(default=True, nullable=False)

    allow_concurrent: Mapped[bool] = mapped_column(default=False, nullable=False)
    max_concurrent: Mapped[int | None]

    max_retries: Mapped[int] = mapped_column(default=3, nullable=False)
    retry_delay: Mapped[float] = mapped_column(default=60.0, nullable=False)
    retry_backoff_multiplier: Mapped[float] = mapped_column(default=2.0, nullable=False)
    timeout: Mapped[float] = mapped_column(default=300.0, nullable=False)

    payload: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)

    last_run_at: Mapped[datetime.datetime | None]
    last_run_status: Mapped[str | None]
    next_run_at: Mapped[datetime.datetime | None] = mapped_column(index=True)

    created_at: Mapped[datetime.datetime] = mapped_column(default=_utcnow, nullable=False)
    updated_at: Mapped[datetime.datetime] = mapped_column(
        default=_utcnow, onupdate=_utcnow, nullable=False
    )
    created_by: Mapped[str | None]

    # --- relationships ---
    executions: Mapped[list[JobExecutionTable]] = relationship(
        "JobExecutionTable",
        back_populates="job",
        cascade="all, delete-orphan",
    )


class JobExecutionTable(JobsBase):
    __tablename__ = "job_executions"
    __table_args__ = (
        Index("idx_job_executions_job_id", "job_id"),
        Index("idx_job_executions_status", "status"),
        Index("idx_job_executions_started_at", "started_at"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    job_id: Mapped[int] = mapped_column(
        ForeignKey("scheduled_jobs.id", ondelete="CASCADE"), nullable=False
    )
    job_name: Mapped[str] = mapped_column(nullable=False)
    execution_id: Mapped[str] = mapped_column(Text, unique=True, nullable=False)

    started_at: Mapped[datetime.datetime] = mapped_column(nullable=False)
    completed_at: Mapped[datetime.datetime | None]
    duration_ms: Mapped[int | None]

    status: Mapped[str] = mapped_column(nullable=False)
    retry_attempt: Mapped[int] = mapped_column(default=0, nullable=False)
    error_message: Mapped[str | None]
    error_details: Mapped[dict[str, Any] | None] = mapped_column(JSON)
    result: Mapped[Any] = mapped_column(JSON, nullable=True)

    created_at: Mapped[datetime.datetime] = mapped_column(default=_utcnow, nullable=False)

    # --- relationships ---
    job: Mapped[ScheduledJobTable] = relationship(
        "ScheduledJobTable", back_populates="executions"
    )
