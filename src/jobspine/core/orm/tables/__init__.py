"""Mapped table classes."""

from jobspine.core.orm.tables.jobs import JobExecutionTable, ScheduledJobTable

__all__ = ["JobExecutionTable", "ScheduledJobTable"]
