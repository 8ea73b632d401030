"""SQLAlchemy 2.0 ORM layer for the job store.

Modules
-------
base        JobsBase (declarative base) + UTCDateTime column type
session     Engine factory, JobsSession, init_db
tables      ScheduledJobTable, JobExecutionTable

Tags:
    jobspine, orm, sqlalchemy, declarative

Doc-Types:
    package-overview, module-index
"""

from __future__ import annotations

from jobspine.core.orm.base import JobsBase, UTCDateTime
from jobspine.core.orm.session import (
    JobsSession,
    create_engine_from_settings,
    create_jobs_engine,
    init_db,
    jobs_session_factory,
)
from jobspine.core.orm.tables import JobExecutionTable, ScheduledJobTable

__all__ = [
    "JobsBase",
    "UTCDateTime",
    "JobsSession",
    "create_engine_from_settings",
    "create_jobs_engine",
    "init_db",
    "jobs_session_factory",
    "JobExecutionTable",
    "ScheduledJobTable",
]
