"""Engine and session factories for the job store.

The store is used from worker threads (``asyncio.to_thread``), so every
engine gets a bounded connection pool; exhausting it raises
``sqlalchemy.exc.TimeoutError`` after ``pool_timeout`` seconds, which the
store surfaces as ``PersistenceError``.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from sqlalchemy import create_engine as _sa_create_engine
from sqlalchemy import event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, sessionmaker

from jobspine.core.orm.base import JobsBase
from jobspine.core.settings import JobsSettings


def create_jobs_engine(
    url: str = "sqlite:///jobspine.db",
    *,
    echo: bool = False,
    pool_size: int | None = None,
    max_overflow: int | None = 0,
    pool_timeout: float | None = None,
    **kwargs: Any,
) -> Engine:
    """Create a SQLAlchemy engine with sane defaults.

    Parameters
    ----------
    url:
        Database URL (``sqlite:///…``, ``postgresql://…``, etc.)
    echo:
        If ``True``, log all SQL to stdout.
    pool_size, max_overflow, pool_timeout:
        Connection pool bounds (ignored for in-memory SQLite).
    **kwargs:
        Extra arguments forwarded to ``sqlalchemy.create_engine``.
    """
    sa_url = make_url(url)
    in_memory = sa_url.get_backend_name() == "sqlite" and sa_url.database in (None, "", ":memory:")

    pool_kwargs: dict[str, Any] = {}
    if not in_memory:
        if pool_size is not None:
            pool_kwargs["pool_size"] = pool_size
        if max_overflow is not None:
            pool_kwargs["max_overflow"] = max_overflow
        if pool_timeout is not None:
            pool_kwargs["pool_timeout"] = pool_timeout

    if sa_url.get_backend_name() != "sqlite":
        return _sa_create_engine(url, echo=echo, **pool_kwargs, **kwargs)

    if not in_memory:
        Path(sa_url.database).expanduser().parent.mkdir(parents=True, exist_ok=True)

    kwargs.setdefault("connect_args", {"check_same_thread": False})
    engine = _sa_create_engine(url, echo=echo, **pool_kwargs, **kwargs)

    # Foreign keys are off by default in SQLite; the execution cascade needs them
    @event.listens_for(engine, "connect")
    def _set_sqlite_pragma(dbapi_connection: Any, _rec: Any) -> None:
        cursor = dbapi_connection.cursor()
        if not in_memory:
            cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.execute("PRAGMA busy_timeout=5000")
        cursor.close()

    return engine


def create_engine_from_settings(settings: JobsSettings) -> Engine:
    """Build the store engine described by *settings*."""
    return create_jobs_engine(
        settings.database_url,
        echo=settings.echo_sql,
        pool_size=settings.pool_size,
        pool_timeout=settings.pool_timeout,
    )


def init_db(engine: Engine) -> None:
    """Create the job tables if they do not exist."""
    # Imported for the side effect of registering the tables on the metadata
    from jobspine.core.orm import tables  # noqa: F401

    JobsBase.metadata.create_all(engine)


class JobsSession(Session):
    """Pre-configured session with ``expire_on_commit=False``.

    Prevents lazy-load surprises after commit when rows are converted to
    dataclasses outside the session.
    """

    def __init__(self, bind: Engine | None = None, **kwargs: Any) -> None:
        kwargs.setdefault("expire_on_commit", False)
        super().__init__(bind=bind, **kwargs)


def jobs_session_factory(engine: Engine) -> sessionmaker[JobsSession]:
    """Return a ``sessionmaker`` bound to *engine* that produces ``JobsSession`` instances."""
    return sessionmaker(bind=engine, class_=JobsSession)
