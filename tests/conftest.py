"""
Shared pytest fixtures for jobspine tests.

Every test gets its own SQLite file under ``tmp_path``; an in-memory
database is not shared safely between the scheduler's worker threads.
"""

import sys
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Generator

import pytest

# Ensure jobspine package is importable
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from jobspine.core.orm import create_engine_from_settings, init_db
from jobspine.core.settings import JobsSettings, reset_settings
from jobspine.execution.registry import TaskRegistry, reset_default_registry
from jobspine.scheduling.models import JobCreate
from jobspine.scheduling.scheduler import JobScheduler
from jobspine.scheduling.store import SqlJobStore


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Mark tests without explicit markers as unit tests."""
    for item in items:
        markers = {mark.name for mark in item.iter_markers()}
        if not markers.intersection({"unit", "integration", "slow"}):
            item.add_marker(pytest.mark.unit)


# =============================================================================
# Global State Cleanup
# =============================================================================


@pytest.fixture(autouse=True)
def clean_globals() -> Generator[None, None, None]:
    """Reset the default registry and cached settings around each test."""
    reset_default_registry()
    reset_settings()
    yield
    reset_default_registry()
    reset_settings()


# =============================================================================
# Store Fixtures
# =============================================================================


@pytest.fixture
def db_url(tmp_path: Path) -> str:
    return f"sqlite:///{tmp_path / 'jobs.db'}"


@pytest.fixture
def settings(db_url: str) -> JobsSettings:
    """Fast settings: short polls, tiny retry delays, no retries by default."""
    return JobsSettings(
        database_url=db_url,
        poll_interval_seconds=0.05,
        max_workers=4,
        shutdown_grace_seconds=1.0,
        default_timeout=5.0,
        default_max_retries=0,
        default_retry_delay=0.01,
        default_retry_backoff_multiplier=1.0,
    )


@pytest.fixture
def engine(settings: JobsSettings):
    engine = create_engine_from_settings(settings)
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def store(engine, settings: JobsSettings) -> SqlJobStore:
    return SqlJobStore(engine, settings)


@pytest.fixture
def registry() -> TaskRegistry:
    return TaskRegistry()


@pytest.fixture
def scheduler(store: SqlJobStore, registry: TaskRegistry, settings: JobsSettings):
    scheduler = JobScheduler(store, registry, settings=settings)
    yield scheduler
    scheduler.executor.shutdown(wait=False)


# =============================================================================
# Helpers
# =============================================================================


@pytest.fixture
def make_job(store: SqlJobStore):
    """Create a job and make it due immediately."""

    def _make(name: str = "job", task_type: str = "noop", *, due: bool = True, **kwargs):
        kwargs.setdefault("cron_expression", "0 0 * * *")
        job = store.create_job(JobCreate(name=name, task_type=task_type, **kwargs))
        if due:
            store.update_schedule(job.id, datetime.now(UTC) - timedelta(minutes=1))
            job = store.get_job(job.id)
        return job

    return _make
