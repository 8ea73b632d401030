"""Settings for the jobspine scheduler.

Configuration should be explicit, validated, and environment-driven. All
fields can be set through ``JOBSPINE_*`` environment variables or a ``.env``
file; unknown variables are ignored.

Fields
──────
enabled                  : Start the scheduler loop with the ``run`` command
database_url             : SQLAlchemy URL of the job store
poll_interval_seconds    : Scheduler tick interval
max_workers              : Global ceiling on concurrently running attempts
max_jobs_per_tick        : Optional cap on dispatches evaluated per tick
shutdown_grace_seconds   : How long stop() waits for running attempts
default_*                : Defaults for new job definitions
history_retention_days   : Default retention for the data_cleanup task
pool_size / pool_timeout : Bounded connection pool for the store

Examples:
    >>> settings = JobsSettings(poll_interval_seconds=1)
    >>> settings.default_max_retries
    3

Tags:
    settings, configuration, pydantic, environment, jobspine

Doc-Types:
    - API Reference
    - Configuration Guide
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _default_database_url() -> str:
    return f"sqlite:///{Path.home() / '.jobspine' / 'jobspine.db'}"


class JobsSettings(BaseSettings):
    """Scheduler, job-default and persistence settings."""

    model_config = SettingsConfigDict(
        env_prefix="JOBSPINE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Scheduler ────────────────────────────────────────────────
    enabled: bool = False
    poll_interval_seconds: float = Field(default=5.0, gt=0)
    max_workers: int = Field(default=8, gt=0)
    max_jobs_per_tick: int | None = Field(default=None, gt=0)
    shutdown_grace_seconds: float = Field(default=30.0, ge=0)

    # ── Job defaults ─────────────────────────────────────────────
    default_timeout: float = Field(default=300.0, gt=0)
    default_max_retries: int = Field(default=3, ge=0)
    default_retry_delay: float = Field(default=60.0, gt=0)
    default_retry_backoff_multiplier: float = Field(default=2.0, ge=1.0)
    history_retention_days: int = Field(default=30, gt=0)

    # ── Storage ──────────────────────────────────────────────────
    database_url: str = Field(default_factory=_default_database_url)
    pool_size: int = Field(default=5, gt=0)
    pool_timeout: float = Field(default=10.0, gt=0)
    echo_sql: bool = False

    # ── Observability ────────────────────────────────────────────
    log_level: str = "INFO"
    json_logs: bool | None = None


@lru_cache
def get_settings() -> JobsSettings:
    """Return the process-wide settings, read once from the environment."""
    return JobsSettings()


def reset_settings() -> None:
    """Drop the cached settings (for testing)."""
    get_settings.cache_clear()
