"""Tests for structured logging helpers."""

import structlog
from structlog.testing import capture_logs

from jobspine.core.logging import (
    LogContext,
    bind_context,
    clear_context,
    configure_logging,
    get_logger,
)


def test_configure_and_log():
    configure_logging(level="INFO", json_format=True)
    with capture_logs() as logs:
        get_logger("jobspine.test").info("job_dispatched", job_name="nightly")

    assert logs[0]["event"] == "job_dispatched"
    assert logs[0]["job_name"] == "nightly"


def test_bind_and_clear_context():
    clear_context()
    bind_context(job_name="nightly")
    assert structlog.contextvars.get_contextvars()["job_name"] == "nightly"
    clear_context()
    assert "job_name" not in structlog.contextvars.get_contextvars()


def test_log_context_restores():
    clear_context()
    with LogContext(execution_id="exec-1"):
        assert structlog.contextvars.get_contextvars()["execution_id"] == "exec-1"
    assert "execution_id" not in structlog.contextvars.get_contextvars()
