"""Tests for the jobspine error hierarchy."""

import pytest

from jobspine.core.errors import (
    ConfigError,
    ErrorCategory,
    InvalidCronExpressionError,
    JobAlreadyExistsError,
    JobNotFoundError,
    PayloadDecodeError,
    PersistenceError,
    TaskCancelledError,
    TaskExecutionError,
    TaskTimeoutError,
    UnknownTaskTypeError,
    error_details,
    is_retryable,
)


class TestKinds:
    @pytest.mark.parametrize(
        "error,kind",
        [
            (UnknownTaskTypeError("missing"), "InvalidConfig"),
            (PayloadDecodeError("report", "bad payload"), "InvalidConfig"),
            (InvalidCronExpressionError("* *"), "InvalidConfig"),
            (TaskExecutionError("boom"), "TaskFailed"),
            (TaskTimeoutError(5.0), "Timeout"),
            (TaskCancelledError("stop"), "Cancelled"),
            (PersistenceError("disk full"), "Persistence"),
            (JobNotFoundError("nightly"), "NotFound"),
            (JobAlreadyExistsError("nightly"), "Conflict"),
        ],
    )
    def test_kind(self, error, kind):
        assert error.to_dict()["kind"] == kind

    def test_config_errors_never_retryable(self):
        assert isinstance(UnknownTaskTypeError("x"), ConfigError)
        assert is_retryable(UnknownTaskTypeError("x")) is False
        assert is_retryable(TaskExecutionError("x")) is True

    def test_stdlib_retryability(self):
        assert is_retryable(ConnectionError()) is True
        assert is_retryable(KeyError("k")) is False


class TestSerialization:
    def test_with_context(self):
        error = TaskExecutionError("failed").with_context(job_name="nightly", retry_attempt=2, shard=7)
        data = error.to_dict()

        assert data["category"] == ErrorCategory.EXECUTION.value
        assert data["context"]["job_name"] == "nightly"
        assert data["context"]["retry_attempt"] == 2
        assert data["context"]["shard"] == 7

    def test_cause_recorded(self):
        cause = OSError("connection reset")
        error = PersistenceError("write failed", cause=cause)

        assert error.__cause__ is cause
        assert error.to_dict()["cause"] == "OSError: connection reset"

    def test_error_details_wraps_foreign_exceptions(self):
        details = error_details(ZeroDivisionError("division by zero"))

        assert details["kind"] == "TaskFailed"
        assert details["message"] == "division by zero"
        assert details["cause"].startswith("ZeroDivisionError")

    def test_unknown_task_lists_available(self):
        error = UnknownTaskTypeError("missing", available=["a", "b"])
        assert "missing" in error.message
