"""Tests for JobExecutor."""

import asyncio
import threading
from datetime import UTC, datetime

import pytest

from jobspine.core.errors import TaskCancelledError, TaskExecutionError
from jobspine.execution.context import JobContext
from jobspine.execution.executor import JobExecutor
from jobspine.execution.registry import AsyncFunctionTask, FunctionTask
from jobspine.scheduling.models import JobStatus


@pytest.fixture
def executor():
    executor = JobExecutor(max_threads=2)
    yield executor
    executor.shutdown(wait=False)


@pytest.fixture
def ctx() -> JobContext:
    return JobContext(execution_id="exec-1", job_id=1, job_name="nightly", task_type="report")


class TestSuccess:
    @pytest.mark.asyncio
    async def test_async_task(self, executor, ctx):
        async def fn(ctx, payload):
            await asyncio.sleep(0)
            return {"sent": payload["to"]}

        outcome = await executor.run(AsyncFunctionTask(fn, {"to": "ops"}), ctx, timeout=5)

        assert outcome.status == JobStatus.SUCCESS
        assert outcome.succeeded
        assert outcome.result == {"sent": "ops"}
        assert outcome.error is None
        assert ctx.deadline is not None

    @pytest.mark.asyncio
    async def test_sync_task_runs_in_worker_thread(self, executor, ctx):
        outcome = await executor.run(
            FunctionTask(lambda ctx, payload: threading.current_thread().name, {}), ctx, timeout=5
        )

        assert outcome.status == JobStatus.SUCCESS
        assert outcome.result.startswith("jobspine-task")

    @pytest.mark.asyncio
    async def test_result_made_json_safe(self, executor, ctx):
        stamp = datetime(2024, 1, 1, tzinfo=UTC)
        outcome = await executor.run(
            FunctionTask(lambda ctx, payload: {"at": stamp, "ids": {1}}, {}), ctx, timeout=5
        )
        assert outcome.result == {"at": "2024-01-01T00:00:00Z", "ids": [1]}


class TestFailures:
    @pytest.mark.asyncio
    async def test_exception_becomes_failed(self, executor, ctx):
        def fn(ctx, payload):
            raise ValueError("bad row")

        outcome = await executor.run(FunctionTask(fn, {}), ctx, timeout=5)

        assert outcome.status == JobStatus.FAILED
        assert outcome.error == "bad row"
        assert outcome.error_details["kind"] == "TaskFailed"
        assert outcome.error_details["cause"] == "ValueError: bad row"
        assert outcome.error_details["context"]["execution_id"] == "exec-1"

    @pytest.mark.asyncio
    async def test_jobspine_error_keeps_its_kind(self, executor, ctx):
        async def fn(ctx, payload):
            raise TaskExecutionError("upstream 503")

        outcome = await executor.run(AsyncFunctionTask(fn, {}), ctx, timeout=5)
        assert outcome.error_details["error_type"] == "TaskExecutionError"

    @pytest.mark.asyncio
    async def test_timeout_trips_token(self, executor, ctx):
        async def fn(ctx, payload):
            await asyncio.sleep(30)

        outcome = await executor.run(AsyncFunctionTask(fn, {}), ctx, timeout=0.05)

        assert outcome.status == JobStatus.TIMEOUT
        assert outcome.error_details["kind"] == "Timeout"
        assert ctx.is_cancelled
        assert ctx.cancel_token.reason == "timeout"

    @pytest.mark.asyncio
    async def test_cooperative_sync_timeout(self, executor, ctx):
        stopped = threading.Event()

        def fn(ctx, payload):
            while not ctx.cancel_token.wait(0.01):
                pass
            stopped.set()

        outcome = await executor.run(FunctionTask(fn, {}), ctx, timeout=0.05)

        assert outcome.status == JobStatus.TIMEOUT
        assert await asyncio.to_thread(stopped.wait, 5)

    @pytest.mark.asyncio
    async def test_task_cancelling_itself(self, executor, ctx):
        def fn(ctx, payload):
            raise TaskCancelledError("operator abort")

        outcome = await executor.run(FunctionTask(fn, {}), ctx, timeout=5)
        assert outcome.status == JobStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_outer_cancellation_propagates(self, executor, ctx):
        async def fn(ctx, payload):
            await asyncio.sleep(30)

        run = asyncio.ensure_future(executor.run(AsyncFunctionTask(fn, {}), ctx, timeout=30))
        await asyncio.sleep(0.01)
        run.cancel()

        with pytest.raises(asyncio.CancelledError):
            await run
        assert ctx.cancel_token.reason == "shutdown"

    @pytest.mark.asyncio
    async def test_hung_sync_task_does_not_starve_later_tasks(self, ctx):
        executor = JobExecutor(max_threads=1)
        release = threading.Event()

        def stuck(ctx, payload):
            release.wait(5)

        try:
            hung = await executor.run(FunctionTask(stuck, {}), ctx, timeout=0.05)
            quick_ctx = JobContext(
                execution_id="exec-2", job_id=1, job_name="nightly", task_type="report"
            )
            quick = await executor.run(
                FunctionTask(lambda ctx, payload: "ok", {}), quick_ctx, timeout=2
            )
        finally:
            release.set()
            executor.shutdown(wait=False)

        assert hung.status == JobStatus.TIMEOUT
        assert quick.status == JobStatus.SUCCESS
        assert quick.result == "ok"
        assert executor.retired_pools == 1


class TestAwaitableResults:
    @pytest.mark.asyncio
    async def test_sync_execute_returning_coroutine_is_awaited(self, executor, ctx):
        ran = []

        class Deferred:
            async def _body(self, ctx):
                await asyncio.sleep(0)
                ran.append(ctx.execution_id)
                return "done"

            def execute(self, ctx):
                return self._body(ctx)

        outcome = await executor.run(Deferred(), ctx, timeout=5)

        assert outcome.status == JobStatus.SUCCESS
        assert outcome.result == "done"
        assert ran == ["exec-1"]

    @pytest.mark.asyncio
    async def test_returned_coroutine_failure_is_reported(self, executor, ctx):
        class Deferred:
            async def _body(self):
                raise ValueError("late failure")

            def execute(self, ctx):
                return self._body()

        outcome = await executor.run(Deferred(), ctx, timeout=5)

        assert outcome.status == JobStatus.FAILED
        assert outcome.error == "late failure"
