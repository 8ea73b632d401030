"""Tests for TaskRegistry."""

from typing import ClassVar

import pytest
from pydantic import BaseModel

from jobspine.core.errors import PayloadDecodeError, UnknownTaskTypeError
from jobspine.execution.context import JobContext
from jobspine.execution.registry import (
    AsyncFunctionTask,
    FunctionTask,
    TaskRegistry,
    get_default_registry,
    reset_default_registry,
)


class Greeting(BaseModel):
    """Say hello."""

    task_type: ClassVar[str] = "greet"

    name: str
    times: int = 1

    def execute(self, ctx: JobContext) -> str:
        return " ".join([f"hello {self.name}"] * self.times)


@pytest.fixture
def ctx() -> JobContext:
    return JobContext(execution_id="e", job_id=1, job_name="j", task_type="greet")


class TestRegistration:
    def test_function_decorator(self, ctx):
        registry = TaskRegistry()

        @registry.task("echo")
        def echo(ctx, payload):
            """Echo the payload."""
            return payload

        task = registry.build("echo", {"a": 1})
        assert isinstance(task, FunctionTask)
        assert task.execute(ctx) == {"a": 1}
        assert registry.get_metadata("echo")["description"] == "Echo the payload."

    def test_async_function_decorator(self):
        registry = TaskRegistry()

        @registry.task("aecho")
        async def aecho(ctx, payload):
            return payload

        assert isinstance(registry.build("aecho"), AsyncFunctionTask)

    def test_pydantic_model(self, ctx):
        registry = TaskRegistry()
        registry.register_model(Greeting)

        task = registry.build("greet", {"name": "ops", "times": 2})
        assert task.execute(ctx) == "hello ops hello ops"
        assert registry.get_metadata("greet")["description"] == "Say hello."

    def test_model_without_task_type_rejected(self):
        class Nameless(BaseModel):
            def execute(self, ctx):
                return None

        with pytest.raises(ValueError):
            TaskRegistry().register_model(Nameless)

    def test_listing_and_unregister(self):
        registry = TaskRegistry()
        registry.register("b", lambda payload: FunctionTask(lambda c, p: None, payload))
        registry.register_model(Greeting)

        assert registry.list_task_types() == ["b", "greet"]
        assert registry.has("b")
        assert registry.unregister("b") is True
        assert registry.unregister("b") is False
        registry.clear()
        assert registry.list_task_types() == []


class TestBuildErrors:
    def test_unknown_task_type(self):
        registry = TaskRegistry()
        registry.register_model(Greeting)

        with pytest.raises(UnknownTaskTypeError) as exc_info:
            registry.build("missing", {})
        assert exc_info.value.to_dict()["kind"] == "InvalidConfig"
        assert exc_info.value.retryable is False

    def test_payload_rejected(self):
        registry = TaskRegistry()
        registry.register_model(Greeting)

        with pytest.raises(PayloadDecodeError) as exc_info:
            registry.build("greet", {"times": "many"})
        assert exc_info.value.to_dict()["kind"] == "InvalidConfig"

    def test_factory_without_execute(self):
        registry = TaskRegistry()
        registry.register("odd", lambda payload: object())

        with pytest.raises(PayloadDecodeError):
            registry.build("odd", {})


class TestDefaultRegistry:
    def test_singleton_and_reset(self):
        first = get_default_registry()
        assert get_default_registry() is first
        reset_default_registry()
        assert get_default_registry() is not first
