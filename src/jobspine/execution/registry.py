"""Task Registry: task-type name → factory that builds runnable tasks.

Manifesto:
The scheduler only knows a job's ``task_type`` string and its stored JSON
payload. The registry turns that pair into an object with an
``execute(ctx)`` method, and decouples registration (at import time or
startup) from resolution (at dispatch time). Injectable instances keep
tests isolated; a module-level default serves applications.

ARCHITECTURE
────────────
::

    TaskRegistry
      ├── .register(task_type, factory)   ─ factory(payload) -> Task
      ├── .register_model(Model)          ─ pydantic model with task_type ClassVar
      ├── .task(task_type)                ─ decorator for plain functions
      ├── .build(task_type, payload)      ─ resolve + construct
      ├── .has(task_type)                 ─ existence check
      └── .list_task_types()              ─ all registered names

    build() errors:
      unknown task_type        → UnknownTaskTypeError
      factory raised           → PayloadDecodeError (cause preserved)

    get_default_registry()     ─ module-level singleton
    reset_default_registry()   ─ clear for testing

Tags:
    jobspine, execution, registry, task-registry, lookup
"""

from __future__ import annotations

import inspect
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Protocol, TypeVar, runtime_checkable

from jobspine.core.errors import PayloadDecodeError, UnknownTaskTypeError
from jobspine.execution.context import JobContext

M = TypeVar("M")


@runtime_checkable
class Task(Protocol):
    """Executable unit built from a job's payload.

    ``execute`` may be a plain method (run on the executor's thread pool)
    or a coroutine function (run on the event loop). It returns an optional
    JSON-compatible result or raises.
    """

    def execute(self, ctx: JobContext) -> Any | Awaitable[Any]: ...


TaskFactory = Callable[[dict[str, Any]], Task]


@dataclass
class FunctionTask:
    """Adapts ``fn(ctx, payload)`` to the Task protocol."""

    fn: Callable[[JobContext, dict[str, Any]], Any]
    payload: dict[str, Any]

    def execute(self, ctx: JobContext) -> Any:
        return self.fn(ctx, self.payload)


@dataclass
class AsyncFunctionTask:
    """Adapts ``async fn(ctx, payload)`` to the Task protocol."""

    fn: Callable[[JobContext, dict[str, Any]], Awaitable[Any]]
    payload: dict[str, Any]

    async def execute(self, ctx: JobContext) -> Any:
        return await self.fn(ctx, self.payload)


class TaskRegistry:
    """Injectable task registry.

    Example:
        >>> registry = TaskRegistry()
        >>>
        >>> @registry.task("send_report")
        ... async def send_report(ctx, payload):
        ...     return {"sent": payload["to"]}
        >>>
        >>> task = registry.build("send_report", {"to": "ops@example.com"})
    """

    def __init__(self) -> None:
        self._factories: dict[str, TaskFactory] = {}
        self._metadata: dict[str, dict[str, Any]] = {}

    def register(
        self,
        task_type: str,
        factory: TaskFactory,
        description: str | None = None,
    ) -> None:
        """Register a factory for *task_type*, replacing any previous one.

        Args:
            task_type: Name stored in ``JobDefinition.task_type``
            factory: ``factory(payload) -> Task``; raise to reject the payload
            description: Optional description for listings
        """
        if not task_type:
            raise ValueError("task_type must not be empty")
        self._factories[task_type] = factory
        self._metadata[task_type] = {
            "task_type": task_type,
            "description": description,
        }

    def register_model(self, model: type[M]) -> type[M]:
        """Register a pydantic model class whose instances are tasks.

        The class must define a ``task_type`` class variable and an
        ``execute(ctx)`` method; the payload is validated with
        ``model_validate``. Usable as a class decorator.
        """
        task_type = getattr(model, "task_type", None)
        if not isinstance(task_type, str) or not task_type:
            raise ValueError(f"{model.__name__} must define a task_type class variable")
        if not callable(getattr(model, "execute", None)):
            raise ValueError(f"{model.__name__} must define execute(ctx)")
        self.register(task_type, model.model_validate, description=inspect.getdoc(model))  # type: ignore[attr-defined]
        return model

    def task(self, task_type: str, description: str | None = None) -> Callable:
        """Decorator registering ``fn(ctx, payload)`` as a task type."""

        def decorator(fn: Callable) -> Callable:
            if inspect.iscoroutinefunction(fn):
                factory: TaskFactory = lambda payload: AsyncFunctionTask(fn, payload)  # noqa: E731
            else:
                factory = lambda payload: FunctionTask(fn, payload)  # noqa: E731
            self.register(task_type, factory, description=description or inspect.getdoc(fn))
            return fn

        return decorator

    def build(self, task_type: str, payload: dict[str, Any] | None = None) -> Task:
        """Construct the task for a job.

        Raises:
            UnknownTaskTypeError: Nothing registered under *task_type*
            PayloadDecodeError: The factory rejected the payload
        """
        factory = self._factories.get(task_type)
        if factory is None:
            raise UnknownTaskTypeError(task_type, available=list(self._factories))
        try:
            task = factory(dict(payload or {}))
        except Exception as e:
            raise PayloadDecodeError(task_type, str(e), cause=e) from e
        if not callable(getattr(task, "execute", None)):
            raise PayloadDecodeError(task_type, f"factory returned {type(task).__name__} without execute()")
        return task

    def has(self, task_type: str) -> bool:
        return task_type in self._factories

    def get_metadata(self, task_type: str) -> dict[str, Any] | None:
        return self._metadata.get(task_type)

    def list_task_types(self) -> list[str]:
        return sorted(self._factories)

    def unregister(self, task_type: str) -> bool:
        """Remove a task type. Returns False if it was not registered."""
        if task_type in self._factories:
            del self._factories[task_type]
            del self._metadata[task_type]
            return True
        return False

    def clear(self) -> None:
        """Clear all task types (for testing)."""
        self._factories.clear()
        self._metadata.clear()


# === GLOBAL DEFAULT REGISTRY ===

_default_registry: TaskRegistry | None = None


def get_default_registry() -> TaskRegistry:
    """Get the global default registry, creating it on first access."""
    global _default_registry
    if _default_registry is None:
        _default_registry = TaskRegistry()
    return _default_registry


def reset_default_registry() -> None:
    """Reset the global registry (for testing)."""
    global _default_registry
    _default_registry = None
