"""Registry mapping task types to handlers."""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Protocol

from ..errors import ConfigurationError
from ..models import Task


class TaskHandler(Protocol):
    """Executes one task type.

    ``run`` receives the task record (its input document is ``task.payload``)
    and returns any JSON-serializable value. Invalid input or internal
    failures are reported by raising :class:`flowline.errors.TaskExecutionError`.
    """

    async def run(self, task: Task) -> Any:
        ...


class HandlerRegistry:
    """Lookup table from task type tag to handler."""

    def __init__(self) -> None:
        self._handlers: Dict[str, TaskHandler] = {}

    def register(self, task_type: str, handler: TaskHandler) -> None:
        if not task_type:
            raise ValueError("task_type must be a non-empty string")
        self._handlers[task_type] = handler

    def get(self, task_type: str) -> TaskHandler:
        try:
            return self._handlers[task_type]
        except KeyError:
            raise ConfigurationError(
                f"No handler registered for task type {task_type!r}", task_type=task_type
            ) from None

    def missing(self, task_types: Iterable[str]) -> List[str]:
        """Return the task types that have no registered handler, sorted."""
        return sorted({t for t in task_types if t not in self._handlers})

    def validate(self, task_types: Iterable[str]) -> None:
        missing = self.missing(task_types)
        if missing:
            raise ConfigurationError(
                f"No handler registered for task types: {', '.join(missing)}",
                task_type=missing[0],
            )

    @property
    def task_types(self) -> List[str]:
        return sorted(self._handlers)

    def __contains__(self, task_type: object) -> bool:
        return task_type in self._handlers
