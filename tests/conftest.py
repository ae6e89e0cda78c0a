"""Shared fixtures for flowline tests."""

from __future__ import annotations

from typing import Any, Optional

import pytest

import flowline.persistence as persistence
from flowline.errors import TaskExecutionError
from flowline.factory import WorkflowFactory, parse_definition
from flowline.handlers import HandlerRegistry
from flowline.persistence import InMemoryEntityStore


class RecordingHandler:
    """Handler double recording the tasks it ran."""

    def __init__(self, output: Any = None, error: Optional[str] = None) -> None:
        self.output = output
        self.error = error
        self.calls: list[str] = []

    async def run(self, task):
        self.calls.append(task.task_id)
        if self.error is not None:
            raise TaskExecutionError(self.error)
        if self.output is not None:
            return self.output
        return {"step": task.name or task.step_number}


@pytest.fixture
def store():
    return InMemoryEntityStore()


@pytest.fixture
def recording_handler():
    return RecordingHandler


@pytest.fixture
def registry():
    reg = HandlerRegistry()
    reg.register("echo", RecordingHandler())
    reg.register("boom", RecordingHandler(error="boom"))
    return reg


@pytest.fixture
def build_workflow(store, registry):
    """Return a coroutine function creating a workflow from a list of steps."""

    async def _build(steps, name="test_workflow", client_id="client-1", payload=None):
        factory = WorkflowFactory(store, registry)
        definition = parse_definition({"name": name, "steps": steps})
        return await factory.create_workflow(definition, client_id, payload)

    return _build


@pytest.fixture(autouse=True)
def _reset_store_singleton():
    persistence._store_instance = None
    yield
    persistence._store_instance = None
