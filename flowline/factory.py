"""Materialization of workflow definitions into persisted tasks."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Optional

import pydantic
import yaml

from .errors import ConfigurationError, PersistenceError, ValidationError
from .graph import build_step_graph
from .handlers import HandlerRegistry
from .models import Task, TaskStatus, Workflow, WorkflowDefinition, WorkflowStatus
from .persistence import EntityStore

logger = logging.getLogger(__name__)


def parse_definition(data: Any) -> WorkflowDefinition:
    """Validate a decoded definition document."""
    if not isinstance(data, dict):
        raise ValidationError("Workflow definition must be a mapping")
    try:
        return WorkflowDefinition.model_validate(data)
    except pydantic.ValidationError as exc:
        raise ValidationError(f"Malformed workflow definition: {exc}") from exc


def load_definition(path: str | Path) -> WorkflowDefinition:
    """Read and validate a YAML workflow definition."""
    try:
        with open(path) as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as exc:
        raise ValidationError(f"Workflow definition {path} is not valid YAML: {exc}") from exc
    return parse_definition(data)


class WorkflowFactory:
    """Creates a workflow and its tasks from a definition."""

    def __init__(
        self,
        store: EntityStore,
        registry: Optional[HandlerRegistry] = None,
        strict_handlers: bool = False,
    ) -> None:
        self._store = store
        self._registry = registry
        self._strict_handlers = strict_handlers

    def _check_handlers(self, definition: WorkflowDefinition) -> None:
        if self._registry is None:
            return
        missing = self._registry.missing(step.task_type for step in definition.steps)
        if not missing:
            return
        if self._strict_handlers:
            self._registry.validate(missing)
        logger.warning(
            f"Workflow {definition.name!r} uses task types without a handler: "
            f"{', '.join(missing)}; those tasks will fail when dispatched"
        )

    async def create_workflow(
        self,
        definition: WorkflowDefinition,
        client_id: str,
        payload: Optional[str] = None,
    ) -> Workflow:
        """Persist ``definition`` as a new workflow.

        Args:
            definition: Validated workflow definition.
            client_id: Client identifier stored on the workflow and its tasks.
            payload: Input document handed to every task.

        Returns:
            The created workflow in ``initial`` status.

        Raises:
            ValidationError: Unknown ``depends_on`` reference, duplicate step
                name or cyclic dependencies. Nothing is persisted.
            ConfigurationError: ``strict_handlers`` is set and a task type has
                no handler. Nothing is persisted.
            PersistenceError: The store failed; the partial workflow is
                removed before the error propagates.
        """
        try:
            graph = build_step_graph(definition.steps)
        except ValidationError as exc:
            logger.error(f"Rejected workflow definition {definition.name!r}: {exc}")
            raise
        try:
            self._check_handlers(definition)
        except ConfigurationError as exc:
            logger.error(f"Rejected workflow definition {definition.name!r}: {exc}")
            raise

        workflow = Workflow(
            client_id=client_id, name=definition.name, status=WorkflowStatus.INITIAL
        )
        tasks = [
            Task(
                workflow_id=workflow.workflow_id,
                client_id=client_id,
                task_type=step.task_type,
                step_number=step.step_number,
                name=step.name,
                status=TaskStatus.QUEUED,
                payload=payload,
            )
            for step in definition.steps
        ]
        # Links are resolved before the batch insert so no dependent task is
        # ever visible to the dispatcher without its dependency.
        for index, task in enumerate(tasks):
            dependency = graph.dependency_of(str(index))
            if dependency is not None:
                task.dependency_id = tasks[int(dependency)].task_id

        await self._store.create_workflow(workflow)
        try:
            saved = await self._store.create_tasks(tasks)
        except PersistenceError as exc:
            logger.error(
                f"Failed to persist tasks for workflow {workflow.workflow_id} "
                f"({definition.name!r}): {exc}"
            )
            try:
                await self._store.delete_workflow(workflow.workflow_id)
            except PersistenceError as cleanup_exc:
                logger.error(
                    f"Could not remove partial workflow {workflow.workflow_id}: {cleanup_exc}"
                )
            raise

        logger.info(
            f"Created workflow {workflow.workflow_id} ({definition.name!r}) "
            f"with {len(saved)} tasks for client {client_id}"
        )
        return workflow

    async def create_workflow_from_yaml(
        self, path: str | Path, client_id: str, payload: Optional[str] = None
    ) -> Workflow:
        return await self.create_workflow(load_definition(path), client_id, payload)
