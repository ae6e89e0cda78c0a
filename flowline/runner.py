"""Run-to-completion life-cycle of a single ready task."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Optional

from .aggregator import refresh_workflow
from .constants import STARTING_PROGRESS
from .errors import ConfigurationError, PersistenceError
from .handlers import HandlerRegistry
from .models import Task, TaskStatus
from .persistence import EntityStore

logger = logging.getLogger(__name__)


@dataclass
class TaskOutcome:
    """What happened to a task handed to :class:`TaskRunner`."""

    task_id: str
    workflow_id: str
    status: TaskStatus
    claimed: bool = True
    result_id: Optional[str] = None
    error: Optional[BaseException] = None

    @property
    def succeeded(self) -> bool:
        return self.status == TaskStatus.COMPLETED


class TaskRunner:
    """Executes one task through its handler and refreshes the workflow.

    Handler failures, including a missing handler, end the task as failed and
    are returned on the outcome rather than raised. Store failures also end
    the task as failed when the store allows it, then raise
    :class:`PersistenceError`.
    """

    def __init__(self, store: EntityStore, registry: HandlerRegistry) -> None:
        self._store = store
        self._registry = registry

    async def run(self, task: Task) -> TaskOutcome:
        claimed = await self._store.claim_task(task.task_id, STARTING_PROGRESS)
        if claimed is None:
            logger.info(
                f"Task {task.task_id} of workflow {task.workflow_id} was already claimed"
            )
            return TaskOutcome(
                task_id=task.task_id,
                workflow_id=task.workflow_id,
                status=task.status,
                claimed=False,
            )

        outcome = await self._execute(claimed)
        await refresh_workflow(self._store, claimed.workflow_id)
        return outcome

    async def _execute(self, task: Task) -> TaskOutcome:
        label = f"{task.task_type} for task {task.task_id} (step {task.name or task.step_number})"
        try:
            handler = self._registry.get(task.task_type)
            logger.info(f"Starting job {label}")
            output = await handler.run(task)
            data = json.dumps({} if output is None else output)
        except PersistenceError as exc:
            logger.error(f"Store failure while running job {label}: {exc}")
            await self._abandon(task, f"Store failure: {exc}")
            raise
        except Exception as exc:
            if isinstance(exc, ConfigurationError):
                logger.error(f"Cannot run job {label}: {exc}")
            else:
                logger.error(f"Error running job {label}: {exc}")
            await self._store.fail_task(task.task_id, str(exc) or type(exc).__name__)
            return TaskOutcome(
                task_id=task.task_id,
                workflow_id=task.workflow_id,
                status=TaskStatus.FAILED,
                error=exc,
            )

        try:
            result = await self._store.complete_task(task.task_id, data)
        except PersistenceError as exc:
            logger.error(f"Store failure while saving result of job {label}: {exc}")
            await self._abandon(task, f"Store failure while saving result: {exc}")
            raise
        logger.info(f"Job {label} completed successfully")
        return TaskOutcome(
            task_id=task.task_id,
            workflow_id=task.workflow_id,
            status=TaskStatus.COMPLETED,
            result_id=result.result_id,
        )

    async def _abandon(self, task: Task, error: str) -> None:
        """End a claimed task as failed after a store error.

        Claimed tasks are never re-queued. When the store is still failing the
        task stays in progress until :meth:`Dispatcher.recover` fails it.
        """
        try:
            await self._store.fail_task(task.task_id, error)
            await refresh_workflow(self._store, task.workflow_id)
        except PersistenceError as exc:
            logger.error(
                f"Could not mark task {task.task_id} of workflow {task.workflow_id} "
                f"as failed: {exc}"
            )
