"""In-memory implementation of the entity store."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Dict, Optional, Sequence

from ..errors import PersistenceError
from ..models import Result, Task, TaskStatus, Workflow, WorkflowStatus
from .repository import EntityStore


class InMemoryEntityStore(EntityStore):
    """Store workflow state in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts. Records are copied on the way in and
    out so callers never share state with the store.
    """

    def __init__(self) -> None:
        self._workflows: Dict[str, Workflow] = {}
        self._tasks: Dict[str, Task] = {}
        self._results: Dict[str, Result] = {}
        self._sequence = 0
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    async def create_workflow(self, workflow: Workflow) -> Workflow:
        async with self._lock:
            self._workflows[workflow.workflow_id] = workflow.model_copy(deep=True)
        return workflow

    async def delete_workflow(self, workflow_id: str) -> None:
        async with self._lock:
            self._workflows.pop(workflow_id, None)
            task_ids = [
                t.task_id for t in self._tasks.values() if t.workflow_id == workflow_id
            ]
            for task_id in task_ids:
                del self._tasks[task_id]
            for result_id in [
                r.result_id for r in self._results.values() if r.task_id in task_ids
            ]:
                del self._results[result_id]

    async def create_tasks(self, tasks: Sequence[Task]) -> list[Task]:
        saved: list[Task] = []
        async with self._lock:
            for task in tasks:
                if task.workflow_id not in self._workflows:
                    raise PersistenceError(
                        f"Workflow {task.workflow_id} does not exist",
                        workflow_id=task.workflow_id,
                    )
                self._sequence += 1
                stored = task.model_copy(update={"sequence": self._sequence}, deep=True)
                self._tasks[stored.task_id] = stored
                saved.append(stored.model_copy(deep=True))
        return saved

    async def find_ready_task(self) -> Optional[Task]:
        async with self._lock:
            candidates = sorted(
                (t for t in self._tasks.values() if t.status == TaskStatus.QUEUED),
                key=lambda t: (t.step_number, t.sequence),
            )
            for task in candidates:
                if task.dependency_id is None:
                    return task.model_copy(deep=True)
                dependency = self._tasks.get(task.dependency_id)
                if dependency is not None and dependency.status == TaskStatus.COMPLETED:
                    return task.model_copy(deep=True)
        return None

    async def claim_task(self, task_id: str, progress: str) -> Optional[Task]:
        async with self._lock:
            task = self._tasks.get(task_id)
            if task is None or task.status != TaskStatus.QUEUED:
                return None
            task.status = TaskStatus.IN_PROGRESS
            task.progress = progress
            return task.model_copy(deep=True)

    async def complete_task(self, task_id: str, data: str) -> Result:
        async with self._lock:
            task = self._running_task(task_id)
            result = Result(task_id=task_id, data=data)
            self._results[result.result_id] = result
            task.result_id = result.result_id
            task.status = TaskStatus.COMPLETED
            task.progress = None
            task.finished_at = datetime.now(timezone.utc)
            return result.model_copy(deep=True)

    async def fail_task(self, task_id: str, error: str) -> Task:
        async with self._lock:
            task = self._running_task(task_id)
            task.status = TaskStatus.FAILED
            task.progress = None
            task.error = error
            task.finished_at = datetime.now(timezone.utc)
            return task.model_copy(deep=True)

    def _running_task(self, task_id: str) -> Task:
        task = self._tasks.get(task_id)
        if task is None or task.status != TaskStatus.IN_PROGRESS:
            raise PersistenceError(
                f"Task {task_id} is not in progress",
                workflow_id=task.workflow_id if task else None,
                task_id=task_id,
            )
        return task

    async def get_task(self, task_id: str) -> Optional[Task]:
        task = self._tasks.get(task_id)
        return task.model_copy(deep=True) if task else None

    async def list_tasks(self, workflow_id: str) -> list[Task]:
        tasks = [t for t in self._tasks.values() if t.workflow_id == workflow_id]
        tasks.sort(key=lambda t: (t.step_number, t.sequence))
        return [t.model_copy(deep=True) for t in tasks]

    async def list_results(self, workflow_id: str) -> list[Result]:
        task_ids = {t.task_id for t in self._tasks.values() if t.workflow_id == workflow_id}
        return [
            r.model_copy(deep=True) for r in self._results.values() if r.task_id in task_ids
        ]

    async def update_workflow(
        self,
        workflow_id: str,
        status: WorkflowStatus,
        final_result: Optional[str] = None,
    ) -> None:
        async with self._lock:
            wf = self._workflows.get(workflow_id)
            if wf is None:
                raise PersistenceError(
                    f"Workflow {workflow_id} does not exist", workflow_id=workflow_id
                )
            wf.status = status
            wf.final_result = final_result

    async def get_workflow(self, workflow_id: str) -> Optional[Workflow]:
        wf = self._workflows.get(workflow_id)
        return wf.model_copy(deep=True) if wf else None

    async def list_workflows(self) -> list[Workflow]:
        return [wf.model_copy(deep=True) for wf in self._workflows.values()]
