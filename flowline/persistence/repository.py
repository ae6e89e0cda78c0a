"""Store abstraction for workflow, task and result records."""

from __future__ import annotations

from typing import Optional, Protocol, Sequence

from ..models import Result, Task, Workflow, WorkflowStatus


class EntityStore(Protocol):
    """Protocol for persistence backends.

    Backends raise :class:`flowline.errors.PersistenceError` when the
    underlying engine fails.
    """

    async def create_workflow(self, workflow: Workflow) -> Workflow:
        """Persist a new workflow record."""

    async def delete_workflow(self, workflow_id: str) -> None:
        """Remove a workflow together with its tasks and their results."""

    async def create_tasks(self, tasks: Sequence[Task]) -> list[Task]:
        """Persist a batch of tasks, assigning creation sequence numbers."""

    async def find_ready_task(self) -> Optional[Task]:
        """Return the first queued task whose dependency is absent or completed.

        Ordered by ascending step number, then creation sequence.
        """

    async def claim_task(self, task_id: str, progress: str) -> Optional[Task]:
        """Atomically move a task from queued to in progress.

        Returns the claimed task, or ``None`` when the task was no longer
        queued.
        """

    async def complete_task(self, task_id: str, data: str) -> Result:
        """Persist the task's result and mark it completed."""

    async def fail_task(self, task_id: str, error: str) -> Task:
        """Mark the task failed and record the cause."""

    async def get_task(self, task_id: str) -> Optional[Task]:
        """Retrieve a task by id."""

    async def list_tasks(self, workflow_id: str) -> list[Task]:
        """Return the workflow's tasks ordered by step number and sequence."""

    async def list_results(self, workflow_id: str) -> list[Result]:
        """Return results produced by the workflow's tasks."""

    async def update_workflow(
        self,
        workflow_id: str,
        status: WorkflowStatus,
        final_result: Optional[str] = None,
    ) -> None:
        """Persist a recomputed workflow status and report."""

    async def get_workflow(self, workflow_id: str) -> Optional[Workflow]:
        """Retrieve the workflow by id."""

    async def list_workflows(self) -> list[Workflow]:
        """Return all persisted workflows."""
