"""Read-only status and results queries."""

from __future__ import annotations

import json

from .errors import NotFoundError, WorkflowNotCompletedError
from .models import TaskStatus, WorkflowResultsView, WorkflowStatusView
from .persistence import EntityStore


async def get_workflow_status(store: EntityStore, workflow_id: str) -> WorkflowStatusView:
    """Workflow status with completed/total task counts."""
    workflow = await store.get_workflow(workflow_id)
    if workflow is None:
        raise NotFoundError(workflow_id)
    tasks = await store.list_tasks(workflow_id)
    return WorkflowStatusView(
        workflow_id=workflow.workflow_id,
        status=workflow.status,
        completed_tasks=sum(1 for t in tasks if t.status == TaskStatus.COMPLETED),
        total_tasks=len(tasks),
    )


async def get_workflow_results(store: EntityStore, workflow_id: str) -> WorkflowResultsView:
    """Final report of a completed or failed workflow.

    Raises:
        NotFoundError: Unknown workflow id.
        WorkflowNotCompletedError: The workflow has not reached a terminal
            status; carries the current status.
    """
    workflow = await store.get_workflow(workflow_id)
    if workflow is None:
        raise NotFoundError(workflow_id)
    if not workflow.status.is_terminal:
        raise WorkflowNotCompletedError(workflow_id, workflow.status.value)
    return WorkflowResultsView(
        workflow_id=workflow.workflow_id,
        status=workflow.status,
        final_result=json.loads(workflow.final_result) if workflow.final_result else None,
    )
