"""Derivation of workflow status and final report from task states.

Everything except :func:`refresh_workflow` is a pure function of its
arguments. The report's ``completed_at`` is taken from the tasks' own
``finished_at`` timestamps rather than the clock, so recomputing the
aggregate for unchanged tasks yields the same serialized report.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Iterable, Optional, Sequence

from .constants import FAILED_TASK_MARKER
from .models import (
    FinalReport,
    Result,
    Task,
    TaskStatus,
    TaskSummary,
    Workflow,
    WorkflowStatus,
)
from .persistence import EntityStore

logger = logging.getLogger(__name__)


def derive_status(tasks: Sequence[Task]) -> WorkflowStatus:
    if any(t.status == TaskStatus.FAILED for t in tasks):
        return WorkflowStatus.FAILED
    if tasks and all(t.status == TaskStatus.COMPLETED for t in tasks):
        return WorkflowStatus.COMPLETED
    return WorkflowStatus.IN_PROGRESS


def parse_output(data: str) -> Any:
    """Decode result data, keeping non-JSON payloads as raw strings."""
    try:
        return json.loads(data)
    except (TypeError, ValueError):
        return data


def summarize_task(
    task: Task, result: Optional[Result], workflow_status: WorkflowStatus
) -> TaskSummary:
    summary = TaskSummary(
        task_id=task.task_id,
        task_type=task.task_type,
        step_number=task.step_number,
        name=task.name,
        status=task.status,
    )
    if task.status == TaskStatus.COMPLETED and result is not None:
        summary.output = parse_output(result.data)
    elif task.status == TaskStatus.FAILED:
        summary.error = task.error or FAILED_TASK_MARKER
    elif workflow_status == WorkflowStatus.FAILED:
        # Never ran: blocked behind a failed dependency.
        summary.skipped = True
    return summary


def build_report(
    workflow: Workflow,
    tasks: Sequence[Task],
    results: Iterable[Result],
    status: WorkflowStatus,
) -> FinalReport:
    by_task = {r.task_id: r for r in results}
    ordered = sorted(tasks, key=lambda t: (t.step_number, t.sequence))
    finished = [t.finished_at for t in ordered if t.finished_at is not None]
    return FinalReport(
        workflow_id=workflow.workflow_id,
        client_id=workflow.client_id,
        status=status,
        completed_at=max(finished) if finished else None,
        tasks=[summarize_task(t, by_task.get(t.task_id), status) for t in ordered],
    )


def aggregate(
    workflow: Workflow, tasks: Sequence[Task], results: Iterable[Result]
) -> tuple[WorkflowStatus, Optional[str]]:
    """Return the workflow's status and serialized final report.

    The report is only produced for terminal statuses. A workflow that is
    already terminal keeps its status.
    """
    status = derive_status(tasks)
    if workflow.status.is_terminal and status != workflow.status:
        logger.warning(
            f"Workflow {workflow.workflow_id} is {workflow.status.value}; "
            f"ignoring recomputed status {status.value}"
        )
        status = workflow.status
    if not status.is_terminal:
        return status, None
    report = build_report(workflow, tasks, results, status)
    return status, report.model_dump_json()


async def refresh_workflow(store: EntityStore, workflow_id: str) -> Optional[Workflow]:
    """Recompute and persist the aggregate for ``workflow_id``."""
    workflow = await store.get_workflow(workflow_id)
    if workflow is None:
        logger.warning(f"Cannot aggregate unknown workflow {workflow_id}")
        return None
    tasks = await store.list_tasks(workflow_id)
    results = await store.list_results(workflow_id)
    status, final_result = aggregate(workflow, tasks, results)
    if status != workflow.status or final_result != workflow.final_result:
        await store.update_workflow(workflow_id, status, final_result)
        logger.info(f"Workflow {workflow_id} is now {status.value}")
    return workflow.model_copy(update={"status": status, "final_result": final_result})
