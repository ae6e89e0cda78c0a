"""Report compiled from the other tasks of a workflow."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from ..aggregator import parse_output
from ..constants import FAILED_TASK_MARKER
from ..models import Task, TaskStatus
from ..persistence import EntityStore

logger = logging.getLogger(__name__)


class ReportGenerationHandler:
    """Summarizes the outputs of every other task in the workflow."""

    def __init__(self, store: EntityStore) -> None:
        self._store = store

    async def run(self, task: Task) -> dict[str, Any]:
        logger.info(f"Generating report for task {task.task_id}")
        tasks = await self._store.list_tasks(task.workflow_id)
        results = {r.result_id: r for r in await self._store.list_results(task.workflow_id)}

        entries: list[dict[str, Any]] = []
        completed = failed = 0
        for other in tasks:
            if other.task_id == task.task_id:
                continue
            entry: dict[str, Any] = {
                "task_id": other.task_id,
                "type": other.task_type,
                "status": other.status.value,
            }
            if other.status == TaskStatus.COMPLETED and other.result_id in results:
                completed += 1
                entry["output"] = parse_output(results[other.result_id].data)
            elif other.status == TaskStatus.FAILED:
                failed += 1
                entry["error"] = other.error or FAILED_TASK_MARKER
            entries.append(entry)

        logger.info(f"Report generated for workflow {task.workflow_id}")
        return {
            "workflow_id": task.workflow_id,
            "tasks": entries,
            "final_report": (
                f"Workflow completed with {completed} successful tasks "
                f"and {failed} failed tasks."
            ),
            "generated_at": datetime.now(timezone.utc).isoformat(),
        }
