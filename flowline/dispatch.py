"""Polling dispatcher that runs ready tasks one at a time."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from .aggregator import refresh_workflow
from .constants import DEFAULT_POLL_INTERVAL, INTERRUPTED_TASK_MARKER
from .errors import PersistenceError
from .models import TaskStatus
from .persistence import EntityStore
from .runner import TaskOutcome, TaskRunner

logger = logging.getLogger(__name__)

SleepFn = Callable[[float], Awaitable[None]]


class Dispatcher:
    """Service responsible for selecting and running ready tasks.

    Only one iteration runs at a time: each poll selects at most one task
    and waits for it to finish before sleeping ``poll_interval`` seconds.
    ``sleep`` is injectable so tests can drive the loop without waiting.
    """

    def __init__(
        self,
        store: EntityStore,
        runner: TaskRunner,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        sleep: Optional[SleepFn] = None,
    ) -> None:
        self._store = store
        self._runner = runner
        self.poll_interval = poll_interval
        self._sleep = sleep or asyncio.sleep

    async def run_once(self) -> Optional[TaskOutcome]:
        """Run the first ready task, if any.

        Returns:
            The task's outcome, or ``None`` when nothing was ready.

        Raises:
            PersistenceError: The store failed during selection or execution.
        """
        task = await self._store.find_ready_task()
        if task is None:
            return None

        logger.debug(
            f"Dispatching task {task.task_id} ({task.task_type}, step "
            f"{task.name or task.step_number}) of workflow {task.workflow_id}"
        )
        outcome = await self._runner.run(task)
        if outcome.error is not None:
            logger.error(
                f"Task {outcome.task_id} of workflow {outcome.workflow_id} failed: "
                f"{outcome.error}. Task status has already been updated."
            )
        return outcome

    async def _iteration(self) -> Optional[TaskOutcome]:
        try:
            return await self.run_once()
        except PersistenceError as exc:
            logger.error(
                f"Store failure during dispatch (workflow={exc.workflow_id}, "
                f"task={exc.task_id}): {exc}. Retrying after {self.poll_interval}s"
            )
            return None

    async def run(
        self,
        stop_event: Optional[asyncio.Event] = None,
        max_iterations: Optional[int] = None,
    ) -> int:
        """Poll until ``stop_event`` is set or ``max_iterations`` are spent.

        Returns:
            Number of tasks that were run.
        """
        stop_event = stop_event or asyncio.Event()
        iterations = 0
        executed = 0
        logger.info(f"Dispatcher started (poll interval {self.poll_interval}s)")
        while not stop_event.is_set():
            if max_iterations is not None and iterations >= max_iterations:
                break
            iterations += 1
            outcome = await self._iteration()
            if outcome is not None and outcome.claimed:
                executed += 1
            if stop_event.is_set():
                break
            await self._pause(stop_event)
        logger.info(f"Dispatcher stopped after {iterations} polls, {executed} tasks run")
        return executed

    async def _pause(self, stop_event: asyncio.Event) -> None:
        """Sleep for the poll interval, waking early when a stop is requested."""
        sleeper = asyncio.ensure_future(self._sleep(self.poll_interval))
        stopper = asyncio.ensure_future(stop_event.wait())
        _, pending = await asyncio.wait(
            {sleeper, stopper}, return_when=asyncio.FIRST_COMPLETED
        )
        for waiter in pending:
            waiter.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

    async def drain(self, max_tasks: Optional[int] = None) -> list[TaskOutcome]:
        """Run ready tasks back to back until none is left, without sleeping."""
        outcomes: list[TaskOutcome] = []
        while max_tasks is None or len(outcomes) < max_tasks:
            outcome = await self.run_once()
            if outcome is None:
                break
            outcomes.append(outcome)
        return outcomes

    async def recover(self) -> int:
        """Repair every non-terminal workflow before polling starts.

        With a single dispatcher, a task still in progress at start-up was
        orphaned by a crash or a store failure and is marked failed. The
        aggregate is then recomputed, which also repairs workflows that went
        stale between a task's terminal transition and aggregation.
        """
        refreshed = 0
        for workflow in await self._store.list_workflows():
            if workflow.status.is_terminal:
                continue
            for task in await self._store.list_tasks(workflow.workflow_id):
                if task.status == TaskStatus.IN_PROGRESS:
                    logger.warning(
                        f"Failing orphaned task {task.task_id} of workflow "
                        f"{workflow.workflow_id} (step {task.name or task.step_number})"
                    )
                    await self._store.fail_task(task.task_id, INTERRUPTED_TASK_MARKER)
            await refresh_workflow(self._store, workflow.workflow_id)
            refreshed += 1
        if refreshed:
            logger.info(f"Recomputed {refreshed} non-terminal workflows")
        return refreshed
