"""Dispatcher scenarios."""

import asyncio
import json

import pytest

from flowline.aggregator import refresh_workflow
from flowline.dispatch import Dispatcher
from flowline.errors import PersistenceError
from flowline.models import TaskStatus, WorkflowStatus
from flowline.runner import TaskRunner


class FakeClock:
    def __init__(self):
        self.sleeps = []

    async def sleep(self, seconds):
        self.sleeps.append(seconds)


def _dispatcher(store, registry, clock=None, poll_interval=5.0):
    return Dispatcher(
        store,
        TaskRunner(store, registry),
        poll_interval=poll_interval,
        sleep=(clock or FakeClock()).sleep,
    )


class OrderRecorder:
    def __init__(self, order, fail_on=()):
        self.order = order
        self.fail_on = set(fail_on)

    async def run(self, task):
        self.order.append(task.name)
        if task.name in self.fail_on:
            raise RuntimeError(f"{task.name} failed")
        return {"name": task.name}


def _chain(*names):
    steps = []
    for number, name in enumerate(names, start=1):
        step = {"taskType": "record", "stepNumber": number, "name": name}
        if number > 1:
            step["dependsOn"] = names[number - 2]
        steps.append(step)
    return steps


@pytest.mark.asyncio
async def test_linear_chain_completes_in_step_order(build_workflow, store, registry):
    order = []
    registry.register("record", OrderRecorder(order))
    workflow = await build_workflow(_chain("one", "two", "three"))
    dispatcher = _dispatcher(store, registry)

    statuses = []
    for _ in range(3):
        outcome = await dispatcher.run_once()
        assert outcome.succeeded
        statuses.append((await store.get_workflow(workflow.workflow_id)).status)
    assert await dispatcher.run_once() is None

    assert order == ["one", "two", "three"]
    assert statuses == [
        WorkflowStatus.IN_PROGRESS,
        WorkflowStatus.IN_PROGRESS,
        WorkflowStatus.COMPLETED,
    ]
    report = json.loads((await store.get_workflow(workflow.workflow_id)).final_result)
    assert report["status"] == "completed"
    assert [t["output"] for t in report["tasks"]] == [
        {"name": "one"},
        {"name": "two"},
        {"name": "three"},
    ]
    results = await store.list_results(workflow.workflow_id)
    assert len(results) == 3


@pytest.mark.asyncio
async def test_mid_chain_failure_blocks_dependents(build_workflow, store, registry):
    order = []
    registry.register("record", OrderRecorder(order, fail_on={"two"}))
    workflow = await build_workflow(_chain("one", "two", "three"))
    dispatcher = _dispatcher(store, registry)

    outcomes = await dispatcher.drain()

    assert order == ["one", "two"]
    assert [o.status for o in outcomes] == [TaskStatus.COMPLETED, TaskStatus.FAILED]
    tasks = {t.name: t for t in await store.list_tasks(workflow.workflow_id)}
    assert tasks["three"].status == TaskStatus.QUEUED
    assert await dispatcher.run_once() is None

    wf = await store.get_workflow(workflow.workflow_id)
    assert wf.status == WorkflowStatus.FAILED
    report = json.loads(wf.final_result)
    one, two, three = report["tasks"]
    assert one["output"] == {"name": "one"}
    assert two["error"] == "two failed"
    assert three["status"] == "queued"
    assert three["skipped"] is True
    assert len(await store.list_results(workflow.workflow_id)) == 1


@pytest.mark.asyncio
async def test_independent_tasks_complete_regardless_of_order(build_workflow, store, registry):
    order = []
    registry.register("record", OrderRecorder(order))
    workflow = await build_workflow(
        [
            {"taskType": "record", "stepNumber": 3, "name": "c"},
            {"taskType": "record", "stepNumber": 1, "name": "a"},
            {"taskType": "record", "stepNumber": 2, "name": "b"},
        ]
    )
    await _dispatcher(store, registry).drain()

    assert order == ["a", "b", "c"]
    wf = await store.get_workflow(workflow.workflow_id)
    assert wf.status == WorkflowStatus.COMPLETED
    assert [t["step_number"] for t in json.loads(wf.final_result)["tasks"]] == [1, 2, 3]


@pytest.mark.asyncio
async def test_unknown_handler_fails_like_any_task(build_workflow, store, registry):
    workflow = await build_workflow(
        [
            {"taskType": "echo", "stepNumber": 1, "name": "first"},
            {"taskType": "teleport", "stepNumber": 2, "name": "second", "dependsOn": "first"},
            {"taskType": "echo", "stepNumber": 3, "name": "third", "dependsOn": "second"},
        ]
    )
    outcomes = await _dispatcher(store, registry).drain()

    assert [o.status for o in outcomes] == [TaskStatus.COMPLETED, TaskStatus.FAILED]
    wf = await store.get_workflow(workflow.workflow_id)
    assert wf.status == WorkflowStatus.FAILED
    entries = json.loads(wf.final_result)["tasks"]
    assert "teleport" in entries[1]["error"]
    assert entries[2]["skipped"] is True


@pytest.mark.asyncio
async def test_step_number_ties_use_creation_order(build_workflow, store, registry):
    order = []
    registry.register("record", OrderRecorder(order))
    await build_workflow(
        [
            {"taskType": "record", "stepNumber": 1, "name": "x"},
            {"taskType": "record", "stepNumber": 1, "name": "y"},
        ]
    )
    await build_workflow([{"taskType": "record", "stepNumber": 1, "name": "z"}])

    await _dispatcher(store, registry).drain()
    assert order == ["x", "y", "z"]


@pytest.mark.asyncio
async def test_workflow_status_only_moves_forward(build_workflow, store, registry):
    registry.register("record", OrderRecorder([], fail_on={"b"}))
    workflow = await build_workflow(
        [
            {"taskType": "record", "stepNumber": 1, "name": "a"},
            {"taskType": "record", "stepNumber": 2, "name": "b"},
            {"taskType": "record", "stepNumber": 3, "name": "c"},
        ]
    )
    rank = {
        WorkflowStatus.INITIAL: 0,
        WorkflowStatus.IN_PROGRESS: 1,
        WorkflowStatus.COMPLETED: 2,
        WorkflowStatus.FAILED: 2,
    }
    dispatcher = _dispatcher(store, registry)
    seen = [(await store.get_workflow(workflow.workflow_id)).status]
    while await dispatcher.run_once() is not None:
        seen.append((await store.get_workflow(workflow.workflow_id)).status)

    assert seen[-1] == WorkflowStatus.FAILED
    assert all(rank[a] <= rank[b] for a, b in zip(seen, seen[1:]))
    assert seen.count(WorkflowStatus.COMPLETED) == 0


@pytest.mark.asyncio
async def test_run_sleeps_between_polls(build_workflow, store, registry):
    await build_workflow(
        [
            {"taskType": "echo", "stepNumber": 1, "name": "a"},
            {"taskType": "echo", "stepNumber": 2, "name": "b", "dependsOn": "a"},
        ]
    )
    clock = FakeClock()
    dispatcher = _dispatcher(store, registry, clock=clock, poll_interval=2.5)

    executed = await dispatcher.run(max_iterations=4)

    assert executed == 2
    assert clock.sleeps == [2.5] * 4


@pytest.mark.asyncio
async def test_stop_event_ends_loop(store, registry):
    stop = asyncio.Event()

    class StoppingClock:
        def __init__(self):
            self.calls = 0

        async def sleep(self, seconds):
            self.calls += 1
            if self.calls == 3:
                stop.set()

    clock = StoppingClock()
    dispatcher = Dispatcher(store, TaskRunner(store, registry), sleep=clock.sleep)

    assert await dispatcher.run(stop_event=stop) == 0
    assert clock.calls == 3


@pytest.mark.asyncio
async def test_store_failure_does_not_stop_loop(build_workflow, store, registry, caplog):
    await build_workflow([{"taskType": "echo", "stepNumber": 1}])
    original = store.find_ready_task
    calls = {"n": 0}

    async def flaky_find():
        calls["n"] += 1
        if calls["n"] == 1:
            raise PersistenceError("database is locked")
        return await original()

    store.find_ready_task = flaky_find
    dispatcher = _dispatcher(store, registry)

    with caplog.at_level("ERROR"):
        executed = await dispatcher.run(max_iterations=2)
    assert executed == 1
    assert "database is locked" in caplog.text


@pytest.mark.asyncio
async def test_handler_failures_do_not_stop_loop(build_workflow, store, registry):
    await build_workflow([{"taskType": "boom", "stepNumber": 1}])
    await build_workflow([{"taskType": "echo", "stepNumber": 2}])

    executed = await _dispatcher(store, registry).run(max_iterations=3)
    assert executed == 2


@pytest.mark.asyncio
async def test_recover_repairs_stale_aggregate(build_workflow, store, registry):
    workflow = await build_workflow([{"taskType": "echo", "stepNumber": 1}])
    task = (await store.list_tasks(workflow.workflow_id))[0]
    # Simulate a crash after the terminal transition but before aggregation.
    await store.claim_task(task.task_id, "starting job...")
    await store.complete_task(task.task_id, '{"ok": true}')
    assert (await store.get_workflow(workflow.workflow_id)).status == WorkflowStatus.INITIAL

    refreshed = await _dispatcher(store, registry).recover()

    assert refreshed == 1
    wf = await store.get_workflow(workflow.workflow_id)
    assert wf.status == WorkflowStatus.COMPLETED
    assert json.loads(wf.final_result)["tasks"][0]["output"] == {"ok": True}


@pytest.mark.asyncio
async def test_recomputation_is_byte_identical(build_workflow, store, registry):
    workflow = await build_workflow(
        [{"taskType": "echo", "stepNumber": 1}, {"taskType": "boom", "stepNumber": 2}]
    )
    await _dispatcher(store, registry).drain()
    before = (await store.get_workflow(workflow.workflow_id)).final_result

    await refresh_workflow(store, workflow.workflow_id)
    after = (await store.get_workflow(workflow.workflow_id)).final_result
    assert before == after


@pytest.mark.asyncio
async def test_store_failure_in_handler_still_ends_workflow(build_workflow, store, registry):
    class StoreReading:
        async def run(self, task):
            raise PersistenceError("read timeout", workflow_id=task.workflow_id)

    registry.register("reader", StoreReading())
    workflow = await build_workflow([{"taskType": "reader", "stepNumber": 1}])

    executed = await _dispatcher(store, registry).run(max_iterations=5)

    assert executed == 0
    task = (await store.list_tasks(workflow.workflow_id))[0]
    assert task.status == TaskStatus.FAILED
    assert (await store.get_workflow(workflow.workflow_id)).status == WorkflowStatus.FAILED


@pytest.mark.asyncio
async def test_recover_fails_orphaned_tasks(build_workflow, store, registry):
    workflow = await build_workflow(
        [
            {"taskType": "echo", "stepNumber": 1, "name": "a"},
            {"taskType": "echo", "stepNumber": 2, "name": "b", "dependsOn": "a"},
        ]
    )
    first, second = await store.list_tasks(workflow.workflow_id)
    original = store.complete_task
    calls = {"n": 0}

    async def flaky_complete(task_id, data):
        calls["n"] += 1
        if calls["n"] == 1:
            raise PersistenceError("connection lost", task_id=task_id)
        return await original(task_id, data)

    async def broken_fail(task_id, error):
        raise PersistenceError("connection lost", task_id=task_id)

    store.complete_task = flaky_complete
    original_fail = store.fail_task
    store.fail_task = broken_fail
    dispatcher = _dispatcher(store, registry)
    await dispatcher.run(max_iterations=3)
    assert (await store.get_task(first.task_id)).status == TaskStatus.IN_PROGRESS

    store.fail_task = original_fail
    assert await dispatcher.recover() == 1

    orphan = await store.get_task(first.task_id)
    assert orphan.status == TaskStatus.FAILED
    assert orphan.error == "Interrupted before completion"
    assert (await store.get_task(second.task_id)).status == TaskStatus.QUEUED
    wf = await store.get_workflow(workflow.workflow_id)
    assert wf.status == WorkflowStatus.FAILED
    report = json.loads(wf.final_result)
    assert report["tasks"][1]["skipped"] is True


@pytest.mark.asyncio
async def test_stop_event_interrupts_poll_sleep(store, registry):
    stop = asyncio.Event()
    dispatcher = Dispatcher(store, TaskRunner(store, registry), poll_interval=60)

    async def stop_soon():
        await asyncio.sleep(0.05)
        stop.set()

    stopper = asyncio.create_task(stop_soon())
    executed = await asyncio.wait_for(dispatcher.run(stop_event=stop), timeout=5)
    await stopper

    assert executed == 0
