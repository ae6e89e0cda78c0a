import json
from pathlib import Path

import pytest

from flowline.dispatch import Dispatcher
from flowline.factory import WorkflowFactory
from flowline.handlers import default_registry
from flowline.models import TaskStatus, WorkflowStatus
from flowline.persistence import SQLiteEntityStore
from flowline.queries import get_workflow_results, get_workflow_status
from flowline.runner import TaskRunner

EXAMPLES = Path(__file__).resolve().parents[2] / "examples"


def _dispatcher(store):
    return Dispatcher(store, TaskRunner(store, default_registry(store)), poll_interval=0)


@pytest.mark.asyncio
async def test_polygon_report_workflow_survives_restart(tmp_path):
    db_path = tmp_path / "flowline.db"
    store = SQLiteEntityStore(db_path)
    factory = WorkflowFactory(store, default_registry(store), strict_handlers=True)
    payload = (EXAMPLES / "area.geojson").read_text()

    workflow = await factory.create_workflow_from_yaml(
        EXAMPLES / "polygon_report.yml", "client-1", payload
    )
    first = await _dispatcher(store).run_once()
    assert first.succeeded
    status = await get_workflow_status(store, workflow.workflow_id)
    assert status.status == WorkflowStatus.IN_PROGRESS
    assert (status.completed_tasks, status.total_tasks) == (1, 2)
    store.close()

    store = SQLiteEntityStore(db_path)
    dispatcher = _dispatcher(store)
    assert await dispatcher.recover() == 1
    outcomes = await dispatcher.drain()
    assert [o.status for o in outcomes] == [TaskStatus.COMPLETED]
    assert await dispatcher.run_once() is None

    results = await get_workflow_results(store, workflow.workflow_id)
    assert results.status == WorkflowStatus.COMPLETED
    area, report = results.final_result["tasks"]
    assert area["task_type"] == "polygonArea"
    assert area["output"]["area"] == pytest.approx(8363324, abs=5000)
    assert report["output"]["tasks"][0]["output"] == area["output"]
    assert report["output"]["final_report"] == (
        "Workflow completed with 1 successful tasks and 0 failed tasks."
    )

    stored = await store.list_results(workflow.workflow_id)
    assert json.loads(stored[0].data)["unit"] == "square meters"
    store.close()


@pytest.mark.asyncio
async def test_invalid_geojson_fails_workflow_and_skips_report(tmp_path):
    store = SQLiteEntityStore(tmp_path / "flowline.db")
    factory = WorkflowFactory(store, default_registry(store))
    workflow = await factory.create_workflow_from_yaml(
        EXAMPLES / "polygon_report.yml",
        "client-1",
        json.dumps({"type": "Point", "coordinates": [0, 0]}),
    )

    await _dispatcher(store).drain()

    results = await get_workflow_results(store, workflow.workflow_id)
    assert results.status == WorkflowStatus.FAILED
    area, report = results.final_result["tasks"]
    assert area["status"] == "failed"
    assert area["error"] == "Invalid GeoJSON type: Point. Expected Polygon or MultiPolygon."
    assert report["status"] == "queued"
    assert report["skipped"] is True
    store.close()
