import json

import pytest

from flowline.errors import TaskExecutionError
from flowline.handlers.polygon_area import PolygonAreaHandler, polygon_area, ring_area
from flowline.models import Task

RONDONIA = [
    [
        [-63.624885020050996, -10.311050368263523],
        [-63.624885020050996, -10.367865108370523],
        [-63.61278302732815, -10.367865108370523],
        [-63.61278302732815, -10.311050368263523],
        [-63.624885020050996, -10.311050368263523],
    ]
]


def _task(payload):
    return Task(
        workflow_id="wf-1",
        client_id="client-1",
        task_type="polygonArea",
        payload=payload if isinstance(payload, str) else json.dumps(payload),
    )


@pytest.mark.asyncio
async def test_polygon_area():
    result = await PolygonAreaHandler().run(_task({"type": "Polygon", "coordinates": RONDONIA}))

    assert result["unit"] == "square meters"
    assert result["area"] == pytest.approx(8363324, abs=5000)


@pytest.mark.asyncio
async def test_feature_wrapping_polygon():
    feature = {
        "type": "Feature",
        "properties": {},
        "geometry": {
            "type": "Polygon",
            "coordinates": [[[0, 0], [0, 1], [1, 1], [1, 0], [0, 0]]],
        },
    }
    result = await PolygonAreaHandler().run(_task(feature))
    assert result["area"] > 0


@pytest.mark.asyncio
async def test_multipolygon_sums_parts():
    multi = {"type": "MultiPolygon", "coordinates": [RONDONIA, RONDONIA]}
    result = await PolygonAreaHandler().run(_task(multi))
    assert result["area"] == pytest.approx(2 * polygon_area(RONDONIA))


def test_holes_are_subtracted():
    outer = [[0, 0], [0, 2], [2, 2], [2, 0], [0, 0]]
    hole = [[0.5, 0.5], [0.5, 1], [1, 1], [1, 0.5], [0.5, 0.5]]
    assert polygon_area([outer, hole]) == pytest.approx(
        abs(ring_area(outer)) - abs(ring_area(hole))
    )


def test_degenerate_ring_has_no_area():
    assert ring_area([[0, 0], [1, 1]]) == 0.0


@pytest.mark.asyncio
async def test_invalid_geometry_type():
    with pytest.raises(TaskExecutionError, match="Invalid GeoJSON type"):
        await PolygonAreaHandler().run(_task({"type": "Point", "coordinates": [0, 0]}))


@pytest.mark.asyncio
async def test_malformed_json():
    with pytest.raises(TaskExecutionError, match="invalid JSON"):
        await PolygonAreaHandler().run(_task("not valid json"))


@pytest.mark.asyncio
async def test_missing_payload():
    task = Task(workflow_id="wf-1", client_id="client-1", task_type="polygonArea")
    with pytest.raises(TaskExecutionError):
        await PolygonAreaHandler().run(task)
