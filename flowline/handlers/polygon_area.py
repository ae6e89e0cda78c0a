"""Geodesic area of GeoJSON polygons."""

from __future__ import annotations

import json
import logging
import math
from typing import Any, Sequence

from ..errors import TaskExecutionError
from ..models import Task

logger = logging.getLogger(__name__)

EARTH_RADIUS = 6371008.8

Position = Sequence[float]


def ring_area(coords: Sequence[Position]) -> float:
    """Signed area in square meters of a ring projected on a sphere."""
    n = len(coords)
    if n <= 2:
        return 0.0
    total = 0.0
    for i in range(n):
        if i == n - 2:
            lower, middle, upper = n - 2, n - 1, 0
        elif i == n - 1:
            lower, middle, upper = n - 1, 0, 1
        else:
            lower, middle, upper = i, i + 1, i + 2
        p1, p2, p3 = coords[lower], coords[middle], coords[upper]
        total += (math.radians(p3[0]) - math.radians(p1[0])) * math.sin(
            math.radians(p2[1])
        )
    return total * EARTH_RADIUS * EARTH_RADIUS / 2


def polygon_area(rings: Sequence[Sequence[Position]]) -> float:
    """Outer ring area minus the area of its holes."""
    if not rings:
        return 0.0
    area = abs(ring_area(rings[0]))
    for hole in rings[1:]:
        area -= abs(ring_area(hole))
    return area


def geometry_area(geometry: dict[str, Any]) -> float:
    geometry_type = geometry.get("type")
    if geometry_type == "Polygon":
        return polygon_area(geometry["coordinates"])
    if geometry_type == "MultiPolygon":
        return sum(polygon_area(p) for p in geometry["coordinates"])
    raise TaskExecutionError(
        f"Invalid GeoJSON type: {geometry_type}. Expected Polygon or MultiPolygon."
    )


class PolygonAreaHandler:
    """Computes the area of the task's GeoJSON polygon in square meters."""

    async def run(self, task: Task) -> dict[str, Any]:
        logger.info(f"Calculating polygon area for task {task.task_id}")
        try:
            document = json.loads(task.payload or "")
        except json.JSONDecodeError as exc:
            raise TaskExecutionError(
                f"Failed to calculate polygon area: invalid JSON ({exc})"
            ) from exc
        if not isinstance(document, dict):
            raise TaskExecutionError("Failed to calculate polygon area: expected an object")

        geometry = document.get("geometry") if document.get("type") == "Feature" else document
        if not isinstance(geometry, dict):
            raise TaskExecutionError("Failed to calculate polygon area: Feature has no geometry")
        try:
            area = geometry_area(geometry)
        except (KeyError, IndexError, TypeError) as exc:
            raise TaskExecutionError(
                f"Failed to calculate polygon area: malformed coordinates ({exc})"
            ) from exc

        logger.debug(f"Polygon area for task {task.task_id}: {area} square meters")
        return {"area": area, "unit": "square meters"}
