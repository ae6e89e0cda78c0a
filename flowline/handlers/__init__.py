"""Task handlers and the registry that selects them by task type."""

from __future__ import annotations

from ..persistence import EntityStore
from .polygon_area import PolygonAreaHandler
from .registry import HandlerRegistry, TaskHandler
from .report import ReportGenerationHandler

POLYGON_AREA = "polygonArea"
REPORT_GENERATION = "reportGeneration"


def default_registry(store: EntityStore) -> HandlerRegistry:
    """Registry with the built-in handlers."""
    registry = HandlerRegistry()
    registry.register(POLYGON_AREA, PolygonAreaHandler())
    registry.register(REPORT_GENERATION, ReportGenerationHandler(store))
    return registry


__all__ = [
    "HandlerRegistry",
    "TaskHandler",
    "PolygonAreaHandler",
    "ReportGenerationHandler",
    "POLYGON_AREA",
    "REPORT_GENERATION",
    "default_registry",
]
