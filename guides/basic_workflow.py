"""Simple example running a two-step workflow in process."""

import asyncio
import json

from flowline import Dispatcher, TaskRunner, WorkflowFactory, default_registry
from flowline.factory import parse_definition
from flowline.persistence import InMemoryEntityStore
from flowline.queries import get_workflow_results


async def main():
    """Compute a polygon area and report on it."""
    store = InMemoryEntityStore()
    registry = default_registry(store)
    factory = WorkflowFactory(store, registry, strict_handlers=True)

    definition = parse_definition(
        {
            "name": "polygon_report",
            "steps": [
                {"taskType": "polygonArea", "stepNumber": 1, "name": "area"},
                {
                    "taskType": "reportGeneration",
                    "stepNumber": 2,
                    "name": "report",
                    "dependsOn": "area",
                },
            ],
        }
    )
    polygon = {
        "type": "Polygon",
        "coordinates": [[[0, 0], [0, 1], [1, 1], [1, 0], [0, 0]]],
    }
    workflow = await factory.create_workflow(definition, "client-1", json.dumps(polygon))
    print(f"Workflow created: {workflow.workflow_id}")

    dispatcher = Dispatcher(store, TaskRunner(store, registry), poll_interval=0)
    outcomes = await dispatcher.drain()
    print(f"Tasks run: {len(outcomes)}")

    results = await get_workflow_results(store, workflow.workflow_id)
    print(json.dumps(results.model_dump(mode="json"), indent=2))


if __name__ == "__main__":
    asyncio.run(main())
