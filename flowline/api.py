"""HTTP endpoints for creating workflows and querying their progress."""

from __future__ import annotations

import logging
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .errors import (
    ConfigurationError,
    NotFoundError,
    PersistenceError,
    ValidationError,
    WorkflowNotCompletedError,
)
from .factory import WorkflowFactory, parse_definition
from .handlers import HandlerRegistry, default_registry
from .models import WorkflowResultsView, WorkflowStatusView
from .persistence import EntityStore, get_repository
from .queries import get_workflow_results, get_workflow_status

logger = logging.getLogger(__name__)


class WorkflowCreate(BaseModel):
    client_id: str
    definition: dict[str, Any]
    payload: Optional[str] = None


class WorkflowCreated(BaseModel):
    workflow_id: str
    status: str


def create_app(
    store: Optional[EntityStore] = None,
    registry: Optional[HandlerRegistry] = None,
    strict_handlers: bool = False,
) -> FastAPI:
    store = store or get_repository()
    registry = registry or default_registry(store)
    factory = WorkflowFactory(store, registry, strict_handlers=strict_handlers)

    app = FastAPI(title="flowline api", version="0.1.0")

    @app.exception_handler(NotFoundError)
    async def _not_found(request: Request, exc: NotFoundError) -> JSONResponse:
        return JSONResponse(status_code=404, content={"message": "Workflow not found"})

    @app.exception_handler(WorkflowNotCompletedError)
    async def _not_completed(
        request: Request, exc: WorkflowNotCompletedError
    ) -> JSONResponse:
        return JSONResponse(
            status_code=400,
            content={
                "message": "Workflow is not yet completed",
                "current_status": exc.current_status,
            },
        )

    @app.exception_handler(ValidationError)
    @app.exception_handler(ConfigurationError)
    async def _rejected(request: Request, exc: Exception) -> JSONResponse:
        return JSONResponse(status_code=422, content={"message": str(exc)})

    @app.exception_handler(PersistenceError)
    async def _store_failure(request: Request, exc: PersistenceError) -> JSONResponse:
        logger.error(f"Store failure serving {request.url.path}: {exc}")
        return JSONResponse(status_code=503, content={"message": "Store unavailable"})

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.post("/workflow", response_model=WorkflowCreated, status_code=201)
    async def create_workflow(body: WorkflowCreate) -> WorkflowCreated:
        definition = parse_definition(body.definition)
        workflow = await factory.create_workflow(definition, body.client_id, body.payload)
        return WorkflowCreated(
            workflow_id=workflow.workflow_id, status=workflow.status.value
        )

    @app.get("/workflow/{workflow_id}/status", response_model=WorkflowStatusView)
    async def workflow_status(workflow_id: str) -> WorkflowStatusView:
        return await get_workflow_status(store, workflow_id)

    @app.get("/workflow/{workflow_id}/results", response_model=WorkflowResultsView)
    async def workflow_results(workflow_id: str) -> WorkflowResultsView:
        return await get_workflow_results(store, workflow_id)

    return app
