"""Records persisted by the entity store and the documents built from them."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


def _new_id() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WorkflowStatus(str, Enum):
    INITIAL = "initial"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (WorkflowStatus.COMPLETED, WorkflowStatus.FAILED)


class TaskStatus(str, Enum):
    QUEUED = "queued"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.COMPLETED, TaskStatus.FAILED)


class Workflow(BaseModel):
    """A named collection of dependent tasks executed to one outcome."""

    workflow_id: str = Field(default_factory=_new_id)
    client_id: str
    name: Optional[str] = None
    status: WorkflowStatus = WorkflowStatus.INITIAL
    final_result: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)


class Task(BaseModel):
    """One unit of work, gated by at most one dependency."""

    task_id: str = Field(default_factory=_new_id)
    workflow_id: str
    client_id: str
    task_type: str
    step_number: int = 1
    name: Optional[str] = None
    status: TaskStatus = TaskStatus.QUEUED
    progress: Optional[str] = None
    dependency_id: Optional[str] = None
    result_id: Optional[str] = None
    payload: Optional[str] = None
    error: Optional[str] = None
    sequence: int = 0
    created_at: datetime = Field(default_factory=_utcnow)
    finished_at: Optional[datetime] = None


class Result(BaseModel):
    """Output of a successfully completed task."""

    result_id: str = Field(default_factory=_new_id)
    task_id: str
    data: str
    created_at: datetime = Field(default_factory=_utcnow)


class WorkflowStep(BaseModel):
    """Definition-time description of a task."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    task_type: str
    step_number: int
    name: Optional[str] = None
    depends_on: Optional[str] = None

    @field_validator("task_type")
    @classmethod
    def _ensure_task_type(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("taskType must be a non-empty string")
        return v


class WorkflowDefinition(BaseModel):
    """Declarative workflow: a name and its ordered steps."""

    name: str
    steps: List[WorkflowStep] = Field(default_factory=list)


class TaskSummary(BaseModel):
    """Per-task entry of a workflow's final report."""

    task_id: str
    task_type: str
    step_number: int
    name: Optional[str] = None
    status: TaskStatus
    output: Optional[Any] = None
    error: Optional[str] = None
    skipped: bool = False


class FinalReport(BaseModel):
    """Aggregated outcome written to ``Workflow.final_result``."""

    workflow_id: str
    client_id: str
    status: WorkflowStatus
    completed_at: Optional[datetime] = None
    tasks: List[TaskSummary] = Field(default_factory=list)


class WorkflowStatusView(BaseModel):
    workflow_id: str
    status: WorkflowStatus
    completed_tasks: int
    total_tasks: int


class WorkflowResultsView(BaseModel):
    workflow_id: str
    status: WorkflowStatus
    final_result: Optional[dict[str, Any]] = None
