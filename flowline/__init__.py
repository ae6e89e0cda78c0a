"""flowline: dependency-aware execution of multi-step workflows."""

from .aggregator import aggregate, refresh_workflow
from .dispatch import Dispatcher
from .errors import (
    ConfigurationError,
    FlowlineError,
    NotFoundError,
    PersistenceError,
    TaskExecutionError,
    ValidationError,
    WorkflowNotCompletedError,
)
from .factory import WorkflowFactory, load_definition
from .handlers import HandlerRegistry, default_registry
from .models import Result, Task, TaskStatus, Workflow, WorkflowDefinition, WorkflowStatus
from .persistence import get_repository
from .queries import get_workflow_results, get_workflow_status
from .runner import TaskOutcome, TaskRunner

__version__ = "0.1.0"
__all__ = [
    "ConfigurationError",
    "Dispatcher",
    "FlowlineError",
    "HandlerRegistry",
    "NotFoundError",
    "PersistenceError",
    "Result",
    "Task",
    "TaskExecutionError",
    "TaskOutcome",
    "TaskRunner",
    "TaskStatus",
    "ValidationError",
    "Workflow",
    "WorkflowDefinition",
    "WorkflowFactory",
    "WorkflowNotCompletedError",
    "WorkflowStatus",
    "aggregate",
    "default_registry",
    "get_repository",
    "get_workflow_results",
    "get_workflow_status",
    "load_definition",
    "refresh_workflow",
]
