"""Exception hierarchy for flowline."""

from __future__ import annotations

from typing import Optional


class FlowlineError(Exception):
    """Base class for all flowline errors."""


class ValidationError(FlowlineError):
    """A workflow definition is malformed, references unknown steps or is cyclic."""


class ConfigurationError(FlowlineError):
    """No handler is registered for a task type."""

    def __init__(self, message: str, task_type: Optional[str] = None) -> None:
        super().__init__(message)
        self.task_type = task_type


class TaskExecutionError(FlowlineError):
    """A handler could not process its task input."""


class PersistenceError(FlowlineError):
    """The entity store failed while reading or writing state."""

    def __init__(
        self,
        message: str,
        workflow_id: Optional[str] = None,
        task_id: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.workflow_id = workflow_id
        self.task_id = task_id


class NotFoundError(FlowlineError):
    """A workflow id is unknown to the store."""

    def __init__(self, workflow_id: str) -> None:
        super().__init__(f"Workflow {workflow_id} not found")
        self.workflow_id = workflow_id


class WorkflowNotCompletedError(FlowlineError):
    """Results were requested for a workflow that has not finished yet."""

    def __init__(self, workflow_id: str, current_status: str) -> None:
        super().__init__(f"Workflow {workflow_id} is not yet completed")
        self.workflow_id = workflow_id
        self.current_status = current_status
