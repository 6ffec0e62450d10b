"""Workflow engine error taxonomy."""

from __future__ import annotations


class WorkflowError(RuntimeError):
    """Base class for workflow engine failures."""


class WorkflowDefinitionError(WorkflowError):
    """A workflow document failed validation."""


class WorkflowNotFoundError(WorkflowError):
    """No workflow exists with the requested id."""

    def __init__(self, workflow_id: str) -> None:
        super().__init__(f"Workflow not found: {workflow_id}")
        self.workflow_id = workflow_id


class WorkflowUnavailableError(WorkflowError):
    """The workflow is missing or inactive; no execution record was created."""

    def __init__(self, workflow_id: str) -> None:
        super().__init__("Workflow not found or inactive")
        self.workflow_id = workflow_id


class WorkflowRunError(WorkflowError):
    """A run ended ``FAILED``; the execution record already holds the error."""

    def __init__(self, message: str, execution_id: str) -> None:
        super().__init__(message)
        self.execution_id = execution_id


class ActionError(WorkflowError):
    """An action aborted the pipeline."""


class HttpActionError(ActionError):
    def __init__(self, status_code: int) -> None:
        super().__init__(f"HTTP request failed: {status_code}")
        self.status_code = status_code


class RecordNotFoundError(ActionError):
    def __init__(self, entity_type: str, record_id: str) -> None:
        super().__init__(f"{entity_type} record not found: {record_id}")
        self.entity_type = entity_type
        self.record_id = record_id


class UnsupportedEntityError(ActionError):
    def __init__(self, entity_type: str, operation: str = "create record") -> None:
        super().__init__(f"Cannot {operation} for type: {entity_type}")
        self.entity_type = entity_type


class UnknownActionError(ActionError):
    def __init__(self, action_type: str) -> None:
        super().__init__(f"Unknown action type: {action_type}")
        self.action_type = action_type


class DelayLimitError(ActionError):
    def __init__(self, seconds: float, limit: float) -> None:
        super().__init__(f"Delay of {seconds:g}s exceeds the configured maximum of {limit:g}s")
        self.seconds = seconds
        self.limit = limit
