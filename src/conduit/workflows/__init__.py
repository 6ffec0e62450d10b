"""Workflow definitions, execution engine, dispatcher and scheduler."""

from conduit.workflows.models import (
    ActionType,
    ConditionOperator,
    EntityType,
    ExecutionResult,
    ExecutionStatus,
    TriggerType,
    WorkflowDefinition,
    WorkflowExecution,
)

__all__ = [
    "ActionType",
    "ConditionOperator",
    "EntityType",
    "ExecutionResult",
    "ExecutionStatus",
    "TriggerType",
    "WorkflowDefinition",
    "WorkflowExecution",
]
