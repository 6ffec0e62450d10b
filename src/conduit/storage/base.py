"""Persistence boundary consumed by the workflow engine.

The host application supplies implementations of these two interfaces.
:class:`~conduit.storage.memory.InMemoryStore` and
:class:`~conduit.storage.postgres.PostgresStore` ship with conduit.
"""

from __future__ import annotations

import abc
from datetime import datetime
from typing import Any

from conduit.workflows.models import (
    EntityType,
    ExecutionStatus,
    WorkflowDefinition,
    WorkflowExecution,
)


class WorkflowRepository(abc.ABC):
    """Workflow definitions and their execution records."""

    @abc.abstractmethod
    async def get_workflow(self, workflow_id: str) -> WorkflowDefinition | None: ...

    @abc.abstractmethod
    async def list_workflows(self) -> list[WorkflowDefinition]:
        """All workflows, newest first."""

    @abc.abstractmethod
    async def list_active_workflows(self) -> list[WorkflowDefinition]: ...

    @abc.abstractmethod
    async def save_workflow(self, workflow: WorkflowDefinition) -> WorkflowDefinition:
        """Insert or replace *workflow* by id."""

    @abc.abstractmethod
    async def delete_workflow(self, workflow_id: str) -> bool:
        """Delete the workflow and its executions; False if it did not exist."""

    @abc.abstractmethod
    async def create_execution(self, execution: WorkflowExecution) -> WorkflowExecution: ...

    @abc.abstractmethod
    async def finish_execution(
        self,
        execution_id: str,
        status: ExecutionStatus,
        *,
        result: dict[str, Any] | None = None,
        error: str | None = None,
        completed_at: datetime,
    ) -> bool:
        """Move a ``RUNNING`` execution to a terminal *status*.

        Returns False, leaving the row untouched, when the execution is
        missing or already terminal.
        """

    @abc.abstractmethod
    async def get_execution(self, execution_id: str) -> WorkflowExecution | None: ...

    @abc.abstractmethod
    async def list_executions(self, workflow_id: str, limit: int = 50) -> list[WorkflowExecution]:
        """Executions of one workflow, newest first."""

    @abc.abstractmethod
    async def count_executions(self, since: datetime | None = None) -> int: ...


class RecordRepository(abc.ABC):
    """Generic access to domain records (companies, contacts, deals, tasks, notes)."""

    @abc.abstractmethod
    async def create_record(self, entity_type: EntityType, data: dict[str, Any]) -> str:
        """Insert a record and return its new id."""

    @abc.abstractmethod
    async def get_record(self, entity_type: EntityType, record_id: str) -> dict[str, Any] | None:
        ...

    @abc.abstractmethod
    async def list_records(self, entity_type: EntityType) -> list[dict[str, Any]]: ...

    @abc.abstractmethod
    async def update_record(
        self, entity_type: EntityType, record_id: str, data: dict[str, Any]
    ) -> bool:
        """Merge *data* into the record; False if it does not exist."""

    @abc.abstractmethod
    async def delete_record(self, entity_type: EntityType, record_id: str) -> bool: ...

    @abc.abstractmethod
    async def add_tag(self, entity_type: EntityType, record_id: str, tag: str) -> bool: ...

    @abc.abstractmethod
    async def remove_tag(self, entity_type: EntityType, record_id: str, tag: str) -> bool: ...
