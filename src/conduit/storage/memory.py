"""Process-local store implementing both repositories."""

from __future__ import annotations

import copy
import uuid
from datetime import UTC, datetime
from typing import Any

from conduit.storage.base import RecordRepository, WorkflowRepository
from conduit.workflows.models import (
    EntityType,
    ExecutionStatus,
    WorkflowDefinition,
    WorkflowExecution,
)


class InMemoryStore(WorkflowRepository, RecordRepository):
    """Dictionary-backed store for embedding, the CLI and tests.

    Values are deep-copied on the way in and out so callers never share
    mutable state with the store.
    """

    def __init__(self) -> None:
        self._workflows: dict[str, WorkflowDefinition] = {}
        self._executions: dict[str, WorkflowExecution] = {}
        self._records: dict[EntityType, dict[str, dict[str, Any]]] = {}

    # ------------------------------------------------------------------
    # Workflows
    # ------------------------------------------------------------------

    async def get_workflow(self, workflow_id: str) -> WorkflowDefinition | None:
        workflow = self._workflows.get(workflow_id)
        return workflow.model_copy(deep=True) if workflow else None

    async def list_workflows(self) -> list[WorkflowDefinition]:
        ordered = sorted(self._workflows.values(), key=lambda w: w.created_at, reverse=True)
        return [w.model_copy(deep=True) for w in ordered]

    async def list_active_workflows(self) -> list[WorkflowDefinition]:
        return [w for w in await self.list_workflows() if w.is_active]

    async def save_workflow(self, workflow: WorkflowDefinition) -> WorkflowDefinition:
        self._workflows[workflow.id] = workflow.model_copy(deep=True)
        return workflow

    async def delete_workflow(self, workflow_id: str) -> bool:
        if self._workflows.pop(workflow_id, None) is None:
            return False
        self._executions = {
            key: execution
            for key, execution in self._executions.items()
            if execution.workflow_id != workflow_id
        }
        return True

    # ------------------------------------------------------------------
    # Executions
    # ------------------------------------------------------------------

    async def create_execution(self, execution: WorkflowExecution) -> WorkflowExecution:
        self._executions[execution.id] = copy.deepcopy(execution)
        return execution

    async def finish_execution(
        self,
        execution_id: str,
        status: ExecutionStatus,
        *,
        result: dict[str, Any] | None = None,
        error: str | None = None,
        completed_at: datetime,
    ) -> bool:
        execution = self._executions.get(execution_id)
        if execution is None or execution.status != ExecutionStatus.RUNNING:
            return False
        execution.status = status
        execution.result = copy.deepcopy(result)
        execution.error = error
        execution.completed_at = completed_at
        return True

    async def get_execution(self, execution_id: str) -> WorkflowExecution | None:
        execution = self._executions.get(execution_id)
        return copy.deepcopy(execution) if execution else None

    async def list_executions(self, workflow_id: str, limit: int = 50) -> list[WorkflowExecution]:
        matching = [e for e in self._executions.values() if e.workflow_id == workflow_id]
        matching.sort(key=lambda e: e.started_at, reverse=True)
        return [copy.deepcopy(e) for e in matching[:limit]]

    async def count_executions(self, since: datetime | None = None) -> int:
        if since is None:
            return len(self._executions)
        return sum(1 for e in self._executions.values() if e.started_at >= since)

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    def _table(self, entity_type: EntityType) -> dict[str, dict[str, Any]]:
        return self._records.setdefault(EntityType(entity_type), {})

    async def create_record(self, entity_type: EntityType, data: dict[str, Any]) -> str:
        record_id = uuid.uuid4().hex
        now = datetime.now(UTC)
        self._table(entity_type)[record_id] = {
            **copy.deepcopy(data),
            "id": record_id,
            "tags": [],
            "created_at": now,
            "updated_at": now,
        }
        return record_id

    async def get_record(self, entity_type: EntityType, record_id: str) -> dict[str, Any] | None:
        record = self._table(entity_type).get(record_id)
        return copy.deepcopy(record) if record else None

    async def list_records(self, entity_type: EntityType) -> list[dict[str, Any]]:
        return [copy.deepcopy(r) for r in self._table(entity_type).values()]

    async def update_record(
        self, entity_type: EntityType, record_id: str, data: dict[str, Any]
    ) -> bool:
        record = self._table(entity_type).get(record_id)
        if record is None:
            return False
        patch = {k: v for k, v in copy.deepcopy(data).items() if k not in ("id", "tags")}
        record.update(patch)
        record["updated_at"] = datetime.now(UTC)
        return True

    async def delete_record(self, entity_type: EntityType, record_id: str) -> bool:
        return self._table(entity_type).pop(record_id, None) is not None

    async def add_tag(self, entity_type: EntityType, record_id: str, tag: str) -> bool:
        record = self._table(entity_type).get(record_id)
        if record is None:
            return False
        if tag not in record["tags"]:
            record["tags"].append(tag)
        return True

    async def remove_tag(self, entity_type: EntityType, record_id: str, tag: str) -> bool:
        record = self._table(entity_type).get(record_id)
        if record is None:
            return False
        if tag in record["tags"]:
            record["tags"].remove(tag)
        return True
