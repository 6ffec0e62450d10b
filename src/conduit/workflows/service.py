"""Workflow management plus the public trigger and execute API."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime, timedelta
from typing import Any

import httpx
from pydantic import ValidationError
from pydantic.alias_generators import to_camel

from conduit.providers.http import DEFAULT_TIMEOUT_SECONDS
from conduit.storage.base import RecordRepository, WorkflowRepository
from conduit.workflows.actions import ActionRunner, EmailSender
from conduit.workflows.dispatcher import TriggerDispatcher
from conduit.workflows.engine import WorkflowEngine
from conduit.workflows.errors import WorkflowDefinitionError, WorkflowNotFoundError
from conduit.workflows.models import (
    EntityType,
    ExecutionResult,
    TriggerType,
    WorkflowDefinition,
    WorkflowExecution,
    WorkflowStats,
)

logger = logging.getLogger(__name__)

_IMMUTABLE_FIELDS = frozenset({"id", "createdAt"})


def parse_workflow(document: dict[str, Any] | WorkflowDefinition) -> WorkflowDefinition:
    """Validate a workflow document, raising :class:`WorkflowDefinitionError`."""
    if isinstance(document, WorkflowDefinition):
        return document
    try:
        return WorkflowDefinition.model_validate(document)
    except ValidationError as exc:
        raise WorkflowDefinitionError(f"Invalid workflow definition: {exc}") from exc


class WorkflowService:
    """Facade wiring the store, action runner, engine and dispatcher together."""

    def __init__(
        self,
        workflows: WorkflowRepository,
        records: RecordRepository,
        *,
        email_sender: EmailSender | None = None,
        http_client: httpx.AsyncClient | None = None,
        http_timeout_seconds: float | None = DEFAULT_TIMEOUT_SECONDS,
        max_delay_seconds: float | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._workflows = workflows
        self.runner = ActionRunner(
            records,
            email_sender=email_sender,
            http_client=http_client,
            http_timeout_seconds=http_timeout_seconds,
            max_delay_seconds=max_delay_seconds,
            sleep=sleep,
        )
        self.engine = WorkflowEngine(workflows, self.runner)
        self.dispatcher = TriggerDispatcher(workflows, self.engine)

    # ------------------------------------------------------------------
    # Management
    # ------------------------------------------------------------------

    async def create_workflow(
        self, document: dict[str, Any] | WorkflowDefinition
    ) -> WorkflowDefinition:
        """Validate and store a new workflow; it always starts inactive."""
        workflow = parse_workflow(document).model_copy(update={"is_active": False})
        await self._workflows.save_workflow(workflow)
        logger.info("Created workflow %s (%s)", workflow.id, workflow.name)
        return workflow

    async def get_workflow(self, workflow_id: str) -> WorkflowDefinition:
        workflow = await self._workflows.get_workflow(workflow_id)
        if workflow is None:
            raise WorkflowNotFoundError(workflow_id)
        return workflow

    async def list_workflows(self) -> list[WorkflowDefinition]:
        return await self._workflows.list_workflows()

    async def update_workflow(
        self, workflow_id: str, changes: dict[str, Any]
    ) -> WorkflowDefinition:
        """Apply a partial update; ``id`` and ``createdAt`` cannot change."""
        current = await self.get_workflow(workflow_id)
        document = current.to_document()
        for key, value in changes.items():
            camel_key = to_camel(key)
            if camel_key in _IMMUTABLE_FIELDS:
                continue
            document[camel_key] = value
        document["updatedAt"] = datetime.now(UTC).isoformat()
        workflow = parse_workflow(document)
        await self._workflows.save_workflow(workflow)
        return workflow

    async def delete_workflow(self, workflow_id: str) -> None:
        if not await self._workflows.delete_workflow(workflow_id):
            raise WorkflowNotFoundError(workflow_id)
        logger.info("Deleted workflow %s", workflow_id)

    async def toggle_workflow(self, workflow_id: str) -> WorkflowDefinition:
        current = await self.get_workflow(workflow_id)
        workflow = current.model_copy(
            update={"is_active": not current.is_active, "updated_at": datetime.now(UTC)}
        )
        await self._workflows.save_workflow(workflow)
        logger.info(
            "Workflow %s is now %s", workflow_id, "active" if workflow.is_active else "inactive"
        )
        return workflow

    async def get_workflow_executions(
        self, workflow_id: str, limit: int = 50
    ) -> list[WorkflowExecution]:
        return await self._workflows.list_executions(workflow_id, limit)

    async def get_workflow_stats(self, now: datetime | None = None) -> WorkflowStats:
        now = now or datetime.now(UTC)
        workflows = await self._workflows.list_workflows()
        return WorkflowStats(
            total_workflows=len(workflows),
            active_workflows=sum(1 for w in workflows if w.is_active),
            total_executions=await self._workflows.count_executions(),
            recent_executions=await self._workflows.count_executions(since=now - timedelta(days=1)),
        )

    # ------------------------------------------------------------------
    # Trigger / execute
    # ------------------------------------------------------------------

    async def trigger_workflow(
        self,
        trigger_type: TriggerType | str,
        entity_type: EntityType | str | None = None,
        entity_data: dict[str, Any] | None = None,
    ) -> None:
        """Fire-and-forget: start every matching workflow in the background."""
        await self.dispatcher.dispatch(trigger_type, entity_type, entity_data)

    async def trigger_webhook(
        self, path: str, method: str = "POST", payload: dict[str, Any] | None = None
    ) -> None:
        await self.dispatcher.dispatch_webhook(path, method, payload)

    async def execute_workflow(
        self, workflow_id: str, trigger_data: dict[str, Any] | None = None
    ) -> ExecutionResult:
        return await self.engine.execute(workflow_id, trigger_data)

    async def drain(self) -> None:
        """Wait for every background run started by the trigger API."""
        await self.dispatcher.drain()

    async def aclose(self) -> None:
        await self.drain()
        await self.runner.aclose()
