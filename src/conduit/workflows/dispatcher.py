"""Trigger dispatcher: match domain events to active workflows.

Each matching workflow runs in its own ``asyncio.Task`` wrapped in an error
boundary, so one failing workflow never prevents the others from running
for the same event.  Callers get the tasks back but need not await them.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from typing import Any

from conduit.storage.base import WorkflowRepository
from conduit.workflows.engine import WorkflowEngine
from conduit.workflows.errors import WorkflowError
from conduit.workflows.models import (
    EntityType,
    TriggerType,
    WebhookTrigger,
    WorkflowDefinition,
    normalize_webhook_path,
)
from conduit.workflows.templating import strict_equals

logger = logging.getLogger(__name__)


def filters_match(filters: dict[str, Any], payload: dict[str, Any]) -> bool:
    """Every configured filter must equal the payload field of the same name."""
    return all(
        key in payload and strict_equals(payload[key], value) for key, value in filters.items()
    )


def trigger_matches(
    workflow: WorkflowDefinition,
    trigger_type: TriggerType | str,
    entity_type: EntityType | str | None,
    payload: dict[str, Any],
) -> bool:
    trigger = workflow.trigger
    if trigger.type != trigger_type:
        return False
    expected_entity = getattr(trigger, "entity_type", None)
    if expected_entity is not None and expected_entity != entity_type:
        return False
    return filters_match(getattr(trigger, "filters", {}), payload)


class TriggerDispatcher:
    def __init__(self, workflows: WorkflowRepository, engine: WorkflowEngine) -> None:
        self._workflows = workflows
        self._engine = engine
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def pending(self) -> int:
        """Number of dispatched runs still in flight."""
        return len(self._tasks)

    async def match(
        self,
        trigger_type: TriggerType | str,
        entity_type: EntityType | str | None = None,
        payload: dict[str, Any] | None = None,
    ) -> list[WorkflowDefinition]:
        payload = payload or {}
        return [
            workflow
            for workflow in await self._workflows.list_active_workflows()
            if trigger_matches(workflow, trigger_type, entity_type, payload)
        ]

    async def dispatch(
        self,
        trigger_type: TriggerType | str,
        entity_type: EntityType | str | None = None,
        payload: dict[str, Any] | None = None,
    ) -> list[asyncio.Task[None]]:
        """Start a run for every active workflow whose trigger matches the event."""
        payload = dict(payload or {})
        matches = await self.match(trigger_type, entity_type, payload)
        logger.debug(
            "%s event (%s) matched %d workflow(s)", trigger_type, entity_type or "-", len(matches)
        )
        return self._submit_all(matches, payload)

    async def dispatch_webhook(
        self, path: str, method: str = "POST", payload: dict[str, Any] | None = None
    ) -> list[asyncio.Task[None]]:
        """Start every active WEBHOOK workflow registered for ``method path``."""
        payload = dict(payload or {})
        normalized_path = normalize_webhook_path(path)
        normalized_method = method.strip().upper()
        matches = [
            workflow
            for workflow in await self.match(TriggerType.WEBHOOK, None, payload)
            if isinstance(workflow.trigger, WebhookTrigger)
            and workflow.trigger.webhook.path == normalized_path
            and workflow.trigger.webhook.method == normalized_method
        ]
        return self._submit_all(matches, payload)

    def dispatch_schedule(
        self, workflows: Iterable[WorkflowDefinition], payload: dict[str, Any]
    ) -> list[asyncio.Task[None]]:
        """Start already-selected SCHEDULE workflows."""
        return self._submit_all(list(workflows), payload)

    def submit(self, workflow_id: str, trigger_data: dict[str, Any]) -> asyncio.Task[None]:
        """Run one workflow in the background, keeping a strong reference to it."""
        task = asyncio.create_task(
            self._run_guarded(workflow_id, trigger_data),
            name=f"conduit-workflow-{workflow_id}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self) -> None:
        """Wait for every in-flight run, including ones started while waiting.

        Runs cancelled by their caller are skipped rather than re-raised.
        """
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _submit_all(
        self, workflows: list[WorkflowDefinition], payload: dict[str, Any]
    ) -> list[asyncio.Task[None]]:
        return [self.submit(workflow.id, dict(payload)) for workflow in workflows]

    async def _run_guarded(self, workflow_id: str, trigger_data: dict[str, Any]) -> None:
        try:
            await self._engine.run(workflow_id, trigger_data)
        except WorkflowError as exc:
            logger.warning("Workflow %s failed: %s", workflow_id, exc)
        except Exception:
            logger.exception("Unexpected error running workflow %s", workflow_id)
