"""Workflow execution engine.

One run moves its execution record through exactly ``RUNNING`` and then
``COMPLETED`` or ``FAILED``:

1. Load the workflow; a missing or inactive workflow fails without
   creating an execution record.
2. Persist a ``RUNNING`` execution holding the trigger payload.
3. Seed the variable bag with a shallow copy of the trigger payload.
4. Run actions in ``order``; a guard that evaluates false skips its action.
5. Record ``COMPLETED`` with the variable bag, or ``FAILED`` with the error.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime
from typing import Any

from opentelemetry import trace

from conduit.core.logging import execution_log_context
from conduit.storage.base import WorkflowRepository
from conduit.workflows.actions import ActionRunner
from conduit.workflows.errors import WorkflowRunError, WorkflowUnavailableError
from conduit.workflows.models import (
    ExecutionResult,
    ExecutionStatus,
    WorkflowDefinition,
    WorkflowExecution,
)
from conduit.workflows.templating import ExecutionContext, evaluate_condition

logger = logging.getLogger(__name__)
tracer = trace.get_tracer("conduit.workflows")


class WorkflowEngine:
    def __init__(self, workflows: WorkflowRepository, runner: ActionRunner) -> None:
        self._workflows = workflows
        self._runner = runner

    async def _load(self, workflow_id: str) -> WorkflowDefinition:
        workflow = await self._workflows.get_workflow(workflow_id)
        if workflow is None or not workflow.is_active:
            raise WorkflowUnavailableError(workflow_id)
        return workflow

    async def run(
        self, workflow_id: str, trigger_data: dict[str, Any] | None = None
    ) -> WorkflowExecution:
        """Execute a workflow and return its terminal execution record.

        Raises
        ------
        WorkflowUnavailableError
            If the workflow is missing or inactive (no record is created).
        WorkflowRunError
            If an action failed; the record is already ``FAILED``.
        """
        workflow = await self._load(workflow_id)
        trigger_data = dict(trigger_data or {})
        execution = await self._workflows.create_execution(
            WorkflowExecution.start(workflow.id, trigger_data)
        )
        context = ExecutionContext(
            execution_id=execution.id,
            workflow_id=workflow.id,
            trigger_data=trigger_data,
            variables=dict(trigger_data),
        )

        with (
            tracer.start_as_current_span("conduit.workflow.run") as span,
            execution_log_context(workflow.id, execution.id),
        ):
            span.set_attribute("workflow.id", workflow.id)
            span.set_attribute("workflow.execution_id", execution.id)
            logger.info("Running workflow %r (%d actions)", workflow.name, len(workflow.actions))
            try:
                await self._run_actions(workflow, context)
            except asyncio.CancelledError:
                # Record the interrupted run as FAILED then re-raise
                span.set_status(trace.StatusCode.ERROR, "cancelled")
                await self._finish(execution, ExecutionStatus.FAILED, error="Execution cancelled")
                logger.warning("Workflow %r cancelled", workflow.name)
                raise
            except Exception as exc:
                error = str(exc) or type(exc).__name__
                span.record_exception(exc)
                span.set_status(trace.StatusCode.ERROR, error)
                await self._finish(execution, ExecutionStatus.FAILED, error=error)
                logger.warning("Workflow %r failed: %s", workflow.name, error)
                raise WorkflowRunError(error, execution.id) from exc

            await self._finish(execution, ExecutionStatus.COMPLETED, result=context.variables)
            logger.info("Workflow %r completed", workflow.name)
        return execution

    async def execute(
        self, workflow_id: str, trigger_data: dict[str, Any] | None = None
    ) -> ExecutionResult:
        """Like :meth:`run` but reports failure as a structured result."""
        try:
            execution = await self.run(workflow_id, trigger_data)
        except WorkflowUnavailableError as exc:
            return ExecutionResult(success=False, error=str(exc))
        except WorkflowRunError as exc:
            return ExecutionResult(success=False, execution_id=exc.execution_id, error=str(exc))
        return ExecutionResult(success=True, execution_id=execution.id)

    async def _run_actions(self, workflow: WorkflowDefinition, context: ExecutionContext) -> None:
        for action in workflow.ordered_actions():
            if action.condition is not None and not evaluate_condition(action.condition, context):
                logger.debug(
                    "Skipping %s action (order %d): guard false", action.type, action.order
                )
                continue
            logger.debug("Running %s action (order %d)", action.type, action.order)
            await self._runner.run(action, context)

    async def _finish(
        self,
        execution: WorkflowExecution,
        status: ExecutionStatus,
        *,
        result: dict[str, Any] | None = None,
        error: str | None = None,
    ) -> None:
        completed_at = datetime.now(UTC)
        finished = await self._workflows.finish_execution(
            execution.id, status, result=result, error=error, completed_at=completed_at
        )
        if not finished:
            logger.warning(
                "Execution %s was no longer RUNNING; %s not recorded", execution.id, status
            )
            return
        execution.status = status
        execution.result = result
        execution.error = error
        execution.completed_at = completed_at
