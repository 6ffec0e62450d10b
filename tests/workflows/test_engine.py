"""Tests for the workflow execution engine."""

from __future__ import annotations

from typing import Any

import httpx
import pytest

from conduit.storage.memory import InMemoryStore
from conduit.workflows.actions import ActionRunner
from conduit.workflows.engine import WorkflowEngine
from conduit.workflows.errors import WorkflowRunError, WorkflowUnavailableError
from conduit.workflows.models import (
    EntityType,
    ExecutionStatus,
    WorkflowDefinition,
)
from conduit.workflows.templating import ExecutionContext

pytestmark = pytest.mark.unit


def _workflow(actions: list[dict[str, Any]], *, active: bool = True) -> WorkflowDefinition:
    return WorkflowDefinition.model_validate(
        {
            "name": "Test workflow",
            "isActive": active,
            "trigger": {"type": "RECORD_CREATED", "entityType": "CONTACT"},
            "actions": actions,
        }
    )


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


def _engine(store: InMemoryStore, **runner_kwargs) -> WorkflowEngine:
    return WorkflowEngine(store, ActionRunner(store, **runner_kwargs))


class TestRun:
    async def test_follow_up_task_for_new_contact(self, store):
        workflow = await store.save_workflow(
            _workflow(
                [
                    {
                        "type": "CREATE_TASK",
                        "order": 0,
                        "config": {"title": "Follow up with {{firstName}}"},
                    }
                ]
            )
        )

        execution = await _engine(store).run(workflow.id, {"id": "c-1", "firstName": "Ada"})

        assert execution.status == ExecutionStatus.COMPLETED
        assert execution.completed_at is not None
        tasks = await store.list_records(EntityType.TASK)
        assert [task["title"] for task in tasks] == ["Follow up with Ada"]
        stored = await store.get_execution(execution.id)
        assert stored.status == ExecutionStatus.COMPLETED
        assert stored.result["createdTaskId"] == tasks[0]["id"]
        assert stored.result["firstName"] == "Ada"
        assert stored.trigger_data == {"id": "c-1", "firstName": "Ada"}

    async def test_failed_http_request_stops_pipeline(self, store, mock_http):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500, json={"error": "boom"})

        workflow = await store.save_workflow(
            _workflow(
                [
                    {"type": "CREATE_TASK", "order": 1, "config": {"title": "never"}},
                    {"type": "HTTP_REQUEST", "order": 0, "config": {"url": "https://x.test/"}},
                ]
            )
        )

        async with mock_http(handler) as client:
            engine = _engine(store, http_client=client)
            with pytest.raises(WorkflowRunError) as excinfo:
                await engine.run(workflow.id, {})

        assert "500" in str(excinfo.value)
        assert await store.list_records(EntityType.TASK) == []
        stored = await store.get_execution(excinfo.value.execution_id)
        assert stored.status == ExecutionStatus.FAILED
        assert "500" in stored.error
        assert stored.completed_at is not None
        assert stored.result is None

    async def test_actions_run_in_order(self, store):
        order: list[str] = []
        runner = ActionRunner(store)

        async def record(action_type: str, config: Any, context: ExecutionContext) -> None:
            order.append(config.title)

        runner.register("CREATE_TASK", record)
        workflow = await store.save_workflow(
            _workflow(
                [
                    {"type": "CREATE_TASK", "order": 2, "config": {"title": "third"}},
                    {"type": "CREATE_TASK", "order": 0, "config": {"title": "first"}},
                    {"type": "CREATE_TASK", "order": 1, "config": {"title": "second"}},
                ]
            )
        )

        await WorkflowEngine(store, runner).run(workflow.id, {})
        assert order == ["first", "second", "third"]

    async def test_false_guard_skips_action(self, store):
        workflow = await store.save_workflow(
            _workflow(
                [
                    {
                        "type": "CREATE_TASK",
                        "order": 0,
                        "config": {"title": "skip me"},
                        "condition": {"field": "stage", "operator": "equals", "value": "WON"},
                    },
                    {
                        "type": "CREATE_TASK",
                        "order": 1,
                        "config": {"title": "keep me"},
                        "condition": {"field": "stage", "operator": "equals", "value": "LOST"},
                    },
                ]
            )
        )

        execution = await _engine(store).run(workflow.id, {"stage": "LOST"})

        assert execution.status == ExecutionStatus.COMPLETED
        titles = [task["title"] for task in await store.list_records(EntityType.TASK)]
        assert titles == ["keep me"]

    async def test_later_actions_see_earlier_outputs(self, store):
        workflow = await store.save_workflow(
            _workflow(
                [
                    {
                        "type": "CREATE_RECORD",
                        "order": 0,
                        "config": {"entityType": "COMPANY", "data": {"name": "Acme"}},
                    },
                    {
                        "type": "ADD_NOTE",
                        "order": 1,
                        "config": {
                            "entityType": "COMPANY",
                            "entityId": "{{createdCompanyId}}",
                            "content": "Created by {{workflowId}}",
                        },
                    },
                ]
            )
        )

        await _engine(store).run(workflow.id, {})

        company = (await store.list_records(EntityType.COMPANY))[0]
        note = (await store.list_records(EntityType.NOTE))[0]
        assert note["companyId"] == company["id"]
        assert note["content"] == f"Created by {workflow.id}"

    async def test_trigger_data_is_not_mutated(self, store):
        workflow = await store.save_workflow(
            _workflow([{"type": "CREATE_TASK", "config": {"title": "x"}}])
        )
        payload = {"firstName": "Ada"}
        await _engine(store).run(workflow.id, payload)
        assert payload == {"firstName": "Ada"}


class TestUnavailableWorkflow:
    async def test_inactive_workflow_creates_no_execution(self, store):
        workflow = await store.save_workflow(
            _workflow([{"type": "CREATE_TASK", "config": {"title": "x"}}], active=False)
        )
        with pytest.raises(WorkflowUnavailableError, match="Workflow not found or inactive"):
            await _engine(store).run(workflow.id, {})
        assert await store.count_executions() == 0
        assert await store.list_records(EntityType.TASK) == []

    async def test_missing_workflow(self, store):
        with pytest.raises(WorkflowUnavailableError):
            await _engine(store).run("does-not-exist", {})
        assert await store.count_executions() == 0


class TestExecute:
    async def test_success_result(self, store):
        workflow = await store.save_workflow(_workflow([]))
        result = await _engine(store).execute(workflow.id, {})
        assert result.success is True
        assert result.execution_id is not None
        assert result.error is None

    async def test_unavailable_result(self, store):
        result = await _engine(store).execute("missing")
        assert result.success is False
        assert result.execution_id is None
        assert result.error == "Workflow not found or inactive"

    async def test_failure_result(self, store):
        workflow = await store.save_workflow(
            _workflow(
                [
                    {
                        "type": "UPDATE_RECORD",
                        "config": {"entityType": "DEAL", "recordId": "nope", "data": {}},
                    }
                ]
            )
        )
        result = await _engine(store).execute(workflow.id, {})
        assert result.success is False
        assert result.execution_id is not None
        assert result.error == "DEAL record not found: nope"
        stored = await store.get_execution(result.execution_id)
        assert stored.status == ExecutionStatus.FAILED


class TestTerminalState:
    async def test_terminal_execution_is_not_overwritten(self, store):
        workflow = await store.save_workflow(_workflow([]))
        execution = await _engine(store).run(workflow.id, {})
        finished_at = execution.completed_at

        assert not await store.finish_execution(
            execution.id, ExecutionStatus.FAILED, error="late", completed_at=finished_at
        )
        stored = await store.get_execution(execution.id)
        assert stored.status == ExecutionStatus.COMPLETED
        assert stored.error is None
