"""Tests for workflow management and the trigger/execute API."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from conduit.storage.memory import InMemoryStore
from conduit.workflows.errors import WorkflowDefinitionError, WorkflowNotFoundError
from conduit.workflows.models import (
    EntityType,
    ExecutionStatus,
    TriggerType,
    WorkflowExecution,
)
from conduit.workflows.service import WorkflowService, parse_workflow

pytestmark = pytest.mark.unit

FOLLOW_UP = {
    "name": "Follow up new contacts",
    "isActive": True,
    "trigger": {"type": "RECORD_CREATED", "entityType": "CONTACT"},
    "actions": [
        {"type": "CREATE_TASK", "order": 0, "config": {"title": "Follow up with {{firstName}}"}}
    ],
}


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
async def service(store):
    svc = WorkflowService(store, store)
    yield svc
    await svc.aclose()


class TestParseWorkflow:
    def test_invalid_document(self):
        with pytest.raises(WorkflowDefinitionError, match="Invalid workflow definition"):
            parse_workflow({"name": "x", "trigger": {"type": "NOPE"}})


class TestManagement:
    async def test_created_workflows_start_inactive(self, service):
        workflow = await service.create_workflow(FOLLOW_UP)
        assert workflow.is_active is False
        assert (await service.get_workflow(workflow.id)).is_active is False

    async def test_get_missing_workflow(self, service):
        with pytest.raises(WorkflowNotFoundError, match="Workflow not found: nope"):
            await service.get_workflow("nope")

    async def test_list_newest_first(self, service):
        first = await service.create_workflow(
            {**FOLLOW_UP, "name": "first", "createdAt": "2020-01-01T00:00:00+00:00"}
        )
        second = await service.create_workflow({**FOLLOW_UP, "name": "second"})
        listed = [w.id for w in await service.list_workflows()]
        assert listed == [second.id, first.id]

    async def test_update_keeps_identity(self, service):
        workflow = await service.create_workflow(FOLLOW_UP)
        updated = await service.update_workflow(
            workflow.id,
            {"id": "other", "name": "Renamed", "description": "new", "created_at": "2001-01-01"},
        )
        assert updated.id == workflow.id
        assert updated.name == "Renamed"
        assert updated.description == "new"
        assert updated.created_at == workflow.created_at
        assert updated.updated_at >= workflow.updated_at

    async def test_update_validates(self, service):
        workflow = await service.create_workflow(FOLLOW_UP)
        with pytest.raises(WorkflowDefinitionError):
            await service.update_workflow(workflow.id, {"actions": [{"type": "BOGUS"}]})

    async def test_toggle(self, service):
        workflow = await service.create_workflow(FOLLOW_UP)
        assert (await service.toggle_workflow(workflow.id)).is_active is True
        assert (await service.toggle_workflow(workflow.id)).is_active is False

    async def test_delete(self, service):
        workflow = await service.create_workflow(FOLLOW_UP)
        await service.delete_workflow(workflow.id)
        with pytest.raises(WorkflowNotFoundError):
            await service.delete_workflow(workflow.id)


class TestTriggerAndExecute:
    async def test_trigger_runs_matching_workflow(self, service, store):
        workflow = await service.create_workflow(FOLLOW_UP)
        await service.toggle_workflow(workflow.id)

        result = await service.trigger_workflow(
            TriggerType.RECORD_CREATED, EntityType.CONTACT, {"id": "c1", "firstName": "Ada"}
        )
        assert result is None
        await service.drain()

        tasks = await store.list_records(EntityType.TASK)
        assert [task["title"] for task in tasks] == ["Follow up with Ada"]
        executions = await service.get_workflow_executions(workflow.id)
        assert [e.status for e in executions] == [ExecutionStatus.COMPLETED]

    async def test_trigger_ignores_inactive_workflow(self, service, store):
        await service.create_workflow(FOLLOW_UP)
        await service.trigger_workflow("RECORD_CREATED", "CONTACT", {"firstName": "Ada"})
        await service.drain()
        assert await store.list_records(EntityType.TASK) == []

    async def test_trigger_webhook(self, service, store):
        workflow = await service.create_workflow(
            {
                "name": "lead",
                "trigger": {"type": "WEBHOOK", "webhook": {"path": "/hooks/lead"}},
                "actions": [{"type": "CREATE_TASK", "config": {"title": "Call {{name}}"}}],
            }
        )
        await service.toggle_workflow(workflow.id)
        await service.trigger_webhook("/hooks/lead", "POST", {"name": "Grace"})
        await service.drain()
        tasks = await store.list_records(EntityType.TASK)
        assert [task["title"] for task in tasks] == ["Call Grace"]

    async def test_execute_inactive_workflow(self, service, store):
        workflow = await service.create_workflow(FOLLOW_UP)
        result = await service.execute_workflow(workflow.id, {})
        assert result.success is False
        assert result.error == "Workflow not found or inactive"
        assert await service.get_workflow_executions(workflow.id) == []

    async def test_execute_active_workflow(self, service):
        workflow = await service.create_workflow(FOLLOW_UP)
        await service.toggle_workflow(workflow.id)
        result = await service.execute_workflow(workflow.id, {"firstName": "Ada"})
        assert result.success is True
        assert result.execution_id is not None


class TestStats:
    async def test_stats(self, service, store):
        active = await service.create_workflow(FOLLOW_UP)
        await service.toggle_workflow(active.id)
        await service.create_workflow({**FOLLOW_UP, "name": "idle"})

        now = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)
        old = WorkflowExecution.start(active.id, {})
        old.started_at = now - timedelta(days=3)
        recent = WorkflowExecution.start(active.id, {})
        recent.started_at = now - timedelta(hours=2)
        await store.create_execution(old)
        await store.create_execution(recent)

        stats = await service.get_workflow_stats(now=now)
        assert stats.to_dict() == {
            "total_workflows": 2,
            "active_workflows": 1,
            "total_executions": 2,
            "recent_executions": 1,
        }
