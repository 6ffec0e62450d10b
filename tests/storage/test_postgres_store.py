"""Integration tests for the asyncpg-backed store (requires Docker)."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from conduit.storage.postgres import PostgresStore
from conduit.workflows.models import (
    EntityType,
    ExecutionStatus,
    WorkflowDefinition,
    WorkflowExecution,
)

pytestmark = pytest.mark.integration

T0 = datetime(2026, 1, 5, 9, tzinfo=UTC)


def _workflow(name: str, *, active: bool = True, created_at: datetime = T0) -> WorkflowDefinition:
    return WorkflowDefinition.model_validate(
        {
            "name": name,
            "isActive": active,
            "trigger": {"type": "RECORD_CREATED", "entityType": "CONTACT"},
            "actions": [
                {
                    "type": "ADD_TAG",
                    "order": 0,
                    "config": {"entityType": "CONTACT", "entityId": "{{id}}", "tag": "new"},
                },
                {"type": "CREATE_TASK", "order": 1, "config": {"title": "Call {{firstName}}"}},
            ],
            "createdAt": created_at.isoformat(),
        }
    )


async def test_workflow_round_trip_and_ordering(provisioned_database):
    async with provisioned_database() as db:
        store = PostgresStore(db)
        await store.ensure_schema()
        await store.ensure_schema()

        first = await store.save_workflow(_workflow("first", created_at=T0))
        await store.save_workflow(_workflow("second", created_at=T0 + timedelta(hours=1)))
        await store.save_workflow(
            _workflow("paused", active=False, created_at=T0 + timedelta(hours=2))
        )

        loaded = await store.get_workflow(first.id)
        assert loaded == first
        assert [w.name for w in await store.list_workflows()] == ["paused", "second", "first"]
        assert [w.name for w in await store.list_active_workflows()] == ["second", "first"]

        first.is_active = False
        await store.save_workflow(first)
        assert (await store.get_workflow(first.id)).is_active is False


async def test_execution_lifecycle(provisioned_database):
    async with provisioned_database() as db:
        store = PostgresStore(db)
        await store.ensure_schema()
        workflow = await store.save_workflow(_workflow("wf"))

        execution = await store.create_execution(
            WorkflowExecution.start(workflow.id, {"id": "c-1", "firstName": "Ada"})
        )
        assert await store.finish_execution(
            execution.id,
            ExecutionStatus.COMPLETED,
            result={"actionsExecuted": 2},
            completed_at=T0 + timedelta(minutes=1),
        )
        assert not await store.finish_execution(
            execution.id, ExecutionStatus.FAILED, error="late", completed_at=T0
        )

        stored = await store.get_execution(execution.id)
        assert stored.status == ExecutionStatus.COMPLETED
        assert stored.trigger_data == {"id": "c-1", "firstName": "Ada"}
        assert stored.result == {"actionsExecuted": 2}
        assert stored.error is None
        assert [e.id for e in await store.list_executions(workflow.id)] == [execution.id]
        assert await store.count_executions() == 1

        assert await store.delete_workflow(workflow.id) is True
        assert await store.get_execution(execution.id) is None
        assert await store.delete_workflow(workflow.id) is False


async def test_records_and_tags(provisioned_database):
    async with provisioned_database() as db:
        store = PostgresStore(db)
        await store.ensure_schema()

        record_id = await store.create_record(EntityType.CONTACT, {"firstName": "Ada"})
        assert await store.update_record(
            EntityType.CONTACT, record_id, {"lastName": "Lovelace", "tags": ["ignored"]}
        )
        assert await store.add_tag(EntityType.CONTACT, record_id, "vip")
        assert await store.add_tag(EntityType.CONTACT, record_id, "vip")

        record = await store.get_record(EntityType.CONTACT, record_id)
        assert record["firstName"] == "Ada"
        assert record["lastName"] == "Lovelace"
        assert record["tags"] == ["vip"]
        assert await store.get_record(EntityType.DEAL, record_id) is None

        assert await store.remove_tag(EntityType.CONTACT, record_id, "vip")
        assert (await store.get_record(EntityType.CONTACT, record_id))["tags"] == []
        assert not await store.update_record(EntityType.CONTACT, "missing", {"x": 1})
        assert await store.delete_record(EntityType.CONTACT, record_id)
        assert await store.list_records(EntityType.CONTACT) == []
