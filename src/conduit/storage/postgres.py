"""asyncpg-backed store.

Workflow definitions are stored whole as JSONB alongside a few indexed
columns.  Domain records share one ``records`` table keyed by entity type.
"""

from __future__ import annotations

import json
import logging
import uuid
from datetime import datetime
from typing import Any

from conduit.db import Database
from conduit.storage.base import RecordRepository, WorkflowRepository
from conduit.workflows.models import (
    EntityType,
    ExecutionStatus,
    WorkflowDefinition,
    WorkflowExecution,
    _parse_jsonb,
)

logger = logging.getLogger(__name__)

SCHEMA_STATEMENTS = (
    """
    CREATE TABLE IF NOT EXISTS workflows (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        is_active BOOLEAN NOT NULL DEFAULT FALSE,
        trigger_type TEXT NOT NULL,
        definition JSONB NOT NULL,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_workflows_active ON workflows (is_active, trigger_type)",
    """
    CREATE TABLE IF NOT EXISTS workflow_executions (
        id TEXT PRIMARY KEY,
        workflow_id TEXT NOT NULL REFERENCES workflows (id) ON DELETE CASCADE,
        status TEXT NOT NULL,
        trigger_data JSONB NOT NULL DEFAULT '{}'::jsonb,
        result JSONB,
        error TEXT,
        started_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        completed_at TIMESTAMPTZ
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_workflow_executions_workflow
        ON workflow_executions (workflow_id, started_at DESC)
    """,
    """
    CREATE TABLE IF NOT EXISTS records (
        id TEXT PRIMARY KEY,
        entity_type TEXT NOT NULL,
        data JSONB NOT NULL DEFAULT '{}'::jsonb,
        tags TEXT[] NOT NULL DEFAULT '{}',
        created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_records_entity_type ON records (entity_type)",
)


def _dumps(value: Any) -> str:
    return json.dumps(value, default=str)


def _workflow_from_row(row: Any) -> WorkflowDefinition:
    return WorkflowDefinition.model_validate(_parse_jsonb(row["definition"]))


def _record_from_row(row: Any) -> dict[str, Any]:
    data = _parse_jsonb(row["data"]) or {}
    return {
        **data,
        "id": row["id"],
        "tags": list(row["tags"] or []),
        "created_at": row["created_at"],
        "updated_at": row["updated_at"],
    }


class PostgresStore(WorkflowRepository, RecordRepository):
    """Both repositories over a :class:`~conduit.db.Database` pool."""

    def __init__(self, db: Database) -> None:
        self._db = db

    async def ensure_schema(self) -> None:
        """Create tables and indexes if they do not exist."""
        for statement in SCHEMA_STATEMENTS:
            await self._db.execute(statement)
        logger.info("Conduit schema ensured in %s", self._db.db_name)

    # ------------------------------------------------------------------
    # Workflows
    # ------------------------------------------------------------------

    async def get_workflow(self, workflow_id: str) -> WorkflowDefinition | None:
        row = await self._db.fetchrow("SELECT definition FROM workflows WHERE id = $1", workflow_id)
        return _workflow_from_row(row) if row else None

    async def list_workflows(self) -> list[WorkflowDefinition]:
        rows = await self._db.fetch("SELECT definition FROM workflows ORDER BY created_at DESC")
        return [_workflow_from_row(row) for row in rows]

    async def list_active_workflows(self) -> list[WorkflowDefinition]:
        rows = await self._db.fetch(
            "SELECT definition FROM workflows WHERE is_active ORDER BY created_at DESC"
        )
        return [_workflow_from_row(row) for row in rows]

    async def save_workflow(self, workflow: WorkflowDefinition) -> WorkflowDefinition:
        await self._db.execute(
            """
            INSERT INTO workflows (id, name, is_active, trigger_type, definition,
                                   created_at, updated_at)
            VALUES ($1, $2, $3, $4, $5::jsonb, $6, $7)
            ON CONFLICT (id) DO UPDATE SET
                name = EXCLUDED.name,
                is_active = EXCLUDED.is_active,
                trigger_type = EXCLUDED.trigger_type,
                definition = EXCLUDED.definition,
                updated_at = EXCLUDED.updated_at
            """,
            workflow.id,
            workflow.name,
            workflow.is_active,
            workflow.trigger.type,
            _dumps(workflow.to_document()),
            workflow.created_at,
            workflow.updated_at,
        )
        return workflow

    async def delete_workflow(self, workflow_id: str) -> bool:
        status = await self._db.execute("DELETE FROM workflows WHERE id = $1", workflow_id)
        return status.endswith(" 1")

    # ------------------------------------------------------------------
    # Executions
    # ------------------------------------------------------------------

    async def create_execution(self, execution: WorkflowExecution) -> WorkflowExecution:
        await self._db.execute(
            """
            INSERT INTO workflow_executions (id, workflow_id, status, trigger_data, started_at)
            VALUES ($1, $2, $3, $4::jsonb, $5)
            """,
            execution.id,
            execution.workflow_id,
            str(execution.status),
            _dumps(execution.trigger_data),
            execution.started_at,
        )
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
        # Single conditional UPDATE: terminal rows never change again.
        row = await self._db.fetchrow(
            """
            UPDATE workflow_executions
            SET status = $2, result = $3::jsonb, error = $4, completed_at = $5
            WHERE id = $1 AND status = $6
            RETURNING id
            """,
            execution_id,
            str(status),
            _dumps(result) if result is not None else None,
            error,
            completed_at,
            str(ExecutionStatus.RUNNING),
        )
        return row is not None

    async def get_execution(self, execution_id: str) -> WorkflowExecution | None:
        row = await self._db.fetchrow(
            "SELECT * FROM workflow_executions WHERE id = $1", execution_id
        )
        return WorkflowExecution.from_row(row) if row else None

    async def list_executions(self, workflow_id: str, limit: int = 50) -> list[WorkflowExecution]:
        rows = await self._db.fetch(
            """
            SELECT * FROM workflow_executions
            WHERE workflow_id = $1
            ORDER BY started_at DESC
            LIMIT $2
            """,
            workflow_id,
            limit,
        )
        return [WorkflowExecution.from_row(row) for row in rows]

    async def count_executions(self, since: datetime | None = None) -> int:
        if since is None:
            return int(await self._db.fetchval("SELECT count(*) FROM workflow_executions"))
        return int(
            await self._db.fetchval(
                "SELECT count(*) FROM workflow_executions WHERE started_at >= $1", since
            )
        )

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    async def create_record(self, entity_type: EntityType, data: dict[str, Any]) -> str:
        record_id = uuid.uuid4().hex
        await self._db.execute(
            "INSERT INTO records (id, entity_type, data) VALUES ($1, $2, $3::jsonb)",
            record_id,
            str(entity_type),
            _dumps(data),
        )
        return record_id

    async def get_record(self, entity_type: EntityType, record_id: str) -> dict[str, Any] | None:
        row = await self._db.fetchrow(
            "SELECT * FROM records WHERE id = $1 AND entity_type = $2",
            record_id,
            str(entity_type),
        )
        return _record_from_row(row) if row else None

    async def list_records(self, entity_type: EntityType) -> list[dict[str, Any]]:
        rows = await self._db.fetch(
            "SELECT * FROM records WHERE entity_type = $1 ORDER BY created_at",
            str(entity_type),
        )
        return [_record_from_row(row) for row in rows]

    async def update_record(
        self, entity_type: EntityType, record_id: str, data: dict[str, Any]
    ) -> bool:
        patch = {k: v for k, v in data.items() if k not in ("id", "tags")}
        row = await self._db.fetchrow(
            """
            UPDATE records SET data = data || $3::jsonb, updated_at = now()
            WHERE id = $1 AND entity_type = $2
            RETURNING id
            """,
            record_id,
            str(entity_type),
            _dumps(patch),
        )
        return row is not None

    async def delete_record(self, entity_type: EntityType, record_id: str) -> bool:
        row = await self._db.fetchrow(
            "DELETE FROM records WHERE id = $1 AND entity_type = $2 RETURNING id",
            record_id,
            str(entity_type),
        )
        return row is not None

    async def add_tag(self, entity_type: EntityType, record_id: str, tag: str) -> bool:
        row = await self._db.fetchrow(
            """
            UPDATE records
            SET tags = CASE WHEN $3 = ANY(tags) THEN tags ELSE array_append(tags, $3) END,
                updated_at = now()
            WHERE id = $1 AND entity_type = $2
            RETURNING id
            """,
            record_id,
            str(entity_type),
            tag,
        )
        return row is not None

    async def remove_tag(self, entity_type: EntityType, record_id: str, tag: str) -> bool:
        row = await self._db.fetchrow(
            """
            UPDATE records SET tags = array_remove(tags, $3), updated_at = now()
            WHERE id = $1 AND entity_type = $2
            RETURNING id
            """,
            record_id,
            str(entity_type),
            tag,
        )
        return row is not None
