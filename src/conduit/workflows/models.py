"""Workflow definition and execution models.

Definitions are pydantic models validated when a workflow is saved: the
trigger and every action are discriminated on their ``type`` tag, and each
action kind carries its own typed configuration payload.  Field names accept
both ``snake_case`` and the ``camelCase`` used by stored JSON documents.

Executions are plain dataclasses mapping 1:1 to the ``workflow_executions``
table, with JSON helpers for database round-tripping.
"""

from __future__ import annotations

import enum
import json
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Annotated, Any, Literal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from croniter import croniter
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class TriggerType(enum.StrEnum):
    RECORD_CREATED = "RECORD_CREATED"
    RECORD_UPDATED = "RECORD_UPDATED"
    RECORD_DELETED = "RECORD_DELETED"
    SCHEDULE = "SCHEDULE"
    WEBHOOK = "WEBHOOK"
    EMAIL_RECEIVED = "EMAIL_RECEIVED"
    MANUAL = "MANUAL"


class ActionType(enum.StrEnum):
    CREATE_RECORD = "CREATE_RECORD"
    UPDATE_RECORD = "UPDATE_RECORD"
    DELETE_RECORD = "DELETE_RECORD"
    SEND_EMAIL = "SEND_EMAIL"
    HTTP_REQUEST = "HTTP_REQUEST"
    DELAY = "DELAY"
    CONDITION = "CONDITION"
    ADD_TAG = "ADD_TAG"
    REMOVE_TAG = "REMOVE_TAG"
    CREATE_TASK = "CREATE_TASK"
    ADD_NOTE = "ADD_NOTE"


class EntityType(enum.StrEnum):
    COMPANY = "COMPANY"
    CONTACT = "CONTACT"
    DEAL = "DEAL"
    TASK = "TASK"
    NOTE = "NOTE"
    ACTIVITY = "ACTIVITY"


NOTE_PARENT_TYPES = frozenset({EntityType.COMPANY, EntityType.CONTACT, EntityType.DEAL})


class ConditionOperator(enum.StrEnum):
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    CONTAINS = "contains"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"


class ExecutionStatus(enum.StrEnum):
    """Execution lifecycle: ``RUNNING`` then exactly one terminal state."""

    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class _Model(BaseModel):
    model_config = ConfigDict(extra="forbid", alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Triggers
# ---------------------------------------------------------------------------


class ScheduleSpec(_Model):
    cron: str
    timezone: str = "UTC"

    @field_validator("cron")
    @classmethod
    def _valid_cron(cls, value: str) -> str:
        normalized = value.strip()
        if not croniter.is_valid(normalized):
            raise ValueError(f"Invalid cron expression: {value!r}")
        return normalized

    @field_validator("timezone")
    @classmethod
    def _valid_timezone(cls, value: str) -> str:
        normalized = value.strip() or "UTC"
        try:
            ZoneInfo(normalized)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"Unknown timezone: {value!r}") from exc
        return normalized


class WebhookSpec(_Model):
    path: str
    method: str = "POST"

    @field_validator("path")
    @classmethod
    def _normalize_path(cls, value: str) -> str:
        return normalize_webhook_path(value)

    @field_validator("method")
    @classmethod
    def _normalize_method(cls, value: str) -> str:
        normalized = value.strip().upper()
        if not normalized:
            raise ValueError("webhook method must be non-empty")
        return normalized


def normalize_webhook_path(path: str) -> str:
    """``"hooks/new-lead/"`` -> ``"/hooks/new-lead"``."""
    stripped = path.strip().strip("/")
    if not stripped:
        raise ValueError("webhook path must be non-empty")
    return f"/{stripped}"


class RecordTrigger(_Model):
    type: Literal["RECORD_CREATED", "RECORD_UPDATED", "RECORD_DELETED"]
    entity_type: EntityType | None = None
    filters: dict[str, Any] = Field(default_factory=dict)


class EmailReceivedTrigger(_Model):
    type: Literal["EMAIL_RECEIVED"]
    filters: dict[str, Any] = Field(default_factory=dict)


class ScheduleTrigger(_Model):
    type: Literal["SCHEDULE"]
    schedule: ScheduleSpec


class WebhookTrigger(_Model):
    type: Literal["WEBHOOK"]
    webhook: WebhookSpec
    filters: dict[str, Any] = Field(default_factory=dict)


class ManualTrigger(_Model):
    type: Literal["MANUAL"]


Trigger = Annotated[
    RecordTrigger | EmailReceivedTrigger | ScheduleTrigger | WebhookTrigger | ManualTrigger,
    Field(discriminator="type"),
]


# ---------------------------------------------------------------------------
# Actions
# ---------------------------------------------------------------------------


class Condition(_Model):
    """Guard evaluated against the execution context before an action runs."""

    field: str
    operator: ConditionOperator
    value: Any = None


class CreateRecordConfig(_Model):
    entity_type: EntityType
    data: dict[str, Any] = Field(default_factory=dict)


class UpdateRecordConfig(_Model):
    entity_type: EntityType
    record_id: str
    data: dict[str, Any] = Field(default_factory=dict)


class DeleteRecordConfig(_Model):
    entity_type: EntityType
    record_id: str


class SendEmailConfig(_Model):
    to: str
    subject: str
    body: str = ""


class HttpRequestConfig(_Model):
    url: str
    method: str = "GET"
    headers: dict[str, str] = Field(default_factory=dict)
    body: dict[str, Any] | str | None = None

    @field_validator("method")
    @classmethod
    def _upper(cls, value: str) -> str:
        return value.strip().upper() or "GET"


class DelayConfig(_Model):
    seconds: float | str = 0


class ConditionConfig(_Model):
    pass


class TagConfig(_Model):
    entity_type: EntityType
    entity_id: str
    tag: str


class CreateTaskConfig(_Model):
    title: str
    description: str | None = None
    due_date: str | None = None
    company_id: str | None = None
    contact_id: str | None = None
    deal_id: str | None = None


class AddNoteConfig(_Model):
    entity_type: EntityType
    entity_id: str
    content: str

    @field_validator("entity_type")
    @classmethod
    def _note_parent(cls, value: EntityType) -> EntityType:
        if value not in NOTE_PARENT_TYPES:
            raise ValueError(f"Notes can only be attached to COMPANY, CONTACT or DEAL, not {value}")
        return value


class _ActionBase(_Model):
    order: int = 0
    condition: Condition | None = None


class CreateRecordAction(_ActionBase):
    type: Literal["CREATE_RECORD"]
    config: CreateRecordConfig


class UpdateRecordAction(_ActionBase):
    type: Literal["UPDATE_RECORD"]
    config: UpdateRecordConfig


class DeleteRecordAction(_ActionBase):
    type: Literal["DELETE_RECORD"]
    config: DeleteRecordConfig


class SendEmailAction(_ActionBase):
    type: Literal["SEND_EMAIL"]
    config: SendEmailConfig


class HttpRequestAction(_ActionBase):
    type: Literal["HTTP_REQUEST"]
    config: HttpRequestConfig


class DelayAction(_ActionBase):
    type: Literal["DELAY"]
    config: DelayConfig = Field(default_factory=DelayConfig)


class ConditionAction(_ActionBase):
    type: Literal["CONDITION"]
    config: ConditionConfig = Field(default_factory=ConditionConfig)


class TagAction(_ActionBase):
    type: Literal["ADD_TAG", "REMOVE_TAG"]
    config: TagConfig


class CreateTaskAction(_ActionBase):
    type: Literal["CREATE_TASK"]
    config: CreateTaskConfig


class AddNoteAction(_ActionBase):
    type: Literal["ADD_NOTE"]
    config: AddNoteConfig


Action = Annotated[
    CreateRecordAction
    | UpdateRecordAction
    | DeleteRecordAction
    | SendEmailAction
    | HttpRequestAction
    | DelayAction
    | ConditionAction
    | TagAction
    | CreateTaskAction
    | AddNoteAction,
    Field(discriminator="type"),
]


# ---------------------------------------------------------------------------
# Workflow definition
# ---------------------------------------------------------------------------


def _utcnow() -> datetime:
    return datetime.now(UTC)


class WorkflowDefinition(_Model):
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    name: str
    description: str | None = None
    is_active: bool = False
    trigger: Trigger
    actions: list[Action] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @field_validator("name")
    @classmethod
    def _non_empty_name(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("workflow name must be non-empty")
        return normalized

    def ordered_actions(self) -> list[Action]:
        """Actions sorted by ``order``; ties keep declaration order."""
        return sorted(self.actions, key=lambda action: action.order)

    def to_document(self) -> dict[str, Any]:
        """JSON-safe dict (camelCase keys) for storage and export."""
        return self.model_dump(mode="json", by_alias=True)


# ---------------------------------------------------------------------------
# Executions
# ---------------------------------------------------------------------------


def _parse_jsonb(value: Any) -> Any:
    """Parse a JSONB value (may be a string or already decoded)."""
    if isinstance(value, str):
        return json.loads(value)
    return value


def _parse_optional_datetime(value: Any) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


@dataclass
class WorkflowExecution:
    """One durable record of a single workflow run.

    Maps 1:1 to the ``workflow_executions`` database table.
    """

    id: str
    workflow_id: str
    status: ExecutionStatus
    trigger_data: dict[str, Any] = field(default_factory=dict)
    result: dict[str, Any] | None = None
    error: str | None = None
    started_at: datetime = field(default_factory=_utcnow)
    completed_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status != ExecutionStatus.RUNNING

    @classmethod
    def start(cls, workflow_id: str, trigger_data: dict[str, Any]) -> WorkflowExecution:
        return cls(
            id=uuid.uuid4().hex,
            workflow_id=workflow_id,
            status=ExecutionStatus.RUNNING,
            trigger_data=trigger_data,
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialise to a JSON-safe dictionary."""
        return {
            "id": self.id,
            "workflow_id": self.workflow_id,
            "status": str(self.status),
            "trigger_data": self.trigger_data,
            "result": self.result,
            "error": self.error,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }

    @classmethod
    def from_row(cls, row: Any) -> WorkflowExecution:
        """Build from an asyncpg ``Record`` or any mapping."""
        return cls(
            id=str(row["id"]),
            workflow_id=str(row["workflow_id"]),
            status=ExecutionStatus(row["status"]),
            trigger_data=_parse_jsonb(row["trigger_data"]) or {},
            result=_parse_jsonb(row["result"]),
            error=row["error"],
            started_at=_parse_optional_datetime(row["started_at"]) or _utcnow(),
            completed_at=_parse_optional_datetime(row["completed_at"]),
        )


@dataclass
class ExecutionResult:
    """Outcome of a direct workflow execution."""

    success: bool
    execution_id: str | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialise to a JSON-safe dictionary."""
        d: dict[str, Any] = {"success": self.success}
        if self.execution_id is not None:
            d["execution_id"] = self.execution_id
        if self.error is not None:
            d["error"] = self.error
        return d


@dataclass
class WorkflowStats:
    total_workflows: int
    active_workflows: int
    total_executions: int
    recent_executions: int

    def to_dict(self) -> dict[str, int]:
        return {
            "total_workflows": self.total_workflows,
            "active_workflows": self.active_workflows,
            "total_executions": self.total_executions,
            "recent_executions": self.recent_executions,
        }
