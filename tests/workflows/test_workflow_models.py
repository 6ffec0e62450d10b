"""Tests for workflow definition validation and execution models."""

from __future__ import annotations

import json
from datetime import UTC, datetime

import pytest
from pydantic import ValidationError

from conduit.workflows.models import (
    CreateTaskAction,
    ExecutionResult,
    ExecutionStatus,
    RecordTrigger,
    ScheduleTrigger,
    WebhookTrigger,
    WorkflowDefinition,
    WorkflowExecution,
)

pytestmark = pytest.mark.unit


def _workflow(**overrides) -> dict:
    document = {
        "name": "Follow up new contacts",
        "trigger": {"type": "RECORD_CREATED", "entityType": "CONTACT"},
        "actions": [
            {"type": "CREATE_TASK", "order": 0, "config": {"title": "Call {{firstName}}"}},
        ],
    }
    document.update(overrides)
    return document


class TestTriggerVariants:
    def test_record_trigger_accepts_camel_case(self):
        workflow = WorkflowDefinition.model_validate(_workflow())
        assert isinstance(workflow.trigger, RecordTrigger)
        assert workflow.trigger.entity_type == "CONTACT"
        assert workflow.trigger.filters == {}

    def test_record_trigger_accepts_snake_case(self):
        workflow = WorkflowDefinition.model_validate(
            _workflow(trigger={"type": "RECORD_UPDATED", "entity_type": "DEAL"})
        )
        assert workflow.trigger.type == "RECORD_UPDATED"
        assert workflow.trigger.entity_type == "DEAL"

    def test_schedule_trigger_validates_cron_and_timezone(self):
        workflow = WorkflowDefinition.model_validate(
            _workflow(
                trigger={
                    "type": "SCHEDULE",
                    "schedule": {"cron": " 0 9 * * 1 ", "timezone": "Europe/London"},
                }
            )
        )
        assert isinstance(workflow.trigger, ScheduleTrigger)
        assert workflow.trigger.schedule.cron == "0 9 * * 1"

    def test_invalid_cron_rejected(self):
        with pytest.raises(ValidationError, match="Invalid cron expression"):
            WorkflowDefinition.model_validate(
                _workflow(trigger={"type": "SCHEDULE", "schedule": {"cron": "every day"}})
            )

    def test_unknown_timezone_rejected(self):
        with pytest.raises(ValidationError, match="Unknown timezone"):
            WorkflowDefinition.model_validate(
                _workflow(
                    trigger={
                        "type": "SCHEDULE",
                        "schedule": {"cron": "0 9 * * *", "timezone": "Mars/Base"},
                    }
                )
            )

    def test_webhook_path_and_method_normalized(self):
        workflow = WorkflowDefinition.model_validate(
            _workflow(
                trigger={"type": "WEBHOOK", "webhook": {"path": "hooks/lead/", "method": "post"}}
            )
        )
        assert isinstance(workflow.trigger, WebhookTrigger)
        assert workflow.trigger.webhook.path == "/hooks/lead"
        assert workflow.trigger.webhook.method == "POST"

    def test_unknown_trigger_type_rejected(self):
        with pytest.raises(ValidationError):
            WorkflowDefinition.model_validate(_workflow(trigger={"type": "SOMETIME"}))


class TestActionVariants:
    def test_unknown_action_type_rejected(self):
        with pytest.raises(ValidationError):
            WorkflowDefinition.model_validate(
                _workflow(actions=[{"type": "LAUNCH_ROCKET", "config": {}}])
            )

    def test_unexpected_config_key_rejected(self):
        with pytest.raises(ValidationError):
            WorkflowDefinition.model_validate(
                _workflow(actions=[{"type": "CREATE_TASK", "config": {"titel": "typo"}}])
            )

    def test_note_parent_must_be_company_contact_or_deal(self):
        with pytest.raises(ValidationError, match="Notes can only be attached"):
            WorkflowDefinition.model_validate(
                _workflow(
                    actions=[
                        {
                            "type": "ADD_NOTE",
                            "config": {"entityType": "TASK", "entityId": "t1", "content": "x"},
                        }
                    ]
                )
            )

    def test_condition_parsed(self):
        workflow = WorkflowDefinition.model_validate(
            _workflow(
                actions=[
                    {
                        "type": "CREATE_TASK",
                        "config": {"title": "x"},
                        "condition": {"field": "stage", "operator": "equals", "value": "WON"},
                    }
                ]
            )
        )
        action = workflow.actions[0]
        assert isinstance(action, CreateTaskAction)
        assert action.condition is not None
        assert action.condition.operator == "equals"

    def test_delay_and_condition_default_config(self):
        workflow = WorkflowDefinition.model_validate(
            _workflow(actions=[{"type": "DELAY"}, {"type": "CONDITION"}])
        )
        assert workflow.actions[0].config.seconds == 0

    def test_ordered_actions_is_stable(self):
        workflow = WorkflowDefinition.model_validate(
            _workflow(
                actions=[
                    {"type": "CREATE_TASK", "order": 2, "config": {"title": "c"}},
                    {"type": "CREATE_TASK", "order": 0, "config": {"title": "a"}},
                    {"type": "CREATE_TASK", "order": 1, "config": {"title": "b1"}},
                    {"type": "CREATE_TASK", "order": 1, "config": {"title": "b2"}},
                ]
            )
        )
        titles = [action.config.title for action in workflow.ordered_actions()]
        assert titles == ["a", "b1", "b2", "c"]

    def test_empty_action_list_allowed(self):
        workflow = WorkflowDefinition.model_validate(_workflow(actions=[]))
        assert workflow.ordered_actions() == []


class TestWorkflowDefinition:
    def test_blank_name_rejected(self):
        with pytest.raises(ValidationError):
            WorkflowDefinition.model_validate(_workflow(name="   "))

    def test_defaults(self):
        workflow = WorkflowDefinition.model_validate(_workflow())
        assert workflow.is_active is False
        assert workflow.id

    def test_document_round_trip_uses_camel_case(self):
        workflow = WorkflowDefinition.model_validate(_workflow(isActive=True))
        document = workflow.to_document()
        assert document["isActive"] is True
        assert document["trigger"]["entityType"] == "CONTACT"
        assert WorkflowDefinition.model_validate(json.loads(json.dumps(document))) == workflow


class TestWorkflowExecution:
    def test_start_is_running(self):
        execution = WorkflowExecution.start("wf-1", {"a": 1})
        assert execution.status == ExecutionStatus.RUNNING
        assert not execution.is_terminal
        assert execution.trigger_data == {"a": 1}

    def test_from_row_parses_jsonb_strings(self):
        started = datetime(2026, 1, 5, 9, 0, tzinfo=UTC)
        row = {
            "id": "e1",
            "workflow_id": "wf-1",
            "status": "FAILED",
            "trigger_data": '{"a": 1}',
            "result": None,
            "error": "HTTP request failed: 500",
            "started_at": started,
            "completed_at": started.isoformat(),
        }
        execution = WorkflowExecution.from_row(row)
        assert execution.status == ExecutionStatus.FAILED
        assert execution.trigger_data == {"a": 1}
        assert execution.completed_at == started
        assert execution.is_terminal

    def test_to_dict(self):
        execution = WorkflowExecution.start("wf-1", {})
        payload = execution.to_dict()
        assert payload["status"] == "RUNNING"
        assert payload["completed_at"] is None


class TestExecutionResult:
    def test_to_dict_omits_unset_fields(self):
        assert ExecutionResult(success=True, execution_id="e1").to_dict() == {
            "success": True,
            "execution_id": "e1",
        }
        assert ExecutionResult(success=False, error="boom").to_dict() == {
            "success": False,
            "error": "boom",
        }
