"""Action handlers.

:class:`ActionRunner` interpolates an action's configuration against the
execution context, then dispatches on the action's ``type`` to a registered
handler.  Handlers write their outputs into ``context.variables``.
"""

from __future__ import annotations

import abc
import asyncio
import logging
import math
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Any, TypeVar

import httpx
from pydantic import BaseModel

from conduit.providers.gateway import TokenCallback, send_email
from conduit.providers.http import DEFAULT_TIMEOUT_SECONDS, build_timeout
from conduit.providers.models import EmailAccountConfig, SendEmailOptions
from conduit.providers.oauth import ProviderSettings
from conduit.storage.base import RecordRepository
from conduit.workflows.errors import (
    ActionError,
    DelayLimitError,
    HttpActionError,
    RecordNotFoundError,
    UnknownActionError,
    UnsupportedEntityError,
)
from conduit.workflows.models import (
    ActionType,
    AddNoteConfig,
    CreateRecordConfig,
    CreateTaskConfig,
    DelayConfig,
    DeleteRecordConfig,
    EntityType,
    HttpRequestConfig,
    SendEmailConfig,
    TagConfig,
    UpdateRecordConfig,
)
from conduit.workflows.templating import ExecutionContext, interpolate_values, to_number

logger = logging.getLogger(__name__)

ActionHandler = Callable[[str, Any, ExecutionContext], Awaitable[None]]
ConfigT = TypeVar("ConfigT", bound=BaseModel)

CREATED_ID_KEYS: dict[EntityType, str] = {
    EntityType.COMPANY: "createdCompanyId",
    EntityType.CONTACT: "createdContactId",
    EntityType.DEAL: "createdDealId",
    EntityType.TASK: "createdTaskId",
    EntityType.NOTE: "createdNoteId",
}

NOTE_LINK_KEYS: dict[EntityType, str] = {
    EntityType.COMPANY: "companyId",
    EntityType.CONTACT: "contactId",
    EntityType.DEAL: "dealId",
}


def resolve_config(config: ConfigT, context: ExecutionContext) -> ConfigT:
    """Return a copy of *config* with every ``{{placeholder}}`` resolved."""
    resolved = interpolate_values(config.model_dump(mode="json"), context)
    return type(config).model_validate(resolved)


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


# ---------------------------------------------------------------------------
# Email senders
# ---------------------------------------------------------------------------


class EmailSender(abc.ABC):
    """Outbound email seam used by ``SEND_EMAIL``."""

    @abc.abstractmethod
    async def send(self, to: str, subject: str, body: str) -> str | None:
        """Send one message; return the provider message id when known."""


class LoggingEmailSender(EmailSender):
    """Records the message in the log instead of sending it."""

    async def send(self, to: str, subject: str, body: str) -> str | None:
        logger.info("Sending email to %s: %s", to, subject)
        return None


class GatewayEmailSender(EmailSender):
    """Sends through a connected email account via the provider gateway."""

    def __init__(
        self,
        account: EmailAccountConfig,
        settings: ProviderSettings | None = None,
        *,
        on_tokens_refreshed: TokenCallback | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._account = account
        self._settings = settings
        self._on_tokens_refreshed = on_tokens_refreshed
        self._http_client = http_client

    async def send(self, to: str, subject: str, body: str) -> str | None:
        options = SendEmailOptions(to=[to], subject=subject, body_text=body)
        return await send_email(
            self._account,
            options,
            on_tokens_refreshed=self._on_tokens_refreshed,
            settings=self._settings,
            http_client=self._http_client,
        )


# ---------------------------------------------------------------------------
# Runner
# ---------------------------------------------------------------------------


class ActionRunner:
    """Executes single actions against a record store and outbound services."""

    def __init__(
        self,
        records: RecordRepository,
        *,
        email_sender: EmailSender | None = None,
        http_client: httpx.AsyncClient | None = None,
        http_timeout_seconds: float | None = DEFAULT_TIMEOUT_SECONDS,
        max_delay_seconds: float | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._records = records
        self._email_sender = email_sender or LoggingEmailSender()
        self._http_client = http_client
        self._owns_http_client = http_client is None
        self._http_timeout_seconds = http_timeout_seconds
        self._max_delay_seconds = max_delay_seconds
        self._sleep = sleep
        self._handlers: dict[str, ActionHandler] = {
            ActionType.CREATE_RECORD: self._create_record,
            ActionType.UPDATE_RECORD: self._update_record,
            ActionType.DELETE_RECORD: self._delete_record,
            ActionType.SEND_EMAIL: self._send_email,
            ActionType.HTTP_REQUEST: self._http_request,
            ActionType.DELAY: self._delay,
            ActionType.CONDITION: self._condition,
            ActionType.ADD_TAG: self._change_tag,
            ActionType.REMOVE_TAG: self._change_tag,
            ActionType.CREATE_TASK: self._create_task,
            ActionType.ADD_NOTE: self._add_note,
        }

    def register(self, action_type: str, handler: ActionHandler) -> None:
        """Install or replace the handler for *action_type*."""
        self._handlers[action_type] = handler

    def unregister(self, action_type: str) -> None:
        self._handlers.pop(action_type, None)

    async def run(self, action: Any, context: ExecutionContext) -> None:
        handler = self._handlers.get(action.type)
        if handler is None:
            raise UnknownActionError(action.type)
        config = resolve_config(action.config, context)
        await handler(action.type, config, context)

    async def aclose(self) -> None:
        if self._owns_http_client and self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    async def _create_record(
        self, action_type: str, config: CreateRecordConfig, context: ExecutionContext
    ) -> None:
        key = CREATED_ID_KEYS.get(config.entity_type)
        if key is None:
            raise UnsupportedEntityError(config.entity_type)
        record_id = await self._records.create_record(config.entity_type, config.data)
        context.variables[key] = record_id
        logger.info("Created %s record %s", config.entity_type, record_id)

    async def _update_record(
        self, action_type: str, config: UpdateRecordConfig, context: ExecutionContext
    ) -> None:
        if not await self._records.update_record(
            config.entity_type, config.record_id, config.data
        ):
            raise RecordNotFoundError(config.entity_type, config.record_id)
        context.variables["updatedRecordId"] = config.record_id

    async def _delete_record(
        self, action_type: str, config: DeleteRecordConfig, context: ExecutionContext
    ) -> None:
        if not await self._records.delete_record(config.entity_type, config.record_id):
            raise RecordNotFoundError(config.entity_type, config.record_id)
        context.variables["deletedRecordId"] = config.record_id

    async def _create_task(
        self, action_type: str, config: CreateTaskConfig, context: ExecutionContext
    ) -> None:
        data = {
            "title": config.title,
            "description": config.description,
            "dueDate": config.due_date or None,
            "companyId": config.company_id or None,
            "contactId": config.contact_id or None,
            "dealId": config.deal_id or None,
        }
        task_id = await self._records.create_record(EntityType.TASK, data)
        context.variables["createdTaskId"] = task_id
        logger.info("Created task %s: %s", task_id, config.title)

    async def _add_note(
        self, action_type: str, config: AddNoteConfig, context: ExecutionContext
    ) -> None:
        link_key = NOTE_LINK_KEYS.get(config.entity_type)
        if link_key is None:
            raise UnsupportedEntityError(config.entity_type, operation="add note")
        note_id = await self._records.create_record(
            EntityType.NOTE, {"content": config.content, link_key: config.entity_id}
        )
        context.variables["createdNoteId"] = note_id

    async def _change_tag(
        self, action_type: str, config: TagConfig, context: ExecutionContext
    ) -> None:
        if action_type == ActionType.ADD_TAG:
            changed = await self._records.add_tag(config.entity_type, config.entity_id, config.tag)
        else:
            changed = await self._records.remove_tag(
                config.entity_type, config.entity_id, config.tag
            )
        if not changed:
            raise RecordNotFoundError(config.entity_type, config.entity_id)
        logger.info(
            "%s %r on %s %s", action_type, config.tag, config.entity_type, config.entity_id
        )
        context.variables["lastTagChange"] = {
            "action": action_type,
            "entityType": str(config.entity_type),
            "entityId": config.entity_id,
            "tag": config.tag,
        }

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    async def _send_email(
        self, action_type: str, config: SendEmailConfig, context: ExecutionContext
    ) -> None:
        message_id = await self._email_sender.send(config.to, config.subject, config.body)
        context.variables["lastEmailSent"] = {
            "to": config.to,
            "subject": config.subject,
            "body": config.body,
            "sentAt": _now_iso(),
            "messageId": message_id,
        }

    def _client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=build_timeout(self._http_timeout_seconds)
            )
            self._owns_http_client = True
        return self._http_client

    async def _http_request(
        self, action_type: str, config: HttpRequestConfig, context: ExecutionContext
    ) -> None:
        request_kwargs: dict[str, Any] = {"headers": config.headers}
        if isinstance(config.body, dict):
            request_kwargs["json"] = config.body
        elif config.body is not None:
            request_kwargs["content"] = config.body

        try:
            response = await self._client().request(
                config.method,
                config.url,
                timeout=build_timeout(self._http_timeout_seconds),
                **request_kwargs,
            )
        except httpx.HTTPError as exc:
            raise ActionError(f"HTTP request to {config.url} failed: {exc}") from exc

        try:
            data: Any = response.json()
        except ValueError:
            data = response.text

        context.variables["lastHttpResponse"] = {"status": response.status_code, "data": data}
        if not response.is_success:
            raise HttpActionError(response.status_code)

    async def _delay(
        self, action_type: str, config: DelayConfig, context: ExecutionContext
    ) -> None:
        seconds = to_number(config.seconds)
        if math.isnan(seconds) or seconds < 0:
            seconds = 0.0
        if self._max_delay_seconds is not None and seconds > self._max_delay_seconds:
            raise DelayLimitError(seconds, self._max_delay_seconds)
        if seconds:
            await self._sleep(seconds)

    async def _condition(self, action_type: str, config: Any, context: ExecutionContext) -> None:
        """Branch-only step; its guard is the whole point."""
