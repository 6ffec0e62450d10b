"""Outlook adapter (Microsoft Graph mail)."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Any

import httpx

from conduit.providers.email.base import DEFAULT_MESSAGE_LIMIT, EmailProvider
from conduit.providers.email.mime import parse_email_address
from conduit.providers.http import BearerJsonClient
from conduit.providers.models import (
    EmailAccountConfig,
    EmailAddress,
    EmailFolder,
    EmailMessage,
    EmailSyncResult,
    SendEmailOptions,
    TokenPair,
)
from conduit.providers.oauth import (
    MICROSOFT_GRAPH_SCOPE,
    MICROSOFT_OAUTH_TOKEN_URL,
    ProviderSettings,
    exchange_refresh_token,
)

logger = logging.getLogger(__name__)

MICROSOFT_GRAPH_API_BASE_URL = "https://graph.microsoft.com/v1.0"
OUTLOOK_MAX_PAGE_SIZE = 1000
OUTLOOK_MESSAGE_FIELDS = (
    "id",
    "conversationId",
    "from",
    "toRecipients",
    "ccRecipients",
    "bccRecipients",
    "subject",
    "body",
    "internetMessageId",
    "internetMessageHeaders",
    "receivedDateTime",
    "sentDateTime",
    "isRead",
    "flag",
    "categories",
)


def _parse_graph_instant(value: Any) -> datetime | None:
    if not isinstance(value, str) or not value.strip():
        return None
    normalized = value.strip()
    if normalized.endswith("Z"):
        normalized = f"{normalized[:-1]}+00:00"
    try:
        return datetime.fromisoformat(normalized)
    except ValueError:
        logger.debug("Ignoring unparseable Graph timestamp %r", value)
        return None


def _recipient(payload: Any) -> EmailAddress | None:
    if not isinstance(payload, dict):
        return None
    inner = payload.get("emailAddress")
    if not isinstance(inner, dict):
        return None
    address = inner.get("address")
    if not isinstance(address, str) or not address.strip():
        return None
    name = inner.get("name")
    if not isinstance(name, str) or not name.strip():
        name = None
    return EmailAddress(email=address, name=name.strip() if name else None)


def _recipients(payload: Any) -> list[EmailAddress]:
    if not isinstance(payload, list):
        return []
    return [address for entry in payload if (address := _recipient(entry)) is not None]


def _in_reply_to(payload: dict[str, Any]) -> str | None:
    for header in payload.get("internetMessageHeaders") or []:
        if not isinstance(header, dict):
            continue
        if str(header.get("name") or "").lower() == "in-reply-to":
            value = header.get("value")
            if isinstance(value, str) and value.strip():
                return value.strip()
    return None


def outlook_message_to_email_message(payload: dict[str, Any]) -> EmailMessage:
    """Normalize a Graph ``message`` resource."""
    message_id = payload.get("id")
    if not isinstance(message_id, str) or not message_id:
        raise ValueError("Outlook message payload is missing an id")

    body = payload.get("body") if isinstance(payload.get("body"), dict) else {}
    content_type = str(body.get("contentType") or "").lower()
    content = body.get("content") if isinstance(body.get("content"), str) else None

    flag = payload.get("flag")
    flagged = isinstance(flag, dict) and flag.get("flagStatus") == "flagged"
    labels = [c for c in payload.get("categories") or [] if isinstance(c, str)]
    if flagged:
        labels.append("FLAGGED")

    return EmailMessage(
        id=message_id,
        thread_id=payload.get("conversationId") or None,
        sender=_recipient(payload.get("from")),
        to=_recipients(payload.get("toRecipients")),
        cc=_recipients(payload.get("ccRecipients")),
        bcc=_recipients(payload.get("bccRecipients")),
        subject=payload.get("subject"),
        body_text=content if content_type == "text" else None,
        body_html=content if content_type == "html" else None,
        labels=labels,
        is_read=payload.get("isRead") is True,
        is_starred=flagged,
        sent_at=_parse_graph_instant(payload.get("sentDateTime")),
        received_at=_parse_graph_instant(payload.get("receivedDateTime")),
        in_reply_to=_in_reply_to(payload),
    )


def _graph_recipients(addresses: list[str]) -> list[dict[str, Any]]:
    recipients: list[dict[str, Any]] = []
    for raw in addresses:
        parsed = parse_email_address(raw)
        if parsed is None:
            continue
        email_address: dict[str, str] = {"address": parsed.email}
        if parsed.name:
            email_address["name"] = parsed.name
        recipients.append({"emailAddress": email_address})
    return recipients


class OutlookProvider(EmailProvider):
    """Outlook/Microsoft 365 mailbox with refresh-token support."""

    supports_token_refresh = True

    def __init__(
        self,
        config: EmailAccountConfig,
        settings: ProviderSettings,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._email = config.email
        self._display_name = config.display_name
        self._refresh_token = config.refresh_token
        self._settings = settings
        self._client = BearerJsonClient(
            base_url=MICROSOFT_GRAPH_API_BASE_URL,
            access_token=config.access_token,
            provider_label="Outlook",
            http_client=http_client,
            timeout_seconds=settings.http_timeout_seconds,
        )

    @property
    def name(self) -> str:
        return "outlook"

    @property
    def has_refresh_token(self) -> bool:
        return bool(self._refresh_token)

    async def connect(self) -> bool:
        return await self._client.probe("/me")

    async def disconnect(self) -> None:
        await self._client.close()

    async def sync_messages(
        self,
        cursor: str | None = None,
        limit: int = DEFAULT_MESSAGE_LIMIT,
    ) -> EmailSyncResult:
        if limit < 1:
            raise ValueError("limit must be at least 1")

        if cursor:
            payload = await self._client.request_json("GET", cursor)
        else:
            payload = await self._client.request_json(
                "GET",
                "/me/messages",
                params={
                    "$top": min(limit, OUTLOOK_MAX_PAGE_SIZE),
                    "$orderby": "receivedDateTime desc",
                    "$select": ",".join(OUTLOOK_MESSAGE_FIELDS),
                },
            )

        messages: list[EmailMessage] = []
        for item in payload.get("value") or []:
            if not isinstance(item, dict):
                continue
            try:
                messages.append(outlook_message_to_email_message(item))
            except ValueError as exc:
                logger.warning("Skipping malformed Outlook message: %s", exc)

        next_link = payload.get("@odata.nextLink")
        next_cursor = next_link if isinstance(next_link, str) and next_link else None
        return EmailSyncResult(
            messages=messages, cursor=next_cursor, has_more=next_cursor is not None
        )

    async def send_message(self, options: SendEmailOptions) -> str:
        sender: dict[str, str] = {"address": self._email}
        if self._display_name:
            sender["name"] = self._display_name

        if options.body_html is not None:
            body = {"contentType": "html", "content": options.body_html}
        else:
            body = {"contentType": "text", "content": options.body_text or ""}

        message: dict[str, Any] = {
            "subject": options.subject,
            "body": body,
            "from": {"emailAddress": sender},
            "toRecipients": _graph_recipients(options.to),
        }
        if options.cc:
            message["ccRecipients"] = _graph_recipients(options.cc)
        if options.bcc:
            message["bccRecipients"] = _graph_recipients(options.bcc)
        if options.reply_to:
            message["replyTo"] = _graph_recipients([options.reply_to])
        if options.in_reply_to:
            message["internetMessageHeaders"] = [
                {"name": "X-In-Reply-To", "value": options.in_reply_to}
            ]

        await self._client.request_json(
            "POST",
            "/me/sendMail",
            json_body={"message": message, "saveToSentItems": True},
        )
        # sendMail returns 202 without a body; Graph never reveals the sent id.
        local_id = str(uuid.uuid4())
        logger.info("Outlook message accepted for delivery: %s", local_id)
        return local_id

    async def list_folders(self) -> list[EmailFolder]:
        payload = await self._client.request_json(
            "GET", "/me/mailFolders", params={"$top": 100}
        )
        folders: list[EmailFolder] = []
        for folder in payload.get("value") or []:
            if not isinstance(folder, dict) or not folder.get("id"):
                continue
            folders.append(
                EmailFolder(
                    id=str(folder["id"]),
                    name=str(folder.get("displayName") or folder["id"]),
                    unread_count=folder.get("unreadItemCount"),
                    total_count=folder.get("totalItemCount"),
                )
            )
        return folders

    async def refresh_token(self) -> TokenPair:
        return await exchange_refresh_token(
            self._client.http_client,
            token_url=MICROSOFT_OAUTH_TOKEN_URL,
            client=self._settings.microsoft,
            refresh_token=self._refresh_token or "",
            provider_label="Microsoft",
            scope=MICROSOFT_GRAPH_SCOPE,
        )

    def apply_tokens(self, tokens: TokenPair) -> None:
        self._client.set_access_token(tokens.access_token)
        if tokens.refresh_token:
            self._refresh_token = tokens.refresh_token
