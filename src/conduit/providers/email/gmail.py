"""Gmail adapter (Gmail API v1)."""

from __future__ import annotations

import base64
import logging
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from typing import Any
from urllib.parse import quote

import httpx

from conduit.providers.email.base import DEFAULT_MESSAGE_LIMIT, EmailProvider
from conduit.providers.email.mime import (
    build_mime_message,
    extract_gmail_bodies,
    parse_address_list,
    parse_email_address,
)
from conduit.providers.errors import ProviderRequestError
from conduit.providers.http import BearerJsonClient
from conduit.providers.models import (
    EmailAccountConfig,
    EmailFolder,
    EmailMessage,
    EmailSyncResult,
    SendEmailOptions,
    TokenPair,
)
from conduit.providers.oauth import GOOGLE_OAUTH_TOKEN_URL, ProviderSettings, exchange_refresh_token

logger = logging.getLogger(__name__)

GMAIL_API_BASE_URL = "https://gmail.googleapis.com/gmail/v1"
GMAIL_MAX_RESULTS = 500


def _headers_by_name(payload: dict[str, Any]) -> dict[str, str]:
    headers: dict[str, str] = {}
    for header in payload.get("headers") or []:
        if not isinstance(header, dict):
            continue
        name = header.get("name")
        value = header.get("value")
        if isinstance(name, str) and isinstance(value, str):
            headers.setdefault(name.lower(), value)
    return headers


def _internal_date(value: Any) -> datetime | None:
    try:
        millis = int(value)
    except (TypeError, ValueError):
        return None
    return datetime.fromtimestamp(millis / 1000, tz=UTC)


def _header_date(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None


def gmail_message_to_email_message(data: dict[str, Any]) -> EmailMessage:
    """Normalize a Gmail ``format=full`` message resource."""
    message_id = data.get("id")
    if not isinstance(message_id, str) or not message_id:
        raise ValueError("Gmail message payload is missing an id")

    payload = data.get("payload") if isinstance(data.get("payload"), dict) else {}
    headers = _headers_by_name(payload)
    body_text, body_html = extract_gmail_bodies(payload)
    labels = [label for label in data.get("labelIds") or [] if isinstance(label, str)]
    received_at = _internal_date(data.get("internalDate"))

    return EmailMessage(
        id=message_id,
        thread_id=data.get("threadId") or None,
        sender=parse_email_address(headers.get("from")),
        to=parse_address_list(headers.get("to")),
        cc=parse_address_list(headers.get("cc")),
        bcc=parse_address_list(headers.get("bcc")),
        subject=headers.get("subject"),
        body_text=body_text,
        body_html=body_html,
        labels=labels,
        is_read="UNREAD" not in labels,
        is_starred="STARRED" in labels,
        sent_at=_header_date(headers.get("date")) or received_at,
        received_at=received_at,
        in_reply_to=headers.get("in-reply-to"),
    )


class GmailProvider(EmailProvider):
    """Gmail provider with refresh-token support."""

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
            base_url=GMAIL_API_BASE_URL,
            access_token=config.access_token,
            provider_label="Gmail",
            http_client=http_client,
            timeout_seconds=settings.http_timeout_seconds,
        )

    @property
    def name(self) -> str:
        return "gmail"

    @property
    def has_refresh_token(self) -> bool:
        return bool(self._refresh_token)

    async def connect(self) -> bool:
        return await self._client.probe("/users/me/profile")

    async def disconnect(self) -> None:
        await self._client.close()

    async def _fetch_message(self, message_id: str) -> EmailMessage | None:
        try:
            data = await self._client.request_json(
                "GET",
                f"/users/me/messages/{quote(message_id, safe='')}",
                params={"format": "full"},
            )
        except ProviderRequestError as exc:
            if exc.status_code == 404:
                logger.info("Gmail message %s disappeared before fetch", message_id)
                return None
            raise
        try:
            return gmail_message_to_email_message(data)
        except ValueError as exc:
            logger.warning("Skipping malformed Gmail message %s: %s", message_id, exc)
            return None

    async def sync_messages(
        self,
        cursor: str | None = None,
        limit: int = DEFAULT_MESSAGE_LIMIT,
    ) -> EmailSyncResult:
        if limit < 1:
            raise ValueError("limit must be at least 1")

        params: dict[str, Any] = {"maxResults": min(limit, GMAIL_MAX_RESULTS)}
        if cursor:
            params["pageToken"] = cursor
        listing = await self._client.request_json("GET", "/users/me/messages", params=params)

        messages: list[EmailMessage] = []
        for entry in listing.get("messages") or []:
            message_id = entry.get("id") if isinstance(entry, dict) else None
            if not isinstance(message_id, str) or not message_id:
                continue
            message = await self._fetch_message(message_id)
            if message is not None:
                messages.append(message)

        next_page_token = listing.get("nextPageToken")
        next_cursor = (
            next_page_token if isinstance(next_page_token, str) and next_page_token else None
        )
        return EmailSyncResult(
            messages=messages, cursor=next_cursor, has_more=next_cursor is not None
        )

    async def send_message(self, options: SendEmailOptions) -> str:
        mime = build_mime_message(self._email, options, sender_name=self._display_name)
        raw = base64.urlsafe_b64encode(mime.as_bytes()).decode("ascii").rstrip("=")
        body: dict[str, Any] = {"raw": raw}
        if options.thread_id:
            body["threadId"] = options.thread_id
        payload = await self._client.request_json(
            "POST", "/users/me/messages/send", json_body=body
        )
        message_id = payload.get("id")
        if not isinstance(message_id, str) or not message_id:
            raise ValueError("Gmail send response is missing a message id")
        logger.info("Gmail message sent: %s", message_id)
        return message_id

    async def list_folders(self) -> list[EmailFolder]:
        payload = await self._client.request_json("GET", "/users/me/labels")
        folders: list[EmailFolder] = []
        for label in payload.get("labels") or []:
            if not isinstance(label, dict) or not label.get("id"):
                continue
            folders.append(
                EmailFolder(
                    id=str(label["id"]),
                    name=str(label.get("name") or label["id"]),
                    unread_count=label.get("messagesUnread"),
                    total_count=label.get("messagesTotal"),
                )
            )
        return folders

    async def refresh_token(self) -> TokenPair:
        return await exchange_refresh_token(
            self._client.http_client,
            token_url=GOOGLE_OAUTH_TOKEN_URL,
            client=self._settings.google,
            refresh_token=self._refresh_token or "",
            provider_label="Google",
        )

    def apply_tokens(self, tokens: TokenPair) -> None:
        self._client.set_access_token(tokens.access_token)
        if tokens.refresh_token:
            self._refresh_token = tokens.refresh_token
