"""Provider gateway: adapter selection plus connect/refresh-once orchestration.

Every public function opens a fresh adapter, connects it (refreshing the
access token at most once), runs one operation and always disconnects.
Refreshed credentials are reported through ``on_tokens_refreshed``; the
caller's config object is never mutated and nothing is persisted here.
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from datetime import datetime
from typing import TypeVar

import httpx
from opentelemetry import trace

from conduit.providers.calendar.base import DEFAULT_SYNC_PAGE_SIZE, CalendarProvider
from conduit.providers.calendar.calcom import CalComProvider
from conduit.providers.calendar.google import GoogleCalendarProvider
from conduit.providers.calendar.microsoft import MicrosoftCalendarProvider
from conduit.providers.email.base import DEFAULT_MESSAGE_LIMIT, EmailProvider
from conduit.providers.email.gmail import GmailProvider
from conduit.providers.email.imap import ImapProvider
from conduit.providers.email.outlook import OutlookProvider
from conduit.providers.errors import ConnectionFailedError, UnknownProviderError
from conduit.providers.models import (
    CalendarAccountConfig,
    CalendarEvent,
    CalendarEventDraft,
    CalendarProviderKind,
    CalendarSyncResult,
    EmailAccountConfig,
    EmailFolder,
    EmailMessage,
    EmailProviderKind,
    EmailSyncResult,
    SendEmailOptions,
    TokenPair,
)
from conduit.providers.oauth import ProviderSettings

logger = logging.getLogger(__name__)
tracer = trace.get_tracer("conduit.providers")

TokenCallback = Callable[[TokenPair], Awaitable[None] | None]
_Adapter = TypeVar("_Adapter", CalendarProvider, EmailProvider)


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------


def create_calendar_provider(
    config: CalendarAccountConfig,
    settings: ProviderSettings | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> CalendarProvider:
    """Instantiate the calendar adapter for ``config.provider``.

    Raises
    ------
    UnknownProviderError
        If the provider tag has no adapter.
    """
    settings = settings or ProviderSettings.from_env()
    match config.provider:
        case CalendarProviderKind.GOOGLE:
            return GoogleCalendarProvider(config, settings, http_client)
        case CalendarProviderKind.MICROSOFT:
            return MicrosoftCalendarProvider(config, settings, http_client)
        case CalendarProviderKind.CALCOM:
            return CalComProvider(config, settings, http_client)
    raise UnknownProviderError(config.provider)


def create_email_provider(
    config: EmailAccountConfig,
    settings: ProviderSettings | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> EmailProvider:
    """Instantiate the email adapter for ``config.provider``.

    Raises
    ------
    UnknownProviderError
        If the provider tag has no adapter.
    """
    settings = settings or ProviderSettings.from_env()
    match config.provider:
        case EmailProviderKind.GMAIL:
            return GmailProvider(config, settings, http_client)
        case EmailProviderKind.OUTLOOK:
            return OutlookProvider(config, settings, http_client)
        case EmailProviderKind.IMAP:
            return ImapProvider(config, settings)
    raise UnknownProviderError(config.provider)


# ---------------------------------------------------------------------------
# Connect / refresh-once
# ---------------------------------------------------------------------------


async def _report_tokens(callback: TokenCallback | None, tokens: TokenPair) -> None:
    if callback is None:
        return
    result = callback(tokens)
    if inspect.isawaitable(result):
        await result


async def connect_with_refresh(
    adapter: CalendarProvider | EmailProvider,
    on_tokens_refreshed: TokenCallback | None = None,
) -> None:
    """Connect *adapter*, performing at most one token refresh.

    Raises
    ------
    ConnectionFailedError
        If the adapter still cannot connect after one refresh, or cannot
        refresh at all.
    TokenRefreshError
        If the refresh-token exchange itself fails.
    """
    if await adapter.connect():
        return

    if not adapter.supports_token_refresh or not adapter.has_refresh_token:
        raise ConnectionFailedError(f"Failed to connect to {adapter.name} provider")

    logger.info("Connection to %s rejected; refreshing access token", adapter.name)
    tokens = await adapter.refresh_token()
    adapter.apply_tokens(tokens)
    await _report_tokens(on_tokens_refreshed, tokens)

    if not await adapter.connect():
        raise ConnectionFailedError(f"Failed to connect to {adapter.name} after token refresh")


@asynccontextmanager
async def _connected(
    adapter: _Adapter,
    on_tokens_refreshed: TokenCallback | None,
    operation: str,
) -> AsyncIterator[_Adapter]:
    with tracer.start_as_current_span(f"conduit.provider.{operation}") as span:
        span.set_attribute("provider", adapter.name)
        try:
            await connect_with_refresh(adapter, on_tokens_refreshed)
            yield adapter
        finally:
            await adapter.disconnect()


# ---------------------------------------------------------------------------
# Calendar operations
# ---------------------------------------------------------------------------


async def sync_calendar(
    config: CalendarAccountConfig,
    start: datetime,
    end: datetime,
    cursor: str | None = None,
    *,
    limit: int = DEFAULT_SYNC_PAGE_SIZE,
    on_tokens_refreshed: TokenCallback | None = None,
    settings: ProviderSettings | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> CalendarSyncResult:
    """Fetch one page of events in ``[start, end)``."""
    adapter = create_calendar_provider(config, settings, http_client)
    async with _connected(adapter, on_tokens_refreshed, "sync_calendar") as provider:
        return await provider.sync_events(start, end, cursor=cursor, limit=limit)


async def create_calendar_event(
    config: CalendarAccountConfig,
    draft: CalendarEventDraft,
    *,
    on_tokens_refreshed: TokenCallback | None = None,
    settings: ProviderSettings | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> str:
    adapter = create_calendar_provider(config, settings, http_client)
    async with _connected(adapter, on_tokens_refreshed, "create_calendar_event") as provider:
        return await provider.create_event(draft)


async def update_calendar_event(
    config: CalendarAccountConfig,
    event_id: str,
    draft: CalendarEventDraft,
    *,
    on_tokens_refreshed: TokenCallback | None = None,
    settings: ProviderSettings | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> None:
    adapter = create_calendar_provider(config, settings, http_client)
    async with _connected(adapter, on_tokens_refreshed, "update_calendar_event") as provider:
        await provider.update_event(event_id, draft)


async def delete_calendar_event(
    config: CalendarAccountConfig,
    event_id: str,
    *,
    on_tokens_refreshed: TokenCallback | None = None,
    settings: ProviderSettings | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> None:
    adapter = create_calendar_provider(config, settings, http_client)
    async with _connected(adapter, on_tokens_refreshed, "delete_calendar_event") as provider:
        await provider.delete_event(event_id)


async def iter_calendar_events(
    config: CalendarAccountConfig,
    start: datetime,
    end: datetime,
    *,
    limit: int = DEFAULT_SYNC_PAGE_SIZE,
    on_tokens_refreshed: TokenCallback | None = None,
    settings: ProviderSettings | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> AsyncIterator[CalendarEvent]:
    """Yield every event in the window, following cursors until exhausted.

    One adapter connection serves all pages.
    """
    adapter = create_calendar_provider(config, settings, http_client)
    async with _connected(adapter, on_tokens_refreshed, "iter_calendar_events") as provider:
        cursor: str | None = None
        while True:
            page = await provider.sync_events(start, end, cursor=cursor, limit=limit)
            for event in page.events:
                yield event
            if not page.has_more or not page.cursor or page.cursor == cursor:
                break
            cursor = page.cursor


# ---------------------------------------------------------------------------
# Email operations
# ---------------------------------------------------------------------------


async def sync_email_account(
    config: EmailAccountConfig,
    cursor: str | None = None,
    limit: int = DEFAULT_MESSAGE_LIMIT,
    *,
    on_tokens_refreshed: TokenCallback | None = None,
    settings: ProviderSettings | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> EmailSyncResult:
    """Fetch one page of messages starting at *cursor*."""
    adapter = create_email_provider(config, settings, http_client)
    async with _connected(adapter, on_tokens_refreshed, "sync_email_account") as provider:
        return await provider.sync_messages(cursor=cursor, limit=limit)


async def send_email(
    config: EmailAccountConfig,
    options: SendEmailOptions,
    *,
    on_tokens_refreshed: TokenCallback | None = None,
    settings: ProviderSettings | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> str:
    """Send a message and return the provider message id."""
    adapter = create_email_provider(config, settings, http_client)
    async with _connected(adapter, on_tokens_refreshed, "send_email") as provider:
        return await provider.send_message(options)


async def list_email_folders(
    config: EmailAccountConfig,
    *,
    on_tokens_refreshed: TokenCallback | None = None,
    settings: ProviderSettings | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> list[EmailFolder]:
    adapter = create_email_provider(config, settings, http_client)
    async with _connected(adapter, on_tokens_refreshed, "list_email_folders") as provider:
        return await provider.list_folders()


async def iter_email_messages(
    config: EmailAccountConfig,
    *,
    limit: int = DEFAULT_MESSAGE_LIMIT,
    cursor: str | None = None,
    on_tokens_refreshed: TokenCallback | None = None,
    settings: ProviderSettings | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> AsyncIterator[EmailMessage]:
    """Yield every message, following cursors until ``has_more`` is false."""
    adapter = create_email_provider(config, settings, http_client)
    async with _connected(adapter, on_tokens_refreshed, "iter_email_messages") as provider:
        while True:
            page = await provider.sync_messages(cursor=cursor, limit=limit)
            for message in page.messages:
                yield message
            if not page.has_more or not page.cursor or page.cursor == cursor:
                break
            cursor = page.cursor
