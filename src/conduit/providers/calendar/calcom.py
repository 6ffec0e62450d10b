"""Cal.com adapter (API v2, bookings as calendar events).

Cal.com authenticates with a long-lived API key carried in ``access_token``;
there is no refresh flow.  Bookings are addressed by ``uid``.  The account's
``calendar_id`` is the event-type id used when creating bookings.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any
from urllib.parse import quote

import httpx

from conduit.providers.calendar.base import DEFAULT_SYNC_PAGE_SIZE, CalendarProvider
from conduit.providers.errors import ProviderCapabilityError, ProviderConfigError
from conduit.providers.http import BearerJsonClient
from conduit.providers.models import (
    Attendee,
    AttendeeResponseStatus,
    CalendarAccountConfig,
    CalendarEvent,
    CalendarEventDraft,
    CalendarSyncResult,
    EventStatus,
    Participant,
)
from conduit.providers.oauth import ProviderSettings

logger = logging.getLogger(__name__)

CALCOM_MAX_PAGE_SIZE = 250
_SKIPPED_BOOKING_STATUSES = {"cancelled", "rejected"}


def _calcom_timestamp(value: datetime) -> str:
    normalized = value if value.tzinfo is not None else value.replace(tzinfo=UTC)
    return normalized.astimezone(UTC).isoformat().replace("+00:00", "Z")


def _parse_calcom_datetime(value: Any) -> datetime:
    if not isinstance(value, str) or not value.strip():
        raise ValueError("Cal.com booking is missing start/end")
    normalized = value.strip()
    if normalized.endswith("Z"):
        normalized = f"{normalized[:-1]}+00:00"
    parsed = datetime.fromisoformat(normalized)
    return parsed if parsed.tzinfo is not None else parsed.replace(tzinfo=UTC)


def _text(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    return value.strip() or None


def calcom_booking_to_calendar_event(payload: dict[str, Any], *, calendar_id: str) -> CalendarEvent:
    """Normalize one Cal.com booking.

    Cal.com does not track attendee RSVPs; attendees of an accepted booking
    are reported as accepted.
    """
    uid = _text(payload.get("uid")) or _text(str(payload.get("id") or ""))
    if uid is None:
        raise ValueError("Cal.com booking payload is missing uid/id")

    status_raw = str(payload.get("status") or "").lower()
    status = EventStatus.confirmed if status_raw == "accepted" else EventStatus.tentative
    attendee_status = (
        AttendeeResponseStatus.accepted
        if status == EventStatus.confirmed
        else AttendeeResponseStatus.needs_action
    )

    attendees: list[Attendee] = []
    for entry in payload.get("attendees") or []:
        if not isinstance(entry, dict) or not _text(entry.get("email")):
            continue
        attendees.append(
            Attendee(
                email=entry["email"],
                name=_text(entry.get("name")),
                response_status=attendee_status,
            )
        )

    organizer: Participant | None = None
    hosts = payload.get("hosts")
    if isinstance(hosts, list) and hosts and isinstance(hosts[0], dict):
        host_email = _text(hosts[0].get("email"))
        if host_email:
            organizer = Participant(email=host_email, name=_text(hosts[0].get("name")))

    return CalendarEvent(
        id=uid,
        calendar_id=calendar_id,
        title=_text(payload.get("title")) or "Untitled",
        description=_text(payload.get("description")),
        location=_text(payload.get("location")),
        start_at=_parse_calcom_datetime(payload.get("start")),
        end_at=_parse_calcom_datetime(payload.get("end")),
        is_all_day=False,
        status=status,
        organizer=organizer,
        attendees=attendees,
    )


class CalComProvider(CalendarProvider):
    """Cal.com bookings exposed through the calendar contract."""

    def __init__(
        self,
        config: CalendarAccountConfig,
        settings: ProviderSettings,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._calendar_id = config.calendar_id or "calcom"
        self._client = BearerJsonClient(
            base_url=settings.calcom_api_base_url,
            access_token=config.access_token,
            provider_label="Cal.com",
            http_client=http_client,
            timeout_seconds=settings.http_timeout_seconds,
            default_headers={"cal-api-version": settings.calcom_api_version},
        )

    @property
    def name(self) -> str:
        return "calcom"

    def _booking_path(self, uid: str, action: str) -> str:
        return f"/bookings/{quote(uid, safe='')}/{action}"

    async def connect(self) -> bool:
        return await self._client.probe("/me")

    async def disconnect(self) -> None:
        await self._client.close()

    async def sync_events(
        self,
        start: datetime,
        end: datetime,
        cursor: str | None = None,
        limit: int = DEFAULT_SYNC_PAGE_SIZE,
    ) -> CalendarSyncResult:
        if limit < 1:
            raise ValueError("limit must be at least 1")
        try:
            skip = int(cursor) if cursor else 0
        except ValueError as exc:
            raise ValueError(f"Invalid Cal.com cursor: {cursor!r}") from exc
        take = min(limit, CALCOM_MAX_PAGE_SIZE)

        payload = await self._client.request_json(
            "GET",
            "/bookings",
            params={
                "afterStart": _calcom_timestamp(start),
                "beforeEnd": _calcom_timestamp(end),
                "sortStart": "asc",
                "take": take,
                "skip": skip,
            },
        )

        data = payload.get("data")
        bookings = data if isinstance(data, list) else []
        events: list[CalendarEvent] = []
        for booking in bookings:
            if not isinstance(booking, dict):
                continue
            if str(booking.get("status") or "").lower() in _SKIPPED_BOOKING_STATUSES:
                continue
            try:
                events.append(
                    calcom_booking_to_calendar_event(booking, calendar_id=self._calendar_id)
                )
            except ValueError as exc:
                logger.warning("Skipping malformed Cal.com booking: %s", exc)

        pagination = payload.get("pagination")
        if isinstance(pagination, dict) and "hasNextPage" in pagination:
            has_more = pagination.get("hasNextPage") is True
        else:
            has_more = len(bookings) >= take

        return CalendarSyncResult(
            events=events,
            cursor=str(skip + len(bookings)) if has_more else None,
            has_more=has_more,
        )

    async def create_event(self, draft: CalendarEventDraft) -> str:
        title, start_at, _ = draft.require_complete()
        try:
            event_type_id = int(self._calendar_id)
        except ValueError as exc:
            raise ProviderConfigError(
                "Cal.com accounts need a numeric calendar_id (event type id) to create bookings"
            ) from exc
        if not draft.attendees:
            raise ValueError("Cal.com bookings require at least one attendee")

        primary, *guests = draft.attendees
        body: dict[str, Any] = {
            "start": _calcom_timestamp(start_at),
            "eventTypeId": event_type_id,
            "attendee": {
                "name": primary.name or primary.email,
                "email": primary.email,
                "timeZone": draft.timezone or "UTC",
            },
            "metadata": {"title": title},
        }
        if guests:
            body["guests"] = [guest.email for guest in guests]
        if draft.location:
            body["location"] = draft.location

        payload = await self._client.request_json("POST", "/bookings", json_body=body)
        data = payload.get("data")
        uid = _text(data.get("uid")) if isinstance(data, dict) else None
        if uid is None:
            raise ValueError("Cal.com create response is missing a booking uid")
        return uid

    async def update_event(self, event_id: str, draft: CalendarEventDraft) -> None:
        """Reschedule a booking.  Cal.com bookings only support moving the start."""
        if draft.start_at is None:
            raise ProviderCapabilityError("Cal.com bookings can only be rescheduled (start_at)")
        ignored = [
            field
            for field in ("title", "description", "location", "attendees", "recurrence")
            if getattr(draft, field) is not None
        ]
        if ignored:
            logger.info("Cal.com reschedule ignores field(s): %s", ", ".join(ignored))
        await self._client.request_json(
            "POST",
            self._booking_path(event_id, "reschedule"),
            json_body={"start": _calcom_timestamp(draft.start_at)},
        )

    async def delete_event(self, event_id: str) -> None:
        """Cancel the booking; Cal.com never hard-deletes."""
        await self._client.request_json(
            "POST",
            self._booking_path(event_id, "cancel"),
            json_body={"cancellationReason": "Cancelled via calendar sync"},
            tolerate_statuses=frozenset({404}),
        )
