"""Microsoft Graph calendar adapter."""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from typing import Any
from urllib.parse import quote
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import httpx

from conduit.providers.calendar.base import DEFAULT_SYNC_PAGE_SIZE, CalendarProvider
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
GRAPH_MAX_PAGE_SIZE = 1000
_DEFAULT_CALENDAR_IDS = {"", "primary", "calendar"}

_GRAPH_RESPONSE_STATUS = {
    "accepted": AttendeeResponseStatus.accepted,
    "organizer": AttendeeResponseStatus.accepted,
    "declined": AttendeeResponseStatus.declined,
    "tentativelyaccepted": AttendeeResponseStatus.tentative,
}

_GRAPH_DAY_CODES = {
    "sunday": "SU",
    "monday": "MO",
    "tuesday": "TU",
    "wednesday": "WE",
    "thursday": "TH",
    "friday": "FR",
    "saturday": "SA",
}
_GRAPH_WEEK_INDEX = {"first": 1, "second": 2, "third": 3, "fourth": 4, "last": -1}
_GRAPH_FREQUENCY = {
    "daily": "DAILY",
    "weekly": "WEEKLY",
    "absolutemonthly": "MONTHLY",
    "relativemonthly": "MONTHLY",
    "absoluteyearly": "YEARLY",
    "relativeyearly": "YEARLY",
}


def _graph_timestamp(value: datetime) -> str:
    normalized = value if value.tzinfo is not None else value.replace(tzinfo=UTC)
    return normalized.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%S")


def parse_graph_datetime(payload: Any) -> datetime:
    """Parse a Graph ``dateTimeTimeZone`` object.

    Graph emits seven fractional digits and a separate ``timeZone`` name;
    names that are not IANA zones fall back to UTC.
    """
    if not isinstance(payload, dict) or not isinstance(payload.get("dateTime"), str):
        raise ValueError("Microsoft Graph event is missing a start/end dateTime")

    raw = payload["dateTime"].strip()
    if raw.endswith("Z"):
        raw = f"{raw[:-1]}+00:00"
    if "." in raw:
        head, _, fraction = raw.partition(".")
        digits = "".join(ch for ch in fraction if ch.isdigit())
        suffix = fraction[len(digits) :]
        raw = f"{head}.{digits[:6]}{suffix}" if digits else f"{head}{suffix}"
    try:
        parsed = datetime.fromisoformat(raw)
    except ValueError as exc:
        raise ValueError(
            f"Microsoft Graph returned an invalid dateTime: {payload['dateTime']}"
        ) from exc

    if parsed.tzinfo is not None:
        return parsed
    timezone = payload.get("timeZone")
    if isinstance(timezone, str) and timezone.strip() and timezone.strip().upper() != "UTC":
        try:
            return parsed.replace(tzinfo=ZoneInfo(timezone.strip()))
        except (ZoneInfoNotFoundError, ValueError):
            logger.debug("Unknown Graph timezone %r, assuming UTC", timezone)
    return parsed.replace(tzinfo=UTC)


def _clean_text(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    return value.strip() or None


def _email_address(payload: Any) -> tuple[str | None, str | None]:
    if not isinstance(payload, dict):
        return None, None
    inner = payload.get("emailAddress")
    if not isinstance(inner, dict):
        return None, None
    address = inner.get("address")
    name = inner.get("name")
    email = address.strip() if isinstance(address, str) and address.strip() else None
    display = name.strip() if isinstance(name, str) and name.strip() else None
    return email, display


def graph_recurrence_to_rrule(payload: Any) -> str | None:
    """Convert a Graph ``patternedRecurrence`` to an RFC 5545 RRULE string.

    Patterns that cannot be expressed are returned as compact JSON instead.
    """
    if not isinstance(payload, dict):
        return None
    pattern = payload.get("pattern")
    if not isinstance(pattern, dict):
        return json.dumps(payload, separators=(",", ":"), sort_keys=True)

    frequency = _GRAPH_FREQUENCY.get(str(pattern.get("type", "")).lower())
    if frequency is None:
        return json.dumps(payload, separators=(",", ":"), sort_keys=True)

    parts = [f"FREQ={frequency}"]
    interval = pattern.get("interval")
    if isinstance(interval, int) and interval > 1:
        parts.append(f"INTERVAL={interval}")

    days = [
        _GRAPH_DAY_CODES[d.lower()]
        for d in pattern.get("daysOfWeek") or []
        if isinstance(d, str) and d.lower() in _GRAPH_DAY_CODES
    ]
    if days:
        if str(pattern.get("type", "")).lower().startswith("relative"):
            index = _GRAPH_WEEK_INDEX.get(str(pattern.get("index", "first")).lower(), 1)
            days = [f"{index}{d}" for d in days]
        parts.append(f"BYDAY={','.join(days)}")

    day_of_month = pattern.get("dayOfMonth")
    if isinstance(day_of_month, int) and day_of_month > 0:
        parts.append(f"BYMONTHDAY={day_of_month}")
    month = pattern.get("month")
    if isinstance(month, int) and month > 0 and frequency == "YEARLY":
        parts.append(f"BYMONTH={month}")

    range_payload = payload.get("range")
    if isinstance(range_payload, dict):
        range_type = str(range_payload.get("type", "")).lower()
        end_date = range_payload.get("endDate")
        occurrences = range_payload.get("numberOfOccurrences")
        if range_type == "enddate" and isinstance(end_date, str) and end_date:
            parts.append(f"UNTIL={end_date.replace('-', '')}")
        elif range_type == "numbered" and isinstance(occurrences, int) and occurrences > 0:
            parts.append(f"COUNT={occurrences}")

    return f"RRULE:{';'.join(parts)}"


def _graph_event_status(payload: dict[str, Any]) -> EventStatus:
    if payload.get("isCancelled") is True:
        return EventStatus.cancelled
    show_as = str(payload.get("showAs") or "").lower()
    response_status = payload.get("responseStatus")
    response = (
        str(response_status.get("response") or "").lower()
        if isinstance(response_status, dict)
        else ""
    )
    if show_as == "tentative" or response == "tentativelyaccepted":
        return EventStatus.tentative
    return EventStatus.confirmed


def graph_event_to_calendar_event(payload: dict[str, Any], *, calendar_id: str) -> CalendarEvent:
    """Normalize one Graph ``event`` resource."""
    event_id = payload.get("id")
    if not isinstance(event_id, str) or not event_id.strip():
        raise ValueError("Microsoft Graph event payload is missing a non-empty id")

    attendees: list[Attendee] = []
    for entry in payload.get("attendees") or []:
        email, name = _email_address(entry)
        if email is None:
            continue
        status_payload = entry.get("status") if isinstance(entry, dict) else None
        response = (
            str(status_payload.get("response") or "").lower()
            if isinstance(status_payload, dict)
            else ""
        )
        attendees.append(
            Attendee(
                email=email,
                name=name,
                response_status=_GRAPH_RESPONSE_STATUS.get(
                    response, AttendeeResponseStatus.needs_action
                ),
            )
        )

    organizer_email, organizer_name = _email_address(payload.get("organizer"))
    body = payload.get("body")
    description = body.get("content") if isinstance(body, dict) else None
    location = payload.get("location")
    location_name = location.get("displayName") if isinstance(location, dict) else None
    subject = payload.get("subject")

    return CalendarEvent(
        id=event_id.strip(),
        calendar_id=calendar_id,
        title=_clean_text(subject) or "Untitled",
        description=_clean_text(description),
        location=_clean_text(location_name),
        start_at=parse_graph_datetime(payload.get("start")),
        end_at=parse_graph_datetime(payload.get("end")),
        is_all_day=payload.get("isAllDay") is True,
        status=_graph_event_status(payload),
        organizer=(
            Participant(email=organizer_email, name=organizer_name) if organizer_email else None
        ),
        attendees=attendees,
        recurrence=graph_recurrence_to_rrule(payload.get("recurrence")),
    )


def _graph_boundary(value: datetime, *, all_day: bool, timezone: str | None) -> dict[str, str]:
    if all_day:
        return {"dateTime": f"{value.date().isoformat()}T00:00:00", "timeZone": timezone or "UTC"}
    if timezone:
        local = value.astimezone(ZoneInfo(timezone))
        return {"dateTime": local.strftime("%Y-%m-%dT%H:%M:%S"), "timeZone": timezone}
    return {"dateTime": _graph_timestamp(value), "timeZone": "UTC"}


def build_graph_event_body(draft: CalendarEventDraft) -> dict[str, Any]:
    """Translate the set fields of *draft* into a Graph ``event`` body."""
    body: dict[str, Any] = {}
    if draft.title is not None:
        body["subject"] = draft.title
    if draft.description is not None:
        body["body"] = {"contentType": "html", "content": draft.description}
    if draft.location is not None:
        body["location"] = {"displayName": draft.location}

    all_day = bool(draft.is_all_day)
    if draft.is_all_day is not None:
        body["isAllDay"] = all_day
    if draft.start_at is not None:
        body["start"] = _graph_boundary(draft.start_at, all_day=all_day, timezone=draft.timezone)
    if draft.end_at is not None:
        body["end"] = _graph_boundary(draft.end_at, all_day=all_day, timezone=draft.timezone)
    if draft.status is not None:
        body["showAs"] = "tentative" if draft.status == EventStatus.tentative else "busy"

    if draft.attendees is not None:
        body["attendees"] = [
            {
                "emailAddress": {"address": a.email, **({"name": a.name} if a.name else {})},
                "type": "required",
            }
            for a in draft.attendees
        ]
    return body


class MicrosoftCalendarProvider(CalendarProvider):
    """Microsoft Graph calendar provider with refresh-token support."""

    supports_token_refresh = True

    def __init__(
        self,
        config: CalendarAccountConfig,
        settings: ProviderSettings,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        raw_calendar_id = (config.calendar_id or "").strip()
        self._calendar_id = raw_calendar_id or "primary"
        self._uses_default_calendar = raw_calendar_id.lower() in _DEFAULT_CALENDAR_IDS
        self._refresh_token = config.refresh_token
        self._settings = settings
        self._client = BearerJsonClient(
            base_url=MICROSOFT_GRAPH_API_BASE_URL,
            access_token=config.access_token,
            provider_label="Microsoft Graph",
            http_client=http_client,
            timeout_seconds=settings.http_timeout_seconds,
            default_headers={"Prefer": 'outlook.timezone="UTC"'},
        )

    @property
    def name(self) -> str:
        return "microsoft"

    @property
    def has_refresh_token(self) -> bool:
        return bool(self._refresh_token)

    def _calendar_path(self) -> str:
        if self._uses_default_calendar:
            return "/me/calendar"
        return f"/me/calendars/{quote(self._calendar_id, safe='')}"

    async def connect(self) -> bool:
        return await self._client.probe("/me/calendars", params={"$top": 1})

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

        if cursor:
            # nextLink already carries the window and paging state.
            payload = await self._client.request_json("GET", cursor)
        else:
            payload = await self._client.request_json(
                "GET",
                f"{self._calendar_path()}/calendarView",
                params={
                    "startDateTime": _graph_timestamp(start),
                    "endDateTime": _graph_timestamp(end),
                    "$orderby": "start/dateTime",
                    "$top": min(limit, GRAPH_MAX_PAGE_SIZE),
                },
            )

        events: list[CalendarEvent] = []
        items = payload.get("value")
        for item in items if isinstance(items, list) else []:
            if not isinstance(item, dict):
                continue
            try:
                events.append(graph_event_to_calendar_event(item, calendar_id=self._calendar_id))
            except ValueError as exc:
                logger.warning("Skipping malformed Microsoft Graph event: %s", exc)

        next_link = payload.get("@odata.nextLink")
        next_cursor = next_link if isinstance(next_link, str) and next_link else None
        return CalendarSyncResult(
            events=events, cursor=next_cursor, has_more=next_cursor is not None
        )

    async def create_event(self, draft: CalendarEventDraft) -> str:
        draft.require_complete()
        body = build_graph_event_body(draft)
        body.setdefault("isAllDay", False)
        payload = await self._client.request_json(
            "POST", f"{self._calendar_path()}/events", json_body=body
        )
        event_id = payload.get("id")
        if not isinstance(event_id, str) or not event_id:
            raise ValueError("Microsoft Graph create response is missing an event id")
        return event_id

    async def update_event(self, event_id: str, draft: CalendarEventDraft) -> None:
        await self._client.request_json(
            "PATCH",
            f"/me/events/{quote(event_id, safe='')}",
            json_body=build_graph_event_body(draft),
        )

    async def delete_event(self, event_id: str) -> None:
        await self._client.request_json(
            "DELETE",
            f"/me/events/{quote(event_id, safe='')}",
            tolerate_statuses=frozenset({404}),
        )

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
