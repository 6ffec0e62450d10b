"""Google Calendar adapter (Calendar API v3)."""

from __future__ import annotations

import logging
from datetime import UTC, date, datetime, tzinfo
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
    GOOGLE_OAUTH_TOKEN_URL,
    ProviderSettings,
    exchange_refresh_token,
)

logger = logging.getLogger(__name__)

GOOGLE_CALENDAR_API_BASE_URL = "https://www.googleapis.com/calendar/v3"
GOOGLE_MAX_RESULTS = 2500

_GOOGLE_RESPONSE_STATUS = {
    "needsAction": AttendeeResponseStatus.needs_action,
    "accepted": AttendeeResponseStatus.accepted,
    "declined": AttendeeResponseStatus.declined,
    "tentative": AttendeeResponseStatus.tentative,
}


def _google_rfc3339(value: datetime) -> str:
    normalized = value if value.tzinfo is not None else value.replace(tzinfo=UTC)
    return normalized.astimezone(UTC).isoformat().replace("+00:00", "Z")


def _parse_google_datetime(value: str) -> datetime:
    normalized = value.strip()
    if normalized.endswith("Z"):
        normalized = f"{normalized[:-1]}+00:00"
    try:
        parsed = datetime.fromisoformat(normalized)
    except ValueError as exc:
        raise ValueError(f"Google Calendar returned an invalid dateTime: {value}") from exc
    return parsed if parsed.tzinfo is not None else parsed.replace(tzinfo=UTC)


def _coerce_zoneinfo(timezone: str | None) -> ZoneInfo | tzinfo:
    if not timezone:
        return UTC
    try:
        return ZoneInfo(timezone)
    except (ZoneInfoNotFoundError, ValueError):
        return UTC


def _normalize_optional_text(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    normalized = value.strip()
    return normalized or None


def _parse_google_event_boundary(
    payload: dict[str, Any],
    *,
    fallback_timezone: str | None,
) -> tuple[datetime, bool]:
    """Return ``(instant, is_date_only)`` for a Google ``start``/``end`` object.

    Date-only boundaries become midnight in the boundary's (or calendar's)
    timezone, falling back to UTC.
    """
    date_time = payload.get("dateTime")
    if isinstance(date_time, str) and date_time.strip():
        return _parse_google_datetime(date_time), False

    date_value = payload.get("date")
    if isinstance(date_value, str) and date_value.strip():
        try:
            parsed_date = date.fromisoformat(date_value.strip())
        except ValueError as exc:
            raise ValueError(
                f"Google Calendar returned an invalid date value: {date_value}"
            ) from exc

        timezone = _normalize_optional_text(payload.get("timeZone")) or fallback_timezone
        parsed_datetime = datetime(
            parsed_date.year,
            parsed_date.month,
            parsed_date.day,
            tzinfo=_coerce_zoneinfo(timezone),
        )
        return parsed_datetime, True

    raise ValueError("Google Calendar event is missing start/end dateTime or date values")


def _extract_google_attendees(payload: Any) -> list[Attendee]:
    if not isinstance(payload, list):
        return []

    attendees: list[Attendee] = []
    for entry in payload:
        if not isinstance(entry, dict):
            continue
        email = _normalize_optional_text(entry.get("email"))
        if email is None:
            continue
        response_status = _GOOGLE_RESPONSE_STATUS.get(
            str(entry.get("responseStatus") or "").strip(),
            AttendeeResponseStatus.needs_action,
        )
        attendees.append(
            Attendee(
                email=email,
                name=_normalize_optional_text(entry.get("displayName")),
                response_status=response_status,
            )
        )
    return attendees


def _extract_google_organizer(payload: Any) -> Participant | None:
    if not isinstance(payload, dict):
        return None
    email = _normalize_optional_text(payload.get("email"))
    if email is None:
        return None
    return Participant(email=email, name=_normalize_optional_text(payload.get("displayName")))


def _extract_google_recurrence_rule(payload: Any) -> str | None:
    if not isinstance(payload, list):
        return None
    for entry in payload:
        normalized = _normalize_optional_text(entry)
        if normalized:
            return normalized
    return None


def _parse_google_event_status(value: Any) -> EventStatus:
    if not isinstance(value, str):
        return EventStatus.confirmed
    try:
        return EventStatus(value.strip().lower())
    except ValueError:
        return EventStatus.confirmed


def google_event_to_calendar_event(
    payload: dict[str, Any],
    *,
    calendar_id: str,
    fallback_timezone: str | None = None,
) -> CalendarEvent:
    """Normalize one Google ``Event`` resource."""
    event_id = _normalize_optional_text(payload.get("id"))
    if event_id is None:
        raise ValueError("Google Calendar event payload is missing a non-empty id")

    start_payload = payload.get("start")
    end_payload = payload.get("end")
    if not isinstance(start_payload, dict) or not isinstance(end_payload, dict):
        raise ValueError(f"Google Calendar event '{event_id}' is missing start/end payloads")

    start_at, start_is_date = _parse_google_event_boundary(
        start_payload, fallback_timezone=fallback_timezone
    )
    end_at, _ = _parse_google_event_boundary(end_payload, fallback_timezone=fallback_timezone)

    return CalendarEvent(
        id=event_id,
        calendar_id=calendar_id,
        title=_normalize_optional_text(payload.get("summary")) or "Untitled",
        description=_normalize_optional_text(payload.get("description")),
        location=_normalize_optional_text(payload.get("location")),
        start_at=start_at,
        end_at=end_at,
        is_all_day=start_is_date,
        status=_parse_google_event_status(payload.get("status")),
        organizer=_extract_google_organizer(payload.get("organizer")),
        attendees=_extract_google_attendees(payload.get("attendees")),
        recurrence=_extract_google_recurrence_rule(payload.get("recurrence")),
    )


def _google_boundary(value: datetime, *, all_day: bool, timezone: str | None) -> dict[str, str]:
    if all_day:
        return {"date": value.date().isoformat()}
    if timezone:
        return {"dateTime": value.astimezone(ZoneInfo(timezone)).isoformat(), "timeZone": timezone}
    return {"dateTime": _google_rfc3339(value)}


def build_google_event_body(draft: CalendarEventDraft) -> dict[str, Any]:
    """Translate the set fields of *draft* into a Google ``Event`` body."""
    body: dict[str, Any] = {}
    if draft.title is not None:
        body["summary"] = draft.title
    if draft.description is not None:
        body["description"] = draft.description
    if draft.location is not None:
        body["location"] = draft.location
    if draft.status is not None:
        body["status"] = draft.status.value

    all_day = bool(draft.is_all_day)
    if draft.start_at is not None:
        body["start"] = _google_boundary(draft.start_at, all_day=all_day, timezone=draft.timezone)
    if draft.end_at is not None:
        body["end"] = _google_boundary(draft.end_at, all_day=all_day, timezone=draft.timezone)

    if draft.attendees is not None:
        body["attendees"] = [
            {"email": a.email, **({"displayName": a.name} if a.name else {})}
            for a in draft.attendees
        ]
    if draft.recurrence is not None:
        rule = draft.recurrence.strip()
        if rule and not rule.upper().startswith(("RRULE:", "EXDATE", "RDATE")):
            rule = f"RRULE:{rule}"
        body["recurrence"] = [rule] if rule else []
    return body


class GoogleCalendarProvider(CalendarProvider):
    """Google provider with refresh-token support."""

    supports_token_refresh = True

    def __init__(
        self,
        config: CalendarAccountConfig,
        settings: ProviderSettings,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._calendar_id = config.calendar_id or "primary"
        self._refresh_token = config.refresh_token
        self._settings = settings
        self._client = BearerJsonClient(
            base_url=GOOGLE_CALENDAR_API_BASE_URL,
            access_token=config.access_token,
            provider_label="Google Calendar",
            http_client=http_client,
            timeout_seconds=settings.http_timeout_seconds,
        )

    @property
    def name(self) -> str:
        return "google"

    @property
    def has_refresh_token(self) -> bool:
        return bool(self._refresh_token)

    def _events_path(self, event_id: str | None = None) -> str:
        path = f"/calendars/{quote(self._calendar_id, safe='')}/events"
        if event_id is not None:
            path = f"{path}/{quote(event_id, safe='')}"
        return path

    async def connect(self) -> bool:
        return await self._client.probe("/users/me/calendarList", params={"maxResults": 1})

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

        params: dict[str, Any] = {
            "timeMin": _google_rfc3339(start),
            "timeMax": _google_rfc3339(end),
            "singleEvents": True,
            "orderBy": "startTime",
            "maxResults": min(limit, GOOGLE_MAX_RESULTS),
        }
        if cursor:
            params["pageToken"] = cursor

        payload = await self._client.request_json("GET", self._events_path(), params=params)
        fallback_timezone = _normalize_optional_text(payload.get("timeZone"))

        events: list[CalendarEvent] = []
        items = payload.get("items")
        for item in items if isinstance(items, list) else []:
            if not isinstance(item, dict):
                continue
            try:
                events.append(
                    google_event_to_calendar_event(
                        item,
                        calendar_id=self._calendar_id,
                        fallback_timezone=fallback_timezone,
                    )
                )
            except ValueError as exc:
                logger.warning("Skipping malformed Google Calendar event: %s", exc)

        next_page_token = _normalize_optional_text(payload.get("nextPageToken"))
        return CalendarSyncResult(
            events=events,
            cursor=next_page_token,
            has_more=next_page_token is not None,
        )

    async def create_event(self, draft: CalendarEventDraft) -> str:
        draft.require_complete()
        payload = await self._client.request_json(
            "POST",
            self._events_path(),
            json_body=build_google_event_body(draft),
        )
        event_id = _normalize_optional_text(payload.get("id"))
        if event_id is None:
            raise ValueError("Google Calendar create response is missing an event id")
        return event_id

    async def update_event(self, event_id: str, draft: CalendarEventDraft) -> None:
        await self._client.request_json(
            "PATCH",
            self._events_path(event_id),
            json_body=build_google_event_body(draft),
        )

    async def delete_event(self, event_id: str) -> None:
        await self._client.request_json(
            "DELETE",
            self._events_path(event_id),
            tolerate_statuses=frozenset({404, 410}),
        )

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
