"""Tests for the Google Calendar adapter."""

from __future__ import annotations

import json
from datetime import UTC, datetime
from zoneinfo import ZoneInfo

import httpx
import pytest

from conduit.providers.calendar.google import (
    GoogleCalendarProvider,
    build_google_event_body,
    google_event_to_calendar_event,
)
from conduit.providers.errors import ProviderRequestError
from conduit.providers.models import (
    Attendee,
    AttendeeResponseStatus,
    CalendarAccountConfig,
    CalendarEventDraft,
    EventStatus,
)
from conduit.providers.oauth import GOOGLE_OAUTH_TOKEN_URL

pytestmark = pytest.mark.unit

ACCOUNT = CalendarAccountConfig(
    provider="google", calendar_id="team@example.com", access_token="tok", refresh_token="rtok"
)
START = datetime(2026, 1, 5, tzinfo=UTC)
END = datetime(2026, 1, 12, tzinfo=UTC)


class TestGoogleEventMapping:
    def test_timed_event(self):
        event = google_event_to_calendar_event(
            {
                "id": "evt-1",
                "summary": " Standup ",
                "status": "tentative",
                "start": {"dateTime": "2026-01-05T09:00:00Z"},
                "end": {"dateTime": "2026-01-05T09:15:00+00:00"},
                "organizer": {"email": "Boss@Example.com", "displayName": "Boss"},
                "attendees": [
                    {"email": "a@example.com", "responseStatus": "accepted"},
                    {"email": "b@example.com", "responseStatus": "needsAction"},
                    {"displayName": "no email"},
                ],
                "recurrence": ["RRULE:FREQ=DAILY"],
            },
            calendar_id="primary",
        )
        assert event.title == "Standup"
        assert event.start_at == datetime(2026, 1, 5, 9, 0, tzinfo=UTC)
        assert event.status == EventStatus.tentative
        assert event.organizer.email == "boss@example.com"
        assert [a.response_status for a in event.attendees] == [
            AttendeeResponseStatus.accepted,
            AttendeeResponseStatus.needs_action,
        ]
        assert event.recurrence == "RRULE:FREQ=DAILY"
        assert event.is_all_day is False

    def test_all_day_event_uses_calendar_timezone(self):
        event = google_event_to_calendar_event(
            {
                "id": "evt-2",
                "start": {"date": "2026-01-05"},
                "end": {"date": "2026-01-06"},
            },
            calendar_id="primary",
            fallback_timezone="Europe/Berlin",
        )
        assert event.is_all_day is True
        assert event.title == "Untitled"
        assert event.start_at == datetime(2026, 1, 5, tzinfo=ZoneInfo("Europe/Berlin"))
        assert event.end_at == datetime(2026, 1, 6, tzinfo=ZoneInfo("Europe/Berlin"))

    def test_missing_boundaries_rejected(self):
        with pytest.raises(ValueError, match="missing start/end"):
            google_event_to_calendar_event({"id": "x", "start": {}}, calendar_id="primary")

    def test_event_body(self):
        body = build_google_event_body(
            CalendarEventDraft(
                title="Review",
                start_at=datetime(2026, 1, 5, 9, tzinfo=UTC),
                end_at=datetime(2026, 1, 5, 10, tzinfo=UTC),
                attendees=[Attendee(email="a@example.com", name="A")],
                recurrence="FREQ=WEEKLY",
            )
        )
        assert body == {
            "summary": "Review",
            "start": {"dateTime": "2026-01-05T09:00:00Z"},
            "end": {"dateTime": "2026-01-05T10:00:00Z"},
            "attendees": [{"email": "a@example.com", "displayName": "A"}],
            "recurrence": ["RRULE:FREQ=WEEKLY"],
        }

    def test_partial_body_only_has_set_fields(self):
        assert build_google_event_body(CalendarEventDraft(location="Room 1")) == {
            "location": "Room 1"
        }


class TestGoogleCalendarProvider:
    async def test_sync_events_page(self, provider_settings, mock_http):
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(
                200,
                json={
                    "timeZone": "UTC",
                    "items": [
                        {
                            "id": "evt-1",
                            "summary": "Planning",
                            "start": {"dateTime": "2026-01-06T10:00:00Z"},
                            "end": {"dateTime": "2026-01-06T11:00:00Z"},
                        },
                        {"id": "broken"},
                    ],
                    "nextPageToken": "page-2",
                },
            )

        provider = GoogleCalendarProvider(ACCOUNT, provider_settings, mock_http(handler))
        result = await provider.sync_events(START, END, cursor="page-1", limit=10)

        assert [e.id for e in result.events] == ["evt-1"]
        assert result.events[0].calendar_id == "team@example.com"
        assert result.cursor == "page-2"
        assert result.has_more is True

        url = requests[0].url
        assert url.path == "/calendar/v3/calendars/team@example.com/events"
        assert url.params["timeMin"] == "2026-01-05T00:00:00Z"
        assert url.params["timeMax"] == "2026-01-12T00:00:00Z"
        assert url.params["singleEvents"] == "true"
        assert url.params["maxResults"] == "10"
        assert url.params["pageToken"] == "page-1"

    async def test_last_page_has_no_cursor(self, provider_settings, mock_http):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"items": []})

        provider = GoogleCalendarProvider(ACCOUNT, provider_settings, mock_http(handler))
        result = await provider.sync_events(START, END)
        assert result.cursor is None
        assert result.has_more is False

    async def test_create_update_delete(self, provider_settings, mock_http):
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            if request.method == "POST":
                return httpx.Response(200, json={"id": "new-evt"})
            if request.method == "DELETE":
                return httpx.Response(410)
            return httpx.Response(200, json={"id": "evt-1"})

        provider = GoogleCalendarProvider(ACCOUNT, provider_settings, mock_http(handler))
        draft = CalendarEventDraft(title="Review", start_at=START, end_at=END)
        assert await provider.create_event(draft) == "new-evt"
        await provider.update_event("evt-1", CalendarEventDraft(title="Renamed"))
        await provider.delete_event("evt-1")

        assert [r.method for r in requests] == ["POST", "PATCH", "DELETE"]
        assert json.loads(requests[1].content) == {"summary": "Renamed"}
        assert requests[2].url.path.endswith("/events/evt-1")

    async def test_create_requires_complete_draft(self, provider_settings, mock_http):
        provider = GoogleCalendarProvider(
            ACCOUNT, provider_settings, mock_http(lambda r: httpx.Response(500))
        )
        with pytest.raises(ValueError, match="missing required field"):
            await provider.create_event(CalendarEventDraft(title="x"))

    async def test_api_error_raises(self, provider_settings, mock_http):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(400, json={"error": {"message": "Bad timeMin"}})

        provider = GoogleCalendarProvider(ACCOUNT, provider_settings, mock_http(handler))
        with pytest.raises(ProviderRequestError, match="Bad timeMin"):
            await provider.sync_events(START, END)

    async def test_connect_probe(self, provider_settings, mock_http):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/calendar/v3/users/me/calendarList"
            return httpx.Response(401, json={})

        provider = GoogleCalendarProvider(ACCOUNT, provider_settings, mock_http(handler))
        assert await provider.connect() is False

    async def test_refresh_and_apply_tokens(self, provider_settings, mock_http):
        auth_headers: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            if str(request.url) == GOOGLE_OAUTH_TOKEN_URL:
                return httpx.Response(200, json={"access_token": "fresh"})
            auth_headers.append(request.headers["Authorization"])
            return httpx.Response(200, json={"items": []})

        provider = GoogleCalendarProvider(ACCOUNT, provider_settings, mock_http(handler))
        assert provider.has_refresh_token
        tokens = await provider.refresh_token()
        provider.apply_tokens(tokens)
        await provider.sync_events(START, END)

        assert tokens.access_token == "fresh"
        assert tokens.refresh_token == "rtok"
        assert auth_headers == ["Bearer fresh"]
