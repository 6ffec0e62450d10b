"""Calendar adapters (Google Calendar, Microsoft Graph, Cal.com)."""

from conduit.providers.calendar.base import CalendarProvider
from conduit.providers.calendar.calcom import CalComProvider
from conduit.providers.calendar.google import GoogleCalendarProvider
from conduit.providers.calendar.microsoft import MicrosoftCalendarProvider

__all__ = [
    "CalComProvider",
    "CalendarProvider",
    "GoogleCalendarProvider",
    "MicrosoftCalendarProvider",
]
