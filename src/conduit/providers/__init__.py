"""Calendar/email provider sync layer: canonical types, adapters and gateway."""

from conduit.providers.errors import (
    ConnectionFailedError,
    ProviderCapabilityError,
    ProviderConfigError,
    ProviderError,
    ProviderRequestError,
    ProviderTransportError,
    TokenRefreshError,
    UnknownProviderError,
)
from conduit.providers.models import (
    Attendee,
    AttendeeResponseStatus,
    CalendarAccountConfig,
    CalendarEvent,
    CalendarEventDraft,
    CalendarProviderKind,
    CalendarSyncResult,
    EmailAccountConfig,
    EmailAddress,
    EmailFolder,
    EmailMessage,
    EmailProviderKind,
    EmailSyncResult,
    EventStatus,
    Participant,
    SendEmailOptions,
    TokenPair,
)

__all__ = [
    "Attendee",
    "AttendeeResponseStatus",
    "CalendarAccountConfig",
    "CalendarEvent",
    "CalendarEventDraft",
    "CalendarProviderKind",
    "CalendarSyncResult",
    "ConnectionFailedError",
    "EmailAccountConfig",
    "EmailAddress",
    "EmailFolder",
    "EmailMessage",
    "EmailProviderKind",
    "EmailSyncResult",
    "EventStatus",
    "Participant",
    "ProviderCapabilityError",
    "ProviderConfigError",
    "ProviderError",
    "ProviderRequestError",
    "ProviderTransportError",
    "SendEmailOptions",
    "TokenPair",
    "TokenRefreshError",
    "UnknownProviderError",
]
