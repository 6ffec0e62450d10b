"""Canonical calendar/email types shared by every provider adapter.

Adapters translate each provider's wire format into these models; nothing
outside ``conduit.providers`` ever sees a provider-specific payload.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class CalendarProviderKind(StrEnum):
    GOOGLE = "GOOGLE"
    MICROSOFT = "MICROSOFT"
    CALCOM = "CALCOM"


class EmailProviderKind(StrEnum):
    GMAIL = "GMAIL"
    OUTLOOK = "OUTLOOK"
    IMAP = "IMAP"


class EventStatus(StrEnum):
    confirmed = "confirmed"
    tentative = "tentative"
    cancelled = "cancelled"


class AttendeeResponseStatus(StrEnum):
    needs_action = "needs_action"
    accepted = "accepted"
    declined = "declined"
    tentative = "tentative"


def _ensure_aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def _normalize_email(value: str) -> str:
    normalized = value.strip().lower()
    if not normalized:
        raise ValueError("email must be a non-empty string")
    return normalized


# ---------------------------------------------------------------------------
# Calendar
# ---------------------------------------------------------------------------


class Participant(BaseModel):
    """Organizer of an event."""

    model_config = ConfigDict(extra="forbid")

    email: str
    name: str | None = None

    @field_validator("email")
    @classmethod
    def _normalize(cls, value: str) -> str:
        return _normalize_email(value)


class Attendee(BaseModel):
    """Attendee with RSVP tracking."""

    model_config = ConfigDict(extra="forbid")

    email: str
    name: str | None = None
    response_status: AttendeeResponseStatus = AttendeeResponseStatus.needs_action

    @field_validator("email")
    @classmethod
    def _normalize(cls, value: str) -> str:
        return _normalize_email(value)


class CalendarEvent(BaseModel):
    """Canonical event shape shared across provider implementations.

    ``start_at``/``end_at`` are always timezone-aware.  All-day events carry
    midnight boundaries with an exclusive ``end_at``.
    """

    model_config = ConfigDict(extra="forbid")

    id: str
    calendar_id: str
    title: str
    start_at: datetime
    end_at: datetime
    is_all_day: bool = False
    status: EventStatus = EventStatus.confirmed
    description: str | None = None
    location: str | None = None
    organizer: Participant | None = None
    attendees: list[Attendee] = Field(default_factory=list)
    recurrence: str | None = None

    @field_validator("start_at", "end_at")
    @classmethod
    def _aware(cls, value: datetime) -> datetime:
        return _ensure_aware(value)


class CalendarEventDraft(BaseModel):
    """Partial event payload for create/update.

    Every field is optional so the same shape serves partial updates; create
    operations call :meth:`require_complete` first.
    """

    model_config = ConfigDict(extra="forbid")

    title: str | None = None
    start_at: datetime | None = None
    end_at: datetime | None = None
    is_all_day: bool | None = None
    status: EventStatus | None = None
    description: str | None = None
    location: str | None = None
    attendees: list[Attendee] | None = None
    recurrence: str | None = None
    timezone: str | None = None

    @field_validator("start_at", "end_at")
    @classmethod
    def _aware(cls, value: datetime | None) -> datetime | None:
        if value is None:
            return None
        return _ensure_aware(value)

    @field_validator("timezone")
    @classmethod
    def _valid_timezone(cls, value: str | None) -> str | None:
        if value is None or not value.strip():
            return None
        try:
            ZoneInfo(value.strip())
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"unknown timezone: {value!r}") from exc
        return value.strip()

    @model_validator(mode="after")
    def _validate_window(self) -> CalendarEventDraft:
        if self.start_at is not None and self.end_at is not None and self.end_at < self.start_at:
            raise ValueError("end_at must not be before start_at")
        return self

    def require_complete(self) -> tuple[str, datetime, datetime]:
        """Return ``(title, start_at, end_at)``, raising ``ValueError`` if any is unset."""
        missing = [name for name in ("title", "start_at", "end_at") if getattr(self, name) is None]
        if missing:
            raise ValueError(f"event draft is missing required field(s): {', '.join(missing)}")
        return self.title, self.start_at, self.end_at  # type: ignore[return-value]


class CalendarSyncResult(BaseModel):
    events: list[CalendarEvent] = Field(default_factory=list)
    cursor: str | None = None
    has_more: bool = False


class CalendarAccountConfig(BaseModel):
    """One connected calendar account, owned by the host application."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    provider: str
    name: str = ""
    calendar_id: str = "primary"
    access_token: str
    refresh_token: str | None = None

    @field_validator("provider", mode="before")
    @classmethod
    def _upper_provider(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().upper()
        return value


# ---------------------------------------------------------------------------
# Email
# ---------------------------------------------------------------------------


class EmailAddress(BaseModel):
    model_config = ConfigDict(extra="forbid")

    email: str
    name: str | None = None

    @field_validator("email")
    @classmethod
    def _normalize(cls, value: str) -> str:
        return _normalize_email(value)


class EmailMessage(BaseModel):
    """Canonical message shape shared across email providers."""

    model_config = ConfigDict(extra="forbid")

    id: str
    thread_id: str | None = None
    sender: EmailAddress | None = None
    to: list[EmailAddress] = Field(default_factory=list)
    cc: list[EmailAddress] = Field(default_factory=list)
    bcc: list[EmailAddress] = Field(default_factory=list)
    subject: str | None = None
    body_text: str | None = None
    body_html: str | None = None
    labels: list[str] = Field(default_factory=list)
    is_read: bool = False
    is_starred: bool = False
    sent_at: datetime | None = None
    received_at: datetime | None = None
    in_reply_to: str | None = None

    @field_validator("sent_at", "received_at")
    @classmethod
    def _aware(cls, value: datetime | None) -> datetime | None:
        if value is None:
            return None
        return _ensure_aware(value)


class EmailSyncResult(BaseModel):
    messages: list[EmailMessage] = Field(default_factory=list)
    cursor: str | None = None
    has_more: bool = False


class EmailFolder(BaseModel):
    id: str
    name: str
    unread_count: int | None = None
    total_count: int | None = None


class SendEmailOptions(BaseModel):
    """Outbound message request accepted by every email adapter."""

    model_config = ConfigDict(extra="forbid")

    to: list[str]
    subject: str
    body_text: str | None = None
    body_html: str | None = None
    cc: list[str] = Field(default_factory=list)
    bcc: list[str] = Field(default_factory=list)
    reply_to: str | None = None
    in_reply_to: str | None = None
    thread_id: str | None = None

    @field_validator("to")
    @classmethod
    def _require_recipient(cls, value: list[str]) -> list[str]:
        cleaned = [item.strip() for item in value if item and item.strip()]
        if not cleaned:
            raise ValueError("at least one recipient is required")
        return cleaned


class EmailAccountConfig(BaseModel):
    """One connected mailbox, owned by the host application."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    provider: str
    email: str
    display_name: str | None = None
    access_token: str
    refresh_token: str | None = None
    imap_host: str | None = None
    imap_port: int = 993
    smtp_host: str | None = None
    smtp_port: int = 587
    use_tls: bool = True

    @field_validator("provider", mode="before")
    @classmethod
    def _upper_provider(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().upper()
        return value


# ---------------------------------------------------------------------------
# Credentials
# ---------------------------------------------------------------------------


class TokenPair(BaseModel):
    """Freshly issued credentials reported back to the caller after a refresh."""

    model_config = ConfigDict(extra="forbid")

    access_token: str
    refresh_token: str | None = None
    expires_in: int | None = None
