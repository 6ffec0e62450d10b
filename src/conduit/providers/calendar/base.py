"""Calendar provider contract."""

from __future__ import annotations

import abc
from datetime import datetime

from conduit.providers.errors import ProviderCapabilityError
from conduit.providers.models import (
    CalendarEventDraft,
    CalendarSyncResult,
    TokenPair,
)

DEFAULT_SYNC_PAGE_SIZE = 250


class CalendarProvider(abc.ABC):
    """Provider abstraction implemented by every calendar adapter.

    Adapters hold a private copy of the account credentials; the gateway
    pushes refreshed tokens in through :meth:`apply_tokens`.
    """

    #: Whether :meth:`refresh_token` can mint a new access token.
    supports_token_refresh: bool = False

    @property
    @abc.abstractmethod
    def name(self) -> str:
        """Provider identifier (e.g., ``google``)."""
        ...

    @property
    def has_refresh_token(self) -> bool:
        return False

    @abc.abstractmethod
    async def connect(self) -> bool:
        """Probe the provider; ``False`` means the credentials were rejected."""
        ...

    @abc.abstractmethod
    async def disconnect(self) -> None:
        """Release provider resources."""
        ...

    @abc.abstractmethod
    async def sync_events(
        self,
        start: datetime,
        end: datetime,
        cursor: str | None = None,
        limit: int = DEFAULT_SYNC_PAGE_SIZE,
    ) -> CalendarSyncResult:
        """Return one page of events overlapping ``[start, end)``."""
        ...

    @abc.abstractmethod
    async def create_event(self, draft: CalendarEventDraft) -> str:
        """Create an event and return its provider id."""
        ...

    @abc.abstractmethod
    async def update_event(self, event_id: str, draft: CalendarEventDraft) -> None:
        """Apply the non-``None`` fields of *draft* to an existing event."""
        ...

    @abc.abstractmethod
    async def delete_event(self, event_id: str) -> None:
        """Delete (or cancel) an event.  Deleting a missing event is not an error."""
        ...

    async def refresh_token(self) -> TokenPair:
        raise ProviderCapabilityError(f"{self.name} does not support token refresh")

    def apply_tokens(self, tokens: TokenPair) -> None:
        """Install refreshed credentials on this adapter instance."""
        raise ProviderCapabilityError(f"{self.name} does not support token refresh")
