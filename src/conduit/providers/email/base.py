"""Email provider contract."""

from __future__ import annotations

import abc

from conduit.providers.errors import ProviderCapabilityError
from conduit.providers.models import (
    EmailFolder,
    EmailSyncResult,
    SendEmailOptions,
    TokenPair,
)

DEFAULT_MESSAGE_LIMIT = 50


class EmailProvider(abc.ABC):
    """Provider abstraction implemented by every email adapter."""

    #: Whether :meth:`refresh_token` can mint a new access token.
    supports_token_refresh: bool = False

    @property
    @abc.abstractmethod
    def name(self) -> str:
        """Provider identifier (e.g., ``gmail``)."""
        ...

    @property
    def has_refresh_token(self) -> bool:
        return False

    @abc.abstractmethod
    async def connect(self) -> bool:
        """Probe the mailbox; ``False`` means the credentials were rejected."""
        ...

    @abc.abstractmethod
    async def disconnect(self) -> None:
        """Release provider resources."""
        ...

    @abc.abstractmethod
    async def sync_messages(
        self,
        cursor: str | None = None,
        limit: int = DEFAULT_MESSAGE_LIMIT,
    ) -> EmailSyncResult:
        """Return one page of messages starting at *cursor*."""
        ...

    @abc.abstractmethod
    async def send_message(self, options: SendEmailOptions) -> str:
        """Send a message and return the provider message id."""
        ...

    async def list_folders(self) -> list[EmailFolder]:
        raise ProviderCapabilityError(f"{self.name} does not expose folders")

    async def refresh_token(self) -> TokenPair:
        raise ProviderCapabilityError(f"{self.name} does not support token refresh")

    def apply_tokens(self, tokens: TokenPair) -> None:
        """Install refreshed credentials on this adapter instance."""
        raise ProviderCapabilityError(f"{self.name} does not support token refresh")
