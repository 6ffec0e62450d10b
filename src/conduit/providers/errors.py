"""Provider error taxonomy."""

from __future__ import annotations


class ProviderError(RuntimeError):
    """Base class for every error raised by the provider layer."""


class UnknownProviderError(ProviderError):
    """Raised when an account config names a provider kind with no adapter."""

    def __init__(self, provider: str) -> None:
        super().__init__(f"Unknown provider: {provider!r}")
        self.provider = provider


class ProviderConfigError(ProviderError):
    """Raised when an account config is missing provider-specific settings."""


class ConnectionFailedError(ProviderError):
    """Raised when an adapter cannot connect even after one token refresh."""


class TokenRefreshError(ProviderError):
    """Raised when an OAuth refresh-token exchange fails."""


class ProviderRequestError(ProviderError):
    """Raised when a provider API returns a non-success HTTP status."""

    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(f"Provider request failed ({status_code}): {message}")
        self.status_code = status_code
        self.message = message


class ProviderTransportError(ProviderError):
    """Raised when a provider cannot be reached at all."""


class ProviderCapabilityError(ProviderError):
    """Raised when an operation is not supported by the provider."""
