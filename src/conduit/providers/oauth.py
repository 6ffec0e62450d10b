"""OAuth client settings and the refresh-token exchange shared by OAuth adapters."""

from __future__ import annotations

import logging
import os

import httpx
from pydantic import BaseModel, ConfigDict, Field

from conduit.providers.errors import TokenRefreshError
from conduit.providers.http import DEFAULT_TIMEOUT_SECONDS, safe_error_message
from conduit.providers.models import TokenPair

logger = logging.getLogger(__name__)

GOOGLE_OAUTH_TOKEN_URL = "https://oauth2.googleapis.com/token"
MICROSOFT_OAUTH_TOKEN_URL = "https://login.microsoftonline.com/common/oauth2/v2.0/token"
MICROSOFT_GRAPH_SCOPE = "https://graph.microsoft.com/.default"

CALCOM_DEFAULT_API_BASE_URL = "https://api.cal.com/v2"
CALCOM_DEFAULT_API_VERSION = "2024-08-13"


class OAuthClientSettings(BaseModel):
    """OAuth application credentials (client id/secret) for one identity provider."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    client_id: str | None = None
    client_secret: str | None = None

    @property
    def configured(self) -> bool:
        return bool(self.client_id and self.client_secret)

    @classmethod
    def from_env(cls, prefix: str) -> OAuthClientSettings:
        """Read ``{prefix}_CLIENT_ID`` / ``{prefix}_CLIENT_SECRET``."""
        return cls(
            client_id=os.environ.get(f"{prefix}_CLIENT_ID") or None,
            client_secret=os.environ.get(f"{prefix}_CLIENT_SECRET") or None,
        )


class ProviderSettings(BaseModel):
    """Process-wide provider settings injected into every adapter."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    google: OAuthClientSettings = Field(default_factory=OAuthClientSettings)
    microsoft: OAuthClientSettings = Field(default_factory=OAuthClientSettings)
    calcom_api_base_url: str = CALCOM_DEFAULT_API_BASE_URL
    calcom_api_version: str = CALCOM_DEFAULT_API_VERSION
    http_timeout_seconds: float | None = DEFAULT_TIMEOUT_SECONDS

    @classmethod
    def from_env(cls) -> ProviderSettings:
        return cls(
            google=OAuthClientSettings.from_env("GOOGLE"),
            microsoft=OAuthClientSettings.from_env("MICROSOFT"),
            calcom_api_base_url=os.environ.get("CALCOM_API_URL") or CALCOM_DEFAULT_API_BASE_URL,
        )


def _coerce_expires_in_seconds(value: object) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int | float):
        return int(value) if value > 0 else None
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


async def exchange_refresh_token(
    http_client: httpx.AsyncClient,
    *,
    token_url: str,
    client: OAuthClientSettings,
    refresh_token: str,
    provider_label: str,
    scope: str | None = None,
) -> TokenPair:
    """Exchange *refresh_token* for a fresh access token.

    The returned pair keeps the original refresh token when the identity
    provider does not rotate it.

    Raises
    ------
    TokenRefreshError
        On missing client credentials, a transport failure, a non-2xx
        response, invalid JSON, or a response without ``access_token``.
    """
    if not client.configured:
        raise TokenRefreshError(f"{provider_label} OAuth client id/secret are not configured")
    if not refresh_token or not refresh_token.strip():
        raise TokenRefreshError(f"{provider_label} account has no refresh token")

    form = {
        "client_id": client.client_id,
        "client_secret": client.client_secret,
        "refresh_token": refresh_token,
        "grant_type": "refresh_token",
    }
    if scope:
        form["scope"] = scope

    try:
        response = await http_client.post(
            token_url,
            data=form,
            headers={"Accept": "application/json"},
        )
    except httpx.HTTPError as exc:
        raise TokenRefreshError(
            f"{provider_label} OAuth token refresh request failed: {exc}"
        ) from exc

    if response.status_code < 200 or response.status_code >= 300:
        raise TokenRefreshError(
            f"{provider_label} OAuth token refresh failed "
            f"({response.status_code}): {safe_error_message(response)}"
        )

    try:
        payload = response.json()
    except ValueError as exc:
        raise TokenRefreshError(
            f"{provider_label} OAuth token endpoint returned invalid JSON"
        ) from exc

    access_token = payload.get("access_token") if isinstance(payload, dict) else None
    if not isinstance(access_token, str) or not access_token.strip():
        raise TokenRefreshError(
            f"{provider_label} OAuth token response is missing a non-empty access_token"
        )

    new_refresh_token = payload.get("refresh_token")
    if not isinstance(new_refresh_token, str) or not new_refresh_token.strip():
        new_refresh_token = refresh_token

    logger.info("Refreshed %s OAuth access token", provider_label)
    return TokenPair(
        access_token=access_token.strip(),
        refresh_token=new_refresh_token.strip(),
        expires_in=_coerce_expires_in_seconds(payload.get("expires_in")),
    )
