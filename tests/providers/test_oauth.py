"""Tests for the OAuth refresh-token exchange and client settings."""

from __future__ import annotations

from urllib.parse import parse_qs

import httpx
import pytest

from conduit.providers.errors import TokenRefreshError
from conduit.providers.oauth import (
    GOOGLE_OAUTH_TOKEN_URL,
    MICROSOFT_GRAPH_SCOPE,
    OAuthClientSettings,
    ProviderSettings,
    exchange_refresh_token,
)

pytestmark = pytest.mark.unit

CLIENT = OAuthClientSettings(client_id="cid", client_secret="secret")


async def _exchange(handler, *, client=CLIENT, refresh_token="rtok", scope=None):
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
        return await exchange_refresh_token(
            http_client,
            token_url=GOOGLE_OAUTH_TOKEN_URL,
            client=client,
            refresh_token=refresh_token,
            provider_label="Google",
            scope=scope,
        )


class TestExchangeRefreshToken:
    async def test_posts_form_and_keeps_refresh_token(self):
        forms: list[dict[str, list[str]]] = []

        def handler(request: httpx.Request) -> httpx.Response:
            forms.append(parse_qs(request.content.decode()))
            return httpx.Response(200, json={"access_token": "new", "expires_in": 3599})

        tokens = await _exchange(handler)

        assert tokens.access_token == "new"
        assert tokens.refresh_token == "rtok"
        assert tokens.expires_in == 3599
        assert forms[0] == {
            "client_id": ["cid"],
            "client_secret": ["secret"],
            "refresh_token": ["rtok"],
            "grant_type": ["refresh_token"],
        }

    async def test_rotated_refresh_token_and_scope(self):
        forms: list[dict[str, list[str]]] = []

        def handler(request: httpx.Request) -> httpx.Response:
            forms.append(parse_qs(request.content.decode()))
            return httpx.Response(
                200,
                json={"access_token": "new", "refresh_token": "rotated", "expires_in": "60"},
            )

        tokens = await _exchange(handler, scope=MICROSOFT_GRAPH_SCOPE)
        assert tokens.refresh_token == "rotated"
        assert tokens.expires_in == 60
        assert forms[0]["scope"] == [MICROSOFT_GRAPH_SCOPE]

    async def test_unconfigured_client(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no request expected")

        with pytest.raises(TokenRefreshError, match="not configured"):
            await _exchange(handler, client=OAuthClientSettings())

    async def test_missing_refresh_token(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no request expected")

        with pytest.raises(TokenRefreshError, match="no refresh token"):
            await _exchange(handler, refresh_token=" ")

    async def test_error_response_is_redacted(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                400,
                json={"error": "invalid_grant", "error_description": "refresh_token=rtok revoked"},
            )

        with pytest.raises(TokenRefreshError) as excinfo:
            await _exchange(handler)
        assert "(400)" in str(excinfo.value)
        assert "rtok" not in str(excinfo.value)

    async def test_missing_access_token(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"token_type": "Bearer"})

        with pytest.raises(TokenRefreshError, match="missing a non-empty access_token"):
            await _exchange(handler)

    async def test_invalid_json(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="<html>")

        with pytest.raises(TokenRefreshError, match="invalid JSON"):
            await _exchange(handler)


class TestSettings:
    def test_client_settings_from_env(self, monkeypatch):
        monkeypatch.setenv("GOOGLE_CLIENT_ID", "gid")
        monkeypatch.setenv("GOOGLE_CLIENT_SECRET", "gsecret")
        settings = OAuthClientSettings.from_env("GOOGLE")
        assert settings.configured
        assert settings.client_id == "gid"

    def test_unset_env_is_unconfigured(self, monkeypatch):
        monkeypatch.delenv("MICROSOFT_CLIENT_ID", raising=False)
        monkeypatch.setenv("MICROSOFT_CLIENT_SECRET", "")
        assert not OAuthClientSettings.from_env("MICROSOFT").configured

    def test_provider_settings_calcom_url_from_env(self, monkeypatch):
        monkeypatch.setenv("CALCOM_API_URL", "https://cal.internal/v2")
        assert ProviderSettings.from_env().calcom_api_base_url == "https://cal.internal/v2"
