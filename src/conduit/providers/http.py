"""Bearer-authenticated JSON requests shared by the HTTP-based adapters."""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Any

import httpx

from conduit.providers.errors import ProviderRequestError, ProviderTransportError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0
RATE_LIMIT_RETRY_STATUS_CODES = {429, 503}
RATE_LIMIT_MAX_RETRIES = 3
RATE_LIMIT_BASE_BACKOFF_SECONDS = 1.0
AUTH_FAILURE_STATUS_CODES = {401, 403}


def safe_error_message(response: httpx.Response) -> str:
    """Extract a short, whitespace-normalized, credential-free error message."""
    try:
        payload = response.json()
    except ValueError:
        payload = None

    message: str | None = None
    if isinstance(payload, dict):
        error_payload = payload.get("error")
        if isinstance(error_payload, dict):
            candidate = error_payload.get("message")
            if isinstance(candidate, str) and candidate.strip():
                message = candidate
        elif isinstance(error_payload, str) and error_payload.strip():
            message = error_payload
            description = payload.get("error_description")
            if isinstance(description, str) and description.strip():
                message = f"{error_payload}: {description}"
        if message is None:
            candidate = payload.get("message")
            if isinstance(candidate, str) and candidate.strip():
                message = candidate

    if message is None:
        raw_text = response.text.strip()
        message = raw_text or "Request failed without an error payload"

    return redact_credentials(" ".join(message.split()))[:200]


def redact_credentials(message: str) -> str:
    """Redact credential values from *message*.

    Account credentials come from the host application, so redaction is
    pattern-based rather than sourced from known values.
    """
    redacted = message
    # key=value style pairs
    redacted = re.sub(
        r"(?i)\b(client_secret|refresh_token|access_token|token)\s*=\s*([^\s,;&]+)",
        r"\1=[REDACTED]",
        redacted,
    )
    # JSON/Python dict style quoted values
    redacted = re.sub(
        r"""(?i)(['"]?(?:client_secret|refresh_token|access_token|token)['"]?\s*:\s*)(['"]).*?\2""",
        r'\1"[REDACTED]"',
        redacted,
    )
    # key: value style pairs
    redacted = re.sub(
        r"(?i)\b(client_secret|refresh_token|access_token|token)\s*:\s*(?!\")([^\s,;]+)",
        r"\1: [REDACTED]",
        redacted,
    )
    # Authorization headers echoed back by proxies
    redacted = re.sub(r"(?i)\bbearer\s+[A-Za-z0-9._~+/=-]+", "Bearer [REDACTED]", redacted)
    return redacted


def build_timeout(timeout_seconds: float | None) -> httpx.Timeout:
    """Translate a configured timeout (``None``/``0`` meaning unbounded)."""
    if not timeout_seconds:
        return httpx.Timeout(None)
    return httpx.Timeout(timeout_seconds)


class BearerJsonClient:
    """Small JSON-over-HTTPS client with bearer auth and rate-limit backoff.

    The client owns its ``httpx.AsyncClient`` only when one was not injected.
    """

    def __init__(
        self,
        *,
        base_url: str,
        access_token: str,
        provider_label: str,
        http_client: httpx.AsyncClient | None = None,
        timeout_seconds: float | None = DEFAULT_TIMEOUT_SECONDS,
        default_headers: dict[str, str] | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._access_token = access_token
        self._provider_label = provider_label
        self._default_headers = dict(default_headers or {})
        self._timeout_seconds = timeout_seconds
        self._owns_http_client = http_client is None
        self._http_client = http_client

    @property
    def http_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=build_timeout(self._timeout_seconds))
        return self._http_client

    def set_access_token(self, access_token: str) -> None:
        self._access_token = access_token

    def _build_url(self, path: str) -> str:
        if path.startswith(("https://", "http://")):
            return path
        normalized_path = path if path.startswith("/") else f"/{path}"
        return f"{self._base_url}{normalized_path}"

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: dict[str, Any] | None = None,
        extra_headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        """Send one request, retrying 429/503 responses with exponential backoff."""
        url = self._build_url(path)
        response = await self._request_once(
            method=method,
            url=url,
            params=params,
            json_body=json_body,
            extra_headers=extra_headers,
        )

        retry = 0
        while (
            response.status_code in RATE_LIMIT_RETRY_STATUS_CODES and retry < RATE_LIMIT_MAX_RETRIES
        ):
            backoff = RATE_LIMIT_BASE_BACKOFF_SECONDS * (2**retry)
            if response.status_code == 429:
                retry_after_header = response.headers.get("Retry-After")
                if retry_after_header is not None:
                    try:
                        backoff = float(retry_after_header)
                    except ValueError:
                        pass
            logger.warning(
                "%s API rate-limited (status=%d), retrying in %.1fs (attempt %d/%d)",
                self._provider_label,
                response.status_code,
                backoff,
                retry + 1,
                RATE_LIMIT_MAX_RETRIES,
            )
            await asyncio.sleep(backoff)
            response = await self._request_once(
                method=method,
                url=url,
                params=params,
                json_body=json_body,
                extra_headers=extra_headers,
            )
            retry += 1

        return response

    async def request_json(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: dict[str, Any] | None = None,
        extra_headers: dict[str, str] | None = None,
        tolerate_statuses: frozenset[int] = frozenset(),
    ) -> dict[str, Any]:
        """Send a request and decode a JSON object body.

        Non-2xx responses raise :class:`ProviderRequestError` unless listed in
        *tolerate_statuses*, in which case ``{}`` is returned.
        """
        response = await self.request(
            method,
            path,
            params=params,
            json_body=json_body,
            extra_headers=extra_headers,
        )

        if response.status_code in tolerate_statuses:
            return {}

        if response.status_code < 200 or response.status_code >= 300:
            raise ProviderRequestError(
                status_code=response.status_code,
                message=safe_error_message(response),
            )

        if response.status_code in (202, 204) or not response.content:
            return {}

        try:
            payload = response.json()
        except ValueError as exc:
            raise ProviderRequestError(
                status_code=response.status_code,
                message=f"{self._provider_label} API returned invalid JSON",
            ) from exc

        if not isinstance(payload, dict):
            raise ProviderRequestError(
                status_code=response.status_code,
                message=f"{self._provider_label} API returned an unexpected JSON payload shape",
            )
        return payload

    async def probe(self, path: str, *, params: dict[str, Any] | None = None) -> bool:
        """Cheap authenticated GET used by ``connect()``.

        Returns ``False`` for auth failures; any other non-2xx raises.
        """
        response = await self.request("GET", path, params=params)
        if response.status_code in AUTH_FAILURE_STATUS_CODES:
            logger.info(
                "%s rejected credentials (status=%d)",
                self._provider_label,
                response.status_code,
            )
            return False
        if response.status_code < 200 or response.status_code >= 300:
            raise ProviderRequestError(
                status_code=response.status_code,
                message=safe_error_message(response),
            )
        return True

    async def _request_once(
        self,
        *,
        method: str,
        url: str,
        params: dict[str, Any] | None,
        json_body: dict[str, Any] | None,
        extra_headers: dict[str, str] | None,
    ) -> httpx.Response:
        headers: dict[str, str] = {
            "Authorization": f"Bearer {self._access_token}",
            "Accept": "application/json",
            **self._default_headers,
        }
        if extra_headers:
            headers.update(extra_headers)
        try:
            return await self.http_client.request(
                method,
                url,
                params=params,
                json=json_body,
                headers=headers,
            )
        except httpx.HTTPError as exc:
            raise ProviderTransportError(
                f"{self._provider_label} request failed: {redact_credentials(str(exc))}"
            ) from exc

    async def close(self) -> None:
        if self._owns_http_client and self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None
