"""OAuth token refresh against provider token endpoints."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from types import MappingProxyType

import httpx

from ..core.config import OAuthSettings
from ..core.errors import AuthError, NetworkError, ValidationError
from ..core.interfaces import TokenProvider
from ..core.models import OAuthTokens

LOGGER = logging.getLogger(__name__)

TOKEN_ENDPOINTS = MappingProxyType(
    {
        "gmail": "https://oauth2.googleapis.com/token",
        "outlook": "https://login.microsoftonline.com/common/oauth2/v2.0/token",
    }
)


@dataclass(slots=True)
class HttpTokenRefresher(TokenProvider):
    """Refresh-token grant client for the OAuth-capable providers."""

    settings: OAuthSettings
    transport: httpx.AsyncBaseTransport | None = None

    async def refresh(self, provider: str, refresh_token: str) -> OAuthTokens:
        """Exchange ``refresh_token`` for a new access token."""
        endpoint = TOKEN_ENDPOINTS.get(provider)
        client_settings = getattr(self.settings, provider, None)
        if endpoint is None or client_settings is None:
            raise ValidationError(
                f"Provider {provider} does not support OAuth",
                code="UNSUPPORTED_PROVIDER",
            )
        if not client_settings.client_id:
            raise AuthError(f"No OAuth client configured for {provider}")

        form = {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            "client_id": client_settings.client_id,
        }
        if client_settings.client_secret:
            form["client_secret"] = client_settings.client_secret

        LOGGER.info("Refreshing OAuth access token for provider %s", provider)
        try:
            async with httpx.AsyncClient(
                timeout=self.settings.request_timeout_seconds,
                transport=self.transport,
            ) as client:
                response = await client.post(endpoint, data=form)
        except httpx.TimeoutException as exc:
            raise NetworkError(f"OAuth token refresh for {provider} timed out") from exc
        except httpx.HTTPError as exc:
            raise NetworkError(f"OAuth token refresh for {provider} failed: {exc}") from exc

        if response.status_code >= 400:
            raise AuthError(
                f"OAuth token refresh rejected by {provider} "
                f"(HTTP {response.status_code}): {response.text[:200]}"
            )
        try:
            payload = response.json()
        except ValueError as exc:
            raise AuthError(f"OAuth token endpoint for {provider} returned invalid JSON") from exc

        access_token = payload.get("access_token")
        if not isinstance(access_token, str) or not access_token:
            raise AuthError(f"OAuth token response from {provider} lacks access_token")
        expires_in = payload.get("expires_in")
        return OAuthTokens(
            access_token=access_token,
            refresh_token=payload.get("refresh_token") or refresh_token,
            expires_in=int(expires_in) if expires_in is not None else None,
        )


__all__ = ["HttpTokenRefresher", "TOKEN_ENDPOINTS"]
