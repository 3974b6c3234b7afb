"""
Upstream Identity Client (Google)
=================================

Talks to Google's OAuth 2.0 endpoints on behalf of the gateway:

- ``build_authorization_url``: where to send the browser, with ``state`` set
  to the continuation nonce and a PKCE S256 challenge
- ``exchange_code``: authorization code -> tokens, then userinfo -> identity

A failed exchange never yields a partial UpstreamGrant: token endpoint errors,
malformed bodies and userinfo failures all raise ``UpstreamExchangeFailed``.
Only connection-level failures (nothing reached Google) are retried, since a
code that reached the token endpoint may already be spent.
"""

from __future__ import annotations

import base64
import hashlib
import logging
from typing import Any
from urllib.parse import urlencode

import httpx

from .auth import _scrub_secrets
from .config import GatewaySettings
from .errors import UpstreamExchangeFailed
from .http_client_pool import get_client_for_request
from .models import AuthorizationRequest, UpstreamGrant

logger = logging.getLogger(__name__)

GOOGLE_SCOPE_PREFIX = "https://www.googleapis.com/auth/"

_RETRYABLE_ERRORS = (httpx.ConnectError, httpx.ConnectTimeout)


def pkce_s256_challenge(verifier: str) -> str:
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


class UpstreamIdentityClient:
    """Google OAuth client used by the authorization flow."""

    def __init__(
        self,
        settings: GatewaySettings,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.settings = settings
        self._http_client = http_client

    def upstream_scopes(self, request: AuthorizationRequest) -> list[str]:
        """Configured scopes plus any Google API scopes the client asked for."""
        scopes = list(self.settings.google_scopes)
        for scope in request.scopes:
            if scope.startswith(GOOGLE_SCOPE_PREFIX) and scope not in scopes:
                scopes.append(scope)
        return scopes

    def build_authorization_url(
        self,
        request: AuthorizationRequest,
        *,
        state: str,
        code_verifier: str | None = None,
    ) -> str:
        params: dict[str, str] = {
            "client_id": self.settings.google_client_id,
            "redirect_uri": self.settings.callback_url,
            "response_type": "code",
            "scope": " ".join(self.upstream_scopes(request)),
            "state": state,
            "include_granted_scopes": "true",
        }
        if code_verifier:
            params["code_challenge"] = pkce_s256_challenge(code_verifier)
            params["code_challenge_method"] = "S256"
        return f"{self.settings.google_authorization_endpoint}?{urlencode(params)}"

    async def _send(
        self, client: httpx.AsyncClient, method: str, url: str, **kwargs: Any
    ) -> httpx.Response:
        attempts = max(1, self.settings.upstream_exchange_max_attempts)
        for attempt in range(1, attempts + 1):
            try:
                return await client.request(
                    method, url, timeout=self.settings.upstream_http_timeout, **kwargs
                )
            except _RETRYABLE_ERRORS as e:
                if attempt == attempts:
                    raise UpstreamExchangeFailed(
                        f"Could not reach identity provider: {type(e).__name__}"
                    ) from e
                logger.warning(
                    f"Connection to {url} failed (attempt {attempt}/{attempts}): "
                    f"{type(e).__name__}"
                )
            except httpx.HTTPError as e:
                raise UpstreamExchangeFailed(
                    f"Identity provider request failed: {type(e).__name__}"
                ) from e
        raise AssertionError("unreachable")

    async def exchange_code(
        self,
        code: str,
        redirect_uri: str,
        code_verifier: str | None = None,
    ) -> UpstreamGrant:
        """
        Exchange an upstream authorization code for tokens and identity.

        Raises:
            UpstreamExchangeFailed: on any failure; nothing is returned partially
        """
        form = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": redirect_uri,
            "client_id": self.settings.google_client_id,
            "client_secret": self.settings.google_client_secret,
        }
        if code_verifier:
            form["code_verifier"] = code_verifier

        if self._http_client is not None:
            return await self._exchange(self._http_client, form)
        async with get_client_for_request(
            timeout=self.settings.upstream_http_timeout
        ) as client:
            return await self._exchange(client, form)

    async def _exchange(
        self, client: httpx.AsyncClient, form: dict[str, str]
    ) -> UpstreamGrant:
        response = await self._send(
            client,
            "POST",
            self.settings.google_token_endpoint,
            data=form,
            headers={"Accept": "application/json"},
        )
        if response.status_code >= 400:
            logger.warning(
                f"Token endpoint returned {response.status_code}: "
                f"{_scrub_secrets(response.text[:300])}"
            )
            raise UpstreamExchangeFailed(
                f"Identity provider rejected the code exchange "
                f"({response.status_code}{_error_suffix(response)})"
            )

        token_data = _json_object(response, "token")
        access_token = token_data.get("access_token")
        if not isinstance(access_token, str) or not access_token:
            raise UpstreamExchangeFailed("Token response did not contain an access_token")

        userinfo = await self._fetch_userinfo(client, access_token)

        expires_in = token_data.get("expires_in")
        scope = token_data.get("scope") or ""
        return UpstreamGrant(
            access_token=access_token,
            refresh_token=token_data.get("refresh_token"),
            expires_in=int(expires_in) if expires_in is not None else None,
            token_type=token_data.get("token_type", "Bearer"),
            scopes=scope.split(),
            email=userinfo.get("email"),
            name=userinfo.get("name"),
            subject=userinfo.get("sub"),
        )

    async def _fetch_userinfo(
        self, client: httpx.AsyncClient, access_token: str
    ) -> dict[str, Any]:
        response = await self._send(
            client,
            "GET",
            self.settings.google_userinfo_endpoint,
            headers={"Authorization": f"Bearer {access_token}"},
        )
        if response.status_code >= 400:
            raise UpstreamExchangeFailed(
                f"Failed to fetch user info ({response.status_code})"
            )
        return _json_object(response, "userinfo")


def _json_object(response: httpx.Response, what: str) -> dict[str, Any]:
    try:
        data = response.json()
    except ValueError as e:
        raise UpstreamExchangeFailed(f"Malformed {what} response from provider") from e
    if not isinstance(data, dict):
        raise UpstreamExchangeFailed(f"Malformed {what} response from provider")
    return data


def _error_suffix(response: httpx.Response) -> str:
    try:
        error = response.json().get("error")
    except (ValueError, AttributeError):
        return ""
    return f": {error}" if isinstance(error, str) else ""
