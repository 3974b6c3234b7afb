"""
Protocol Client Registry
========================

RFC 7591 dynamic client registration for MCP clients. Registered clients are
kept in the credential store under ``oauth:client:<client_id>``; confidential
clients get a secret that is returned once and stored only as a SHA-256 hash.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from urllib.parse import urlparse

from .credential_store import CredentialStore
from .errors import InvalidClient, InvalidRedirect, InvalidRequest
from .models import ClientRegistrationRequest, RegisteredClient

logger = logging.getLogger(__name__)

_LOOPBACK_HOSTS = frozenset({"localhost", "127.0.0.1", "[::1]", "::1"})


def client_key(client_id: str) -> str:
    return f"oauth:client:{client_id}"


def hash_secret(secret: str) -> str:
    return hashlib.sha256(secret.encode("utf-8")).hexdigest()


def _validate_redirect_uri(uri: str) -> None:
    parsed = urlparse(uri)
    if parsed.fragment:
        raise InvalidRedirect(f"Redirect URI must not contain a fragment: {uri}")
    if parsed.scheme == "https" and parsed.netloc:
        return
    if parsed.scheme == "http" and parsed.hostname in _LOOPBACK_HOSTS:
        return
    # Native apps may use private-use URI schemes (RFC 8252 section 7.1)
    if parsed.scheme not in ("", "http", "https", "javascript", "data") and "." in parsed.scheme:
        return
    raise InvalidRedirect(f"Redirect URI not allowed: {uri}")


class ClientRegistry:
    """Registration, lookup and authentication of protocol clients."""

    def __init__(self, store: CredentialStore) -> None:
        self._store = store

    async def register(
        self, request: ClientRegistrationRequest
    ) -> tuple[RegisteredClient, str | None]:
        """
        Register a client.

        Returns:
            The stored client and its plaintext secret (None for public clients)
        """
        if not request.redirect_uris:
            raise InvalidRedirect("At least one redirect URI is required")
        for uri in request.redirect_uris:
            _validate_redirect_uri(uri)
        if "authorization_code" not in request.grant_types:
            raise InvalidRequest("grant_types must include authorization_code")
        if "code" not in request.response_types:
            raise InvalidRequest("response_types must include code")

        client_secret = None
        if request.token_endpoint_auth_method != "none":
            client_secret = secrets.token_urlsafe(32)

        client = RegisteredClient(
            client_id=secrets.token_urlsafe(16),
            client_secret_hash=hash_secret(client_secret) if client_secret else None,
            client_name=request.client_name,
            redirect_uris=list(request.redirect_uris),
            grant_types=list(request.grant_types),
            response_types=list(request.response_types),
            token_endpoint_auth_method=request.token_endpoint_auth_method,
        )
        await self._store.put(client_key(client.client_id), client.model_dump(mode="json"))
        logger.info(
            f"Registered client {client.client_id} ({client.client_name or 'unnamed'}, "
            f"auth={client.token_endpoint_auth_method})"
        )
        return client, client_secret

    async def get(self, client_id: str | None) -> RegisteredClient | None:
        if not client_id:
            return None
        data = await self._store.get(client_key(client_id))
        return RegisteredClient.model_validate(data) if data else None

    async def require(self, client_id: str | None) -> RegisteredClient:
        client = await self.get(client_id)
        if client is None:
            raise InvalidClient(f"Unknown client: {client_id}")
        return client

    async def authenticate(
        self, client_id: str | None, client_secret: str | None
    ) -> RegisteredClient:
        """
        Authenticate a client at the token endpoint.

        Public clients present no secret (PKCE is enforced instead);
        confidential clients must present the secret issued at registration.
        """
        client = await self.require(client_id)
        if client.is_public:
            if client_secret:
                raise InvalidClient("Public clients must not send a client secret")
            return client
        if not client_secret or not client.client_secret_hash:
            raise InvalidClient("Client authentication required")
        if not hmac.compare_digest(hash_secret(client_secret), client.client_secret_hash):
            raise InvalidClient("Client authentication failed")
        return client


def check_redirect_uri(client: RegisteredClient, redirect_uri: str) -> None:
    """Exact-match the redirect URI against the client's registered URIs."""
    if redirect_uri not in client.redirect_uris:
        raise InvalidRedirect("redirect_uri is not registered for this client")
