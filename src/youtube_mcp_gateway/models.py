"""
Gateway Data Models
===================

Pydantic models for everything the authorization flow creates, persists or
hands to a tool:

- ``AuthorizationRequest``: what a protocol client asked for at /authorize
- ``UpstreamGrant``: what Google returned from the code exchange
- ``Props``: the per-session execution context injected into every tool
- ``DownstreamGrant`` / ``AuthorizationCode`` / ``AccessTokenRecord``:
  the gateway's own credentials, as persisted in the credential store
- ``RegisteredClient``: a dynamically registered protocol client
"""

from __future__ import annotations

import time
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class AuthorizationRequest(BaseModel):
    """A protocol client's request to start an authorization flow."""

    model_config = ConfigDict(frozen=True)

    response_type: str = "code"
    client_id: str
    redirect_uri: str
    scopes: list[str] = Field(default_factory=list)
    state: str | None = None
    code_challenge: str | None = None
    code_challenge_method: Literal["S256", "plain"] | None = None


class UpstreamGrant(BaseModel):
    """Tokens and identity returned by the upstream provider."""

    model_config = ConfigDict(frozen=True)

    access_token: str
    refresh_token: str | None = None
    expires_in: int | None = None
    token_type: str = "Bearer"
    scopes: list[str] = Field(default_factory=list)
    email: str | None = None
    name: str | None = None
    subject: str | None = None


class Props(BaseModel):
    """
    Per-session execution context.

    Derived once from an UpstreamGrant when the downstream grant is issued and
    never mutated afterwards. Carries no refresh token.
    """

    model_config = ConfigDict(frozen=True)

    access_token: str
    email: str | None = None
    name: str | None = None
    subject: str | None = None

    def __repr__(self) -> str:
        return f"Props(email={self.email!r}, subject={self.subject!r})"

    __str__ = __repr__


class DownstreamGrant(BaseModel):
    """A completed authorization, bound 1:1 to one sealed Props."""

    model_config = ConfigDict(frozen=True)

    grant_id: str
    client_id: str
    scopes: list[str] = Field(default_factory=list)
    sealed_props: str
    created_at: float = Field(default_factory=time.time)
    expires_at: float

    def is_expired(self, now: float | None = None) -> bool:
        return (now if now is not None else time.time()) >= self.expires_at


class AuthorizationCode(BaseModel):
    """Single-use downstream authorization code (stored by hash)."""

    grant_id: str
    client_id: str
    redirect_uri: str
    code_challenge: str | None = None
    code_challenge_method: Literal["S256", "plain"] | None = None
    expires_at: float


class AccessTokenRecord(BaseModel):
    """Issued downstream access token (stored by hash)."""

    grant_id: str
    client_id: str
    expires_at: float


TokenEndpointAuthMethod = Literal["none", "client_secret_post", "client_secret_basic"]


class ClientRegistrationRequest(BaseModel):
    """RFC 7591 registration request body (unknown fields ignored)."""

    redirect_uris: list[str]
    client_name: str | None = None
    grant_types: list[str] = Field(default_factory=lambda: ["authorization_code"])
    response_types: list[str] = Field(default_factory=lambda: ["code"])
    token_endpoint_auth_method: TokenEndpointAuthMethod = "client_secret_basic"
    scope: str | None = None


class RegisteredClient(BaseModel):
    """A registered protocol client. Only the hash of its secret is kept."""

    client_id: str
    client_secret_hash: str | None = None
    client_name: str | None = None
    redirect_uris: list[str]
    grant_types: list[str] = Field(default_factory=lambda: ["authorization_code"])
    response_types: list[str] = Field(default_factory=lambda: ["code"])
    token_endpoint_auth_method: TokenEndpointAuthMethod = "client_secret_basic"
    client_id_issued_at: int = Field(default_factory=lambda: int(time.time()))

    @property
    def is_public(self) -> bool:
        return self.token_endpoint_auth_method == "none"


class TokenResponse(BaseModel):
    """RFC 6749 section 5.1 success body."""

    access_token: str
    token_type: str = "bearer"
    expires_in: int
    scope: str = ""
