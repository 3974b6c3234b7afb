"""
Downstream Grants, Codes and Access Tokens
==========================================

The gateway's own OAuth credentials, as seen by protocol clients:

- A ``DownstreamGrant`` is created once per completed upstream exchange and
  carries the sealed Props of that login.
- A single-use authorization code points at the grant until the client
  redeems it at /token (PKCE-checked).
- Access tokens have the form ``<grant_id>:<secret>``; only the SHA-256 of the
  whole token is stored. Tokens expire no later than the upstream Google
  token, so Props never outlive the credential they carry.

Store layout::

    oauth:grant:<grant_id>          DownstreamGrant
    oauth:code:<sha256(code)>       AuthorizationCode
    oauth:code_redeemed:<sha256>    redemption marker (put-if-absent)
    oauth:token:<sha256(token)>     AccessTokenRecord
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import logging
import math
import secrets
import time
from dataclasses import dataclass

from pydantic import ValidationError

from .config import GatewaySettings
from .credential_store import CredentialStore
from .errors import InvalidGrant, InvalidRequest, Unauthenticated
from .models import (
    AccessTokenRecord,
    AuthorizationCode,
    AuthorizationRequest,
    DownstreamGrant,
    Props,
    RegisteredClient,
    TokenResponse,
)
from .props import PropsSealer

logger = logging.getLogger(__name__)


def _sha256(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def grant_key(grant_id: str) -> str:
    return f"oauth:grant:{grant_id}"


def code_key(code: str) -> str:
    return f"oauth:code:{_sha256(code)}"


def code_redeemed_key(code: str) -> str:
    return f"oauth:code_redeemed:{_sha256(code)}"


def token_key(token: str) -> str:
    return f"oauth:token:{_sha256(token)}"


def verify_pkce(
    code_verifier: str | None,
    code_challenge: str | None,
    method: str | None,
) -> bool:
    """Check a PKCE verifier against the challenge recorded at /authorize."""
    if code_challenge is None:
        return code_verifier is None
    if not code_verifier:
        return False
    if (method or "plain") == "S256":
        digest = hashlib.sha256(code_verifier.encode("ascii")).digest()
        computed = base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")
    else:
        computed = code_verifier
    return hmac.compare_digest(computed, code_challenge)


@dataclass(frozen=True)
class AuthenticatedSession:
    """A resolved bearer token: the grant and the Props it unlocks."""

    grant: DownstreamGrant
    props: Props

    @property
    def grant_id(self) -> str:
        return self.grant.grant_id


class GrantService:
    """Issues and resolves downstream grants, codes and tokens."""

    def __init__(
        self,
        store: CredentialStore,
        sealer: PropsSealer,
        settings: GatewaySettings,
    ) -> None:
        self._store = store
        self._sealer = sealer
        self._settings = settings

    # -------------------------------------------------------------------------
    # Issuance (called by the authorization flow after a validated exchange)
    # -------------------------------------------------------------------------

    def grant_lifetime(self, upstream_expires_in: int | None) -> int:
        ttl = self._settings.access_token_ttl_seconds
        if upstream_expires_in is not None and upstream_expires_in > 0:
            ttl = min(ttl, upstream_expires_in)
        return max(1, ttl)

    async def create_grant(
        self,
        client_id: str,
        scopes: list[str],
        props: Props,
        upstream_expires_in: int | None = None,
    ) -> DownstreamGrant:
        now = time.time()
        lifetime = self.grant_lifetime(upstream_expires_in)
        grant = DownstreamGrant(
            grant_id=secrets.token_urlsafe(16),
            client_id=client_id,
            scopes=list(scopes),
            sealed_props=self._sealer.seal(props),
            created_at=now,
            expires_at=now + lifetime,
        )
        await self._store.put(
            grant_key(grant.grant_id),
            grant.model_dump(mode="json"),
            ttl_seconds=lifetime,
        )
        logger.info(f"Issued grant {grant.grant_id} for client {client_id}")
        return grant

    async def create_authorization_code(
        self, grant: DownstreamGrant, request: AuthorizationRequest
    ) -> str:
        code = secrets.token_urlsafe(32)
        record = AuthorizationCode(
            grant_id=grant.grant_id,
            client_id=request.client_id,
            redirect_uri=request.redirect_uri,
            code_challenge=request.code_challenge,
            code_challenge_method=request.code_challenge_method,
            expires_at=time.time() + self._settings.code_ttl_seconds,
        )
        await self._store.put(
            code_key(code),
            record.model_dump(mode="json"),
            ttl_seconds=self._settings.code_ttl_seconds,
        )
        return code

    # -------------------------------------------------------------------------
    # Token endpoint
    # -------------------------------------------------------------------------

    async def exchange_authorization_code(
        self,
        client: RegisteredClient,
        code: str | None,
        redirect_uri: str | None,
        code_verifier: str | None,
    ) -> TokenResponse:
        """
        Redeem a downstream authorization code for an access token.

        A second redemption of the same code fails and revokes the grant the
        code pointed at, together with any token already issued for it.
        """
        if not code:
            raise InvalidRequest("Missing code")

        redeemed = await self._store.get(code_redeemed_key(code))
        if redeemed is not None:
            await self._reject_replay(redeemed["grant_id"])

        data = await self._store.get(code_key(code))
        if data is None:
            raise InvalidGrant("Authorization code is invalid or expired")
        record = AuthorizationCode.model_validate(data)

        if record.client_id != client.client_id:
            raise InvalidGrant("Authorization code was issued to another client")
        if redirect_uri is not None and redirect_uri != record.redirect_uri:
            raise InvalidGrant("redirect_uri does not match the authorization request")
        if client.is_public and record.code_challenge is None:
            raise InvalidGrant("PKCE is required for public clients")
        if not verify_pkce(code_verifier, record.code_challenge, record.code_challenge_method):
            raise InvalidGrant("PKCE verification failed")

        first = await self._store.put(
            code_redeemed_key(code),
            {"grant_id": record.grant_id, "redeemed_at": time.time()},
            ttl_seconds=self._settings.code_ttl_seconds,
            only_if_absent=True,
        )
        if not first:
            await self._reject_replay(record.grant_id)
        await self._store.delete(code_key(code))

        grant = await self._load_grant(record.grant_id)
        if grant is None:
            raise InvalidGrant("Grant for this code no longer exists")

        now = time.time()
        expires_in = int(math.floor(grant.expires_at - now))
        if expires_in <= 0:
            raise InvalidGrant("Grant for this code has expired")

        token = f"{grant.grant_id}:{secrets.token_urlsafe(32)}"
        token_record = AccessTokenRecord(
            grant_id=grant.grant_id,
            client_id=client.client_id,
            expires_at=grant.expires_at,
        )
        await self._store.put(
            token_key(token),
            token_record.model_dump(mode="json"),
            ttl_seconds=expires_in,
        )
        return TokenResponse(
            access_token=token,
            expires_in=expires_in,
            scope=" ".join(grant.scopes),
        )

    # -------------------------------------------------------------------------
    # Resolution (transport router)
    # -------------------------------------------------------------------------

    async def resolve_access_token(self, token: str | None) -> AuthenticatedSession:
        """
        Resolve a bearer token to its grant and Props.

        Raises:
            Unauthenticated: missing, malformed, unknown, expired or revoked
                token, or Props that no longer decrypt
        """
        if not token or token.count(":") != 1:
            raise Unauthenticated("Missing or malformed access token")
        grant_id, _ = token.split(":", 1)

        data = await self._store.get(token_key(token))
        if data is None:
            raise Unauthenticated("Invalid or expired access token")
        try:
            record = AccessTokenRecord.model_validate(data)
        except ValidationError as e:
            raise Unauthenticated("Invalid or expired access token") from e
        if record.grant_id != grant_id or time.time() >= record.expires_at:
            raise Unauthenticated("Invalid or expired access token")

        grant = await self._load_grant(grant_id)
        if grant is None or grant.is_expired():
            raise Unauthenticated("Grant has expired or was revoked")

        props = self._sealer.unseal(grant.sealed_props)
        return AuthenticatedSession(grant=grant, props=props)

    async def revoke_grant(self, grant_id: str) -> None:
        await self._store.delete(grant_key(grant_id))
        logger.info(f"Revoked grant {grant_id}")

    async def _reject_replay(self, grant_id: str) -> None:
        """Revoke the grant behind a replayed code and fail the redemption."""
        logger.warning(f"Authorization code for grant {grant_id} redeemed twice; revoking grant")
        await self.revoke_grant(grant_id)
        raise InvalidGrant("Authorization code has already been used")

    async def _load_grant(self, grant_id: str) -> DownstreamGrant | None:
        data = await self._store.get(grant_key(grant_id))
        if data is None:
            return None
        try:
            return DownstreamGrant.model_validate(data)
        except ValidationError:
            logger.warning(f"Discarding unreadable grant {grant_id}")
            return None
