"""
Authorization Continuation Tokens
=================================

Between /authorize and /callback the pending AuthorizationRequest lives in
the browser, not on the server: it is serialised into a continuation token
signed with HMAC-SHA256 and set as an HttpOnly cookie. The upstream ``state``
parameter carries only the token's nonce.

Token layout::

    base64url(json payload) "." base64url(hmac_sha256(secret, payload))

Payload fields: ``req`` (the AuthorizationRequest), ``nonce``, ``exp``
(unix seconds) and ``cv`` (the upstream PKCE code verifier).
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import secrets
import time
from dataclasses import dataclass

from pydantic import ValidationError

from .errors import FlowExpired, StateMismatch
from .models import AuthorizationRequest

CONTINUATION_COOKIE = "ytmcp_flow"


def _b64encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def _b64decode(data: str) -> bytes:
    return base64.urlsafe_b64decode(data + "=" * (-len(data) % 4))


@dataclass(frozen=True)
class Continuation:
    """A verified pending authorization flow."""

    request: AuthorizationRequest
    nonce: str
    expires_at: float
    code_verifier: str


class ContinuationCodec:
    """Issues and verifies signed continuation tokens."""

    def __init__(self, secret: str, ttl_seconds: int = 600) -> None:
        if not secret:
            raise ValueError("ContinuationCodec requires a non-empty secret")
        self._key = hashlib.sha256(b"continuation\x00" + secret.encode("utf-8")).digest()
        self.ttl_seconds = ttl_seconds

    def _sign(self, payload: bytes) -> bytes:
        return hmac.new(self._key, payload, hashlib.sha256).digest()

    def issue(
        self, request: AuthorizationRequest, now: float | None = None
    ) -> tuple[str, Continuation]:
        """Create a continuation for ``request`` with a fresh nonce and verifier."""
        now = time.time() if now is None else now
        continuation = Continuation(
            request=request,
            nonce=secrets.token_urlsafe(32),
            expires_at=now + self.ttl_seconds,
            code_verifier=secrets.token_urlsafe(48),
        )
        payload = json.dumps(
            {
                "req": request.model_dump(mode="json"),
                "nonce": continuation.nonce,
                "exp": continuation.expires_at,
                "cv": continuation.code_verifier,
            },
            separators=(",", ":"),
            sort_keys=True,
        ).encode("utf-8")
        token = f"{_b64encode(payload)}.{_b64encode(self._sign(payload))}"
        return token, continuation

    def verify(self, token: str | None, now: float | None = None) -> Continuation:
        """
        Verify signature then expiry.

        Raises:
            StateMismatch: token missing, malformed or not signed by us
            FlowExpired: token is authentic but older than the flow TTL
        """
        if not token or token.count(".") != 1:
            raise StateMismatch("No pending authorization flow for this browser")
        encoded_payload, encoded_sig = token.split(".")
        try:
            payload = _b64decode(encoded_payload)
            signature = _b64decode(encoded_sig)
        except (ValueError, TypeError) as e:
            raise StateMismatch("Authorization flow token is malformed") from e

        if not hmac.compare_digest(signature, self._sign(payload)):
            raise StateMismatch("Authorization flow token signature is invalid")

        try:
            data = json.loads(payload)
            continuation = Continuation(
                request=AuthorizationRequest.model_validate(data["req"]),
                nonce=str(data["nonce"]),
                expires_at=float(data["exp"]),
                code_verifier=str(data["cv"]),
            )
        except (KeyError, TypeError, ValueError, ValidationError) as e:
            raise StateMismatch("Authorization flow token is malformed") from e

        now = time.time() if now is None else now
        if now >= continuation.expires_at:
            raise FlowExpired("Authorization flow expired; start again at /authorize")
        return continuation


def nonce_matches(continuation: Continuation, provider_state: str | None) -> bool:
    """Constant-time comparison of the upstream ``state`` to the bound nonce."""
    if not provider_state:
        return False
    return hmac.compare_digest(
        continuation.nonce.encode("utf-8"), provider_state.encode("utf-8")
    )
