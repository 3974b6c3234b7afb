"""
Session Props Binding
=====================

``bind_props`` turns a completed UpstreamGrant into the Props every tool call
of the session will see. ``PropsSealer`` encrypts Props before they are
persisted alongside the DownstreamGrant, so a credential store dump does not
expose Google access tokens.
"""

from __future__ import annotations

import base64
import hashlib
import logging

from cryptography.fernet import Fernet, InvalidToken
from pydantic import ValidationError

from .errors import Unauthenticated
from .models import Props, UpstreamGrant

logger = logging.getLogger(__name__)

_KEY_CONTEXT = b"youtube-mcp-gateway/props/v1"


def bind_props(grant: UpstreamGrant) -> Props:
    """Derive session Props from an upstream grant. Pure; the refresh token is dropped."""
    return Props(
        access_token=grant.access_token,
        email=grant.email,
        name=grant.name,
        subject=grant.subject,
    )


def _derive_fernet_key(secret: str) -> bytes:
    digest = hashlib.sha256(_KEY_CONTEXT + b"\x00" + secret.encode("utf-8")).digest()
    return base64.urlsafe_b64encode(digest)


class PropsSealer:
    """Fernet encryption of Props keyed from the gateway secret."""

    def __init__(self, secret: str) -> None:
        if not secret:
            raise ValueError("PropsSealer requires a non-empty secret")
        self._fernet = Fernet(_derive_fernet_key(secret))

    def seal(self, props: Props) -> str:
        return self._fernet.encrypt(props.model_dump_json().encode("utf-8")).decode("ascii")

    def unseal(self, sealed: str) -> Props:
        """
        Decrypt sealed Props.

        Raises:
            Unauthenticated: the ciphertext was produced under another key or is
                corrupt; the grant is unusable and the client must re-authorize
        """
        try:
            raw = self._fernet.decrypt(sealed.encode("ascii"))
            return Props.model_validate_json(raw)
        except (InvalidToken, ValidationError, ValueError) as e:
            logger.warning(f"Unable to unseal grant props: {type(e).__name__}")
            raise Unauthenticated("Grant is no longer valid; authorize again") from e
