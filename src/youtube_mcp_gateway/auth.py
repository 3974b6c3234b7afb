"""
Request Correlation and Credential Hygiene
==========================================

- ``RequestIDMiddleware``: raw ASGI middleware that propagates or generates
  ``X-Request-ID`` and exposes it through ``get_request_id()``
- ``_extract_bearer_token``: strict ``Authorization: Bearer`` parsing
- ``_scrub_secrets`` / ``sanitize_error_response``: keep tokens, client
  secrets and authorization codes out of logs and response bodies
"""

from __future__ import annotations

import logging
import re
import uuid
from contextvars import ContextVar
from typing import Any

from starlette.types import ASGIApp, Message, Receive, Scope, Send

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"
_REQUEST_ID_HEADER_BYTES = REQUEST_ID_HEADER.lower().encode("latin-1")

_request_id_ctx: ContextVar[str | None] = ContextVar("request_id", default=None)


def get_request_id() -> str | None:
    """Return the request ID of the request currently being served."""
    return _request_id_ctx.get()


class RequestIDMiddleware:
    """
    Raw ASGI middleware for request correlation.

    Streaming-safe: only the ``http.response.start`` message is touched, so
    SSE bodies flow through unbuffered.
    """

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request_id = ""
        for name, value in scope.get("headers", []):
            if name == _REQUEST_ID_HEADER_BYTES:
                request_id = value.decode("latin-1").strip()
                break
        if not request_id:
            request_id = str(uuid.uuid4())

        token = _request_id_ctx.set(request_id)

        async def send_with_request_id(message: Message) -> None:
            if message["type"] == "http.response.start":
                headers = list(message.get("headers", []))
                headers.append((_REQUEST_ID_HEADER_BYTES, request_id.encode("latin-1")))
                message = {**message, "headers": headers}
            await send(message)

        try:
            await self.app(scope, receive, send_with_request_id)
        finally:
            _request_id_ctx.reset(token)


# =============================================================================
# Bearer tokens
# =============================================================================


def _extract_bearer_token(authorization: str | None) -> str | None:
    """Return the token of an ``Authorization: Bearer <token>`` header value."""
    if not authorization or not authorization.startswith("Bearer "):
        return None
    token = authorization[len("Bearer ") :].strip()
    return token or None


# =============================================================================
# Secret scrubbing
# =============================================================================

_SECRET_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"Bearer\s+[A-Za-z0-9\-._~+/:=]+"),
    re.compile(r"ya29\.[A-Za-z0-9\-_.]+"),
    re.compile(r"1//[A-Za-z0-9\-_]{10,}"),
    re.compile(
        r"(?i)\b(access_token|refresh_token|id_token|client_secret|"
        r"password|secret)\b(\s*[=:]\s*)[\"']?[^\s\"'&,]+"
    ),
    re.compile(r"\b(code)(=)[^\s&]+"),
)


def _scrub_secrets(text: str) -> str:
    """Replace anything that looks like a credential with ``[REDACTED]``."""
    if not text:
        return text
    for pattern in _SECRET_PATTERNS:
        if pattern.groups >= 2:
            text = pattern.sub(lambda m: f"{m.group(1)}{m.group(2)}[REDACTED]", text)
        else:
            text = pattern.sub("[REDACTED]", text)
    return text


def sanitize_error_response(
    error: Exception,
    request_id: str | None = None,
    public_message: str = "An internal error occurred",
) -> dict[str, Any]:
    """Build a client-safe error body and log the real error server-side."""
    request_id = request_id or get_request_id() or "unknown"
    logger.error(
        f"Internal error [{request_id}]: {_scrub_secrets(f'{type(error).__name__}: {error}')}"
    )
    return {
        "error": "internal_error",
        "message": public_message,
        "request_id": request_id,
    }
