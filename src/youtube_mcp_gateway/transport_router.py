"""
Transport Router
================

First stop for every HTTP request. ``classify(method, path)`` maps a request
to exactly one route kind using a first-match rule table:

- OAUTH: /authorize, /callback, /token, /register
- DISCOVERY: /.well-known/oauth-authorization-server, oauth-protected-resource
- STREAMING: /sse, /sse/message
- UNARY: /mcp
- HEALTH: /_health/live, /_health/ready

Anything else is ``None`` and gets ``404 Not found`` before any application
code runs.

``TransportRouterMiddleware`` (pure ASGI, path + method only, no body
buffering) additionally authenticates STREAMING and UNARY requests: the bearer
token must resolve to a live DownstreamGrant whose Props decrypt, otherwise
the request ends with 401 and nothing below the middleware is called. The
resolved ``AuthenticatedSession`` is handed down in
``scope["state"]["gateway_session"]``.
"""

from __future__ import annotations

import json
import logging
import re
from enum import Enum
from typing import Any, Awaitable, Callable

from starlette.requests import Request
from starlette.types import ASGIApp, Receive, Scope, Send

from .auth import _extract_bearer_token, get_request_id
from .errors import Unauthenticated
from .grants import AuthenticatedSession

logger = logging.getLogger(__name__)

SESSION_STATE_KEY = "gateway_session"


class RouteKind(str, Enum):
    OAUTH = "oauth"
    DISCOVERY = "discovery"
    STREAMING = "streaming"
    UNARY = "unary"
    HEALTH = "health"


AUTHENTICATED_KINDS = frozenset({RouteKind.STREAMING, RouteKind.UNARY})


# =============================================================================
# Classification Table
# =============================================================================

# (method, path_pattern, kind). Method "*" matches any method.
# Order matters: first match wins.
_RULES: list[tuple[str, str, RouteKind]] = [
    ("*", r"^/sse$", RouteKind.STREAMING),
    ("*", r"^/sse/message$", RouteKind.STREAMING),
    ("*", r"^/mcp$", RouteKind.UNARY),
    ("*", r"^/authorize$", RouteKind.OAUTH),
    ("*", r"^/callback$", RouteKind.OAUTH),
    ("*", r"^/token$", RouteKind.OAUTH),
    ("*", r"^/register$", RouteKind.OAUTH),
    ("*", r"^/\.well-known/oauth-authorization-server(/.*)?$", RouteKind.DISCOVERY),
    ("*", r"^/\.well-known/oauth-protected-resource(/.*)?$", RouteKind.DISCOVERY),
    ("GET", r"^/_health/(live|ready)$", RouteKind.HEALTH),
    ("HEAD", r"^/_health/(live|ready)$", RouteKind.HEALTH),
]

_COMPILED_RULES: list[tuple[str, re.Pattern[str], RouteKind]] = [
    (method, re.compile(pattern), kind) for method, pattern, kind in _RULES
]


def classify(method: str, path: str) -> RouteKind | None:
    """Return the route kind for a request, or None if nothing serves it."""
    method = method.upper()
    for rule_method, pattern, kind in _COMPILED_RULES:
        if rule_method != "*" and rule_method != method:
            continue
        if pattern.match(path):
            return kind
    return None


Resolver = Callable[[str | None], Awaitable[AuthenticatedSession]]


def protected_resource_metadata_url(base_url: str) -> str:
    return f"{base_url.rstrip('/')}/.well-known/oauth-protected-resource"


def get_gateway_session(request: Request) -> AuthenticatedSession:
    """The session resolved by the router for this request."""
    session = getattr(request.state, SESSION_STATE_KEY, None)
    if session is None:
        # Only reachable if a route is mounted outside the router's table
        raise Unauthenticated("Request was not authenticated by the transport router")
    return session


class TransportRouterMiddleware:
    """Pure ASGI path classifier and bearer-token gate."""

    def __init__(
        self,
        app: ASGIApp,
        resolver: Resolver | None = None,
        base_url: str | None = None,
    ) -> None:
        self.app = app
        self._resolver = resolver
        self._base_url = base_url

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        method = scope.get("method", "GET")
        path = scope.get("path", "")
        kind = classify(method, path)

        if kind is None:
            await self._send_not_found(send)
            return

        # CORS preflight carries no credentials
        if kind in AUTHENTICATED_KINDS and method != "OPTIONS":
            headers = dict(scope.get("headers", []))
            authorization = headers.get(b"authorization", b"").decode("latin-1")
            try:
                session = await self._resolve(scope, _extract_bearer_token(authorization))
            except Unauthenticated as e:
                logger.info(f"Rejected {method} {path}: {e.description}")
                await self._send_unauthorized(scope, send, e)
                return
            scope.setdefault("state", {})[SESSION_STATE_KEY] = session

        await self.app(scope, receive, send)

    async def _resolve(self, scope: Scope, token: str | None) -> AuthenticatedSession:
        if self._resolver is not None:
            return await self._resolver(token)
        grant_service = getattr(scope["app"].state, "grant_service", None)
        if grant_service is None:
            raise Unauthenticated("Gateway is not ready")
        return await grant_service.resolve_access_token(token)

    def _metadata_url(self, scope: Scope) -> str:
        base_url = self._base_url
        if base_url is None:
            settings: Any = getattr(scope["app"].state, "settings", None)
            base_url = settings.base_url if settings is not None else ""
        return protected_resource_metadata_url(base_url)

    async def _send_not_found(self, send: Send) -> None:
        body = b"Not found"
        await send(
            {
                "type": "http.response.start",
                "status": 404,
                "headers": [
                    (b"content-type", b"text/plain; charset=utf-8"),
                    (b"content-length", str(len(body)).encode("latin-1")),
                ],
            }
        )
        await send({"type": "http.response.body", "body": body})

    async def _send_unauthorized(
        self, scope: Scope, send: Send, error: Unauthenticated
    ) -> None:
        body = json.dumps(error.to_dict(get_request_id())).encode("utf-8")
        challenge = (
            f'Bearer error="{error.error_code}", '
            f'resource_metadata="{self._metadata_url(scope)}"'
        )
        await send(
            {
                "type": "http.response.start",
                "status": error.status_code,
                "headers": [
                    (b"content-type", b"application/json"),
                    (b"content-length", str(len(body)).encode("latin-1")),
                    (b"www-authenticate", challenge.encode("latin-1")),
                ],
            }
        )
        await send({"type": "http.response.body", "body": body})
