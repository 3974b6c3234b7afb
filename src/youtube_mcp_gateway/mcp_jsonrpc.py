"""
MCP Streamable HTTP Transport - Unary Channel
=============================================

``POST /mcp`` carries one JSON-RPC 2.0 message and returns the response
inline (MCP 2025-06-18 streamable HTTP transport, JSON responses only).

Per request:
1. The transport router has already resolved the bearer token to a grant
   and its Props
2. The session context for that grant is acquired from the SessionRegistry
   for the duration of the request
3. The message is dispatched to the context's agent

Other methods:
- ``GET /mcp``: 405, this server never opens a server-initiated stream
- ``DELETE /mcp``: terminates the ``Mcp-Session-Id`` session, 204

Session IDs are bound to the grant that created them; a session ID presented
with another grant's token is ignored and a fresh one is issued.

Configuration:
- MCP_SESSION_TIMEOUT: Idle seconds before a session ID lapses (default: 1800)
"""

from __future__ import annotations

import json
import logging
import os
import time
import uuid
from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, Response

from .agent import JSONRPC_PARSE_ERROR, make_error_response
from .sessions import SessionRegistry
from .transport_router import get_gateway_session

logger = logging.getLogger(__name__)

MCP_SESSION_HEADER = "Mcp-Session-Id"
TRANSPORT_NAME = "streamable_http"


def _session_timeout() -> float:
    return float(os.getenv("MCP_SESSION_TIMEOUT", "1800"))


# ============================================================================
# Session Management
# ============================================================================

# Active sessions: session_id -> {"grant_id", "created_at", "last_active"}
_active_sessions: dict[str, dict[str, Any]] = {}


def _sweep_expired_sessions(now: float, timeout: float) -> None:
    expired = [
        session_id
        for session_id, session in _active_sessions.items()
        if now - session["last_active"] >= timeout
    ]
    for session_id in expired:
        del _active_sessions[session_id]
    if expired:
        logger.debug(f"MCP: dropped {len(expired)} idle session(s)")


def get_or_create_session(request_headers: dict[str, str], grant_id: str) -> str:
    """
    Return the caller's Mcp-Session-Id, or a new one.

    A known, unexpired ID is reused only when it belongs to ``grant_id``.
    Sessions idle past ``MCP_SESSION_TIMEOUT`` are dropped on every call.
    """
    now = time.time()
    _sweep_expired_sessions(now, _session_timeout())
    session_id = request_headers.get("mcp-session-id", "")
    session = _active_sessions.get(session_id) if session_id else None
    if session is not None:
        if session["grant_id"] == grant_id:
            session["last_active"] = now
            return session_id
        logger.warning(
            f"MCP: session {session_id} presented by grant {grant_id}; issuing a new one"
        )

    session_id = uuid.uuid4().hex
    _active_sessions[session_id] = {
        "grant_id": grant_id,
        "created_at": now,
        "last_active": now,
    }
    return session_id


def end_session(session_id: str, grant_id: str) -> bool:
    session = _active_sessions.get(session_id)
    if session is None or session["grant_id"] != grant_id:
        return False
    del _active_sessions[session_id]
    return True


def get_active_sessions() -> dict[str, dict[str, Any]]:
    """Return active sessions (for testing/admin)."""
    return _active_sessions


def reset_sessions() -> None:
    """Reset all sessions. For testing only."""
    _active_sessions.clear()


# ============================================================================
# JSON-RPC Router
# ============================================================================

mcp_jsonrpc_router = APIRouter(tags=["mcp-jsonrpc"])


def _registry(request: Request) -> SessionRegistry:
    return request.app.state.session_registry


@mcp_jsonrpc_router.post("/mcp")
async def mcp_jsonrpc_endpoint(request: Request) -> Response:
    """
    Native MCP JSON-RPC 2.0 endpoint.

    Example request:
    ```json
    {
        "jsonrpc": "2.0",
        "id": 1,
        "method": "tools/call",
        "params": {"name": "greet", "arguments": {"name": "Ada"}}
    }
    ```

    Example response:
    ```json
    {
        "jsonrpc": "2.0",
        "id": 1,
        "result": {"content": [{"type": "text", "text": "Hello, Ada"}], "isError": false}
    }
    ```
    """
    auth = get_gateway_session(request)
    request_headers = {k.lower(): v for k, v in request.headers.items()}
    session_id = get_or_create_session(request_headers, auth.grant_id)
    headers = {MCP_SESSION_HEADER: session_id}

    body = await request.body()
    if not body:
        return JSONResponse(
            content=make_error_response(None, JSONRPC_PARSE_ERROR, "Empty request body"),
            headers=headers,
        )
    try:
        data = json.loads(body)
    except json.JSONDecodeError as e:
        return JSONResponse(
            content=make_error_response(None, JSONRPC_PARSE_ERROR, f"Invalid JSON: {e.msg}"),
            headers=headers,
        )

    async with _registry(request).session(auth.grant, auth.props) as context:
        result = await context.agent.handle_message(
            data,
            transport=TRANSPORT_NAME,
            session_id=session_id,
            grant_id=auth.grant_id,
        )

    if result is None:
        # Notifications and client responses are acknowledged without a body
        return Response(status_code=202, headers=headers)
    return JSONResponse(content=result, headers=headers)


@mcp_jsonrpc_router.get("/mcp")
async def mcp_stream_not_supported(request: Request) -> Response:
    """No server-initiated stream on the unary channel; use /sse for streaming."""
    return Response(status_code=405, headers={"Allow": "POST, DELETE"})


@mcp_jsonrpc_router.delete("/mcp")
async def mcp_end_session(request: Request) -> Response:
    auth = get_gateway_session(request)
    session_id = request.headers.get("mcp-session-id", "")
    if session_id and end_session(session_id, auth.grant_id):
        logger.info(f"MCP: session {session_id} terminated by client")
    return Response(status_code=204)
