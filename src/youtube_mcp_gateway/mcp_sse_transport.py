"""
MCP SSE Transport - Streaming Channel
=====================================

The HTTP+SSE transport of MCP (protocol 2024-11-05), as used by clients that
connect to ``/sse``:

1. ``GET /sse`` opens an event stream. Its first event is ``endpoint`` whose
   data is the URL to POST messages to: ``/sse/message?sessionId=<id>``.
2. ``POST /sse/message?sessionId=<id>`` carries one JSON-RPC message. It is
   acknowledged with ``202 Accepted``; the JSON-RPC response is delivered as
   a ``message`` event on the stream.

SSE Event Format (W3C EventSource):
--------------------------------
event: <event-type>
id: <event-id>
data: <payload>

<blank line>

Sessions:
---------
- A stream holds a reference on its grant's SessionContext for its lifetime
- POSTs must authenticate as the same grant as the stream (403 otherwise)
- Each tools/call runs as its own task; a slow tool never blocks the others
- On disconnect or max duration the stream releases the session and cancels
  in-flight tasks; their responses are dropped

Configuration:
--------------
- MCP_SSE_HEARTBEAT_INTERVAL: Seconds between heartbeat comments (default: 30)
- MCP_SSE_MAX_CONNECTION_DURATION: Stream lifetime in seconds (default: 1800)
- MCP_SSE_RETRY_INTERVAL_MS: Reconnect hint sent to clients (default: 3000)
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, AsyncGenerator

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse, Response, StreamingResponse

from .agent import JSONRPC_PARSE_ERROR, make_error_response
from .auth import get_request_id
from .config import GatewaySettings
from .sessions import SessionContext, SessionRegistry
from .transport_router import get_gateway_session

logger = logging.getLogger(__name__)

SSE_MESSAGE_PATH = "/sse/message"
TRANSPORT_NAME = "sse"


# ============================================================================
# SSE Session Management
# ============================================================================


@dataclass
class SSESession:
    """An open event stream and the session context it holds."""

    session_id: str
    context: SessionContext
    queue: asyncio.Queue = field(default_factory=asyncio.Queue)
    created_at: float = field(default_factory=time.time)
    last_event_id: int = 0
    is_active: bool = True
    tasks: set[asyncio.Task] = field(default_factory=set)

    @property
    def grant_id(self) -> str:
        return self.context.grant_id

    def next_event_id(self) -> str:
        self.last_event_id += 1
        return str(self.last_event_id)

    def deliver(self, message: dict[str, Any]) -> None:
        if self.is_active:
            self.queue.put_nowait(message)


# In-process only: a POST must reach the worker holding the stream
_sse_sessions: dict[str, SSESession] = {}


def get_sse_session(session_id: str) -> SSESession | None:
    return _sse_sessions.get(session_id)


def get_sse_sessions() -> dict[str, SSESession]:
    """Return active sessions (for testing/admin)."""
    return _sse_sessions


def reset_sse_sessions() -> None:
    """Forget all sessions. For testing only."""
    _sse_sessions.clear()


async def open_sse_session(
    registry: SessionRegistry, grant: Any, props: Any
) -> SSESession:
    context = await registry.acquire(grant, props)
    session = SSESession(session_id=uuid.uuid4().hex, context=context)
    _sse_sessions[session.session_id] = session
    return session


async def close_sse_session(registry: SessionRegistry, session: SSESession) -> None:
    """Deactivate, cancel in-flight tool calls and release the context. Idempotent."""
    if not session.is_active and session.session_id not in _sse_sessions:
        return
    session.is_active = False
    _sse_sessions.pop(session.session_id, None)
    for task in list(session.tasks):
        task.cancel()
    session.tasks.clear()
    await registry.release(session.context)
    logger.info(f"MCP SSE: Session {session.session_id} closed")


# ============================================================================
# SSE Event Formatting
# ============================================================================


def format_sse_event(
    data: Any,
    event: str | None = None,
    event_id: str | None = None,
    retry: int | None = None,
) -> str:
    """
    Format a Server-Sent Event.

    Args:
        data: Event data (JSON-serialized unless already a string)
        event: Optional event type ('endpoint', 'message')
        event_id: Optional event ID
        retry: Optional reconnect interval in milliseconds
    """
    lines: list[str] = []
    if event:
        lines.append(f"event: {event}")
    if event_id:
        lines.append(f"id: {event_id}")
    if retry is not None:
        lines.append(f"retry: {retry}")

    payload = data if isinstance(data, str) else json.dumps(data, separators=(",", ":"))
    # Multi-line data is sent as one "data:" line per line
    lines.extend(f"data: {line}" for line in payload.split("\n"))
    return "\n".join(lines) + "\n\n"


def format_sse_comment(comment: str) -> str:
    """SSE comment line; ignored by clients, keeps proxies from timing out."""
    return f": {comment}\n\n"


# ============================================================================
# SSE Event Generator
# ============================================================================


async def generate_sse_events(
    session: SSESession,
    request: Request,
    registry: SessionRegistry,
    heartbeat_interval: float = 30.0,
    max_duration: float = 1800.0,
    retry_ms: int | None = None,
) -> AsyncGenerator[str, None]:
    """
    Event stream for one SSE session.

    Yields the ``endpoint`` event, then queued JSON-RPC responses as
    ``message`` events, with heartbeat comments while idle.
    """
    start_time = time.monotonic()
    try:
        yield format_sse_event(
            data=f"{SSE_MESSAGE_PATH}?sessionId={session.session_id}",
            event="endpoint",
            retry=retry_ms,
        )
        logger.info(
            f"MCP SSE: Session {session.session_id} connected (grant {session.grant_id})"
        )

        while session.is_active:
            remaining = max_duration - (time.monotonic() - start_time)
            if remaining <= 0:
                logger.info(f"MCP SSE: Session {session.session_id} exceeded max duration")
                break

            try:
                message = await asyncio.wait_for(
                    session.queue.get(), timeout=min(heartbeat_interval, remaining)
                )
            except asyncio.TimeoutError:
                if await request.is_disconnected():
                    logger.info(
                        f"MCP SSE: Client disconnected from session {session.session_id}"
                    )
                    break
                yield format_sse_comment(f"ping {int(time.time())}")
                continue

            yield format_sse_event(
                data=message, event="message", event_id=session.next_event_id()
            )

    except asyncio.CancelledError:
        logger.info(f"MCP SSE: Session {session.session_id} cancelled")
        raise
    finally:
        await close_sse_session(registry, session)


# ============================================================================
# Router
# ============================================================================

mcp_sse_router = APIRouter(tags=["mcp-sse"])


def _settings(request: Request) -> GatewaySettings:
    return request.app.state.settings


def _registry(request: Request) -> SessionRegistry:
    return request.app.state.session_registry


@mcp_sse_router.get("/sse")
async def mcp_sse_endpoint(request: Request) -> StreamingResponse:
    """
    Open the MCP event stream for the authenticated grant.

    Example event stream:
    ```
    event: endpoint
    retry: 3000
    data: /sse/message?sessionId=6f1c...

    event: message
    id: 1
    data: {"jsonrpc":"2.0","id":1,"result":{...}}

    : ping 1696012345
    ```
    """
    auth = get_gateway_session(request)
    settings = _settings(request)
    registry = _registry(request)

    session = await open_sse_session(registry, auth.grant, auth.props)

    return StreamingResponse(
        generate_sse_events(
            session,
            request,
            registry,
            heartbeat_interval=settings.sse_heartbeat_interval,
            max_duration=settings.sse_max_connection_duration,
            retry_ms=settings.sse_retry_interval_ms,
        ),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache, no-store, must-revalidate",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


async def _dispatch(session: SSESession, message: Any) -> None:
    response = await session.context.agent.handle_message(
        message,
        transport=TRANSPORT_NAME,
        session_id=session.session_id,
        grant_id=session.grant_id,
    )
    if response is not None:
        session.deliver(response)


def _on_task_done(session: SSESession, task: asyncio.Task) -> None:
    session.tasks.discard(task)
    if not task.cancelled() and task.exception() is not None:
        logger.error(
            f"MCP SSE: message task failed in session {session.session_id}: "
            f"{type(task.exception()).__name__}"
        )


@mcp_sse_router.post(SSE_MESSAGE_PATH)
async def mcp_sse_message_endpoint(request: Request, sessionId: str = "") -> Response:
    """
    Accept one JSON-RPC message for an open stream.

    Returns 202 once the message is queued for processing; the response
    arrives on the stream.
    """
    request_id = get_request_id() or "unknown"
    auth = get_gateway_session(request)

    session = get_sse_session(sessionId) if sessionId else None
    if session is None or not session.is_active:
        raise HTTPException(
            status_code=404,
            detail={
                "error": "session_not_found",
                "message": "Unknown or closed SSE session",
                "request_id": request_id,
            },
        )
    if session.grant_id != auth.grant_id:
        logger.warning(
            f"MCP SSE: grant {auth.grant_id} tried to post to session "
            f"{session.session_id} of grant {session.grant_id}"
        )
        raise HTTPException(
            status_code=403,
            detail={
                "error": "session_forbidden",
                "message": "Session belongs to a different authorization",
                "request_id": request_id,
            },
        )

    body = await request.body()
    try:
        message = json.loads(body) if body else None
    except json.JSONDecodeError as e:
        message = None
        parse_error = f"Invalid JSON: {e.msg}"
    else:
        parse_error = None if body else "Empty request body"
    if parse_error:
        return JSONResponse(
            status_code=400,
            content=make_error_response(None, JSONRPC_PARSE_ERROR, parse_error),
        )

    task = asyncio.create_task(_dispatch(session, message))
    session.tasks.add(task)
    task.add_done_callback(lambda t: _on_task_done(session, t))

    return Response(content="Accepted", status_code=202, media_type="text/plain")
