"""
Gateway Tracing - OpenTelemetry Instrumentation
===============================================

Spans for the two things worth following through a trace:
- Tool invocations (``mcp.tool.call/<tool>``) with transport, grant and outcome
- Authorization flow transitions (``oauth.flow/<step>``), one span per step
  with an event per state change

Tracing can be switched off with ``GATEWAY_TRACING_ENABLED=false``; callers
then receive a ``_DummySpan`` and never need to branch.

Usage:
    from youtube_mcp_gateway.mcp_tracing import get_tracer, trace_tool_call

    with trace_tool_call(get_tracer(), "greet", transport="sse") as span:
        ...
"""

from __future__ import annotations

import contextlib
import logging
import os
import time
from typing import Any, Generator

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode

logger = logging.getLogger(__name__)

TRACER_NAME = "youtube_mcp_gateway"

ATTR_MCP_TOOL_NAME = "mcp.tool.name"
ATTR_MCP_TRANSPORT = "mcp.transport"
ATTR_MCP_SUCCESS = "mcp.success"
ATTR_MCP_ERROR = "mcp.error"
ATTR_MCP_DURATION_MS = "mcp.duration_ms"
ATTR_MCP_SESSION_ID = "mcp.session.id"
ATTR_GRANT_ID = "gateway.grant.id"
ATTR_CLIENT_ID = "oauth.client.id"
ATTR_FLOW_STEP = "oauth.flow.step"
ATTR_FLOW_STATE = "oauth.flow.state"
ATTR_FLOW_ERROR = "oauth.flow.error"


def is_tracing_enabled() -> bool:
    return os.getenv("GATEWAY_TRACING_ENABLED", "true").lower() in ("true", "1", "yes")


def get_tracer() -> Any:
    """
    Get the OTel tracer for gateway operations.

    Returns:
        OpenTelemetry Tracer instance, or None if tracing is disabled
    """
    if not is_tracing_enabled():
        return None
    try:
        return trace.get_tracer(TRACER_NAME)
    except Exception as e:
        logger.warning(f"Failed to get OTel tracer: {e}")
        return None


class _DummySpan:
    """Dummy span for when tracing is disabled."""

    def set_attribute(self, *args: Any, **kwargs: Any) -> None:
        pass

    def set_status(self, *args: Any, **kwargs: Any) -> None:
        pass

    def record_exception(self, *args: Any, **kwargs: Any) -> None:
        pass

    def add_event(self, *args: Any, **kwargs: Any) -> None:
        pass


@contextlib.contextmanager
def trace_tool_call(
    tracer: Any,
    tool_name: str,
    transport: str,
    grant_id: str | None = None,
    session_id: str | None = None,
) -> Generator[Any, None, None]:
    """
    Context manager for tracing a tool call.

    The span is started as the current span so it nests under the HTTP
    request span. Set ``mcp.success`` to False on the yielded span to mark an
    error-shaped tool result that did not raise.

    Args:
        tracer: OTel tracer instance (or None)
        tool_name: Name of the tool being called
        transport: "sse" or "streamable_http"
        grant_id: DownstreamGrant the call runs under
        session_id: Transport session ID

    Yields:
        The span, or a _DummySpan if tracing is disabled
    """
    if tracer is None:
        yield _DummySpan()
        return

    start_time = time.perf_counter()

    with tracer.start_as_current_span(f"mcp.tool.call/{tool_name}") as span:
        span.set_attribute(ATTR_MCP_TOOL_NAME, tool_name)
        span.set_attribute(ATTR_MCP_TRANSPORT, transport)
        if grant_id:
            span.set_attribute(ATTR_GRANT_ID, grant_id)
        if session_id:
            span.set_attribute(ATTR_MCP_SESSION_ID, session_id)

        try:
            yield span
        except Exception as e:
            duration_ms = (time.perf_counter() - start_time) * 1000
            span.set_attribute(ATTR_MCP_DURATION_MS, round(duration_ms, 2))
            span.set_attribute(ATTR_MCP_SUCCESS, False)
            span.set_attribute(ATTR_MCP_ERROR, str(e))
            span.record_exception(e)
            span.set_status(Status(StatusCode.ERROR, str(e)))
            raise
        else:
            duration_ms = (time.perf_counter() - start_time) * 1000
            span.set_attribute(ATTR_MCP_DURATION_MS, round(duration_ms, 2))
            span.set_status(Status(StatusCode.OK))


@contextlib.contextmanager
def trace_flow_step(
    tracer: Any, step: str, client_id: str | None = None
) -> Generator[Any, None, None]:
    """
    Context manager for one step of the authorization flow
    (``start``, ``callback``, ``issue``, ``token``).

    Authorization errors are recorded with their OAuth error code and
    re-raised.
    """
    if tracer is None:
        yield _DummySpan()
        return

    with tracer.start_as_current_span(f"oauth.flow/{step}") as span:
        span.set_attribute(ATTR_FLOW_STEP, step)
        if client_id:
            span.set_attribute(ATTR_CLIENT_ID, client_id)
        try:
            yield span
        except Exception as e:
            span.set_attribute(ATTR_FLOW_ERROR, getattr(e, "error_code", type(e).__name__))
            span.record_exception(e)
            span.set_status(Status(StatusCode.ERROR, str(e)))
            raise
        else:
            span.set_status(Status(StatusCode.OK))


def record_transition(span: Any, from_state: str, to_state: str) -> None:
    """Record a flow state change as a span event."""
    span.add_event(
        "oauth.flow.transition",
        {"from": from_state, "to": to_state},
    )
    span.set_attribute(ATTR_FLOW_STATE, to_state)
