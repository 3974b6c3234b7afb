"""
MCP Protocol Agent
==================

The per-session JSON-RPC 2.0 dispatcher. One ``McpAgent`` is bound to one
Props for its whole life; both transports (SSE and streamable HTTP) feed it
decoded messages and relay whatever it returns.

Methods served:
- initialize: protocol version negotiation and capabilities
- notifications/initialized (and any other notification): no response
- ping
- tools/list
- tools/call: runs a registered tool with the agent's Props

``build_agent(props)`` is the only way agents are constructed, so every
transport derives the same tool set from the same Props.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx
from pydantic import BaseModel

from .mcp_tracing import ATTR_MCP_SUCCESS, get_tracer, trace_tool_call
from .models import Props
from .tools import Tool, register_tools

logger = logging.getLogger(__name__)

MCP_PROTOCOL_VERSION = "2025-06-18"
MCP_SUPPORTED_VERSIONS = ("2025-06-18", "2025-03-26", "2024-11-05")

DEFAULT_SERVER_NAME = "youtube-mcp-gateway"
DEFAULT_SERVER_VERSION = "1.0.0"


# ============================================================================
# JSON-RPC 2.0 Models
# ============================================================================


class JSONRPCError(BaseModel):
    """JSON-RPC 2.0 error structure."""

    code: int
    message: str
    data: Any | None = None


class JSONRPCResponse(BaseModel):
    """JSON-RPC 2.0 response structure."""

    jsonrpc: str = "2.0"
    id: int | str | None = None
    result: Any | None = None
    error: JSONRPCError | None = None


JSONRPC_PARSE_ERROR = -32700
JSONRPC_INVALID_REQUEST = -32600
JSONRPC_METHOD_NOT_FOUND = -32601
JSONRPC_INVALID_PARAMS = -32602
JSONRPC_INTERNAL_ERROR = -32603


def make_error_response(
    request_id: int | str | None,
    code: int,
    message: str,
    data: Any = None,
) -> dict[str, Any]:
    """Build a JSON-RPC error response body."""
    response = JSONRPCResponse(
        id=request_id,
        error=JSONRPCError(code=code, message=message, data=data),
    )
    body = response.model_dump(exclude_none=True)
    # "id" is required on error responses, null when unknown
    body["id"] = request_id
    return body


def make_success_response(request_id: int | str | None, result: Any) -> dict[str, Any]:
    """Build a JSON-RPC success response body."""
    response = JSONRPCResponse(id=request_id, result=result)
    body = response.model_dump(exclude_none=True)
    body["id"] = request_id
    body.setdefault("result", {})
    return body


def is_notification(message: Any) -> bool:
    return isinstance(message, dict) and "method" in message and "id" not in message


# ============================================================================
# Agent
# ============================================================================


class McpAgent:
    """JSON-RPC dispatcher bound to a single session's Props."""

    def __init__(
        self,
        props: Props,
        *,
        server_name: str = DEFAULT_SERVER_NAME,
        server_version: str = DEFAULT_SERVER_VERSION,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.props = props
        self.server_name = server_name
        self.server_version = server_version
        self.http_client = http_client
        self.protocol_version: str | None = None
        self.initialized = False
        self._tools: dict[str, Tool] = {}

    def add_tool(self, tool: Tool) -> None:
        if tool.name in self._tools:
            raise ValueError(f"Tool '{tool.name}' is already registered")
        self._tools[tool.name] = tool

    @property
    def tool_names(self) -> list[str]:
        return list(self._tools)

    async def handle_message(
        self,
        message: Any,
        *,
        transport: str,
        session_id: str | None = None,
        grant_id: str | None = None,
    ) -> dict[str, Any] | None:
        """
        Dispatch one decoded JSON-RPC message.

        Returns:
            The response body, or None for notifications
        """
        if isinstance(message, list):
            return make_error_response(
                None, JSONRPC_INVALID_REQUEST, "Batch requests are not supported"
            )
        if not isinstance(message, dict):
            return make_error_response(
                None, JSONRPC_INVALID_REQUEST, "Request must be a JSON object"
            )

        request_id = message.get("id")
        if message.get("jsonrpc") != "2.0":
            return make_error_response(
                request_id,
                JSONRPC_INVALID_REQUEST,
                f"Invalid JSON-RPC version: {message.get('jsonrpc')}. Expected '2.0'",
            )

        method = message.get("method")
        if not method or not isinstance(method, str):
            if "result" in message or "error" in message:
                # Client response to a server request; this server sends none
                return None
            return make_error_response(
                request_id, JSONRPC_INVALID_REQUEST, "Missing or invalid 'method' field"
            )

        params = message.get("params")
        if params is not None and not isinstance(params, dict):
            return make_error_response(
                request_id, JSONRPC_INVALID_PARAMS, "'params' must be an object"
            )

        if is_notification(message):
            self._handle_notification(method)
            return None

        handler = self._handlers.get(method)
        if handler is None:
            return make_error_response(
                request_id, JSONRPC_METHOD_NOT_FOUND, f"Method '{method}' not found"
            )

        try:
            return await handler(
                self,
                request_id,
                params or {},
                transport=transport,
                session_id=session_id,
                grant_id=grant_id,
            )
        except Exception as e:
            logger.exception(f"Unhandled error in {method}: {type(e).__name__}")
            return make_error_response(
                request_id, JSONRPC_INTERNAL_ERROR, f"Internal error: {type(e).__name__}"
            )

    def _handle_notification(self, method: str) -> None:
        if method == "notifications/initialized":
            self.initialized = True
        else:
            logger.debug(f"Ignoring notification {method}")

    async def _handle_initialize(
        self, request_id: int | str | None, params: dict[str, Any], **_: Any
    ) -> dict[str, Any]:
        client_version = params.get("protocolVersion") or MCP_PROTOCOL_VERSION
        # Unknown versions get our latest; the client decides whether to continue
        negotiated = (
            client_version if client_version in MCP_SUPPORTED_VERSIONS else MCP_PROTOCOL_VERSION
        )
        self.protocol_version = negotiated
        client_info = params.get("clientInfo") or {}
        logger.info(
            f"MCP session initialized by {client_info.get('name', 'unknown client')} "
            f"(protocol {negotiated})"
        )
        return make_success_response(
            request_id,
            {
                "protocolVersion": negotiated,
                "capabilities": {"tools": {"listChanged": False}},
                "serverInfo": {"name": self.server_name, "version": self.server_version},
            },
        )

    async def _handle_ping(
        self, request_id: int | str | None, params: dict[str, Any], **_: Any
    ) -> dict[str, Any]:
        return make_success_response(request_id, {})

    async def _handle_tools_list(
        self, request_id: int | str | None, params: dict[str, Any], **_: Any
    ) -> dict[str, Any]:
        return make_success_response(
            request_id, {"tools": [tool.describe() for tool in self._tools.values()]}
        )

    async def _handle_tools_call(
        self,
        request_id: int | str | None,
        params: dict[str, Any],
        *,
        transport: str,
        session_id: str | None = None,
        grant_id: str | None = None,
    ) -> dict[str, Any]:
        name = params.get("name")
        if not name or not isinstance(name, str):
            return make_error_response(
                request_id, JSONRPC_INVALID_PARAMS, "Missing required param: name"
            )
        tool = self._tools.get(name)
        if tool is None:
            return make_error_response(
                request_id, JSONRPC_INVALID_PARAMS, f"Unknown tool: {name}"
            )
        arguments = params.get("arguments") or {}
        if not isinstance(arguments, dict):
            return make_error_response(
                request_id, JSONRPC_INVALID_PARAMS, "'arguments' must be an object"
            )

        with trace_tool_call(
            get_tracer(), name, transport, grant_id=grant_id, session_id=session_id
        ) as span:
            result = await tool.invoke(arguments, self.props)
            span.set_attribute(ATTR_MCP_SUCCESS, not result.is_error)

        return make_success_response(request_id, result.to_dict())

    _handlers: dict[str, Any] = {
        "initialize": _handle_initialize,
        "ping": _handle_ping,
        "tools/list": _handle_tools_list,
        "tools/call": _handle_tools_call,
    }


def build_agent(
    props: Props,
    *,
    server_name: str = DEFAULT_SERVER_NAME,
    server_version: str = DEFAULT_SERVER_VERSION,
    http_client: httpx.AsyncClient | None = None,
) -> McpAgent:
    """Construct an agent for ``props`` and register the tool set on it once."""
    agent = McpAgent(
        props,
        server_name=server_name,
        server_version=server_version,
        http_client=http_client,
    )
    register_tools(agent, props)
    return agent
