"""
Unit Tests for the MCP Agent
============================

Tests cover:
1. JSON-RPC envelope validation
2. initialize / ping / notifications
3. tools/list and tools/call, including tool-call spans
"""

import pytest

from youtube_mcp_gateway.agent import (
    JSONRPC_INVALID_PARAMS,
    JSONRPC_INVALID_REQUEST,
    JSONRPC_METHOD_NOT_FOUND,
    MCP_PROTOCOL_VERSION,
    McpAgent,
    build_agent,
    make_error_response,
)
from youtube_mcp_gateway.models import Props
from youtube_mcp_gateway.tools import TOOL_VARIANTS, Tool, ToolResult


@pytest.fixture
def props():
    return Props(access_token="ya29.ada", email="ada@example.com", name="Ada")


@pytest.fixture
def agent(props):
    return build_agent(props, server_name="test-gateway", server_version="9.9.9")


async def _call(agent, message, transport="streamable_http"):
    return await agent.handle_message(message, transport=transport, grant_id="g1")


class TestEnvelope:
    @pytest.mark.asyncio
    async def test_batch_rejected(self, agent):
        response = await _call(agent, [{"jsonrpc": "2.0", "id": 1, "method": "ping"}])
        assert response["error"]["code"] == JSONRPC_INVALID_REQUEST
        assert response["id"] is None

    @pytest.mark.asyncio
    async def test_non_object_rejected(self, agent):
        response = await _call(agent, "ping")
        assert response["error"]["code"] == JSONRPC_INVALID_REQUEST

    @pytest.mark.asyncio
    async def test_wrong_version(self, agent):
        response = await _call(agent, {"jsonrpc": "1.0", "id": 7, "method": "ping"})
        assert response["error"]["code"] == JSONRPC_INVALID_REQUEST
        assert response["id"] == 7

    @pytest.mark.asyncio
    async def test_missing_method(self, agent):
        response = await _call(agent, {"jsonrpc": "2.0", "id": 1})
        assert response["error"]["code"] == JSONRPC_INVALID_REQUEST

    @pytest.mark.asyncio
    async def test_client_response_is_ignored(self, agent):
        assert await _call(agent, {"jsonrpc": "2.0", "id": 1, "result": {}}) is None

    @pytest.mark.asyncio
    async def test_params_must_be_object(self, agent):
        response = await _call(agent, {"jsonrpc": "2.0", "id": 1, "method": "ping", "params": []})
        assert response["error"]["code"] == JSONRPC_INVALID_PARAMS

    @pytest.mark.asyncio
    async def test_unknown_method(self, agent):
        response = await _call(agent, {"jsonrpc": "2.0", "id": "a", "method": "resources/list"})
        assert response["error"]["code"] == JSONRPC_METHOD_NOT_FOUND
        assert response["id"] == "a"

    def test_error_response_always_has_id(self):
        assert make_error_response(None, -32700, "Parse error") == {
            "jsonrpc": "2.0",
            "id": None,
            "error": {"code": -32700, "message": "Parse error"},
        }


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_initialize(self, agent):
        response = await _call(
            agent,
            {
                "jsonrpc": "2.0",
                "id": 1,
                "method": "initialize",
                "params": {"protocolVersion": "2025-03-26", "clientInfo": {"name": "cli"}},
            },
        )
        result = response["result"]
        assert result["protocolVersion"] == "2025-03-26"
        assert result["serverInfo"] == {"name": "test-gateway", "version": "9.9.9"}
        assert "tools" in result["capabilities"]

    @pytest.mark.asyncio
    async def test_unknown_protocol_version_gets_latest(self, agent):
        response = await _call(
            agent,
            {"jsonrpc": "2.0", "id": 1, "method": "initialize", "params": {"protocolVersion": "1999"}},
        )
        assert response["result"]["protocolVersion"] == MCP_PROTOCOL_VERSION

    @pytest.mark.asyncio
    async def test_initialized_notification(self, agent):
        assert not agent.initialized
        response = await _call(agent, {"jsonrpc": "2.0", "method": "notifications/initialized"})
        assert response is None
        assert agent.initialized

    @pytest.mark.asyncio
    async def test_ping(self, agent):
        response = await _call(agent, {"jsonrpc": "2.0", "id": 3, "method": "ping"})
        assert response == {"jsonrpc": "2.0", "id": 3, "result": {}}


class TestTools:
    @pytest.mark.asyncio
    async def test_tools_list_is_complete(self, agent):
        response = await _call(agent, {"jsonrpc": "2.0", "id": 1, "method": "tools/list"})
        names = [tool["name"] for tool in response["result"]["tools"]]
        assert names == [cls.name for cls in TOOL_VARIANTS]
        for tool in response["result"]["tools"]:
            assert tool["inputSchema"]["type"] == "object"

    @pytest.mark.asyncio
    async def test_greet(self, agent):
        response = await _call(
            agent,
            {
                "jsonrpc": "2.0",
                "id": 2,
                "method": "tools/call",
                "params": {"name": "greet", "arguments": {"name": "Ada"}},
            },
        )
        assert response["result"] == {
            "content": [{"type": "text", "text": "Hello, Ada"}],
            "isError": False,
        }

    @pytest.mark.asyncio
    async def test_tool_argument_errors_are_results(self, agent):
        response = await _call(
            agent,
            {"jsonrpc": "2.0", "id": 2, "method": "tools/call", "params": {"name": "greet"}},
        )
        assert response["result"]["isError"] is True
        assert "name" in response["result"]["content"][0]["text"]

    @pytest.mark.asyncio
    async def test_unknown_tool(self, agent):
        response = await _call(
            agent,
            {"jsonrpc": "2.0", "id": 2, "method": "tools/call", "params": {"name": "nope"}},
        )
        assert response["error"]["code"] == JSONRPC_INVALID_PARAMS

    @pytest.mark.asyncio
    async def test_missing_tool_name(self, agent):
        response = await _call(agent, {"jsonrpc": "2.0", "id": 2, "method": "tools/call"})
        assert response["error"]["code"] == JSONRPC_INVALID_PARAMS

    @pytest.mark.asyncio
    async def test_arguments_must_be_object(self, agent):
        response = await _call(
            agent,
            {
                "jsonrpc": "2.0",
                "id": 2,
                "method": "tools/call",
                "params": {"name": "greet", "arguments": ["Ada"]},
            },
        )
        assert response["error"]["code"] == JSONRPC_INVALID_PARAMS

    def test_duplicate_tool_rejected(self, agent):
        with pytest.raises(ValueError, match="already registered"):
            agent.add_tool(TOOL_VARIANTS[0]())

    @pytest.mark.asyncio
    async def test_tool_receives_agent_props(self, props):
        seen = []

        class Whoami(Tool):
            name = "whoami"
            description = "Return the session email"

            async def execute(self, params, props):
                seen.append(props)
                return ToolResult.text(props.email or "")

        agent = McpAgent(props)
        agent.add_tool(Whoami())
        response = await _call(
            agent, {"jsonrpc": "2.0", "id": 1, "method": "tools/call", "params": {"name": "whoami"}}
        )
        assert response["result"]["content"][0]["text"] == "ada@example.com"
        assert seen == [props]


class TestToolCallTracing:
    @pytest.mark.asyncio
    async def test_span_attributes(self, agent, shared_span_exporter):
        await _call(
            agent,
            {
                "jsonrpc": "2.0",
                "id": 1,
                "method": "tools/call",
                "params": {"name": "greet", "arguments": {"name": "Ada"}},
            },
            transport="sse",
        )
        span = next(
            s for s in shared_span_exporter.get_finished_spans() if s.name == "mcp.tool.call/greet"
        )
        assert span.attributes["mcp.tool.name"] == "greet"
        assert span.attributes["mcp.transport"] == "sse"
        assert span.attributes["gateway.grant.id"] == "g1"
        assert span.attributes["mcp.success"] is True

    @pytest.mark.asyncio
    async def test_error_result_marks_span(self, agent, shared_span_exporter):
        await _call(
            agent,
            {"jsonrpc": "2.0", "id": 1, "method": "tools/call", "params": {"name": "greet"}},
        )
        span = next(
            s for s in shared_span_exporter.get_finished_spans() if s.name == "mcp.tool.call/greet"
        )
        assert span.attributes["mcp.success"] is False
