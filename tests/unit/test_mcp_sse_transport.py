"""
MCP SSE Transport Tests
=======================

Tests cover:
1. SSE event formatting
2. The event generator: endpoint event, message delivery, heartbeats,
   disconnect and max duration, session release
3. ``POST /sse/message``: session lookup, grant binding, parse errors and
   asynchronous dispatch
4. ``GET /sse`` end to end through the transport router
"""

import asyncio

import httpx
import pytest
from fastapi import FastAPI

from youtube_mcp_gateway.config import GatewaySettings
from youtube_mcp_gateway.errors import Unauthenticated
from youtube_mcp_gateway.grants import AuthenticatedSession
from youtube_mcp_gateway.mcp_sse_transport import (
    close_sse_session,
    format_sse_comment,
    format_sse_event,
    generate_sse_events,
    get_sse_session,
    get_sse_sessions,
    mcp_sse_router,
    open_sse_session,
)
from youtube_mcp_gateway.models import DownstreamGrant, Props
from youtube_mcp_gateway.sessions import SessionRegistry
from youtube_mcp_gateway.transport_router import TransportRouterMiddleware


def _auth(grant_id: str, email: str) -> AuthenticatedSession:
    return AuthenticatedSession(
        grant=DownstreamGrant(
            grant_id=grant_id,
            client_id="c1",
            sealed_props="sealed",
            expires_at=9_999_999_999.0,
        ),
        props=Props(access_token=f"ya29.{grant_id}", email=email),
    )


ADA = _auth("grant-ada", "ada@example.com")
BOB = _auth("grant-bob", "bob@example.com")
TOKENS = {"token-ada": ADA, "token-bob": BOB}


async def _resolver(token):
    if token not in TOKENS:
        raise Unauthenticated("Invalid or expired access token")
    return TOKENS[token]


class _FakeRequest:
    """Stands in for a Starlette Request in generator tests."""

    def __init__(self, disconnected: bool = False):
        self.disconnected = disconnected

    async def is_disconnected(self) -> bool:
        return self.disconnected


@pytest.fixture
def registry():
    return SessionRegistry()


@pytest.fixture
def app(registry):
    app = FastAPI()
    app.include_router(mcp_sse_router)
    app.state.session_registry = registry
    app.state.settings = GatewaySettings(
        base_url="https://gw.test",
        secret_key="k",
        sse_heartbeat_interval=0.05,
        sse_max_connection_duration=0.3,
        sse_retry_interval_ms=1500,
    )
    app.add_middleware(TransportRouterMiddleware, resolver=_resolver, base_url="https://gw.test")
    return app


@pytest.fixture
async def client(app):
    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app), base_url="http://testserver"
    ) as client:
        yield client


def _bearer(token="token-ada"):
    return {"Authorization": f"Bearer {token}"}


# =============================================================================
# Formatting
# =============================================================================


class TestFormatting:
    def test_event_with_all_fields(self):
        assert format_sse_event({"a": 1}, event="message", event_id="3", retry=1000) == (
            'event: message\nid: 3\nretry: 1000\ndata: {"a":1}\n\n'
        )

    def test_string_data_is_sent_verbatim(self):
        assert format_sse_event("/sse/message?sessionId=x", event="endpoint") == (
            "event: endpoint\ndata: /sse/message?sessionId=x\n\n"
        )

    def test_multiline_data(self):
        assert format_sse_event("a\nb") == "data: a\ndata: b\n\n"

    def test_comment(self):
        assert format_sse_comment("ping 1") == ": ping 1\n\n"


# =============================================================================
# Generator
# =============================================================================


class TestGenerateSseEvents:
    @pytest.mark.asyncio
    async def test_endpoint_then_messages(self, registry):
        session = await open_sse_session(registry, ADA.grant, ADA.props)
        events = generate_sse_events(
            session, _FakeRequest(), registry, heartbeat_interval=1.0, max_duration=5.0
        )

        endpoint = await events.__anext__()
        assert endpoint == (
            f"event: endpoint\ndata: /sse/message?sessionId={session.session_id}\n\n"
        )

        session.deliver({"jsonrpc": "2.0", "id": 1, "result": {}})
        session.deliver({"jsonrpc": "2.0", "id": 2, "result": {}})
        first = await events.__anext__()
        second = await events.__anext__()
        assert first.startswith("event: message\nid: 1\n")
        assert second.startswith("event: message\nid: 2\n")

        await events.aclose()
        assert get_sse_session(session.session_id) is None
        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_heartbeat_while_idle(self, registry):
        session = await open_sse_session(registry, ADA.grant, ADA.props)
        events = generate_sse_events(
            session, _FakeRequest(), registry, heartbeat_interval=0.01, max_duration=5.0
        )
        await events.__anext__()
        assert (await events.__anext__()).startswith(": ping ")
        await events.aclose()

    @pytest.mark.asyncio
    async def test_disconnect_ends_stream_and_releases(self, registry):
        session = await open_sse_session(registry, ADA.grant, ADA.props)
        chunks = [
            chunk
            async for chunk in generate_sse_events(
                session,
                _FakeRequest(disconnected=True),
                registry,
                heartbeat_interval=0.01,
                max_duration=5.0,
            )
        ]
        assert len(chunks) == 1
        assert not session.is_active
        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_max_duration_ends_stream(self, registry):
        session = await open_sse_session(registry, ADA.grant, ADA.props)
        chunks = [
            chunk
            async for chunk in generate_sse_events(
                session, _FakeRequest(), registry, heartbeat_interval=0.02, max_duration=0.1
            )
        ]
        assert chunks[0].startswith("event: endpoint")
        assert all(c.startswith(": ping") for c in chunks[1:])
        assert get_sse_sessions() == {}

    @pytest.mark.asyncio
    async def test_retry_hint(self, registry):
        session = await open_sse_session(registry, ADA.grant, ADA.props)
        events = generate_sse_events(session, _FakeRequest(), registry, retry_ms=2500)
        assert "retry: 2500\n" in await events.__anext__()
        await events.aclose()

    @pytest.mark.asyncio
    async def test_close_cancels_in_flight_tasks(self, registry):
        session = await open_sse_session(registry, ADA.grant, ADA.props)
        task = asyncio.create_task(asyncio.sleep(10))
        session.tasks.add(task)

        await close_sse_session(registry, session)
        await close_sse_session(registry, session)

        with pytest.raises(asyncio.CancelledError):
            await task
        assert len(registry) == 0
        session.deliver({"late": True})
        assert session.queue.empty()


# =============================================================================
# POST /sse/message
# =============================================================================


class TestSseMessageEndpoint:
    @pytest.mark.asyncio
    async def test_requires_token(self, client):
        response = await client.post("/sse/message?sessionId=x", json={})
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_unknown_session(self, client):
        response = await client.post(
            "/sse/message?sessionId=missing", json={"jsonrpc": "2.0"}, headers=_bearer()
        )
        assert response.status_code == 404
        assert response.json()["detail"]["error"] == "session_not_found"

    @pytest.mark.asyncio
    async def test_other_grant_is_forbidden(self, client, registry):
        session = await open_sse_session(registry, ADA.grant, ADA.props)
        response = await client.post(
            f"/sse/message?sessionId={session.session_id}",
            json={"jsonrpc": "2.0", "id": 1, "method": "ping"},
            headers=_bearer("token-bob"),
        )
        assert response.status_code == 403
        assert response.json()["detail"]["error"] == "session_forbidden"
        assert session.queue.empty()

    @pytest.mark.asyncio
    async def test_invalid_json(self, client, registry):
        session = await open_sse_session(registry, ADA.grant, ADA.props)
        response = await client.post(
            f"/sse/message?sessionId={session.session_id}",
            content=b"{oops",
            headers=_bearer(),
        )
        assert response.status_code == 400
        assert response.json()["error"]["code"] == -32700

    @pytest.mark.asyncio
    async def test_message_is_answered_on_stream(self, client, registry):
        session = await open_sse_session(registry, ADA.grant, ADA.props)
        response = await client.post(
            f"/sse/message?sessionId={session.session_id}",
            json={
                "jsonrpc": "2.0",
                "id": 5,
                "method": "tools/call",
                "params": {"name": "greet", "arguments": {"name": "Ada"}},
            },
            headers=_bearer(),
        )
        assert response.status_code == 202
        assert response.text == "Accepted"

        message = await asyncio.wait_for(session.queue.get(), timeout=2.0)
        assert message["id"] == 5
        assert message["result"]["content"][0]["text"] == "Hello, Ada"

    @pytest.mark.asyncio
    async def test_notification_produces_no_event(self, client, registry):
        session = await open_sse_session(registry, ADA.grant, ADA.props)
        response = await client.post(
            f"/sse/message?sessionId={session.session_id}",
            json={"jsonrpc": "2.0", "method": "notifications/initialized"},
            headers=_bearer(),
        )
        assert response.status_code == 202
        await asyncio.sleep(0.05)
        assert session.queue.empty()
        assert session.context.agent.initialized


# =============================================================================
# GET /sse
# =============================================================================


class TestSseStream:
    @pytest.mark.asyncio
    async def test_requires_token(self, client):
        response = await client.get("/sse")
        assert response.status_code == 401
        assert response.headers["www-authenticate"].startswith("Bearer ")

    @pytest.mark.asyncio
    async def test_stream_until_max_duration(self, client, registry):
        response = await client.get("/sse", headers=_bearer())

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        assert "no-cache" in response.headers["cache-control"]
        assert response.text.startswith("event: endpoint\nretry: 1500\ndata: /sse/message?sessionId=")
        assert ": ping " in response.text
        # Stream ended: session closed and context released
        assert get_sse_sessions() == {}
        assert len(registry) == 0
