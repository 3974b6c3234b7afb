"""
Pytest configuration for unit tests.

Provides:
- a shared OpenTelemetry tracer provider with an in-memory exporter
- ``FakeGoogle``: an ``httpx.MockTransport`` standing in for Google's token,
  userinfo and YouTube endpoints
- gateway fixtures (settings, store, wired components) and an autouse reset
  of every module-level singleton
"""

from __future__ import annotations

import base64
import hashlib
from urllib.parse import parse_qsl

import httpx
import pytest

# ============================================================================
# Shared OpenTelemetry configuration - set up once for all tracing tests
# ============================================================================

from opentelemetry import trace
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

from youtube_mcp_gateway.client_registry import ClientRegistry
from youtube_mcp_gateway.config import (
    GOOGLE_TOKEN_ENDPOINT,
    GOOGLE_USERINFO_ENDPOINT,
    GatewaySettings,
)
from youtube_mcp_gateway.continuation import ContinuationCodec
from youtube_mcp_gateway.credential_store import InMemoryCredentialStore
from youtube_mcp_gateway.grants import GrantService
from youtube_mcp_gateway.models import ClientRegistrationRequest
from youtube_mcp_gateway.oauth_flow import AuthorizationFlow
from youtube_mcp_gateway.props import PropsSealer
from youtube_mcp_gateway.upstream_identity import UpstreamIdentityClient

_shared_exporter = InMemorySpanExporter()
_shared_provider = TracerProvider()
_shared_provider.add_span_processor(SimpleSpanProcessor(_shared_exporter))

trace.set_tracer_provider(_shared_provider)

TEST_SECRET = "unit-test-secret-key-0123456789abcdef0123456789"
CLIENT_REDIRECT = "https://client.example/cb"


@pytest.fixture
def shared_span_exporter():
    """
    Provides the shared span exporter for tests that need to verify spans.

    Clears spans before and after each test.
    """
    _shared_exporter.clear()
    yield _shared_exporter
    _shared_exporter.clear()


@pytest.fixture(autouse=True)
def _reset_all_singletons():
    """Reset all module-level singletons between tests to prevent cross-test contamination."""
    yield

    from youtube_mcp_gateway.config import reset_ephemeral_secret
    from youtube_mcp_gateway.credential_store import reset_credential_store
    from youtube_mcp_gateway.http_client_pool import reset_http_client_pool
    from youtube_mcp_gateway.mcp_jsonrpc import reset_sessions
    from youtube_mcp_gateway.mcp_sse_transport import reset_sse_sessions
    from youtube_mcp_gateway.sessions import reset_session_registry

    reset_ephemeral_secret()
    reset_credential_store()
    reset_http_client_pool()
    reset_sessions()
    reset_sse_sessions()
    reset_session_registry()


# ============================================================================
# Fake Google
# ============================================================================


def pkce_pair(verifier: str = "v" * 64) -> tuple[str, str]:
    """Return (code_verifier, S256 code_challenge)."""
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return verifier, base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


class FakeGoogle:
    """Scripted Google endpoints. Provider codes map to users."""

    def __init__(self) -> None:
        self.users: dict[str, dict] = {}
        self.token_requests: list[dict] = []
        self.userinfo_requests: list[str] = []
        self.youtube_requests: list[httpx.Request] = []
        self.token_status = 200
        self.transport = httpx.MockTransport(self.handler)

    def add_user(
        self,
        provider_code: str,
        access_token: str,
        email: str,
        name: str = "Test User",
        channel_title: str = "Test Channel",
    ) -> None:
        self.users[provider_code] = {
            "access_token": access_token,
            "email": email,
            "name": name,
            "sub": f"sub-{email}",
            "channel_title": channel_title,
        }

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self.transport)

    def _user_for_token(self, request: httpx.Request) -> dict | None:
        token = request.headers.get("authorization", "").removeprefix("Bearer ")
        for user in self.users.values():
            if user["access_token"] == token:
                return user
        return None

    def handler(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        if url.startswith(GOOGLE_TOKEN_ENDPOINT):
            form = dict(parse_qsl(request.content.decode("utf-8")))
            self.token_requests.append(form)
            user = self.users.get(form.get("code", ""))
            if self.token_status != 200 or user is None:
                return httpx.Response(
                    self.token_status if self.token_status != 200 else 400,
                    json={"error": "invalid_grant", "error_description": "Bad Request"},
                )
            return httpx.Response(
                200,
                json={
                    "access_token": user["access_token"],
                    "expires_in": 3599,
                    "refresh_token": "1//refresh-token-never-exposed",
                    "scope": "openid email https://www.googleapis.com/auth/youtube.readonly",
                    "token_type": "Bearer",
                },
            )

        if url.startswith(GOOGLE_USERINFO_ENDPOINT):
            self.userinfo_requests.append(request.headers.get("authorization", ""))
            user = self._user_for_token(request)
            if user is None:
                return httpx.Response(401, json={"error": "invalid_token"})
            return httpx.Response(
                200, json={"sub": user["sub"], "email": user["email"], "name": user["name"]}
            )

        if request.url.host in ("www.googleapis.com", "youtubeanalytics.googleapis.com"):
            self.youtube_requests.append(request)
            user = self._user_for_token(request)
            if user is None:
                return httpx.Response(
                    401,
                    json={
                        "error": {
                            "code": 401,
                            "message": "Invalid Credentials",
                            "errors": [{"reason": "authError"}],
                        }
                    },
                )
            if request.url.path.endswith("/channels"):
                return httpx.Response(
                    200,
                    json={
                        "items": [
                            {
                                "id": f"UC-{user['sub']}",
                                "snippet": {
                                    "title": user["channel_title"],
                                    "publishedAt": "2020-01-01T00:00:00Z",
                                },
                                "statistics": {
                                    "subscriberCount": "1200",
                                    "viewCount": "34000",
                                    "videoCount": "12",
                                },
                            }
                        ]
                    },
                )
            return httpx.Response(200, json={"items": []})

        return httpx.Response(404)


@pytest.fixture
def fake_google() -> FakeGoogle:
    return FakeGoogle()


# ============================================================================
# Gateway fixtures
# ============================================================================


@pytest.fixture
def settings() -> GatewaySettings:
    return GatewaySettings(
        base_url="https://gateway.test",
        secret_key=TEST_SECRET,
        google_client_id="google-client-id",
        google_client_secret="google-client-secret",
        upstream_exchange_max_attempts=1,
        sse_heartbeat_interval=0.05,
        sse_max_connection_duration=1.0,
    )


@pytest.fixture
def store() -> InMemoryCredentialStore:
    return InMemoryCredentialStore()


@pytest.fixture
def sealer(settings) -> PropsSealer:
    return PropsSealer(settings.secret_key)


@pytest.fixture
def grant_service(store, sealer, settings) -> GrantService:
    return GrantService(store, sealer, settings)


@pytest.fixture
def client_registry(store) -> ClientRegistry:
    return ClientRegistry(store)


@pytest.fixture
def codec(settings) -> ContinuationCodec:
    return ContinuationCodec(settings.secret_key, ttl_seconds=settings.flow_ttl_seconds)


@pytest.fixture
async def google_http(fake_google):
    client = fake_google.client()
    yield client
    await client.aclose()


@pytest.fixture
def upstream(settings, google_http) -> UpstreamIdentityClient:
    return UpstreamIdentityClient(settings, http_client=google_http)


@pytest.fixture
def flow(settings, store, client_registry, upstream, grant_service, codec):
    return AuthorizationFlow(settings, store, client_registry, upstream, grant_service, codec)


@pytest.fixture
async def public_client(client_registry):
    client, _ = await client_registry.register(
        ClientRegistrationRequest(
            redirect_uris=[CLIENT_REDIRECT],
            client_name="Test MCP Client",
            token_endpoint_auth_method="none",
        )
    )
    return client


@pytest.fixture
async def confidential_client(client_registry):
    return await client_registry.register(
        ClientRegistrationRequest(
            redirect_uris=[CLIENT_REDIRECT],
            client_name="Confidential Client",
            token_endpoint_auth_method="client_secret_post",
        )
    )
