"""Tests for the Google OAuth client."""

import dataclasses
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from youtube_mcp_gateway.errors import UpstreamExchangeFailed
from youtube_mcp_gateway.models import AuthorizationRequest
from youtube_mcp_gateway.upstream_identity import (
    UpstreamIdentityClient,
    pkce_s256_challenge,
)


@pytest.fixture
def auth_request():
    return AuthorizationRequest(
        client_id="client-1",
        redirect_uri="https://client.example/cb",
        scopes=["https://www.googleapis.com/auth/youtube.force-ssl", "mcp:tools"],
    )


class TestBuildAuthorizationUrl:
    def test_parameters(self, settings, auth_request):
        client = UpstreamIdentityClient(settings)
        url = client.build_authorization_url(auth_request, state="nonce-1", code_verifier="v" * 50)

        parsed = urlparse(url)
        params = {k: v[0] for k, v in parse_qs(parsed.query).items()}
        assert url.startswith(settings.google_authorization_endpoint)
        assert params["client_id"] == "google-client-id"
        assert params["redirect_uri"] == "https://gateway.test/callback"
        assert params["state"] == "nonce-1"
        assert params["response_type"] == "code"
        # Refresh tokens are never requested
        assert "access_type" not in params
        assert "prompt" not in params
        assert params["code_challenge"] == pkce_s256_challenge("v" * 50)
        assert params["code_challenge_method"] == "S256"

    def test_scopes_merge_google_scopes_only(self, settings, auth_request):
        scopes = UpstreamIdentityClient(settings).upstream_scopes(auth_request)
        assert "https://www.googleapis.com/auth/youtube.force-ssl" in scopes
        assert "mcp:tools" not in scopes
        assert scopes[: len(settings.google_scopes)] == list(settings.google_scopes)


class TestExchangeCode:
    @pytest.mark.asyncio
    async def test_successful_exchange(self, upstream, fake_google):
        fake_google.add_user("prov-code", "ya29.ada", "ada@example.com", name="Ada")

        grant = await upstream.exchange_code(
            "prov-code", "https://gateway.test/callback", code_verifier="verifier"
        )

        assert grant.access_token == "ya29.ada"
        assert grant.email == "ada@example.com"
        assert grant.name == "Ada"
        assert grant.subject == "sub-ada@example.com"
        assert grant.expires_in == 3599
        sent = fake_google.token_requests[0]
        assert sent["grant_type"] == "authorization_code"
        assert sent["client_secret"] == "google-client-secret"
        assert sent["code_verifier"] == "verifier"
        assert fake_google.userinfo_requests == ["Bearer ya29.ada"]

    @pytest.mark.asyncio
    async def test_token_endpoint_error(self, upstream, fake_google):
        with pytest.raises(UpstreamExchangeFailed, match="invalid_grant"):
            await upstream.exchange_code("unknown", "https://gateway.test/callback")
        assert fake_google.userinfo_requests == []

    @pytest.mark.asyncio
    async def test_userinfo_failure_yields_no_grant(self, settings):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("/token"):
                return httpx.Response(200, json={"access_token": "ya29.x"})
            return httpx.Response(500)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
            client = UpstreamIdentityClient(settings, http_client=http)
            with pytest.raises(UpstreamExchangeFailed, match="user info"):
                await client.exchange_code("c", "https://gateway.test/callback")

    @pytest.mark.asyncio
    async def test_missing_access_token(self, settings):
        transport = httpx.MockTransport(lambda r: httpx.Response(200, json={"token_type": "Bearer"}))
        async with httpx.AsyncClient(transport=transport) as http:
            client = UpstreamIdentityClient(settings, http_client=http)
            with pytest.raises(UpstreamExchangeFailed, match="access_token"):
                await client.exchange_code("c", "https://gateway.test/callback")

    @pytest.mark.asyncio
    async def test_malformed_body(self, settings):
        transport = httpx.MockTransport(lambda r: httpx.Response(200, text="<html>"))
        async with httpx.AsyncClient(transport=transport) as http:
            client = UpstreamIdentityClient(settings, http_client=http)
            with pytest.raises(UpstreamExchangeFailed, match="Malformed"):
                await client.exchange_code("c", "https://gateway.test/callback")

    @pytest.mark.asyncio
    async def test_connect_errors_are_retried(self, settings):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request.url.path)
            raise httpx.ConnectError("refused", request=request)

        settings = dataclasses.replace(settings, upstream_exchange_max_attempts=3)
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
            client = UpstreamIdentityClient(settings, http_client=http)
            with pytest.raises(UpstreamExchangeFailed, match="Could not reach"):
                await client.exchange_code("c", "https://gateway.test/callback")
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_read_timeouts_are_not_retried(self, settings):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request.url.path)
            raise httpx.ReadTimeout("slow", request=request)

        settings = dataclasses.replace(settings, upstream_exchange_max_attempts=3)
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
            client = UpstreamIdentityClient(settings, http_client=http)
            with pytest.raises(UpstreamExchangeFailed):
                await client.exchange_code("c", "https://gateway.test/callback")
        assert len(calls) == 1
