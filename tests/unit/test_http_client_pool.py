"""
Unit tests for the shared HTTP client pool.

``get_client_for_request`` yields the pooled client while the pool runs and a
short-lived client otherwise.
"""

import pytest

from youtube_mcp_gateway.http_client_pool import (
    get_client_for_request,
    shutdown_http_client_pool,
    startup_http_client_pool,
)


class TestHttpClientPool:
    @pytest.mark.asyncio
    async def test_pooled_client_is_reused(self):
        await startup_http_client_pool()
        try:
            async with get_client_for_request() as first:
                pass
            async with get_client_for_request() as second:
                pass
            assert first is second
            assert not first.is_closed
        finally:
            await shutdown_http_client_pool()
        assert first.is_closed

    @pytest.mark.asyncio
    async def test_startup_is_idempotent(self):
        await startup_http_client_pool()
        try:
            async with get_client_for_request() as first:
                pass
            await startup_http_client_pool()
            async with get_client_for_request() as second:
                pass
            assert first is second
        finally:
            await shutdown_http_client_pool()

    @pytest.mark.asyncio
    async def test_short_lived_client_without_pool(self):
        async with get_client_for_request(timeout=2.0) as client:
            assert client.timeout.read == 2.0
        assert client.is_closed
