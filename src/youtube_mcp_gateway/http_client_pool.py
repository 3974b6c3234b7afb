"""
Shared HTTP Client Pool
=======================

One ``httpx.AsyncClient`` per process for outbound calls to Google (token
exchange, userinfo, YouTube Data and Analytics APIs), created in the app
lifespan and closed on shutdown.

Usage:
    from youtube_mcp_gateway.http_client_pool import get_client_for_request

    async with get_client_for_request() as client:
        response = await client.get(url)
"""

from __future__ import annotations

import contextlib
import logging
import os
from typing import AsyncIterator

import httpx

logger = logging.getLogger(__name__)

_client: httpx.AsyncClient | None = None


def _pool_limits() -> httpx.Limits:
    return httpx.Limits(
        max_connections=int(os.getenv("HTTP_CLIENT_MAX_CONNECTIONS", "100")),
        max_keepalive_connections=int(os.getenv("HTTP_CLIENT_MAX_KEEPALIVE", "20")),
    )


def _default_timeout() -> httpx.Timeout:
    return httpx.Timeout(float(os.getenv("UPSTREAM_HTTP_TIMEOUT", "10")), connect=5.0)


async def startup_http_client_pool() -> None:
    """Create the shared client. Idempotent."""
    global _client
    if _client is not None:
        return
    _client = httpx.AsyncClient(limits=_pool_limits(), timeout=_default_timeout())
    logger.info("HTTP client pool started")


async def shutdown_http_client_pool() -> None:
    global _client
    if _client is None:
        return
    client, _client = _client, None
    await client.aclose()
    logger.info("HTTP client pool closed")


@contextlib.asynccontextmanager
async def get_client_for_request(
    timeout: float | None = None,
) -> AsyncIterator[httpx.AsyncClient]:
    """
    Yield the shared client, or a short-lived one when the pool is not
    running (CLI use, tests without a lifespan).
    """
    if _client is not None:
        yield _client
        return
    async with httpx.AsyncClient(
        timeout=httpx.Timeout(timeout) if timeout else _default_timeout()
    ) as client:
        yield client


def reset_http_client_pool() -> None:
    """Drop the shared client without closing it. For testing only."""
    global _client
    _client = None
