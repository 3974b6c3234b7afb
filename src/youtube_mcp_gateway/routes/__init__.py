"""
FastAPI Routes for the Authorization Gateway and MCP Transports
===============================================================

- OAuth endpoints (/authorize, /callback, /token, /register)
- Authorization server and protected resource metadata (/.well-known/*)
- MCP transports: streaming (/sse, /sse/message) and unary (/mcp)
- Kubernetes health probe endpoints (/_health/live, /_health/ready)

Usage:
    from youtube_mcp_gateway.routes import (
        health_router,
        oauth_router,
        discovery_router,
        mcp_jsonrpc_router,
        mcp_sse_router,
    )
    app.include_router(health_router)  # Unauthenticated health probes
    app.include_router(oauth_router)  # OAuth flow and client registration
    app.include_router(discovery_router)  # RFC 8414 / RFC 9728 metadata
    app.include_router(mcp_jsonrpc_router)  # Unary channel (bearer token)
    app.include_router(mcp_sse_router)  # Streaming channel (bearer token)

Bearer-token checks for the MCP routers happen in TransportRouterMiddleware,
before any of these handlers run.
"""

from fastapi import APIRouter

# ---- Router definitions (must be defined BEFORE sub-module imports) ----

# Health router - unauthenticated endpoints for Kubernetes probes
health_router = APIRouter(tags=["health"])

# OAuth router - authorization code flow, token endpoint, registration
oauth_router = APIRouter(tags=["oauth"])

# Discovery router - well-known metadata documents
discovery_router = APIRouter(tags=["discovery"])

# ---- Import sub-modules (registers routes on the routers above) ----

from . import health as _health_routes  # noqa: E402, F401
from . import oauth as _oauth_routes  # noqa: E402, F401

# ---- Re-export transport routers ----

from ..mcp_jsonrpc import mcp_jsonrpc_router  # noqa: E402
from ..mcp_sse_transport import mcp_sse_router  # noqa: E402

__all__ = [
    "health_router",
    "oauth_router",
    "discovery_router",
    "mcp_jsonrpc_router",
    "mcp_sse_router",
]
