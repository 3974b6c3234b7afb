"""
Gateway Application Factory (Composition Root)
==============================================

Builds the FastAPI app for the YouTube MCP gateway and wires every component
in one place.

Load Order:
1. Resolve settings and the credential store
2. Build the gateway components (grants, clients, flow, session registry)
   and attach them to ``app.state``
3. Add middleware (TransportRouter innermost, then RequestID, CORS outermost)
4. Register the GatewayError exception handler
5. Register routes
6. Lifespan: environment validation, HTTP client pool, shutdown of open
   SSE streams and the store

Usage:
    from youtube_mcp_gateway.gateway import create_app

    app = create_app()
"""

import functools
import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

import httpx
from fastapi import FastAPI, Request

from ..agent import build_agent
from ..client_registry import ClientRegistry
from ..config import GatewaySettings, is_cors_credentials_enabled, load_settings
from ..continuation import ContinuationCodec
from ..credential_store import (
    CredentialStore,
    create_credential_store,
    set_credential_store,
)
from ..env_validation import validate_environment
from ..errors import GatewayError
from ..grants import GrantService
from ..http_client_pool import shutdown_http_client_pool, startup_http_client_pool
from ..mcp_sse_transport import close_sse_session, get_sse_sessions
from ..oauth_flow import AuthorizationFlow
from ..props import PropsSealer
from ..sessions import SessionRegistry, set_session_registry
from ..upstream_identity import UpstreamIdentityClient

logger = logging.getLogger(__name__)


def _wire_state(
    app: FastAPI,
    settings: GatewaySettings,
    store: CredentialStore,
    http_client: Optional[httpx.AsyncClient],
) -> None:
    """Construct the gateway components and attach them to ``app.state``."""
    sealer = PropsSealer(settings.secret_key)
    grant_service = GrantService(store, sealer, settings)
    client_registry = ClientRegistry(store)
    upstream = UpstreamIdentityClient(settings, http_client=http_client)
    codec = ContinuationCodec(settings.secret_key, ttl_seconds=settings.flow_ttl_seconds)

    session_registry = SessionRegistry(
        agent_factory=functools.partial(
            build_agent,
            server_name=settings.server_name,
            server_version=settings.server_version,
            http_client=http_client,
        )
    )
    set_session_registry(session_registry)

    app.state.settings = settings
    app.state.store = store
    app.state.grant_service = grant_service
    app.state.client_registry = client_registry
    app.state.upstream_identity = upstream
    app.state.authorization_flow = AuthorizationFlow(
        settings, store, client_registry, upstream, grant_service, codec
    )
    app.state.session_registry = session_registry


def _configure_middleware(app: FastAPI, settings: GatewaySettings) -> None:
    """
    Configure all middleware for the application.

    Starlette's add_middleware makes the LAST added layer the outermost, so:
    1. TransportRouterMiddleware - 404 for unknown paths, bearer check (innermost)
    2. RequestIDMiddleware - request correlation, also on router 401/404s
    3. CORSMiddleware - answers preflights before anything else (outermost)
    """
    from starlette.middleware.cors import CORSMiddleware

    from ..auth import RequestIDMiddleware
    from ..transport_router import TransportRouterMiddleware

    app.add_middleware(TransportRouterMiddleware)
    logger.debug("Added TransportRouterMiddleware (raw ASGI)")

    app.add_middleware(RequestIDMiddleware)
    logger.debug("Added RequestIDMiddleware (raw ASGI)")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_credentials=is_cors_credentials_enabled(),
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["Mcp-Session-Id", "WWW-Authenticate", "X-Request-ID"],
    )
    logger.debug("Added CORSMiddleware")


def _register_exception_handlers(app: FastAPI) -> None:
    from ..routes.oauth import gateway_error_response

    @app.exception_handler(GatewayError)
    async def handle_gateway_error(request: Request, exc: GatewayError):
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.error_code}")
        return gateway_error_response(exc)


def _register_routes(app: FastAPI) -> None:
    from ..routes import (
        discovery_router,
        health_router,
        mcp_jsonrpc_router,
        mcp_sse_router,
        oauth_router,
    )

    # Health router - unauthenticated K8s probes
    app.include_router(health_router, prefix="")
    logger.debug("Registered health_router")

    app.include_router(oauth_router, prefix="")
    app.include_router(discovery_router, prefix="")
    logger.debug("Registered oauth_router and discovery_router")

    # MCP transports - bearer token checked by TransportRouterMiddleware
    app.include_router(mcp_jsonrpc_router, prefix="")
    app.include_router(mcp_sse_router, prefix="")
    logger.debug("Registered mcp_jsonrpc_router (/mcp) and mcp_sse_router (/sse)")


def create_app(
    *,
    settings: Optional[GatewaySettings] = None,
    store: Optional[CredentialStore] = None,
    http_client: Optional[httpx.AsyncClient] = None,
    validate_env: bool = True,
) -> FastAPI:
    """
    Create the gateway FastAPI application.

    Args:
        settings: Gateway settings (default: ``load_settings()``)
        store: Credential store (default: built from ``CREDENTIAL_STORE_BACKEND``)
        http_client: Outbound client for Google and YouTube calls (default:
            the shared pool started in the lifespan)
        validate_env: Run advisory environment validation at startup

    Returns:
        The configured FastAPI application instance
    """
    settings = settings or load_settings()
    owns_store = store is None
    if store is None:
        store = create_credential_store(settings.credential_store_backend)
    set_credential_store(store)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Lifespan context manager for the gateway."""
        if validate_env:
            validate_environment()
        if http_client is None:
            await startup_http_client_pool()
        logger.info(f"YouTube MCP gateway starting: {settings.public_dict()}")
        try:
            yield
        finally:
            registry: SessionRegistry = app.state.session_registry
            for session in list(get_sse_sessions().values()):
                await close_sse_session(registry, session)
            if owns_store:
                await store.close()
            if http_client is None:
                await shutdown_http_client_pool()
            logger.info("YouTube MCP gateway stopped")

    app = FastAPI(
        title="YouTube MCP Gateway",
        version=settings.server_version,
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )

    _wire_state(app, settings, store, http_client)
    _configure_middleware(app, settings)
    _register_exception_handlers(app)
    _register_routes(app)

    logger.info("Gateway app created and configured")
    return app
