"""
Kubernetes health probe endpoints (/_health/*).

- /_health/live: Liveness probe - doesn't check the credential store
- /_health/ready: Readiness probe - pings the credential store with a short timeout
"""

import asyncio

from fastapi import Request
from fastapi.responses import JSONResponse

from ..auth import get_request_id
from . import health_router

SERVICE_NAME = "youtube-mcp-gateway"


@health_router.get("/_health/live")
async def liveness_probe():
    """
    Kubernetes liveness probe endpoint.

    Returns:
        200 OK if the process is alive
    """
    return {"status": "alive", "service": SERVICE_NAME}


@health_router.get("/_health/ready")
async def readiness_probe(request: Request):
    """
    Kubernetes readiness probe endpoint.

    Ready once the app lifespan has wired the gateway and the credential store
    answers a ping within 2s.

    Returns:
        200 OK if ready
        503 Service Unavailable otherwise
    """
    request_id = get_request_id() or "unknown"
    checks: dict[str, dict[str, str]] = {}
    is_ready = True

    store = getattr(request.app.state, "store", None)
    if store is None:
        checks["credential_store"] = {"status": "not_initialized"}
        is_ready = False
    else:
        try:
            healthy = await asyncio.wait_for(store.ping(), timeout=2.0)
        except asyncio.TimeoutError:
            healthy = False
            checks["credential_store"] = {"status": "unhealthy", "error": "ping timeout"}
        else:
            checks["credential_store"] = {
                "status": "healthy" if healthy else "unhealthy"
            }
        is_ready = is_ready and healthy

    body = {
        "status": "ready" if is_ready else "not_ready",
        "service": SERVICE_NAME,
        "checks": checks,
        "request_id": request_id,
    }
    return JSONResponse(status_code=200 if is_ready else 503, content=body)
