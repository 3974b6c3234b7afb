"""
YouTube MCP Gateway Startup Script
==================================

Starts the gateway under uvicorn:
- OAuth authorization server (/authorize, /callback, /token, /register)
- MCP transports (/sse, /sse/message, /mcp)
- Health probes (/_health/live, /_health/ready)

Usage:
    youtube-mcp-gateway --port 8787
    python -m youtube_mcp_gateway.startup --host 0.0.0.0 --port 8787

Multiple workers require ``CREDENTIAL_STORE_BACKEND=redis``: grants issued
by one worker must be visible to the others. SSE streams stay pinned to the
worker that opened them.
"""

import logging
import os

logger = logging.getLogger(__name__)


def resolve_worker_count(cli_workers: int | None = None) -> int:
    """Resolve the number of uvicorn workers.

    Resolution order:
    1. ``GATEWAY_WORKERS`` env var (if set and valid)
    2. *cli_workers* argument (from ``--workers`` CLI flag)
    3. Default: ``1``

    With the in-memory credential store, workers is always forced to 1.
    """
    workers = 1
    source = "default"

    env_val = os.environ.get("GATEWAY_WORKERS")
    if env_val is not None:
        try:
            parsed = int(env_val)
            if parsed >= 1:
                workers = parsed
                source = "GATEWAY_WORKERS"
            else:
                logger.warning(
                    "GATEWAY_WORKERS=%s is invalid (must be >= 1), defaulting to 1",
                    env_val,
                )
        except ValueError:
            logger.warning(
                "GATEWAY_WORKERS=%s is not a valid integer, defaulting to 1",
                env_val,
            )
    elif cli_workers is not None and cli_workers >= 1:
        workers = cli_workers
        source = "--workers CLI"

    backend = os.getenv("CREDENTIAL_STORE_BACKEND", "memory").strip().lower()
    if backend != "redis" and workers > 1:
        logger.warning(
            "%d workers requested with the %s credential store; forcing workers=1. "
            "Set CREDENTIAL_STORE_BACKEND=redis to run multiple workers.",
            workers,
            backend,
        )
        workers = 1

    logger.info("Using %d worker(s) (source: %s)", workers, source)
    return workers


def init_tracing_if_enabled() -> bool:
    """Install an OTLP span exporter when OTEL_EXPORTER_OTLP_ENDPOINT is set."""
    from .mcp_tracing import is_tracing_enabled

    endpoint = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")
    if not endpoint or not is_tracing_enabled():
        return False
    try:
        from opentelemetry import trace
        from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import (
            OTLPSpanExporter,
        )
        from opentelemetry.sdk.resources import SERVICE_NAME, SERVICE_VERSION, Resource
        from opentelemetry.sdk.trace import TracerProvider
        from opentelemetry.sdk.trace.export import BatchSpanProcessor

        resource = Resource.create(
            {
                SERVICE_NAME: os.getenv("OTEL_SERVICE_NAME", "youtube-mcp-gateway"),
                SERVICE_VERSION: os.getenv("MCP_SERVER_VERSION", "1.0.0"),
            }
        )
        provider = TracerProvider(resource=resource)
        provider.add_span_processor(
            BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint, insecure=True))
        )
        trace.set_tracer_provider(provider)
        logger.info(f"Tracing initialized with OTLP endpoint: {endpoint}")
        return True
    except Exception as e:
        logger.exception(f"Tracing initialization failed: {e}")
        return False


def main():
    """
    Main entry point for the YouTube MCP gateway.

    CLI Args Supported:
        --port PORT      Port to listen on (default: 8787)
        --host HOST      Host to bind to (default: 0.0.0.0)
        --debug          Enable debug logging
        --workers N      Number of uvicorn workers (default: 1)
        --ssl-keyfile    SSL key file path
        --ssl-certfile   SSL certificate file path

    Environment Variables:
        GATEWAY_PORT, GATEWAY_HOST, GATEWAY_DEBUG  Defaults for the flags above
        GATEWAY_WORKERS  Number of uvicorn workers (overrides --workers)
    """
    import argparse

    import uvicorn

    parser = argparse.ArgumentParser(
        description="YouTube MCP Gateway",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    youtube-mcp-gateway --port 8787
    python -m youtube_mcp_gateway.startup --host 127.0.0.1 --port 8787 --debug
        """,
    )
    parser.add_argument(
        "--port",
        "-p",
        type=int,
        default=int(os.getenv("GATEWAY_PORT", "8787")),
        help="Port to listen on (default: 8787)",
    )
    parser.add_argument(
        "--host",
        "-H",
        type=str,
        default=os.getenv("GATEWAY_HOST", "0.0.0.0"),
        help="Host to bind to (default: 0.0.0.0)",
    )
    parser.add_argument(
        "--debug",
        "-d",
        action="store_true",
        default=os.getenv("GATEWAY_DEBUG", "false").lower() == "true",
        help="Enable debug logging",
    )
    parser.add_argument(
        "--workers",
        "-w",
        type=int,
        default=1,
        help="Number of workers (more than one requires the redis store)",
    )
    parser.add_argument("--ssl-keyfile", type=str, help="SSL key file path")
    parser.add_argument("--ssl-certfile", type=str, help="SSL certificate file path")

    args, unknown = parser.parse_known_args()

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if unknown:
        logger.warning(f"Ignoring unknown args: {unknown}")

    workers = resolve_worker_count(cli_workers=args.workers)
    init_tracing_if_enabled()

    logger.info(f"Starting YouTube MCP gateway on {args.host}:{args.port}")

    uvicorn_config = {
        "host": args.host,
        "port": args.port,
        "log_level": "debug" if args.debug else "info",
        "workers": workers,
    }
    if args.ssl_keyfile:
        uvicorn_config["ssl_keyfile"] = args.ssl_keyfile
    if args.ssl_certfile:
        uvicorn_config["ssl_certfile"] = args.ssl_certfile

    if workers > 1:
        # Each worker process builds its own app from the factory
        uvicorn.run("youtube_mcp_gateway.gateway:create_app", factory=True, **uvicorn_config)
    else:
        from .gateway import create_app

        uvicorn.run(create_app(), **uvicorn_config)


if __name__ == "__main__":
    main()
