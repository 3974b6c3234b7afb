"""
Gateway Composition Root
========================

Modules:
- app: FastAPI application factory with explicit configuration

Usage:
    from youtube_mcp_gateway.gateway import create_app

    app = create_app()  # Creates configured FastAPI app
"""

from .app import create_app

__all__ = [
    "create_app",
]
