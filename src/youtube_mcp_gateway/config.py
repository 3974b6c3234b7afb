"""
Gateway Configuration
=====================

All settings come from environment variables and are read at call time, so
tests can override them with ``monkeypatch`` / ``patch.dict(os.environ)``.

Usage::

    from youtube_mcp_gateway.config import load_settings

    settings = load_settings()
    settings.google_client_id
"""

from __future__ import annotations

import logging
import os
import secrets
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)

_TRUTHY = ("true", "1", "yes")

# Google endpoints are fixed contracts of the upstream provider
GOOGLE_AUTHORIZATION_ENDPOINT = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_ENDPOINT = "https://oauth2.googleapis.com/token"
GOOGLE_USERINFO_ENDPOINT = "https://openidconnect.googleapis.com/v1/userinfo"

DEFAULT_GOOGLE_SCOPES = (
    "openid",
    "email",
    "profile",
    "https://www.googleapis.com/auth/youtube.readonly",
    "https://www.googleapis.com/auth/yt-analytics.readonly",
)

# Generated once per process when GATEWAY_SECRET_KEY is unset. Tokens and
# pending flows do not survive a restart in that case.
_ephemeral_secret: str | None = None


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in _TRUTHY


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"Invalid integer for {name}={raw!r}, using {default}")
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning(f"Invalid number for {name}={raw!r}, using {default}")
        return default


def _env_list(name: str, default: tuple[str, ...]) -> tuple[str, ...]:
    raw = os.getenv(name, "")
    items = tuple(item.strip() for item in raw.replace(",", " ").split() if item.strip())
    return items or default


def _secret_key() -> str:
    global _ephemeral_secret
    configured = os.getenv("GATEWAY_SECRET_KEY", "").strip()
    if configured:
        return configured
    if _ephemeral_secret is None:
        _ephemeral_secret = secrets.token_urlsafe(32)
        logger.warning(
            "GATEWAY_SECRET_KEY not set; using an ephemeral key. "
            "Issued tokens will not survive a restart."
        )
    return _ephemeral_secret


@dataclass(frozen=True)
class GatewaySettings:
    """Resolved gateway settings."""

    base_url: str = "http://localhost:8787"
    secret_key: str = ""

    google_client_id: str = ""
    google_client_secret: str = ""
    google_scopes: tuple[str, ...] = DEFAULT_GOOGLE_SCOPES
    google_authorization_endpoint: str = GOOGLE_AUTHORIZATION_ENDPOINT
    google_token_endpoint: str = GOOGLE_TOKEN_ENDPOINT
    google_userinfo_endpoint: str = GOOGLE_USERINFO_ENDPOINT

    flow_ttl_seconds: int = 600
    code_ttl_seconds: int = 300
    access_token_ttl_seconds: int = 3600
    upstream_http_timeout: float = 10.0
    upstream_exchange_max_attempts: int = 2

    credential_store_backend: str = "memory"

    sse_heartbeat_interval: float = 30.0
    sse_max_connection_duration: float = 1800.0
    sse_retry_interval_ms: int = 3000

    server_name: str = "youtube-mcp-gateway"
    server_version: str = "1.0.0"

    cors_origins: tuple[str, ...] = field(default_factory=lambda: ("*",))

    @property
    def callback_url(self) -> str:
        """Redirect URI registered with the upstream provider."""
        return f"{self.base_url.rstrip('/')}/callback"

    @property
    def cookie_secure(self) -> bool:
        return self.base_url.startswith("https://")

    def public_dict(self) -> dict[str, Any]:
        """Settings safe to log (no secrets)."""
        return {
            "base_url": self.base_url,
            "google_client_id": self.google_client_id,
            "google_scopes": list(self.google_scopes),
            "flow_ttl_seconds": self.flow_ttl_seconds,
            "code_ttl_seconds": self.code_ttl_seconds,
            "access_token_ttl_seconds": self.access_token_ttl_seconds,
            "credential_store_backend": self.credential_store_backend,
        }


def load_settings() -> GatewaySettings:
    """Build settings from the current environment."""
    return GatewaySettings(
        base_url=os.getenv("GATEWAY_BASE_URL", "http://localhost:8787").rstrip("/"),
        secret_key=_secret_key(),
        google_client_id=os.getenv("GOOGLE_CLIENT_ID", ""),
        google_client_secret=os.getenv("GOOGLE_CLIENT_SECRET", ""),
        google_scopes=_env_list("GOOGLE_OAUTH_SCOPES", DEFAULT_GOOGLE_SCOPES),
        google_authorization_endpoint=os.getenv(
            "GOOGLE_AUTHORIZATION_ENDPOINT", GOOGLE_AUTHORIZATION_ENDPOINT
        ),
        google_token_endpoint=os.getenv("GOOGLE_TOKEN_ENDPOINT", GOOGLE_TOKEN_ENDPOINT),
        google_userinfo_endpoint=os.getenv(
            "GOOGLE_USERINFO_ENDPOINT", GOOGLE_USERINFO_ENDPOINT
        ),
        flow_ttl_seconds=_env_int("OAUTH_FLOW_TTL_SECONDS", 600),
        code_ttl_seconds=_env_int("OAUTH_CODE_TTL_SECONDS", 300),
        access_token_ttl_seconds=_env_int("ACCESS_TOKEN_TTL_SECONDS", 3600),
        upstream_http_timeout=_env_float("UPSTREAM_HTTP_TIMEOUT", 10.0),
        upstream_exchange_max_attempts=max(
            1, _env_int("UPSTREAM_EXCHANGE_MAX_ATTEMPTS", 2)
        ),
        credential_store_backend=os.getenv("CREDENTIAL_STORE_BACKEND", "memory")
        .strip()
        .lower(),
        sse_heartbeat_interval=_env_float("MCP_SSE_HEARTBEAT_INTERVAL", 30.0),
        sse_max_connection_duration=_env_float("MCP_SSE_MAX_CONNECTION_DURATION", 1800.0),
        sse_retry_interval_ms=_env_int("MCP_SSE_RETRY_INTERVAL_MS", 3000),
        server_name=os.getenv("MCP_SERVER_NAME", "youtube-mcp-gateway"),
        server_version=os.getenv("MCP_SERVER_VERSION", "1.0.0"),
        cors_origins=_env_list("GATEWAY_CORS_ORIGINS", ("*",)),
    )


def is_cors_credentials_enabled() -> bool:
    return _env_bool("GATEWAY_CORS_CREDENTIALS", False)


def reset_ephemeral_secret() -> None:
    """Forget the generated secret. For testing only."""
    global _ephemeral_secret
    _ephemeral_secret = None
