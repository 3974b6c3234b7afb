"""
Environment Variable Validation
================================

Checks the gateway's environment on startup so misconfigured OAuth or Redis
settings show up in the logs before the first user hits /authorize.
Advisory only: problems are logged and returned, startup always continues.

Usage::

    from youtube_mcp_gateway.env_validation import validate_environment

    result = validate_environment()
    # result.errors  -> list[str]
    # result.warnings -> list[str]
"""

import logging
import os
from dataclasses import dataclass, field
from urllib.parse import urlparse

logger = logging.getLogger(__name__)


@dataclass
class ValidationResult:
    """Errors and warnings produced by environment validation."""

    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


_BOOLEAN_ENV_VARS: tuple[str, ...] = (
    "REDIS_SSL",
    "GATEWAY_CORS_CREDENTIALS",
)

_VALID_BOOLEAN_VALUES: frozenset[str] = frozenset(
    {"true", "false", "1", "0", "yes", "no", ""}
)

_POSITIVE_INT_ENV_VARS: tuple[str, ...] = (
    "OAUTH_FLOW_TTL_SECONDS",
    "OAUTH_CODE_TTL_SECONDS",
    "ACCESS_TOKEN_TTL_SECONDS",
    "UPSTREAM_EXCHANGE_MAX_ATTEMPTS",
    "GATEWAY_WORKERS",
)

_STORE_BACKENDS: frozenset[str] = frozenset({"memory", "redis"})

_MIN_SECRET_LENGTH = 32


def validate_environment() -> ValidationResult:
    """Validate known environment variables and return a summary.

    Never raises. Set ``GATEWAY_SKIP_ENV_VALIDATION=true`` to skip all checks.
    """
    result = ValidationResult()

    if os.environ.get("GATEWAY_SKIP_ENV_VALIDATION", "").lower() in (
        "true",
        "1",
        "yes",
    ):
        logger.info("Environment validation skipped (GATEWAY_SKIP_ENV_VALIDATION)")
        return result

    _validate_google_credentials(result)
    _validate_secret_key(result)
    _validate_base_url(result)
    _validate_store_backend(result)
    _validate_boolean_vars(result)
    _validate_positive_int_vars(result)

    for message in result.errors:
        logger.error(f"Environment: {message}")
    for message in result.warnings:
        logger.warning(f"Environment: {message}")

    logger.info(
        "Environment validation complete: %d error(s), %d warning(s)",
        len(result.errors),
        len(result.warnings),
    )
    return result


def _validate_google_credentials(result: ValidationResult) -> None:
    """Error if the upstream OAuth client is not configured."""
    for var in ("GOOGLE_CLIENT_ID", "GOOGLE_CLIENT_SECRET"):
        if not os.environ.get(var):
            result.errors.append(f"{var} is not set; /authorize cannot reach Google")


def _validate_secret_key(result: ValidationResult) -> None:
    """Warn if GATEWAY_SECRET_KEY is missing or short."""
    secret = os.environ.get("GATEWAY_SECRET_KEY", "")
    if not secret:
        result.warnings.append(
            "GATEWAY_SECRET_KEY is not set; an ephemeral key will be used and "
            "all sessions end on restart"
        )
    elif len(secret) < _MIN_SECRET_LENGTH:
        result.warnings.append(
            f"GATEWAY_SECRET_KEY is shorter than {_MIN_SECRET_LENGTH} characters"
        )


def _validate_base_url(result: ValidationResult) -> None:
    """Warn if GATEWAY_BASE_URL is not an absolute http(s) URL."""
    raw = os.environ.get("GATEWAY_BASE_URL")
    if raw is None:
        result.warnings.append(
            "GATEWAY_BASE_URL is not set; defaulting to http://localhost:8787"
        )
        return
    parsed = urlparse(raw)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        result.errors.append(
            f"GATEWAY_BASE_URL ('{raw}') must be an absolute http(s) URL"
        )
    elif parsed.scheme == "http" and parsed.hostname not in ("localhost", "127.0.0.1"):
        result.warnings.append(
            "GATEWAY_BASE_URL uses plain http on a non-local host; "
            "OAuth cookies will not be marked Secure"
        )


def _validate_store_backend(result: ValidationResult) -> None:
    """Check CREDENTIAL_STORE_BACKEND and its Redis companions."""
    backend = os.environ.get("CREDENTIAL_STORE_BACKEND", "memory").strip().lower()
    if backend not in _STORE_BACKENDS:
        result.errors.append(
            f"CREDENTIAL_STORE_BACKEND '{backend}' is not one of "
            f"{', '.join(sorted(_STORE_BACKENDS))}"
        )
        return
    if backend == "memory":
        workers = os.environ.get("GATEWAY_WORKERS", "1")
        if workers not in ("", "1"):
            result.warnings.append(
                "CREDENTIAL_STORE_BACKEND=memory with multiple workers; "
                "grants issued by one worker are invisible to the others"
            )
        return
    if not os.environ.get("REDIS_HOST"):
        result.warnings.append(
            "CREDENTIAL_STORE_BACKEND=redis but REDIS_HOST is not set; "
            "connecting to localhost"
        )
    port = os.environ.get("REDIS_PORT")
    if port is not None:
        try:
            if not (1 <= int(port) <= 65535):
                result.warnings.append(
                    f"REDIS_PORT value '{port}' is outside the valid port range (1-65535)"
                )
        except ValueError:
            result.warnings.append(f"REDIS_PORT value '{port}' is not a valid integer")


def _validate_boolean_vars(result: ValidationResult) -> None:
    for var in _BOOLEAN_ENV_VARS:
        value = os.environ.get(var)
        if value is not None and value.lower() not in _VALID_BOOLEAN_VALUES:
            result.warnings.append(
                f"{var} has unexpected value '{value}' "
                f"(expected one of: true, false, 1, 0, yes, no)"
            )


def _validate_positive_int_vars(result: ValidationResult) -> None:
    for var in _POSITIVE_INT_ENV_VARS:
        value = os.environ.get(var)
        if value is None:
            continue
        try:
            if int(value) < 1:
                result.warnings.append(
                    f"{var} value '{value}' must be a positive integer (>= 1)"
                )
        except ValueError:
            result.warnings.append(f"{var} value '{value}' is not a valid integer")
