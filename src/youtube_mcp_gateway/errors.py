"""
Gateway Error Taxonomy
======================

Every failure the gateway can surface to a caller is a ``GatewayError``
subclass carrying an OAuth-style ``error_code`` and the HTTP status it maps to.

Propagation policy:
- Authorization-flow errors end the flow; the client must restart at /authorize
- ``Unauthenticated`` ends only the current transport request
- ``ToolExecutionError`` never leaves a tool; it is rendered as an error result
"""

from __future__ import annotations

from typing import Any


class GatewayError(Exception):
    """Base class for errors rendered as HTTP responses by the gateway."""

    error_code: str = "server_error"
    status_code: int = 500

    def __init__(self, description: str | None = None) -> None:
        self.description = description or self.__class__.__doc__ or self.error_code
        super().__init__(self.description)

    def to_dict(self, request_id: str | None = None) -> dict[str, Any]:
        body: dict[str, Any] = {
            "error": self.error_code,
            "error_description": self.description,
        }
        if request_id:
            body["request_id"] = request_id
        return body


# =============================================================================
# Authorization flow
# =============================================================================


class AuthorizationFlowError(GatewayError):
    """Authorization flow failed."""

    status_code = 400


class InvalidRequest(AuthorizationFlowError):
    """The authorization request is malformed."""

    error_code = "invalid_request"


class InvalidClient(AuthorizationFlowError):
    """Unknown client or bad client credentials."""

    error_code = "invalid_client"
    status_code = 401


class InvalidRedirect(AuthorizationFlowError):
    """Redirect URI is not registered for this client."""

    error_code = "invalid_redirect_uri"


class StateMismatch(AuthorizationFlowError):
    """Callback state does not match any pending authorization flow."""

    error_code = "state_mismatch"


class CodeAlreadyUsed(AuthorizationFlowError):
    """Authorization code has already been redeemed."""

    error_code = "code_already_used"


class FlowExpired(AuthorizationFlowError):
    """Authorization flow expired before the provider called back."""

    error_code = "flow_expired"


class UpstreamExchangeFailed(AuthorizationFlowError):
    """Upstream identity provider rejected or failed the code exchange."""

    error_code = "upstream_exchange_failed"
    status_code = 502


class InvalidGrant(AuthorizationFlowError):
    """Authorization code is invalid, expired or bound to another client."""

    error_code = "invalid_grant"


class UnsupportedGrantType(AuthorizationFlowError):
    """Only the authorization_code grant is supported."""

    error_code = "unsupported_grant_type"


# =============================================================================
# Transport
# =============================================================================


class Unauthenticated(GatewayError):
    """Missing, invalid or expired access token."""

    error_code = "invalid_token"
    status_code = 401


# =============================================================================
# Tools
# =============================================================================


class ToolExecutionError(Exception):
    """Raised inside a tool; converted to an error-shaped ToolResult."""
