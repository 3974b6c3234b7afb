"""
OAuth 2.1 authorization server endpoints.

- GET /authorize: validate the client request, set the continuation cookie,
  302 to Google
- GET /callback: Google's redirect target; completes the flow and 302s back
  to the client with a downstream authorization code
- POST /token: authorization_code grant (client_secret_basic,
  client_secret_post or none + PKCE)
- POST /register: RFC 7591 dynamic client registration
- GET /.well-known/oauth-authorization-server: RFC 8414 metadata
- GET /.well-known/oauth-protected-resource: RFC 9728 metadata
"""

import base64
import binascii
import logging
from urllib.parse import unquote_plus

from fastapi import Request
from fastapi.responses import JSONResponse, RedirectResponse
from pydantic import ValidationError

from ..auth import _scrub_secrets, get_request_id
from ..client_registry import ClientRegistry
from ..config import GatewaySettings
from ..continuation import CONTINUATION_COOKIE
from ..errors import (
    GatewayError,
    InvalidClient,
    InvalidRequest,
    UnsupportedGrantType,
)
from ..grants import GrantService
from ..models import AuthorizationRequest, ClientRegistrationRequest
from ..oauth_flow import AuthorizationFlow
from . import discovery_router, oauth_router

logger = logging.getLogger(__name__)

CALLBACK_COOKIE_PATH = "/callback"

# RFC 6749 section 5.1: token responses must not be cached
_NO_STORE_HEADERS = {"Cache-Control": "no-store", "Pragma": "no-cache"}


def _settings(request: Request) -> GatewaySettings:
    return request.app.state.settings


def _flow(request: Request) -> AuthorizationFlow:
    return request.app.state.authorization_flow


def _clients(request: Request) -> ClientRegistry:
    return request.app.state.client_registry


def _grants(request: Request) -> GrantService:
    return request.app.state.grant_service


def gateway_error_response(
    error: GatewayError, headers: dict[str, str] | None = None
) -> JSONResponse:
    """Render a GatewayError as ``{"error", "error_description", "request_id"}``."""
    body = error.to_dict(get_request_id())
    body["error_description"] = _scrub_secrets(body["error_description"])
    return JSONResponse(status_code=error.status_code, content=body, headers=headers)


# =============================================================================
# Authorization endpoint
# =============================================================================


@oauth_router.get("/authorize")
async def authorize(request: Request):
    """
    Start an authorization flow.

    Query parameters follow RFC 6749 section 4.1.1 plus PKCE (RFC 7636).
    Errors are rendered as JSON; nothing is redirected back to an
    unverified redirect_uri.
    """
    query = request.query_params
    try:
        auth_request = AuthorizationRequest(
            response_type=query.get("response_type", "code"),
            client_id=query.get("client_id", ""),
            redirect_uri=query.get("redirect_uri", ""),
            scopes=query.get("scope", "").split(),
            state=query.get("state"),
            code_challenge=query.get("code_challenge"),
            code_challenge_method=query.get("code_challenge_method"),
        )
    except ValidationError as e:
        fields = ", ".join(str(err["loc"][0]) for err in e.errors() if err.get("loc"))
        raise InvalidRequest(f"Invalid authorization request parameters: {fields}") from e

    result = await _flow(request).start(auth_request)

    response = RedirectResponse(url=result.redirect_url, status_code=302)
    response.set_cookie(
        CONTINUATION_COOKIE,
        result.continuation_token,
        max_age=result.max_age,
        path=CALLBACK_COOKIE_PATH,
        secure=_settings(request).cookie_secure,
        httponly=True,
        samesite="lax",
    )
    return response


@oauth_router.get("/callback")
async def callback(request: Request):
    """Complete the flow started at /authorize. The continuation cookie is always cleared."""
    query = request.query_params
    try:
        result = await _flow(request).callback(
            provider_code=query.get("code"),
            provider_state=query.get("state"),
            continuation_token=request.cookies.get(CONTINUATION_COOKIE),
            provider_error=query.get("error"),
        )
    except GatewayError as e:
        response = gateway_error_response(e)
    else:
        response = RedirectResponse(url=result.redirect_url, status_code=302)

    response.delete_cookie(
        CONTINUATION_COOKIE,
        path=CALLBACK_COOKIE_PATH,
        secure=_settings(request).cookie_secure,
        httponly=True,
        samesite="lax",
    )
    return response


# =============================================================================
# Token endpoint
# =============================================================================


def _basic_credentials(authorization: str | None) -> tuple[str, str] | None:
    """Decode ``Authorization: Basic`` (RFC 6749 section 2.3.1)."""
    if not authorization or not authorization.startswith("Basic "):
        return None
    try:
        decoded = base64.b64decode(authorization[len("Basic ") :].strip()).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError) as e:
        raise InvalidClient("Malformed Basic credentials") from e
    client_id, sep, client_secret = decoded.partition(":")
    if not sep:
        raise InvalidClient("Malformed Basic credentials")
    return unquote_plus(client_id), unquote_plus(client_secret)


@oauth_router.post("/token")
async def token(request: Request):
    """
    Exchange a downstream authorization code for an access token.

    Errors use RFC 6749 section 5.2 bodies; ``invalid_client`` with Basic
    credentials carries ``WWW-Authenticate: Basic``.
    """
    form = await request.form()
    basic = None
    try:
        basic = _basic_credentials(request.headers.get("authorization"))
        if basic is not None:
            client_id, client_secret = basic
        else:
            client_id = form.get("client_id")
            client_secret = form.get("client_secret")

        grant_type = form.get("grant_type")
        if grant_type != "authorization_code":
            raise UnsupportedGrantType(f"Unsupported grant_type: {grant_type}")

        client = await _clients(request).authenticate(client_id, client_secret)
        token_response = await _grants(request).exchange_authorization_code(
            client,
            code=form.get("code"),
            redirect_uri=form.get("redirect_uri"),
            code_verifier=form.get("code_verifier"),
        )
    except InvalidClient as e:
        headers = dict(_NO_STORE_HEADERS)
        if basic is not None or request.headers.get("authorization"):
            headers["WWW-Authenticate"] = 'Basic realm="token"'
        return gateway_error_response(e, headers=headers)
    except GatewayError as e:
        return gateway_error_response(e, headers=_NO_STORE_HEADERS)

    logger.info(f"Issued access token for client {client.client_id}")
    return JSONResponse(content=token_response.model_dump(), headers=_NO_STORE_HEADERS)


# =============================================================================
# Dynamic client registration
# =============================================================================


@oauth_router.post("/register")
async def register(request: Request):
    """RFC 7591 registration. The client secret is only ever returned here."""
    try:
        payload = await request.json()
    except ValueError as e:
        raise InvalidRequest("Registration body must be JSON") from e
    try:
        registration = ClientRegistrationRequest.model_validate(payload)
    except ValidationError as e:
        fields = ", ".join(str(err["loc"][0]) for err in e.errors() if err.get("loc"))
        raise InvalidRequest(f"Invalid client metadata: {fields}") from e

    client, client_secret = await _clients(request).register(registration)

    body = {
        "client_id": client.client_id,
        "client_id_issued_at": client.client_id_issued_at,
        "client_name": client.client_name,
        "redirect_uris": client.redirect_uris,
        "grant_types": client.grant_types,
        "response_types": client.response_types,
        "token_endpoint_auth_method": client.token_endpoint_auth_method,
    }
    if client_secret is not None:
        body["client_secret"] = client_secret
        body["client_secret_expires_at"] = 0
    return JSONResponse(status_code=201, content=body, headers=_NO_STORE_HEADERS)


# =============================================================================
# Discovery
# =============================================================================


def authorization_server_metadata(settings: GatewaySettings) -> dict:
    base_url = settings.base_url.rstrip("/")
    return {
        "issuer": base_url,
        "authorization_endpoint": f"{base_url}/authorize",
        "token_endpoint": f"{base_url}/token",
        "registration_endpoint": f"{base_url}/register",
        "response_types_supported": ["code"],
        "response_modes_supported": ["query"],
        "grant_types_supported": ["authorization_code"],
        "token_endpoint_auth_methods_supported": [
            "client_secret_basic",
            "client_secret_post",
            "none",
        ],
        "code_challenge_methods_supported": ["S256", "plain"],
    }


def protected_resource_metadata(settings: GatewaySettings) -> dict:
    base_url = settings.base_url.rstrip("/")
    return {
        "resource": base_url,
        "authorization_servers": [base_url],
        "bearer_methods_supported": ["header"],
        "resource_name": settings.server_name,
    }


@discovery_router.get("/.well-known/oauth-authorization-server")
@discovery_router.get("/.well-known/oauth-authorization-server/{resource_path:path}")
async def oauth_authorization_server(request: Request, resource_path: str = ""):
    return authorization_server_metadata(_settings(request))


@discovery_router.get("/.well-known/oauth-protected-resource")
@discovery_router.get("/.well-known/oauth-protected-resource/{resource_path:path}")
async def oauth_protected_resource(request: Request, resource_path: str = ""):
    return protected_resource_metadata(_settings(request))
