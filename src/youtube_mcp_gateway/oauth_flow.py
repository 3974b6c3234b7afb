"""
Authorization State Machine
===========================

Drives one login from a protocol client's /authorize request, through
Google, to a downstream authorization code::

    IDLE -> AWAITING_UPSTREAM_REDIRECT -> AWAITING_UPSTREAM_CALLBACK
         -> EXCHANGING_CODE -> ISSUING -> COMPLETE

``FAILED`` is reachable from every non-terminal state. The flow spans two
HTTP requests; between them its only state is the signed continuation token
held by the browser, so ``start`` performs no credential store writes.

Callback checks run in a fixed order and every store write happens after the
continuation has been authenticated:

1. continuation signature (``StateMismatch``) and expiry (``FlowExpired``)
2. upstream ``state`` == continuation nonce, constant time (``StateMismatch``)
3. provider code consumed, put-if-absent (``CodeAlreadyUsed``)
4. continuation nonce consumed, put-if-absent (``StateMismatch``)
5. code exchange (``UpstreamExchangeFailed``)

A DownstreamGrant is only written in step ISSUING, after a complete exchange.
"""

from __future__ import annotations

import hashlib
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from .auth import _scrub_secrets
from .client_registry import ClientRegistry, check_redirect_uri
from .config import GatewaySettings
from .continuation import Continuation, ContinuationCodec, nonce_matches
from .credential_store import CredentialStore
from .errors import (
    AuthorizationFlowError,
    CodeAlreadyUsed,
    InvalidRequest,
    StateMismatch,
    UpstreamExchangeFailed,
)
from .grants import GrantService
from .mcp_tracing import get_tracer, record_transition, trace_flow_step
from .models import AuthorizationRequest, DownstreamGrant, UpstreamGrant
from .props import bind_props
from .upstream_identity import UpstreamIdentityClient

logger = logging.getLogger(__name__)


class FlowState(str, Enum):
    IDLE = "idle"
    AWAITING_UPSTREAM_REDIRECT = "awaiting_upstream_redirect"
    AWAITING_UPSTREAM_CALLBACK = "awaiting_upstream_callback"
    EXCHANGING_CODE = "exchanging_code"
    ISSUING = "issuing"
    COMPLETE = "complete"
    FAILED = "failed"


_TRANSITIONS: dict[FlowState, frozenset[FlowState]] = {
    FlowState.IDLE: frozenset({FlowState.AWAITING_UPSTREAM_REDIRECT}),
    FlowState.AWAITING_UPSTREAM_REDIRECT: frozenset(
        {FlowState.AWAITING_UPSTREAM_CALLBACK}
    ),
    FlowState.AWAITING_UPSTREAM_CALLBACK: frozenset({FlowState.EXCHANGING_CODE}),
    FlowState.EXCHANGING_CODE: frozenset({FlowState.ISSUING}),
    FlowState.ISSUING: frozenset({FlowState.COMPLETE}),
    FlowState.COMPLETE: frozenset(),
    FlowState.FAILED: frozenset(),
}

TERMINAL_STATES = frozenset({FlowState.COMPLETE, FlowState.FAILED})


class FlowStateMachine:
    """Tracks and validates the state of one authorization flow."""

    def __init__(
        self,
        state: FlowState = FlowState.IDLE,
        span: Any = None,
        flow_id: str = "",
    ) -> None:
        self.state = state
        self.flow_id = flow_id
        self._span = span
        self.history: list[FlowState] = [state]

    def transition(self, to: FlowState) -> None:
        """
        Move to ``to``.

        Raises:
            RuntimeError: the transition is not part of the flow graph
        """
        legal = to in _TRANSITIONS[self.state] or (
            to is FlowState.FAILED and self.state not in TERMINAL_STATES
        )
        if not legal:
            raise RuntimeError(
                f"Illegal authorization flow transition {self.state.value} -> {to.value}"
            )
        logger.debug(f"Flow {self.flow_id}: {self.state.value} -> {to.value}")
        if self._span is not None:
            record_transition(self._span, self.state.value, to.value)
        self.state = to
        self.history.append(to)

    def fail(self) -> None:
        if self.state not in TERMINAL_STATES:
            self.transition(FlowState.FAILED)


def _flow_id(nonce: str) -> str:
    return hashlib.sha256(nonce.encode("utf-8")).hexdigest()[:12]


def provider_code_key(code: str) -> str:
    return f"oauth:provider_code:{hashlib.sha256(code.encode('utf-8')).hexdigest()}"


def flow_nonce_key(nonce: str) -> str:
    return f"oauth:flow_nonce:{hashlib.sha256(nonce.encode('utf-8')).hexdigest()}"


def append_query(url: str, params: dict[str, str]) -> str:
    """Add query parameters to ``url``, keeping any it already has."""
    parts = urlsplit(url)
    query = parse_qsl(parts.query, keep_blank_values=True)
    query.extend(params.items())
    return urlunsplit(parts._replace(query=urlencode(query)))


@dataclass(frozen=True)
class StartResult:
    """Where to send the browser, and the continuation cookie to set."""

    redirect_url: str
    continuation_token: str
    max_age: int
    state: FlowState


@dataclass(frozen=True)
class CallbackResult:
    """Redirect back to the protocol client carrying the downstream code."""

    redirect_url: str
    grant: DownstreamGrant
    state: FlowState


class AuthorizationFlow:
    """start / callback / issue for the gateway's authorization-code flow."""

    def __init__(
        self,
        settings: GatewaySettings,
        store: CredentialStore,
        clients: ClientRegistry,
        upstream: UpstreamIdentityClient,
        grants: GrantService,
        codec: ContinuationCodec,
    ) -> None:
        self.settings = settings
        self._store = store
        self._clients = clients
        self._upstream = upstream
        self._grants = grants
        self._codec = codec

    async def start(self, request: AuthorizationRequest) -> StartResult:
        """
        Validate the client's request and build the redirect to Google.

        Raises:
            InvalidClient: unknown client_id
            InvalidRedirect: redirect_uri not registered for the client
            InvalidRequest: unsupported response_type or PKCE parameters
        """
        with trace_flow_step(get_tracer(), "start", request.client_id) as span:
            machine = FlowStateMachine(span=span)
            try:
                client = await self._clients.require(request.client_id)
                check_redirect_uri(client, request.redirect_uri)
                if request.response_type != "code":
                    raise InvalidRequest(
                        f"Unsupported response_type: {request.response_type}"
                    )
                if request.code_challenge_method and not request.code_challenge:
                    raise InvalidRequest("code_challenge_method without code_challenge")
                if client.is_public and not request.code_challenge:
                    raise InvalidRequest("Public clients must use PKCE")

                token, continuation = self._codec.issue(request)
                machine.flow_id = _flow_id(continuation.nonce)
                machine.transition(FlowState.AWAITING_UPSTREAM_REDIRECT)
                url = self._upstream.build_authorization_url(
                    request,
                    state=continuation.nonce,
                    code_verifier=continuation.code_verifier,
                )
                machine.transition(FlowState.AWAITING_UPSTREAM_CALLBACK)
            except AuthorizationFlowError:
                machine.fail()
                raise

            logger.info(
                f"Authorization flow {machine.flow_id} started for client "
                f"{request.client_id}"
            )
            return StartResult(
                redirect_url=url,
                continuation_token=token,
                max_age=self._codec.ttl_seconds,
                state=machine.state,
            )

    async def callback(
        self,
        provider_code: str | None,
        provider_state: str | None,
        continuation_token: str | None,
        provider_error: str | None = None,
    ) -> CallbackResult:
        """
        Handle Google's redirect back to /callback.

        Raises:
            StateMismatch: no/forged continuation, wrong state, replayed flow
            FlowExpired: continuation older than the flow TTL
            CodeAlreadyUsed: the provider code was already consumed
            UpstreamExchangeFailed: user denied consent or the exchange failed
        """
        with trace_flow_step(get_tracer(), "callback") as span:
            machine = FlowStateMachine(FlowState.AWAITING_UPSTREAM_CALLBACK, span=span)
            try:
                continuation = self._codec.verify(continuation_token)
                machine.flow_id = _flow_id(continuation.nonce)
                span.set_attribute("oauth.client.id", continuation.request.client_id)

                if not nonce_matches(continuation, provider_state):
                    raise StateMismatch("Callback state does not match this flow")
                if provider_error:
                    raise UpstreamExchangeFailed(
                        f"Identity provider returned error: {_scrub_secrets(provider_error)}"
                    )
                if not provider_code:
                    raise InvalidRequest("Callback is missing the authorization code")

                await self._consume_once(continuation, provider_code)

                machine.transition(FlowState.EXCHANGING_CODE)
                try:
                    upstream_grant = await self._upstream.exchange_code(
                        provider_code,
                        self.settings.callback_url,
                        code_verifier=continuation.code_verifier,
                    )
                except UpstreamExchangeFailed:
                    raise
                except Exception as e:
                    raise UpstreamExchangeFailed(
                        f"Code exchange failed: {type(e).__name__}"
                    ) from e

                machine.transition(FlowState.ISSUING)
                grant, redirect_url = await self.issue(continuation.request, upstream_grant)
                machine.transition(FlowState.COMPLETE)
            except AuthorizationFlowError as e:
                machine.fail()
                logger.warning(
                    f"Authorization flow {machine.flow_id or '-'} failed: "
                    f"{e.error_code}: {_scrub_secrets(e.description)}"
                )
                raise

            logger.info(
                f"Authorization flow {machine.flow_id} complete; grant "
                f"{grant.grant_id} issued to client {grant.client_id}"
            )
            return CallbackResult(redirect_url=redirect_url, grant=grant, state=machine.state)

    async def _consume_once(self, continuation: Continuation, provider_code: str) -> None:
        ttl = max(1, int(continuation.expires_at - time.time()) + 1)
        first_use = await self._store.put(
            provider_code_key(provider_code),
            {"consumed": True},
            ttl_seconds=max(ttl, self.settings.flow_ttl_seconds),
            only_if_absent=True,
        )
        if not first_use:
            raise CodeAlreadyUsed()
        fresh_flow = await self._store.put(
            flow_nonce_key(continuation.nonce),
            {"consumed": True},
            ttl_seconds=ttl,
            only_if_absent=True,
        )
        if not fresh_flow:
            raise StateMismatch("This authorization flow has already completed")

    async def issue(
        self, request: AuthorizationRequest, upstream_grant: UpstreamGrant
    ) -> tuple[DownstreamGrant, str]:
        """
        Bind Props, persist the grant and a single-use code, and build the
        redirect back to the client.
        """
        # Client may have been removed while the user was at Google
        client = await self._clients.require(request.client_id)
        check_redirect_uri(client, request.redirect_uri)

        props = bind_props(upstream_grant)
        grant = await self._grants.create_grant(
            client_id=request.client_id,
            scopes=request.scopes,
            props=props,
            upstream_expires_in=upstream_grant.expires_in,
        )
        code = await self._grants.create_authorization_code(grant, request)

        params = {"code": code}
        if request.state is not None:
            params["state"] = request.state
        return grant, append_query(request.redirect_uri, params)
