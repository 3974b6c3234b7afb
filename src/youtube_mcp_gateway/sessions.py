"""
Session Registry
================

Explicit per-grant session contexts shared by both transports.

A ``SessionContext`` pairs one DownstreamGrant with the Props it unlocked and
the agent built from them. Contexts are reference counted: every open SSE
stream and every in-flight /mcp request holds one reference, and the context
(and its agent) is dropped when the last holder releases it.

Concurrency: all mutations happen under one ``asyncio.Lock``, so concurrent
acquires for the same grant share a single agent and ``register_tools`` runs
once per agent.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from dataclasses import dataclass, field
from typing import AsyncIterator, Callable

from .agent import McpAgent, build_agent
from .models import DownstreamGrant, Props

logger = logging.getLogger(__name__)

AgentFactory = Callable[[Props], McpAgent]


@dataclass
class SessionContext:
    """A grant's Props and agent, alive while any transport holds it."""

    grant_id: str
    props: Props
    agent: McpAgent
    refcount: int = 0
    created_at: float = field(default_factory=time.time)


class SessionRegistry:
    """Reference-counted map of grant_id -> SessionContext."""

    def __init__(self, agent_factory: AgentFactory | None = None) -> None:
        self._agent_factory: AgentFactory = agent_factory or build_agent
        self._contexts: dict[str, SessionContext] = {}
        self._lock = asyncio.Lock()

    async def acquire(self, grant: DownstreamGrant, props: Props) -> SessionContext:
        """Get (or create) the context for ``grant`` and take a reference."""
        async with self._lock:
            context = self._contexts.get(grant.grant_id)
            if context is None:
                context = SessionContext(
                    grant_id=grant.grant_id,
                    props=props,
                    agent=self._agent_factory(props),
                )
                self._contexts[grant.grant_id] = context
                logger.debug(f"Session context created for grant {grant.grant_id}")
            context.refcount += 1
            return context

    async def release(self, context: SessionContext) -> None:
        """Drop a reference; the context is discarded when none remain."""
        async with self._lock:
            current = self._contexts.get(context.grant_id)
            if current is not context:
                return
            context.refcount -= 1
            if context.refcount <= 0:
                del self._contexts[context.grant_id]
                logger.debug(f"Session context released for grant {context.grant_id}")

    @contextlib.asynccontextmanager
    async def session(
        self, grant: DownstreamGrant, props: Props
    ) -> AsyncIterator[SessionContext]:
        context = await self.acquire(grant, props)
        try:
            yield context
        finally:
            await self.release(context)

    def get(self, grant_id: str) -> SessionContext | None:
        return self._contexts.get(grant_id)

    def __len__(self) -> int:
        return len(self._contexts)

    async def clear(self) -> None:
        async with self._lock:
            self._contexts.clear()


# =============================================================================
# Singleton
# =============================================================================

_registry: SessionRegistry | None = None


def get_session_registry() -> SessionRegistry:
    global _registry
    if _registry is None:
        _registry = SessionRegistry()
    return _registry


def set_session_registry(registry: SessionRegistry | None) -> None:
    global _registry
    _registry = registry


def reset_session_registry() -> None:
    """Reset the registry singleton. For testing only."""
    global _registry
    _registry = None
