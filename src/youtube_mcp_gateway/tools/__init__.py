"""
Tool Registry
=============

``TOOL_VARIANTS`` is the complete, static capability list of the gateway.
``register_tools(server, props)`` installs one instance of every tool on a
freshly built agent; it is called exactly once per agent.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

from pydantic import BaseModel, Field

from ..models import Props
from .analytics import ANALYTICS_TOOLS
from .base import Tool, ToolResult
from .youtube import YOUTUBE_TOOLS

logger = logging.getLogger(__name__)


class Greet(Tool):
    name = "greet"
    description = "Greet the user with a message"

    class Params(BaseModel):
        name: str = Field(description="Name to greet")

    async def execute(self, params: Params, props: Props) -> ToolResult:
        return ToolResult.text(f"Hello, {params.name}")


TOOL_VARIANTS: tuple[type[Tool], ...] = (Greet, *YOUTUBE_TOOLS, *ANALYTICS_TOOLS)


class ToolServer(Protocol):
    http_client: Any

    def add_tool(self, tool: Tool) -> None: ...


def register_tools(server: ToolServer, props: Props) -> None:
    """Register every tool in ``TOOL_VARIANTS`` on ``server``."""
    for tool_cls in TOOL_VARIANTS:
        server.add_tool(tool_cls(http_client=server.http_client))
    logger.debug(f"Registered {len(TOOL_VARIANTS)} tools for {props}")


__all__ = [
    "TOOL_VARIANTS",
    "Tool",
    "ToolResult",
    "register_tools",
]
