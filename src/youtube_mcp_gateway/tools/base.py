"""
Tool Base Types
===============

Every tool is a ``Tool`` subclass with:

- ``name`` / ``description``: advertised in ``tools/list``
- ``Params``: a pydantic model; its JSON schema is the tool's ``inputSchema``
- ``execute(params, props)``: the work, returning a ``ToolResult``

``Tool.invoke`` is the containment boundary: argument validation errors,
``ToolExecutionError`` and ``YouTubeAPIError`` all come back as
``isError=True`` results instead of propagating to the protocol layer.
"""

from __future__ import annotations

import logging
import re
from typing import Any, ClassVar

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..auth import _scrub_secrets
from ..errors import ToolExecutionError
from ..models import Props
from ..youtube_client import YouTubeAPIError, YouTubeClient

logger = logging.getLogger(__name__)


class TextContent(BaseModel):
    type: str = "text"
    text: str


class ToolResult(BaseModel):
    """MCP ``tools/call`` result."""

    model_config = ConfigDict(populate_by_name=True)

    content: list[TextContent] = Field(default_factory=list)
    is_error: bool = Field(default=False, alias="isError")

    @classmethod
    def text(cls, text: str) -> "ToolResult":
        return cls(content=[TextContent(text=text)])

    @classmethod
    def error(cls, text: str) -> "ToolResult":
        return cls(content=[TextContent(text=text)], is_error=True)

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


class NoParams(BaseModel):
    model_config = ConfigDict(extra="ignore")


# Keys of the friendly-message table a tool may override
FORBIDDEN = "forbidden"
QUOTA_EXCEEDED = "quotaExceeded"
BAD_REQUEST = "badRequest"

DEFAULT_API_ERROR_MESSAGES: dict[str, str] = {
    FORBIDDEN: "Access denied. Please ensure you're authenticated with YouTube.",
    QUOTA_EXCEEDED: "API quota exceeded. Please try again later.",
}

REAUTHORIZE_MESSAGE = (
    "Your Google authorization has expired or was revoked. "
    "Please reconnect to authorize again."
)


def explain_api_error(error: YouTubeAPIError, messages: dict[str, str]) -> str:
    """Turn a YouTube API failure into a message fit for the end user."""
    reason = error.reason or ""
    if error.status == 401:
        return REAUTHORIZE_MESSAGE
    if reason == QUOTA_EXCEEDED and QUOTA_EXCEEDED in messages:
        return messages[QUOTA_EXCEEDED]
    if (error.status == 403 or reason == FORBIDDEN) and FORBIDDEN in messages:
        return messages[FORBIDDEN]
    if (error.status == 400 or reason == BAD_REQUEST) and BAD_REQUEST in messages:
        return messages[BAD_REQUEST]
    return error.message


def _describe_validation_error(error: ValidationError) -> str:
    problems = []
    for item in error.errors():
        location = ".".join(str(part) for part in item.get("loc", ())) or "arguments"
        problems.append(f"{location}: {item.get('msg', 'invalid value')}")
    return "; ".join(problems)


class Tool:
    """Base class for tools exposed to MCP clients."""

    name: ClassVar[str]
    description: ClassVar[str]
    Params: ClassVar[type[BaseModel]] = NoParams

    # Prefix for error results, e.g. "Error getting channel info"
    error_prefix: ClassVar[str] = "Error"
    api_error_messages: ClassVar[dict[str, str]] = {}

    def __init__(self, http_client: httpx.AsyncClient | None = None) -> None:
        self.http_client = http_client

    @classmethod
    def input_schema(cls) -> dict[str, Any]:
        schema = cls.Params.model_json_schema()
        schema.pop("title", None)
        schema.setdefault("properties", {})
        return schema

    @classmethod
    def describe(cls) -> dict[str, Any]:
        return {
            "name": cls.name,
            "description": cls.description,
            "inputSchema": cls.input_schema(),
        }

    def youtube(self, props: Props) -> YouTubeClient:
        return YouTubeClient.from_props(props, http_client=self.http_client)

    async def execute(self, params: Any, props: Props) -> ToolResult:
        raise NotImplementedError

    async def invoke(self, arguments: dict[str, Any] | None, props: Props) -> ToolResult:
        """Validate ``arguments`` and run the tool. Never raises."""
        try:
            params = self.Params.model_validate(arguments or {})
        except ValidationError as e:
            return ToolResult.error(
                f"Invalid arguments for {self.name}: {_describe_validation_error(e)}"
            )

        try:
            return await self.execute(params, props)
        except YouTubeAPIError as e:
            messages = {**DEFAULT_API_ERROR_MESSAGES, **self.api_error_messages}
            return ToolResult.error(f"{self.error_prefix}: {explain_api_error(e, messages)}")
        except ToolExecutionError as e:
            return ToolResult.error(f"{self.error_prefix}: {e}")
        except httpx.HTTPError as e:
            logger.warning(f"Tool {self.name} upstream request failed: {type(e).__name__}")
            return ToolResult.error(
                f"{self.error_prefix}: YouTube could not be reached ({type(e).__name__})"
            )
        except Exception as e:
            logger.exception(f"Tool {self.name} failed: {_scrub_secrets(str(e))}")
            return ToolResult.error(f"{self.error_prefix}: {_scrub_secrets(str(e))}")


# =============================================================================
# Formatting helpers
# =============================================================================

_ISO_DURATION = re.compile(r"PT(?:(\d+)H)?(?:(\d+)M)?(?:(\d+)S)?")


def format_duration(duration: str | None) -> str:
    """``PT1H2M3S`` -> ``1:02:03``; ``PT4M5S`` -> ``4:05``."""
    if not duration:
        return "Unknown"
    match = _ISO_DURATION.fullmatch(duration)
    if not match:
        return duration
    hours, minutes, seconds = (int(group or 0) for group in match.groups())
    if hours:
        return f"{hours}:{minutes:02d}:{seconds:02d}"
    return f"{minutes}:{seconds:02d}"


def to_int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def format_count(value: Any) -> str:
    return f"{to_int(value):,}"


def format_date(timestamp: str | None) -> str:
    """Date part of an RFC 3339 timestamp."""
    if not timestamp:
        return "Unknown"
    return timestamp.split("T", 1)[0]


def truncate(text: str | None, limit: int) -> str:
    text = text or ""
    return text if len(text) <= limit else f"{text[:limit]}..."


def watch_url(video_id: str | None) -> str:
    return f"https://www.youtube.com/watch?v={video_id}" if video_id else "N/A"
