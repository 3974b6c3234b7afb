"""
YouTube API Client
==================

Thin async wrapper over the YouTube Data API v3 and YouTube Analytics API v2.

``YouTubeClient.from_props`` is a pure constructor: the only credential it
ever uses is ``props.access_token`` of the session it was built for, sent as
``Authorization: Bearer``. There is no token refresh; an expired Google token
surfaces as ``YouTubeAPIError(status=401)``.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from .http_client_pool import get_client_for_request
from .models import Props

logger = logging.getLogger(__name__)

YOUTUBE_DATA_API_BASE = "https://www.googleapis.com/youtube/v3"
YOUTUBE_ANALYTICS_API_BASE = "https://youtubeanalytics.googleapis.com/v2"


class YouTubeAPIError(Exception):
    """Non-2xx response from a YouTube API."""

    def __init__(self, status: int, reason: str | None, message: str) -> None:
        self.status = status
        self.reason = reason
        self.message = message
        super().__init__(f"{status} {reason or ''}: {message}".strip())

    @classmethod
    def from_response(cls, response: httpx.Response) -> "YouTubeAPIError":
        reason = None
        message = response.reason_phrase or "Request failed"
        try:
            error = response.json().get("error", {})
        except (ValueError, AttributeError):
            error = {}
        if isinstance(error, dict):
            message = error.get("message") or message
            details = error.get("errors") or []
            if details and isinstance(details[0], dict):
                reason = details[0].get("reason")
            reason = reason or error.get("status")
        return cls(response.status_code, reason, message)


class YouTubeClient:
    """YouTube Data/Analytics calls authenticated as one session's user."""

    def __init__(
        self,
        access_token: str,
        http_client: httpx.AsyncClient | None = None,
        data_api_base: str = YOUTUBE_DATA_API_BASE,
        analytics_api_base: str = YOUTUBE_ANALYTICS_API_BASE,
    ) -> None:
        self._access_token = access_token
        self._http_client = http_client
        self.data_api_base = data_api_base.rstrip("/")
        self.analytics_api_base = analytics_api_base.rstrip("/")

    @classmethod
    def from_props(
        cls, props: Props, http_client: httpx.AsyncClient | None = None
    ) -> "YouTubeClient":
        return cls(props.access_token, http_client=http_client)

    async def _get(self, url: str, params: dict[str, Any]) -> dict[str, Any]:
        query = {k: v for k, v in params.items() if v is not None}
        headers = {
            "Authorization": f"Bearer {self._access_token}",
            "Accept": "application/json",
        }
        if self._http_client is not None:
            response = await self._http_client.get(url, params=query, headers=headers)
        else:
            async with get_client_for_request() as client:
                response = await client.get(url, params=query, headers=headers)

        if response.status_code >= 400:
            error = YouTubeAPIError.from_response(response)
            logger.info(f"YouTube API {url.rsplit('/', 1)[-1]} failed: {error}")
            raise error
        try:
            return response.json()
        except ValueError as e:
            raise YouTubeAPIError(
                response.status_code, "invalidResponse", "Response was not JSON"
            ) from e

    # -------------------------------------------------------------------------
    # Data API v3
    # -------------------------------------------------------------------------

    async def search(self, **params: Any) -> dict[str, Any]:
        return await self._get(f"{self.data_api_base}/search", params)

    async def videos(self, **params: Any) -> dict[str, Any]:
        return await self._get(f"{self.data_api_base}/videos", params)

    async def channels(self, **params: Any) -> dict[str, Any]:
        return await self._get(f"{self.data_api_base}/channels", params)

    async def playlist_items(self, **params: Any) -> dict[str, Any]:
        return await self._get(f"{self.data_api_base}/playlistItems", params)

    # -------------------------------------------------------------------------
    # Analytics API v2
    # -------------------------------------------------------------------------

    async def reports(self, **params: Any) -> dict[str, Any]:
        return await self._get(f"{self.analytics_api_base}/reports", params)
