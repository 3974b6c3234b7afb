"""
YouTube Analytics Tools
=======================

Tools reporting on the signed-in user's own channel: headline statistics,
audience demographics, views/subscriber totals and latest uploads. Analytics
reports cover ``days`` days ending yesterday (today's data is incomplete).
"""

from __future__ import annotations

import logging
from datetime import date, timedelta
from typing import Any, Literal

from pydantic import BaseModel, Field

from ..models import Props
from ..youtube_client import YouTubeAPIError
from .base import (
    BAD_REQUEST,
    FORBIDDEN,
    Tool,
    ToolResult,
    format_count,
    format_date,
    to_int,
    truncate,
    watch_url,
)
from .youtube import _video_ids, my_channel_id

logger = logging.getLogger(__name__)


def days_ago(days: int, today: date | None = None) -> str:
    return ((today or date.today()) - timedelta(days=days)).isoformat()


def _report_window(days: int) -> tuple[str, str]:
    return days_ago(days), days_ago(1)


class GetBasicChannelStats(Tool):
    name = "youtube_getBasicChannelStats"
    description = "Get basic statistics for your YouTube channel (subscribers, views, videos)."
    error_prefix = "Error getting channel stats"

    async def execute(self, params: Any, props: Props) -> ToolResult:
        response = await self.youtube(props).channels(part="snippet,statistics", mine="true")
        items = response.get("items") or []
        if not items:
            return ToolResult.text(
                "No YouTube channel found for this account. Please make sure you have "
                "a YouTube channel associated with your Google account."
            )

        channel = items[0]
        snippet = channel.get("snippet") or {}
        stats = channel.get("statistics") or {}
        custom_url = snippet.get("customUrl")
        return ToolResult.text(
            f"📺 **{snippet.get('title') or 'Unknown Channel'}** Channel Stats\n\n"
            f"🆔 **Channel ID:** {channel.get('id')}\n"
            f"👥 **Subscribers:** {format_count(stats.get('subscriberCount'))}\n"
            f"👀 **Total Views:** {format_count(stats.get('viewCount'))}\n"
            f"🎬 **Total Videos:** {format_count(stats.get('videoCount'))}\n"
            f"📅 **Channel Created:** {format_date(snippet.get('publishedAt'))}\n"
            f"🌍 **Country:** {snippet.get('country') or 'Not specified'}\n"
            + (f"🔗 **Custom URL:** youtube.com/{custom_url}\n" if custom_url else "")
            + f"\n📝 **Description:** {truncate(snippet.get('description'), 200) or 'No description'}"
        )


class GetDemographics(Tool):
    name = "youtube_getDemographics"
    description = (
        "Get basic audience demographics for your channel (age, gender, top countries)."
    )
    error_prefix = "Error getting demographics"
    api_error_messages = {
        FORBIDDEN: "Analytics access denied or insufficient permissions for demographic data.",
        BAD_REQUEST: "Invalid request. Your channel may not have enough data for demographics.",
    }

    class Params(BaseModel):
        days: Literal["30", "90"] = Field(
            default="30", description="Number of days to analyze (30 or 90)"
        )

    async def _rows(self, props: Props, label: str, **query: Any) -> list[list[Any]]:
        """One report; an unavailable dimension yields no rows rather than failing."""
        try:
            response = await self.youtube(props).reports(**query)
        except YouTubeAPIError as e:
            if e.status == 401:
                raise
            logger.info(f"{label} demographics not available: {e}")
            return []
        return response.get("rows") or []

    async def execute(self, params: Params, props: Props) -> ToolResult:
        channel_id = await my_channel_id(self, props)
        start_date, end_date = _report_window(int(params.days))
        base = {"ids": f"channel=={channel_id}", "startDate": start_date, "endDate": end_date}

        sections = []
        age_rows = await self._rows(
            props, "Age", metrics="viewerPercentage", dimensions="ageGroup",
            sort="-viewerPercentage", **base,
        )
        if age_rows:
            sections.append(
                "📊 **Age Groups:**\n"
                + "".join(f"• {row[0] or 'Unknown'}: {float(row[1] or 0):.1f}%\n" for row in age_rows)
            )

        gender_rows = await self._rows(
            props, "Gender", metrics="viewerPercentage", dimensions="gender",
            sort="-viewerPercentage", **base,
        )
        if gender_rows:
            sections.append(
                "⚧ **Gender Distribution:**\n"
                + "".join(f"• {row[0] or 'Unknown'}: {float(row[1] or 0):.1f}%\n" for row in gender_rows)
            )

        country_rows = await self._rows(
            props, "Country", metrics="views", dimensions="country",
            sort="-views", maxResults=10, **base,
        )
        if country_rows:
            sections.append(
                "🌍 **Top Countries by Views:**\n"
                + "".join(
                    f"{index}. {row[0] or 'Unknown'}: {format_count(row[1])} views\n"
                    for index, row in enumerate(country_rows[:5], 1)
                )
            )

        if not sections:
            return ToolResult.text(
                f"No demographic data available for the last {params.days} days. "
                "This could mean:\n\n"
                "• Your channel needs more watch time to generate demographic insights\n"
                "• Your audience size is too small for detailed demographics\n"
                "• Demographic data is still processing\n"
                "• Your channel may need at least 100+ hours of watch time\n\n"
                "💡 Try the basic analytics tool instead: youtube_getAnalytics"
            )

        return ToolResult.text(
            f"👥 **Audience Demographics** (Last {params.days} days)\n"
            f"📈 **Period:** {start_date} to {end_date}\n\n"
            + "\n".join(sections)
            + "\n💡 **Note:** Demographic data requires sufficient audience size and watch time."
        )


class GetAnalytics(Tool):
    name = "youtube_getAnalytics"
    description = (
        "Get basic analytics for your channel - views and subscribers for recent periods."
    )
    error_prefix = "Error getting analytics"
    api_error_messages = {
        FORBIDDEN: (
            "Analytics access denied. Your channel may need more watch time or the "
            "Analytics API may not be enabled."
        ),
        BAD_REQUEST: "Invalid request. This might be due to insufficient channel data.",
    }

    class Params(BaseModel):
        days: Literal["7", "30"] = Field(
            default="7", description="Number of days to analyze (7 or 30)"
        )

    async def execute(self, params: Params, props: Props) -> ToolResult:
        channel_id = await my_channel_id(self, props)
        num_days = int(params.days)
        start_date, end_date = _report_window(num_days)

        response = await self.youtube(props).reports(
            ids=f"channel=={channel_id}",
            startDate=start_date,
            endDate=end_date,
            metrics="views,subscribersGained",
        )
        rows = response.get("rows") or []
        if not rows:
            return ToolResult.text(
                f"No analytics data available for the last {params.days} days. "
                "This could mean:\n• Your channel is very new\n"
                "• Not enough activity in this period\n• Analytics data is still processing"
            )

        total_views = sum(to_int(row[0]) for row in rows if len(row) > 0)
        total_subscribers = sum(to_int(row[1]) for row in rows if len(row) > 1)
        return ToolResult.text(
            f"📊 **Simple Analytics** (Last {params.days} days)\n\n"
            f"📈 **Period:** {start_date} to {end_date}\n"
            f"👀 **Total Views:** {total_views:,}\n"
            f"👥 **New Subscribers:** {total_subscribers}\n"
            f"📅 **Daily Average Views:** {round(total_views / num_days):,}\n\n"
            "💡 This is basic analytics data from YouTube Analytics API."
        )


class GetMyRecentVideos(Tool):
    name = "youtube_getMyRecentVideos"
    description = "Get your most recent uploaded videos with basic stats."
    error_prefix = "Error getting recent videos"

    class Params(BaseModel):
        maxResults: int = Field(
            default=10, ge=1, le=25, description="Number of recent videos to retrieve"
        )

    async def execute(self, params: Params, props: Props) -> ToolResult:
        client = self.youtube(props)
        channel_id = await my_channel_id(self, props)

        search = await client.search(
            part="snippet",
            channelId=channel_id,
            order="date",
            type="video",
            maxResults=params.maxResults,
        )
        items = search.get("items") or []
        if not items:
            return ToolResult.text("No videos found on your channel.")

        stats_response = await client.videos(
            part="statistics,contentDetails", id=",".join(_video_ids(search))
        )
        stats_by_id = {
            video.get("id"): video.get("statistics") or {}
            for video in stats_response.get("items") or []
        }

        entries = []
        for index, item in enumerate(items, 1):
            snippet = item.get("snippet") or {}
            video_id = (item.get("id") or {}).get("videoId") or ""
            stats = stats_by_id.get(video_id, {})
            entries.append(
                f"**{index}. {snippet.get('title') or 'Unknown Title'}**\n"
                f"   📅 Published: {format_date(snippet.get('publishedAt'))}\n"
                f"   👀 Views: {format_count(stats.get('viewCount'))} | "
                f"👍 Likes: {format_count(stats.get('likeCount'))} | "
                f"💬 Comments: {format_count(stats.get('commentCount'))}\n"
                f"   🔗 {watch_url(video_id)}\n"
            )
        return ToolResult.text(
            f"🎬 **Your {params.maxResults} Most Recent Videos**\n\n" + "\n".join(entries)
        )


ANALYTICS_TOOLS: tuple[type[Tool], ...] = (
    GetBasicChannelStats,
    GetDemographics,
    GetAnalytics,
    GetMyRecentVideos,
)
