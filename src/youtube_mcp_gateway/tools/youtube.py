"""
YouTube Data API Tools
======================

Search, video, channel and competitor lookups against the YouTube Data API v3,
run as the signed-in user of the session.
"""

from __future__ import annotations

import re
from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Any, Literal

from pydantic import BaseModel, Field

from ..errors import ToolExecutionError
from ..models import Props
from .base import (
    Tool,
    ToolResult,
    format_count,
    format_date,
    format_duration,
    to_int,
    truncate,
    watch_url,
)

_KEYWORD = re.compile(r"\b\w{4,}\b")

CONTENT_IDEA_TEMPLATES = (
    "{topic} Tutorial for Beginners",
    "Top 10 {topic} Tips and Tricks",
    "{topic} vs [Alternative] - Complete Comparison",
    "My Experience with {topic} - Lessons Learned",
    "Common {topic} Mistakes to Avoid",
    "{topic} in {year} - What's New?",
    "Building/Creating with {topic} - Step by Step",
    "{topic} Review - Is It Worth It?",
)


def _video_ids(search_response: dict[str, Any]) -> list[str]:
    ids = []
    for item in search_response.get("items") or []:
        video_id = (item.get("id") or {}).get("videoId")
        if video_id:
            ids.append(video_id)
    return ids


async def my_channel_id(tool: Tool, props: Props) -> str:
    response = await tool.youtube(props).channels(part="id", mine="true")
    items = response.get("items") or []
    if not items or not items[0].get("id"):
        raise ToolExecutionError("Could not retrieve channel ID")
    return items[0]["id"]


class SearchVideos(Tool):
    name = "youtube_searchVideos"
    description = "Search for YouTube videos based on a query."
    error_prefix = "Error searching YouTube"

    class Params(BaseModel):
        query: str = Field(min_length=1, description="The search query term(s)")
        maxResults: int = Field(
            default=5, ge=1, le=50, description="Maximum number of results to return (1-50)"
        )
        order: Literal[
            "date", "rating", "relevance", "title", "videoCount", "viewCount"
        ] = Field(default="relevance", description="Sort order for results")
        videoType: Literal["any", "episode", "movie"] = Field(
            default="any", description="Filter by video type"
        )

    async def execute(self, params: Params, props: Props) -> ToolResult:
        response = await self.youtube(props).search(
            part="snippet",
            q=params.query,
            maxResults=params.maxResults,
            order=params.order,
            type="video",
            videoType=params.videoType,
        )
        items = response.get("items") or []
        if not items:
            return ToolResult.text("No YouTube videos found matching the query.")

        entries = []
        for index, item in enumerate(items, 1):
            snippet = item.get("snippet") or {}
            video_id = (item.get("id") or {}).get("videoId")
            entries.append(
                f"**{index}. {snippet.get('title')}**\n"
                f"   • Channel: {snippet.get('channelTitle')}\n"
                f"   • Published: {format_date(snippet.get('publishedAt'))}\n"
                f"   • Video ID: {video_id}\n"
                f"   • Link: {watch_url(video_id)}\n"
                f"   • Description: {truncate(snippet.get('description'), 150)}\n"
            )
        return ToolResult.text(
            f'🔍 **YouTube Search Results for "{params.query}"**\n\n' + "\n".join(entries)
        )


class GetVideoDetails(Tool):
    name = "youtube_getVideoDetails"
    description = "Get detailed information about a specific YouTube video."
    error_prefix = "Error getting video details"

    class Params(BaseModel):
        videoId: str = Field(min_length=1, description="The ID of the YouTube video")

    async def execute(self, params: Params, props: Props) -> ToolResult:
        response = await self.youtube(props).videos(
            part="snippet,contentDetails,statistics", id=params.videoId
        )
        items = response.get("items") or []
        if not items:
            return ToolResult.text(f"Video with ID {params.videoId} not found.")

        video = items[0]
        snippet = video.get("snippet") or {}
        stats = video.get("statistics") or {}
        details = video.get("contentDetails") or {}
        tags = snippet.get("tags") or []
        return ToolResult.text(
            f"🎬 **{snippet.get('title')}**\n\n"
            "📊 **Performance Metrics:**\n"
            f"• Views: {format_count(stats.get('viewCount'))}\n"
            f"• Likes: {format_count(stats.get('likeCount'))}\n"
            f"• Comments: {format_count(stats.get('commentCount'))}\n"
            f"• Duration: {format_duration(details.get('duration'))}\n\n"
            "📝 **Video Info:**\n"
            f"• Channel: {snippet.get('channelTitle')}\n"
            f"• Published: {format_date(snippet.get('publishedAt'))}\n"
            f"• Video ID: {params.videoId}\n"
            f"• Link: {watch_url(params.videoId)}\n\n"
            f"📖 **Description:**\n{truncate(snippet.get('description'), 400)}\n\n"
            f"🏷️ **Tags:** {', '.join(tags[:10]) if tags else 'None'}"
        )


class GetChannelInfo(Tool):
    name = "youtube_getChannelInfo"
    description = "Get detailed information about a YouTube channel."
    error_prefix = "Error getting channel info"

    class Params(BaseModel):
        channelId: str | None = Field(
            default=None, description="Channel ID (leave empty for your own channel)"
        )
        channelName: str | None = Field(
            default=None, description="Channel name/username to search for"
        )

    async def execute(self, params: Params, props: Props) -> ToolResult:
        part = "snippet,statistics,contentDetails"
        client = self.youtube(props)
        if params.channelId:
            response = await client.channels(part=part, id=params.channelId)
        elif params.channelName:
            response = await client.channels(part=part, forUsername=params.channelName)
        else:
            response = await client.channels(part=part, mine="true")

        items = response.get("items") or []
        if not items:
            return ToolResult.text("Channel not found.")

        channel = items[0]
        snippet = channel.get("snippet") or {}
        stats = channel.get("statistics") or {}
        return ToolResult.text(
            f"📺 **{snippet.get('title')}**\n\n"
            "📊 **Channel Statistics:**\n"
            f"• Subscribers: {format_count(stats.get('subscriberCount'))}\n"
            f"• Total Views: {format_count(stats.get('viewCount'))}\n"
            f"• Total Videos: {format_count(stats.get('videoCount'))}\n\n"
            "📝 **Channel Info:**\n"
            f"• Channel ID: {channel.get('id')}\n"
            f"• Created: {format_date(snippet.get('publishedAt'))}\n"
            f"• Country: {snippet.get('country') or 'Not specified'}\n\n"
            f"📖 **Description:**\n{truncate(snippet.get('description'), 400)}"
        )


class GetChannelVideos(Tool):
    name = "youtube_getChannelVideos"
    description = "Get recent videos from a specific channel."
    error_prefix = "Error getting channel videos"

    class Params(BaseModel):
        channelId: str | None = Field(
            default=None, description="Channel ID (leave empty for your own channel)"
        )
        maxResults: int = Field(
            default=10, ge=1, le=50, description="Number of videos to retrieve"
        )
        order: Literal["date", "relevance", "viewCount", "rating"] = Field(
            default="date", description="Sort order for videos"
        )

    async def execute(self, params: Params, props: Props) -> ToolResult:
        client = self.youtube(props)
        channel_id = params.channelId or await my_channel_id(self, props)

        search = await client.search(
            part="snippet",
            channelId=channel_id,
            type="video",
            order=params.order,
            maxResults=params.maxResults,
        )
        video_ids = _video_ids(search)
        if not video_ids:
            return ToolResult.text("No videos found for this channel.")

        response = await client.videos(
            part="snippet,statistics,contentDetails", id=",".join(video_ids)
        )
        videos = response.get("items") or []
        entries = []
        for index, video in enumerate(videos, 1):
            snippet = video.get("snippet") or {}
            stats = video.get("statistics") or {}
            entries.append(
                f"**{index}. {snippet.get('title')}**\n"
                f"   • Published: {format_date(snippet.get('publishedAt'))}\n"
                f"   • Views: {format_count(stats.get('viewCount'))}\n"
                f"   • Likes: {format_count(stats.get('likeCount'))}\n"
                f"   • Duration: {format_duration((video.get('contentDetails') or {}).get('duration'))}\n"
                f"   • Video ID: {video.get('id')}\n"
                f"   • Link: {watch_url(video.get('id'))}\n"
            )
        return ToolResult.text(
            f"🎥 **Recent Videos** ({len(videos)} videos)\n\n" + "\n".join(entries)
        )


class SuggestContentIdeas(Tool):
    name = "youtube_suggestContentIdeas"
    description = (
        "Suggest content ideas based on trending topics in your niche or a specific topic."
    )
    error_prefix = "Error suggesting content ideas"

    class Params(BaseModel):
        topic: str = Field(
            min_length=1, description="Topic or keyword to analyze for content ideas"
        )
        maxResults: int = Field(
            default=10, ge=1, le=20, description="Number of trending videos to analyze"
        )

    async def execute(self, params: Params, props: Props) -> ToolResult:
        client = self.youtube(props)
        now = datetime.now(timezone.utc)
        published_after = (now - timedelta(days=30)).strftime("%Y-%m-%dT%H:%M:%SZ")

        search = await client.search(
            part="snippet",
            q=params.topic,
            type="video",
            order="viewCount",
            publishedAfter=published_after,
            maxResults=params.maxResults,
        )
        video_ids = _video_ids(search)
        if not video_ids:
            return ToolResult.text(f'No trending videos found for "{params.topic}".')

        response = await client.videos(part="snippet,statistics", id=",".join(video_ids))
        videos = response.get("items") or []

        text = " ".join(
            part
            for video in videos
            for part in (
                (video.get("snippet") or {}).get("title") or "",
                (video.get("snippet") or {}).get("description") or "",
            )
        ).lower()
        keywords = [word for word, _ in Counter(_KEYWORD.findall(text)).most_common(10)]

        trending = []
        for index, video in enumerate(videos[:5], 1):
            snippet = video.get("snippet") or {}
            trending.append(
                f"{index}. **{snippet.get('title')}**\n"
                f"   • {format_count((video.get('statistics') or {}).get('viewCount'))} views\n"
                f"   • Channel: {snippet.get('channelTitle')}\n"
                f"   • Published: {format_date(snippet.get('publishedAt'))}\n"
            )
        suggestions = "\n".join(
            f'• "{template.format(topic=params.topic, year=now.year)}"'
            for template in CONTENT_IDEA_TEMPLATES
        )
        return ToolResult.text(
            f'💡 **Content Ideas for "{params.topic}"**\n\n'
            "🔥 **Trending Videos Analysis:**\n"
            + "\n".join(trending)
            + "\n"
            + f'🎯 **Popular Keywords in "{params.topic}":**\n'
            + "\n".join(f"• {keyword}" for keyword in keywords)
            + "\n\n📝 **Content Suggestions:**\n"
            + suggestions
            + "\n"
        )


class AnalyzeCompetitors(Tool):
    name = "youtube_analyzeCompetitors"
    description = (
        "Analyze competitor channels to understand their content strategy and performance."
    )
    error_prefix = "Error analyzing competitors"

    class Params(BaseModel):
        competitorChannelIds: list[str] = Field(
            min_length=1, max_length=5, description="Array of competitor channel IDs to analyze"
        )
        analysisDepth: Literal["basic", "detailed"] = Field(
            default="basic", description="Level of analysis to perform"
        )

    async def _recent_performance(self, props: Props, channel_id: str) -> dict[str, Any] | None:
        client = self.youtube(props)
        search = await client.search(
            part="snippet", channelId=channel_id, type="video", order="date", maxResults=10
        )
        video_ids = _video_ids(search)
        if not video_ids:
            return None
        response = await client.videos(part="snippet,statistics", id=",".join(video_ids))
        videos = response.get("items") or []
        if not videos:
            return None
        total = sum(to_int((v.get("statistics") or {}).get("viewCount")) for v in videos)
        return {
            "recent_videos": len(videos),
            "average_views": round(total / len(videos)),
            "latest_title": (videos[0].get("snippet") or {}).get("title"),
        }

    async def execute(self, params: Params, props: Props) -> ToolResult:
        client = self.youtube(props)
        sections = []
        for index, channel_id in enumerate(params.competitorChannelIds, 1):
            response = await client.channels(part="snippet,statistics", id=channel_id)
            items = response.get("items") or []
            if not items:
                sections.append(
                    f"{index}. **Channel ID: {channel_id}**\n   ❌ Channel not found\n"
                )
                continue

            channel = items[0]
            stats = channel.get("statistics") or {}
            views = to_int(stats.get("viewCount"))
            video_count = to_int(stats.get("videoCount"))
            avg_views = round(views / video_count) if video_count else 0
            section = (
                f"{index}. **{(channel.get('snippet') or {}).get('title')}**\n"
                f"   • Subscribers: {format_count(stats.get('subscriberCount'))}\n"
                f"   • Total Views: {views:,}\n"
                f"   • Total Videos: {video_count:,}\n"
                f"   • Avg Views per Video: {avg_views:,}\n"
            )
            if params.analysisDepth == "detailed":
                recent = await self._recent_performance(props, channel_id)
                if recent:
                    section += (
                        f"   • Recent Avg Views: {recent['average_views']:,}\n"
                        f"   • Latest Video: \"{recent['latest_title']}\"\n"
                    )
            sections.append(section)

        return ToolResult.text(
            "🔍 **Competitor Analysis**\n\n"
            + "\n".join(sections)
            + "\n📊 **Key Insights:**\n"
            "• Compare subscriber growth rates\n"
            "• Analyze content themes and posting frequency\n"
            "• Study successful video formats and titles\n"
            "• Identify content gaps you could fill\n"
        )


YOUTUBE_TOOLS: tuple[type[Tool], ...] = (
    SearchVideos,
    GetVideoDetails,
    GetChannelInfo,
    GetChannelVideos,
    SuggestContentIdeas,
    AnalyzeCompetitors,
)
