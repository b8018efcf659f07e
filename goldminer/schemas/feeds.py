"""
Pydantic schemas for YouTube channel RSS feeds.
"""

from datetime import datetime, timezone

from pydantic import BaseModel, Field


class FeedVideo(BaseModel):
    """One video entry parsed from a channel feed."""

    youtube_id: str = Field(..., description="YouTube video ID")
    channel_id: str = Field(..., description="YouTube channel ID of the feed")
    title: str
    published_at: datetime
    description: str = ""
    channel_name: str


class FeedResult(BaseModel):
    """A parsed channel feed."""

    channel_id: str
    channel_name: str
    videos: list[FeedVideo] = Field(default_factory=list)
    fetched_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
