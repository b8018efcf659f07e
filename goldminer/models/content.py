"""
Content Models

This module contains the content-related models of the archive.

Models Included:
----------------
1. Video - A YouTube video in the archive (transcript lives here)
2. Channel - A followed YouTube channel, polled through its RSS feed
3. Chunk - An embeddable slice of a video transcript

Database Tables:
----------------
- videos: One row per archived video, keyed by youtube_id
- channels: Channels the archive follows, with automation settings
- chunks: Transcript chunks and their embedding vectors

Relationships:
--------------
- Video (1) ←→ (Many) Chunk

Channel and Video are not linked by a foreign key: a video carries the
channel display name taken from the feed, so videos added by hand look the
same as feed-discovered ones.

Learning Resources:
-------------------
- pgvector for Python: https://github.com/pgvector/pgvector-python
- One-to-many: https://docs.sqlalchemy.org/en/20/orm/basic_relationships.html#one-to-many
"""

from datetime import datetime

from pgvector.sqlalchemy import Vector
from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from goldminer.core.config import settings
from goldminer.db.base import BaseModel, String50, String100, String255, String500


def transcript_has_text(transcript: str | None) -> bool:
    """Check that a transcript holds more than whitespace."""
    return bool(transcript and transcript.strip())


# ================================
# Video Model
# ================================

class Video(BaseModel):
    """
    Video model - one archived YouTube video.

    Table: videos
    -------------
    Rows are created either by the feed checker (new video discovered in a
    channel's RSS feed) or by a manual import. Right after creation the
    transcript is empty; the fetch_transcript job fills it in and the
    generate_embeddings job turns it into chunks.

    Transcript Format:
    ------------------
    The transcript is stored as plain text, one timestamp line followed by
    the caption text:

        0:00
        Welcome back to the channel
        1:30
        Today we are looking at...

    goldminer.services.processors.transcript_parser reads it back into
    timed segments.
    """

    __tablename__ = "videos"

    # ================================
    # Video Information
    # ================================

    youtube_id: Mapped[str] = mapped_column(
        String50,
        nullable=False,
        unique=True,
        index=True,
        comment="YouTube video ID (e.g. dQw4w9WgXcQ)"
    )
    # Natural key for delta detection against RSS feeds

    title: Mapped[str] = mapped_column(
        String500,
        nullable=False,
        comment="Video title"
    )

    channel: Mapped[str | None] = mapped_column(
        String100,
        nullable=True,
        comment="Channel display name"
    )

    description: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
        comment="Video description"
    )

    thumbnail_url: Mapped[str | None] = mapped_column(
        String255,
        nullable=True,
        comment="Video thumbnail URL"
    )

    duration_seconds: Mapped[int | None] = mapped_column(
        Integer,
        nullable=True,
        comment="Video duration in seconds"
    )

    published_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="When the video was published on YouTube (UTC)"
    )

    # ================================
    # Transcript
    # ================================

    transcript: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
        comment="Timestamped transcript text"
    )
    # NULL until the fetch_transcript job succeeds

    # ================================
    # Relationships
    # ================================

    chunks: Mapped[list["Chunk"]] = relationship(
        "Chunk",
        back_populates="video",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="Chunk.chunk_index",
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"Video(id={self.id}, youtube_id='{self.youtube_id}', title='{self.title}')"

    @property
    def has_transcript(self) -> bool:
        """Check if a non-empty transcript is stored."""
        return transcript_has_text(self.transcript)


# ================================
# Channel Model
# ================================

class Channel(BaseModel):
    """
    Channel model - a followed YouTube channel.

    The automation settings decide whether the periodic feed check polls
    this channel:

    - auto_fetch: master switch for the feed check
    - fetch_interval_hours: minimum time between two polls
    - last_fetched_at: when the feed was last polled
    - feed_url: optional override of the default channel feed URL
    """

    __tablename__ = "channels"

    channel_id: Mapped[str] = mapped_column(
        String100,
        nullable=False,
        unique=True,
        index=True,
        comment="YouTube channel ID (e.g. UCsBjURrPoezykLs9EqgamOA)"
    )

    name: Mapped[str] = mapped_column(
        String255,
        nullable=False,
        comment="Channel name"
    )

    thumbnail_url: Mapped[str | None] = mapped_column(
        String255,
        nullable=True,
        comment="Channel thumbnail/logo URL"
    )

    # ================================
    # Automation Settings
    # ================================

    feed_url: Mapped[str | None] = mapped_column(
        String255,
        nullable=True,
        comment="RSS feed URL override"
    )

    auto_fetch: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        comment="Whether the feed check polls this channel"
    )

    fetch_interval_hours: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=lambda: settings.FEED_DEFAULT_FETCH_INTERVAL_HOURS,
        comment="Minimum hours between two feed polls"
    )

    last_fetched_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        default=None,
        comment="Last time the feed was polled (UTC)"
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"Channel(id={self.id}, channel_id='{self.channel_id}', "
            f"name='{self.name}', auto_fetch={self.auto_fetch})"
        )


# ================================
# Chunk Model (RAG)
# ================================

class Chunk(BaseModel):
    """
    Chunk model - a slice of a video transcript with its embedding.

    The embedding pipeline always writes the complete set of chunks for a
    video (old chunks are deleted in the same transaction), so a video has
    either all of its chunks or none of them.

    The job queue only counts chunks: a video with a transcript and zero
    chunks is an orphan that still needs a generate_embeddings job.
    """

    __tablename__ = "chunks"

    video_id: Mapped[int] = mapped_column(
        ForeignKey("videos.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        comment="Foreign key to videos table"
    )
    # CASCADE: Delete video → delete all its chunks

    chunk_index: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="Order of this chunk within the video (0-indexed)"
    )

    content: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        comment="The text content of this chunk"
    )

    start_time_seconds: Mapped[int | None] = mapped_column(
        Integer,
        nullable=True,
        comment="Start of the chunk in the video (seconds)"
    )

    end_time_seconds: Mapped[int | None] = mapped_column(
        Integer,
        nullable=True,
        comment="End of the chunk in the video (seconds)"
    )

    embedding = mapped_column(
        Vector(settings.EMBEDDING_DIMENSION),
        nullable=True,
        comment="Embedding vector for semantic search"
    )
    # Stored as PostgreSQL vector(N) through pgvector

    video: Mapped["Video"] = relationship(
        "Video",
        back_populates="chunks",
    )

    __table_args__ = (
        UniqueConstraint(
            'video_id',
            'chunk_index',
            name='uq_chunk_video_index'
        ),
        # Each video has a unique chunk sequence: 0, 1, 2, ...
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        preview = self.content[:50] + "..." if self.content else ""
        return (
            f"Chunk(id={self.id}, video_id={self.video_id}, "
            f"index={self.chunk_index}, text='{preview}')"
        )
