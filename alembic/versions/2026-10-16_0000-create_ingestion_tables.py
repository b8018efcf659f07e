"""create videos, channels, chunks and jobs tables

Revision ID: 5b1f0c9d2a71
Revises:
Create Date: 2026-10-16 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql
from pgvector.sqlalchemy import Vector

# revision identifiers, used by Alembic.
revision: str = '5b1f0c9d2a71'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

EMBEDDING_DIMENSION = 384  # ibm-granite/granite-embedding-107m-multilingual


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False, comment='Auto-incrementing primary key'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, comment='Timestamp when record was created (UTC)'),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, comment='Timestamp when record was last updated (UTC)'),
    ]


def upgrade() -> None:
    """
    Create the ingestion pipeline schema.

    1. videos - archived videos and their transcripts
    2. channels - followed channels and their feed automation settings
    3. chunks - transcript chunks with embeddings
    4. jobs - the durable background job queue
    """
    op.execute('CREATE EXTENSION IF NOT EXISTS vector')

    # ================================
    # videos
    # ================================
    op.create_table(
        'videos',
        *_timestamps(),
        sa.Column('youtube_id', sa.String(length=50), nullable=False, comment='YouTube video ID (e.g. dQw4w9WgXcQ)'),
        sa.Column('title', sa.String(length=500), nullable=False, comment='Video title'),
        sa.Column('channel', sa.String(length=100), nullable=True, comment='Channel display name'),
        sa.Column('description', sa.Text(), nullable=True, comment='Video description'),
        sa.Column('thumbnail_url', sa.String(length=255), nullable=True, comment='Video thumbnail URL'),
        sa.Column('duration_seconds', sa.Integer(), nullable=True, comment='Video duration in seconds'),
        sa.Column('published_at', sa.DateTime(timezone=True), nullable=True, comment='When the video was published on YouTube (UTC)'),
        sa.Column('transcript', sa.Text(), nullable=True, comment='Timestamped transcript text'),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_videos')),
    )
    op.create_index(op.f('ix_videos_youtube_id'), 'videos', ['youtube_id'], unique=True)

    # ================================
    # channels
    # ================================
    op.create_table(
        'channels',
        *_timestamps(),
        sa.Column('channel_id', sa.String(length=100), nullable=False, comment='YouTube channel ID (e.g. UCsBjURrPoezykLs9EqgamOA)'),
        sa.Column('name', sa.String(length=255), nullable=False, comment='Channel name'),
        sa.Column('thumbnail_url', sa.String(length=255), nullable=True, comment='Channel thumbnail/logo URL'),
        sa.Column('feed_url', sa.String(length=255), nullable=True, comment='RSS feed URL override'),
        sa.Column('auto_fetch', sa.Boolean(), nullable=False, server_default=sa.false(), comment='Whether the feed check polls this channel'),
        sa.Column('fetch_interval_hours', sa.Integer(), nullable=False, server_default='12', comment='Minimum hours between two feed polls'),
        sa.Column('last_fetched_at', sa.DateTime(timezone=True), nullable=True, comment='Last time the feed was polled (UTC)'),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_channels')),
    )
    op.create_index(op.f('ix_channels_channel_id'), 'channels', ['channel_id'], unique=True)

    # ================================
    # chunks
    # ================================
    op.create_table(
        'chunks',
        *_timestamps(),
        sa.Column('video_id', sa.Integer(), nullable=False, comment='Foreign key to videos table'),
        sa.Column('chunk_index', sa.Integer(), nullable=False, comment='Order of this chunk within the video (0-indexed)'),
        sa.Column('content', sa.Text(), nullable=False, comment='The text content of this chunk'),
        sa.Column('start_time_seconds', sa.Integer(), nullable=True, comment='Start of the chunk in the video (seconds)'),
        sa.Column('end_time_seconds', sa.Integer(), nullable=True, comment='End of the chunk in the video (seconds)'),
        sa.Column('embedding', Vector(EMBEDDING_DIMENSION), nullable=True, comment='Embedding vector for semantic search'),
        sa.ForeignKeyConstraint(['video_id'], ['videos.id'], name=op.f('fk_chunks_video_id_videos'), ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_chunks')),
        sa.UniqueConstraint('video_id', 'chunk_index', name='uq_chunk_video_index'),
    )
    op.create_index(op.f('ix_chunks_video_id'), 'chunks', ['video_id'])

    # HNSW index for cosine similarity search
    op.execute("""
        CREATE INDEX ix_chunks_embedding_hnsw
        ON chunks
        USING hnsw (embedding vector_cosine_ops)
        WITH (m = 16, ef_construction = 64)
    """)

    # ================================
    # jobs
    # ================================
    op.create_table(
        'jobs',
        *_timestamps(),
        sa.Column('type', sa.String(length=50), nullable=False, comment='Job type (fetch_transcript, generate_embeddings)'),
        sa.Column('payload', postgresql.JSONB(astext_type=sa.Text()), nullable=False, comment='Job-type specific payload'),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='pending', comment='pending, processing, completed, failed'),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0', comment='Number of times the job has been claimed'),
        sa.Column('max_attempts', sa.Integer(), nullable=False, server_default='3', comment='Attempts allowed before the job is marked failed'),
        sa.Column('error', sa.Text(), nullable=True, comment='Last error message'),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=True, comment='Last claim time (UTC); backoff anchor for embedding retries'),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True, comment='When the job completed (UTC)'),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_jobs')),
    )
    op.create_index(op.f('ix_jobs_type'), 'jobs', ['type'])
    op.create_index('ix_jobs_status_created_at', 'jobs', ['status', 'created_at'])


def downgrade() -> None:
    """Drop the ingestion pipeline schema (the vector extension stays)."""
    op.drop_index('ix_jobs_status_created_at', table_name='jobs')
    op.drop_index(op.f('ix_jobs_type'), table_name='jobs')
    op.drop_table('jobs')

    op.execute('DROP INDEX IF EXISTS ix_chunks_embedding_hnsw')
    op.drop_index(op.f('ix_chunks_video_id'), table_name='chunks')
    op.drop_table('chunks')

    op.drop_index(op.f('ix_channels_channel_id'), table_name='channels')
    op.drop_table('channels')

    op.drop_index(op.f('ix_videos_youtube_id'), table_name='videos')
    op.drop_table('videos')
