"""
Database Models

This module contains all SQLAlchemy ORM models for the archive.

Import models from this module to ensure they're registered with SQLAlchemy:

    from goldminer.models import Video, Channel, Chunk, Job

This ensures that:
1. Alembic can detect all models for migrations
2. Relationships work correctly
3. Base.metadata.create_all() sees every table
"""

from goldminer.models.content import Channel, Chunk, Video
from goldminer.models.job import Job, JobStatus, JobType

# Export all models and enums
__all__ = [
    # Content models
    "Video",
    "Channel",
    "Chunk",
    # Job queue
    "Job",
    # Enums
    "JobStatus",
    "JobType",
]
