"""
Job Model

Durable background jobs for the ingestion pipeline.

Table: jobs
-----------
Every unit of background work (fetching a transcript, generating
embeddings) is a row in this table. Workers claim rows atomically, so any
number of worker processes can share the table without other coordination.

Status Flow:
------------
PENDING → PROCESSING → COMPLETED (success path)
    ↑          ↓
    └──────────┤ retry (attempts < max_attempts, or retry-forever type)
               ↓
            FAILED (terminal, kept for inspection)

Jobs are never deleted by the pipeline.
"""

import enum
from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, Enum as SQLEnum, Index, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from goldminer.core.config import settings
from goldminer.db.base import BaseModel


# ================================
# Enums
# ================================

class JobType(str, enum.Enum):
    """Kinds of background work the processor knows how to run."""

    FETCH_TRANSCRIPT = "fetch_transcript"
    GENERATE_EMBEDDINGS = "generate_embeddings"

    def __str__(self) -> str:
        """Return the string value of the enum."""
        return self.value


class JobStatus(str, enum.Enum):
    """
    Lifecycle state of a job.

    - PENDING: waiting to be claimed (new, or scheduled for retry)
    - PROCESSING: claimed by exactly one worker
    - COMPLETED: finished successfully (terminal)
    - FAILED: gave up after max_attempts (terminal)
    """

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    def __str__(self) -> str:
        """Return the string value of the enum."""
        return self.value


# JSONB on PostgreSQL, generic JSON everywhere else
PayloadType = JSON().with_variant(JSONB(), "postgresql")


# ================================
# Job Model
# ================================

class Job(BaseModel):
    """
    Job model - a durable unit of background work.

    The `type` column is plain text rather than an enum column: a row
    written with a type this deployment does not know must still load, so
    the processor can reject it with a clear error instead of the ORM
    failing on read.

    started_at is set on every claim. For embedding jobs it is also
    refreshed when the job fails, and the claim query uses it as the anchor
    of the exponential backoff window.
    """

    __tablename__ = "jobs"

    type: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        index=True,
        comment="Job type (fetch_transcript, generate_embeddings)"
    )

    payload: Mapped[dict[str, Any]] = mapped_column(
        PayloadType,
        nullable=False,
        default=dict,
        comment="Job-type specific payload"
    )
    # fetch_transcript:    {"videoId": 123, "youtubeId": "abc"}
    # generate_embeddings: {"videoId": 123}

    status: Mapped[JobStatus] = mapped_column(
        SQLEnum(
            JobStatus,
            name="job_status",
            native_enum=False,
            length=20,
            values_callable=lambda e: [member.value for member in e],
        ),
        nullable=False,
        default=JobStatus.PENDING,
        comment="pending, processing, completed, failed"
    )

    attempts: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        comment="Number of times the job has been claimed"
    )

    max_attempts: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=lambda: settings.JOB_MAX_ATTEMPTS,
        comment="Attempts allowed before the job is marked failed"
    )

    error: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
        comment="Last error message"
    )

    started_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="Last claim time (UTC); backoff anchor for embedding retries"
    )

    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="When the job completed (UTC)"
    )

    __table_args__ = (
        Index("ix_jobs_status_created_at", "status", "created_at"),
        # Claim query: WHERE status = 'pending' ORDER BY created_at
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"Job(id={self.id}, type='{self.type}', status={self.status}, "
            f"attempts={self.attempts}/{self.max_attempts})"
        )

    @property
    def is_terminal(self) -> bool:
        """Check if the job reached a final state."""
        return self.status in (JobStatus.COMPLETED, JobStatus.FAILED)

