"""
Pydantic schemas for job payloads, job records, feeds and transcripts.

Import all schemas here for easy access.
"""

from goldminer.schemas.feeds import FeedResult, FeedVideo
from goldminer.schemas.jobs import (
    PAYLOAD_MODELS,
    FeedCheckResult,
    FetchTranscriptPayload,
    GenerateEmbeddingsPayload,
    JobPayload,
    JobRecord,
    MaintenanceResult,
    WorkerRunResult,
    dump_payload,
)
from goldminer.schemas.transcripts import (
    EmbeddedChunk,
    EmbeddingResult,
    TranscriptChunk,
    TranscriptResult,
    TranscriptSegment,
)

__all__ = [
    # Feeds
    "FeedVideo",
    "FeedResult",
    # Job payloads
    "FetchTranscriptPayload",
    "GenerateEmbeddingsPayload",
    "JobPayload",
    "PAYLOAD_MODELS",
    "dump_payload",
    # Job views
    "JobRecord",
    "WorkerRunResult",
    "FeedCheckResult",
    "MaintenanceResult",
    # Transcripts
    "TranscriptSegment",
    "TranscriptResult",
    "TranscriptChunk",
    "EmbeddedChunk",
    "EmbeddingResult",
]
