"""
Pydantic schemas for background jobs.

Job payloads are stored as JSON in the jobs table using camelCase keys
(`videoId`, `youtubeId`). Inside Python they are decoded into one typed
model per job type, so handlers never touch raw dictionaries.
"""

from datetime import datetime
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, StrictInt, StrictStr
from pydantic.alias_generators import to_camel

from goldminer.models.job import JobStatus, JobType


# ========================================
# Payload Schemas
# ========================================

class FetchTranscriptPayload(BaseModel):
    """Payload of a fetch_transcript job."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    video_id: StrictInt = Field(..., alias="videoId", description="Internal video ID")
    youtube_id: StrictStr = Field(..., alias="youtubeId", description="YouTube video ID")


class GenerateEmbeddingsPayload(BaseModel):
    """Payload of a generate_embeddings job."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    video_id: StrictInt = Field(..., alias="videoId", description="Internal video ID")


JobPayload = Union[FetchTranscriptPayload, GenerateEmbeddingsPayload]

# Job type → payload model. A type missing here cannot be processed.
PAYLOAD_MODELS: dict[str, type[BaseModel]] = {
    JobType.FETCH_TRANSCRIPT.value: FetchTranscriptPayload,
    JobType.GENERATE_EMBEDDINGS.value: GenerateEmbeddingsPayload,
}


def dump_payload(payload: JobPayload) -> dict[str, Any]:
    """Serialize a payload model to its stored (camelCase) JSON shape."""
    return payload.model_dump(by_alias=True)


# ========================================
# Response Schemas
# ========================================

class JobRecord(BaseModel):
    """External view of a job row (camelCase keys)."""

    model_config = ConfigDict(
        from_attributes=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )

    id: int
    type: str
    payload: dict[str, Any]
    status: JobStatus
    attempts: int
    max_attempts: int
    error: Optional[str] = None
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class WorkerRunResult(BaseModel):
    """Summary of one worker batch run."""

    processed: int = 0
    failed: int = 0


class FeedCheckResult(BaseModel):
    """Summary of one feed check run."""

    checked: int = 0
    queued: int = 0
    errors: int = 0


class MaintenanceResult(BaseModel):
    """Summary of one maintenance sweep."""

    recovered: int = 0
    orphans: int = 0
