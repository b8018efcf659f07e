"""
Pydantic schemas for transcripts, chunks and embedding runs.
"""

from typing import Optional

from pydantic import BaseModel, Field


class TranscriptSegment(BaseModel):
    """One timed piece of a transcript."""

    timestamp: str = Field(..., examples=["0:00", "1:30", "1:02:03"])
    seconds: int = Field(..., ge=0)
    text: str


class TranscriptResult(BaseModel):
    """Outcome of a transcript fetch. Failures are values, not exceptions."""

    success: bool
    transcript: Optional[str] = None
    segments: list[TranscriptSegment] = Field(default_factory=list)
    error: Optional[str] = None
    language: Optional[str] = None


class TranscriptChunk(BaseModel):
    """A chunk of transcript text ready for embedding."""

    content: str
    start_time_ms: int
    end_time_ms: int
    segment_indices: list[int] = Field(default_factory=list)


class EmbeddedChunk(TranscriptChunk):
    """A chunk after embedding. `error` is set when embedding failed."""

    embedding: list[float] = Field(default_factory=list)
    error: Optional[str] = None


class EmbeddingResult(BaseModel):
    """Statistics of one embed_chunks run."""

    chunks: list[EmbeddedChunk] = Field(default_factory=list)
    total_chunks: int = 0
    success_count: int = 0
    error_count: int = 0
    duration_ms: float = 0.0
