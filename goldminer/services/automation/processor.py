"""
Job Processor

Turns a claimed job into work: decodes its payload into the typed model for
its type and runs the matching handler.

Handlers:
---------
- fetch_transcript: fetch captions, store the transcript on the video,
  enqueue generate_embeddings for it
- generate_embeddings: chunk the stored transcript, embed the chunks and
  replace the video's stored chunks

Handlers are idempotent. Delivery is at-least-once, so a job may run again
after a crash; re-running a handler converges on the same stored state.

Every failure is raised as a JobProcessingError subclass. The `retriable`
class attribute tells the worker which retry policy applies.
"""

import logging
from typing import Any, Optional

from pydantic import ValidationError
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from goldminer.db.base import utcnow
from goldminer.models.content import Chunk, Video
from goldminer.models.job import Job, JobType
from goldminer.schemas.jobs import (
    PAYLOAD_MODELS,
    FetchTranscriptPayload,
    GenerateEmbeddingsPayload,
    JobPayload,
)
from goldminer.services.automation.queue import JobQueue, get_job_queue
from goldminer.services.processors.chunker import TranscriptChunker, get_chunker
from goldminer.services.processors.embedder import EmbeddingPipeline
from goldminer.services.processors.transcript_parser import (
    parse_transcript,
    segments_for_chunking,
)
from goldminer.services.transcript_service import TranscriptService, get_transcript_service

logger = logging.getLogger(__name__)


# ========================================
# Exceptions
# ========================================

class JobProcessingError(Exception):
    """Base exception for job processing failures."""

    retriable = True


class PayloadValidationError(JobProcessingError):
    """The job payload does not match the shape of its type."""

    retriable = False


class UnknownJobTypeError(JobProcessingError):
    """No handler is registered for the job type."""

    retriable = False

    def __init__(self, job_type: str):
        self.job_type = job_type
        super().__init__(f"Unknown job type: {job_type}")


class DataIntegrityError(JobProcessingError):
    """The stored data a job refers to is missing or unusable."""

    retriable = False


class VideoNotFoundError(DataIntegrityError):
    """The video does not exist or has no transcript."""


class EmptyChunksError(DataIntegrityError):
    """The transcript produced no chunks."""


class TranscriptFetchError(JobProcessingError):
    """Captions could not be fetched (may succeed later)."""


class EmbeddingError(JobProcessingError):
    """One or more chunks could not be embedded."""


# ========================================
# Payload Decoding
# ========================================

def decode_job_payload(job_type: str, payload: Any) -> JobPayload:
    """
    Decode a stored payload into the model for its job type.

    Raises:
        UnknownJobTypeError: No model is registered for `job_type`
        PayloadValidationError: The payload does not validate
    """
    model = PAYLOAD_MODELS.get(str(job_type))
    if model is None:
        raise UnknownJobTypeError(str(job_type))

    try:
        return model.model_validate(payload)
    except ValidationError as e:
        raise PayloadValidationError(
            f"Invalid payload for {job_type} job: {e.error_count()} validation error(s): "
            + "; ".join(
                f"{'.'.join(str(part) for part in error['loc']) or 'payload'}: {error['msg']}"
                for error in e.errors()
            )
        ) from e


# ========================================
# Processor
# ========================================

class JobProcessor:
    """
    Dispatches claimed jobs to their handlers.

    Usage:
    ------
    processor = JobProcessor(queue, AsyncSessionLocal, transcript_service, chunker, pipeline)
    await processor.process(job)  # raises JobProcessingError on failure
    """

    def __init__(
        self,
        queue: JobQueue,
        session_factory: async_sessionmaker[AsyncSession],
        transcript_service: TranscriptService,
        chunker: TranscriptChunker,
        embedding_pipeline: EmbeddingPipeline,
    ):
        self.queue = queue
        self.session_factory = session_factory
        self.transcript_service = transcript_service
        self.chunker = chunker
        self.embedding_pipeline = embedding_pipeline

        self._handlers = {
            JobType.FETCH_TRANSCRIPT.value: self._handle_fetch_transcript,
            JobType.GENERATE_EMBEDDINGS.value: self._handle_generate_embeddings,
        }

    async def process(self, job: Job) -> None:
        """
        Run the handler for a job.

        Raises:
            JobProcessingError: Any failure the worker should record
        """
        handler = self._handlers.get(str(job.type))
        if handler is None:
            raise UnknownJobTypeError(str(job.type))

        payload = decode_job_payload(job.type, job.payload)

        logger.info(f"Processing {job.type} job {job.id}")
        await handler(payload)

    # ----------------------------------------
    # fetch_transcript
    # ----------------------------------------

    async def _handle_fetch_transcript(self, payload: FetchTranscriptPayload) -> None:
        result = await self.transcript_service.fetch_transcript(payload.youtube_id)

        if not result.success or not result.transcript:
            raise TranscriptFetchError(
                f"Transcript fetch failed for {payload.youtube_id}: "
                f"{result.error or 'empty transcript'}"
            )

        async with self.session_factory() as session, session.begin():
            video = await session.get(Video, payload.video_id)
            if video is None:
                raise VideoNotFoundError(f"Video {payload.video_id} not found")

            video.transcript = result.transcript
            video.updated_at = utcnow()

        await self.queue.enqueue(
            JobType.GENERATE_EMBEDDINGS,
            GenerateEmbeddingsPayload(video_id=payload.video_id),
        )

        logger.info(
            f"Stored transcript for video {payload.video_id} ({payload.youtube_id}), "
            f"{len(result.segments)} segments"
        )

    # ----------------------------------------
    # generate_embeddings
    # ----------------------------------------

    async def _handle_generate_embeddings(self, payload: GenerateEmbeddingsPayload) -> None:
        video_id = payload.video_id

        async with self.session_factory() as session:
            video = await session.get(Video, video_id)
            if video is None:
                raise VideoNotFoundError(f"Video {video_id} not found")
            if not video.has_transcript:
                raise VideoNotFoundError(f"Video {video_id} has no transcript")

            transcript = video.transcript
            stored = await self._count_chunks(session, video_id)

        segments = parse_transcript(transcript)
        chunks = self.chunker.chunk_transcript(segments_for_chunking(segments))
        if not chunks:
            raise EmptyChunksError(f"Transcript of video {video_id} produced no chunks")

        # Already embedded by an earlier run of this job
        if stored >= len(chunks):
            logger.info(
                f"Video {video_id} already has {stored} chunks "
                f"(expected {len(chunks)}), skipping"
            )
            return

        result = await self.embedding_pipeline.embed_chunks(chunks, video_id=video_id)

        if result.error_count:
            raise EmbeddingError(
                f"Failed to embed {result.error_count}/{result.total_chunks} "
                f"chunks for video {video_id}"
            )

    @staticmethod
    async def _count_chunks(session: AsyncSession, video_id: int) -> int:
        result = await session.execute(
            select(func.count()).select_from(Chunk).where(Chunk.video_id == video_id)
        )
        return result.scalar_one()


# ========================================
# Helper Functions
# ========================================

def get_job_processor(
    queue: Optional[JobQueue] = None,
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
) -> JobProcessor:
    """Job processor wired to the given (default: application) database."""
    queue = queue or get_job_queue(session_factory)
    session_factory = queue.session_factory

    return JobProcessor(
        queue=queue,
        session_factory=session_factory,
        transcript_service=get_transcript_service(),
        chunker=get_chunker(),
        # The model is loaded on the first embedding job, not here
        embedding_pipeline=EmbeddingPipeline(session_factory),
    )
