"""
Durable Job Queue

A multi-consumer work queue stored in the `jobs` table.

Any number of workers can run the claim → process → complete/fail loop at
the same time. The only coordination between them is the atomic claim:
one UPDATE whose target row is picked by a `SELECT ... FOR UPDATE SKIP
LOCKED` subquery, so two concurrent claimers never get the same job and
never block on each other's candidate rows.

Retry Policies:
---------------
1. Standard (fetch_transcript and any future type): a failed job goes back
   to pending right away until attempts reach max_attempts, then it is
   marked failed for good.
2. Retry-forever (generate_embeddings): a failed job always goes back to
   pending, and the claim query holds it back with exponential backoff
   measured from started_at.

Self-healing:
-------------
- recover_stale_jobs(): processing for longer than the stale threshold
  means the worker died; the job goes back to pending.
- detect_orphan_videos(): videos with a transcript but no chunks and no
  active embedding job get a fresh generate_embeddings job.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional, Union

from pydantic import BaseModel
from sqlalchemy import and_, exists, func, not_, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from goldminer.core.config import settings
from goldminer.models.content import Chunk, Video, transcript_has_text
from goldminer.models.job import Job, JobStatus, JobType
from goldminer.schemas.jobs import dump_payload

logger = logging.getLogger(__name__)


# ========================================
# Retry Policy
# ========================================

BASE_BACKOFF_MS = 5 * 60 * 1000  # 5 minutes
MAX_BACKOFF_MS = 60 * 60 * 1000  # 60 minutes

STALE_JOB_THRESHOLD = timedelta(minutes=settings.STALE_JOB_MINUTES)

# Job types that never fail terminally; everything else gets finite retry
RETRY_FOREVER_JOB_TYPES: frozenset[str] = frozenset({JobType.GENERATE_EMBEDDINGS.value})

ACTIVE_STATUSES = (JobStatus.PENDING, JobStatus.PROCESSING)


def get_backoff_delay_ms(attempts: int) -> int:
    """
    Backoff delay before a retried embedding job may be claimed again.

    0 for attempts <= 0, then 5min, 10min, 20min, 40min, capped at 60min.
    """
    if attempts <= 0:
        return 0
    # Past the cap the exponent no longer matters
    exponent = min(attempts - 1, 32)
    return min(BASE_BACKOFF_MS * 2 ** exponent, MAX_BACKOFF_MS)


def _backoff_cap_attempts() -> int:
    """Smallest attempt count whose backoff is already MAX_BACKOFF_MS."""
    attempts = 1
    while get_backoff_delay_ms(attempts) < MAX_BACKOFF_MS:
        attempts += 1
    return attempts


def uses_retry_forever(job_type: str) -> bool:
    """Check whether a job type follows the retry-forever policy."""
    return str(job_type) in RETRY_FOREVER_JOB_TYPES


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ========================================
# Job Queue
# ========================================

class JobQueue:
    """
    Repository for the jobs table.

    Every method opens its own session and transaction from the injected
    session factory; no transaction ever leaks to the caller.

    Usage:
    ------
    queue = JobQueue(AsyncSessionLocal)
    job_id = await queue.enqueue(JobType.FETCH_TRANSCRIPT, {"videoId": 1, "youtubeId": "abc"})

    job = await queue.claim_next()
    if job:
        try:
            await processor.process(job)
            await queue.complete(job.id)
        except JobProcessingError as e:
            await queue.fail_by_policy(job, str(e), retriable=e.retriable)
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Optional[Callable[[], datetime]] = None,
        max_attempts: Optional[int] = None,
        stale_threshold: Optional[timedelta] = None,
    ):
        """
        Args:
            session_factory: Produces AsyncSessions bound to the job store
            clock: Returns the current UTC time (injectable for tests)
            max_attempts: Retry ceiling stamped on new jobs (default from settings)
            stale_threshold: Processing age after which a job counts as stale
        """
        self.session_factory = session_factory
        self.clock = clock or _utcnow
        self.max_attempts = max_attempts or settings.JOB_MAX_ATTEMPTS
        self.stale_threshold = stale_threshold or STALE_JOB_THRESHOLD

    # ----------------------------------------
    # Enqueue
    # ----------------------------------------

    def new_job(self, job_type: Union[JobType, str], payload: Union[BaseModel, dict[str, Any]]) -> Job:
        """Build a pending job row without adding it to a session."""
        if isinstance(payload, BaseModel):
            payload = dump_payload(payload)
        now = self.clock()
        return Job(
            type=str(job_type),
            payload=payload,
            status=JobStatus.PENDING,
            attempts=0,
            max_attempts=self.max_attempts,
            created_at=now,
            updated_at=now,
        )

    async def enqueue(
        self,
        job_type: Union[JobType, str],
        payload: Union[BaseModel, dict[str, Any]],
    ) -> int:
        """
        Insert a new pending job.

        Args:
            job_type: Job type
            payload: Payload model or its stored dict form

        Returns:
            The new job's ID
        """
        job = self.new_job(job_type, payload)

        async with self.session_factory() as session, session.begin():
            session.add(job)
            await session.flush()
            job_id = job.id

        logger.info(f"Enqueued {job.type} job {job_id}")
        return job_id

    # ----------------------------------------
    # Claim
    # ----------------------------------------

    def _backoff_ready(self, now: datetime):
        """
        SQL condition: the job is not held back by backoff.

        Cutoffs are computed here rather than with database date arithmetic
        so the same query runs on every dialect. Only retry-forever types
        are gated.
        """
        cap = _backoff_cap_attempts()

        ready = [Job.attempts <= 0, Job.started_at.is_(None)]
        for attempts in range(1, cap):
            cutoff = now - timedelta(milliseconds=get_backoff_delay_ms(attempts))
            ready.append(and_(Job.attempts == attempts, Job.started_at < cutoff))
        ready.append(
            and_(
                Job.attempts >= cap,
                Job.started_at < now - timedelta(milliseconds=MAX_BACKOFF_MS),
            )
        )

        return or_(not_(Job.type.in_(sorted(RETRY_FOREVER_JOB_TYPES))), *ready)

    async def claim_next(self, job_type: Union[JobType, str, None] = None) -> Optional[Job]:
        """
        Atomically claim the oldest eligible pending job.

        Runs a single statement in a single transaction:

            UPDATE jobs SET status='processing', started_at=:now, attempts=attempts+1
            WHERE id = (SELECT id FROM jobs WHERE <eligible>
                        ORDER BY created_at, id LIMIT 1 FOR UPDATE SKIP LOCKED)
            RETURNING *

        Args:
            job_type: Only claim jobs of this type

        Returns:
            The claimed Job (status processing), or None when nothing is eligible
        """
        now = self.clock()

        candidate = (
            select(Job.id)
            .where(Job.status == JobStatus.PENDING, self._backoff_ready(now))
            .order_by(Job.created_at, Job.id)
            .limit(1)
            .with_for_update(skip_locked=True)
        )
        if job_type is not None:
            candidate = candidate.where(Job.type == str(job_type))

        stmt = (
            update(Job)
            .where(Job.id == candidate.scalar_subquery())
            .values(
                status=JobStatus.PROCESSING,
                started_at=now,
                attempts=Job.attempts + 1,
                updated_at=now,
            )
            .returning(Job)
        )

        async with self.session_factory() as session, session.begin():
            job = (await session.execute(stmt)).scalar_one_or_none()

        if job is not None:
            logger.info(f"Claimed {job.type} job {job.id} (attempt {job.attempts}/{job.max_attempts})")
        return job

    # ----------------------------------------
    # Resolve
    # ----------------------------------------

    async def complete(self, job_id: int) -> None:
        """Mark a job completed. Completing an already completed job changes nothing."""
        now = self.clock()
        stmt = (
            update(Job)
            .where(Job.id == job_id, Job.status != JobStatus.COMPLETED)
            .values(status=JobStatus.COMPLETED, completed_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )

        async with self.session_factory() as session, session.begin():
            result = await session.execute(stmt)

        if result.rowcount:
            logger.info(f"Completed job {job_id}")

    async def fail(self, job_id: int, error: str) -> Optional[JobStatus]:
        """
        Record a failure with the standard policy.

        attempts >= max_attempts → failed (terminal), otherwise pending
        (claimable again immediately).

        Returns:
            The job's new status, or None if the job does not exist
        """
        async with self.session_factory() as session, session.begin():
            job = await session.get(Job, job_id, with_for_update=True)
            if job is None:
                logger.warning(f"Cannot fail job {job_id}: not found")
                return None

            status = JobStatus.FAILED if job.attempts >= job.max_attempts else JobStatus.PENDING
            job.status = status
            job.error = error
            job.updated_at = self.clock()

        if status == JobStatus.FAILED:
            logger.error(f"Job {job_id} failed permanently after {job.attempts} attempts: {error}")
        else:
            logger.warning(f"Job {job_id} failed (attempt {job.attempts}/{job.max_attempts}), will retry: {error}")
        return status

    async def fail_embedding_job(self, job_id: int, error: str) -> None:
        """
        Record a failure with the retry-forever policy.

        The job always returns to pending. started_at is reset to now, so
        the next claim waits out get_backoff_delay_ms(attempts).
        """
        now = self.clock()
        stmt = (
            update(Job)
            .where(Job.id == job_id)
            .values(status=JobStatus.PENDING, error=error, started_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )

        async with self.session_factory() as session, session.begin():
            result = await session.execute(stmt)

        if result.rowcount:
            logger.warning(f"Embedding job {job_id} failed, retrying with backoff: {error}")
        else:
            logger.warning(f"Cannot fail embedding job {job_id}: not found")

    async def fail_by_policy(self, job: Job, error: str, retriable: bool = True) -> None:
        """
        Route a failure to the policy of the job's type.

        Retriable errors on retry-forever types go to fail_embedding_job;
        everything else (including non-retriable errors on those types)
        goes through the standard fail accounting.
        """
        if retriable and uses_retry_forever(job.type):
            await self.fail_embedding_job(job.id, error)
        else:
            await self.fail(job.id, error)

    # ----------------------------------------
    # Maintenance
    # ----------------------------------------

    async def recover_stale_jobs(self) -> int:
        """
        Reset jobs stuck in processing (crashed or hung worker) to pending.

        Returns:
            Number of jobs recovered
        """
        now = self.clock()
        cutoff = now - self.stale_threshold
        minutes = int(self.stale_threshold.total_seconds() // 60)

        stmt = (
            update(Job)
            .where(Job.status == JobStatus.PROCESSING, Job.started_at < cutoff)
            .values(
                status=JobStatus.PENDING,
                error=f"Recovered stale job: still processing after {minutes} minutes",
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )

        async with self.session_factory() as session, session.begin():
            result = await session.execute(stmt)

        recovered = result.rowcount or 0
        if recovered:
            logger.warning(f"Recovered {recovered} stale jobs")
        return recovered

    async def detect_orphan_videos(self) -> int:
        """
        Enqueue generate_embeddings for videos that fell through the cracks.

        An orphan has a transcript with text in it (the same test the
        embedding handler applies), no chunks, and no generate_embeddings
        job pending or processing.

        Returns:
            Number of jobs enqueued
        """
        has_chunks = exists().where(Chunk.video_id == Video.id)
        candidates_stmt = (
            select(Video.id, Video.transcript)
            .where(
                Video.transcript.is_not(None),
                # TRIM strips spaces only; transcript_has_text settles the rest
                func.length(func.trim(Video.transcript)) > 0,
                not_(has_chunks),
            )
            .order_by(Video.id)
        )
        active_stmt = select(Job.payload).where(
            Job.type == JobType.GENERATE_EMBEDDINGS.value,
            Job.status.in_(ACTIVE_STATUSES),
        )

        async with self.session_factory() as session, session.begin():
            candidates = [
                video_id
                for video_id, transcript in (await session.execute(candidates_stmt)).all()
                if transcript_has_text(transcript)
            ]
            if not candidates:
                return 0

            active_video_ids = {
                payload.get("videoId")
                for payload in (await session.scalars(active_stmt)).all()
                if isinstance(payload, dict)
            }

            orphans = [video_id for video_id in candidates if video_id not in active_video_ids]
            session.add_all([
                self.new_job(JobType.GENERATE_EMBEDDINGS, {"videoId": video_id})
                for video_id in orphans
            ])

        if orphans:
            logger.info(f"Enqueued embeddings for {len(orphans)} orphan videos: {orphans}")
        return len(orphans)

    # ----------------------------------------
    # Inspection
    # ----------------------------------------

    async def get_job(self, job_id: int) -> Optional[Job]:
        """Load a single job."""
        async with self.session_factory() as session:
            return await session.get(Job, job_id)

    async def get_jobs_by_status(self, status: Union[JobStatus, str]) -> list[Job]:
        """All jobs with the given status, oldest first."""
        stmt = (
            select(Job)
            .where(Job.status == JobStatus(status))
            .order_by(Job.created_at, Job.id)
        )
        async with self.session_factory() as session:
            return list((await session.scalars(stmt)).all())

    async def count_jobs_by_status(self) -> dict[str, int]:
        """Number of jobs per status (every status present, zero included)."""
        stmt = select(Job.status, func.count(Job.id)).group_by(Job.status)
        async with self.session_factory() as session:
            rows = (await session.execute(stmt)).all()

        counts = {status.value: 0 for status in JobStatus}
        counts.update({str(status): count for status, count in rows})
        return counts


# ========================================
# Helper Functions
# ========================================

def get_job_queue(session_factory: Optional[async_sessionmaker[AsyncSession]] = None) -> JobQueue:
    """Job queue bound to the given (default: application) database."""
    if session_factory is None:
        from goldminer.db.session import AsyncSessionLocal
        session_factory = AsyncSessionLocal

    return JobQueue(session_factory)
