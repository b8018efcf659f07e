"""
Tests for the durable job queue.

This test module verifies:
1. Enqueue and FIFO claiming
2. Backoff delays and the retry-forever claim gate
3. Standard and retry-forever failure accounting
4. Idempotent completion
5. Stale job recovery and orphan video detection
6. Distinct claims under concurrent callers
"""

import asyncio
from datetime import datetime

import pytest
from sqlalchemy import select

from goldminer.models import Chunk, Job, JobStatus, JobType
from goldminer.schemas.jobs import FetchTranscriptPayload, JobRecord
from goldminer.services.automation.queue import (
    BASE_BACKOFF_MS,
    MAX_BACKOFF_MS,
    JobQueue,
    get_backoff_delay_ms,
)


def naive(value: datetime) -> datetime:
    """SQLite returns naive datetimes; compare on wall-clock UTC."""
    return value.replace(tzinfo=None)


async def load_job(session_factory, job_id: int) -> Job:
    async with session_factory() as session:
        return await session.get(Job, job_id)


async def set_job(session_factory, job_id: int, **values) -> None:
    async with session_factory() as session, session.begin():
        job = await session.get(Job, job_id)
        for key, value in values.items():
            setattr(job, key, value)


# ================================
# Backoff
# ================================

class TestBackoffDelay:
    """Test the exponential backoff schedule."""

    def test_no_delay_before_first_attempt(self):
        assert get_backoff_delay_ms(0) == 0
        assert get_backoff_delay_ms(-3) == 0

    def test_doubles_from_five_minutes(self):
        assert get_backoff_delay_ms(1) == 300_000
        assert get_backoff_delay_ms(2) == 600_000
        assert get_backoff_delay_ms(3) == 1_200_000
        assert get_backoff_delay_ms(4) == 2_400_000

    def test_capped_at_one_hour(self):
        assert get_backoff_delay_ms(5) == MAX_BACKOFF_MS
        assert get_backoff_delay_ms(50) == MAX_BACKOFF_MS
        assert get_backoff_delay_ms(10_000) == MAX_BACKOFF_MS

    def test_non_decreasing(self):
        delays = [get_backoff_delay_ms(n) for n in range(0, 20)]
        assert delays == sorted(delays)
        assert BASE_BACKOFF_MS == 300_000


# ================================
# Enqueue & Claim
# ================================

@pytest.mark.asyncio
class TestEnqueueAndClaim:
    """Test enqueueing and atomic claiming."""

    async def test_enqueue_creates_pending_job(self, queue, session_factory):
        """A new job is pending with zero attempts and the default ceiling."""
        job_id = await queue.enqueue(JobType.FETCH_TRANSCRIPT, {"videoId": 123, "youtubeId": "abc"})

        job = await load_job(session_factory, job_id)
        assert job.type == "fetch_transcript"
        assert job.status == JobStatus.PENDING
        assert job.attempts == 0
        assert job.max_attempts == 3
        assert job.payload == {"videoId": 123, "youtubeId": "abc"}
        assert job.error is None
        assert job.started_at is None

    async def test_enqueue_accepts_payload_model(self, queue, session_factory):
        """Payload models are stored with camelCase keys."""
        job_id = await queue.enqueue(
            JobType.FETCH_TRANSCRIPT,
            FetchTranscriptPayload(video_id=7, youtube_id="xyz"),
        )

        job = await load_job(session_factory, job_id)
        assert job.payload == {"videoId": 7, "youtubeId": "xyz"}

    async def test_claim_returns_none_when_empty(self, queue):
        assert await queue.claim_next() is None

    async def test_claim_marks_processing(self, queue, clock):
        """Claiming sets processing, started_at and increments attempts."""
        job_id = await queue.enqueue(JobType.FETCH_TRANSCRIPT, {"videoId": 1, "youtubeId": "a"})

        job = await queue.claim_next()

        assert job.id == job_id
        assert job.status == JobStatus.PROCESSING
        assert job.attempts == 1
        assert naive(job.started_at) == naive(clock.now)

    async def test_claim_is_fifo(self, queue, clock):
        """The oldest pending job is claimed first."""
        first = await queue.enqueue(JobType.FETCH_TRANSCRIPT, {"videoId": 1, "youtubeId": "a"})
        clock.advance(seconds=1)
        second = await queue.enqueue(JobType.FETCH_TRANSCRIPT, {"videoId": 2, "youtubeId": "b"})

        assert (await queue.claim_next()).id == first
        assert (await queue.claim_next()).id == second
        assert await queue.claim_next() is None

    async def test_claim_filters_by_type(self, queue):
        await queue.enqueue(JobType.FETCH_TRANSCRIPT, {"videoId": 1, "youtubeId": "a"})
        embed_id = await queue.enqueue(JobType.GENERATE_EMBEDDINGS, {"videoId": 1})

        job = await queue.claim_next(JobType.GENERATE_EMBEDDINGS)

        assert job.id == embed_id

    async def test_claimed_job_is_not_claimed_again(self, queue):
        await queue.enqueue(JobType.FETCH_TRANSCRIPT, {"videoId": 1, "youtubeId": "a"})

        assert await queue.claim_next() is not None
        assert await queue.claim_next() is None

    async def test_concurrent_claims_are_distinct(self, queue):
        """No two concurrent claimers get the same job."""
        job_ids = [
            await queue.enqueue(JobType.FETCH_TRANSCRIPT, {"videoId": i, "youtubeId": f"v{i}"})
            for i in range(5)
        ]

        claimed = await asyncio.gather(*[queue.claim_next() for _ in range(8)])

        claimed_ids = [job.id for job in claimed if job is not None]
        assert sorted(claimed_ids) == sorted(job_ids)
        assert claimed.count(None) == 3


# ================================
# Backoff Gate
# ================================

@pytest.mark.asyncio
class TestBackoffGate:
    """Test that retried embedding jobs wait out their backoff window."""

    async def test_fresh_embedding_job_is_claimable(self, queue):
        job_id = await queue.enqueue(JobType.GENERATE_EMBEDDINGS, {"videoId": 1})

        assert (await queue.claim_next()).id == job_id

    async def test_failed_embedding_job_waits_for_backoff(self, queue, clock):
        """After one failure the job is held back for five minutes."""
        job_id = await queue.enqueue(JobType.GENERATE_EMBEDDINGS, {"videoId": 1})
        await queue.claim_next()
        await queue.fail_embedding_job(job_id, "model unavailable")

        clock.advance(minutes=4, seconds=59)
        assert await queue.claim_next() is None

        clock.advance(seconds=2)
        job = await queue.claim_next()
        assert job.id == job_id
        assert job.attempts == 2

    async def test_second_failure_doubles_the_wait(self, queue, clock):
        job_id = await queue.enqueue(JobType.GENERATE_EMBEDDINGS, {"videoId": 1})
        await queue.claim_next()
        await queue.fail_embedding_job(job_id, "boom")
        clock.advance(minutes=6)
        await queue.claim_next()
        await queue.fail_embedding_job(job_id, "boom")

        clock.advance(minutes=9)
        assert await queue.claim_next() is None

        clock.advance(minutes=2)
        assert (await queue.claim_next()).id == job_id

    async def test_wait_is_capped_at_one_hour(self, queue, clock, session_factory):
        job_id = await queue.enqueue(JobType.GENERATE_EMBEDDINGS, {"videoId": 1})
        await set_job(session_factory, job_id, attempts=40, started_at=clock.now)

        clock.advance(minutes=59)
        assert await queue.claim_next() is None

        clock.advance(minutes=2)
        assert (await queue.claim_next()).id == job_id

    async def test_backed_off_job_does_not_block_others(self, queue, clock):
        """A job inside its backoff window is skipped, not claimed."""
        waiting = await queue.enqueue(JobType.GENERATE_EMBEDDINGS, {"videoId": 1})
        await queue.claim_next()
        await queue.fail_embedding_job(waiting, "boom")

        clock.advance(seconds=1)
        other = await queue.enqueue(JobType.FETCH_TRANSCRIPT, {"videoId": 2, "youtubeId": "b"})

        assert (await queue.claim_next()).id == other

    async def test_standard_jobs_are_not_gated(self, queue):
        """A failed fetch_transcript job is claimable again immediately."""
        job_id = await queue.enqueue(JobType.FETCH_TRANSCRIPT, {"videoId": 1, "youtubeId": "a"})
        await queue.claim_next()
        await queue.fail(job_id, "network down")

        assert (await queue.claim_next()).id == job_id


# ================================
# Completion & Failure
# ================================

@pytest.mark.asyncio
class TestCompleteAndFail:
    """Test resolving claimed jobs."""

    async def test_complete(self, queue, clock, session_factory):
        job_id = await queue.enqueue(JobType.FETCH_TRANSCRIPT, {"videoId": 1, "youtubeId": "a"})
        await queue.claim_next()

        await queue.complete(job_id)

        job = await load_job(session_factory, job_id)
        assert job.status == JobStatus.COMPLETED
        assert naive(job.completed_at) == naive(clock.now)
        assert job.is_terminal

    async def test_complete_twice_is_noop(self, queue, clock, session_factory):
        job_id = await queue.enqueue(JobType.FETCH_TRANSCRIPT, {"videoId": 1, "youtubeId": "a"})
        await queue.claim_next()
        await queue.complete(job_id)
        completed_at = (await load_job(session_factory, job_id)).completed_at

        clock.advance(minutes=5)
        await queue.complete(job_id)

        job = await load_job(session_factory, job_id)
        assert job.status == JobStatus.COMPLETED
        assert job.completed_at == completed_at

    async def test_fail_below_max_attempts_retries(self, queue, session_factory):
        job_id = await queue.enqueue(JobType.FETCH_TRANSCRIPT, {"videoId": 1, "youtubeId": "a"})
        await queue.claim_next()

        status = await queue.fail(job_id, "Transcript fetch failed")

        job = await load_job(session_factory, job_id)
        assert status == JobStatus.PENDING
        assert job.status == JobStatus.PENDING
        assert job.error == "Transcript fetch failed"
        assert job.attempts == 1

    async def test_fail_at_max_attempts_is_terminal(self, queue, session_factory):
        """The third failed attempt marks the job failed."""
        job_id = await queue.enqueue(JobType.FETCH_TRANSCRIPT, {"videoId": 1, "youtubeId": "a"})

        for _ in range(3):
            assert (await queue.claim_next()).id == job_id
            await queue.fail(job_id, "still broken")

        job = await load_job(session_factory, job_id)
        assert job.status == JobStatus.FAILED
        assert job.attempts == 3
        assert await queue.claim_next() is None

    async def test_fail_respects_custom_max_attempts(self, session_factory, clock):
        queue = JobQueue(session_factory, clock=clock, max_attempts=1)
        job_id = await queue.enqueue(JobType.FETCH_TRANSCRIPT, {"videoId": 1, "youtubeId": "a"})
        await queue.claim_next()

        assert await queue.fail(job_id, "nope") == JobStatus.FAILED

    async def test_fail_unknown_job_is_noop(self, queue):
        assert await queue.fail(9999, "missing") is None

    async def test_fail_embedding_job_always_retries(self, queue, clock, session_factory):
        """Embedding jobs go back to pending even past max_attempts."""
        job_id = await queue.enqueue(JobType.GENERATE_EMBEDDINGS, {"videoId": 1})
        await set_job(session_factory, job_id, attempts=10, status=JobStatus.PROCESSING)

        clock.advance(minutes=3)
        await queue.fail_embedding_job(job_id, "CUDA out of memory")

        job = await load_job(session_factory, job_id)
        assert job.status == JobStatus.PENDING
        assert job.error == "CUDA out of memory"
        assert naive(job.started_at) == naive(clock.now)

    async def test_fail_by_policy_routes_retriable_embedding_errors(self, queue, session_factory):
        job_id = await queue.enqueue(JobType.GENERATE_EMBEDDINGS, {"videoId": 1})
        job = await queue.claim_next()
        await set_job(session_factory, job_id, max_attempts=1)

        await queue.fail_by_policy(job, "transient", retriable=True)

        assert (await load_job(session_factory, job_id)).status == JobStatus.PENDING

    async def test_fail_by_policy_routes_permanent_errors_to_fail(self, queue, session_factory):
        job_id = await queue.enqueue(JobType.GENERATE_EMBEDDINGS, {"videoId": 1})
        job = await queue.claim_next()
        await set_job(session_factory, job_id, max_attempts=1)

        await queue.fail_by_policy(job, "Video 1 not found", retriable=False)

        assert (await load_job(session_factory, job_id)).status == JobStatus.FAILED


# ================================
# Maintenance
# ================================

@pytest.mark.asyncio
class TestRecoverStaleJobs:
    """Test stale job recovery."""

    async def test_recovers_old_processing_jobs(self, queue, clock, session_factory):
        stale = await queue.enqueue(JobType.FETCH_TRANSCRIPT, {"videoId": 1, "youtubeId": "a"})
        await queue.claim_next()

        clock.advance(minutes=5)
        fresh = await queue.enqueue(JobType.FETCH_TRANSCRIPT, {"videoId": 2, "youtubeId": "b"})
        await queue.claim_next()

        clock.advance(minutes=6)
        recovered = await queue.recover_stale_jobs()

        assert recovered == 1
        stale_job = await load_job(session_factory, stale)
        assert stale_job.status == JobStatus.PENDING
        assert "stale" in stale_job.error.lower()
        assert (await load_job(session_factory, fresh)).status == JobStatus.PROCESSING

    async def test_leaves_other_statuses_alone(self, queue, clock, session_factory):
        pending = await queue.enqueue(JobType.FETCH_TRANSCRIPT, {"videoId": 1, "youtubeId": "a"})
        done = await queue.enqueue(JobType.FETCH_TRANSCRIPT, {"videoId": 2, "youtubeId": "b"})
        await set_job(session_factory, pending, started_at=clock.now)
        await set_job(session_factory, done, status=JobStatus.COMPLETED, started_at=clock.now)

        clock.advance(hours=2)

        assert await queue.recover_stale_jobs() == 0
        assert (await load_job(session_factory, done)).status == JobStatus.COMPLETED

    async def test_nothing_to_recover(self, queue):
        assert await queue.recover_stale_jobs() == 0


@pytest.mark.asyncio
class TestDetectOrphanVideos:
    """Test orphan video detection."""

    async def test_enqueues_one_job_per_orphan(self, queue, make_video, session_factory):
        orphan = await make_video("orphan", transcript="0:00\nHello there")

        assert await queue.detect_orphan_videos() == 1

        jobs = await queue.get_jobs_by_status(JobStatus.PENDING)
        assert [(job.type, job.payload) for job in jobs] == [
            ("generate_embeddings", {"videoId": orphan})
        ]

    async def test_second_sweep_finds_nothing(self, queue, make_video):
        """The pending job from the first sweep covers the video."""
        await make_video("orphan", transcript="0:00\nHello there")

        assert await queue.detect_orphan_videos() == 1
        assert await queue.detect_orphan_videos() == 0

    async def test_skips_videos_with_active_jobs(self, queue, make_video):
        covered = await make_video("covered", transcript="0:00\nHello")
        running = await make_video("running", transcript="0:00\nHello")
        await queue.enqueue(JobType.GENERATE_EMBEDDINGS, {"videoId": running})
        await queue.claim_next()
        await queue.enqueue(JobType.GENERATE_EMBEDDINGS, {"videoId": covered})

        assert await queue.detect_orphan_videos() == 0

    async def test_failed_job_does_not_cover_video(self, queue, make_video, session_factory):
        video_id = await make_video("abandoned", transcript="0:00\nHello")
        job_id = await queue.enqueue(JobType.GENERATE_EMBEDDINGS, {"videoId": video_id})
        await set_job(session_factory, job_id, status=JobStatus.FAILED)

        assert await queue.detect_orphan_videos() == 1

    async def test_skips_videos_without_transcript_or_with_chunks(
        self, queue, make_video, session_factory
    ):
        await make_video("no-transcript")
        await make_video("blank", transcript="   ")
        embedded = await make_video("embedded", transcript="0:00\nHello")
        async with session_factory() as session, session.begin():
            session.add(Chunk(video_id=embedded, chunk_index=0, content="Hello"))

        assert await queue.detect_orphan_videos() == 0

    @pytest.mark.parametrize("transcript", ["\n\n\t\n", " \r\n ", "\t"])
    async def test_whitespace_only_transcript_is_not_an_orphan(self, queue, make_video, transcript):
        """The embedding handler rejects these videos, so no job is enqueued for them."""
        await make_video("blank", transcript=transcript)

        assert await queue.detect_orphan_videos() == 0
        assert await queue.detect_orphan_videos() == 0
        assert await queue.get_jobs_by_status(JobStatus.PENDING) == []


# ================================
# Inspection
# ================================

@pytest.mark.asyncio
class TestInspection:
    """Test read-only queue helpers."""

    async def test_get_jobs_by_status_oldest_first(self, queue, clock):
        first = await queue.enqueue(JobType.FETCH_TRANSCRIPT, {"videoId": 1, "youtubeId": "a"})
        clock.advance(seconds=1)
        second = await queue.enqueue(JobType.GENERATE_EMBEDDINGS, {"videoId": 1})

        jobs = await queue.get_jobs_by_status("pending")

        assert [job.id for job in jobs] == [first, second]
        assert await queue.get_jobs_by_status(JobStatus.FAILED) == []

    async def test_count_jobs_by_status(self, queue):
        await queue.enqueue(JobType.FETCH_TRANSCRIPT, {"videoId": 1, "youtubeId": "a"})
        await queue.enqueue(JobType.FETCH_TRANSCRIPT, {"videoId": 2, "youtubeId": "b"})
        await queue.claim_next()

        assert await queue.count_jobs_by_status() == {
            "pending": 1,
            "processing": 1,
            "completed": 0,
            "failed": 0,
        }

    async def test_job_record_uses_camel_case(self, queue):
        job_id = await queue.enqueue(JobType.FETCH_TRANSCRIPT, {"videoId": 123, "youtubeId": "abc"})

        record = JobRecord.model_validate(await queue.get_job(job_id)).model_dump(by_alias=True)

        assert record["id"] == job_id
        assert record["maxAttempts"] == 3
        assert record["payload"] == {"videoId": 123, "youtubeId": "abc"}
        assert record["startedAt"] is None
        assert set(record) == {
            "id", "type", "payload", "status", "attempts", "maxAttempts",
            "error", "createdAt", "startedAt", "completedAt",
        }
