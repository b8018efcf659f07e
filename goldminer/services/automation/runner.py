"""
Automation Runners

The three periodic entry points of the ingestion pipeline:

- check_feeds(): poll followed channels' feeds, store new videos and
  enqueue a fetch_transcript job for each
- process_jobs(): one worker batch of claim → process → complete/fail
- run_maintenance(): stale-job recovery and orphan detection

Celery tasks call these; they can just as well run from a script or a test.
"""

import logging
from datetime import datetime
from typing import Awaitable, Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from goldminer.core.config import settings
from goldminer.models.content import Channel
from goldminer.models.job import JobType
from goldminer.schemas.feeds import FeedResult
from goldminer.schemas.jobs import (
    FeedCheckResult,
    FetchTranscriptPayload,
    MaintenanceResult,
    WorkerRunResult,
)
from goldminer.services.automation.delta import create_video_from_feed, find_new_videos
from goldminer.services.automation.processor import JobProcessingError, JobProcessor, get_job_processor
from goldminer.services.automation.queries import (
    get_channels_for_auto_fetch,
    is_fetch_due,
    update_channel_last_fetched,
)
from goldminer.services.automation.queue import JobQueue, get_job_queue
from goldminer.services.automation.rss import fetch_channel_feed

logger = logging.getLogger(__name__)

FeedFetcher = Callable[..., Awaitable[FeedResult]]


class AutomationRunner:
    """
    Runs the pipeline's periodic work against one database.

    Usage:
    ------
    runner = AutomationRunner(AsyncSessionLocal, queue, processor)
    await runner.check_feeds()
    await runner.process_jobs(max_jobs=5)
    await runner.run_maintenance()
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        queue: JobQueue,
        processor: Optional[JobProcessor] = None,
        fetch_feed: FeedFetcher = fetch_channel_feed,
    ):
        """
        Args:
            session_factory: Produces AsyncSessions bound to the archive database
            queue: Job queue (its clock is the runner's clock)
            processor: Job processor, only needed by process_jobs()
            fetch_feed: Feed fetcher, replaceable for tests
        """
        self.session_factory = session_factory
        self.queue = queue
        self.processor = processor
        self.fetch_feed = fetch_feed

    # ----------------------------------------
    # Feed check
    # ----------------------------------------

    async def check_feeds(self, force: bool = False) -> FeedCheckResult:
        """
        Check every auto-fetch channel whose interval has elapsed.

        A failing channel is logged and skipped; the others still run.

        Args:
            force: Ignore fetch intervals

        Returns:
            FeedCheckResult(checked, queued, errors)
        """
        result = FeedCheckResult()
        now = self.queue.clock()

        async with self.session_factory() as session:
            channels = await get_channels_for_auto_fetch(session)

        for channel in channels:
            if not force and not is_fetch_due(channel, now):
                logger.debug(f"Skipping {channel.name}: fetched at {channel.last_fetched_at}")
                continue

            result.checked += 1
            try:
                result.queued += await self._check_channel(channel, now)
            except Exception as e:
                result.errors += 1
                logger.error(f"Error checking feed for channel {channel.channel_id}: {e}")

        logger.info(
            f"Feed check finished: {result.checked} channels checked, "
            f"{result.queued} videos queued, {result.errors} errors"
        )
        return result

    async def _check_channel(self, channel: Channel, now: datetime) -> int:
        feed = await self.fetch_feed(channel.channel_id, feed_url=channel.feed_url)

        async with self.session_factory() as session:
            new_videos = await find_new_videos(session, feed.videos)

        for feed_video in new_videos:
            # Video and its first job are stored together
            async with self.session_factory() as session, session.begin():
                video_id = await create_video_from_feed(session, feed_video)
                session.add(
                    self.queue.new_job(
                        JobType.FETCH_TRANSCRIPT,
                        FetchTranscriptPayload(video_id=video_id, youtube_id=feed_video.youtube_id),
                    )
                )

        async with self.session_factory() as session, session.begin():
            await update_channel_last_fetched(session, channel.id, now)

        if new_videos:
            logger.info(f"Queued {len(new_videos)} new videos from {channel.name}")
        return len(new_videos)

    # ----------------------------------------
    # Worker batch
    # ----------------------------------------

    async def process_jobs(self, max_jobs: Optional[int] = None) -> WorkerRunResult:
        """
        Claim and process up to `max_jobs` jobs, one at a time.

        Returns:
            WorkerRunResult(processed, failed)
        """
        if self.processor is None:
            raise RuntimeError("AutomationRunner has no job processor")

        max_jobs = max_jobs or settings.JOB_BATCH_SIZE
        result = WorkerRunResult()

        for _ in range(max_jobs):
            job = await self.queue.claim_next()
            if job is None:
                break

            try:
                await self.processor.process(job)
            except JobProcessingError as e:
                await self.queue.fail_by_policy(job, str(e), retriable=e.retriable)
                result.failed += 1
                continue
            except Exception as e:
                logger.exception(f"Unexpected error processing job {job.id}")
                await self.queue.fail_by_policy(job, str(e) or type(e).__name__)
                result.failed += 1
                continue

            await self.queue.complete(job.id)
            result.processed += 1

        if result.processed or result.failed:
            logger.info(f"Worker batch finished: {result.processed} processed, {result.failed} failed")
        return result

    # ----------------------------------------
    # Maintenance
    # ----------------------------------------

    async def run_maintenance(self) -> MaintenanceResult:
        """Recover stale jobs, then enqueue embeddings for orphan videos."""
        result = MaintenanceResult(
            recovered=await self.queue.recover_stale_jobs(),
            orphans=await self.queue.detect_orphan_videos(),
        )
        logger.info(f"Maintenance sweep: {result.recovered} stale jobs recovered, {result.orphans} orphans queued")
        return result


# ========================================
# Helper Functions
# ========================================

def get_automation_runner(
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    with_processor: bool = False,
) -> AutomationRunner:
    """Runner bound to the given (default: application) database."""
    queue = get_job_queue(session_factory)
    processor = get_job_processor(queue) if with_processor else None
    return AutomationRunner(queue.session_factory, queue, processor)
