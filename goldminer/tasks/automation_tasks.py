"""
Celery tasks for the ingestion pipeline.

This module contains the periodic triggers:
- Checking followed channels' feeds for new videos
- Running worker batches over the job queue
- The maintenance sweep (stale jobs, orphan videos)
- Queue monitoring
"""

import asyncio
import concurrent.futures
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from celery import Task
from sqlalchemy.exc import OperationalError

from goldminer.db.session import create_engine, create_session_factory
from goldminer.services.automation.queue import get_job_queue
from goldminer.services.automation.runner import AutomationRunner, get_automation_runner
from goldminer.workers.celery_app import celery_app

logger = logging.getLogger(__name__)


# ========================================
# Async Helper
# ========================================

def run_async(coro):
    """
    Run async coroutine, handling both event loop and no event loop scenarios.

    - Celery worker (no running loop): asyncio.run()
    - Tests (a loop is already running): asyncio.run() in a worker thread
    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(coro)

    with concurrent.futures.ThreadPoolExecutor(max_workers=1) as executor:
        return executor.submit(asyncio.run, coro).result()


@asynccontextmanager
async def automation_runner(with_processor: bool = False) -> AsyncIterator[AutomationRunner]:
    """
    Runner on a database engine owned by this task run.

    Every run_async() call gets a fresh event loop, and pooled asyncpg
    connections cannot move between loops, so the engine lives and dies
    with the run.
    """
    engine = create_engine()
    try:
        yield get_automation_runner(create_session_factory(engine), with_processor=with_processor)
    finally:
        await engine.dispose()


# ========================================
# Base Task Class
# ========================================

class AutomationTask(Task):
    """Base task class: retry when the database is unreachable."""

    autoretry_for = (OperationalError,)
    retry_kwargs = {'max_retries': 3}
    retry_backoff = True
    retry_backoff_max = 300  # 5 minutes
    retry_jitter = True


# ========================================
# Main Tasks
# ========================================

@celery_app.task(
    base=AutomationTask,
    name='automation.check_feeds',
    bind=True,
)
def check_feeds(self, force: bool = False) -> dict:
    """
    Poll the feeds of all auto-fetch channels.

    New videos are stored and get a fetch_transcript job each.

    Args:
        force: Ignore per-channel fetch intervals

    Returns:
        {'checked': int, 'queued': int, 'errors': int}
    """
    async def _check():
        async with automation_runner() as runner:
            return await runner.check_feeds(force=force)

    result = run_async(_check())
    return result.model_dump()


@celery_app.task(
    base=AutomationTask,
    name='automation.process_jobs',
    bind=True,
)
def process_jobs(self, max_jobs: Optional[int] = None) -> dict:
    """
    Run one worker batch over the job queue.

    Args:
        max_jobs: Jobs to process at most (default JOB_BATCH_SIZE)

    Returns:
        {'processed': int, 'failed': int}
    """
    async def _process():
        async with automation_runner(with_processor=True) as runner:
            return await runner.process_jobs(max_jobs=max_jobs)

    result = run_async(_process())
    return result.model_dump()


@celery_app.task(
    base=AutomationTask,
    name='automation.maintenance_sweep',
    bind=True,
)
def maintenance_sweep(self) -> dict:
    """
    Recover stale jobs and enqueue embeddings for orphan videos.

    Returns:
        {'recovered': int, 'orphans': int}
    """
    async def _sweep():
        async with automation_runner() as runner:
            return await runner.run_maintenance()

    result = run_async(_sweep())
    return result.model_dump()


# ========================================
# Task Monitoring
# ========================================

@celery_app.task(name='automation.get_queue_stats')
def get_queue_stats() -> dict:
    """
    Job counts per status.

    Returns:
        {'pending': int, 'processing': int, 'completed': int, 'failed': int}
    """
    async def _stats():
        engine = create_engine()
        try:
            return await get_job_queue(create_session_factory(engine)).count_jobs_by_status()
        finally:
            await engine.dispose()

    stats = run_async(_stats())
    if stats['failed']:
        logger.warning(f"{stats['failed']} jobs are in failed state")
    return stats
