"""
Tests for the Celery automation tasks.

Tasks are called directly (synchronously); the runner they build is patched.
"""

import asyncio
from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, Mock, patch

import pytest

from goldminer.schemas.jobs import FeedCheckResult, MaintenanceResult, WorkerRunResult
from goldminer.tasks.automation_tasks import (
    automation_runner,
    check_feeds,
    get_queue_stats,
    maintenance_sweep,
    process_jobs,
    run_async,
)
from goldminer.workers.celery_app import celery_app


@pytest.fixture
def runner():
    runner = Mock()
    runner.check_feeds = AsyncMock(return_value=FeedCheckResult(checked=3, queued=2, errors=1))
    runner.process_jobs = AsyncMock(return_value=WorkerRunResult(processed=4, failed=1))
    runner.run_maintenance = AsyncMock(return_value=MaintenanceResult(recovered=1, orphans=2))
    return runner


@pytest.fixture
def patched_runner(runner):
    """Patch the task-scoped runner; yields the kwargs it was opened with."""
    calls = []

    @asynccontextmanager
    async def fake_automation_runner(**kwargs):
        calls.append(kwargs)
        yield runner

    with patch("goldminer.tasks.automation_tasks.automation_runner", fake_automation_runner):
        yield calls


class TestTasks:

    def test_check_feeds(self, runner, patched_runner):
        result = check_feeds(force=True)

        assert result == {"checked": 3, "queued": 2, "errors": 1}
        runner.check_feeds.assert_awaited_once_with(force=True)
        assert patched_runner == [{}]

    def test_process_jobs_uses_processor(self, runner, patched_runner):
        result = process_jobs(max_jobs=7)

        assert result == {"processed": 4, "failed": 1}
        runner.process_jobs.assert_awaited_once_with(max_jobs=7)
        assert patched_runner == [{"with_processor": True}]

    def test_maintenance_sweep(self, runner, patched_runner):
        assert maintenance_sweep() == {"recovered": 1, "orphans": 2}
        runner.run_maintenance.assert_awaited_once()

    def test_get_queue_stats(self):
        engine = Mock()
        engine.dispose = AsyncMock()
        queue = Mock()
        queue.count_jobs_by_status = AsyncMock(
            return_value={"pending": 2, "processing": 1, "completed": 10, "failed": 1}
        )

        with patch("goldminer.tasks.automation_tasks.create_engine", return_value=engine), \
             patch("goldminer.tasks.automation_tasks.create_session_factory"), \
             patch("goldminer.tasks.automation_tasks.get_job_queue", return_value=queue):
            stats = get_queue_stats()

        assert stats["failed"] == 1
        engine.dispose.assert_awaited_once()


@pytest.mark.asyncio
class TestAutomationRunnerContext:

    async def test_engine_is_disposed(self):
        engine = Mock()
        engine.dispose = AsyncMock()

        with patch("goldminer.tasks.automation_tasks.create_engine", return_value=engine), \
             patch("goldminer.tasks.automation_tasks.create_session_factory") as make_factory, \
             patch("goldminer.tasks.automation_tasks.get_automation_runner") as get_runner:
            with pytest.raises(RuntimeError):
                async with automation_runner(with_processor=True):
                    raise RuntimeError("boom")

        get_runner.assert_called_once_with(make_factory.return_value, with_processor=True)
        engine.dispose.assert_awaited_once()

    async def test_run_async_inside_running_loop(self):
        async def answer():
            await asyncio.sleep(0)
            return 42

        assert run_async(answer()) == 42


def test_run_async_without_loop():
    async def answer():
        return "done"

    assert run_async(answer()) == "done"


class TestCeleryConfig:

    def test_beat_schedule(self):
        schedule = celery_app.conf.beat_schedule

        assert schedule["check-feeds"]["task"] == "automation.check_feeds"
        assert schedule["process-jobs"]["task"] == "automation.process_jobs"
        assert schedule["maintenance-sweep"]["task"] == "automation.maintenance_sweep"
        assert schedule["get-queue-stats"]["task"] == "automation.get_queue_stats"

    def test_tasks_are_registered(self):
        for name in (
            "automation.check_feeds",
            "automation.process_jobs",
            "automation.maintenance_sweep",
            "automation.get_queue_stats",
        ):
            assert name in celery_app.tasks

    def test_feed_checks_have_their_own_queue(self):
        routes = celery_app.conf.task_routes

        assert routes["automation.check_feeds"] == {"queue": "feeds"}
        assert routes["automation.*"] == {"queue": "jobs"}

    def test_one_message_per_worker_process(self):
        assert celery_app.conf.worker_prefetch_multiplier == 1
