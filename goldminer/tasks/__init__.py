"""
Celery tasks for background processing.
"""

from goldminer.tasks.automation_tasks import (
    check_feeds,
    get_queue_stats,
    maintenance_sweep,
    process_jobs,
)

__all__ = [
    "check_feeds",
    "process_jobs",
    "maintenance_sweep",
    "get_queue_stats",
]
