"""
Celery application instance and configuration.
"""

from celery import Celery
from celery.schedules import crontab

from goldminer.core.config import settings
from goldminer.core.logging import setup_logging

setup_logging()

# Create Celery application
celery_app = Celery(
    "goldminer",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
)

# Configure Celery
celery_app.conf.update(
    task_serializer=settings.CELERY_TASK_SERIALIZER,
    result_serializer=settings.CELERY_RESULT_SERIALIZER,
    accept_content=settings.celery_accept_content_list,
    timezone=settings.CELERY_TIMEZONE,
    enable_utc=settings.CELERY_ENABLE_UTC,
    task_track_started=True,
    task_time_limit=30 * 60,  # 30 minutes
    task_soft_time_limit=25 * 60,  # 25 minutes
    result_expires=3600,  # 1 hour
    # Long-running tasks: do not reserve extra messages
    worker_prefetch_multiplier=1,
)

# Celery Beat Schedule (Periodic Tasks)
celery_app.conf.beat_schedule = {
    'check-feeds': {
        'task': 'automation.check_feeds',
        'schedule': crontab(minute='0', hour=f'*/{settings.FEED_CHECK_INTERVAL_HOURS}'),
        'options': {'queue': 'feeds'},
    },
    'process-jobs': {
        'task': 'automation.process_jobs',
        'schedule': crontab(minute=f'*/{settings.JOB_PROCESS_INTERVAL_MINUTES}'),
        'options': {'queue': 'jobs'},
    },
    'maintenance-sweep': {
        'task': 'automation.maintenance_sweep',
        'schedule': crontab(minute=f'*/{settings.MAINTENANCE_INTERVAL_MINUTES}'),
        'options': {'queue': 'jobs'},
    },
    'get-queue-stats': {
        'task': 'automation.get_queue_stats',
        'schedule': crontab(minute='*/15'),  # Every 15 minutes
        'options': {'queue': 'monitoring'},
    },
}

# Task routing
celery_app.conf.task_routes = {
    'automation.check_feeds': {'queue': 'feeds'},
    'automation.get_queue_stats': {'queue': 'monitoring'},
    'automation.*': {'queue': 'jobs'},
}

# Auto-discover tasks from goldminer.tasks
celery_app.autodiscover_tasks(['goldminer.tasks'])
