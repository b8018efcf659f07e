"""
Ingestion automation: feed polling, the durable job queue and its processor.
"""

from goldminer.services.automation.delta import (
    VideoCreationError,
    create_video_from_feed,
    find_new_videos,
)
from goldminer.services.automation.processor import (
    DataIntegrityError,
    EmbeddingError,
    EmptyChunksError,
    JobProcessingError,
    JobProcessor,
    PayloadValidationError,
    TranscriptFetchError,
    UnknownJobTypeError,
    VideoNotFoundError,
    decode_job_payload,
    get_job_processor,
)
from goldminer.services.automation.queries import (
    get_channels_for_auto_fetch,
    is_fetch_due,
    update_channel_automation,
    update_channel_last_fetched,
)
from goldminer.services.automation.queue import (
    BASE_BACKOFF_MS,
    MAX_BACKOFF_MS,
    RETRY_FOREVER_JOB_TYPES,
    STALE_JOB_THRESHOLD,
    JobQueue,
    get_backoff_delay_ms,
    get_job_queue,
)
from goldminer.services.automation.rss import (
    FeedError,
    FeedHTTPError,
    FeedNetworkError,
    FeedParseError,
    fetch_channel_feed,
    get_feed_url,
)
from goldminer.services.automation.runner import AutomationRunner, get_automation_runner

__all__ = [
    # Queue
    "JobQueue",
    "get_job_queue",
    "get_backoff_delay_ms",
    "BASE_BACKOFF_MS",
    "MAX_BACKOFF_MS",
    "RETRY_FOREVER_JOB_TYPES",
    "STALE_JOB_THRESHOLD",
    # Processor
    "JobProcessor",
    "get_job_processor",
    "decode_job_payload",
    "JobProcessingError",
    "PayloadValidationError",
    "UnknownJobTypeError",
    "DataIntegrityError",
    "VideoNotFoundError",
    "EmptyChunksError",
    "TranscriptFetchError",
    "EmbeddingError",
    # Feeds
    "get_feed_url",
    "fetch_channel_feed",
    "FeedError",
    "FeedNetworkError",
    "FeedHTTPError",
    "FeedParseError",
    "find_new_videos",
    "create_video_from_feed",
    "VideoCreationError",
    # Channels
    "get_channels_for_auto_fetch",
    "is_fetch_due",
    "update_channel_last_fetched",
    "update_channel_automation",
    # Runners
    "AutomationRunner",
    "get_automation_runner",
]
