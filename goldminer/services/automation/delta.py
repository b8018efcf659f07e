"""
Delta Detector

Decides which feed entries are new to the archive and persists them.
"""

import logging

from sqlalchemy import insert, select
from sqlalchemy.ext.asyncio import AsyncSession

from goldminer.models.content import Video
from goldminer.schemas.feeds import FeedVideo

logger = logging.getLogger(__name__)


class VideoCreationError(Exception):
    """The video insert returned no row."""


async def find_new_videos(session: AsyncSession, feed_videos: list[FeedVideo]) -> list[FeedVideo]:
    """
    Feed videos whose youtube_id is not stored yet, in feed order.

    A video listed more than once is returned once (its first entry).
    An empty input returns immediately without querying.
    """
    if not feed_videos:
        return []

    youtube_ids = {video.youtube_id for video in feed_videos}
    result = await session.scalars(
        select(Video.youtube_id).where(Video.youtube_id.in_(sorted(youtube_ids)))
    )
    existing = set(result.all())

    new_videos = []
    for video in feed_videos:
        if video.youtube_id in existing:
            continue
        existing.add(video.youtube_id)
        new_videos.append(video)

    return new_videos


async def create_video_from_feed(session: AsyncSession, feed_video: FeedVideo) -> int:
    """
    Insert a video from its feed entry.

    The caller owns the transaction.

    Returns:
        The new video's ID

    Raises:
        VideoCreationError: The insert returned no row
    """
    stmt = (
        insert(Video)
        .values(
            youtube_id=feed_video.youtube_id,
            title=feed_video.title,
            channel=feed_video.channel_name,
            description=feed_video.description or None,
            published_at=feed_video.published_at,
        )
        .returning(Video.id)
    )
    video_id = (await session.execute(stmt)).scalar_one_or_none()

    if video_id is None:
        raise VideoCreationError(f"Failed to create video {feed_video.youtube_id} from feed")

    logger.info(f"Created video {video_id} from feed: {feed_video.youtube_id} '{feed_video.title}'")
    return video_id
