"""
Channel queries for feed automation.
"""

from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from goldminer.db.base import utcnow
from goldminer.models.content import Channel


async def get_channels_for_auto_fetch(session: AsyncSession) -> list[Channel]:
    """All channels with auto_fetch enabled."""
    result = await session.scalars(
        select(Channel).where(Channel.auto_fetch.is_(True)).order_by(Channel.id)
    )
    return list(result.all())


def is_fetch_due(channel: Channel, now: Optional[datetime] = None) -> bool:
    """Check whether a channel's fetch interval has elapsed."""
    if channel.last_fetched_at is None:
        return True

    now = now or utcnow()
    last_fetched = channel.last_fetched_at
    # SQLite hands back naive datetimes
    if last_fetched.tzinfo is None and now.tzinfo is not None:
        now = now.replace(tzinfo=None)

    return now - last_fetched >= timedelta(hours=channel.fetch_interval_hours)


async def update_channel_last_fetched(
    session: AsyncSession,
    channel_id: int,
    fetched_at: Optional[datetime] = None,
) -> None:
    """Record a feed check for a channel (by database ID)."""
    await session.execute(
        update(Channel)
        .where(Channel.id == channel_id)
        .values(last_fetched_at=fetched_at or utcnow())
        .execution_options(synchronize_session=False)
    )


async def update_channel_automation(
    session: AsyncSession,
    channel_id: int,
    auto_fetch: Optional[bool] = None,
    fetch_interval_hours: Optional[int] = None,
    feed_url: Optional[str] = None,
) -> Optional[Channel]:
    """
    Change a channel's automation settings.

    Only the given values are updated.

    Returns:
        The updated channel, or None if it does not exist

    Raises:
        ValueError: fetch_interval_hours is not positive
    """
    values = {}
    if auto_fetch is not None:
        values["auto_fetch"] = auto_fetch
    if fetch_interval_hours is not None:
        if fetch_interval_hours < 1:
            raise ValueError("fetch_interval_hours must be at least 1")
        values["fetch_interval_hours"] = fetch_interval_hours
    if feed_url is not None:
        values["feed_url"] = feed_url

    channel = await session.get(Channel, channel_id)
    if channel is None:
        return None

    for key, value in values.items():
        setattr(channel, key, value)
    await session.flush()

    return channel
