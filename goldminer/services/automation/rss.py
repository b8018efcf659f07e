"""
YouTube Channel Feed Fetcher

Every YouTube channel publishes an Atom feed of its 15 latest uploads at
https://www.youtube.com/feeds/videos.xml?channel_id=<id>. Reading it costs
no API quota, which makes it the cheapest way to notice new videos.

Feed structure (abridged):
--------------------------
<feed xmlns="http://www.w3.org/2005/Atom"
      xmlns:yt="http://www.youtube.com/xml/schemas/2015"
      xmlns:media="http://search.yahoo.com/mrss/">
  <title>Channel Name</title>
  <entry>
    <yt:videoId>dQw4w9WgXcQ</yt:videoId>
    <title>Video title</title>
    <published>2024-01-15T10:00:00+00:00</published>
    <author><name>Channel Name</name></author>
    <media:group><media:description>...</media:description></media:group>
  </entry>
</feed>
"""

import logging
from datetime import datetime, timezone
from typing import Optional

import httpx
from lxml import etree

from goldminer.core.config import settings
from goldminer.schemas.feeds import FeedResult, FeedVideo

logger = logging.getLogger(__name__)


NAMESPACES = {
    "atom": "http://www.w3.org/2005/Atom",
    "yt": "http://www.youtube.com/xml/schemas/2015",
    "media": "http://search.yahoo.com/mrss/",
}

UNKNOWN_CHANNEL = "Unknown Channel"

# Feeds come from the network: no entity expansion, no external fetches
_PARSER = etree.XMLParser(resolve_entities=False, no_network=True)


# ========================================
# Custom Exceptions
# ========================================

class FeedError(Exception):
    """Base exception for feed fetching errors."""


class FeedNetworkError(FeedError):
    """The feed could not be requested (DNS, connection, timeout)."""


class FeedHTTPError(FeedError):
    """The feed request returned a non-success status."""

    def __init__(self, status_code: int, reason: str = ""):
        self.status_code = status_code
        self.reason = reason
        super().__init__(f"RSS feed fetch failed: {status_code} {reason}".rstrip())


class FeedParseError(FeedError):
    """The response is not a parsable feed."""


# ========================================
# Fetching
# ========================================

def get_feed_url(channel_id: str) -> str:
    """Feed URL of a YouTube channel."""
    return f"{settings.YOUTUBE_FEED_BASE_URL}?channel_id={channel_id}"


async def fetch_channel_feed(
    channel_id: str,
    client: Optional[httpx.AsyncClient] = None,
    feed_url: Optional[str] = None,
) -> FeedResult:
    """
    Fetch and parse a channel's feed.

    Args:
        channel_id: YouTube channel ID (UC...)
        client: HTTP client to use (a short-lived one is created otherwise)
        feed_url: Override the feed URL (channels may store their own)

    Returns:
        FeedResult with the valid entries, in feed order

    Raises:
        FeedNetworkError: Request failed
        FeedHTTPError: Non-2xx response
        FeedParseError: Body is not a feed
    """
    url = feed_url or get_feed_url(channel_id)

    try:
        if client is None:
            async with httpx.AsyncClient(timeout=settings.FEED_REQUEST_TIMEOUT) as own_client:
                response = await own_client.get(url)
        else:
            response = await client.get(url)
    except httpx.RequestError as e:
        logger.error(f"Error fetching feed {url}: {e}")
        raise FeedNetworkError(f"Failed to fetch RSS feed: {e}") from e

    if not response.is_success:
        logger.error(f"Feed {url} returned {response.status_code}")
        raise FeedHTTPError(response.status_code, response.reason_phrase)

    result = parse_feed(response.content, channel_id)

    logger.info(f"Fetched feed for {channel_id} ({result.channel_name}): {len(result.videos)} videos")
    return result


# ========================================
# Parsing
# ========================================

def parse_feed(content: bytes, channel_id: str) -> FeedResult:
    """
    Parse a channel feed document.

    Entries without a video ID, a title or a valid publish date are skipped.

    Raises:
        FeedParseError: Malformed XML or no <feed> root
    """
    try:
        root = etree.fromstring(content, parser=_PARSER)
    except (etree.XMLSyntaxError, ValueError) as e:
        raise FeedParseError(f"Failed to parse RSS feed: {e}") from e

    if root is None or root.tag != f"{{{NAMESPACES['atom']}}}feed":
        raise FeedParseError("Failed to parse RSS feed: Invalid feed structure")

    channel_name = _text(root, "atom:title") or UNKNOWN_CHANNEL

    videos = []
    for entry in root.iterfind("atom:entry", NAMESPACES):
        video = _parse_entry(entry, channel_id, channel_name)
        if video is not None:
            videos.append(video)

    return FeedResult(
        channel_id=channel_id,
        channel_name=channel_name,
        videos=videos,
        fetched_at=datetime.now(timezone.utc),
    )


def _parse_entry(entry: etree._Element, channel_id: str, channel_name: str) -> Optional[FeedVideo]:
    youtube_id = _text(entry, "yt:videoId")
    title = _text(entry, "atom:title")
    published_at = _parse_date(_text(entry, "atom:published"))

    if not youtube_id or not title or published_at is None:
        logger.debug(f"Skipping incomplete feed entry in {channel_id}: {youtube_id!r}")
        return None

    return FeedVideo(
        youtube_id=youtube_id,
        channel_id=channel_id,
        title=title,
        published_at=published_at,
        description=_text(entry, "media:group/media:description"),
        channel_name=_text(entry, "atom:author/atom:name") or channel_name,
    )


def _text(element: etree._Element, path: str) -> str:
    """Trimmed text of the first match, or an empty string."""
    return (element.findtext(path, default="", namespaces=NAMESPACES) or "").strip()


def _parse_date(value: str) -> Optional[datetime]:
    """Parse an ISO 8601 timestamp; naive values are taken as UTC."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
