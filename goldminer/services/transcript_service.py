"""
YouTube transcript extraction service with multiple fallback strategies.

Fallback order:
1. Manual transcripts in preferred languages
2. Auto-generated captions in preferred languages
3. Manual transcript in any language
4. Auto-generated transcript in any language

Failures are reported as values (TranscriptResult.success = False) so the
job processor can decide how to retry; nothing here raises for a video
that simply has no captions.
"""

import asyncio
import logging
import re
from typing import List, Optional, Tuple

from youtube_transcript_api import (
    CouldNotRetrieveTranscript,
    NoTranscriptFound,
    RequestBlocked,
    TranscriptsDisabled,
    VideoUnavailable,
    YouTubeTranscriptApi,
)

from goldminer.core.config import settings
from goldminer.schemas.transcripts import TranscriptResult, TranscriptSegment
from goldminer.services.processors.transcript_parser import (
    format_transcript,
    seconds_to_timestamp,
)

logger = logging.getLogger(__name__)


class TranscriptService:
    """
    Service for fetching YouTube video transcripts.

    Example:
        >>> service = TranscriptService()
        >>> result = await service.fetch_transcript("dQw4w9WgXcQ")
        >>> if result.success:
        ...     print(result.transcript[:100])
    """

    def __init__(
        self,
        preferred_languages: Optional[List[str]] = None,
        api: Optional[YouTubeTranscriptApi] = None,
    ):
        """
        Initialize transcript service.

        Args:
            preferred_languages: Language codes to try first (default from settings)
            api: YouTubeTranscriptApi instance (e.g. configured with a proxy)
        """
        self.preferred_languages = preferred_languages or settings.YOUTUBE_PREFERRED_TRANSCRIPT_LANGUAGES
        self.api = api or YouTubeTranscriptApi()
        logger.info(f"TranscriptService initialized with languages: {self.preferred_languages}")

    async def fetch_transcript(self, video_id: str) -> TranscriptResult:
        """
        Fetch the transcript of a YouTube video.

        The blocking youtube-transcript-api calls run in a worker thread.

        Args:
            video_id: YouTube video ID (not a URL)

        Returns:
            TranscriptResult with the formatted transcript and its segments,
            or success=False and a human readable error.
        """
        try:
            segments, language = await asyncio.to_thread(self._fetch_segments, video_id)
        except TranscriptsDisabled:
            return self._failure(video_id, "Transcripts are disabled for this video")
        except VideoUnavailable:
            return self._failure(video_id, "Video is private or unavailable")
        except NoTranscriptFound:
            return self._failure(video_id, "No transcript available for this video")
        except RequestBlocked:
            logger.error(f"Blocked by YouTube while fetching transcript for {video_id}")
            return self._failure(video_id, "YouTube blocked the transcript request, please try again later")
        except CouldNotRetrieveTranscript as e:
            return self._failure(video_id, f"Failed to fetch transcript: {e.cause}")
        except Exception as e:
            logger.error(f"Unexpected error getting transcript for {video_id}: {e}")
            return self._failure(video_id, f"Failed to fetch transcript: {e}")

        if not segments:
            return self._failure(video_id, "No transcript available for this video")

        logger.info(f"Fetched transcript for {video_id}: {len(segments)} segments ({language})")

        return TranscriptResult(
            success=True,
            transcript=format_transcript(segments),
            segments=segments,
            language=language,
        )

    def _failure(self, video_id: str, error: str) -> TranscriptResult:
        logger.warning(f"No transcript for {video_id}: {error}")
        return TranscriptResult(success=False, error=error)

    def _fetch_segments(self, video_id: str) -> Tuple[List[TranscriptSegment], Optional[str]]:
        """Pick the best transcript and convert it to segments (sync)."""
        transcript_list = self.api.list(video_id)

        transcript = (
            self._find_preferred(transcript_list, manual=True)
            or self._find_preferred(transcript_list, manual=False)
            or self._find_any(transcript_list, manual=True)
            or self._find_any(transcript_list, manual=False)
        )

        if transcript is None:
            return [], None

        if transcript.language_code not in self.preferred_languages:
            logger.info(
                f"Using transcript in non-preferred language "
                f"{transcript.language_code} for video {video_id}"
            )

        fetched = transcript.fetch()

        segments = []
        for snippet in fetched:
            text = self.clean_caption(snippet.text)
            if not text:
                continue
            segments.append(
                TranscriptSegment(
                    timestamp=seconds_to_timestamp(snippet.start),
                    seconds=int(snippet.start),
                    text=text,
                )
            )

        return segments, transcript.language_code

    def _find_preferred(self, transcript_list, manual: bool):
        """Try each preferred language in order."""
        for lang in self.preferred_languages:
            try:
                if manual:
                    return transcript_list.find_manually_created_transcript([lang])
                return transcript_list.find_generated_transcript([lang])
            except NoTranscriptFound:
                continue
        return None

    @staticmethod
    def _find_any(transcript_list, manual: bool):
        """First transcript of the requested kind in any language."""
        for transcript in transcript_list:
            if transcript.is_generated != manual:
                return transcript
        return None

    @staticmethod
    def clean_caption(text: str) -> str:
        """
        Clean a single caption line.

        Removes sound effect tags like [Music] and [Applause], decodes the
        HTML entities auto-captions tend to carry and normalizes whitespace.
        """
        if not text:
            return ""

        text = re.sub(r'\[.*?\]', '', text)

        text = text.replace('&nbsp;', ' ')
        text = text.replace('&amp;', '&')
        text = text.replace('&lt;', '<')
        text = text.replace('&gt;', '>')
        text = text.replace('&quot;', '"')
        text = text.replace('&#39;', "'")

        text = re.sub(r'\s+', ' ', text)
        return text.strip()


# ========================================
# Helper Functions
# ========================================

def get_transcript_service() -> TranscriptService:
    """
    Get or create transcript service instance.

    Returns:
        TranscriptService instance
    """
    return TranscriptService()
