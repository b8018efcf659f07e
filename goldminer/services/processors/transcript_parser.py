"""
Transcript text parsing.

Stored transcripts use a simple line format: a timestamp line followed by
one or more text lines.

    0:00
    Intro
    1:30
    Main content

Timestamps are MM:SS or H:MM:SS.
"""

import re
from typing import Any

from goldminer.schemas.transcripts import TranscriptSegment

TIMESTAMP_PATTERN = re.compile(r"^\d+:\d{2}(:\d{2})?$")


def timestamp_to_seconds(timestamp: str) -> int:
    """
    Convert a timestamp string to seconds.

    >>> timestamp_to_seconds("1:30")
    90
    >>> timestamp_to_seconds("1:00:00")
    3600

    Anything that is not MM:SS or H:MM:SS yields 0.
    """
    try:
        parts = [int(part) for part in timestamp.strip().split(":")]
    except ValueError:
        return 0

    if len(parts) == 2:
        minutes, seconds = parts
        return minutes * 60 + seconds
    if len(parts) == 3:
        hours, minutes, seconds = parts
        return hours * 3600 + minutes * 60 + seconds
    return 0


def seconds_to_timestamp(seconds: float) -> str:
    """
    Convert seconds to a timestamp string.

    MM:SS below one hour, H:MM:SS from one hour on.
    """
    total = int(seconds)
    hours, remainder = divmod(total, 3600)
    minutes, secs = divmod(remainder, 60)

    if hours > 0:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes}:{secs:02d}"


def is_timestamp(line: str) -> bool:
    """Check whether a line is a bare timestamp."""
    return bool(TIMESTAMP_PATTERN.match(line.strip()))


def parse_transcript(raw: str | None) -> list[TranscriptSegment]:
    """
    Parse stored transcript text into timed segments.

    - Multi-line text between timestamps is joined with newlines
    - Text without any timestamp becomes a single segment at 0:00
    - Empty input returns an empty list

    >>> [s.seconds for s in parse_transcript("0:00\\nIntro\\n1:30\\nMain content")]
    [0, 90]
    """
    if not raw or not raw.strip():
        return []

    segments: list[TranscriptSegment] = []
    current_timestamp: str | None = None
    current_lines: list[str] = []

    def finish_segment() -> None:
        if current_timestamp is not None and current_lines:
            segments.append(
                TranscriptSegment(
                    timestamp=current_timestamp,
                    seconds=timestamp_to_seconds(current_timestamp),
                    text="\n".join(current_lines),
                )
            )

    for line in raw.split("\n"):
        stripped = line.strip()

        if is_timestamp(stripped):
            finish_segment()
            current_timestamp = stripped
            current_lines = []
        elif stripped:
            current_lines.append(stripped)

    finish_segment()

    # No timestamps at all: the whole text is one segment
    if not segments:
        text = "\n".join(current_lines) if current_lines else raw.strip()
        segments.append(TranscriptSegment(timestamp="0:00", seconds=0, text=text))

    return segments


def format_transcript(segments: list[TranscriptSegment]) -> str:
    """Render segments back into the stored transcript format."""
    return "\n\n".join(f"{segment.timestamp}\n{segment.text}" for segment in segments)


def segments_for_chunking(segments: list[TranscriptSegment]) -> list[dict[str, Any]]:
    """Convert parsed segments to chunker input ({text, offset_ms})."""
    return [
        {"text": segment.text, "offset_ms": segment.seconds * 1000}
        for segment in segments
    ]
