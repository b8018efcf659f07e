"""Business logic services."""

from goldminer.services.transcript_service import TranscriptService, get_transcript_service

__all__ = [
    "TranscriptService",
    "get_transcript_service",
]
