"""
Transcript Chunking Service

Splits timed transcript segments into chunks sized for the embedding model.

Strategy:
---------
1. Walk segments in order, accumulating text until the token budget
   (CHUNK_SIZE_TOKENS) would be exceeded
2. Start each new chunk with the tail of the previous one
   (CHUNK_OVERLAP_TOKENS) for continuity, unless the tail and the
   chunk's first segment would not fit the budget together
3. A single segment longer than the budget is split on sentence
   boundaries, then on word boundaries
4. Every chunk keeps the offsets of its first and last segment and the
   indices of the segments it was built from

The output depends only on the input and the configuration, so running the
chunker twice over the same transcript yields the same chunks. The job
processor relies on that to skip videos whose chunks are already stored.
"""

import re
from typing import Any, Optional

import tiktoken

from goldminer.core.config import settings
from goldminer.schemas.transcripts import TranscriptChunk


class TranscriptChunker:
    """
    Token-aware transcript chunker.

    Usage:
    ------
    chunker = TranscriptChunker()
    chunks = chunker.chunk_transcript([
        {"text": "Welcome back", "offset_ms": 0},
        {"text": "Today we look at pgvector", "offset_ms": 4000},
    ])
    """

    def __init__(
        self,
        chunk_size: Optional[int] = None,
        chunk_overlap: Optional[int] = None,
    ):
        """
        Initialize the chunker with configuration.

        Args:
            chunk_size: Max tokens per chunk (default from settings)
            chunk_overlap: Tokens carried over between chunks (default from settings)
        """
        self.chunk_size = chunk_size or settings.CHUNK_SIZE_TOKENS
        self.chunk_overlap = settings.CHUNK_OVERLAP_TOKENS if chunk_overlap is None else chunk_overlap

        if self.chunk_overlap >= self.chunk_size:
            raise ValueError("chunk_overlap must be smaller than chunk_size")

        # Initialize tokenizer (cl100k_base, good general purpose)
        try:
            self.tokenizer = tiktoken.get_encoding("cl100k_base")
        except Exception:
            # Encoding files unavailable (offline); use the approximation
            self.tokenizer = None

    def count_tokens(self, text: str) -> int:
        """
        Count tokens in text using tiktoken.

        Args:
            text: Text to count tokens in

        Returns:
            Number of tokens
        """
        if self.tokenizer:
            return len(self.tokenizer.encode(text))
        else:
            # Rough approximation: 1 token ≈ 4 characters
            return max(1, len(text) // 4) if text else 0

    def chunk_transcript(self, segments: list[dict[str, Any]]) -> list[TranscriptChunk]:
        """
        Chunk transcript segments.

        Args:
            segments: List of {"text": str, "offset_ms": int}

        Returns:
            List of TranscriptChunk, empty when no segment has text
        """
        chunks: list[TranscriptChunk] = []

        current_parts: list[str] = []
        current_tokens = 0
        current_indices: list[int] = []
        start_ms = 0
        end_ms = 0
        overlap_text = ""

        def finish_chunk() -> None:
            nonlocal current_parts, current_tokens, current_indices, overlap_text
            content = " ".join(current_parts)
            chunks.append(
                TranscriptChunk(
                    content=content,
                    start_time_ms=start_ms,
                    end_time_ms=end_ms,
                    segment_indices=current_indices,
                )
            )
            overlap_text = self._overlap_tail(content)
            current_parts = []
            current_tokens = 0
            current_indices = []

        for index, segment in enumerate(segments):
            text = (segment.get("text") or "").strip()
            if not text:
                continue

            offset_ms = int(segment.get("offset_ms") or 0)
            segment_tokens = self.count_tokens(text)

            # Very long single segment: flush, then split it on its own
            if segment_tokens > self.chunk_size:
                if current_indices:
                    finish_chunk()

                for piece in self._split_long_text(text):
                    chunks.append(
                        TranscriptChunk(
                            content=piece,
                            start_time_ms=offset_ms,
                            end_time_ms=offset_ms,
                            segment_indices=[index],
                        )
                    )
                overlap_text = self._overlap_tail(chunks[-1].content)
                continue

            if current_indices and current_tokens + segment_tokens > self.chunk_size:
                finish_chunk()

            if not current_indices:
                start_ms = offset_ms
                overlap_tokens = self.count_tokens(overlap_text) if overlap_text else 0
                # The overlap only goes in when it fits next to the segment
                if overlap_tokens and overlap_tokens + segment_tokens <= self.chunk_size:
                    current_parts = [overlap_text]
                    current_tokens = overlap_tokens
                else:
                    current_parts = []
                    current_tokens = 0

            current_parts.append(text)
            current_tokens += segment_tokens
            current_indices.append(index)
            end_ms = offset_ms

        if current_indices:
            finish_chunk()

        return chunks

    # ========================================
    # Helpers
    # ========================================

    def _overlap_tail(self, text: str) -> str:
        """Trailing words of `text` worth about chunk_overlap tokens."""
        if self.chunk_overlap <= 0:
            return ""

        tail: list[str] = []
        for word in reversed(text.split()):
            tail.insert(0, word)
            if self.count_tokens(" ".join(tail)) >= self.chunk_overlap:
                break
        return " ".join(tail)

    def _split_long_text(self, text: str) -> list[str]:
        """
        Split text longer than the budget at sentence boundaries.

        Sentences that are still too long are split at word boundaries.
        """
        pieces: list[str] = []
        current: list[str] = []
        current_tokens = 0

        sentences = re.split(r'(?<=[.!?])\s+', text)

        units: list[str] = []
        for sentence in sentences:
            if self.count_tokens(sentence) > self.chunk_size:
                units.extend(self._split_by_words(sentence))
            elif sentence:
                units.append(sentence)

        for unit in units:
            unit_tokens = self.count_tokens(unit)
            if current and current_tokens + unit_tokens > self.chunk_size:
                pieces.append(" ".join(current))
                current = []
                current_tokens = 0
            current.append(unit)
            current_tokens += unit_tokens

        if current:
            pieces.append(" ".join(current))

        return pieces

    def _split_by_words(self, text: str) -> list[str]:
        """Split text into word runs that each fit the budget."""
        pieces: list[str] = []
        current: list[str] = []

        for word in text.split():
            candidate = " ".join(current + [word])
            if current and self.count_tokens(candidate) > self.chunk_size:
                pieces.append(" ".join(current))
                current = [word]
            else:
                current.append(word)

        if current:
            pieces.append(" ".join(current))

        return pieces


# ========================================
# Utility Functions
# ========================================

def get_chunker() -> TranscriptChunker:
    """Create a chunker configured from settings."""
    return TranscriptChunker()
