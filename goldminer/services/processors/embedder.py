"""
Embedding Service

This module provides embedding generation using sentence-transformers and
the pipeline that turns transcript chunks into stored, embedded chunks.

Model: settings.EMBEDDING_MODEL (ibm-granite/granite-embedding-107m-multilingual)
- 384 dimensions
- Local inference, no API costs

Features:
---------
- Batch processing for efficiency
- CPU/CUDA/MPS device support
- Per-chunk error accounting (one bad chunk does not sink the batch)
- Atomic replace-all of a video's stored chunks
"""

import asyncio
import logging
import time
from typing import Callable, Optional

import numpy as np
import torch
from sentence_transformers import SentenceTransformer
from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from goldminer.core.config import settings
from goldminer.models.content import Chunk
from goldminer.schemas.transcripts import EmbeddedChunk, EmbeddingResult, TranscriptChunk


logger = logging.getLogger(__name__)


class EmbeddingService:
    """
    Service for generating embeddings using sentence-transformers.

    Usage:
    ------
    embedder = EmbeddingService()
    await embedder.initialize()

    embedding = await embedder.embed_text("What is pgvector?")
    embeddings = await embedder.embed_texts_batch(["Text 1", "Text 2"])
    """

    def __init__(
        self,
        model_name: str = None,
        batch_size: int = None,
        device: str = None,
        normalize: bool = True
    ):
        """
        Initialize the embedding service.

        Args:
            model_name: Model name/path (default from settings)
            batch_size: Batch size for processing (default from settings)
            device: Device to use: cpu, cuda, mps (default from settings)
            normalize: Whether to normalize embeddings (default True)
        """
        self.model_name = model_name or settings.EMBEDDING_MODEL
        self.batch_size = batch_size or settings.EMBEDDING_BATCH_SIZE
        self.device = device or settings.EMBEDDING_DEVICE
        self.normalize = normalize

        self.model: Optional[SentenceTransformer] = None
        self._initialized = False

        self._validate_device()

    def _validate_device(self) -> None:
        """Validate and adjust device setting based on availability."""
        if self.device == "cuda" and not torch.cuda.is_available():
            logger.warning("CUDA not available, falling back to CPU")
            self.device = "cpu"
        elif self.device == "mps" and not torch.backends.mps.is_available():
            logger.warning("MPS not available, falling back to CPU")
            self.device = "cpu"

    async def initialize(self) -> None:
        """
        Load the embedding model (downloads it if not cached).

        Raises:
            Exception: If model loading fails
        """
        if self._initialized:
            logger.info("Embedding service already initialized")
            return

        try:
            logger.info(f"Loading embedding model: {self.model_name} on {self.device}")

            # Model loading is CPU-heavy, keep it off the event loop
            self.model = await asyncio.to_thread(
                SentenceTransformer,
                self.model_name,
                device=self.device
            )

            self._initialized = True

            logger.info(
                f"Embedding model loaded successfully. "
                f"Dimension: {self.get_embedding_dimension()}, "
                f"Device: {self.device}"
            )
        except Exception as e:
            logger.error(f"Failed to load embedding model: {e}")
            raise

    def get_embedding_dimension(self) -> int:
        """Embedding dimension of the loaded model (configured value before loading)."""
        if not self._initialized or self.model is None:
            return settings.EMBEDDING_DIMENSION

        return self.model.get_sentence_embedding_dimension()

    async def embed_text(self, text: str, normalize: Optional[bool] = None) -> list[float]:
        """
        Generate embedding for a single text.

        Raises:
            RuntimeError: If service not initialized
            ValueError: If text is empty
        """
        if not self._initialized:
            raise RuntimeError("Embedding service not initialized. Call initialize() first.")

        if not text or not text.strip():
            raise ValueError("Cannot embed empty text")

        use_normalize = normalize if normalize is not None else self.normalize

        embedding = await asyncio.to_thread(
            self._generate_embeddings,
            [text],
            use_normalize
        )
        return embedding[0].tolist()

    async def embed_texts_batch(
        self,
        texts: list[str],
        normalize: Optional[bool] = None
    ) -> list[list[float]]:
        """
        Generate embeddings for multiple texts in one model call.

        Args:
            texts: List of non-empty texts to embed
            normalize: Override default normalization setting

        Returns:
            List of embedding vectors, same order as `texts`

        Raises:
            RuntimeError: If service not initialized
        """
        if not self._initialized:
            raise RuntimeError("Embedding service not initialized. Call initialize() first.")

        if not texts:
            return []

        use_normalize = normalize if normalize is not None else self.normalize

        embeddings = await asyncio.to_thread(
            self._generate_embeddings,
            texts,
            use_normalize
        )
        return [embedding.tolist() for embedding in embeddings]

    def _generate_embeddings(self, texts: list[str], normalize: bool) -> np.ndarray:
        """Run the model (sync, runs in thread pool)."""
        return self.model.encode(
            texts,
            batch_size=self.batch_size,
            normalize_embeddings=normalize,
            show_progress_bar=False,
            convert_to_numpy=True
        )

    async def shutdown(self) -> None:
        """Free the model (and the CUDA cache when on GPU)."""
        if self.model is not None:
            if self.device == "cuda":
                torch.cuda.empty_cache()

            del self.model
            self.model = None

        self._initialized = False
        logger.info("Embedding service shut down")


# ========================================
# Chunk Embedding Pipeline
# ========================================

class EmbeddingPipeline:
    """
    Embeds transcript chunks and stores them for a video.

    Storing is a replace-all: existing chunks of the video are deleted and
    the successfully embedded ones inserted in a single transaction, so
    readers never see a half-written set.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        embedding_service: Optional[EmbeddingService] = None,
        batch_size: Optional[int] = None,
    ):
        self.session_factory = session_factory
        self._embedding_service = embedding_service
        self.batch_size = batch_size or settings.EMBEDDING_BATCH_SIZE

    async def _get_service(self) -> EmbeddingService:
        if self._embedding_service is None:
            self._embedding_service = await get_embedding_service()
        return self._embedding_service

    async def embed_chunks(
        self,
        chunks: list[TranscriptChunk],
        on_progress: Optional[Callable[[int, int], None]] = None,
        video_id: Optional[int] = None,
    ) -> EmbeddingResult:
        """
        Embed chunks in batches and optionally store them for a video.

        Args:
            chunks: Chunks to embed
            on_progress: Called after each batch with (done, total)
            video_id: When given, replace the video's stored chunks

        Returns:
            EmbeddingResult with per-chunk outcome and counts
        """
        started = time.perf_counter()
        total = len(chunks)

        if total == 0:
            return EmbeddingResult()

        service = await self._get_service()
        results: list[EmbeddedChunk] = []

        for start in range(0, total, self.batch_size):
            batch = chunks[start:start + self.batch_size]
            results.extend(await self._embed_batch(service, batch))

            if on_progress:
                on_progress(min(start + self.batch_size, total), total)

        success_count = sum(1 for chunk in results if chunk.error is None)
        error_count = total - success_count

        if video_id is not None:
            await self._store_chunks(video_id, results)

        duration_ms = (time.perf_counter() - started) * 1000

        logger.info(
            f"Embedded {success_count}/{total} chunks"
            f"{f' for video {video_id}' if video_id is not None else ''} "
            f"in {duration_ms:.0f}ms"
        )

        return EmbeddingResult(
            chunks=results,
            total_chunks=total,
            success_count=success_count,
            error_count=error_count,
            duration_ms=duration_ms,
        )

    async def _embed_batch(
        self,
        service: EmbeddingService,
        batch: list[TranscriptChunk],
    ) -> list[EmbeddedChunk]:
        """Embed one batch; on failure retry chunk by chunk to isolate errors."""
        try:
            embeddings = await service.embed_texts_batch([chunk.content for chunk in batch])
            return [
                EmbeddedChunk(**chunk.model_dump(), embedding=embedding)
                for chunk, embedding in zip(batch, embeddings)
            ]
        except Exception as e:
            logger.warning(f"Batch embedding failed ({e}), retrying chunks one by one")

        results = []
        for chunk in batch:
            try:
                embedding = await service.embed_text(chunk.content)
                results.append(EmbeddedChunk(**chunk.model_dump(), embedding=embedding))
            except Exception as e:
                logger.error(f"Error embedding chunk: {e}")
                results.append(EmbeddedChunk(**chunk.model_dump(), error=str(e)))
        return results

    async def _store_chunks(self, video_id: int, results: list[EmbeddedChunk]) -> None:
        """Delete the video's chunks and insert the embedded ones atomically."""
        valid = [chunk for chunk in results if chunk.error is None and chunk.embedding]

        async with self.session_factory() as session, session.begin():
            await session.execute(delete(Chunk).where(Chunk.video_id == video_id))

            session.add_all([
                Chunk(
                    video_id=video_id,
                    chunk_index=index,
                    content=chunk.content,
                    start_time_seconds=chunk.start_time_ms // 1000,
                    end_time_seconds=chunk.end_time_ms // 1000,
                    embedding=chunk.embedding,
                )
                for index, chunk in enumerate(valid)
            ])

        logger.info(f"Stored {len(valid)} chunks for video {video_id}")


# ========================================
# Global Instance Management
# ========================================

_embedding_service: Optional[EmbeddingService] = None


async def get_embedding_service() -> EmbeddingService:
    """
    Get or create the global embedding service instance.

    This ensures we only load the model once per worker process.
    """
    global _embedding_service

    if _embedding_service is None:
        _embedding_service = EmbeddingService()
        await _embedding_service.initialize()

    return _embedding_service
