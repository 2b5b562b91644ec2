"""
Embedding Service
Generates vector embeddings for chunks and queries through the active provider.
"""
from typing import List, Optional

import structlog

from docqa.exceptions import ProviderError
from docqa.models.schemas import DocumentChunk
from docqa.services.providers import ModelProvider, get_embedding_provider

logger = structlog.get_logger()


class EmbeddingService:
    """Embeds text one request at a time through the configured provider."""

    # Rough model input limit (4 chars per token)
    MAX_TOKENS_PER_REQUEST = 8191

    def __init__(self, provider: Optional[ModelProvider] = None):
        self.provider = provider or get_embedding_provider()

    async def embed_text(self, text: str) -> List[float]:
        """
        Generate embedding for a single text.

        Args:
            text: Text to embed

        Returns:
            Embedding vector, dimension set by the provider
        """
        max_chars = self.MAX_TOKENS_PER_REQUEST * 4
        if len(text) > max_chars:
            logger.warning("Text truncated for embedding", original_length=len(text))
            text = text[:max_chars]

        return await self.provider.embed(text)

    async def embed_query(self, query: str) -> List[float]:
        """Generate embedding for a search query."""
        return await self.embed_text(query)

    async def embed_chunks(
        self,
        chunks: List[DocumentChunk],
        skip_failures: bool = True,
    ) -> List[Optional[List[float]]]:
        """
        Generate embeddings for document chunks, sequentially and in order.

        Args:
            chunks: Chunks to embed
            skip_failures: Record a failed chunk as None instead of raising

        Returns:
            One entry per chunk; None marks a chunk whose embedding failed
        """
        logger.info(
            "Generating embeddings",
            count=len(chunks),
            provider=self.provider.name,
        )

        embeddings: List[Optional[List[float]]] = []
        for chunk in chunks:
            try:
                embeddings.append(await self.embed_text(chunk.text))
            except ProviderError as e:
                if not skip_failures:
                    raise
                logger.error(
                    "Chunk embedding failed",
                    chunk_id=chunk.id,
                    error=e.message,
                )
                embeddings.append(None)

        failed = sum(1 for embedding in embeddings if embedding is None)
        logger.info("Embeddings complete", total=len(embeddings), failed=failed)
        return embeddings


# Singleton instance
_embedding_service: Optional[EmbeddingService] = None


def get_embedding_service() -> EmbeddingService:
    """Get singleton embedding service instance."""
    global _embedding_service
    if _embedding_service is None:
        _embedding_service = EmbeddingService()
    return _embedding_service
