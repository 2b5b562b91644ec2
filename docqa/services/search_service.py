"""
Search Service
Vector search re-ranked by how many query words appear in each chunk.
"""
from typing import List, Optional

import structlog

from docqa.models.schemas import RetrievalMatch, SearchResult
from docqa.services.embedding_service import EmbeddingService, get_embedding_service
from docqa.services.vector_store import VectorStore, get_vector_store

logger = structlog.get_logger()

SEARCH_TOP_K = 20
MAX_RESULTS = 10
VECTOR_WEIGHT = 0.7
TEXT_WEIGHT = 0.3

# Only records that carry chunk text
TEXT_FILTER = {"text": {"$exists": True}}


def query_words(query: str) -> List[str]:
    return query.lower().split()


def text_match_fraction(text: str, words: List[str]) -> float:
    """Fraction of ``words`` occurring as substrings of ``text`` (case-insensitive)."""
    if not words:
        return 0.0
    lowered = text.lower()
    return sum(1 for word in words if word in lowered) / len(words)


def rerank(matches: List[RetrievalMatch], query: str, limit: int = MAX_RESULTS) -> List[SearchResult]:
    """Drop matches sharing no word with the query and sort by the blended score."""
    words = query_words(query)
    results = []
    for match in matches:
        fraction = text_match_fraction(match.text, words)
        if fraction == 0:
            continue
        results.append(
            SearchResult(
                **match.model_dump(),
                combined_score=match.score * VECTOR_WEIGHT + fraction * TEXT_WEIGHT,
            )
        )
    results.sort(key=lambda result: result.combined_score, reverse=True)
    return results[:limit]


class SearchService:
    """Hybrid semantic and keyword search over stored chunks."""

    def __init__(
        self,
        embedding_service: Optional[EmbeddingService] = None,
        vector_store: Optional[VectorStore] = None,
    ):
        self.embedding_service = embedding_service or get_embedding_service()
        self.vector_store = vector_store or get_vector_store()

    async def search(self, query: str) -> List[SearchResult]:
        """
        Search stored chunks.

        Args:
            query: Free-text query

        Returns:
            Up to 10 results ordered by combined score
        """
        logger.info("Searching", query=query)

        embedding = await self.embedding_service.embed_query(query)
        matches = await self.vector_store.query(embedding, top_k=SEARCH_TOP_K, filter=TEXT_FILTER)
        results = rerank(matches, query)

        logger.info("Search complete", initial_matches=len(matches), results=len(results))
        return results


# Singleton instance
_search_service: Optional[SearchService] = None


def get_search_service() -> SearchService:
    """Get singleton search service instance."""
    global _search_service
    if _search_service is None:
        _search_service = SearchService()
    return _search_service
