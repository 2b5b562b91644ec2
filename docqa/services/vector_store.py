"""
Vector Store Service
Manages chunk vectors in a single Pinecone namespace with size-bounded upserts.
"""
import asyncio
import json
from typing import Any, Callable, Dict, List, Optional

import structlog
from pinecone import Pinecone

from docqa.config import get_settings
from docqa.exceptions import StorageError
from docqa.models.schemas import DocumentSummary, RetrievalMatch, StoredVector

logger = structlog.get_logger()

# Pinecone rejects upsert requests above 4 MiB
MAX_BATCH_BYTES = 4 * 1024 * 1024

# Pinecone caps top_k at 1000 when metadata is included
LIST_DOCUMENTS_TOP_K = 1000


def estimate_vector_bytes(record: StoredVector) -> int:
    """Approximate the request size of one record: 4 bytes per float plus JSON metadata and id."""
    metadata_json = json.dumps(record.metadata, separators=(",", ":"), ensure_ascii=False)
    return (
        4 * len(record.values)
        + len(metadata_json.encode("utf-8"))
        + len(record.id.encode("utf-8"))
    )


def plan_batches(
    records: List[StoredVector],
    max_bytes: int = MAX_BATCH_BYTES,
) -> List[List[StoredVector]]:
    """
    Partition records, in order, into batches under ``max_bytes``.

    Raises:
        StorageError: If a single record exceeds the ceiling on its own
    """
    batches: List[List[StoredVector]] = []
    current: List[StoredVector] = []
    current_bytes = 0

    for record in records:
        size = estimate_vector_bytes(record)
        if size > max_bytes:
            raise StorageError(
                f"Vector '{record.id}' is too large to store ({size} bytes)",
                details={"id": record.id, "bytes": size, "max_bytes": max_bytes},
            )
        if current and current_bytes + size > max_bytes:
            batches.append(current)
            current = []
            current_bytes = 0
        current.append(record)
        current_bytes += size

    if current:
        batches.append(current)
    return batches


class VectorStore:
    """Stores and queries document chunk vectors in Pinecone."""

    def __init__(self, index: Optional[Any] = None):
        self.settings = get_settings()
        if index is None:
            self.pc = Pinecone(api_key=self.settings.pinecone_api_key)
            index = self.pc.Index(self.settings.pinecone_index_name)
        self.index = index
        self.namespace = self.settings.pinecone_namespace
        self._dimension: Optional[int] = self.settings.pinecone_dimension

        logger.info(
            "Vector store initialized",
            index=self.settings.pinecone_index_name,
            namespace=self.namespace or "(default)",
        )

    async def _call(self, operation: str, fn: Callable[..., Any], **kwargs) -> Any:
        """Run a blocking Pinecone call off the event loop, mapping failures to StorageError."""
        try:
            return await asyncio.to_thread(fn, **kwargs)
        except Exception as e:
            logger.error("Pinecone request failed", operation=operation, error=str(e))
            raise StorageError(details={"operation": operation}) from e

    async def upsert(self, records: List[StoredVector]) -> int:
        """
        Store vectors in byte-bounded batches.

        Args:
            records: Vectors with their chunk metadata and text

        Returns:
            Number of vectors upserted

        Raises:
            StorageError: On an oversized record (nothing is sent) or a failed
                batch (later batches are not sent)
        """
        if not records:
            return 0

        batches = plan_batches(records)
        logger.info("Upserting vectors", count=len(records), batches=len(batches))

        total_upserted = 0
        for batch_num, batch in enumerate(batches, start=1):
            await self._call(
                "upsert",
                self.index.upsert,
                vectors=[record.model_dump() for record in batch],
                namespace=self.namespace,
            )
            total_upserted += len(batch)
            logger.info("Batch upserted", batch_num=batch_num, count=len(batch))

        logger.info("Vectors upserted successfully", total=total_upserted)
        return total_upserted

    async def query(
        self,
        vector: List[float],
        top_k: int,
        filter: Optional[Dict[str, Any]] = None,
    ) -> List[RetrievalMatch]:
        """
        Similarity query over the namespace.

        Args:
            vector: Query embedding
            top_k: Number of matches to return
            filter: Optional Pinecone metadata filter

        Returns:
            Matches in backend score order
        """
        logger.info("Querying vectors", top_k=top_k, filtered=filter is not None)

        kwargs: Dict[str, Any] = {
            "vector": vector,
            "top_k": top_k,
            "include_metadata": True,
            "namespace": self.namespace,
        }
        if filter:
            kwargs["filter"] = filter

        results = await self._call("query", self.index.query, **kwargs)
        matches = [self._to_match(match) for match in (results.matches or [])]

        logger.info("Query complete", results=len(matches))
        return matches

    async def list_documents(self) -> List[DocumentSummary]:
        """
        Distinct filenames in the index with their chunk counts.

        Reads up to LIST_DOCUMENTS_TOP_K records with a zero vector, so very
        large indexes may be listed incompletely.
        """
        dimension = await self.get_dimension()
        results = await self._call(
            "list_documents",
            self.index.query,
            vector=[0.0] * dimension,
            top_k=LIST_DOCUMENTS_TOP_K,
            include_metadata=True,
            namespace=self.namespace,
        )

        documents: Dict[str, DocumentSummary] = {}
        for match in results.matches or []:
            metadata = match.metadata or {}
            filename = metadata.get("filename")
            if filename and filename not in documents:
                documents[filename] = DocumentSummary(
                    filename=filename,
                    total_chunks=int(metadata.get("totalChunks") or 0),
                )

        logger.info("Listed documents", count=len(documents))
        return list(documents.values())

    async def get_dimension(self) -> int:
        """Index dimension, from settings or the index stats."""
        if self._dimension is None:
            stats = await self._call("describe_index_stats", self.index.describe_index_stats)
            self._dimension = int(stats.dimension)
        return self._dimension

    @staticmethod
    def _to_match(match: Any) -> RetrievalMatch:
        metadata = match.metadata or {}
        chunk_index = metadata.get("chunkIndex")
        page_number = metadata.get("pageNumber")
        start = metadata.get("startPosition")
        end = metadata.get("endPosition")
        return RetrievalMatch(
            id=match.id,
            text=metadata.get("text") or "",
            filename=metadata.get("filename") or "",
            score=float(match.score or 0.0),
            page_number=int(page_number) if page_number is not None else None,
            start_position=int(start) if start is not None else None,
            end_position=int(end) if end is not None else None,
            chunk_index=int(chunk_index) if chunk_index is not None else None,
        )


# Singleton instance
_vector_store: Optional[VectorStore] = None


def get_vector_store() -> VectorStore:
    """Get singleton vector store instance."""
    global _vector_store
    if _vector_store is None:
        _vector_store = VectorStore()
    return _vector_store
