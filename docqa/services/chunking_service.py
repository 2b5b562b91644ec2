"""
Chunking Service
Splits extracted text into bounded, page-tracked chunks.
"""
import math
import re
from typing import List, Optional, Sequence, Tuple

import structlog

from docqa.config import get_settings
from docqa.models.schemas import ChunkMetadata, DocumentChunk, PageSpan

logger = structlog.get_logger()

# Filename keywords marking certificates, IDs and similar short documents
IMPORTANT_DOCUMENT_KEYWORDS = (
    "certificate",
    "caste",
    "validity",
    "official",
    "school",
    "leaving",
    "id",
)

# Runs of text between sentence terminators
_SENTENCE_PATTERN = re.compile(r"[^.!?]+")

_SENTENCE_JOINER = ". "


def is_important_document(filename: str) -> bool:
    """Check the filename against the important-document keywords."""
    lowered = filename.lower()
    return any(keyword in lowered for keyword in IMPORTANT_DOCUMENT_KEYWORDS)


def find_page_for_position(pages: Optional[Sequence[PageSpan]], position: int) -> int:
    """Return the page number whose span contains ``position``."""
    if not pages:
        return 1
    for page in pages:
        if page.start_position <= position <= page.end_position:
            return page.page_number
    return pages[0].page_number


def split_sentences(text: str) -> List[Tuple[str, int, int]]:
    """Split on ``[.!?]+`` and return (sentence, start, end) with offsets into ``text``."""
    sentences = []
    for match in _SENTENCE_PATTERN.finditer(text):
        raw = match.group()
        sentence = raw.strip()
        if not sentence:
            continue
        start = match.start() + (len(raw) - len(raw.lstrip()))
        sentences.append((sentence, start, start + len(sentence)))
    return sentences


class ChunkingService:
    """Chunks documents by sentences, or by a sliding window for important documents."""

    def __init__(self, chunk_size: Optional[int] = None, chunk_overlap: Optional[int] = None):
        self.settings = get_settings()
        self.chunk_size = chunk_size or self.settings.chunk_size
        self.chunk_overlap = (
            chunk_overlap if chunk_overlap is not None else self.settings.chunk_overlap
        )

    def chunk(
        self,
        text: str,
        filename: str,
        pages: Optional[Sequence[PageSpan]] = None,
    ) -> List[DocumentChunk]:
        """
        Split text into chunks with page information.

        Args:
            text: Extracted document text
            filename: Source filename, used for chunk ids and classification
            pages: Optional page map from the extractor

        Returns:
            List of DocumentChunk objects (empty when there is no content)
        """
        if not text or not text.strip():
            logger.warning("No content to chunk", filename=filename)
            return []

        important = is_important_document(filename)

        if important and len(text) <= self.chunk_size:
            logger.info(
                "Important document fits in one chunk",
                filename=filename,
                length=len(text),
            )
            return [
                DocumentChunk(
                    id=f"{filename}-full-document",
                    text=text,
                    metadata=ChunkMetadata(
                        filename=filename,
                        chunk_index=0,
                        total_chunks=1,
                        is_important_document=True,
                        page_number=find_page_for_position(pages, 0),
                        start_position=0,
                        end_position=len(text),
                    ),
                )
            ]

        if important and len(text) < self.chunk_size * 2:
            chunks = self._chunk_important(text, filename, pages)
        else:
            chunks = self._chunk_by_sentences(text, filename, pages)

        for chunk in chunks:
            chunk.metadata.total_chunks = len(chunks)

        logger.info(
            "Chunking complete",
            filename=filename,
            chunks=len(chunks),
            important=important,
        )
        return chunks

    def _chunk_important(
        self,
        text: str,
        filename: str,
        pages: Optional[Sequence[PageSpan]],
    ) -> List[DocumentChunk]:
        """Sliding window with extra overlap so short documents keep their context."""
        window = min(self.chunk_size, math.ceil(len(text) / 2))
        overlap = min(self.chunk_overlap * 2, math.floor(window * 0.5))

        logger.info(
            "Using important-document chunking",
            filename=filename,
            window=window,
            overlap=overlap,
        )

        chunks: List[DocumentChunk] = []
        start = 0
        while start < len(text):
            end = min(start + window, len(text))
            chunks.append(
                self._make_chunk(
                    text[start:end],
                    filename,
                    len(chunks),
                    start,
                    end,
                    pages,
                    important=True,
                )
            )
            if end >= len(text):
                break
            start = end - overlap
        return chunks

    def _chunk_by_sentences(
        self,
        text: str,
        filename: str,
        pages: Optional[Sequence[PageSpan]],
    ) -> List[DocumentChunk]:
        """Greedily pack sentences into chunks of at most ``chunk_size`` characters."""
        chunks: List[DocumentChunk] = []
        buffer = ""
        buffer_start = 0
        buffer_end = 0

        for sentence, start, end in split_sentences(text):
            candidate = f"{buffer}{_SENTENCE_JOINER}{sentence}" if buffer else sentence
            if len(candidate) <= self.chunk_size:
                if not buffer:
                    buffer_start = start
                buffer = candidate
                buffer_end = end
                continue

            if buffer:
                chunks.append(
                    self._make_chunk(buffer, filename, len(chunks), buffer_start, buffer_end, pages)
                )
            # A single sentence longer than chunk_size stays whole
            buffer = sentence
            buffer_start = start
            buffer_end = end

        if buffer:
            chunks.append(
                self._make_chunk(buffer, filename, len(chunks), buffer_start, buffer_end, pages)
            )
        return chunks

    def _make_chunk(
        self,
        text: str,
        filename: str,
        index: int,
        start: int,
        end: int,
        pages: Optional[Sequence[PageSpan]],
        important: bool = False,
    ) -> DocumentChunk:
        return DocumentChunk(
            id=f"{filename}-chunk-{index}",
            text=text,
            metadata=ChunkMetadata(
                filename=filename,
                chunk_index=index,
                is_important_document=True if important else None,
                page_number=find_page_for_position(pages, start),
                start_position=start,
                end_position=end,
            ),
        )


# Singleton
_chunking_service: Optional[ChunkingService] = None


def get_chunking_service() -> ChunkingService:
    """Get singleton chunking service instance."""
    global _chunking_service
    if _chunking_service is None:
        _chunking_service = ChunkingService()
    return _chunking_service
