"""
Data models for the RAG pipeline.
Field names serialize to camelCase on the wire and in vector metadata.
"""
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model with camelCase aliases, populated by either name."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ─────────────────────────────────────────────────────────────
# Extraction
# ─────────────────────────────────────────────────────────────

class PageSpan(CamelModel):
    """One page of extracted text and its offsets in the full text."""
    page_number: int
    text: str
    start_position: int
    end_position: int


class ExtractedText(CamelModel):
    """Plain text recovered from a document plus its page map."""
    text: str
    page_count: int = 1
    pages: List[PageSpan] = Field(default_factory=list)


# ─────────────────────────────────────────────────────────────
# Chunks and vectors
# ─────────────────────────────────────────────────────────────

class ChunkMetadata(CamelModel):
    filename: str
    chunk_index: int
    total_chunks: int = 0
    is_important_document: Optional[bool] = None
    page_number: Optional[int] = None
    start_position: Optional[int] = None
    end_position: Optional[int] = None


class DocumentChunk(CamelModel):
    """A bounded segment of a source document."""
    id: str
    text: str
    metadata: ChunkMetadata


class StoredVector(CamelModel):
    """A record as persisted in the vector index."""
    id: str
    values: List[float]
    metadata: Dict[str, Any]

    @classmethod
    def from_chunk(cls, chunk: DocumentChunk, values: List[float]) -> "StoredVector":
        metadata = chunk.metadata.model_dump(by_alias=True, exclude_none=True)
        metadata["text"] = chunk.text
        return cls(id=chunk.id, values=values, metadata=metadata)


class RetrievalMatch(CamelModel):
    """Model for search results returned from vector query."""
    text: str
    filename: str
    score: float
    page_number: Optional[int] = None
    start_position: Optional[int] = None
    end_position: Optional[int] = None
    id: Optional[str] = None
    chunk_index: Optional[int] = None


class SearchResult(RetrievalMatch):
    """A match re-ranked by the lexical-blend search."""
    combined_score: float


class DocumentSummary(CamelModel):
    filename: str
    total_chunks: int


# ─────────────────────────────────────────────────────────────
# Answering
# ─────────────────────────────────────────────────────────────

class ChatMessage(CamelModel):
    """One conversation turn; also accepts the chat UI shape {text, isUser, ...}."""
    role: Literal["user", "assistant"]
    content: str

    @model_validator(mode="before")
    @classmethod
    def from_chat_ui(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        if "content" not in data and "text" in data:
            data["content"] = data["text"]
        if "role" not in data and "isUser" in data:
            data["role"] = "user" if data["isUser"] else "assistant"
        return data


class Citation(CamelModel):
    filename: str
    page_number: Optional[int] = None
    snippet: str
    chunk_index: int


class AnswerResult(CamelModel):
    response: str
    citations: List[Citation] = Field(default_factory=list)
    sources: List[str] = Field(default_factory=list)


# ─────────────────────────────────────────────────────────────
# Google Drive ingestion
# ─────────────────────────────────────────────────────────────

class DriveFile(CamelModel):
    id: str
    name: str
    mime_type: str
    size: Optional[int] = None
    modified_time: Optional[str] = None
    web_view_link: Optional[str] = None


class ProcessedDocument(CamelModel):
    """Outcome of ingesting one Drive file."""
    id: str
    name: str
    mime_type: str = ""
    chunks_count: int = 0
    page_count: int = 0
    modified_time: Optional[str] = None
    web_view_link: Optional[str] = None
    processing_error: Optional[str] = None


class IngestionResult(CamelModel):
    processed: List[ProcessedDocument] = Field(default_factory=list)
    failed: List[ProcessedDocument] = Field(default_factory=list)


class UploadResult(CamelModel):
    """Outcome of indexing one uploaded file."""
    filename: str
    chunks_count: int
    text_length: int
