"""
Document Q&A API
Upload and Drive ingestion, retrieval-augmented answering and hybrid search.
"""
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, List, Optional

import structlog
from fastapi import Depends, FastAPI, File, Header, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import Field

from docqa.config import get_settings
from docqa.exceptions import DocQAError, DriveAuthError, InternalError, InvalidRequestError
from docqa.models.schemas import (
    CamelModel,
    ChatMessage,
    Citation,
    DocumentSummary,
    DriveFile,
    ProcessedDocument,
    SearchResult,
)
from docqa.services.answer_service import AnswerService, get_answer_service
from docqa.services.drive_client import MAX_PAGE_SIZE, DriveClient
from docqa.services.ingestion_service import IngestionService, get_ingestion_service
from docqa.services.providers import close_providers, get_chat_provider, get_embedding_provider
from docqa.services.search_service import SearchService, get_search_service
from docqa.services.text_extractor import UPLOAD_MIME_TYPES
from docqa.services.vector_store import VectorStore, get_vector_store

settings = get_settings()

# Configure logging for terminal readability
logging.basicConfig(format="%(message)s", level=settings.log_level.upper())
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.processors.TimeStamper(fmt="%H:%M:%S"),
        structlog.dev.ConsoleRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
)

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    # Fails startup with ConfigurationError when the provider is unusable
    chat_provider = get_chat_provider()
    embedding_provider = get_embedding_provider()
    logger.info(
        "Providers ready",
        chat_provider=chat_provider.name,
        embedding_provider=embedding_provider.name,
        environment=settings.environment,
    )
    yield
    await close_providers()


app = FastAPI(
    title="Document Q&A",
    description="Retrieval-augmented question answering over uploaded and Google Drive documents",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(DocQAError)
async def docqa_error_handler(request: Request, exc: DocQAError) -> JSONResponse:
    logger.warning(
        "Request failed",
        path=request.url.path,
        code=exc.code,
        status_code=exc.status_code,
        error=exc.message,
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


# ─────────────────────────────────────────────────────────────
# Request/Response Models
# ─────────────────────────────────────────────────────────────

class UploadResponse(CamelModel):
    message: str
    filename: str
    chunks_count: int
    text_length: int


class IngestRequest(CamelModel):
    file_ids: List[str] = Field(min_length=1)


class IngestResponse(CamelModel):
    processed_documents: int        # Successful files only
    documents: List[ProcessedDocument]  # Successes first, then failures
    message: Optional[str] = None


class QueryRequest(CamelModel):
    question: str = Field(min_length=1)
    chat_history: List[ChatMessage] = Field(default_factory=list)
    is_summary: bool = False
    selected_documents: Optional[List[str]] = None


class QueryResponse(CamelModel):
    response: str
    citations: List[Citation]
    sources: List[str]


class SearchResponse(CamelModel):
    success: bool = True
    results: List[SearchResult]
    query: str
    total: int


class DocumentsResponse(CamelModel):
    documents: List[DocumentSummary]


class DriveFilesResponse(CamelModel):
    files: List[DriveFile]


# ─────────────────────────────────────────────────────────────
# Dependencies
# ─────────────────────────────────────────────────────────────

def get_drive_token(authorization: Optional[str] = Header(None)) -> str:
    """Bearer access token for Google Drive."""
    if not authorization or not authorization.lower().startswith("bearer "):
        raise DriveAuthError()
    token = authorization.split(" ", 1)[1].strip()
    if not token:
        raise DriveAuthError()
    return token


async def get_drive_client(token: str = Depends(get_drive_token)) -> AsyncIterator[DriveClient]:
    async with DriveClient(token) as client:
        yield client


# ─────────────────────────────────────────────────────────────
# Ingestion
# ─────────────────────────────────────────────────────────────

@app.post("/upload", response_model=UploadResponse)
async def upload_file(
    file: UploadFile = File(...),
    ingestion: IngestionService = Depends(get_ingestion_service),
):
    """Extract, chunk, embed and store an uploaded file."""
    content_type = file.content_type
    if content_type == "application/octet-stream":
        content_type = None
    if content_type and content_type not in UPLOAD_MIME_TYPES:
        raise InvalidRequestError(
            f"Invalid file type: {content_type}. Supported formats: PDF, DOCX, images and plain text.",
            details={"content_type": content_type},
        )

    filename = file.filename or "upload"
    try:
        logger.info("Stage: Processing upload", filename=filename, content_type=content_type)
        content = await file.read()
        result = await ingestion.ingest_document(content, content_type, filename)
    except DocQAError:
        raise
    except Exception as e:
        logger.exception("Upload failed", filename=filename, error=str(e))
        raise InternalError("Failed to process document. Please try again.")

    return UploadResponse(
        message="Document processed successfully",
        filename=result.filename,
        chunks_count=result.chunks_count,
        text_length=result.text_length,
    )


@app.post("/ingest", response_model=IngestResponse)
async def ingest_drive_files(
    request: IngestRequest,
    drive: DriveClient = Depends(get_drive_client),
    ingestion: IngestionService = Depends(get_ingestion_service),
):
    """Index the given Google Drive files; per-file failures are reported, not raised."""
    try:
        result = await ingestion.ingest_files(drive, request.file_ids)
    except DocQAError:
        raise
    except Exception as e:
        logger.exception("Drive ingestion failed", error=str(e))
        raise InternalError("Failed to ingest documents. Please try again.")

    return IngestResponse(
        processed_documents=len(result.processed),
        documents=result.processed + result.failed,
    )


@app.post("/ingest/auto", response_model=IngestResponse)
async def auto_index_drive(
    drive: DriveClient = Depends(get_drive_client),
    ingestion: IngestionService = Depends(get_ingestion_service),
):
    """Index every supported file in the user's Drive."""
    try:
        result = await ingestion.auto_index(drive)
    except DocQAError:
        raise
    except Exception as e:
        logger.exception("Auto-indexing failed", error=str(e))
        raise InternalError("Failed to auto-index Google Drive. Please try again.")

    return IngestResponse(
        processed_documents=len(result.processed),
        documents=result.processed + result.failed,
        message=f"Successfully indexed {len(result.processed)} documents from Google Drive",
    )


@app.get("/drive/files", response_model=DriveFilesResponse)
async def list_drive_files(
    folderId: Optional[str] = None,
    q: Optional[str] = None,
    pageSize: int = MAX_PAGE_SIZE,
    drive: DriveClient = Depends(get_drive_client),
):
    """List files in the user's Drive."""
    files = await drive.list_files(folder_id=folderId, page_size=pageSize, query=q)
    return DriveFilesResponse(files=files)


# ─────────────────────────────────────────────────────────────
# Retrieval
# ─────────────────────────────────────────────────────────────

@app.post("/query", response_model=QueryResponse)
async def query_documents(
    request: QueryRequest,
    answers: AnswerService = Depends(get_answer_service),
):
    """Answer a question from the indexed documents."""
    try:
        result = await answers.answer(
            request.question,
            history=request.chat_history,
            is_summary=request.is_summary,
            selected_documents=request.selected_documents,
        )
    except DocQAError:
        raise
    except Exception as e:
        logger.exception("Query failed", error=str(e))
        raise InternalError("Failed to process your question. Please try again.")

    return QueryResponse(response=result.response, citations=result.citations, sources=result.sources)


@app.get("/search", response_model=SearchResponse)
async def search_documents(
    q: Optional[str] = None,
    search: SearchService = Depends(get_search_service),
):
    """Hybrid semantic and keyword search over stored chunks."""
    if not q or not q.strip():
        raise InvalidRequestError("Search query is required")

    try:
        results = await search.search(q)
    except DocQAError:
        raise
    except Exception as e:
        logger.exception("Search failed", query=q, error=str(e))
        raise InternalError("Search failed. Please try again.")

    return SearchResponse(results=results, query=q, total=len(results))


@app.get("/documents", response_model=DocumentsResponse)
async def list_documents(vector_store: VectorStore = Depends(get_vector_store)):
    """List indexed documents with their chunk counts."""
    documents = await vector_store.list_documents()
    return DocumentsResponse(documents=documents)


# ─────────────────────────────────────────────────────────────
# Helper Endpoints
# ─────────────────────────────────────────────────────────────

@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "provider": settings.resolve_provider().value,
        "embeddingProvider": settings.resolve_embedding_provider().value,
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("docqa.main:app", host="0.0.0.0", port=8000, reload=True)
