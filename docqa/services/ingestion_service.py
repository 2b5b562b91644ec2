"""
Ingestion Service
Runs the extract -> chunk -> embed -> store pipeline for uploads and Drive files.
"""
from typing import List, Optional, Sequence

import structlog

from docqa.exceptions import DocQAError, DriveAuthError, ExtractionError, ProviderError
from docqa.models.schemas import (
    ExtractedText,
    IngestionResult,
    ProcessedDocument,
    StoredVector,
    UploadResult,
)
from docqa.services.chunking_service import ChunkingService, get_chunking_service
from docqa.services.drive_client import DriveClient, MAX_PAGE_SIZE
from docqa.services.embedding_service import EmbeddingService, get_embedding_service
from docqa.services.text_extractor import TextExtractor, get_text_extractor
from docqa.services.vector_store import VectorStore, get_vector_store

logger = structlog.get_logger()

# Drive files picked up by auto-indexing
SUPPORTED_DRIVE_MIME_TYPES = (
    "application/vnd.google-apps.document",
    "application/vnd.google-apps.presentation",
    "application/vnd.google-apps.spreadsheet",
    "application/pdf",
    "text/plain",
    "text/csv",
)

NO_CONTENT_MESSAGE = "No text content could be extracted from the document"
UNEXPECTED_ERROR_MESSAGE = "Unexpected error while processing file"


class IngestionService:
    """Indexes documents into the vector store."""

    def __init__(
        self,
        extractor: Optional[TextExtractor] = None,
        chunking_service: Optional[ChunkingService] = None,
        embedding_service: Optional[EmbeddingService] = None,
        vector_store: Optional[VectorStore] = None,
    ):
        self.extractor = extractor or get_text_extractor()
        self.chunking_service = chunking_service or get_chunking_service()
        self.embedding_service = embedding_service or get_embedding_service()
        self.vector_store = vector_store or get_vector_store()

    async def index_text(
        self,
        extracted: ExtractedText,
        filename: str,
        skip_failures: bool = True,
    ) -> int:
        """
        Chunk, embed and store extracted text.

        Args:
            extracted: Text and page map from the extractor
            filename: Source filename, used for chunk ids
            skip_failures: Store the chunks that embedded and drop the rest

        Returns:
            Number of vectors stored

        Raises:
            ExtractionError: If there is no text to index
            ProviderError: If no chunk could be embedded
        """
        logger.info("Stage: Chunking document", filename=filename, text_length=len(extracted.text))
        chunks = self.chunking_service.chunk(extracted.text, filename, extracted.pages)
        if not chunks:
            raise ExtractionError(NO_CONTENT_MESSAGE, details={"filename": filename})

        logger.info("Stage: Generating embeddings", filename=filename, chunks=len(chunks))
        embeddings = await self.embedding_service.embed_chunks(chunks, skip_failures=skip_failures)

        records = [
            StoredVector.from_chunk(chunk, embedding)
            for chunk, embedding in zip(chunks, embeddings)
            if embedding is not None
        ]
        if not records:
            raise ProviderError(
                self.embedding_service.provider.name,
                f"Failed to generate embeddings for {filename}",
            )
        if len(records) < len(chunks):
            logger.warning(
                "Some chunks were not embedded",
                filename=filename,
                stored=len(records),
                skipped=len(chunks) - len(records),
            )

        logger.info("Stage: Storing vectors", filename=filename, count=len(records))
        return await self.vector_store.upsert(records)

    async def ingest_document(
        self,
        data: bytes,
        mime_type: Optional[str],
        filename: str,
    ) -> UploadResult:
        """Index an uploaded file; any chunk embedding failure fails the upload."""
        extracted = await self.extractor.extract(data, mime_type, filename)
        if not extracted.text.strip():
            raise ExtractionError(NO_CONTENT_MESSAGE, details={"filename": filename})

        chunks_count = await self.index_text(extracted, filename, skip_failures=False)
        logger.info("Stage: Upload indexed", filename=filename, chunks=chunks_count)
        return UploadResult(
            filename=filename,
            chunks_count=chunks_count,
            text_length=len(extracted.text),
        )

    async def ingest_file(self, drive: DriveClient, file_id: str) -> ProcessedDocument:
        """Fetch, extract and index a single Drive file."""
        metadata = await drive.get_file_metadata(file_id)
        content = await drive.get_file_content(file_id, metadata.mime_type)
        extracted = await self.extractor.extract(content, metadata.mime_type, metadata.name)
        chunks_count = await self.index_text(extracted, metadata.name, skip_failures=True)

        return ProcessedDocument(
            id=file_id,
            name=metadata.name,
            mime_type=metadata.mime_type,
            chunks_count=chunks_count,
            page_count=extracted.page_count,
            modified_time=metadata.modified_time,
            web_view_link=metadata.web_view_link,
        )

    async def ingest_files(self, drive: DriveClient, file_ids: Sequence[str]) -> IngestionResult:
        """
        Index Drive files one at a time, isolating per-file failures.

        Args:
            drive: Authenticated Drive client
            file_ids: Drive file ids, processed in order

        Returns:
            IngestionResult with processed and failed documents

        Raises:
            DriveAuthError: If the access token is rejected
        """
        logger.info("Stage: Starting Drive ingestion", files=len(file_ids))
        result = IngestionResult()

        for file_id in file_ids:
            try:
                document = await self.ingest_file(drive, file_id)
            except DriveAuthError:
                raise
            except DocQAError as e:
                logger.error("Error processing file", file_id=file_id, error=e.message)
                result.failed.append(ProcessedDocument(id=file_id, name=file_id, processing_error=e.message))
                continue
            except Exception as e:
                logger.exception("Unexpected error processing file", file_id=file_id, error=str(e))
                result.failed.append(
                    ProcessedDocument(id=file_id, name=file_id, processing_error=UNEXPECTED_ERROR_MESSAGE)
                )
                continue

            result.processed.append(document)
            logger.info("Successfully processed file", file_id=file_id, name=document.name)

        logger.info(
            "Stage: Drive ingestion finished",
            processed=len(result.processed),
            failed=len(result.failed),
        )
        return result

    async def ingest(self, drive: DriveClient, file_ids: Sequence[str]) -> List[ProcessedDocument]:
        """Index Drive files and return only the ones that succeeded."""
        return (await self.ingest_files(drive, file_ids)).processed

    async def auto_index(self, drive: DriveClient) -> IngestionResult:
        """Index every supported file in the Drive."""
        files = await drive.list_files(page_size=MAX_PAGE_SIZE)
        supported = [file for file in files if file.mime_type in SUPPORTED_DRIVE_MIME_TYPES]
        logger.info("Found supported files to index", total=len(files), supported=len(supported))
        return await self.ingest_files(drive, [file.id for file in supported])


# Singleton instance
_ingestion_service: Optional[IngestionService] = None


def get_ingestion_service() -> IngestionService:
    """Get singleton ingestion service instance."""
    global _ingestion_service
    if _ingestion_service is None:
        _ingestion_service = IngestionService()
    return _ingestion_service
