"""
Shared Test Fixtures for the Document Q&A Tests

This file contains:
- Environment setup so settings load without real credentials
- An in-memory Pinecone index double
- A deterministic bag-of-words model provider
- A fake Google Drive client
- FastAPI TestClient wired to the fakes through dependency overrides
"""
import os
import sys
from typing import Dict, Generator

import pytest
from fastapi.testclient import TestClient

# Settings are cached on first import
os.environ["MODEL_PROVIDER"] = "ollama"
os.environ["PINECONE_API_KEY"] = "test-key"
os.environ["PINECONE_DIMENSION"] = "64"
os.environ.pop("EMBEDDING_PROVIDER", None)

# Add project root and this directory to path
ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, ROOT)
sys.path.insert(0, os.path.join(ROOT, "tests"))

from docqa.main import app, get_drive_client
from docqa.services.answer_service import AnswerService, get_answer_service
from docqa.services.chunking_service import ChunkingService
from docqa.services.embedding_service import EmbeddingService
from docqa.services.ingestion_service import IngestionService, get_ingestion_service
from docqa.services.search_service import SearchService, get_search_service
from docqa.services.text_extractor import TextExtractor
from docqa.services.vector_store import VectorStore, get_vector_store

from fakes import FakeDriveClient, FakeIndex, FakeProvider


# ═══════════════════════════════════════════════════════════════
# SERVICE FIXTURES
# ═══════════════════════════════════════════════════════════════

@pytest.fixture
def fake_index() -> FakeIndex:
    return FakeIndex()


@pytest.fixture
def fake_provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def fake_drive() -> FakeDriveClient:
    return FakeDriveClient()


@pytest.fixture
def vector_store(fake_index) -> VectorStore:
    return VectorStore(index=fake_index)


@pytest.fixture
def embedding_service(fake_provider) -> EmbeddingService:
    return EmbeddingService(provider=fake_provider)


@pytest.fixture
def chunking_service() -> ChunkingService:
    return ChunkingService(chunk_size=1000, chunk_overlap=200)


@pytest.fixture
def ingestion_service(chunking_service, embedding_service, vector_store) -> IngestionService:
    return IngestionService(
        extractor=TextExtractor(),
        chunking_service=chunking_service,
        embedding_service=embedding_service,
        vector_store=vector_store,
    )


@pytest.fixture
def answer_service(embedding_service, vector_store, fake_provider) -> AnswerService:
    return AnswerService(
        embedding_service=embedding_service,
        vector_store=vector_store,
        chat_provider=fake_provider,
    )


@pytest.fixture
def search_service(embedding_service, vector_store) -> SearchService:
    return SearchService(embedding_service=embedding_service, vector_store=vector_store)


# ═══════════════════════════════════════════════════════════════
# FASTAPI CLIENT FIXTURES
# ═══════════════════════════════════════════════════════════════

@pytest.fixture
def client(
    ingestion_service,
    answer_service,
    search_service,
    vector_store,
    fake_drive,
) -> Generator[TestClient, None, None]:
    """FastAPI test client with every service backed by the fakes."""

    async def override_drive_client():
        yield fake_drive

    app.dependency_overrides[get_ingestion_service] = lambda: ingestion_service
    app.dependency_overrides[get_answer_service] = lambda: answer_service
    app.dependency_overrides[get_search_service] = lambda: search_service
    app.dependency_overrides[get_vector_store] = lambda: vector_store
    app.dependency_overrides[get_drive_client] = override_drive_client

    with TestClient(app) as c:
        yield c

    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers() -> Dict[str, str]:
    return {"Authorization": "Bearer test-drive-token"}


# ═══════════════════════════════════════════════════════════════
# TEST DATA FIXTURES
# ═══════════════════════════════════════════════════════════════

@pytest.fixture
def certificate_text() -> str:
    return (
        "CASTE CERTIFICATE. This is to certify that Rahul Sharma, son of Suresh Sharma, "
        "belongs to the Other Backward Class. Certificate number OBC-2021-04417 was issued "
        "by the Sub-Divisional Officer, Pune, on 14 March 2021."
    )


@pytest.fixture
def long_text() -> str:
    """About 5000 characters of distinct sentences."""
    return " ".join(
        f"Sentence number {i} describes the quarterly revenue of region {i % 7} in detail."
        for i in range(70)
    )
