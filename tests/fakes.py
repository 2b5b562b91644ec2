"""
Test doubles for the external services: Pinecone, model providers and Google Drive.
"""
import copy
import math
import re
import zlib
from types import SimpleNamespace
from typing import Any, Dict, List, Optional, Tuple

from docqa.config import get_settings
from docqa.exceptions import DriveError, ProviderError
from docqa.models.schemas import DriveFile
from docqa.services.providers import ModelProvider

DIMENSION = 64

_WORD_PATTERN = re.compile(r"\w+")


def embed_words(text: str, dimension: int = DIMENSION) -> List[float]:
    """Hash each lowercase word into a bucket; texts sharing words point the same way."""
    vector = [0.0] * dimension
    for word in _WORD_PATTERN.findall(text.lower()):
        vector[zlib.crc32(word.encode("utf-8")) % dimension] += 1.0
    return vector


def cosine(a: List[float], b: List[float]) -> float:
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(x * x for x in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return sum(x * y for x, y in zip(a, b)) / (norm_a * norm_b)


def _matches_filter(metadata: Dict[str, Any], filter: Dict[str, Any]) -> bool:
    for field, condition in filter.items():
        value = metadata.get(field)
        if "$exists" in condition and (value is not None) != condition["$exists"]:
            return False
        if "$eq" in condition and value != condition["$eq"]:
            return False
        if "$in" in condition and value not in condition["$in"]:
            return False
    return True


# Pinecone rejects larger top_k when metadata or values are returned
MAX_TOP_K_WITH_METADATA = 1000


class FakeIndex:
    """In-memory stand-in for a Pinecone index (cosine metric)."""

    def __init__(self, dimension: int = DIMENSION):
        self.dimension = dimension
        self.records: Dict[str, Dict[str, Any]] = {}
        self.upsert_calls: List[List[Dict[str, Any]]] = []
        self.query_calls: List[Dict[str, Any]] = []
        self.fail_on_upsert_call: Optional[int] = None

    def upsert(self, vectors, namespace=""):
        self.upsert_calls.append(vectors)
        if self.fail_on_upsert_call == len(self.upsert_calls):
            raise RuntimeError("upsert rejected")
        for vector in vectors:
            if len(vector["values"]) != self.dimension:
                raise ValueError(
                    f"Vector dimension {len(vector['values'])} does not match the index dimension {self.dimension}"
                )
        for vector in vectors:
            self.records[vector["id"]] = copy.deepcopy(vector)
        return {"upserted_count": len(vectors)}

    def query(self, vector, top_k, include_metadata=True, namespace="", filter=None, include_values=False):
        if top_k > MAX_TOP_K_WITH_METADATA and (include_metadata or include_values):
            raise ValueError(f"top_k must be at most {MAX_TOP_K_WITH_METADATA} when including metadata or values")
        self.query_calls.append({"top_k": top_k, "filter": filter})
        matches = []
        for record in self.records.values():
            if filter and not _matches_filter(record["metadata"], filter):
                continue
            matches.append(
                SimpleNamespace(
                    id=record["id"],
                    score=cosine(vector, record["values"]),
                    metadata=dict(record["metadata"]),
                )
            )
        matches.sort(key=lambda match: match.score, reverse=True)
        return SimpleNamespace(matches=matches[:top_k])

    def describe_index_stats(self):
        return SimpleNamespace(
            dimension=self.dimension,
            total_vector_count=len(self.records),
            namespaces={"": SimpleNamespace(vector_count=len(self.records))},
        )


class FakeProvider(ModelProvider):
    """Deterministic provider: bag-of-words embeddings and a canned answer."""

    name = "Fake"

    def __init__(self, dimension: int = DIMENSION, answer: str = "Test answer"):
        super().__init__(get_settings())
        self.dimension = dimension
        self.answer = answer
        self.fail_on: List[str] = []
        self.embedded: List[str] = []
        self.prompts: List[Tuple[str, Optional[str]]] = []

    async def embed(self, text: str) -> List[float]:
        if any(marker in text for marker in self.fail_on):
            raise ProviderError(self.name, "embedding failed")
        self.embedded.append(text)
        return embed_words(text, self.dimension)

    async def generate(self, prompt: str, system_prompt: Optional[str] = None) -> str:
        self.prompts.append((prompt, system_prompt))
        return self.answer


class FakeDriveClient:
    """Serves fixed files the way DriveClient does."""

    def __init__(self, files: Optional[Dict[str, Tuple[DriveFile, bytes]]] = None):
        self.files = files or {}

    def add(self, file_id: str, name: str, mime_type: str, content: bytes) -> None:
        self.files[file_id] = (
            DriveFile(
                id=file_id,
                name=name,
                mime_type=mime_type,
                modified_time="2026-01-28T00:00:00Z",
                web_view_link=f"https://drive.google.com/file/d/{file_id}/view",
            ),
            content,
        )

    async def list_files(self, folder_id=None, page_size=1000, query=None):
        return [metadata for metadata, _ in self.files.values()][:page_size]

    async def get_file_metadata(self, file_id: str) -> DriveFile:
        if file_id not in self.files:
            raise DriveError(f"File {file_id} not found", details={"status": 404})
        return self.files[file_id][0]

    async def get_file_content(self, file_id: str, mime_type: str) -> bytes:
        if file_id not in self.files:
            raise DriveError(f"File {file_id} not found", details={"status": 404})
        return self.files[file_id][1]
