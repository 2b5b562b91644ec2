"""
Unit Tests for the HTTP API

Every route runs through TestClient with services backed by the fakes.
"""
from io import BytesIO

import pytest

from docqa.main import app, get_drive_client
from docqa.services.answer_service import NO_MATCH_RESPONSE


class TestUploadAPI:

    def test_upload_text_file(self, client, fake_index, long_text):
        response = client.post(
            "/upload",
            files={"file": ("report.txt", BytesIO(long_text.encode()), "text/plain")},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["filename"] == "report.txt"
        assert data["chunksCount"] == len(fake_index.records)
        assert data["textLength"] == len(long_text)
        assert data["message"] == "Document processed successfully"

    def test_upload_rejects_unsupported_type(self, client):
        response = client.post(
            "/upload",
            files={"file": ("archive.zip", BytesIO(b"PK"), "application/zip")},
        )

        assert response.status_code == 400
        error = response.json()["error"]
        assert error["code"] == "INVALID_REQUEST"
        assert "Invalid file type" in error["message"]
        assert error["details"] == {"content_type": "application/zip"}

    def test_upload_without_text(self, client):
        response = client.post(
            "/upload",
            files={"file": ("blank.txt", BytesIO(b"  "), "text/plain")},
        )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "EXTRACTION_ERROR"

    def test_upload_missing_file(self, client):
        assert client.post("/upload").status_code == 422

    def test_upload_embedding_failure(self, client, fake_provider):
        fake_provider.fail_on = ["Budget"]

        response = client.post(
            "/upload",
            files={"file": ("notes.txt", BytesIO(b"Budget approved."), "text/plain")},
        )

        assert response.status_code == 500
        assert response.json()["error"]["code"] == "PROVIDER_ERROR"


class TestIngestAPI:

    def test_ingest_reports_processed_and_failed(self, client, fake_drive, auth_headers):
        fake_drive.add("f1", "notes.txt", "text/plain", b"Meeting notes. Budget approved.")

        response = client.post("/ingest", json={"fileIds": ["f1", "gone"]}, headers=auth_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["processedDocuments"] == 1
        assert [d["id"] for d in data["documents"]] == ["f1", "gone"]
        assert data["documents"][0]["chunksCount"] == 1
        assert data["documents"][0]["mimeType"] == "text/plain"
        assert data["documents"][0]["processingError"] is None
        assert "not found" in data["documents"][1]["processingError"]
        assert data["documents"][1]["chunksCount"] == 0

    def test_ingest_empty_list(self, client, auth_headers):
        response = client.post("/ingest", json={"fileIds": []}, headers=auth_headers)
        assert response.status_code == 422

    def test_ingest_requires_bearer_token(self, client):
        app.dependency_overrides.pop(get_drive_client)

        response = client.post("/ingest", json={"fileIds": ["f1"]})

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "DRIVE_AUTH_ERROR"

    def test_auto_index(self, client, fake_drive, auth_headers):
        fake_drive.add("doc", "Plan", "application/vnd.google-apps.document", b"Project plan. Milestones listed.")
        fake_drive.add("img", "photo.png", "image/png", b"\x89PNG")

        response = client.post("/ingest/auto", headers=auth_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["processedDocuments"] == 1
        assert data["message"] == "Successfully indexed 1 documents from Google Drive"

    def test_drive_files(self, client, fake_drive, auth_headers):
        fake_drive.add("f1", "notes.txt", "text/plain", b"Notes.")

        response = client.get("/drive/files", headers=auth_headers)

        assert response.status_code == 200
        assert response.json()["files"][0]["mimeType"] == "text/plain"


class TestQueryAPI:

    def test_query_without_documents(self, client):
        response = client.post("/query", json={"question": "Who holds the certificate?"})

        assert response.status_code == 200
        assert response.json() == {"response": NO_MATCH_RESPONSE, "citations": [], "sources": []}

    def test_query_with_documents(self, client, certificate_text):
        client.post(
            "/upload",
            files={"file": ("caste_certificate.txt", BytesIO(certificate_text.encode()), "text/plain")},
        )

        response = client.post(
            "/query",
            json={
                "question": "What is the certificate number?",
                "chatHistory": [{"role": "user", "content": "Hello"}],
                "isSummary": False,
            },
        )

        assert response.status_code == 200
        data = response.json()
        assert data["response"] == "Test answer"
        assert data["sources"] == ["caste_certificate.txt"]
        assert data["citations"][0]["chunkIndex"] == 1
        assert data["citations"][0]["pageNumber"] == 1

    def test_query_accepts_chat_ui_history(self, client, fake_provider, certificate_text):
        client.post(
            "/upload",
            files={"file": ("caste_certificate.txt", BytesIO(certificate_text.encode()), "text/plain")},
        )

        response = client.post(
            "/query",
            json={
                "question": "Who issued it?",
                "chatHistory": [
                    {"id": "1", "text": "What is the certificate number?", "isUser": True, "timestamp": "2026-01-28T10:00:00Z"},
                    {"id": "2", "text": "It is OBC-2021-04417.", "isUser": False, "timestamp": "2026-01-28T10:00:05Z"},
                ],
            },
        )

        assert response.status_code == 200
        prompt, _ = fake_provider.prompts[-1]
        assert "User: What is the certificate number?\nAssistant: It is OBC-2021-04417." in prompt

    def test_query_requires_question(self, client):
        assert client.post("/query", json={"question": ""}).status_code == 422

    def test_unexpected_error_is_generic(self, client, answer_service):
        async def explode(*args, **kwargs):
            raise RuntimeError("secret internals")

        answer_service.answer = explode

        response = client.post("/query", json={"question": "anything"})

        assert response.status_code == 500
        assert "secret" not in response.text
        assert response.json()["error"]["code"] == "INTERNAL_ERROR"


class TestSearchAPI:

    def test_search(self, client, certificate_text):
        client.post(
            "/upload",
            files={"file": ("caste_certificate.txt", BytesIO(certificate_text.encode()), "text/plain")},
        )

        response = client.get("/search", params={"q": "certificate number"})

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["query"] == "certificate number"
        assert data["total"] == 1
        assert data["results"][0]["filename"] == "caste_certificate.txt"
        assert "combinedScore" in data["results"][0]

    @pytest.mark.parametrize("params", [{}, {"q": "   "}])
    def test_search_requires_query(self, client, params):
        response = client.get("/search", params=params)
        assert response.status_code == 400
        assert response.json()["error"]["message"] == "Search query is required"


class TestDocumentsAPI:

    def test_list_documents(self, client, certificate_text, long_text):
        for name, text in [("caste_certificate.txt", certificate_text), ("report.txt", long_text)]:
            client.post("/upload", files={"file": (name, BytesIO(text.encode()), "text/plain")})

        response = client.get("/documents")

        assert response.status_code == 200
        documents = {d["filename"]: d["totalChunks"] for d in response.json()["documents"]}
        assert documents["caste_certificate.txt"] == 1
        assert documents["report.txt"] > 1


class TestHealth:

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy", "provider": "ollama", "embeddingProvider": "ollama"}
