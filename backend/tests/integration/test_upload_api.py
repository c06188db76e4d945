"""
Integration Tests — Document + analysis API
═══════════════════════════════════════════
These tests exercise the FULL FastAPI routing stack, including:
  - JSON (base64) and multipart upload parsing
  - Dependency injection via the service container on app.state
  - Background extraction on the in-process supervisor
  - Response status codes, camelCase bodies and the error envelope
  - Header assertions (X-Document-ID, Location, X-Request-ID)
  - Status polling through JobPoller + HttpJobStatusClient

What is mocked vs real
──────────────────────
  ✅ Real: FastAPI routing, pydantic validation, UploadOrchestrator,
           DocumentJobStore on SQLite, ExtractionPipeline, PyMuPDF,
           python-docx, JobPoller
  🔲 Mock: Google Vision      (fake_ocr fixture)
  🔲 Mock: OpenAI scoring     (mock_scorer fixture)

How to run
──────────
  pytest -m integration tests/integration/test_upload_api.py -v
"""

from __future__ import annotations

import base64
import uuid

import pytest
from httpx import AsyncClient

from cvscreen.core.errors import InvalidInput
from cvscreen.core.retry import RetryPolicy
from cvscreen.services.poller import HttpJobStatusClient, JobPoller, JobStatusView
from tests.conftest import OCR_IMAGE_TEXT

DOCX = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────

def _upload_body(filename: str, content_type: str, data: bytes) -> dict:
    return {
        "filename":    filename,
        "contentType": content_type,
        "fileData":    base64.b64encode(data).decode(),
    }


async def _upload(client: AsyncClient, filename: str, content_type: str, data: bytes) -> str:
    resp = await client.post(
        "/api/v1/documents/upload",
        json=_upload_body(filename, content_type, data),
    )
    assert resp.status_code == 200, resp.text
    return resp.json()["document"]["id"]


async def _wait(client: AsyncClient, document_id: str) -> JobStatusView:
    poller = JobPoller(
        HttpJobStatusClient("http://test", http_client=client),
        interval=0.05,
        max_attempts=200,
        retry_policy=RetryPolicy(max_retries=3, base_delay=0.0, max_delay=0.0, jitter=0.0),
    )
    return await poller.wait_for(document_id)


# ─────────────────────────────────────────────────────────────────────────────
# POST /documents/upload
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.integration
class TestUploadEndpoint:

    async def test_upload_returns_processing_immediately(self, async_client, native_pdf_bytes):
        resp = await async_client.post(
            "/api/v1/documents/upload",
            json=_upload_body("jane_doe.pdf", "application/pdf", native_pdf_bytes),
        )

        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is True
        assert body["document"]["filename"] == "jane_doe.pdf"
        assert body["document"]["status"] == "processing"
        uuid.UUID(body["document"]["id"])

    async def test_response_headers(self, async_client, sample_txt_bytes):
        resp = await async_client.post(
            "/api/v1/documents/upload",
            json=_upload_body("cv.txt", "text/plain", sample_txt_bytes),
            headers={"X-Request-ID": "req-123"},
        )

        document_id = resp.json()["document"]["id"]
        assert resp.headers["X-Document-ID"] == document_id
        assert resp.headers["Location"] == f"/api/v1/documents/{document_id}/status"
        assert resp.headers["X-Request-ID"] == "req-123"

    async def test_data_url_prefix_accepted(self, async_client, sample_txt_bytes):
        body = _upload_body("cv.txt", "text/plain", sample_txt_bytes)
        body["fileData"] = "data:text/plain;base64," + body["fileData"]

        resp = await async_client.post("/api/v1/documents/upload", json=body)

        assert resp.status_code == 200

    async def test_invalid_base64_returns_400(self, async_client):
        resp = await async_client.post(
            "/api/v1/documents/upload",
            json={"filename": "cv.pdf", "contentType": "application/pdf", "fileData": "not base64!!"},
        )

        assert resp.status_code == 400
        body = resp.json()
        assert body["error_code"] == "INVALID_INPUT"
        assert body["details"][0]["field"] == "fileData"

    @pytest.mark.parametrize("missing", ["filename", "contentType", "fileData"])
    async def test_missing_field_returns_400(self, async_client, sample_txt_bytes, missing):
        body = _upload_body("cv.txt", "text/plain", sample_txt_bytes)
        del body[missing]

        resp = await async_client.post("/api/v1/documents/upload", json=body)

        assert resp.status_code == 400
        error = resp.json()
        assert error["error_code"] == "INVALID_INPUT"
        assert any(d["field"] == missing for d in error["details"])

    async def test_blank_filename_returns_400(self, async_client, sample_txt_bytes):
        resp = await async_client.post(
            "/api/v1/documents/upload",
            json=_upload_body("   ", "text/plain", sample_txt_bytes),
        )
        assert resp.status_code == 400

    async def test_empty_file_returns_400(self, async_client):
        resp = await async_client.post(
            "/api/v1/documents/upload",
            json={"filename": "cv.pdf", "contentType": "application/pdf", "fileData": "===="},
        )
        assert resp.status_code == 400
        assert resp.json()["error_code"] == "INVALID_INPUT"

    async def test_error_envelope_carries_request_id(self, async_client):
        resp = await async_client.post(
            "/api/v1/documents/upload",
            json={},
            headers={"X-Request-ID": "req-err-1"},
        )

        body = resp.json()
        assert set(body) == {"error", "error_code", "request_id", "details"}
        assert body["request_id"] == "req-err-1"


# ─────────────────────────────────────────────────────────────────────────────
# POST /documents/upload/form
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.integration
class TestFormUploadEndpoint:

    async def test_multipart_upload(self, async_client, sample_docx_bytes):
        resp = await async_client.post(
            "/api/v1/documents/upload/form",
            files={"file": ("jane_doe.docx", sample_docx_bytes, DOCX)},
        )

        assert resp.status_code == 200
        assert resp.json()["document"]["status"] == "processing"

        view = await _wait(async_client, resp.json()["document"]["id"])
        assert view.status.value == "processed"
        assert view.processed_text.startswith("Jane Doe")

    async def test_missing_file_field(self, async_client):
        resp = await async_client.post("/api/v1/documents/upload/form", data={"other": "x"})

        assert resp.status_code == 400
        assert resp.json()["error_code"] == "INVALID_INPUT"


# ─────────────────────────────────────────────────────────────────────────────
# Background extraction, observed through the status endpoint
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.integration
class TestExtractionEndToEnd:

    async def test_native_pdf_processed_without_ocr(self, async_client, native_pdf_bytes, fake_ocr):
        document_id = await _upload(async_client, "jane_doe.pdf", "application/pdf", native_pdf_bytes)

        view = await _wait(async_client, document_id)

        assert view.status.value == "processed"
        assert "Jane Doe" in view.processed_text
        fake_ocr.recognize.assert_not_awaited()
        fake_ocr.recognize_pages.assert_not_awaited()

    async def test_scanned_pdf_processed_with_ocr(self, async_client, scanned_pdf_bytes, fake_ocr):
        document_id = await _upload(async_client, "scan.pdf", "application/pdf", scanned_pdf_bytes)

        view = await _wait(async_client, document_id)

        assert view.status.value == "processed"
        assert view.processed_text == "OCR page 1\n\nOCR page 2"
        assert len(fake_ocr.recognize_pages.await_args.args[0]) == 2

    async def test_image_processed_with_ocr(self, async_client, sample_png_bytes):
        document_id = await _upload(async_client, "cv.png", "image/png", sample_png_bytes)

        view = await _wait(async_client, document_id)

        assert view.processed_text == OCR_IMAGE_TEXT

    async def test_unsupported_format_ends_in_error(self, async_client):
        document_id = await _upload(async_client, "cv.zip", "application/zip", b"PK\x03\x04")

        view = await _wait(async_client, document_id)

        assert view.status.value == "error"
        assert "Unsupported file format" in view.error

    async def test_status_body_is_camel_case(self, async_client, sample_txt_bytes):
        document_id = await _upload(async_client, "cv.txt", "text/plain", sample_txt_bytes)
        await _wait(async_client, document_id)

        resp = await async_client.get(f"/api/v1/documents/{document_id}/status")

        body = resp.json()
        assert body["status"] == "processed"
        assert "processedText" in body
        assert "processedAt" in body
        assert "error" not in body

    async def test_document_detail(self, async_client, sample_txt_bytes):
        document_id = await _upload(async_client, "cv.txt", "text/plain", sample_txt_bytes)
        await _wait(async_client, document_id)

        resp = await async_client.get(f"/api/v1/documents/{document_id}")

        assert resp.status_code == 200
        body = resp.json()
        assert body["id"] == document_id
        assert body["contentType"] == "text/plain"
        assert body["filePath"].startswith("cv_")
        assert body["filePath"].endswith(".txt")


# ─────────────────────────────────────────────────────────────────────────────
# GET /documents/{id}/status errors
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.integration
class TestStatusEndpoint:

    async def test_unknown_document_returns_404(self, async_client):
        resp = await async_client.get(f"/api/v1/documents/{uuid.uuid4()}/status")

        assert resp.status_code == 404
        assert resp.json()["error_code"] == "DOCUMENT_NOT_FOUND"

    async def test_invalid_uuid_returns_400(self, async_client):
        resp = await async_client.get("/api/v1/documents/not-a-uuid/status")

        assert resp.status_code == 400
        assert resp.json()["error_code"] == "INVALID_INPUT"


# ─────────────────────────────────────────────────────────────────────────────
# POST /analysis
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.integration
class TestAnalysisEndpoint:

    async def test_analysis_returns_camel_case(self, async_client, mock_scorer):
        resp = await async_client.post(
            "/api/v1/analysis",
            json={
                "cvText": "Jane Doe, Python developer",
                "requirements": {"title": "Backend Engineer", "skills": ["Python", "Go"]},
            },
        )

        assert resp.status_code == 200
        body = resp.json()
        assert body["matchPercentage"] == 85
        assert body["skillsMissing"] == ["Go"]

        cv_text, requirements = mock_scorer.score.await_args.args
        assert cv_text == "Jane Doe, Python developer"
        assert requirements.skills == ["Python", "Go"]

    async def test_scorer_validation_error_returns_400(self, async_client, mock_scorer):
        mock_scorer.score.side_effect = InvalidInput("No CV text was provided", field="cvText")

        resp = await async_client.post("/api/v1/analysis", json={"cvText": ""})

        assert resp.status_code == 400
        assert resp.json()["details"][0]["field"] == "cvText"


# ─────────────────────────────────────────────────────────────────────────────
# Operations endpoints
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.integration
class TestOperationsEndpoints:

    async def test_health(self, async_client):
        resp = await async_client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "ok"

    async def test_ready(self, async_client):
        resp = await async_client.get("/ready")
        assert resp.status_code == 200
        assert resp.json()["database"]["status"] == "ok"
