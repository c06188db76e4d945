"""
Document API Router

  POST /api/v1/documents/upload        JSON body, base64 file data
  POST /api/v1/documents/upload/form   multipart file upload
  GET  /api/v1/documents/{id}/status   poll background extraction
  GET  /api/v1/documents/{id}          full job record

Request lifecycle (upload):
  ┌─────────────────────────────────────────────────────────┐
  │ 1. Body validation (pydantic) + base64 decode            │
  │ 2. UploadOrchestrator.submit                             │
  │      validate → file path → job row (processing)         │
  │      → background dispatch                               │
  │ 3. 200 {"success": true, "document": {id, filename,      │
  │         status: "processing"}}                           │
  └─────────────────────────────────────────────────────────┘

Errors are raised as ScreeningError subclasses; the handlers in
cvscreen.main turn them into the uniform ErrorResponse envelope.
"""

from __future__ import annotations

import logging
from uuid import UUID

from fastapi import APIRouter, File, UploadFile, status
from fastapi.responses import JSONResponse

from cvscreen.api.dependencies import JobStore, Orchestrator
from cvscreen.core.errors import InvalidInput
from cvscreen.schemas.documents import (
    DocumentDetailResponse,
    DocumentStatusResponse,
    DocumentUploadRequest,
    DocumentUploadResponse,
    ErrorResponse,
    UploadedDocument,
)
from cvscreen.services.orchestrator import UploadOrchestrator, UploadResult

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/documents", tags=["Documents"])

_READ_CHUNK_BYTES = 1024 * 1024

_UPLOAD_RESPONSES = {
    200: {"model": DocumentUploadResponse, "description": "Job created; extraction runs in the background"},
    400: {"model": ErrorResponse, "description": "Missing fields, bad base64, empty or oversized file"},
    503: {"model": ErrorResponse, "description": "Job store or storage unavailable"},
    500: {"model": ErrorResponse, "description": "Internal server error"},
}


def _upload_response(result: UploadResult) -> JSONResponse:
    body = DocumentUploadResponse(
        document=UploadedDocument(id=result.id, filename=result.filename, status=result.status),
    )
    return JSONResponse(
        status_code=status.HTTP_200_OK,
        content=body.model_dump(mode="json", by_alias=True),
        headers={
            "X-Document-ID": str(result.id),
            "Location":      f"/api/v1/documents/{result.id}/status",
        },
    )


# ---------------------------------------------------------------------------
# POST /documents/upload
# ---------------------------------------------------------------------------

@router.post(
    "/upload",
    response_model=DocumentUploadResponse,
    summary="Upload a CV for text extraction",
    description=(
        "Accepts PDF, DOCX, TXT/MD and common image formats up to 15 MB as base64. "
        "Returns immediately; poll GET /documents/{id}/status for the outcome."
    ),
    responses=_UPLOAD_RESPONSES,
)
async def upload_document(
    payload:      DocumentUploadRequest,
    orchestrator: Orchestrator,
) -> JSONResponse:
    try:
        data = payload.decode_file()
    except ValueError as exc:
        raise InvalidInput(str(exc), field="fileData") from exc

    result = await orchestrator.submit(payload.filename, payload.content_type, data)
    return _upload_response(result)


# ---------------------------------------------------------------------------
# POST /documents/upload/form
# ---------------------------------------------------------------------------

@router.post(
    "/upload/form",
    response_model=DocumentUploadResponse,
    summary="Upload a CV as multipart/form-data",
    responses=_UPLOAD_RESPONSES,
)
async def upload_document_form(
    orchestrator: Orchestrator,
    file:         UploadFile = File(..., description="CV file (PDF, DOCX, TXT, PNG, JPEG, max 15 MB)"),
) -> JSONResponse:
    if not file.filename:
        raise InvalidInput("No file was provided in the request.", field="file")

    data = await read_upload(file, orchestrator)
    result = await orchestrator.submit(
        file.filename,
        file.content_type or "application/octet-stream",
        data,
    )
    return _upload_response(result)


async def read_upload(file: UploadFile, orchestrator: UploadOrchestrator) -> bytes:
    """Read the upload in chunks, stopping as soon as it passes the size limit."""
    if file.size is not None:
        orchestrator.check_size(file.size, field="file")

    chunks: list[bytes] = []
    received = 0
    while True:
        chunk = await file.read(_READ_CHUNK_BYTES)
        if not chunk:
            break
        received += len(chunk)
        orchestrator.check_size(received, field="file")
        chunks.append(chunk)
    return b"".join(chunks)


# ---------------------------------------------------------------------------
# GET /documents/{document_id}/status
# ---------------------------------------------------------------------------

@router.get(
    "/{document_id}/status",
    response_model=DocumentStatusResponse,
    response_model_by_alias=True,
    response_model_exclude_none=True,
    summary="Poll background extraction status",
    responses={
        200: {"model": DocumentStatusResponse},
        404: {"model": ErrorResponse},
    },
)
async def get_document_status(document_id: UUID, store: JobStore) -> DocumentStatusResponse:
    job = await store.get(document_id)
    return DocumentStatusResponse.from_job(job)


# ---------------------------------------------------------------------------
# GET /documents/{document_id}
# ---------------------------------------------------------------------------

@router.get(
    "/{document_id}",
    response_model=DocumentDetailResponse,
    response_model_by_alias=True,
    summary="Full document job record",
    responses={
        200: {"model": DocumentDetailResponse},
        404: {"model": ErrorResponse},
    },
)
async def get_document(document_id: UUID, store: JobStore) -> DocumentDetailResponse:
    job = await store.get(document_id)
    return DocumentDetailResponse.from_job(job)
