"""
Document API — Pydantic Request/Response Schemas

Covers:
  - POST /api/v1/documents/upload      (JSON body, base64 file data)
  - POST /api/v1/documents/upload/form (multipart; response only)
  - GET  /api/v1/documents/{id}/status
  - GET  /api/v1/documents/{id}
  - The uniform error envelope for every 4xx/5xx response

Wire format is camelCase (contentType, fileData, processedText …); the
models accept snake_case too so Python callers can construct them directly.
"""

from __future__ import annotations

import base64
import binascii
from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from cvscreen.core.errors import ScreeningError
from cvscreen.models.documents import JobStatus
from cvscreen.services.job_store import DocumentJob

__all__ = [
    "JobStatus",
    "CamelModel",
    "DocumentUploadRequest",
    "UploadedDocument",
    "DocumentUploadResponse",
    "DocumentStatusResponse",
    "DocumentDetailResponse",
    "ErrorDetail",
    "ErrorResponse",
    "ApiErrors",
]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Upload request: JSON body
# ---------------------------------------------------------------------------

class DocumentUploadRequest(CamelModel):
    """
    {"filename": "cv.pdf", "contentType": "application/pdf", "fileData": "<base64>"}

    fileData may be a bare base64 string or a data URL
    ("data:application/pdf;base64,....").
    """
    filename:     str = Field(..., min_length=1, max_length=255)
    content_type: str = Field(..., min_length=1)
    file_data:    str = Field(..., min_length=1)

    @field_validator("filename", "content_type")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value

    def decode_file(self) -> bytes:
        """Raises ValueError on malformed base64."""
        payload = self.file_data
        if payload.startswith("data:") and "," in payload:
            payload = payload.split(",", 1)[1]
        try:
            return base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise ValueError(f"fileData is not valid base64: {exc}") from exc


# ---------------------------------------------------------------------------
# Upload success response
# ---------------------------------------------------------------------------

class UploadedDocument(CamelModel):
    id:       UUID
    filename: str
    status:   JobStatus = JobStatus.PROCESSING


class DocumentUploadResponse(CamelModel):
    """
    Returned immediately after the job is created. Extraction continues in
    the background; poll /documents/{id}/status for the outcome.
    """
    success:  bool = True
    document: UploadedDocument


# ---------------------------------------------------------------------------
# Status + detail responses
# ---------------------------------------------------------------------------

class DocumentStatusResponse(CamelModel):
    """Polled by clients to track background extraction."""
    status:         JobStatus
    processed_text: Optional[str]      = None
    error:          Optional[str]      = None
    processed_at:   Optional[datetime] = None

    @classmethod
    def from_job(cls, job: DocumentJob) -> "DocumentStatusResponse":
        return cls(
            status=job.status,
            processed_text=job.processed_text,
            error=job.error,
            processed_at=job.processed_at,
        )


class DocumentDetailResponse(CamelModel):
    id:             UUID
    filename:       str
    content_type:   str
    file_path:      str
    status:         JobStatus
    processed_text: Optional[str]      = None
    error:          Optional[str]      = None
    processed_at:   Optional[datetime] = None
    created_at:     Optional[datetime] = None
    updated_at:     Optional[datetime] = None

    @classmethod
    def from_job(cls, job: DocumentJob) -> "DocumentDetailResponse":
        return cls(
            id=job.id,
            filename=job.filename,
            content_type=job.content_type,
            file_path=job.file_path,
            status=job.status,
            processed_text=job.processed_text,
            error=job.error,
            processed_at=job.processed_at,
            created_at=job.created_at,
            updated_at=job.updated_at,
        )


# ---------------------------------------------------------------------------
# Structured error bodies
# ---------------------------------------------------------------------------

class ErrorDetail(BaseModel):
    """Single structured error; may appear in a list."""
    field:   str | None = Field(None, description="Request field that caused the error, if applicable")
    message: str


class ErrorResponse(BaseModel):
    """
    Uniform error envelope for all 4xx/5xx responses.
    Clients should check `error_code` for programmatic handling.
    """
    error:      str               = Field(..., description="Human-readable summary")
    error_code: str               = Field(..., description="Stable machine-readable code")
    request_id: str | None        = Field(None, description="Trace ID for log correlation")
    details:    list[ErrorDetail] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Pre-defined error factories (keeps route handlers thin)
# ---------------------------------------------------------------------------

class ApiErrors:
    """Factories for every documented error case."""

    @staticmethod
    def from_exception(exc: ScreeningError, request_id: str | None = None) -> ErrorResponse:
        details = []
        field = getattr(exc, "field", None)
        if field:
            details.append(ErrorDetail(field=field, message=exc.message))
        return ErrorResponse(
            error=exc.message,
            error_code=exc.error_code,
            request_id=request_id,
            details=details,
        )

    @staticmethod
    def validation_error(
        errors:     list[dict],
        request_id: str | None = None,
    ) -> ErrorResponse:
        details = [
            ErrorDetail(
                field=".".join(str(p) for p in err.get("loc", ()) if p != "body") or None,
                message=err.get("msg", "invalid value"),
            )
            for err in errors
        ]
        summary = details[0].message if details else "Invalid request"
        if details and details[0].field:
            summary = f"{details[0].field}: {summary}"
        return ErrorResponse(
            error=summary,
            error_code="INVALID_INPUT",
            request_id=request_id,
            details=details,
        )

    @staticmethod
    def internal_error(request_id: str | None = None) -> ErrorResponse:
        return ErrorResponse(
            error="An unexpected error occurred.",
            error_code="INTERNAL_ERROR",
            request_id=request_id,
        )

