"""
Upload Orchestrator

Synchronous half of an upload:
  1. Validate filename, content type and bytes (size ceiling included)
  2. Build a collision-resistant file path from the sanitized name
  3. Optionally persist the bytes to document storage
  4. Insert the job row with status=processing
  5. Hand the job to the dispatcher (returns without waiting)
  6. Return {id, filename, status: processing}

Invariants enforced here:
  - Validation failures raise InvalidInput before any job exists.
  - A job whose dispatch fails is marked error immediately, so no job is
    ever left in processing with nothing working on it.
  - Unsupported content types are accepted here and fail in the background
    with a terminal error status.
"""

from __future__ import annotations

import logging
import re
import uuid
from dataclasses import dataclass

from cvscreen.core.errors import InvalidInput, PersistenceError
from cvscreen.models.documents import JobStatus
from cvscreen.services.dispatch import JobDispatcher
from cvscreen.services.job_store import DocumentJobStore
from cvscreen.storage.local import LocalDocumentStorage

logger = logging.getLogger(__name__)

MAX_UPLOAD_BYTES = 15 * 1024 * 1024   # 15 MB

_MAX_STEM_CHARS = 120


# ---------------------------------------------------------------------------
# File path helpers
# ---------------------------------------------------------------------------

def get_extension(filename: str) -> str:
    """Return lowercased file extension including the dot."""
    parts = filename.rsplit(".", 1)
    return f".{parts[-1].lower()}" if len(parts) == 2 and parts[0] else ""


def sanitize_filename(filename: str) -> str:
    """
    Strip path components and replace unsafe characters.
    Returns only the basename with OS-safe characters.
    """
    basename = filename.replace("\\", "/").rsplit("/", 1)[-1]
    safe = re.sub(r"[^a-zA-Z0-9._\-]", "_", basename).strip("._") or "upload"
    if len(safe) > 200:
        ext  = get_extension(safe)
        safe = safe[: 200 - len(ext)] + ext
    return safe


def build_file_path(filename: str) -> str:
    """<sanitized stem>_<uuid4 hex><lowercased extension>, unique per call."""
    safe = sanitize_filename(filename)
    ext  = get_extension(safe)
    stem = safe[: -len(ext)] if ext else safe
    stem = stem[:_MAX_STEM_CHARS] or "upload"
    return f"{stem}_{uuid.uuid4().hex}{ext}"


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class UploadResult:
    id:        uuid.UUID
    filename:  str
    status:    JobStatus
    file_path: str


class UploadOrchestrator:
    """
    Stateless service object shared by all requests.
    All dependencies are injected (testable, no hidden globals).
    """

    def __init__(
        self,
        store:          DocumentJobStore,
        dispatcher:     JobDispatcher,
        storage:        LocalDocumentStorage | None = None,
        max_file_bytes: int = MAX_UPLOAD_BYTES,
    ) -> None:
        self._store      = store
        self._dispatcher = dispatcher
        self._storage    = storage
        self._max_bytes  = max_file_bytes

    @property
    def max_file_bytes(self) -> int:
        return self._max_bytes

    def check_size(self, size: int, field: str = "fileData") -> None:
        if size > self._max_bytes:
            max_mb = self._max_bytes // (1024 * 1024)
            raise InvalidInput(
                f"File exceeds the {max_mb} MB limit ({size:,} bytes received)",
                field=field,
            )

    async def submit(self, filename: str, content_type: str, data: bytes) -> UploadResult:
        filename, content_type = self._validate(filename, content_type, data)
        file_path = build_file_path(filename)

        logger.info(
            "Upload start | file=%s content_type=%s size=%d path=%s",
            filename, content_type, len(data), file_path,
        )

        if self._storage is not None:
            await self._storage.save(file_path, data)

        job = await self._store.create(
            filename=filename,
            content_type=content_type,
            file_path=file_path,
            status=JobStatus.PROCESSING,
        )

        try:
            await self._dispatcher.dispatch(job, data)
        except Exception as exc:
            logger.error("Failed to schedule extraction | job=%s error=%s", job.id, exc)
            await self._store.mark_error(job.id, f"Failed to schedule processing: {exc}")
            raise PersistenceError("Document was stored but could not be scheduled for processing") from exc

        return UploadResult(
            id=job.id,
            filename=job.filename,
            status=JobStatus.PROCESSING,
            file_path=file_path,
        )

    def _validate(self, filename: str, content_type: str, data: bytes) -> tuple[str, str]:
        filename     = (filename or "").strip()
        content_type = (content_type or "").strip().lower()

        if not filename:
            raise InvalidInput("filename is required", field="filename")
        if len(filename) > 255:
            raise InvalidInput("filename must be at most 255 characters", field="filename")
        if not content_type:
            raise InvalidInput("contentType is required", field="contentType")
        if not data:
            raise InvalidInput("file data is empty", field="fileData")
        self.check_size(len(data))
        return filename, content_type
