"""
Domain exceptions for the screening service.

Every exception carries a stable machine-readable ``error_code`` and the HTTP
status the API layer maps it to. Route handlers never build error bodies by
hand; the exception handlers in cvscreen.main turn these into ErrorResponse.

Taxonomy:
  InvalidInput                 400  rejected before any job is created
  UnsupportedFormat            415  no extraction strategy for the content type
  NativeExtractionInsufficient  -   internal signal, triggers OCR fallback
  OcrFailure                   502  auth/recognition failure after retries
  PersistenceError             503  job store or file storage unreachable
  JobNotFound                  404
  InvalidTransition            409  status change on an already-terminal job
  PollTimeout                   -   poller gave up waiting (outcome unknown)
  ScoringFailure               502  LLM scoring call failed after retries
"""

from __future__ import annotations

from uuid import UUID


class ScreeningError(Exception):
    """Base class for all service errors."""

    error_code:  str = "INTERNAL_ERROR"
    http_status: int = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class InvalidInput(ScreeningError):
    error_code  = "INVALID_INPUT"
    http_status = 400

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field


class UnsupportedFormat(ScreeningError):
    error_code  = "UNSUPPORTED_FORMAT"
    http_status = 415

    def __init__(self, content_type: str, filename: str = "", hint: str = "") -> None:
        super().__init__(
            f"Unsupported file format '{content_type or 'unknown'}'"
            + (f" for '{filename}'" if filename else "")
            + (f": {hint}" if hint else "")
        )
        self.content_type = content_type
        self.filename     = filename


class NativeExtractionInsufficient(ScreeningError):
    """
    Raised inside the extractor when the native text layer is too thin.
    Always caught there and converted into an OCR fallback; never persisted.
    """
    error_code = "NATIVE_EXTRACTION_INSUFFICIENT"

    def __init__(self, total_chars: int, threshold: int) -> None:
        super().__init__(
            f"Native extraction yielded {total_chars} chars (< {threshold})"
        )
        self.total_chars = total_chars
        self.threshold   = threshold


class OcrFailure(ScreeningError):
    """Remote OCR or token exchange failed; upstream status/body are preserved."""

    error_code  = "OCR_FAILURE"
    http_status = 502

    def __init__(
        self,
        message:     str,
        status_code: int | None = None,
        detail:      str | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.detail      = detail

    def __str__(self) -> str:
        parts = [self.message]
        if self.status_code is not None:
            parts.append(f"status={self.status_code}")
        if self.detail:
            parts.append(self.detail)
        return " | ".join(parts)


class PersistenceError(ScreeningError):
    error_code  = "PERSISTENCE_ERROR"
    http_status = 503


class JobNotFound(ScreeningError):
    error_code  = "DOCUMENT_NOT_FOUND"
    http_status = 404

    def __init__(self, job_id: UUID | str) -> None:
        super().__init__(f"Document '{job_id}' was not found")
        self.job_id = job_id


class InvalidTransition(ScreeningError):
    error_code  = "INVALID_TRANSITION"
    http_status = 409

    def __init__(self, job_id: UUID | str, current: str, target: str) -> None:
        super().__init__(
            f"Document '{job_id}' cannot move from '{current}' to '{target}'"
        )
        self.job_id  = job_id
        self.current = current
        self.target  = target


class PollTimeout(ScreeningError):
    """The job may still finish; the caller simply stopped waiting."""

    error_code  = "POLL_TIMEOUT"
    http_status = 504

    def __init__(self, job_id: UUID | str, attempts: int) -> None:
        super().__init__(
            f"Document '{job_id}' did not reach a terminal state after {attempts} polls"
        )
        self.job_id   = job_id
        self.attempts = attempts


class ScoringFailure(ScreeningError):
    """The LLM scoring call failed after retries."""

    error_code  = "SCORING_FAILURE"
    http_status = 502
