"""
Extraction Pipeline — background half of an upload
══════════════════════════════════════════════════

  mark_processing → TextExtractor.extract → mark_processed(text)
                          │
                          └── any failure → mark_error(reason)

run() never raises, except to propagate cancellation. Every exit path either
records a terminal status or logs at CRITICAL, in which case the stale-job
sweeper closes the job later. A cancelled run (shutdown drain timeout) is
marked error before the cancellation propagates.
"""

from __future__ import annotations

import asyncio
import logging
from uuid import UUID

from cvscreen.core.errors import (
    InvalidTransition,
    JobNotFound,
    OcrFailure,
    PersistenceError,
    UnsupportedFormat,
)
from cvscreen.processing.extractor import TextExtractor
from cvscreen.services.job_store import DocumentJobStore

logger = logging.getLogger(__name__)

_MAX_REASON_CHARS = 1000

INTERRUPTED_REASON = "processing interrupted by shutdown"


def describe_failure(exc: BaseException) -> str:
    """Human-readable reason stored on the job row."""
    if isinstance(exc, UnsupportedFormat):
        reason = exc.message
    elif isinstance(exc, OcrFailure):
        reason = f"OCR failed: {exc}"
    elif isinstance(exc, PersistenceError):
        reason = exc.message
    else:
        reason = f"Unexpected extraction error: {type(exc).__name__}: {exc}"
    return reason[:_MAX_REASON_CHARS]


class ExtractionPipeline:
    """Shared by every job; holds no per-job state."""

    def __init__(self, store: DocumentJobStore, extractor: TextExtractor) -> None:
        self._store     = store
        self._extractor = extractor

    async def run(
        self,
        job_id:       UUID,
        data:         bytes,
        content_type: str,
        filename:     str,
    ) -> None:
        try:
            await self._run(job_id, data, content_type, filename)
        except asyncio.CancelledError:
            logger.warning("Pipeline cancelled | job=%s", job_id)
            await asyncio.shield(self.fail(job_id, INTERRUPTED_REASON))
            raise
        except Exception as exc:
            logger.exception("Pipeline crashed | job=%s", job_id)
            await self.fail(job_id, describe_failure(exc))

    async def _run(
        self,
        job_id:       UUID,
        data:         bytes,
        content_type: str,
        filename:     str,
    ) -> None:
        try:
            await self._store.mark_processing(job_id)
        except (JobNotFound, InvalidTransition) as exc:
            logger.warning("Job not runnable, skipping | job=%s reason=%s", job_id, exc.message)
            return

        def _log_retry(attempt: int, exc: BaseException) -> None:
            logger.info("Job retrying | job=%s attempt=%d error=%s", job_id, attempt, exc)

        try:
            result = await self._extractor.extract(
                data, content_type, filename, on_retry=_log_retry,
            )
        except Exception as exc:
            logger.error("Extraction failed | job=%s error=%s", job_id, exc)
            await self.fail(job_id, describe_failure(exc))
            return

        if result.degraded or result.low_yield or not result.text_found:
            logger.warning(
                "Extraction quality | job=%s degraded=%s low_yield=%s text_found=%s",
                job_id, result.degraded, result.low_yield, result.text_found,
            )

        try:
            await self._store.mark_processed(job_id, result.text)
        except PersistenceError as exc:
            logger.error(
                "Failed to persist extracted text | job=%s chars=%d error=%s",
                job_id, len(result.text), exc.message,
            )
            await self.fail(job_id, f"failed to persist extracted text: {exc.message}")
        except (JobNotFound, InvalidTransition) as exc:
            logger.warning("Job closed before completion | job=%s reason=%s", job_id, exc.message)

    async def fail(self, job_id: UUID, reason: str) -> None:
        """Best-effort terminal error; never raises."""
        try:
            await self._store.mark_error(job_id, reason)
        except (JobNotFound, InvalidTransition) as exc:
            logger.warning("Could not mark job failed | job=%s reason=%s", job_id, exc.message)
        except Exception:
            logger.critical(
                "Job left in processing state | job=%s reason=%s", job_id, reason,
                exc_info=True,
            )
