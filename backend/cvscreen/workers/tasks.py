"""
Celery Tasks — Document Extraction

Task: process_document
  1. Reload the raw bytes from document storage by file_path
  2. Run ExtractionPipeline (mark_processing → extract → mark_processed)
  Storage read failures mark the job error immediately.

Task: fail_stale_jobs
  Beat task. Marks jobs stuck in 'processing' for longer than
  stale_job_minutes as error ("processing timed out"). Closes jobs whose
  worker or API process died mid-extraction.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Any, AsyncIterator

from celery import Task

from cvscreen.core.config import get_settings
from cvscreen.core.container import ServiceContainer, build_container
from cvscreen.core.errors import PersistenceError
from cvscreen.services.sweeper import fail_stale_jobs as sweep_stale_jobs
from cvscreen.workers.celery_app import celery_app

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Async task helper
# Run async coroutines inside Celery's synchronous task context.
# ---------------------------------------------------------------------------

def run_async(coro):
    """Execute an async coroutine from a synchronous Celery task (no running loop)."""
    return asyncio.run(coro)


@asynccontextmanager
async def worker_services() -> AsyncIterator[ServiceContainer]:
    """Per-task container; the async engine is bound to the task's event loop."""
    services = build_container(get_settings())
    try:
        yield services
    finally:
        await services.engine.dispose()


# ---------------------------------------------------------------------------
# Main processing task
# ---------------------------------------------------------------------------

@celery_app.task(
    name="cvscreen.workers.tasks.process_document",
    bind=True,
    acks_late=True,
    reject_on_worker_lost=True,
    soft_time_limit=270,
    time_limit=330,
)
def process_document(
    self: Task,
    *,
    job_id:       str,
    file_path:    str,
    content_type: str,
    filename:     str,
) -> dict[str, Any]:
    return run_async(
        process_document_async(uuid.UUID(job_id), file_path, content_type, filename)
    )


async def process_document_async(
    job_id:       uuid.UUID,
    file_path:    str,
    content_type: str,
    filename:     str,
    services:     ServiceContainer | None = None,
) -> dict[str, Any]:
    if services is None:
        async with worker_services() as owned:
            return await process_document_async(job_id, file_path, content_type, filename, owned)

    logger.info("Processing | job=%s file=%s", job_id, file_path)
    try:
        data = await services.storage.load(file_path)
    except PersistenceError as exc:
        await services.pipeline.fail(job_id, f"Stored document could not be read: {exc.message}")
        return {"job_id": str(job_id), "status": "error"}

    await services.pipeline.run(job_id, data, content_type, filename)
    job = await services.store.get(job_id)
    return {"job_id": str(job_id), "status": job.status.value}


# ---------------------------------------------------------------------------
# Stale-job sweeper: runs every 60 seconds via Celery Beat
# ---------------------------------------------------------------------------

@celery_app.task(
    name="cvscreen.workers.tasks.fail_stale_jobs",
    acks_late=True,
    soft_time_limit=55,
    time_limit=60,
)
def fail_stale_jobs() -> dict[str, int]:
    return run_async(fail_stale_jobs_async())


async def fail_stale_jobs_async(services: ServiceContainer | None = None) -> dict[str, int]:
    if services is None:
        async with worker_services() as owned:
            return await fail_stale_jobs_async(owned)

    return await sweep_stale_jobs(
        services.store, timedelta(minutes=services.settings.stale_job_minutes),
    )
