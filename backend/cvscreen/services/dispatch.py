"""
Job dispatchers — hand an accepted upload to background execution.

  InProcessDispatcher : schedules the pipeline on this process's event loop
  CeleryDispatcher    : publishes a task to the Celery broker; the worker
                        reloads the bytes from storage by file_path

Injected into UploadOrchestrator so either can be mocked in tests.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol

from cvscreen.services.job_store import DocumentJob
from cvscreen.services.pipeline import ExtractionPipeline
from cvscreen.services.supervisor import BackgroundTaskSupervisor

logger = logging.getLogger(__name__)


class JobDispatcher(Protocol):
    async def dispatch(self, job: DocumentJob, data: bytes) -> None: ...


class InProcessDispatcher:

    def __init__(self, supervisor: BackgroundTaskSupervisor, pipeline: ExtractionPipeline) -> None:
        self._supervisor = supervisor
        self._pipeline   = pipeline

    async def dispatch(self, job: DocumentJob, data: bytes) -> None:
        self._supervisor.spawn(
            self._pipeline.run(job.id, data, job.content_type, job.filename),
            name=f"extract-{job.id}",
        )
        logger.info("Job scheduled in-process | job=%s", job.id)


class CeleryDispatcher:
    """
    Sends the document processing task to the Celery broker.
    Import is deferred so the broker connection is not required at module load time.
    Only identifiers travel through the broker, never file bytes.
    """

    async def dispatch(self, job: DocumentJob, data: bytes) -> None:
        from cvscreen.workers.tasks import process_document

        loop = asyncio.get_running_loop()
        await loop.run_in_executor(
            None,
            lambda: process_document.apply_async(
                kwargs={
                    "job_id":       str(job.id),
                    "file_path":    job.file_path,
                    "content_type": job.content_type,
                    "filename":     job.filename,
                },
            ),
        )
        logger.info("Job published to Celery | job=%s file=%s", job.id, job.file_path)
