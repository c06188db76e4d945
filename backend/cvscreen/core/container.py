"""
Service container — the single place Settings become wired services.

  Settings ─► engine + session factory ─► DocumentJobStore
           ─► ServiceAccountTokenProvider ─► GoogleVisionOCR ─► TextExtractor
           ─► ExtractionPipeline + BackgroundTaskSupervisor ─► dispatcher
           ─► UploadOrchestrator, CvScorer
           ─► StaleJobSweeper (inprocess backend), JobPoller on demand

Used by the FastAPI lifespan and the Celery worker. Everything below this
layer takes plain constructor arguments and never reads Settings.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from cvscreen.auth.service_account import ServiceAccountInfo, ServiceAccountTokenProvider
from cvscreen.core.config import Settings
from cvscreen.core.retry import RetryPolicy
from cvscreen.db.session import build_engine, build_session_factory
from cvscreen.llm.scoring import CvScorer
from cvscreen.processing.extractor import TextExtractor
from cvscreen.processing.ocr import GoogleVisionOCR, OcrEngine
from cvscreen.services.dispatch import CeleryDispatcher, InProcessDispatcher, JobDispatcher
from cvscreen.services.job_store import DocumentJobStore
from cvscreen.services.orchestrator import UploadOrchestrator
from cvscreen.services.pipeline import ExtractionPipeline
from cvscreen.services.poller import JobPoller, StatusQuery, store_status_query
from cvscreen.services.supervisor import BackgroundTaskSupervisor
from cvscreen.services.sweeper import StaleJobSweeper
from cvscreen.storage.local import LocalDocumentStorage

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    settings:        Settings
    engine:          AsyncEngine
    session_factory: async_sessionmaker[AsyncSession]
    store:           DocumentJobStore
    storage:         LocalDocumentStorage
    extractor:       TextExtractor
    pipeline:        ExtractionPipeline
    supervisor:      BackgroundTaskSupervisor
    dispatcher:      JobDispatcher
    orchestrator:    UploadOrchestrator
    scorer:          CvScorer
    sweeper:         StaleJobSweeper | None = None

    def poller(self, query: StatusQuery | None = None) -> JobPoller:
        """JobPoller over ``query``, or over the job store when omitted."""
        return build_poller(self.settings, query or store_status_query(self.store))

    async def aclose(self) -> None:
        if self.sweeper is not None:
            await self.sweeper.stop()
        drained = await self.supervisor.drain(self.settings.shutdown_drain_seconds)
        if not drained:
            logger.warning("Shutdown with unfinished extraction jobs; they were cancelled and marked error")
        await self.engine.dispose()


def build_retry_policy(settings: Settings) -> RetryPolicy:
    return RetryPolicy(
        max_retries=settings.retry_max_attempts,
        base_delay=settings.retry_base_delay,
        max_delay=settings.retry_max_delay,
        jitter=settings.retry_jitter,
    )


def build_poller(settings: Settings, query: StatusQuery) -> JobPoller:
    return JobPoller(
        query,
        interval=settings.poll_interval,
        max_attempts=settings.poll_max_attempts,
        retry_policy=build_retry_policy(settings),
    )


def build_ocr(settings: Settings, retry_policy: RetryPolicy) -> GoogleVisionOCR:
    key = settings.google_service_account()
    if key is None:
        logger.warning("No Google service account configured; OCR requests will fail")
        token_provider = None
    else:
        token_provider = ServiceAccountTokenProvider(
            ServiceAccountInfo.from_mapping(key),
            retry_policy=retry_policy,
        )
    return GoogleVisionOCR(
        token_provider,
        endpoint=settings.vision_endpoint,
        max_request_bytes=settings.ocr_max_request_bytes,
        retry_policy=retry_policy,
        timeout=settings.vision_timeout_seconds,
    )


def build_container(
    settings: Settings,
    ocr:      OcrEngine | None = None,
    scorer:   CvScorer | None = None,
) -> ServiceContainer:
    """``ocr`` and ``scorer`` may be injected to replace the remote services."""
    policy = build_retry_policy(settings)

    engine          = build_engine(settings)
    session_factory = build_session_factory(engine)
    store           = DocumentJobStore(session_factory)
    storage         = LocalDocumentStorage(settings.upload_dir)

    extractor = TextExtractor(
        ocr if ocr is not None else build_ocr(settings, policy),
        min_native_chars=settings.native_min_chars,
        render_dpi=settings.ocr_render_dpi,
    )
    pipeline   = ExtractionPipeline(store, extractor)
    supervisor = BackgroundTaskSupervisor()

    sweeper: StaleJobSweeper | None = None
    dispatcher: JobDispatcher
    if settings.task_backend == "celery":
        # Celery beat runs the sweep
        dispatcher = CeleryDispatcher()
    else:
        dispatcher = InProcessDispatcher(supervisor, pipeline)
        sweeper    = StaleJobSweeper(store, timedelta(minutes=settings.stale_job_minutes))

    orchestrator = UploadOrchestrator(
        store,
        dispatcher,
        # Celery workers reload bytes from disk; in-process jobs get them directly
        storage=storage if settings.task_backend == "celery" else None,
        max_file_bytes=settings.max_upload_bytes,
    )

    if scorer is None:
        scorer = CvScorer(
            api_key=settings.openai_api_key,
            model=settings.llm_model,
            temperature=settings.llm_temperature,
            retry_policy=policy,
        )

    logger.info(
        "Container built | backend=%s ocr_max_bytes=%d native_min_chars=%d retries=%d",
        settings.task_backend, settings.ocr_max_request_bytes,
        settings.native_min_chars, policy.max_retries,
    )
    return ServiceContainer(
        settings=settings,
        engine=engine,
        session_factory=session_factory,
        store=store,
        storage=storage,
        extractor=extractor,
        pipeline=pipeline,
        supervisor=supervisor,
        dispatcher=dispatcher,
        orchestrator=orchestrator,
        scorer=scorer,
        sweeper=sweeper,
    )
