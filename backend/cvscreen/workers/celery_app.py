"""
Celery Application Factory

Optional out-of-process execution for document extraction
(TASK_BACKEND=celery). Broker and result backend come from Settings.

Queue topology:
  documents.extract   — extraction jobs published by CeleryDispatcher
  documents.sweep     — periodic stale-job sweeper (Celery Beat)

Task payloads carry identifiers and file paths only. The worker reloads the
raw bytes from document storage, so CV contents never pass through the broker.
"""

from __future__ import annotations

import logging

from celery import Celery
from celery.signals import task_failure, task_postrun, task_prerun
from kombu import Exchange, Queue

from cvscreen.core.config import get_settings
from cvscreen.services.sweeper import SWEEP_INTERVAL_SECONDS

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Queue and exchange definitions
# ---------------------------------------------------------------------------

DOCUMENTS_EXCHANGE = Exchange("documents", type="direct", durable=True)

TASK_QUEUES = (
    Queue(
        "documents.extract",
        exchange=DOCUMENTS_EXCHANGE,
        routing_key="documents.extract",
        durable=True,
    ),
    Queue(
        "documents.sweep",
        exchange=DOCUMENTS_EXCHANGE,
        routing_key="documents.sweep",
        durable=True,
    ),
)

TASK_ROUTES = {
    "cvscreen.workers.tasks.process_document": {"queue": "documents.extract"},
    "cvscreen.workers.tasks.fail_stale_jobs":  {"queue": "documents.sweep"},
}

# ---------------------------------------------------------------------------
# Celery app factory
# ---------------------------------------------------------------------------

def create_celery_app() -> Celery:
    settings = get_settings()
    app = Celery("cv_screening")

    app.conf.update(
        # --- Broker / Backend ---
        broker_url=settings.celery_broker_url,
        result_backend=settings.celery_result_backend,

        # --- Serialization (reject non-JSON messages) ---
        task_serializer="json",
        result_serializer="json",
        accept_content=["json"],
        event_serializer="json",

        # --- Queues ---
        task_queues=TASK_QUEUES,
        task_routes=TASK_ROUTES,
        task_default_queue="documents.extract",
        task_default_exchange="documents",
        task_default_routing_key="documents.extract",

        # --- Reliability ---
        task_acks_late=True,         # ack only after task completes (prevents message loss on crash)
        task_reject_on_worker_lost=True,
        worker_prefetch_multiplier=1,  # one task at a time per worker (OCR is slow)

        # --- Timeouts ---
        task_soft_time_limit=300,   # 5 min
        task_time_limit=360,        # 6 min: hard backstop

        # --- Result TTL ---
        result_expires=3600,   # job state lives in the documents table, not Celery results

        # --- Timezone ---
        timezone="UTC",
        enable_utc=True,

        # --- Beat schedule (stale-job sweeper) ---
        beat_schedule={
            "fail-stale-jobs-every-60s": {
                "task":     "cvscreen.workers.tasks.fail_stale_jobs",
                "schedule": SWEEP_INTERVAL_SECONDS,
                "options":  {"queue": "documents.sweep"},
            },
        },

        # --- Worker ---
        worker_max_tasks_per_child=200,   # recycle workers to prevent memory bloat
    )

    app.autodiscover_tasks(["cvscreen.workers"])
    return app


celery_app = create_celery_app()


# ---------------------------------------------------------------------------
# Celery signals: structured task logging
# ---------------------------------------------------------------------------

@task_prerun.connect
def on_task_prerun(task_id, task, args, kwargs, **_):
    logger.info(
        "Task start | task_id=%s task=%s job=%s",
        task_id, task.name, (kwargs or {}).get("job_id", "-"),
    )


@task_postrun.connect
def on_task_postrun(task_id, task, args, kwargs, retval, state, **_):
    logger.info(
        "Task end | task_id=%s task=%s state=%s job=%s",
        task_id, task.name, state, (kwargs or {}).get("job_id", "-"),
    )


@task_failure.connect
def on_task_failure(task_id, exception, args, kwargs, traceback, einfo, **_):
    logger.error(
        "Task failed | task_id=%s job=%s error=%s",
        task_id, (kwargs or {}).get("job_id", "-"), exception,
        exc_info=True,
    )
