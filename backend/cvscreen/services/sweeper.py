"""
Stale-job sweeper.

Jobs whose worker died (process crash, lost Celery message) would stay in
'processing' forever. The sweep marks every processing job that has not
been updated for ``stale_after`` as error.

Two drivers share fail_stale_jobs():
  - celery backend    → the fail_stale_jobs beat task (workers/tasks.py)
  - inprocess backend → StaleJobSweeper, a loop started by the app lifespan
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone

from cvscreen.core.errors import InvalidTransition, JobNotFound, PersistenceError
from cvscreen.services.job_store import DocumentJobStore

logger = logging.getLogger(__name__)

STALE_JOB_REASON       = "processing timed out"
SWEEP_INTERVAL_SECONDS = 60
SWEEP_BATCH            = 100


async def fail_stale_jobs(
    store:       DocumentJobStore,
    stale_after: timedelta,
    batch:       int = SWEEP_BATCH,
) -> dict[str, int]:
    cutoff = datetime.now(timezone.utc) - stale_after
    stale = await store.list_stale(cutoff, limit=batch)

    failed = 0
    for job in stale:
        try:
            await store.mark_error(job.id, STALE_JOB_REASON)
            failed += 1
            logger.warning("Stale job closed | job=%s updated_at=%s", job.id, job.updated_at)
        except (InvalidTransition, JobNotFound):
            # Finished between the scan and the update
            continue

    return {"scanned": len(stale), "failed": failed}


class StaleJobSweeper:
    """Periodic fail_stale_jobs() on the API's own event loop."""

    def __init__(
        self,
        store:       DocumentJobStore,
        stale_after: timedelta,
        interval:    float = SWEEP_INTERVAL_SECONDS,
    ) -> None:
        self._store       = store
        self._stale_after = stale_after
        self._interval    = interval
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._loop(), name="stale-job-sweeper")
        logger.info("Stale-job sweeper started | interval=%ss stale_after=%s", self._interval, self._stale_after)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        await asyncio.gather(self._task, return_exceptions=True)
        self._task = None

    async def sweep_once(self) -> dict[str, int]:
        try:
            return await fail_stale_jobs(self._store, self._stale_after)
        except PersistenceError as exc:
            logger.error("Stale-job sweep failed | error=%s", exc.message)
            return {"scanned": 0, "failed": 0}

    async def _loop(self) -> None:
        while True:
            await self.sweep_once()
            await asyncio.sleep(self._interval)
