"""
Client Poller
═════════════

Waits for a submitted job to reach a terminal status.

  for attempt in 1..max_attempts:
      view = with_retry(query(job_id))       transient failures retried
      if view.status in {processed, error}:  return view
      sleep(interval)                        not after the last attempt
  raise PollTimeout                          outcome unknown, job may still finish

An error job is a normal return value; callers inspect view.status.
JobNotFound is never retried and propagates immediately.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional
from uuid import UUID

import httpx

from cvscreen.core.errors import InvalidInput, JobNotFound, PollTimeout
from cvscreen.core.retry import RetryPolicy, retry_with_policy
from cvscreen.models.documents import JobStatus
from cvscreen.services.job_store import DocumentJobStore

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL     = 1.5   # seconds, within the 1–2 s window
DEFAULT_POLL_MAX_ATTEMPTS = 30


@dataclass(frozen=True)
class JobStatusView:
    status:         JobStatus
    processed_text: Optional[str] = None
    error:          Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal


StatusQuery = Callable[[UUID | str], Awaitable[JobStatusView]]


def _is_retryable(exc: BaseException) -> bool:
    return not isinstance(exc, JobNotFound)


class JobPoller:

    def __init__(
        self,
        query:        StatusQuery,
        interval:     float = DEFAULT_POLL_INTERVAL,
        max_attempts: int = DEFAULT_POLL_MAX_ATTEMPTS,
        retry_policy: RetryPolicy | None = None,
        sleep:        Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if interval < 0:
            raise ValueError("interval must be non-negative")
        self._query    = query
        self._interval = interval
        self._attempts = max_attempts
        self._policy   = retry_policy or RetryPolicy()
        self._sleep    = sleep

    async def wait_for(self, job_id: UUID | str) -> JobStatusView:
        for attempt in range(1, self._attempts + 1):
            view = await retry_with_policy(
                lambda: self._query(job_id),
                self._policy,
                retry_if=_is_retryable,
                sleep=self._sleep,
                label=f"poll[{job_id}]",
            )
            logger.debug("Poll | job=%s attempt=%d status=%s", job_id, attempt, view.status.value)

            if view.is_terminal:
                logger.info(
                    "Poll finished | job=%s attempts=%d status=%s",
                    job_id, attempt, view.status.value,
                )
                return view

            if attempt < self._attempts:
                await self._sleep(self._interval)

        logger.warning("Poll timed out | job=%s attempts=%d", job_id, self._attempts)
        raise PollTimeout(job_id, self._attempts)


# ---------------------------------------------------------------------------
# HTTP status query
# ---------------------------------------------------------------------------

class HttpJobStatusClient:
    """Queries GET /api/v1/documents/{id}/status; usable as a JobPoller query."""

    def __init__(self, base_url: str, http_client: httpx.AsyncClient | None = None) -> None:
        self._base_url = base_url.rstrip("/")
        self._client   = http_client

    async def __call__(self, job_id: UUID | str) -> JobStatusView:
        url = f"{self._base_url}/api/v1/documents/{job_id}/status"
        if self._client is not None:
            resp = await self._client.get(url)
        else:
            async with httpx.AsyncClient(timeout=10.0) as client:
                resp = await client.get(url)

        if resp.status_code == 404:
            raise JobNotFound(job_id)
        resp.raise_for_status()

        body = resp.json()
        try:
            status = JobStatus(body["status"])
        except (KeyError, ValueError) as exc:
            raise InvalidInput(f"Malformed status response: {body!r}") from exc
        return JobStatusView(
            status=status,
            processed_text=body.get("processedText"),
            error=body.get("error"),
        )



def store_status_query(store: DocumentJobStore) -> StatusQuery:
    """In-process JobPoller query reading the job store directly."""

    async def _query(job_id: UUID | str) -> JobStatusView:
        job = await store.get(job_id)
        return JobStatusView(status=job.status, processed_text=job.processed_text, error=job.error)

    return _query
