"""
Retry Executor  —  bounded retries with exponential back-off and jitter
═══════════════════════════════════════════════════════════════════════

Used by every remote call in the service (token exchange, OCR segments,
status polling, LLM scoring).

Policy:
  max_retries   total number of invocations (3 → op runs at most 3 times)
  delay         min(base × 2^attempt ± jitter, max_delay), attempt 0-based
  jitter        uniform perturbation of ±(jitter × base × 2^attempt)
  retry_if      predicate; a False result re-raises immediately
  on_retry      observer(attempt_number, exc), called once per retried failure

The executor keeps no state between calls and sleeps with asyncio.sleep,
so concurrent jobs back off independently without blocking each other.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

RetryObserver = Callable[[int, BaseException], "Awaitable[None] | None"]


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

DEFAULT_MAX_RETRIES = 3
DEFAULT_BASE_DELAY  = 1.0   # seconds
DEFAULT_MAX_DELAY   = 8.0   # seconds
DEFAULT_JITTER      = 0.2   # ±20 %


@dataclass(frozen=True)
class RetryPolicy:
    """Numeric retry parameters, usually built from Settings."""
    max_retries: int   = DEFAULT_MAX_RETRIES
    base_delay:  float = DEFAULT_BASE_DELAY
    max_delay:   float = DEFAULT_MAX_DELAY
    jitter:      float = DEFAULT_JITTER

    def __post_init__(self) -> None:
        if self.max_retries < 1:
            raise ValueError("max_retries must be >= 1")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("delays must be non-negative")
        if not 0 <= self.jitter < 1:
            raise ValueError("jitter must be in [0, 1)")


def backoff_delay(
    attempt:    int,
    base_delay: float,
    max_delay:  float,
    jitter:     float = 0.0,
    rng:        Callable[[float, float], float] = random.uniform,
) -> float:
    """Delay before the retry that follows failure number ``attempt`` (0-based)."""
    raw = base_delay * (2 ** attempt)
    if jitter:
        raw += rng(-jitter, jitter) * raw
    return max(0.0, min(raw, max_delay))


# ---------------------------------------------------------------------------
# Executor
# ---------------------------------------------------------------------------

async def with_retry(
    operation:   Callable[[], Awaitable[T]],
    *,
    max_retries: int   = DEFAULT_MAX_RETRIES,
    base_delay:  float = DEFAULT_BASE_DELAY,
    max_delay:   float = DEFAULT_MAX_DELAY,
    jitter:      float = DEFAULT_JITTER,
    retry_if:    Callable[[BaseException], bool] | None = None,
    on_retry:    RetryObserver | None = None,
    sleep:       Callable[[float], Awaitable[None]] = asyncio.sleep,
    label:       str = "operation",
) -> T:
    """
    Run ``operation`` until it succeeds or ``max_retries`` invocations failed.

    Raises:
        The last exception raised by ``operation``, unchanged.
    """
    if max_retries < 1:
        raise ValueError("max_retries must be >= 1")

    for attempt in range(max_retries):
        try:
            return await operation()
        except Exception as exc:
            if retry_if is not None and not retry_if(exc):
                logger.debug("Retry | %s non-retryable error=%s", label, exc)
                raise

            if attempt == max_retries - 1:
                logger.warning(
                    "Retry exhausted | %s attempts=%d error=%s",
                    label, max_retries, exc,
                )
                raise

            delay = backoff_delay(attempt, base_delay, max_delay, jitter)
            logger.warning(
                "Retry | %s attempt=%d/%d delay=%.2fs error=%s: %s",
                label, attempt + 1, max_retries, delay, type(exc).__name__, exc,
            )

            if on_retry is not None:
                outcome = on_retry(attempt + 1, exc)
                if inspect.isawaitable(outcome):
                    await outcome

            await sleep(delay)

    raise AssertionError("unreachable")  # pragma: no cover


async def retry_with_policy(
    operation: Callable[[], Awaitable[T]],
    policy:    RetryPolicy,
    **kwargs,
) -> T:
    """``with_retry`` with the numeric parameters taken from a RetryPolicy."""
    return await with_retry(
        operation,
        max_retries=policy.max_retries,
        base_delay=policy.base_delay,
        max_delay=policy.max_delay,
        jitter=policy.jitter,
        **kwargs,
    )
