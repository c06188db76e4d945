"""
OCR Adapter  —  Google Cloud Vision DOCUMENT_TEXT_DETECTION
═══════════════════════════════════════════════════════════

Two entry points, both returning OcrResult:

  recognize(data, content_type)
    Raw image (or unrenderable document) bytes. Payloads larger than the
    per-request cap (10 MB) are split into sequential byte-range segments;
    one request per segment, texts joined with a space in submission order.

  recognize_pages(images)
    One rendered PNG per PDF page (produced by processing.native). One
    request per page, page texts joined with a blank line in page order.

Request:
  POST <endpoint>
  Authorization: Bearer <service-account access token>
  { "requests": [ { "image": { "content": <base64> },
                    "features": [ { "type": "DOCUMENT_TEXT_DETECTION" } ] } ] }

Response text: responses[0].fullTextAnnotation.text

Retry policy (via core.retry):
  Retryable:     HTTP 429, HTTP 5xx, transport errors
  Non-retryable: other HTTP 4xx, per-image Vision error objects

No detected text is a valid outcome (text_detected=False), not an error.
Auth failure or exhausted retries raise OcrFailure with upstream detail.
"""

from __future__ import annotations

import base64
import logging
import time
from dataclasses import dataclass
from typing import Protocol, Sequence

import httpx

from cvscreen.auth.service_account import (
    ServiceAccountTokenProvider,
    is_retryable_http_error,
)
from cvscreen.core.errors import OcrFailure
from cvscreen.core.retry import RetryObserver, RetryPolicy, retry_with_policy

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

VISION_ANNOTATE_URL   = "https://vision.googleapis.com/v1/images:annotate"
MAX_REQUEST_BYTES     = 10 * 1024 * 1024   # Vision per-image request limit
VISION_FEATURE        = "DOCUMENT_TEXT_DETECTION"
OCR_TIMEOUT_SECONDS   = 60.0


# ---------------------------------------------------------------------------
# Shared data types
# ---------------------------------------------------------------------------

@dataclass
class OcrResult:
    """
    text          : recognised text, trimmed ("" when nothing was detected)
    segments      : number of remote requests issued
    text_detected : False when no segment/page produced any text
    elapsed_ms    : wall-clock time for all requests
    """
    text:          str
    segments:      int
    text_detected: bool
    elapsed_ms:    float = 0.0


class OcrEngine(Protocol):
    """What the TextExtractor needs from an OCR backend."""

    async def recognize(
        self,
        data:         bytes,
        content_type: str,
        on_retry:     RetryObserver | None = None,
    ) -> OcrResult: ...

    async def recognize_pages(
        self,
        images:   Sequence[bytes],
        on_retry: RetryObserver | None = None,
    ) -> OcrResult: ...


class _VisionImageError(Exception):
    """Per-image error object returned inside a 200 response."""

    def __init__(self, code: int, message: str) -> None:
        super().__init__(f"Vision error code={code}: {message}")
        self.code    = code
        self.message = message


def _is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, _VisionImageError):
        return False
    return is_retryable_http_error(exc)


# ---------------------------------------------------------------------------
# Segmentation
# ---------------------------------------------------------------------------

def split_segments(data: bytes, max_bytes: int) -> list[bytes]:
    """
    Split ``data`` into sequential byte ranges of at most ``max_bytes``.

    0 bytes → [], N ≤ M → [data], otherwise ceil(N / M) segments.
    Concatenating the result reproduces ``data`` exactly.
    """
    if max_bytes <= 0:
        raise ValueError("max_bytes must be positive")
    return [data[i : i + max_bytes] for i in range(0, len(data), max_bytes)]


def build_annotate_request(content: bytes) -> dict:
    return {
        "requests": [
            {
                "image":    {"content": base64.b64encode(content).decode("ascii")},
                "features": [{"type": VISION_FEATURE}],
            }
        ]
    }


def parse_annotate_response(payload: dict) -> str:
    """Return responses[0].fullTextAnnotation.text, or "" when absent."""
    responses = payload.get("responses") or [{}]
    first = responses[0] or {}

    error = first.get("error")
    if error:
        raise _VisionImageError(int(error.get("code", 0)), error.get("message", ""))

    annotation = first.get("fullTextAnnotation") or {}
    return annotation.get("text") or ""


# ---------------------------------------------------------------------------
# Google Vision adapter
# ---------------------------------------------------------------------------

class GoogleVisionOCR:
    """
    Remote OCR over the Vision REST API.

    Constructor args:
        token_provider    : service-account token source (None → OCR disabled)
        endpoint          : images:annotate URL
        max_request_bytes : segment size for raw payloads
        retry_policy      : applied to every segment request
        http_client       : optional shared AsyncClient (tests inject a
                            MockTransport-backed client here)

    Safe for concurrent use: per-call state lives on the stack; the token
    provider serialises its own refreshes.
    """

    def __init__(
        self,
        token_provider:    ServiceAccountTokenProvider | None,
        endpoint:          str = VISION_ANNOTATE_URL,
        max_request_bytes: int = MAX_REQUEST_BYTES,
        retry_policy:      RetryPolicy | None = None,
        http_client:       httpx.AsyncClient | None = None,
        timeout:           float = OCR_TIMEOUT_SECONDS,
    ) -> None:
        if max_request_bytes <= 0:
            raise ValueError("max_request_bytes must be positive")
        self._tokens    = token_provider
        self._endpoint  = endpoint
        self._max_bytes = max_request_bytes
        self._policy    = retry_policy or RetryPolicy()
        self._client    = http_client
        self._timeout   = timeout

    @property
    def max_request_bytes(self) -> int:
        return self._max_bytes

    # ------------------------------------------------------------------
    # Public entry points
    # ------------------------------------------------------------------

    async def recognize(
        self,
        data:         bytes,
        content_type: str,
        on_retry:     RetryObserver | None = None,
    ) -> OcrResult:
        segments = split_segments(data, self._max_bytes)
        logger.info(
            "Vision OCR | content_type=%s bytes=%d segments=%d",
            content_type, len(data), len(segments),
        )
        return await self._run(segments, separator=" ", on_retry=on_retry)

    async def recognize_pages(
        self,
        images:   Sequence[bytes],
        on_retry: RetryObserver | None = None,
    ) -> OcrResult:
        logger.info("Vision OCR | rendered_pages=%d", len(images))
        return await self._run(list(images), separator="\n\n", on_retry=on_retry)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _run(
        self,
        payloads:  list[bytes],
        separator: str,
        on_retry:  RetryObserver | None,
    ) -> OcrResult:
        t0 = time.monotonic()
        if not payloads:
            return OcrResult(text="", segments=0, text_detected=False)

        if self._client is not None:
            texts = await self._annotate_all(self._client, payloads, on_retry)
        else:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                texts = await self._annotate_all(client, payloads, on_retry)

        joined = separator.join(t for t in texts if t)
        elapsed_ms = (time.monotonic() - t0) * 1000

        logger.info(
            "Vision OCR done | requests=%d chars=%d elapsed_ms=%.0f",
            len(payloads), len(joined), elapsed_ms,
        )
        return OcrResult(
            text=joined,
            segments=len(payloads),
            text_detected=bool(joined),
            elapsed_ms=elapsed_ms,
        )

    async def _annotate_all(
        self,
        client:   httpx.AsyncClient,
        payloads: list[bytes],
        on_retry: RetryObserver | None,
    ) -> list[str]:
        if self._tokens is None:
            raise OcrFailure("authentication failed: no service account configured")

        # One token per extraction call; later segments reuse it
        token = await self._tokens.get_token(client, on_retry=on_retry)

        texts: list[str] = []
        for index, payload in enumerate(payloads):
            texts.append(
                (await self._annotate_one(client, token, payload, index, on_retry)).strip()
            )
        return texts

    async def _annotate_one(
        self,
        client:   httpx.AsyncClient,
        token:    str,
        payload:  bytes,
        index:    int,
        on_retry: RetryObserver | None,
    ) -> str:
        body = build_annotate_request(payload)

        async def _call() -> str:
            resp = await client.post(
                self._endpoint,
                json=body,
                headers={"Authorization": f"Bearer {token}"},
            )
            resp.raise_for_status()
            return parse_annotate_response(resp.json())

        try:
            return await retry_with_policy(
                _call,
                self._policy,
                retry_if=_is_retryable,
                on_retry=on_retry,
                label=f"vision_segment[{index}]",
            )
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            logger.error("Vision request failed | segment=%d status=%d", index, status)
            if status in (401, 403) and self._tokens is not None:
                self._tokens.invalidate()
            raise OcrFailure(
                f"OCR request failed for segment {index}",
                status_code=status,
                detail=exc.response.text[:500],
            ) from exc
        except httpx.TransportError as exc:
            raise OcrFailure(
                f"OCR request failed for segment {index}",
                detail=f"{type(exc).__name__}: {exc}",
            ) from exc
        except _VisionImageError as exc:
            raise OcrFailure(
                f"OCR recognition failed for segment {index}",
                status_code=exc.code,
                detail=exc.message,
            ) from exc
