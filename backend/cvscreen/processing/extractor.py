"""
Text Extractor
══════════════

Turns uploaded bytes into plain text, choosing the strategy by content type
and falling back to OCR when the native text layer is too thin.

Strategy selection flow:
  1.  Resolve the content family (pdf | word | text | image) from the MIME
      type; generic application/octet-stream falls back to the extension.
      Unknown family → UnsupportedFormat before any work is done; legacy
      .doc (application/msword) gets an explicit "save as .docx" reason.
  2.  image → OCR on the raw bytes
  3.  pdf   → PyMuPDF text layer
        total_chars ≥ min_native_chars → done
        otherwise (or parse error)     → render pages, OCR them in one call
        PDF renders no pages           → OCR the raw bytes
  4.  word / text → native only; a thin result is flagged low_yield

  OCR failing after a partial native yield returns the native text with
  degraded=True. OCR finding nothing after a partial native yield
  returns the native text with low_yield=True. An empty final text becomes NO_TEXT_FOUND.

This module is the only place that knows about the strategy cascade.
Callers only see ExtractionResult.
"""

from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass

from cvscreen.core.errors import (
    NativeExtractionInsufficient,
    OcrFailure,
    UnsupportedFormat,
)
from cvscreen.core.retry import RetryObserver
from cvscreen.processing.native import (
    DEFAULT_RENDER_DPI,
    NativeResult,
    PyMuPDFExtractor,
    extract_docx,
    extract_plaintext,
)
from cvscreen.processing.ocr import OcrEngine

logger = logging.getLogger(__name__)

DEFAULT_MIN_NATIVE_CHARS = 100
NO_TEXT_FOUND = "No text found in document"

# ---------------------------------------------------------------------------
# Content families
# ---------------------------------------------------------------------------

PDF, WORD, TEXT, IMAGE = "pdf", "word", "text", "image"

_MIME_FAMILIES: dict[str, str] = {
    "application/pdf": PDF,
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": WORD,
    "text/plain":    TEXT,
    "text/markdown": TEXT,
    "image/png":  IMAGE,
    "image/jpeg": IMAGE,
    "image/jpg":  IMAGE,
    "image/gif":  IMAGE,
    "image/bmp":  IMAGE,
    "image/webp": IMAGE,
    "image/tiff": IMAGE,
}

_EXTENSION_FAMILIES: dict[str, str] = {
    ".pdf":  PDF,
    ".docx": WORD,
    ".txt":  TEXT,
    ".md":   TEXT,
    ".png":  IMAGE,
    ".jpg":  IMAGE,
    ".jpeg": IMAGE,
    ".gif":  IMAGE,
    ".bmp":  IMAGE,
    ".webp": IMAGE,
    ".tif":  IMAGE,
    ".tiff": IMAGE,
}

SUPPORTED_CONTENT_TYPES = frozenset(_MIME_FAMILIES)

# Binary Word 97-2003; python-docx reads only OOXML
_LEGACY_WORD_MIME = "application/msword"
_LEGACY_WORD_EXT  = ".doc"
LEGACY_WORD_HINT  = "legacy Word .doc files are not supported, save the CV as .docx or PDF"


def detect_family(content_type: str, filename: str = "") -> str | None:
    """Content family for a MIME type, or None when unsupported."""
    mime = (content_type or "").split(";")[0].strip().lower()
    family = _MIME_FAMILIES.get(mime)
    if family is None and mime in ("", "application/octet-stream"):
        ext = os.path.splitext(filename or "")[1].lower()
        family = _EXTENSION_FAMILIES.get(ext)
    return family


def is_legacy_word(content_type: str, filename: str = "") -> bool:
    mime = (content_type or "").split(";")[0].strip().lower()
    ext  = os.path.splitext(filename or "")[1].lower()
    return mime == _LEGACY_WORD_MIME or ext == _LEGACY_WORD_EXT


# ---------------------------------------------------------------------------
# Result dataclass
# ---------------------------------------------------------------------------

@dataclass
class ExtractionResult:
    """
    Unified extraction output handed to the pipeline.

    text          : final stripped text, or NO_TEXT_FOUND
    strategy_used : "pymupdf" | "docx" | "plaintext" | "vision_ocr"
    used_ocr      : True if remote OCR produced the text
    page_count    : pages seen by the native pass (1 for images / DOCX / text)
    total_chars   : len(text) before the sentinel substitution
    text_found    : False when the sentinel was substituted
    degraded      : OCR failed, native partial text returned instead
    low_yield     : final text below the minimum character count and no OCR
                    text to replace it (native-only format, or OCR found nothing)
    elapsed_ms    : total extraction wall time
    """
    text:          str
    strategy_used: str
    used_ocr:      bool
    page_count:    int
    total_chars:   int
    text_found:    bool
    degraded:      bool  = False
    low_yield:     bool  = False
    elapsed_ms:    float = 0.0


# ---------------------------------------------------------------------------
# Extractor
# ---------------------------------------------------------------------------

class TextExtractor:
    """
    Stateless extractor; one instance is shared by all jobs.

    Constructor args:
        ocr              : OCR backend (GoogleVisionOCR in production)
        min_native_chars : native yield below this triggers OCR (PDF only)
        render_dpi       : resolution for PDF page rendering

    Usage:
        extractor = TextExtractor(ocr)
        result = await extractor.extract(data, "application/pdf", "cv.pdf")
    """

    def __init__(
        self,
        ocr:              OcrEngine,
        min_native_chars: int = DEFAULT_MIN_NATIVE_CHARS,
        render_dpi:       int = DEFAULT_RENDER_DPI,
    ) -> None:
        self._ocr       = ocr
        self._min_chars = min_native_chars
        self._pymupdf   = PyMuPDFExtractor(render_dpi=render_dpi)

    async def extract(
        self,
        data:         bytes,
        content_type: str,
        filename:     str = "",
        on_retry:     RetryObserver | None = None,
    ) -> ExtractionResult:
        t0 = time.monotonic()
        family = detect_family(content_type, filename)
        if family is None:
            hint = LEGACY_WORD_HINT if is_legacy_word(content_type, filename) else ""
            raise UnsupportedFormat(content_type, filename, hint=hint)

        if family == IMAGE:
            result = await self._extract_image(data, content_type, on_retry)
        elif family == PDF:
            result = await self._extract_pdf(data, on_retry)
        else:
            result = await self._extract_native_only(data, family)

        result.elapsed_ms = (time.monotonic() - t0) * 1000
        logger.info(
            "Extraction | file=%s family=%s strategy=%s used_ocr=%s chars=%d "
            "text_found=%s degraded=%s low_yield=%s elapsed_ms=%.0f",
            filename, family, result.strategy_used, result.used_ocr,
            result.total_chars, result.text_found, result.degraded,
            result.low_yield, result.elapsed_ms,
        )
        return result

    # ------------------------------------------------------------------
    # Per-family strategies
    # ------------------------------------------------------------------

    async def _extract_image(
        self,
        data:         bytes,
        content_type: str,
        on_retry:     RetryObserver | None,
    ) -> ExtractionResult:
        ocr_result = await self._ocr.recognize(data, content_type, on_retry=on_retry)
        return _finalise(ocr_result.text, "vision_ocr", used_ocr=True, page_count=1)

    async def _extract_pdf(
        self,
        data:     bytes,
        on_retry: RetryObserver | None,
    ) -> ExtractionResult:
        native: NativeResult | None = None
        try:
            native = await self._pymupdf.extract(data)
            if native.total_chars < self._min_chars:
                raise NativeExtractionInsufficient(native.total_chars, self._min_chars)
            return _finalise(
                native.full_text, native.strategy_name,
                used_ocr=False, page_count=native.page_count,
            )
        except NativeExtractionInsufficient as exc:
            logger.info("PDF appears scanned | %s, falling back to OCR", exc.message)
        except Exception as exc:
            logger.warning("PyMuPDF extraction failed, falling back to OCR: %s", exc)

        native_text = native.full_text if native else ""
        page_count  = native.page_count if native else 0

        try:
            ocr_text = await self._ocr_pdf(data, on_retry)
        except OcrFailure as exc:
            if not native_text:
                raise
            logger.error(
                "OCR failed, returning partial native text | chars=%d error=%s",
                len(native_text), exc,
            )
            result = _finalise(
                native_text, "pymupdf", used_ocr=False, page_count=page_count,
            )
            result.degraded = True
            return result

        if not (ocr_text or "").strip() and native_text.strip():
            logger.warning(
                "OCR found no text, keeping thin native text | chars=%d", len(native_text.strip()),
            )
            result = _finalise(
                native_text, "pymupdf", used_ocr=False, page_count=page_count,
            )
            result.low_yield = True
            return result

        return _finalise(
            ocr_text, "vision_ocr", used_ocr=True, page_count=page_count or 1,
        )

    async def _ocr_pdf(self, data: bytes, on_retry: RetryObserver | None) -> str:
        try:
            images = await self._pymupdf.render_pages(data)
        except Exception as exc:
            logger.warning("PDF rendering failed, sending raw bytes to OCR: %s", exc)
            images = []

        if not images:
            result = await self._ocr.recognize(data, "application/pdf", on_retry=on_retry)
            return result.text

        result = await self._ocr.recognize_pages(images, on_retry=on_retry)
        return result.text

    async def _extract_native_only(self, data: bytes, family: str) -> ExtractionResult:
        native = await (extract_docx(data) if family == WORD else extract_plaintext(data))
        result = _finalise(
            native.full_text, native.strategy_name,
            used_ocr=False, page_count=native.page_count,
        )
        result.low_yield = native.total_chars < self._min_chars
        return result


def _finalise(
    text:          str,
    strategy_used: str,
    used_ocr:      bool,
    page_count:    int,
) -> ExtractionResult:
    text = (text or "").strip()
    return ExtractionResult(
        text=text or NO_TEXT_FOUND,
        strategy_used=strategy_used,
        used_ocr=used_ocr,
        page_count=page_count,
        total_chars=len(text),
        text_found=bool(text),
    )
