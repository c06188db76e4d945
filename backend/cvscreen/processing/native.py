"""
Native Text Extraction  —  PDF text layer, DOCX paragraphs, plain text
═══════════════════════════════════════════════════════════════════════

  PyMuPDFExtractor   : per-page text from the PDF text layer; also renders
                       pages to PNG for the OCR fallback
  extract_docx_text  : python-docx paragraphs, document order
  decode_plaintext   : UTF-8, falling back to latin-1

All parsing is blocking C / XML work, so the async entry points hand it to
the default thread executor and never stall the event loop.
"""

from __future__ import annotations

import asyncio
import io
import logging
import time
from dataclasses import dataclass

logger = logging.getLogger(__name__)

DEFAULT_RENDER_DPI = 200


# ---------------------------------------------------------------------------
# Shared data types
# ---------------------------------------------------------------------------

@dataclass
class PageText:
    """
    page_number : 1-based page index
    text        : stripped page text (empty for image-only pages)
    """
    page_number: int
    text:        str


@dataclass
class NativeResult:
    """
    Output of a native (non-OCR) extraction pass.

    pages         : one PageText per page (a single page for DOCX / text)
    strategy_name : "pymupdf" | "docx" | "plaintext"
    elapsed_ms    : wall-clock time for the pass
    """
    pages:         list[PageText]
    strategy_name: str
    elapsed_ms:    float = 0.0

    @property
    def full_text(self) -> str:
        return "\n\n".join(p.text for p in self.pages if p.text)

    @property
    def total_chars(self) -> int:
        return sum(len(p.text) for p in self.pages)

    @property
    def page_count(self) -> int:
        return len(self.pages)


# ---------------------------------------------------------------------------
# PDF (PyMuPDF)
# ---------------------------------------------------------------------------

class PyMuPDFExtractor:
    """
    Reads the native PDF text layer and renders pages for OCR.

    fitz.open() returns an independent document per call, so one instance
    is safe to share between concurrent jobs.
    """

    strategy_name = "pymupdf"

    def __init__(self, render_dpi: int = DEFAULT_RENDER_DPI) -> None:
        self._dpi = render_dpi

    async def extract(self, pdf_bytes: bytes) -> NativeResult:
        """Raises whatever PyMuPDF raises for unreadable documents."""
        loop = asyncio.get_running_loop()
        t0 = time.monotonic()

        result = await loop.run_in_executor(None, self._extract_sync, pdf_bytes)

        result.elapsed_ms = (time.monotonic() - t0) * 1000
        logger.info(
            "PyMuPDF | pages=%d total_chars=%d elapsed_ms=%.0f",
            result.page_count, result.total_chars, result.elapsed_ms,
        )
        return result

    async def render_pages(self, pdf_bytes: bytes) -> list[bytes]:
        """One PNG per page, in page order."""
        loop = asyncio.get_running_loop()
        images = await loop.run_in_executor(None, self._render_sync, pdf_bytes)
        logger.info("PyMuPDF render | pages=%d dpi=%d", len(images), self._dpi)
        return images

    def _extract_sync(self, pdf_bytes: bytes) -> NativeResult:
        import fitz

        pages: list[PageText] = []
        with fitz.open(stream=pdf_bytes, filetype="pdf") as doc:
            for page_index in range(doc.page_count):
                text = doc[page_index].get_text("text") or ""
                pages.append(PageText(page_number=page_index + 1, text=text.strip()))

        return NativeResult(pages=pages, strategy_name=self.strategy_name)

    def _render_sync(self, pdf_bytes: bytes) -> list[bytes]:
        import fitz

        images: list[bytes] = []
        with fitz.open(stream=pdf_bytes, filetype="pdf") as doc:
            for page in doc:
                pixmap = page.get_pixmap(dpi=self._dpi)
                images.append(pixmap.tobytes("png"))
        return images


# ---------------------------------------------------------------------------
# DOCX + plain text
# ---------------------------------------------------------------------------

def extract_docx_text(data: bytes) -> str:
    """Extract paragraph text from DOCX bytes using python-docx."""
    import docx

    document = docx.Document(io.BytesIO(data))
    return "\n".join(para.text for para in document.paragraphs if para.text.strip())


def decode_plaintext(data: bytes) -> str:
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError:
        return data.decode("latin-1", errors="replace")


async def extract_docx(data: bytes) -> NativeResult:
    loop = asyncio.get_running_loop()
    t0 = time.monotonic()
    text = await loop.run_in_executor(None, extract_docx_text, data)
    return NativeResult(
        pages=[PageText(page_number=1, text=text.strip())],
        strategy_name="docx",
        elapsed_ms=(time.monotonic() - t0) * 1000,
    )


async def extract_plaintext(data: bytes) -> NativeResult:
    return NativeResult(
        pages=[PageText(page_number=1, text=decode_plaintext(data).strip())],
        strategy_name="plaintext",
    )
