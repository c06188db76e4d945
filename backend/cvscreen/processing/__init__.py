"""
Document Processing Package
════════════════════════════

Turns an uploaded CV into plain text:

  Native extraction → (thin text layer?) → page rendering → remote OCR

Modules
───────
  native.py     PyMuPDF text layer + page rendering, python-docx, plain text
  ocr.py        Google Vision adapter (segmentation, retries, token auth)
  extractor.py  Strategy cascade that picks native extraction or OCR
"""

from cvscreen.processing.extractor import NO_TEXT_FOUND, ExtractionResult, TextExtractor
from cvscreen.processing.ocr import GoogleVisionOCR, OcrResult, split_segments

__all__ = [
    "NO_TEXT_FOUND",
    "ExtractionResult",
    "TextExtractor",
    "GoogleVisionOCR",
    "OcrResult",
    "split_segments",
]
