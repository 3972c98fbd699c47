"""
PDF page rasterization for the vision pipeline (PyMuPDF).

Pages are rendered to base64 PNG at PDF_RENDER_SCALE so small dimension text
on survey plans stays legible to the model.
"""
import base64
import logging
from typing import Iterator, Optional

import fitz  # PyMuPDF

from app.config import PDF_RENDER_SCALE

logger = logging.getLogger("landdev-vision")


def _render(doc, index: int, scale: float) -> str:
    pix = doc[index].get_pixmap(matrix=fitz.Matrix(scale, scale))
    return base64.b64encode(pix.tobytes("png")).decode()


def page_count(pdf_bytes: bytes) -> int:
    doc = fitz.open(stream=pdf_bytes, filetype="pdf")
    try:
        return doc.page_count
    finally:
        doc.close()


def render_page_png_b64(pdf_bytes: bytes, page_number: int, scale: float = PDF_RENDER_SCALE) -> str:
    """Render a 1-based page number, clamped into the document's page range."""
    doc = fitz.open(stream=pdf_bytes, filetype="pdf")
    try:
        n = doc.page_count
        if n == 0:
            raise ValueError("PDF has no pages")
        index = min(max(int(page_number), 1), n) - 1
        return _render(doc, index, scale)
    finally:
        doc.close()


def iter_page_images(
    pdf_bytes: bytes,
    max_pages: Optional[int] = None,
    scale: float = PDF_RENDER_SCALE,
) -> Iterator[tuple[int, str]]:
    """Yield (1-based page number, base64 PNG) for each page, up to max_pages."""
    doc = fitz.open(stream=pdf_bytes, filetype="pdf")
    try:
        n = doc.page_count if max_pages is None else min(doc.page_count, max_pages)
        for index in range(n):
            logger.info(f"Rendering page {index + 1}/{n}")
            yield index + 1, _render(doc, index, scale)
    finally:
        doc.close()


def render_pages(
    pdf_bytes: bytes,
    max_pages: Optional[int] = None,
    scale: float = PDF_RENDER_SCALE,
) -> list[tuple[int, str]]:
    """All rendered pages as a list. Blocking; run it in a worker thread from async code."""
    return list(iter_page_images(pdf_bytes, max_pages=max_pages, scale=scale))
