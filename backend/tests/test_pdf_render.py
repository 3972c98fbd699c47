"""
test_pdf_render.py — PyMuPDF page rendering against a small in-memory PDF.

The conftest PDF has three pages of distinct sizes, so the PNG header tells
which page was rendered.
"""

import base64
import struct

import pytest

from app.services.pdf_render import iter_page_images, page_count, render_page_png_b64, render_pages


def _png_size(image_b64):
    data = base64.b64decode(image_b64)
    assert data[:8] == b"\x89PNG\r\n\x1a\n"
    return struct.unpack(">II", data[16:24])


class TestPageCount:

    def test_counts_pages(self, tiny_pdf):
        assert page_count(tiny_pdf) == 3

    def test_garbage_raises(self):
        with pytest.raises(RuntimeError):
            page_count(b"not a pdf")


class TestRenderPage:

    def test_renders_requested_page(self, tiny_pdf):
        assert _png_size(render_page_png_b64(tiny_pdf, 2, scale=1)) == (60, 40)

    @pytest.mark.parametrize("page_number, size", [(0, (100, 50)), (-4, (100, 50)), (99, (80, 80))])
    def test_page_number_is_clamped(self, tiny_pdf, page_number, size):
        assert _png_size(render_page_png_b64(tiny_pdf, page_number, scale=1)) == size

    def test_scale_multiplies_resolution(self, tiny_pdf):
        assert _png_size(render_page_png_b64(tiny_pdf, 1, scale=2)) == (200, 100)


class TestRenderPages:

    def test_all_pages_in_order(self, tiny_pdf):
        pages = render_pages(tiny_pdf, scale=1)
        assert [n for n, _ in pages] == [1, 2, 3]
        assert [_png_size(img) for _, img in pages] == [(100, 50), (60, 40), (80, 80)]

    def test_max_pages(self, tiny_pdf):
        assert [n for n, _ in iter_page_images(tiny_pdf, max_pages=2, scale=1)] == [1, 2]
