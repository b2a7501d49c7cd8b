"""
Tests for the PyMuPDF helpers behind the metadata and thumbnail steps.
"""

import fitz
import pytest

from filevault.tasks.extract_metadata import describe_document
from filevault.tasks.generate_thumbnail import render_thumbnail, thumbnail_key_for
from tests.helpers import make_pdf_bytes, make_png_bytes


@pytest.mark.unit
class TestDescribeDocument:
    def test_pdf_pages_and_size(self):
        info = describe_document(make_pdf_bytes(pages=3, width=595.28, height=841.89), "application/pdf")
        assert info == {"page_count": 3, "width": 595.28, "height": 841.89}

    def test_png_dimensions(self):
        info = describe_document(make_png_bytes(width=40, height=20), "image/png")
        assert info["page_count"] == 1
        assert (info["width"], info["height"]) == (40, 20)

    def test_unsupported_type_is_empty(self):
        assert describe_document(b"a,b\n1,2\n", "text/csv") == {}

    def test_corrupt_content_has_no_pages(self):
        assert describe_document(b"\x00\x01 not a pdf", "application/pdf").get("page_count", 0) == 0


@pytest.mark.unit
class TestRenderThumbnail:
    def test_large_image_scaled_to_fit(self):
        png = render_thumbnail(make_png_bytes(width=1024, height=512), "image/png", max_size=256)

        pix = fitz.Pixmap(png)
        assert max(pix.width, pix.height) == 256

    def test_small_image_never_upscaled(self):
        png = render_thumbnail(make_png_bytes(width=64, height=32), "image/png", max_size=256)

        pix = fitz.Pixmap(png)
        assert (pix.width, pix.height) == (64, 32)

    def test_thumbnail_key_under_file_prefix(self):
        assert thumbnail_key_for("org1", "file1") == "org1/file1/thumbnails/thumbnail.png"
