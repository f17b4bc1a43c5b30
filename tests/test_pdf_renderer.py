"""
Unit tests for the PDF renderer and image fetcher.

Rendered output is checked by reading it back with pypdf.
"""

import io
from unittest.mock import MagicMock

import pytest
import requests
from PIL import Image
from pypdf import PdfReader

from core.exceptions import RenderError, ValidationError
from models.content import BookContent, StoryPage
from modules.pdf_renderer import ImageFetcher, PDFRenderer
from modules.print_specs import cover_spec


def read_pdf(data: bytes) -> PdfReader:
    return PdfReader(io.BytesIO(data))


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def flaky_fetcher(make_image):
    """Fetcher that fails for the third story image and the hero image."""
    def fetch(url, page_index=None):
        if url.endswith("/3.png") or url.endswith("/hero.png"):
            raise RenderError("Image fetch failed: 404", asset_url=url, page_index=page_index)
        return make_image()

    fetcher = MagicMock()
    fetcher.fetch.side_effect = fetch
    return fetcher


# =============================================================================
# Interior
# =============================================================================

class TestInterior:
    """Tests for interior rendering."""

    def test_planned_page_count(self, book_content):
        # 5 fixed pages + 10 story pages, rounded up to even
        assert PDFRenderer.planned_page_count(book_content) == 16
        with_dedication = book_content.with_order_overrides(dedication="For Mia")
        assert PDFRenderer.planned_page_count(with_dedication) == 16

    def test_pads_to_minimum_pages(self, renderer, book_content):
        doc = renderer.render_interior_document(book_content, min_pages=32)
        reader = read_pdf(doc.data)
        assert doc.kind == "interior"
        assert doc.page_count == 32
        assert len(reader.pages) == 32
        assert doc.is_degraded is False

    def test_page_size_matches_geometry(self, renderer, book_content):
        reader = read_pdf(renderer.render_interior(book_content))
        page = reader.pages[0]
        assert float(page.mediabox.width) == pytest.approx(630.0)
        assert float(page.mediabox.height) == pytest.approx(630.0)

    def test_page_count_always_even(self, renderer):
        content = BookContent(title="Tiny", artist_name="Leo", pages=[])
        doc = renderer.render_interior_document(content)
        assert doc.page_count == 6
        assert len(read_pdf(doc.data).pages) == 6

    def test_odd_minimum_rounded_up(self, renderer, book_content):
        doc = renderer.render_interior_document(book_content, min_pages=25)
        assert doc.page_count == 26

    def test_grows_past_minimum_for_long_stories(self, renderer):
        pages = [StoryPage(i + 1, f"text {i}", f"https://img.example.com/{i}.png") for i in range(40)]
        content = BookContent(title="Long", artist_name="Ana", pages=pages, dedication="For Ana")
        doc = renderer.render_interior_document(content, min_pages=32)
        assert doc.page_count == 46

    def test_failed_image_degrades_single_page(self, flaky_fetcher, book_content):
        renderer = PDFRenderer(fetcher=flaky_fetcher, max_workers=3)
        doc = renderer.render_interior_document(book_content, min_pages=32)

        # belongs-to and title come first, so story page 3 is page index 4
        assert doc.degraded_pages == [4]
        assert doc.page_count == 32
        assert len(read_pdf(doc.data).pages) == 32

    def test_every_story_image_fetched(self, renderer, image_fetcher, book_content):
        renderer.render_interior(book_content)
        urls = sorted(call.args[0] for call in image_fetcher.fetch.call_args_list)
        assert urls == sorted(p.image_url for p in book_content.pages)


# =============================================================================
# Cover
# =============================================================================

class TestCover:
    """Tests for cover rendering."""

    def test_single_sheet_at_cover_size(self, renderer, book_content):
        doc = renderer.render_cover_document(book_content, 32, "softcover")
        reader = read_pdf(doc.data)
        spec = cover_spec(32, "softcover")

        assert doc.page_count == 1
        assert len(reader.pages) == 1
        assert float(reader.pages[0].mediabox.width) == pytest.approx(spec.width_pt, abs=0.01)
        assert float(reader.pages[0].mediabox.height) == pytest.approx(spec.height_pt, abs=0.01)

    def test_wide_spine_renders(self, renderer, book_content):
        doc = renderer.render_cover_document(book_content, 400, "hardcover")
        assert len(read_pdf(doc.data).pages) == 1

    def test_hero_failure_degrades_cover(self, flaky_fetcher, book_content):
        renderer = PDFRenderer(fetcher=flaky_fetcher)
        doc = renderer.render_cover_document(book_content, 32, "softcover")
        assert doc.degraded_pages == [0]
        assert len(read_pdf(doc.data).pages) == 1

    def test_no_hero_is_not_degraded(self, renderer, image_fetcher):
        content = BookContent(title="Plain", artist_name="Kim", pages=[])
        doc = renderer.render_cover_document(content, 24, "softcover")
        assert doc.is_degraded is False
        image_fetcher.fetch.assert_not_called()

    def test_invalid_page_count_rejected_before_drawing(self, renderer, image_fetcher, book_content):
        with pytest.raises(ValidationError):
            renderer.render_cover(book_content, 33, "softcover")
        image_fetcher.fetch.assert_not_called()


# =============================================================================
# Image fetching
# =============================================================================

class TestImageFetcher:
    """Tests for ImageFetcher with a mocked HTTP session."""

    def _response(self, content: bytes):
        response = MagicMock()
        response.content = content
        return response

    def test_fetch_decodes_image(self, png_bytes):
        session = MagicMock()
        session.get.return_value = self._response(png_bytes(20, 10))
        fetcher = ImageFetcher(timeout=5, session=session)

        image = fetcher.fetch("https://img.example.com/a.png")

        assert image.size == (20, 10)
        session.get.assert_called_once_with("https://img.example.com/a.png", timeout=5)

    def test_rgba_converted_to_rgb(self):
        buf = io.BytesIO()
        Image.new("RGBA", (4, 4), (0, 0, 0, 0)).save(buf, format="PNG")
        session = MagicMock()
        session.get.return_value = self._response(buf.getvalue())

        assert ImageFetcher(session=session).fetch("https://x/a.png").mode == "RGB"

    def test_transport_error(self):
        session = MagicMock()
        session.get.side_effect = requests.ConnectionError("down")
        with pytest.raises(RenderError) as exc_info:
            ImageFetcher(session=session).fetch("https://x/a.png", page_index=3)
        assert exc_info.value.page_index == 3
        assert exc_info.value.asset_url == "https://x/a.png"

    def test_http_error(self):
        response = self._response(b"")
        response.raise_for_status.side_effect = requests.HTTPError("404 Client Error")
        session = MagicMock()
        session.get.return_value = response
        with pytest.raises(RenderError):
            ImageFetcher(session=session).fetch("https://x/a.png")

    def test_undecodable_data(self):
        session = MagicMock()
        session.get.return_value = self._response(b"not an image")
        with pytest.raises(RenderError):
            ImageFetcher(session=session).fetch("https://x/a.png")

    def test_empty_url(self):
        session = MagicMock()
        with pytest.raises(RenderError):
            ImageFetcher(session=session).fetch("")
        session.get.assert_not_called()
