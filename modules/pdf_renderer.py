"""
Document renderer for print-ready storybook PDFs.

Produces two documents per book with reportlab:

    Interior - one page per story page plus front/back matter, every page
               at the interior geometry (8.75" x 8.75" including bleed).
    Cover    - one wraparound sheet: back cover, spine, front cover.

Story images are fetched concurrently, one independent fetch per page.
A failed fetch or decode never aborts the document: the page is drawn as a
text-only fallback at the same position and the failure is logged as a
partial degradation.

Usage:
    renderer = PDFRenderer(fetch_timeout=30, max_workers=4)
    interior = renderer.render_interior_document(content, min_pages=32)
    cover = renderer.render_cover_document(content, interior.page_count, "softcover")
"""

from __future__ import annotations

import io
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import List, Optional, Tuple, Union

import requests
from PIL import Image
from reportlab.lib import colors
from reportlab.lib.utils import ImageReader, simpleSplit
from reportlab.pdfgen import canvas

from core.exceptions import RenderError
from models.book_type import BookType, get_cover_color
from models.content import BookContent
from modules.print_specs import (
    BLEED_IN,
    TRIM_WIDTH_IN,
    TRIM_HEIGHT_IN,
    CoverGeometrySpec,
    PageGeometrySpec,
    cover_spec,
    inches_to_points,
    interior_spec,
)
from logging_config import get_logger


logger = get_logger(__name__)

FONT = "Helvetica"
FONT_BOLD = "Helvetica-Bold"

# Spine text is only drawn when the spine is wider than this (points)
SPINE_TEXT_MIN_WIDTH_PT = 20

# Pages the interior always has around the story: belongs-to, title,
# the end, about the artist, your turn to draw
FIXED_MATTER_PAGES = 5


@dataclass
class RenderedDocument:
    """Rendered PDF bytes plus what happened while drawing them."""

    kind: str
    data: bytes
    page_count: int
    degraded_pages: List[int] = field(default_factory=list)
    """Zero-based page indexes drawn with a fallback instead of their image."""

    @property
    def is_degraded(self) -> bool:
        return bool(self.degraded_pages)


# =============================================================================
# IMAGE FETCHING
# =============================================================================

class ImageFetcher:
    """
    Fetches and decodes remote images.

    One requests.Session is shared by all fetches of a renderer; every
    request has its own timeout.
    """

    def __init__(self, timeout: float = 30.0, session: Optional[requests.Session] = None):
        self.timeout = timeout
        self._session = session or requests.Session()

    def fetch(self, url: str, page_index: Optional[int] = None) -> Image.Image:
        """
        Download and decode one image.

        Raises:
            RenderError: On empty URL, transport error, HTTP error or
                undecodable image data
        """
        if not url:
            raise RenderError("No image URL", asset_url=url, page_index=page_index)

        try:
            response = self._session.get(url, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as exc:
            raise RenderError(f"Image fetch failed: {exc}", asset_url=url, page_index=page_index)

        try:
            image = Image.open(io.BytesIO(response.content))
            image.load()
        except (OSError, ValueError) as exc:
            raise RenderError(f"Image decode failed: {exc}", asset_url=url, page_index=page_index)

        if image.mode not in ("RGB", "L"):
            image = image.convert("RGB")
        return image

    def close(self) -> None:
        self._session.close()


FetchOutcome = Union[Image.Image, RenderError]


# =============================================================================
# RENDERER
# =============================================================================

class PDFRenderer:
    """Draws interior and cover PDFs from BookContent."""

    def __init__(
        self,
        fetcher: Optional[ImageFetcher] = None,
        fetch_timeout: float = 30.0,
        max_workers: int = 4,
    ):
        self._fetcher = fetcher or ImageFetcher(timeout=fetch_timeout)
        self._max_workers = max(1, max_workers)

    # -------------------------------------------------------------------------
    # Page planning
    # -------------------------------------------------------------------------

    @staticmethod
    def planned_page_count(content: BookContent) -> int:
        """Interior pages before padding, rounded up to even."""
        pages = FIXED_MATTER_PAGES + len(content.pages)
        if content.dedication:
            pages += 1
        return pages + (pages % 2)

    # -------------------------------------------------------------------------
    # Interior
    # -------------------------------------------------------------------------

    def render_interior(self, content: BookContent, min_pages: Optional[int] = None) -> bytes:
        return self.render_interior_document(content, min_pages).data

    def render_interior_document(
        self,
        content: BookContent,
        min_pages: Optional[int] = None,
    ) -> RenderedDocument:
        """
        Render the interior.

        Page order: This Book Belongs To, title, dedication (optional), one
        page per story page, The End, About the Artist, Your Turn to Draw!,
        then blank pages up to `min_pages`. The result always has an even
        page count.
        """
        spec = interior_spec()
        images = self._prefetch([page.image_url for page in content.pages])

        buf = io.BytesIO()
        c = canvas.Canvas(buf, pagesize=(spec.width_pt, spec.height_pt))
        c.setTitle(content.title)
        c.setAuthor(content.artist_name)

        degraded: List[int] = []
        page_index = 0

        self._draw_belongs_to(c, spec)
        c.showPage()
        page_index += 1

        self._draw_title_page(c, spec, content)
        c.showPage()
        page_index += 1

        if content.dedication:
            self._draw_centered_block(c, spec, content.dedication, FONT, 18, spec.height_pt / 2)
            c.showPage()
            page_index += 1

        for story_index, story_page in enumerate(content.pages):
            outcome = images[story_index]
            if isinstance(outcome, RenderError):
                logger.warning(
                    f"Story page {story_index + 1} degraded to text-only: {outcome.message}"
                )
                self._draw_text_fallback(c, spec, story_page.text)
                degraded.append(page_index)
            else:
                self._draw_story_page(c, spec, outcome, story_page.text)
            c.showPage()
            page_index += 1

        c.setFont(FONT_BOLD, 48)
        c.setFillColor(colors.black)
        c.drawCentredString(spec.width_pt / 2, spec.height_pt / 2, "The End")
        c.showPage()
        page_index += 1

        self._draw_about_artist(c, spec, content)
        c.showPage()
        page_index += 1

        self._draw_your_turn(c, spec)
        c.showPage()
        page_index += 1

        target = max(page_index, min_pages or 0)
        target += target % 2
        while page_index < target:
            c.showPage()
            page_index += 1

        c.save()
        data = buf.getvalue()

        if degraded:
            logger.warning(f"Interior rendered with {len(degraded)} degraded page(s): {degraded}")
        logger.info(f"Interior rendered: {page_index} pages, {len(data)} bytes")

        return RenderedDocument(kind="interior", data=data, page_count=page_index,
                                degraded_pages=degraded)

    def _prefetch(self, urls: List[str]) -> List[FetchOutcome]:
        """Fetch every story image concurrently; failures are returned, not raised."""
        if not urls:
            return []

        def fetch_one(item: Tuple[int, str]) -> FetchOutcome:
            index, url = item
            try:
                return self._fetcher.fetch(url, page_index=index)
            except RenderError as exc:
                return exc

        workers = min(self._max_workers, len(urls))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="render") as pool:
            return list(pool.map(fetch_one, enumerate(urls)))

    def _draw_belongs_to(self, c: canvas.Canvas, spec: PageGeometrySpec) -> None:
        c.setFillColor(colors.black)
        c.setFont(FONT, 32)
        c.drawCentredString(spec.width_pt / 2, spec.height_pt / 2 + 40, "This Book Belongs To")

        line_width = spec.width_pt * 0.6
        line_x = (spec.width_pt - line_width) / 2
        c.setStrokeColor(colors.black)
        c.setLineWidth(1)
        c.line(line_x, spec.height_pt / 2 - 20, line_x + line_width, spec.height_pt / 2 - 20)

    def _draw_title_page(self, c: canvas.Canvas, spec: PageGeometrySpec, content: BookContent) -> None:
        c.setFillColor(colors.black)
        self._draw_centered_block(c, spec, content.title, FONT_BOLD, 36, spec.height_pt / 2 + 50)
        if content.artist_name:
            c.setFont(FONT, 24)
            c.drawCentredString(spec.width_pt / 2, spec.height_pt / 2, f"by {content.artist_name}")

    def _draw_story_page(self, c: canvas.Canvas, spec: PageGeometrySpec,
                         image: Image.Image, text: str) -> None:
        _, y = self._draw_cover_fill(c, image, 0, 0, spec.width_pt, spec.height_pt)

        # Text only when the image leaves a band at the bottom
        if text and y > 80:
            c.setFillColor(colors.black)
            c.setFont(FONT, 14)
            lines = simpleSplit(text, FONT, 14, spec.width_pt - 100)
            ty = 50 + 18 * (len(lines) - 1)
            for line in lines:
                c.drawString(50, ty, line)
                ty -= 18

    def _draw_text_fallback(self, c: canvas.Canvas, spec: PageGeometrySpec, text: str) -> None:
        c.setFillColor(colors.black)
        self._draw_centered_block(c, spec, text or "Image unavailable", FONT, 16, spec.height_pt / 2)

    def _draw_about_artist(self, c: canvas.Canvas, spec: PageGeometrySpec, content: BookContent) -> None:
        mid = spec.height_pt / 2
        c.setFillColor(colors.black)
        c.setFont(FONT_BOLD, 28)
        c.drawCentredString(spec.width_pt / 2, mid + 100, "About the Artist")
        c.setFont(FONT, 22)
        c.drawCentredString(spec.width_pt / 2, mid + 40, content.artist_name)
        if content.age:
            c.setFont(FONT, 18)
            c.setFillColor(colors.Color(0.3, 0.3, 0.3))
            c.drawCentredString(spec.width_pt / 2, mid, f"Age {content.age}")
        if content.year:
            c.setFont(FONT, 14)
            c.setFillColor(colors.Color(0.4, 0.4, 0.4))
            c.drawCentredString(spec.width_pt / 2, mid - 30, str(content.year))

    def _draw_your_turn(self, c: canvas.Canvas, spec: PageGeometrySpec) -> None:
        c.setFillColor(colors.black)
        c.setFont(FONT_BOLD, 32)
        c.drawCentredString(spec.width_pt / 2, spec.height_pt - 80, "Your Turn to Draw!")

        margin = 60
        frame_top = spec.height_pt - 120
        frame_bottom = 80
        c.setStrokeColor(colors.Color(0.7, 0.7, 0.7))
        c.setLineWidth(2)
        c.rect(margin, frame_bottom, spec.width_pt - 2 * margin, frame_top - frame_bottom,
               fill=0, stroke=1)

        c.setFont(FONT, 12)
        c.setFillColor(colors.Color(0.5, 0.5, 0.5))
        c.drawCentredString(spec.width_pt / 2, frame_bottom - 30,
                            "Every artist starts with a blank page")

    @staticmethod
    def _draw_centered_block(c: canvas.Canvas, spec: PageGeometrySpec, text: str,
                             font: str, size: float, center_y: float) -> None:
        """Wrapped, horizontally centred text block around center_y."""
        leading = size * 1.3
        lines = simpleSplit(text, font, size, spec.width_pt - 100) or [""]
        y = center_y + leading * (len(lines) - 1) / 2
        c.setFont(font, size)
        for line in lines:
            c.drawCentredString(spec.width_pt / 2, y, line)
            y -= leading

    @staticmethod
    def _draw_cover_fill(c: canvas.Canvas, image: Image.Image, x: float, y: float,
                         width: float, height: float) -> Tuple[float, float]:
        """
        Draw `image` scaled to cover the box, preserving aspect ratio.

        Overflow is clipped to the box. Returns the drawn image's lower-left
        corner.
        """
        img_w, img_h = image.size
        box_ratio = width / height
        img_ratio = img_w / float(img_h)

        if img_ratio > box_ratio:
            draw_h = height
            draw_w = draw_h * img_ratio
        else:
            draw_w = width
            draw_h = draw_w / img_ratio
        draw_x = x + (width - draw_w) / 2
        draw_y = y + (height - draw_h) / 2

        c.saveState()
        path = c.beginPath()
        path.rect(x, y, width, height)
        c.clipPath(path, stroke=0, fill=0)
        c.drawImage(ImageReader(image), draw_x, draw_y, width=draw_w, height=draw_h)
        c.restoreState()
        return draw_x, draw_y

    # -------------------------------------------------------------------------
    # Cover
    # -------------------------------------------------------------------------

    def render_cover(self, content: BookContent, page_count: int,
                     book_type: Union[BookType, str]) -> bytes:
        return self.render_cover_document(content, page_count, book_type).data

    def render_cover_document(
        self,
        content: BookContent,
        page_count: int,
        book_type: Union[BookType, str],
    ) -> RenderedDocument:
        """
        Render the wraparound cover.

        Raises:
            ValidationError: If page_count breaks the binding rules (checked
                before anything is drawn)
        """
        spec = cover_spec(page_count, book_type)
        color = get_cover_color(content.cover_color_id)

        buf = io.BytesIO()
        c = canvas.Canvas(buf, pagesize=(spec.width_pt, spec.height_pt))
        c.setTitle(f"{content.title} - cover")

        # Background over the whole sheet, bleed included
        c.setFillColor(colors.Color(*color.rgb))
        c.rect(0, 0, spec.width_pt, spec.height_pt, fill=1, stroke=0)

        self._draw_back_cover(c, spec)
        self._draw_spine(c, spec, content)

        degraded: List[int] = []
        if not self._draw_front_image(c, spec, content):
            degraded.append(0)
        self._draw_front_title(c, spec, content)

        c.showPage()
        c.save()
        data = buf.getvalue()

        logger.info(
            f"Cover rendered: {spec.width_in:.3f}\" x {spec.height_in:.3f}\", "
            f"spine {spec.spine_width_in:.3f}\", {len(data)} bytes"
        )
        return RenderedDocument(kind="cover", data=data, page_count=1, degraded_pages=degraded)

    def _draw_back_cover(self, c: canvas.Canvas, spec: CoverGeometrySpec) -> None:
        back_x = inches_to_points(spec.back_cover_x_in)
        center_x = back_x + inches_to_points(spec.back_cover_width_in) / 2
        mid = spec.height_pt / 2

        c.setFillColor(colors.Color(0.2, 0.2, 0.2))
        c.setFont(FONT_BOLD, 18)
        c.drawCentredString(center_x, mid, "Once Upon a Drawing")
        c.setFont(FONT, 12)
        c.drawCentredString(center_x, mid - 30, "A unique storybook created")
        c.drawCentredString(center_x, mid - 50, "from an original drawing.")

        c.setFont(FONT, 10)
        c.setFillColor(colors.Color(0.4, 0.4, 0.4))
        c.drawCentredString(center_x, inches_to_points(BLEED_IN) + 40,
                            "Made with Love in Once Upon a Drawing")

    def _draw_spine(self, c: canvas.Canvas, spec: CoverGeometrySpec, content: BookContent) -> None:
        spine_x = inches_to_points(spec.spine_x_in)
        spine_w = spec.spine_width_pt

        c.setFillColor(colors.Color(0.2, 0.2, 0.2))
        c.rect(spine_x, 0, spine_w, spec.height_pt, fill=1, stroke=0)

        if spine_w > SPINE_TEXT_MIN_WIDTH_PT:
            text = f"{content.title} • {content.artist_name}" if content.artist_name else content.title
            c.saveState()
            c.setFillColor(colors.white)
            c.setFont(FONT, 8)
            c.translate(spine_x + spine_w / 2, spec.height_pt / 2)
            c.rotate(90)
            c.drawCentredString(0, -3, text)
            c.restoreState()

    def _draw_front_image(self, c: canvas.Canvas, spec: CoverGeometrySpec,
                          content: BookContent) -> bool:
        """Hero image over the front panel; returns False when it fell back."""
        front_x = inches_to_points(spec.front_cover_x_in)
        front_y = inches_to_points(BLEED_IN)
        front_w = inches_to_points(TRIM_WIDTH_IN)
        front_h = inches_to_points(TRIM_HEIGHT_IN)

        if not content.hero_image_url:
            self._draw_plain_front(c, front_x, front_y, front_w, front_h)
            return True

        try:
            image = self._fetcher.fetch(content.hero_image_url)
        except RenderError as exc:
            logger.warning(f"Cover hero image degraded to plain background: {exc.message}")
            self._draw_plain_front(c, front_x, front_y, front_w, front_h)
            return False

        self._draw_cover_fill(c, image, front_x, front_y, front_w, front_h)
        return True

    @staticmethod
    def _draw_plain_front(c: canvas.Canvas, x: float, y: float, w: float, h: float) -> None:
        c.setFillColor(colors.white)
        c.rect(x, y, w, h, fill=1, stroke=0)

    def _draw_front_title(self, c: canvas.Canvas, spec: CoverGeometrySpec,
                          content: BookContent) -> None:
        front_x = inches_to_points(spec.front_cover_x_in)
        front_w = inches_to_points(TRIM_WIDTH_IN)
        box_h = 150
        box_y = inches_to_points(BLEED_IN) + 50
        center_x = front_x + front_w / 2

        c.saveState()
        c.setFillColor(colors.white)
        c.setFillAlpha(0.9)
        c.rect(front_x, box_y, front_w, box_h, fill=1, stroke=0)
        c.restoreState()

        title_size = min(32.0, 600.0 / max(len(content.title), 1))
        c.setFillColor(colors.black)
        c.setFont(FONT_BOLD, title_size)
        c.drawCentredString(center_x, box_y + box_h - 50, content.title)

        if content.artist_name:
            c.setFont(FONT, 16)
            c.setFillColor(colors.Color(0.3, 0.3, 0.3))
            c.drawCentredString(center_x, box_y + box_h - 85, f"by {content.artist_name}")

    def close(self) -> None:
        self._fetcher.close()
