"""Preflight checks for rendered PDFs before they are uploaded."""

from __future__ import annotations

import io
from typing import Dict, Any, Optional

from pypdf import PdfReader
from pypdf.errors import PdfReadError

from core.exceptions import ValidationError
from modules.print_specs import CoverGeometrySpec, PageGeometrySpec, POINTS_PER_INCH
from logging_config import get_logger


logger = get_logger(__name__)

# Allowed difference between rendered and expected page size, in inches
SIZE_TOLERANCE_IN = 0.01


class PDFAnalyzer:
    """Extract page count and page size, and check them against geometry."""

    def analyze(self, data: bytes) -> Dict[str, Any]:
        info: Dict[str, Any] = {
            "pages": 0,
            "size_kb": round(len(data) / 1024, 2),
            "page_dimensions": [],
        }

        try:
            reader = PdfReader(io.BytesIO(data))
            info["pages"] = len(reader.pages)
            if reader.pages:
                page = reader.pages[0]
                width = float(page.mediabox.width) / POINTS_PER_INCH
                height = float(page.mediabox.height) / POINTS_PER_INCH
                info["page_dimensions"].append({"width_in": round(width, 4), "height_in": round(height, 4)})
        except (PdfReadError, ValueError, OSError) as exc:
            info["error"] = f"PDF analysis failed: {exc}"

        return info

    def preflight_interior(
        self,
        data: bytes,
        spec: PageGeometrySpec,
        expected_pages: Optional[int] = None,
    ) -> Dict[str, Any]:
        """
        Check a rendered interior.

        Raises:
            ValidationError: Unreadable PDF, odd page count, page count other
                than `expected_pages`, or page size off the geometry
        """
        info = self._readable(data, "interior")
        pages = info["pages"]

        if pages % 2 != 0:
            raise ValidationError(
                f"Interior has an odd page count ({pages})",
                field="interior",
                details={"pages": pages},
            )
        if expected_pages is not None and pages != expected_pages:
            raise ValidationError(
                f"Interior has {pages} pages, expected {expected_pages}",
                field="interior",
                details={"pages": pages, "expected": expected_pages},
            )
        self._check_size(info, spec.width_in, spec.height_in, "interior")

        logger.debug(f"Interior preflight passed: {pages} pages")
        return info

    def preflight_cover(self, data: bytes, spec: CoverGeometrySpec) -> Dict[str, Any]:
        """
        Check a rendered cover: one sheet at the cover geometry.

        Raises:
            ValidationError: Unreadable PDF, more than one page, or page size
                off the geometry
        """
        info = self._readable(data, "cover")
        if info["pages"] != 1:
            raise ValidationError(
                f"Cover must be a single sheet, got {info['pages']} pages",
                field="cover",
                details={"pages": info["pages"]},
            )
        self._check_size(info, spec.width_in, spec.height_in, "cover")

        logger.debug(f"Cover preflight passed: {spec.width_in:.3f}\" wide")
        return info

    def _readable(self, data: bytes, kind: str) -> Dict[str, Any]:
        info = self.analyze(data)
        if "error" in info or info["pages"] == 0:
            raise ValidationError(
                f"Rendered {kind} is not a readable PDF",
                field=kind,
                details={"error": info.get("error", "no pages")},
            )
        return info

    @staticmethod
    def _check_size(info: Dict[str, Any], width_in: float, height_in: float, kind: str) -> None:
        dims = info["page_dimensions"][0]
        if (abs(dims["width_in"] - width_in) > SIZE_TOLERANCE_IN
                or abs(dims["height_in"] - height_in) > SIZE_TOLERANCE_IN):
            raise ValidationError(
                f"Rendered {kind} is {dims['width_in']}\" x {dims['height_in']}\", "
                f"expected {width_in:.3f}\" x {height_in:.3f}\"",
                field=kind,
                details={"actual": dims, "expected": {"width_in": width_in, "height_in": height_in}},
            )
