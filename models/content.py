"""
Story content models.

BookContent is what the renderer draws: it is assembled from the customer's
creation plus order-level overrides (dedication, cover colour) right before
rendering and is never persisted by this service.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Dict, Any, List, Optional


@dataclass(frozen=True)
class StoryPage:
    """One page of the story: an illustration and its text."""

    page_number: int
    text: str = ""
    image_url: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StoryPage":
        return cls(
            page_number=int(data.get("page_number", data.get("pageNumber", 0)) or 0),
            text=data.get("text", "") or "",
            image_url=data.get("image_url", data.get("imageUrl", "")) or "",
        )


@dataclass(frozen=True)
class BookContent:
    """Everything the interior and cover documents are drawn from."""

    title: str
    artist_name: str
    pages: List[StoryPage] = field(default_factory=list)
    age: Optional[str] = None
    year: Optional[str] = None
    dedication: Optional[str] = None
    original_image_url: str = ""
    hero_image_url: str = ""
    cover_color_id: str = ""

    def with_order_overrides(self, dedication: str = "", cover_color_id: str = "") -> "BookContent":
        """Apply order-level choices; empty values keep the creation's own."""
        return replace(
            self,
            dedication=dedication or self.dedication,
            cover_color_id=cover_color_id or self.cover_color_id,
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BookContent":
        pages = [StoryPage.from_dict(p) for p in data.get("pages", data.get("story_pages", [])) or []]
        return cls(
            title=data.get("title", "") or "Untitled",
            artist_name=data.get("artist_name", data.get("artistName", "")) or "",
            pages=pages,
            age=data.get("age"),
            year=data.get("year"),
            dedication=data.get("dedication", data.get("dedication_text")),
            original_image_url=data.get("original_image_url", "") or "",
            hero_image_url=data.get("hero_image_url", "") or "",
            cover_color_id=data.get("cover_color_id", "") or "",
        )
