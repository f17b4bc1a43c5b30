"""Story content lookup by creation id."""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from typing import Dict, Optional

from models.content import BookContent


class ContentRepository(ABC):
    """Source of the story content a book is printed from."""

    @abstractmethod
    def get_content(self, creation_id: str) -> Optional[BookContent]:
        """Content for a creation, or None when it does not exist."""


class InMemoryContentRepository(ContentRepository):
    """Dictionary-backed content store for development and tests."""

    def __init__(self, contents: Optional[Dict[str, BookContent]] = None):
        self._contents: Dict[str, BookContent] = dict(contents or {})
        self._lock = threading.Lock()

    def put(self, creation_id: str, content: BookContent) -> None:
        with self._lock:
            self._contents[creation_id] = content

    def get_content(self, creation_id: str) -> Optional[BookContent]:
        with self._lock:
            return self._contents.get(creation_id)
