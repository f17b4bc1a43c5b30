"""Shared fixtures for the storybook print tests."""

import io
from unittest.mock import MagicMock

import pytest
from PIL import Image

from models.content import BookContent, StoryPage
from models.fulfillment import FulfillmentJob
from models.order import ShippingAddress
from modules.pdf_renderer import PDFRenderer
from services.content_repository import InMemoryContentRepository
from services.document_storage import LocalDocumentStorage
from services.order_repository import InMemoryOrderRepository
from services.order_state_machine import OrderStateMachine


def _make_image(width: int = 40, height: int = 30, color=(200, 120, 40)) -> Image.Image:
    return Image.new("RGB", (width, height), color)


@pytest.fixture
def make_image():
    """Factory for small in-memory RGB images."""
    return _make_image


@pytest.fixture
def png_bytes():
    """Factory for encoded PNG data."""

    def factory(width: int = 40, height: int = 30) -> bytes:
        buf = io.BytesIO()
        _make_image(width, height).save(buf, format="PNG")
        return buf.getvalue()

    return factory


@pytest.fixture
def shipping_address():
    return ShippingAddress(
        name="Ada Parent",
        street1="1 Main St",
        city="Springfield",
        state_code="IL",
        postal_code="62701",
        country_code="US",
        email="ada@example.com",
    )


@pytest.fixture
def book_content():
    """Ten-page story with a hero image."""
    pages = [
        StoryPage(page_number=i + 1, text=f"Page {i + 1} of the story.",
                  image_url=f"https://img.example.com/{i + 1}.png")
        for i in range(10)
    ]
    return BookContent(
        title="The Purple Dragon",
        artist_name="Mia",
        age="6",
        year="2026",
        pages=pages,
        hero_image_url="https://img.example.com/hero.png",
    )


@pytest.fixture
def image_fetcher():
    """Fetcher double that returns a small image for every URL."""
    fetcher = MagicMock()
    fetcher.fetch.side_effect = lambda url, page_index=None: _make_image()
    return fetcher


@pytest.fixture
def renderer(image_fetcher):
    return PDFRenderer(fetcher=image_fetcher, max_workers=2)


@pytest.fixture
def repository():
    return InMemoryOrderRepository()


@pytest.fixture
def state_machine(repository):
    return OrderStateMachine(repository)


@pytest.fixture
def content_repository(book_content):
    return InMemoryContentRepository({"creation-1": book_content})


@pytest.fixture
def storage(tmp_path):
    return LocalDocumentStorage(tmp_path / "documents", "http://testserver", "test-signing-secret")


@pytest.fixture
def fulfillment_client():
    """Print partner client double (sandbox)."""
    client = MagicMock()
    client.environment = "sandbox"
    client.submit_job.return_value = FulfillmentJob("98765", "CREATED", "sandbox")
    return client
