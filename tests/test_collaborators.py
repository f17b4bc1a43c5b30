"""
Unit tests for the repository, storage and notifier implementations.
"""

import dataclasses
from unittest.mock import MagicMock

import pytest
import requests
from botocore.exceptions import ClientError

from core.exceptions import ConfigurationError, StorageError, ValidationError
from models.order import Order, OrderStatus, OrderType
from services.document_storage import LocalDocumentStorage, ObjectDocumentStorage, build_document_storage
from services.notifier import EmailServiceNotifier, NotificationError, notify_best_effort


# =============================================================================
# Order repository
# =============================================================================

class TestInMemoryOrderRepository:
    """Tests for InMemoryOrderRepository."""

    def _order(self, order_id="o1", **kwargs):
        return Order(id=order_id, order_type=OrderType.EBOOK, creation_id="c1", **kwargs)

    def test_duplicate_id_rejected(self, repository):
        repository.add(self._order())
        with pytest.raises(ValidationError):
            repository.add(self._order())

    def test_returns_copies(self, repository):
        repository.add(self._order())
        fetched = repository.get("o1")
        fetched.last_error = "edited outside the repository"
        assert repository.get("o1").last_error is None

    def test_copies_do_not_share_mutable_address(self, repository, shipping_address):
        repository.add(self._order(shipping_address=shipping_address))
        fetched = repository.get("o1")
        with pytest.raises(dataclasses.FrozenInstanceError):
            fetched.shipping_address.name = "Someone Else"
        assert repository.get("o1").shipping_address.name == "Ada Parent"

    def test_compare_and_set(self, repository):
        repository.add(self._order())
        assert repository.compare_and_set("o1", {OrderStatus.PAYMENT_RECEIVED},
                                          {"status": OrderStatus.PROCESSING}) is None
        updated = repository.compare_and_set("o1", {OrderStatus.PENDING},
                                             {"status": OrderStatus.PAYMENT_RECEIVED})
        assert updated.status is OrderStatus.PAYMENT_RECEIVED
        assert repository.compare_and_set("missing", {OrderStatus.PENDING}, {}) is None

    def test_update_fields_refuses_status(self, repository):
        repository.add(self._order())
        with pytest.raises(ValueError):
            repository.update_fields("o1", {"status": OrderStatus.FAILED})

    def test_lookups(self, repository):
        repository.add(self._order("o1", payment_session_id="cs_1"))
        repository.add(self._order("o2", partner_job_id="42", status=OrderStatus.SUBMITTED))

        assert repository.find_by_payment_session("cs_1").id == "o1"
        assert repository.find_by_partner_job_id("42").id == "o2"
        assert repository.find_by_partner_job_id("") is None
        assert [o.id for o in repository.list(OrderStatus.SUBMITTED)] == ["o2"]


# =============================================================================
# Document storage
# =============================================================================

class TestLocalDocumentStorage:
    """Tests for LocalDocumentStorage."""

    def test_upload_and_sign(self, storage):
        storage.upload("books/o1/cover.pdf", b"%PDF")
        url = storage.signed_url("books/o1/cover.pdf", 3600)
        assert url.startswith("http://testserver/documents/books/o1/cover.pdf?expires=")
        assert (storage.root_dir / "books" / "o1" / "cover.pdf").read_bytes() == b"%PDF"

    def test_verify(self, storage):
        signature = storage._sign("books/o1/cover.pdf", 2000)
        assert storage.verify("books/o1/cover.pdf", "2000", signature, now=1000) is True
        assert storage.verify("books/o1/cover.pdf", "2000", signature, now=3000) is False
        assert storage.verify("books/o1/other.pdf", "2000", signature, now=1000) is False
        assert storage.verify("books/o1/cover.pdf", "soon", signature, now=1000) is False

    def test_missing_document_cannot_be_signed(self, storage):
        with pytest.raises(StorageError):
            storage.signed_url("books/missing.pdf", 60)

    def test_path_escape_rejected(self, storage):
        with pytest.raises(StorageError):
            storage.upload("../outside.pdf", b"x")

    def test_signing_secret_required(self, tmp_path):
        with pytest.raises(ValidationError):
            LocalDocumentStorage(tmp_path, "http://testserver", "")


class TestObjectDocumentStorage:
    """Tests for ObjectDocumentStorage against a mocked S3 client."""

    def test_upload_puts_object(self):
        s3 = MagicMock()
        storage = ObjectDocumentStorage(s3, "print-files", key_prefix="books-prod/")

        assert storage.upload("books/o1/cover.pdf", b"%PDF") == "books/o1/cover.pdf"
        s3.put_object.assert_called_once_with(
            Bucket="print-files",
            Key="books-prod/books/o1/cover.pdf",
            Body=b"%PDF",
            ContentType="application/pdf",
        )

    def test_signed_url_is_presigned_get(self):
        s3 = MagicMock()
        s3.generate_presigned_url.return_value = "https://bucket.example.com/books/o1/cover.pdf?X-Amz-Signature=abc"
        storage = ObjectDocumentStorage(s3, "print-files")

        url = storage.signed_url("books/o1/cover.pdf", 3600)

        assert url.startswith("https://bucket.example.com/")
        s3.generate_presigned_url.assert_called_once_with(
            ClientMethod="get_object",
            Params={"Bucket": "print-files", "Key": "books/o1/cover.pdf"},
            ExpiresIn=3600,
        )

    def test_client_error_becomes_storage_error(self):
        s3 = MagicMock()
        s3.put_object.side_effect = ClientError(
            {"Error": {"Code": "AccessDenied", "Message": "denied"}}, "PutObject"
        )
        storage = ObjectDocumentStorage(s3, "print-files")
        with pytest.raises(StorageError):
            storage.upload("books/o1/cover.pdf", b"%PDF")

    def test_path_escape_rejected(self):
        storage = ObjectDocumentStorage(MagicMock(), "print-files")
        with pytest.raises(StorageError):
            storage.upload("../outside.pdf", b"x")

    def test_bucket_required(self):
        with pytest.raises(ValidationError):
            ObjectDocumentStorage(MagicMock(), "")


class TestBuildDocumentStorage:
    """Tests for backend selection."""

    def _settings(self, tmp_path, **overrides):
        settings = {
            "DOCUMENT_STORAGE_BACKEND": "local",
            "DOCUMENT_STORAGE_DIR": str(tmp_path / "docs"),
            "PUBLIC_BASE_URL": "http://testserver",
            "DOCUMENT_SIGNING_SECRET": "test-signing-secret",
            "DOCUMENT_BUCKET": "",
        }
        settings.update(overrides)
        return settings

    def test_local_backend(self, tmp_path):
        storage = build_document_storage(self._settings(tmp_path))
        assert isinstance(storage, LocalDocumentStorage)
        assert (tmp_path / "docs").is_dir()

    def test_s3_backend(self, tmp_path, monkeypatch):
        boto_client = MagicMock()
        monkeypatch.setattr("services.document_storage.boto3.client", boto_client)

        storage = build_document_storage(self._settings(
            tmp_path, DOCUMENT_STORAGE_BACKEND="s3", DOCUMENT_BUCKET="print-files",
            S3_ENDPOINT_URL="https://r2.example.com", S3_REGION="auto",
        ))

        assert isinstance(storage, ObjectDocumentStorage)
        assert storage.bucket == "print-files"
        assert boto_client.call_args.args == ("s3",)
        assert boto_client.call_args.kwargs["endpoint_url"] == "https://r2.example.com"

    def test_s3_backend_needs_bucket(self, tmp_path):
        with pytest.raises(ConfigurationError):
            build_document_storage(self._settings(tmp_path, DOCUMENT_STORAGE_BACKEND="s3"))

    def test_unknown_backend(self, tmp_path):
        with pytest.raises(ConfigurationError):
            build_document_storage(self._settings(tmp_path, DOCUMENT_STORAGE_BACKEND="ftp"))


# =============================================================================
# Notifier
# =============================================================================

class TestEmailServiceNotifier:
    """Tests for EmailServiceNotifier."""

    def test_posts_template(self):
        session = MagicMock()
        session.post.return_value = MagicMock(ok=True, status_code=202)
        notifier = EmailServiceNotifier("https://mail.example.com/send", token="t0k",
                                        timeout=3, session=session)

        notifier.send("book_shipped", "ada@example.com", {"order_id": "ABCD1234"})

        args, kwargs = session.post.call_args
        assert args[0] == "https://mail.example.com/send"
        assert kwargs["json"] == {
            "template_key": "book_shipped",
            "recipient_email": "ada@example.com",
            "variables": {"order_id": "ABCD1234"},
        }
        assert kwargs["headers"]["Authorization"] == "Bearer t0k"
        assert kwargs["timeout"] == 3

    def test_rejection_raises(self):
        session = MagicMock()
        session.post.return_value = MagicMock(ok=False, status_code=500)
        notifier = EmailServiceNotifier("https://mail.example.com/send", session=session)
        with pytest.raises(NotificationError):
            notifier.send("book_shipped", "ada@example.com", {})

    def test_transport_error_raises(self):
        session = MagicMock()
        session.post.side_effect = requests.ConnectionError("down")
        notifier = EmailServiceNotifier("https://mail.example.com/send", session=session)
        with pytest.raises(NotificationError):
            notifier.send("book_shipped", "ada@example.com", {})

    def test_best_effort_swallows_failures(self):
        notifier = MagicMock()
        notifier.send.side_effect = NotificationError("rejected")
        assert notify_best_effort(notifier, "book_shipped", "ada@example.com", {}) is False

    def test_best_effort_without_recipient(self):
        notifier = MagicMock()
        assert notify_best_effort(notifier, "book_shipped", "", {}) is False
        notifier.send.assert_not_called()
