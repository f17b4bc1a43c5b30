"""
Document storage for rendered PDFs.

DocumentStorage is the seam to the object store. The partner must be able to
fetch each document by URL, so storage hands out time-limited signed URLs.

Two backends:

    ObjectDocumentStorage - S3-compatible bucket, presigned GET URLs (production)
    LocalDocumentStorage  - files on disk, URLs signed with HMAC-SHA256 over
                            "<path>:<expires>" and served by the /documents
                            route (development and tests)
"""

from __future__ import annotations

import hashlib
import hmac
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Mapping, Optional
from urllib.parse import quote, urlencode

import boto3
from botocore.client import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from core.exceptions import ConfigurationError, StorageError, ValidationError
from logging_config import get_logger


logger = get_logger(__name__)


class DocumentStorage(ABC):
    """Storage interface for rendered documents."""

    @abstractmethod
    def upload(self, path: str, data: bytes, content_type: str = "application/pdf") -> str:
        """Store `data` under `path`; returns the stored path."""

    @abstractmethod
    def signed_url(self, path: str, ttl_seconds: int) -> str:
        """Time-limited URL the partner can fetch the document from."""


class LocalDocumentStorage(DocumentStorage):
    """
    Filesystem-backed storage with HMAC-signed download URLs.

    Args:
        root_dir: Directory documents are written under
        public_base_url: Externally reachable base URL of this service
        signing_secret: Key for URL signatures
    """

    def __init__(self, root_dir: Path, public_base_url: str, signing_secret: str):
        if not signing_secret:
            raise ValidationError("Document signing secret is required", field="signing_secret")
        self._root = Path(root_dir)
        self._base_url = public_base_url.rstrip("/")
        self._secret = signing_secret.encode("utf-8")

    @property
    def root_dir(self) -> Path:
        return self._root

    def upload(self, path: str, data: bytes, content_type: str = "application/pdf") -> str:
        target = self.resolve(path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        except OSError as exc:
            raise StorageError(f"Upload failed: {exc}", path=path)

        logger.info(f"Stored {len(data)} bytes at {path}")
        return path

    def signed_url(self, path: str, ttl_seconds: int) -> str:
        if not self.resolve(path).is_file():
            raise StorageError("Cannot sign a URL for a missing document", path=path)
        expires = int(time.time()) + int(ttl_seconds)
        query = urlencode({"expires": expires, "signature": self._sign(path, expires)})
        return f"{self._base_url}/documents/{quote(path)}?{query}"

    def verify(self, path: str, expires: str, signature: str, now: Optional[float] = None) -> bool:
        """True when the signature matches and the URL has not expired."""
        try:
            expires_at = int(expires)
        except (TypeError, ValueError):
            return False
        if expires_at < int(now if now is not None else time.time()):
            return False
        expected = self._sign(path, expires_at)
        return hmac.compare_digest(expected.encode("ascii"), (signature or "").encode("ascii", "ignore"))

    def resolve(self, path: str) -> Path:
        """Absolute file path for a storage path; refuses paths outside the root."""
        root = self._root.resolve()
        target = (root / path).resolve()
        if root != target and root not in target.parents:
            raise StorageError("Path escapes storage root", path=path)
        return target

    def _sign(self, path: str, expires: int) -> str:
        message = f"{path}:{expires}".encode("utf-8")
        return hmac.new(self._secret, message, hashlib.sha256).hexdigest()


class ObjectDocumentStorage(DocumentStorage):
    """
    S3-compatible object storage (AWS S3, Cloudflare R2, MinIO).

    Documents are written with put_object and handed out as presigned GET
    URLs, so the partner downloads straight from the bucket.

    Args:
        client: boto3 S3 client
        bucket: Bucket documents are written to
        key_prefix: Optional prefix prepended to every storage path
    """

    def __init__(self, client: Any, bucket: str, key_prefix: str = ""):
        if not bucket:
            raise ValidationError("Document bucket is required", field="bucket")
        self._client = client
        self._bucket = bucket
        self._prefix = key_prefix.strip("/")

    @classmethod
    def from_settings(cls, settings: Mapping[str, Any]) -> "ObjectDocumentStorage":
        """
        Build the client from DOCUMENT_BUCKET / S3_* settings.

        Credentials fall back to boto3's default chain when not set.
        """
        client = boto3.client(
            "s3",
            endpoint_url=settings.get("S3_ENDPOINT_URL") or None,
            region_name=settings.get("S3_REGION") or None,
            aws_access_key_id=settings.get("S3_ACCESS_KEY_ID") or None,
            aws_secret_access_key=settings.get("S3_SECRET_ACCESS_KEY") or None,
            config=BotoConfig(signature_version="s3v4"),
        )
        return cls(client, settings.get("DOCUMENT_BUCKET", ""), settings.get("DOCUMENT_KEY_PREFIX", ""))

    @property
    def bucket(self) -> str:
        return self._bucket

    def key_for(self, path: str) -> str:
        path = path.lstrip("/")
        if ".." in path.split("/"):
            raise StorageError("Path escapes storage root", path=path)
        return f"{self._prefix}/{path}" if self._prefix else path

    def upload(self, path: str, data: bytes, content_type: str = "application/pdf") -> str:
        key = self.key_for(path)
        try:
            self._client.put_object(Bucket=self._bucket, Key=key, Body=data, ContentType=content_type)
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(f"Upload failed: {exc}", path=path)

        logger.info(f"Stored {len(data)} bytes at s3://{self._bucket}/{key}")
        return path

    def signed_url(self, path: str, ttl_seconds: int) -> str:
        try:
            return self._client.generate_presigned_url(
                ClientMethod="get_object",
                Params={"Bucket": self._bucket, "Key": self.key_for(path)},
                ExpiresIn=int(ttl_seconds),
            )
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(f"Could not presign URL: {exc}", path=path)


def build_document_storage(settings: Mapping[str, Any]) -> DocumentStorage:
    """
    Storage backend selected by DOCUMENT_STORAGE_BACKEND ("local" or "s3").

    Raises:
        ConfigurationError: Unknown backend or missing bucket
    """
    backend = (settings.get("DOCUMENT_STORAGE_BACKEND") or "local").strip().lower()
    if backend == "s3":
        if not settings.get("DOCUMENT_BUCKET"):
            raise ConfigurationError("DOCUMENT_BUCKET is required for s3 storage",
                                     setting="DOCUMENT_BUCKET")
        return ObjectDocumentStorage.from_settings(settings)
    if backend != "local":
        raise ConfigurationError(f"Unknown document storage backend: {backend}",
                                 setting="DOCUMENT_STORAGE_BACKEND")

    storage_dir = Path(settings["DOCUMENT_STORAGE_DIR"])
    storage_dir.mkdir(parents=True, exist_ok=True)
    return LocalDocumentStorage(
        storage_dir,
        settings["PUBLIC_BASE_URL"],
        settings["DOCUMENT_SIGNING_SECRET"],
    )
