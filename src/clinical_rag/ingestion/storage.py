"""
Object storage for raw uploads.

S3-compatible buckets (MinIO in the clinic deployment) are used when an
endpoint is configured and reachable; otherwise files land in a local
directory.

Dependencies: boto3
"""

from __future__ import annotations

import logging
import mimetypes
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from clinical_rag.config import Settings
from clinical_rag.config import settings as default_settings
from clinical_rag.errors import StorageError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StoredObject:
    key: str
    url: str
    size: int


def _object_key(original_name: str, folder: str, filename: str | None) -> str:
    if not filename:
        extension = Path(original_name).suffix
        filename = f"{uuid.uuid4().hex}{extension}"
    return f"{folder.strip('/')}/{filename}" if folder else filename


class ObjectStorage(ABC):
    """Minimal blob interface used by the ingester."""

    @abstractmethod
    def upload(
        self,
        data: bytes,
        original_name: str,
        *,
        folder: str = "uploads",
        filename: str | None = None,
        content_type: str | None = None,
    ) -> StoredObject:
        ...

    @abstractmethod
    def download(self, key: str) -> bytes:
        ...

    @abstractmethod
    def delete(self, key: str) -> None:
        ...

    @abstractmethod
    def exists(self, key: str) -> bool:
        ...


class S3ObjectStorage(ObjectStorage):
    """S3 / MinIO bucket storage.

    Args:
        bucket: Bucket name
        client: Pre-built boto3 S3 client (tests inject a stub)
        url_expiry: Lifetime of presigned download URLs in seconds
    """

    def __init__(self, bucket: str, client, url_expiry: int = 24 * 60 * 60) -> None:
        self._bucket = bucket
        self._s3_client = client
        self._url_expiry = url_expiry

    @classmethod
    def from_settings(cls, settings: Settings) -> S3ObjectStorage:
        client = boto3.client(
            "s3",
            endpoint_url=settings.storage_endpoint_url,
            aws_access_key_id=settings.storage_access_key or None,
            aws_secret_access_key=settings.storage_secret_key or None,
            region_name=settings.storage_region,
        )
        return cls(settings.storage_bucket, client)

    def ensure_bucket(self) -> None:
        """Create the bucket when it does not exist yet."""
        try:
            self._s3_client.head_bucket(Bucket=self._bucket)
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") not in ("404", "NoSuchBucket"):
                raise
            self._s3_client.create_bucket(Bucket=self._bucket)
            logger.info("Created bucket %s", self._bucket)

    def upload(
        self,
        data: bytes,
        original_name: str,
        *,
        folder: str = "uploads",
        filename: str | None = None,
        content_type: str | None = None,
    ) -> StoredObject:
        key = _object_key(original_name, folder, filename)
        extra = {"ContentType": content_type} if content_type else {}
        try:
            self._s3_client.put_object(Bucket=self._bucket, Key=key, Body=data, **extra)
            url = self._s3_client.generate_presigned_url(
                ClientMethod="get_object",
                Params={"Bucket": self._bucket, "Key": key},
                ExpiresIn=self._url_expiry,
            )
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(f"Upload failed for {key}") from exc
        return StoredObject(key=key, url=url, size=len(data))

    def download(self, key: str) -> bytes:
        try:
            response = self._s3_client.get_object(Bucket=self._bucket, Key=key)
            return response["Body"].read()
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(f"Download failed for {key}") from exc

    def delete(self, key: str) -> None:
        try:
            self._s3_client.delete_object(Bucket=self._bucket, Key=key)
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(f"Delete failed for {key}") from exc

    def exists(self, key: str) -> bool:
        try:
            self._s3_client.head_object(Bucket=self._bucket, Key=key)
            return True
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in ("404", "NoSuchKey"):
                return False
            raise


class LocalObjectStorage(ObjectStorage):
    """Filesystem fallback rooted at *root*; URLs are ``file://`` URIs."""

    def __init__(self, root: str | Path) -> None:
        self._root = Path(root).resolve()

    def _path(self, key: str) -> Path:
        path = (self._root / key).resolve()
        if self._root not in path.parents:
            raise StorageError(f"Key escapes storage root: {key}")
        return path

    def upload(
        self,
        data: bytes,
        original_name: str,
        *,
        folder: str = "uploads",
        filename: str | None = None,
        content_type: str | None = None,
    ) -> StoredObject:
        key = _object_key(original_name, folder, filename)
        path = self._path(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
        except OSError as exc:
            raise StorageError(f"Upload failed for {key}") from exc
        return StoredObject(key=key, url=path.as_uri(), size=len(data))

    def download(self, key: str) -> bytes:
        try:
            return self._path(key).read_bytes()
        except OSError as exc:
            raise StorageError(f"Download failed for {key}") from exc

    def delete(self, key: str) -> None:
        try:
            self._path(key).unlink(missing_ok=True)
        except OSError as exc:
            raise StorageError(f"Delete failed for {key}") from exc

    def exists(self, key: str) -> bool:
        return self._path(key).is_file()


def guess_mime_type(filename: str) -> str:
    return mimetypes.guess_type(filename)[0] or "application/octet-stream"


def build_object_storage(settings: Settings | None = None) -> ObjectStorage:
    """S3 storage when configured and reachable, else the local directory."""
    settings = settings or default_settings
    if settings.storage_endpoint_url:
        storage = S3ObjectStorage.from_settings(settings)
        try:
            storage.ensure_bucket()
            return storage
        except (BotoCoreError, ClientError) as exc:
            logger.warning(
                "Object storage at %s unavailable (%s); falling back to %s",
                settings.storage_endpoint_url,
                exc,
                settings.storage_local_dir,
            )
    return LocalObjectStorage(settings.storage_local_dir)
