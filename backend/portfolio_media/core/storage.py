"""Blob storage for uploaded and transcoded media.

Supports: local filesystem, S3, MinIO, and other S3-compatible storage.
"""

import asyncio
import io
import logging
import os
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import BinaryIO, Optional

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from portfolio_media.core.config import settings

logger = logging.getLogger(__name__)


@dataclass
class StorageResult:
    """Result of a storage operation."""
    success: bool
    key: str
    url: str
    file_size: int = 0
    content_type: str = "application/octet-stream"
    etag: Optional[str] = None
    error_message: Optional[str] = None


@dataclass
class StoredObject:
    """An object already in storage."""
    key: str
    url: str
    size: int
    last_modified: Optional[datetime] = None


@dataclass
class StorageConfig:
    """Storage configuration."""
    backend: str  # local, s3, minio
    bucket: str = ""
    region: str = ""
    access_key: str = ""
    secret_key: str = ""
    endpoint_url: Optional[str] = None
    use_ssl: bool = True
    public_read: bool = True
    local_path: str = "./storage"
    cdn_domain: Optional[str] = None
    cdn_enabled: bool = False


@dataclass
class StoreMetadata:
    """Metadata attached to a stored object."""
    filename: str
    content_type: str = "application/octet-stream"
    prefix: str = "public-videos"
    extra: dict[str, str] = field(default_factory=dict)


class StorageBackend(ABC):
    """Abstract base class for storage backends."""

    @abstractmethod
    def upload_fileobj(
        self,
        fileobj: BinaryIO,
        key: str,
        content_type: str = "application/octet-stream",
        metadata: Optional[dict[str, str]] = None,
    ) -> StorageResult:
        """Upload a file object to storage."""

    @abstractmethod
    def list_objects(self, prefix: str) -> list[StoredObject]:
        """List stored objects under the ``prefix`` directory, in key order."""

    @abstractmethod
    def get_url(self, key: str, expires_in: int = 3600) -> str:
        """Get the public (or presigned) URL for a file."""


class LocalStorage(StorageBackend):
    """Local filesystem storage backend."""

    def __init__(self, config: StorageConfig):
        self.base_path = Path(config.local_path)
        self.base_path.mkdir(parents=True, exist_ok=True)
        self.cdn_domain = config.cdn_domain
        self.cdn_enabled = config.cdn_enabled

    def _get_full_path(self, key: str) -> Path:
        return self.base_path / key

    def upload_fileobj(
        self,
        fileobj: BinaryIO,
        key: str,
        content_type: str = "application/octet-stream",
        metadata: Optional[dict[str, str]] = None,
    ) -> StorageResult:
        """Write a file object below the storage root."""
        try:
            dest_path = self._get_full_path(key)
            dest_path.parent.mkdir(parents=True, exist_ok=True)

            with open(dest_path, "wb") as f:
                while chunk := fileobj.read(1024 * 1024):
                    f.write(chunk)

            return StorageResult(
                success=True,
                key=key,
                url=self.get_url(key),
                file_size=dest_path.stat().st_size,
                content_type=content_type,
            )
        except OSError as e:
            logger.error(f"Local storage write failed for {key}: {e}")
            return StorageResult(
                success=False,
                key=key,
                url="",
                content_type=content_type,
                error_message=str(e),
            )

    def list_objects(self, prefix: str) -> list[StoredObject]:
        root = self._get_full_path(prefix)
        if not root.is_dir():
            return []

        objects = []
        for path in sorted(p for p in root.rglob("*") if p.is_file()):
            stat = path.stat()
            key = path.relative_to(self.base_path).as_posix()
            objects.append(
                StoredObject(
                    key=key,
                    url=self.get_url(key),
                    size=stat.st_size,
                    last_modified=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
                )
            )
        return objects

    def get_url(self, key: str, expires_in: int = 3600) -> str:
        if self.cdn_enabled and self.cdn_domain:
            return f"https://{self.cdn_domain}/{key}"
        return self._get_full_path(key).absolute().as_uri()


class S3Storage(StorageBackend):
    """S3/MinIO compatible storage backend."""

    def __init__(self, config: StorageConfig, client=None):
        self.config = config
        self._client = client

    def _get_client(self):
        """Get or create the S3 client."""
        if self._client is None:
            client_kwargs = {
                "service_name": "s3",
                "region_name": self.config.region or "us-east-1",
                "aws_access_key_id": self.config.access_key or None,
                "aws_secret_access_key": self.config.secret_key or None,
            }

            # For MinIO or other S3-compatible storage
            if self.config.endpoint_url:
                client_kwargs["endpoint_url"] = self.config.endpoint_url
                client_kwargs["config"] = BotoConfig(
                    signature_version="s3v4",
                    s3={"addressing_style": "path"},
                )
                if not self.config.use_ssl:
                    client_kwargs["use_ssl"] = False

            self._client = boto3.client(**client_kwargs)

        return self._client

    def upload_fileobj(
        self,
        fileobj: BinaryIO,
        key: str,
        content_type: str = "application/octet-stream",
        metadata: Optional[dict[str, str]] = None,
    ) -> StorageResult:
        """Upload a file object to S3/MinIO."""
        try:
            client = self._get_client()

            fileobj.seek(0, os.SEEK_END)
            file_size = fileobj.tell()
            fileobj.seek(0)

            put_kwargs = {
                "Bucket": self.config.bucket,
                "Key": key,
                "Body": fileobj,
                "ContentType": content_type,
                "Metadata": metadata or {},
            }
            if self.config.public_read:
                put_kwargs["ACL"] = "public-read"

            response = client.put_object(**put_kwargs)

            return StorageResult(
                success=True,
                key=key,
                url=self.get_url(key),
                file_size=file_size,
                content_type=content_type,
                etag=response.get("ETag", "").strip('"'),
            )
        except (BotoCoreError, ClientError) as e:
            logger.error(f"S3 upload failed for {key}: {e}")
            return StorageResult(
                success=False,
                key=key,
                url="",
                content_type=content_type,
                error_message=str(e),
            )

    def list_objects(self, prefix: str) -> list[StoredObject]:
        """List objects under ``prefix``, following continuation pages."""
        paginator = self._get_client().get_paginator("list_objects_v2")
        objects = []
        for page in paginator.paginate(Bucket=self.config.bucket, Prefix=f"{prefix.rstrip('/')}/"):
            for item in page.get("Contents", []):
                objects.append(
                    StoredObject(
                        key=item["Key"],
                        url=self.get_url(item["Key"]),
                        size=item.get("Size", 0),
                        last_modified=item.get("LastModified"),
                    )
                )
        return objects

    def get_url(self, key: str, expires_in: int = 3600) -> str:
        """Public URL for public buckets, presigned URL otherwise."""
        if self.config.cdn_enabled and self.config.cdn_domain:
            return f"https://{self.config.cdn_domain}/{key}"

        if self.config.public_read:
            if self.config.endpoint_url:
                return f"{self.config.endpoint_url.rstrip('/')}/{self.config.bucket}/{key}"
            region = self.config.region or "us-east-1"
            return f"https://{self.config.bucket}.s3.{region}.amazonaws.com/{key}"

        return self._get_client().generate_presigned_url(
            "get_object",
            Params={"Bucket": self.config.bucket, "Key": key},
            ExpiresIn=expires_in,
        )


class Storage:
    """Storage facade that picks a backend from configuration."""

    _instance: Optional["Storage"] = None

    def __init__(self, config: Optional[StorageConfig] = None):
        if config is None:
            config = StorageConfig(
                backend=settings.STORAGE_BACKEND,
                bucket=settings.STORAGE_BUCKET,
                region=settings.STORAGE_REGION,
                access_key=settings.STORAGE_ACCESS_KEY,
                secret_key=settings.STORAGE_SECRET_KEY,
                endpoint_url=settings.STORAGE_ENDPOINT_URL,
                use_ssl=settings.STORAGE_USE_SSL,
                public_read=settings.STORAGE_PUBLIC_READ,
                local_path=settings.LOCAL_STORAGE_PATH,
                cdn_domain=settings.CDN_DOMAIN,
                cdn_enabled=settings.CDN_ENABLED,
            )

        self.config = config
        self._backend = self._create_backend(config)

    def _create_backend(self, config: StorageConfig) -> StorageBackend:
        backend_type = config.backend.lower()

        if backend_type == "local":
            return LocalStorage(config)
        elif backend_type in ("s3", "minio", "aws"):
            return S3Storage(config)
        else:
            raise ValueError(f"Unsupported storage backend: {backend_type}")

    @classmethod
    def get_instance(cls) -> "Storage":
        """Get singleton storage instance."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @staticmethod
    def generate_key(prefix: str, filename: str, timestamp_ms: Optional[int] = None) -> str:
        """Build a unique object key: ``<prefix>/<timestamp_ms>-<filename>``."""
        if timestamp_ms is None:
            timestamp_ms = int(time.time() * 1000)
        safe_name = Path(filename).name.replace(" ", "_")
        return f"{prefix}/{timestamp_ms}-{safe_name}"

    def upload_fileobj(
        self,
        fileobj: BinaryIO,
        key: str,
        content_type: str = "application/octet-stream",
        metadata: Optional[dict[str, str]] = None,
    ) -> StorageResult:
        return self._backend.upload_fileobj(fileobj, key, content_type, metadata)

    def list_objects(self, prefix: str) -> list[StoredObject]:
        return self._backend.list_objects(prefix)

    def get_url(self, key: str, expires_in: int = 3600) -> str:
        return self._backend.get_url(key, expires_in)


def get_storage() -> Storage:
    """Get the default storage instance."""
    return Storage.get_instance()


class StorageService:
    """Async wrapper that persists finished bytes and returns their URL."""

    def __init__(self, storage: Optional[Storage] = None):
        self._storage = storage or get_storage()

    async def store(self, data: bytes, metadata: StoreMetadata) -> StorageResult:
        """Store ``data`` under a fresh key derived from ``metadata``.

        The blocking backend call runs in a worker thread so large uploads
        do not stall the event loop.
        """
        key = self._storage.generate_key(metadata.prefix, metadata.filename)
        result = await asyncio.to_thread(
            self._storage.upload_fileobj,
            io.BytesIO(data),
            key,
            metadata.content_type,
            metadata.extra,
        )
        if result.success:
            logger.info(
                "Stored object",
                extra={"key": key, "size": result.file_size, "content_type": metadata.content_type},
            )
        return result

    async def list_files(self, prefix: str) -> list[StoredObject]:
        """List stored objects under ``prefix``.

        Raises:
            OSError: Local storage could not be read
            BotoCoreError, ClientError: The S3 listing failed
        """
        return await asyncio.to_thread(self._storage.list_objects, prefix)
