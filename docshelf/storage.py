# docshelf/storage.py
import asyncio
import io
import logging
import posixpath
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional, Protocol

from minio import Minio
from minio.error import S3Error

from docshelf.config import Settings
from docshelf.errors import ObjectExistsError, UpstreamError

logger = logging.getLogger(__name__)

_MISSING_CODES = {"NoSuchKey", "NoSuchObject", "ResourceNotFound"}
_PLACEHOLDERS = {".emptyFolderPlaceholder", ".keep"}


@dataclass(frozen=True)
class StoredObject:
    name: str
    path: str
    size: Optional[int]
    created_at: Optional[datetime]
    updated_at: Optional[datetime]


class ObjectStore(Protocol):
    async def put(self, path: str, data: bytes, content_type: str) -> None: ...

    async def list(self, prefix: str, limit: int) -> List[StoredObject]: ...

    async def signed_url(self, path: str, ttl_seconds: int) -> str: ...

    async def remove(self, path: str) -> None: ...

    async def ping(self) -> bool: ...


def _s3_error(e: S3Error) -> UpstreamError:
    return UpstreamError(e.message or e.code or str(e))


class MinioObjectStore:
    """
    Object Store Adapter over MinIO / S3. The SDK is synchronous, so every
    call is pushed to a worker thread.
    """

    def __init__(self, client: Minio, bucket: str):
        self.client = client
        self.bucket = bucket

    @classmethod
    def from_settings(cls, settings: Settings) -> "MinioObjectStore":
        client = Minio(
            endpoint=settings.minio_endpoint,
            access_key=settings.minio_access_key,
            secret_key=settings.minio_secret_key,
            secure=settings.minio_secure,
            region=settings.minio_region,
        )
        return cls(client, settings.storage_bucket)

    async def ensure_bucket(self) -> None:
        def _ensure():
            if not self.client.bucket_exists(bucket_name=self.bucket):
                self.client.make_bucket(bucket_name=self.bucket)
                logger.info("Created bucket %s", self.bucket)

        try:
            await asyncio.to_thread(_ensure)
        except S3Error as e:
            raise _s3_error(e) from e

    def _exists(self, path: str) -> bool:
        try:
            self.client.stat_object(bucket_name=self.bucket, object_name=path)
        except S3Error as e:
            if e.code in _MISSING_CODES:
                return False
            raise
        return True

    async def put(self, path: str, data: bytes, content_type: str) -> None:
        """Store a new blob. Never overwrites: an existing key raises ObjectExistsError."""

        def _put():
            if self._exists(path):
                raise ObjectExistsError(path)
            self.client.put_object(
                bucket_name=self.bucket,
                object_name=path,
                data=io.BytesIO(data),
                length=len(data),
                content_type=content_type,
            )

        try:
            await asyncio.to_thread(_put)
        except S3Error as e:
            raise _s3_error(e) from e

    async def list(self, prefix: str, limit: int) -> List[StoredObject]:
        """Objects directly under ``prefix``, newest first, at most ``limit`` of them."""
        prefix = prefix.strip("/") + "/"

        def _list():
            return list(self.client.list_objects(bucket_name=self.bucket, prefix=prefix, recursive=False))

        try:
            objects = await asyncio.to_thread(_list)
        except S3Error as e:
            raise _s3_error(e) from e

        items = []
        for obj in objects:
            if obj.is_dir:
                continue
            name = posixpath.basename(obj.object_name)
            if not name or name in _PLACEHOLDERS:
                continue
            # S3 keeps no separate creation time; a blob is never rewritten, so last_modified is it
            items.append(StoredObject(
                name=name,
                path=obj.object_name,
                size=obj.size,
                created_at=obj.last_modified,
                updated_at=obj.last_modified,
            ))
        items.sort(key=lambda o: o.created_at.timestamp() if o.created_at else 0.0, reverse=True)
        return items[:limit]

    async def signed_url(self, path: str, ttl_seconds: int) -> str:
        """Presigned GET valid for ``ttl_seconds``; expiry is enforced by the store."""

        def _sign():
            if not self._exists(path):
                raise UpstreamError("Object not found")
            return self.client.presigned_get_object(
                bucket_name=self.bucket,
                object_name=path,
                expires=timedelta(seconds=ttl_seconds),
            )

        try:
            return await asyncio.to_thread(_sign)
        except S3Error as e:
            raise _s3_error(e) from e

    async def remove(self, path: str) -> None:
        try:
            await asyncio.to_thread(self.client.remove_object, bucket_name=self.bucket, object_name=path)
        except S3Error as e:
            raise _s3_error(e) from e

    async def ping(self) -> bool:
        try:
            return await asyncio.to_thread(self.client.bucket_exists, bucket_name=self.bucket)
        except S3Error as e:
            raise _s3_error(e) from e
