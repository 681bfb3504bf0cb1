"""
Blob storage abstraction.

Two providers share one interface: LocalStorage writes under
STORAGE_LOCAL_PATH and serves files through the /files route with signed
tokens, S3Storage talks to any S3-compatible bucket through boto3.
A provider is built once at startup by create_storage() and injected.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from functools import partial
from pathlib import Path
from urllib.parse import quote, urlparse

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from musiclib.config import Settings
from musiclib.exceptions import StorageFailure
from musiclib.utils.security import create_file_token

logger = logging.getLogger(__name__)

CONTENT_FOLDERS = ("songs", "album_art", "song_art", "profiles", "artist_images")

# DeleteObjects accepts at most this many keys per request
S3_DELETE_BATCH_SIZE = 1000


@dataclass
class StoredObject:
    key: str
    size: int
    modified_at: datetime


class StorageProvider(ABC):
    """Interface every storage backend implements."""

    async def initialize(self) -> None:
        """Prepare the backend (create folders, check the bucket...)."""

    @abstractmethod
    async def upload_file(self, data: bytes, key: str, content_type: str) -> str:
        """Store bytes under key and return the locator recorded in the catalog."""

    @abstractmethod
    async def generate_url(self, key: str, expires_in: int = 900) -> str:
        """Return a URL that grants read access for expires_in seconds.

        Accepts either a bare key or a locator returned by upload_file.
        """

    @abstractmethod
    async def delete_file(self, key: str) -> None:
        ...

    async def delete_files(self, keys: list[str]) -> int:
        """Delete many keys, returning how many were requested."""
        for key in keys:
            await self.delete_file(key)
        return len(keys)

    @abstractmethod
    def key_from_locator(self, locator: str | None) -> str | None:
        """Map a stored locator back to its storage key (None if foreign)."""

    @abstractmethod
    async def list_keys(self, prefix: str = "") -> list[StoredObject]:
        ...


class LocalStorage(StorageProvider):
    """Stores files on local filesystem under STORAGE_LOCAL_PATH."""

    url_prefix = "/files/"

    def __init__(self, base: Path):
        self.base = Path(base)
        self.base.mkdir(parents=True, exist_ok=True)

    def _resolve(self, key: str) -> Path:
        root = self.base.resolve()
        path = (root / key).resolve()
        if path != root and root not in path.parents:
            raise StorageFailure(f"Storage key escapes storage root: {key}")
        return path

    def path_for(self, key: str) -> Path:
        return self._resolve(key)

    async def initialize(self) -> None:
        for folder in CONTENT_FOLDERS:
            (self.base / folder).mkdir(parents=True, exist_ok=True)

    async def upload_file(self, data: bytes, key: str, content_type: str) -> str:
        dest = self._resolve(key)
        try:
            dest.parent.mkdir(parents=True, exist_ok=True)
            dest.write_bytes(data)
        except OSError as e:
            raise StorageFailure(f"Failed to write {key}: {e}") from e
        return key

    async def generate_url(self, key: str, expires_in: int = 900) -> str:
        key = self.key_from_locator(key) or key
        token = create_file_token(key, expires_in)
        return f"{self.url_prefix}{quote(key)}?token={token}"

    async def delete_file(self, key: str) -> None:
        path = self._resolve(key)
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            raise StorageFailure(f"Failed to delete {key}: {e}") from e

    def key_from_locator(self, locator: str | None) -> str | None:
        if not locator:
            return None
        if locator.startswith(("http://", "https://")):
            return None
        if locator.startswith(self.url_prefix):
            locator = locator[len(self.url_prefix):]
        return locator.split("?", 1)[0] or None

    async def list_keys(self, prefix: str = "") -> list[StoredObject]:
        root = self.base.resolve()
        start = self._resolve(prefix) if prefix else root
        if not start.exists():
            return []
        objects = []
        for path in start.rglob("*"):
            if not path.is_file():
                continue
            stat = path.stat()
            objects.append(StoredObject(
                key=path.relative_to(root).as_posix(),
                size=stat.st_size,
                modified_at=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
            ))
        return objects


class S3Storage(StorageProvider):
    """S3-compatible object storage (AWS S3, MinIO, R2...) via boto3."""

    def __init__(
        self,
        bucket: str,
        region: str,
        endpoint_url: str | None = None,
        access_key_id: str | None = None,
        secret_access_key: str | None = None,
        client=None,
    ):
        self.bucket = bucket
        self.region = region
        self.endpoint_url = endpoint_url.rstrip("/") if endpoint_url else None
        self.s3_client = client or boto3.client(
            "s3",
            region_name=region,
            endpoint_url=endpoint_url,
            aws_access_key_id=access_key_id,
            aws_secret_access_key=secret_access_key,
        )

    async def _call(self, fn, *args, **kwargs):
        # boto3 is blocking; keep it off the event loop
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, partial(fn, *args, **kwargs))
        except (BotoCoreError, ClientError) as e:
            raise StorageFailure(f"S3 request failed: {e}") from e

    def _locator(self, key: str) -> str:
        if self.endpoint_url:
            return f"{self.endpoint_url}/{self.bucket}/{key}"
        return f"https://{self.bucket}.s3.{self.region}.amazonaws.com/{key}"

    async def initialize(self) -> None:
        await self._call(self.s3_client.head_bucket, Bucket=self.bucket)

    async def upload_file(self, data: bytes, key: str, content_type: str) -> str:
        await self._call(
            self.s3_client.put_object,
            Bucket=self.bucket,
            Key=key,
            Body=data,
            ContentType=content_type,
        )
        return self._locator(key)

    async def generate_url(self, key: str, expires_in: int = 900) -> str:
        key = self.key_from_locator(key) or key
        return await self._call(
            self.s3_client.generate_presigned_url,
            "get_object",
            Params={"Bucket": self.bucket, "Key": key},
            ExpiresIn=expires_in,
        )

    async def delete_file(self, key: str) -> None:
        await self._call(self.s3_client.delete_object, Bucket=self.bucket, Key=key)

    async def delete_files(self, keys: list[str]) -> int:
        for start in range(0, len(keys), S3_DELETE_BATCH_SIZE):
            batch = keys[start:start + S3_DELETE_BATCH_SIZE]
            response = await self._call(
                self.s3_client.delete_objects,
                Bucket=self.bucket,
                Delete={"Objects": [{"Key": k} for k in batch], "Quiet": True},
            )
            errors = (response or {}).get("Errors") or []
            if errors:
                failed = ", ".join(e.get("Key", "?") for e in errors)
                raise StorageFailure(f"S3 refused to delete: {failed}")
        return len(keys)

    def key_from_locator(self, locator: str | None) -> str | None:
        if not locator:
            return None
        if not locator.startswith(("http://", "https://")):
            return locator
        parsed = urlparse(locator)
        path = parsed.path.lstrip("/")
        if parsed.netloc.startswith(f"{self.bucket}.s3"):
            return path or None
        if path.startswith(f"{self.bucket}/"):
            return path[len(self.bucket) + 1:] or None
        return None

    async def list_keys(self, prefix: str = "") -> list[StoredObject]:
        def _list():
            objects = []
            paginator = self.s3_client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
                for obj in page.get("Contents", []):
                    objects.append(StoredObject(key=obj["Key"], size=obj["Size"], modified_at=obj["LastModified"]))
            return objects

        return await self._call(_list)


def create_storage(settings: Settings) -> StorageProvider:
    """Build the configured provider. Called once at startup."""
    backend = settings.STORAGE_BACKEND.lower()
    if backend == "local":
        logger.info("Storage: local filesystem at %s", settings.STORAGE_LOCAL_PATH)
        return LocalStorage(settings.STORAGE_LOCAL_PATH)
    if backend == "s3":
        logger.info("Storage: S3 bucket %s (%s)", settings.S3_BUCKET, settings.S3_ENDPOINT_URL or settings.S3_REGION)
        return S3Storage(
            bucket=settings.S3_BUCKET,
            region=settings.S3_REGION,
            endpoint_url=settings.S3_ENDPOINT_URL,
            access_key_id=settings.S3_ACCESS_KEY_ID,
            secret_access_key=settings.S3_SECRET_ACCESS_KEY,
        )
    raise ValueError(f"Unknown storage backend: {settings.STORAGE_BACKEND}")
