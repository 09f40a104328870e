"""
Object storage abstraction. S3 (or R2) OR local filesystem. Controlled by FF_USE_S3 flag.

Keys are slash-separated paths. Source PDFs and derived tile artifacts live in
separate logical buckets, expressed as key prefixes inside one physical bucket.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Iterable, Optional

from .config import Settings
from .errors import ObjectNotFoundError
from .flags import FeatureFlags

logger = logging.getLogger(__name__)

PDFS_PREFIX = "drawings-pdfs"
TILES_PREFIX = "drawings-tiles"

IMMUTABLE_CACHE = "public, max-age=31536000, immutable"
TEMP_CACHE = "public, max-age=3600"

# S3 DeleteObjects accepts at most 1000 keys per call
_DELETE_BATCH = 1000


def _normalize_path(path: str) -> str:
    return path[1:] if path.startswith("/") else path


def pdfs_key(path: str) -> str:
    """Full object key for a source PDF storage path."""
    return f"{PDFS_PREFIX}/{_normalize_path(path)}"


def tiles_key(path: str) -> str:
    """Full object key for a raster, tile, manifest or thumbnail path."""
    return f"{TILES_PREFIX}/{_normalize_path(path)}"


class ObjectStore(ABC):
    @abstractmethod
    async def get(self, key: str) -> bytes:
        """Read an object. Raises ObjectNotFoundError if the key is missing."""
        ...

    @abstractmethod
    async def put(
        self,
        key: str,
        data: bytes,
        content_type: str = "application/octet-stream",
        cache_control: Optional[str] = None,
    ) -> None:
        """Write (or overwrite) an object."""
        ...

    @abstractmethod
    async def delete_many(self, keys: Iterable[str]) -> None:
        """Delete objects. Missing keys are ignored."""
        ...

    @abstractmethod
    def public_url(self, key: str) -> str:
        """Public/accessible URL for a stored key."""
        ...


class S3ObjectStore(ObjectStore):
    def __init__(self, settings: Settings):
        self._settings = settings
        self._client = None

    def _get_client(self):
        if self._client is None:
            import boto3
            from botocore.config import Config

            settings = self._settings
            kwargs = {"region_name": settings.aws_region}
            if settings.aws_access_key_id:
                kwargs["aws_access_key_id"] = settings.aws_access_key_id
                kwargs["aws_secret_access_key"] = settings.aws_secret_access_key
            if settings.s3_endpoint_url:
                kwargs["endpoint_url"] = settings.s3_endpoint_url
            if settings.s3_force_path_style:
                kwargs["config"] = Config(s3={"addressing_style": "path"})
            self._client = boto3.client("s3", **kwargs)
        return self._client

    async def get(self, key: str) -> bytes:
        client = self._get_client()

        def _read() -> bytes:
            try:
                result = client.get_object(Bucket=self._settings.s3_bucket_name, Key=key)
            except client.exceptions.NoSuchKey:
                raise ObjectNotFoundError(key)
            return result["Body"].read()

        return await asyncio.to_thread(_read)

    async def put(
        self,
        key: str,
        data: bytes,
        content_type: str = "application/octet-stream",
        cache_control: Optional[str] = None,
    ) -> None:
        client = self._get_client()
        kwargs = {
            "Bucket": self._settings.s3_bucket_name,
            "Key": key,
            "Body": data,
            "ContentType": content_type,
        }
        if cache_control:
            kwargs["CacheControl"] = cache_control

        await asyncio.to_thread(client.put_object, **kwargs)
        logger.debug("Uploaded to S3: %s (%d bytes)", key, len(data))

    async def delete_many(self, keys: Iterable[str]) -> None:
        keys = list(keys)
        if not keys:
            return
        client = self._get_client()
        for start in range(0, len(keys), _DELETE_BATCH):
            batch = keys[start:start + _DELETE_BATCH]
            await asyncio.to_thread(
                client.delete_objects,
                Bucket=self._settings.s3_bucket_name,
                Delete={"Objects": [{"Key": k} for k in batch], "Quiet": True},
            )
        logger.info("Deleted %d objects from S3", len(keys))

    def public_url(self, key: str) -> str:
        settings = self._settings
        if settings.s3_endpoint_url:
            return f"{settings.s3_endpoint_url.rstrip('/')}/{settings.s3_bucket_name}/{key}"
        return f"https://{settings.s3_bucket_name}.s3.{settings.aws_region}.amazonaws.com/{key}"


class LocalObjectStore(ObjectStore):
    def __init__(self, base_path: str = "./local_storage"):
        self.base_path = Path(base_path)

    def _path(self, key: str) -> Path:
        return self.base_path / _normalize_path(key)

    async def get(self, key: str) -> bytes:
        path = self._path(key)
        if not path.is_file():
            raise ObjectNotFoundError(key)
        return path.read_bytes()

    async def put(
        self,
        key: str,
        data: bytes,
        content_type: str = "application/octet-stream",
        cache_control: Optional[str] = None,
    ) -> None:
        path = self._path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        logger.debug("Saved locally: %s (%d bytes)", path, len(data))

    async def delete_many(self, keys: Iterable[str]) -> None:
        for key in keys:
            self._path(key).unlink(missing_ok=True)

    def public_url(self, key: str) -> str:
        return str(self._path(key))


def get_object_store(settings: Settings, flags: FeatureFlags) -> ObjectStore:
    """Return the object store backend selected by feature flags."""
    if flags.use_s3:
        return S3ObjectStore(settings)
    return LocalObjectStore(settings.local_storage_path)


def tiles_base_url(store: ObjectStore, settings: Settings, base_path: str) -> str:
    """Public base URL under which a page's tiles, manifest and thumbnail live."""
    if settings.drawings_tiles_base_url:
        return f"{settings.drawings_tiles_base_url.rstrip('/')}/{_normalize_path(base_path)}"
    return store.public_url(tiles_key(base_path))
