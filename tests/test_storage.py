"""
Object store backends and key helpers.
"""

import io

import pytest

from drawings_worker.core.config import Settings
from drawings_worker.core.errors import ObjectNotFoundError
from drawings_worker.core.flags import FeatureFlags
from drawings_worker.core.storage import (
    IMMUTABLE_CACHE,
    LocalObjectStore,
    S3ObjectStore,
    get_object_store,
    pdfs_key,
    tiles_base_url,
    tiles_key,
)


class FakeS3Client:
    """Just enough of boto3's S3 client for the adapter."""

    class exceptions:
        class NoSuchKey(Exception):
            pass

    def __init__(self):
        self.objects: dict[str, bytes] = {}
        self.put_calls: list[dict] = []
        self.delete_batches: list[int] = []

    def get_object(self, Bucket, Key):
        if Key not in self.objects:
            raise self.exceptions.NoSuchKey()
        return {"Body": io.BytesIO(self.objects[Key])}

    def put_object(self, **kwargs):
        self.put_calls.append(kwargs)
        self.objects[kwargs["Key"]] = kwargs["Body"]

    def delete_objects(self, Bucket, Delete):
        self.delete_batches.append(len(Delete["Objects"]))
        for item in Delete["Objects"]:
            self.objects.pop(item["Key"], None)


def _settings(**overrides) -> Settings:
    values = {"S3_BUCKET_NAME": "drawings", "AWS_REGION": "us-east-1"}
    values.update(overrides)
    return Settings(_env_file=None, **values)


class TestKeys:

    def test_prefixes(self):
        assert pdfs_key("org-1/p/plans.pdf") == "drawings-pdfs/org-1/p/plans.pdf"
        assert tiles_key("/org-1/abc/manifest.json") == "drawings-tiles/org-1/abc/manifest.json"

    def test_tiles_base_url_override(self, tmp_path):
        store = LocalObjectStore(str(tmp_path))
        settings = _settings(DRAWINGS_TILES_BASE_URL="https://cdn.example.com/tiles/")
        assert tiles_base_url(store, settings, "org/abc/page-0") == "https://cdn.example.com/tiles/org/abc/page-0"

    def test_tiles_base_url_from_store(self):
        settings = _settings(S3_ENDPOINT_URL="https://acct.r2.cloudflarestorage.com")
        store = S3ObjectStore(settings)
        assert tiles_base_url(store, settings, "org/abc/page-0") == (
            "https://acct.r2.cloudflarestorage.com/drawings/drawings-tiles/org/abc/page-0"
        )

    def test_flag_selects_backend(self, tmp_path):
        settings = _settings(LOCAL_STORAGE_PATH=str(tmp_path))
        assert isinstance(get_object_store(settings, FeatureFlags(_env_file=None, FF_USE_S3=True)), S3ObjectStore)
        assert isinstance(get_object_store(settings, FeatureFlags(_env_file=None, FF_USE_S3=False)), LocalObjectStore)


class TestLocalObjectStore:

    async def test_put_get_delete(self, tmp_path):
        store = LocalObjectStore(str(tmp_path))
        await store.put("drawings-tiles/a/b.png", b"png-bytes", "image/png", IMMUTABLE_CACHE)
        assert await store.get("drawings-tiles/a/b.png") == b"png-bytes"

        await store.delete_many(["drawings-tiles/a/b.png", "drawings-tiles/missing.png"])
        with pytest.raises(ObjectNotFoundError):
            await store.get("drawings-tiles/a/b.png")

    async def test_missing_key(self, tmp_path):
        store = LocalObjectStore(str(tmp_path))
        with pytest.raises(ObjectNotFoundError) as exc_info:
            await store.get("nope")
        assert exc_info.value.key == "nope"


class TestS3ObjectStore:

    @pytest.fixture
    def client(self):
        return FakeS3Client()

    @pytest.fixture
    def s3_store(self, client):
        store = S3ObjectStore(_settings())
        store._client = client
        return store

    async def test_put_sets_headers(self, s3_store, client):
        await s3_store.put("drawings-tiles/x.png", b"data", "image/png", IMMUTABLE_CACHE)
        call = client.put_calls[0]
        assert call["Bucket"] == "drawings"
        assert call["ContentType"] == "image/png"
        assert call["CacheControl"] == IMMUTABLE_CACHE
        assert await s3_store.get("drawings-tiles/x.png") == b"data"

    async def test_put_without_cache_control(self, s3_store, client):
        await s3_store.put("drawings-pdfs/a.pdf", b"%PDF")
        assert "CacheControl" not in client.put_calls[0]

    async def test_missing_key(self, s3_store):
        with pytest.raises(ObjectNotFoundError):
            await s3_store.get("drawings-tiles/nope.png")

    async def test_deletes_are_batched(self, s3_store, client):
        await s3_store.delete_many(f"k{i}" for i in range(2500))
        assert client.delete_batches == [1000, 1000, 500]

    async def test_empty_delete_is_noop(self, s3_store, client):
        await s3_store.delete_many([])
        assert client.delete_batches == []

    def test_public_url_without_endpoint(self):
        store = S3ObjectStore(_settings())
        assert store.public_url("drawings-tiles/a.png") == (
            "https://drawings.s3.us-east-1.amazonaws.com/drawings-tiles/a.png"
        )
