"""Tests for audio object storage.

Tests cover:
- Object keys and public URLs
- Bucket creation
- Uploads, size limits and content types
- Error handling for missing buckets

Uses moto for S3 mocking to enable fast unit tests without Docker.
"""

import pytest
from moto import mock_aws

from alarm_audio.core.config import StorageSettings
from alarm_audio.services.storage import (
    AudioStorage,
    BucketNotFoundError,
    StorageError,
    UploadResult,
)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------
@pytest.fixture
def storage():
    """AudioStorage backed by a moto-mocked S3 client.

    moto only intercepts the default AWS endpoints, so the wrapper is created
    with a dummy endpoint and its internal client is replaced.
    """
    with mock_aws():
        import boto3

        s3_client = boto3.client(
            "s3",
            aws_access_key_id="test_access_key",
            aws_secret_access_key="test_secret_key",  # noqa: S106
            region_name="us-east-1",
        )
        audio_storage = AudioStorage(
            endpoint_url="http://mocked",
            access_key="test_access_key",
            secret_key="test_secret_key",  # noqa: S106
            max_file_size=1024,
        )
        audio_storage._client = s3_client
        yield audio_storage


@pytest.fixture
def storage_with_bucket(storage):
    storage.ensure_bucket()
    return storage


class TestKeysAndUrls:
    def test_object_key(self):
        storage = AudioStorage("http://minio:9000", "a", "b", folder="/alarm-audio/")

        assert storage.object_key("x.aac") == "alarm-audio/combined/x.aac"
        assert storage.object_key("x.aac", "weather") == "alarm-audio/weather/x.aac"

    def test_default_public_url(self):
        storage = AudioStorage("http://minio:9000/", "a", "b", bucket="clips")
        assert storage.public_url("k/x.aac") == "http://minio:9000/clips/k/x.aac"

    def test_custom_public_url(self):
        storage = AudioStorage("http://minio:9000", "a", "b", public_base_url="https://cdn.test/")
        assert storage.public_url("k/x.aac") == "https://cdn.test/k/x.aac"

    def test_from_settings(self):
        settings = StorageSettings(
            endpoint="http://minio:9000",
            access_key="a",
            secret_key="b",
            bucket="clips",
            folder="audio",
        )

        storage = AudioStorage.from_settings(settings)

        assert storage.bucket == "clips"
        assert storage.folder == "audio"
        assert storage.max_file_size == settings.max_file_size


class TestEnsureBucket:
    def test_creates_missing_bucket(self, storage):
        assert storage.ensure_bucket() is True

    def test_existing_bucket(self, storage):
        storage.ensure_bucket()
        assert storage.ensure_bucket() is False


class TestUpload:
    """Tests for audio uploads."""

    def test_upload(self, storage_with_bucket):
        result = storage_with_bucket.upload_audio(b"audio-bytes", "alarm_1.aac")

        assert isinstance(result, UploadResult)
        assert result.key == "alarm-audio/combined/alarm_1.aac"
        assert result.bucket == "audio-files"
        assert result.size_bytes == len(b"audio-bytes")
        assert result.public_url == "http://mocked/audio-files/alarm-audio/combined/alarm_1.aac"
        assert result.etag

        head = storage_with_bucket._client.head_object(Bucket="audio-files", Key=result.key)
        assert head["ContentType"] == "audio/aac"
        assert head["CacheControl"] == "max-age=3600"

    def test_content_type_from_extension(self, storage_with_bucket):
        result = storage_with_bucket.upload_audio(b"mp3", "clip.mp3")

        head = storage_with_bucket._client.head_object(Bucket="audio-files", Key=result.key)
        assert head["ContentType"] == "audio/mpeg"

    def test_empty_audio(self, storage_with_bucket):
        with pytest.raises(StorageError, match="empty"):
            storage_with_bucket.upload_audio(b"", "clip.aac")

    def test_too_large(self, storage_with_bucket):
        with pytest.raises(StorageError, match="too large") as exc:
            storage_with_bucket.upload_audio(b"x" * 2048, "clip.aac")

        assert exc.value.operation == "upload"

    def test_missing_bucket(self, storage):
        with pytest.raises(BucketNotFoundError):
            storage.upload_audio(b"audio", "clip.aac")

    @pytest.mark.asyncio
    async def test_upload_async(self, storage_with_bucket):
        result = await storage_with_bucket.upload_audio_async(
            b"audio", "clip.aac", audio_type="weather"
        )

        assert result.key == "alarm-audio/weather/clip.aac"
