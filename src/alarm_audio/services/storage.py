"""Object storage for generated alarm audio.

Wraps an S3-compatible bucket (MinIO in development). Audio files are stored
under `<folder>/<audio type>/<file name>` and served from a public URL.

Example:
    from alarm_audio.services.storage import AudioStorage
    from alarm_audio.core.settings import get_settings

    storage = AudioStorage.from_settings(get_settings().storage)
    result = await storage.upload_audio_async(data, "abc_combined_1700000000.aac")
    print(result.public_url)
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

if TYPE_CHECKING:
    from mypy_boto3_s3 import S3Client

    from alarm_audio.core.config import StorageSettings

logger = logging.getLogger(__name__)

CONTENT_TYPES = {
    "aac": "audio/aac",
    "mp3": "audio/mpeg",
    "opus": "audio/ogg",
    "wav": "audio/wav",
    "flac": "audio/flac",
}


@dataclass(frozen=True)
class UploadResult:
    """Result of an audio upload.

    Attributes:
        key: The object key in the bucket.
        bucket: The bucket name.
        size_bytes: Size of the uploaded audio in bytes.
        public_url: URL clients use to fetch the audio.
        etag: S3 ETag (usually MD5 of content, quoted).
    """

    key: str
    bucket: str
    size_bytes: int
    public_url: str
    etag: str


class StorageError(Exception):
    """Base exception for storage operations.

    Attributes:
        message: Human-readable error description.
        bucket: The bucket involved in the operation.
        key: The object key involved (if applicable).
        operation: The operation that failed.
    """

    def __init__(
        self,
        message: str,
        *,
        bucket: str | None = None,
        key: str | None = None,
        operation: str | None = None,
    ) -> None:
        self.message = message
        self.bucket = bucket
        self.key = key
        self.operation = operation
        super().__init__(message)


class BucketNotFoundError(StorageError):
    """Raised when the audio bucket does not exist."""


class AudioStorage:
    """S3-compatible storage for generated audio.

    The client uses synchronous boto3; the async helpers run it in a thread
    so uploads do not block the event loop.
    """

    def __init__(
        self,
        endpoint_url: str,
        access_key: str,
        secret_key: str,
        *,
        bucket: str = "audio-files",
        folder: str = "alarm-audio",
        region: str = "us-east-1",
        public_base_url: str | None = None,
        max_file_size: int = 10 * 1024 * 1024,
        connect_timeout: float = 5.0,
        read_timeout: float = 30.0,
        max_retries: int = 3,
    ) -> None:
        self._endpoint_url = endpoint_url.rstrip("/")
        self.bucket = bucket
        self.folder = folder.strip("/")
        self.max_file_size = max_file_size
        self._public_base_url = (
            public_base_url.rstrip("/")
            if public_base_url
            else f"{self._endpoint_url}/{bucket}"
        )

        config = Config(
            connect_timeout=connect_timeout,
            read_timeout=read_timeout,
            retries={"max_attempts": max_retries, "mode": "standard"},
            signature_version="s3v4",
        )

        self._client: S3Client = boto3.client(
            "s3",
            endpoint_url=endpoint_url,
            aws_access_key_id=access_key,
            aws_secret_access_key=secret_key,
            region_name=region,
            config=config,
        )

        logger.debug(
            "Initialized AudioStorage for endpoint=%s bucket=%s",
            endpoint_url,
            bucket,
        )

    @classmethod
    def from_settings(cls, settings: StorageSettings) -> AudioStorage:
        return cls(
            endpoint_url=settings.endpoint,
            access_key=settings.access_key.get_secret_value(),
            secret_key=settings.secret_key.get_secret_value(),
            bucket=settings.bucket,
            folder=settings.folder,
            region=settings.region,
            public_base_url=settings.public_base_url,
            max_file_size=settings.max_file_size,
        )

    def object_key(self, file_name: str, audio_type: str = "combined") -> str:
        return f"{self.folder}/{audio_type}/{file_name}"

    def public_url(self, key: str) -> str:
        return f"{self._public_base_url}/{key}"

    def ensure_bucket(self) -> bool:
        """Ensure the audio bucket exists, creating it if necessary.

        Returns:
            True if the bucket was created, False if it already existed.

        Raises:
            StorageError: If the bucket cannot be checked or created.
        """
        try:
            self._client.head_bucket(Bucket=self.bucket)
            return False
        except ClientError as e:
            error_code = e.response.get("Error", {}).get("Code", "")
            if error_code not in ("404", "NoSuchBucket"):
                raise StorageError(
                    f"Failed to check bucket: {e}",
                    bucket=self.bucket,
                    operation="ensure_bucket",
                ) from e

        try:
            self._client.create_bucket(Bucket=self.bucket)
        except ClientError as e:
            raise StorageError(
                f"Failed to create bucket: {e}",
                bucket=self.bucket,
                operation="ensure_bucket",
            ) from e
        logger.info("Created audio bucket: %s", self.bucket)
        return True

    def upload_audio(
        self,
        data: bytes,
        file_name: str,
        *,
        audio_type: str = "combined",
        content_type: str | None = None,
    ) -> UploadResult:
        """Upload an audio file.

        Raises:
            StorageError: If the file is too large or the upload fails.
            BucketNotFoundError: If the bucket does not exist.
        """
        key = self.object_key(file_name, audio_type)
        size_bytes = len(data)

        if size_bytes == 0:
            raise StorageError("Audio file is empty", bucket=self.bucket, key=key, operation="upload")
        if size_bytes > self.max_file_size:
            raise StorageError(
                f"Audio file too large: {size_bytes} bytes (max {self.max_file_size})",
                bucket=self.bucket,
                key=key,
                operation="upload",
            )

        extension = file_name.rsplit(".", 1)[-1].lower()
        try:
            response = self._client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=data,
                ContentType=content_type or CONTENT_TYPES.get(extension, "application/octet-stream"),
                CacheControl="max-age=3600",
            )
        except ClientError as e:
            error_code = e.response.get("Error", {}).get("Code", "")
            if error_code == "NoSuchBucket":
                raise BucketNotFoundError(
                    f"Bucket does not exist: {self.bucket}",
                    bucket=self.bucket,
                    key=key,
                    operation="upload",
                ) from e
            raise StorageError(
                f"Upload failed: {e}",
                bucket=self.bucket,
                key=key,
                operation="upload",
            ) from e
        except BotoCoreError as e:
            raise StorageError(
                f"Upload failed: {e}",
                bucket=self.bucket,
                key=key,
                operation="upload",
            ) from e

        logger.debug("Uploaded %s/%s (%d bytes)", self.bucket, key, size_bytes)
        return UploadResult(
            key=key,
            bucket=self.bucket,
            size_bytes=size_bytes,
            public_url=self.public_url(key),
            etag=response.get("ETag", ""),
        )

    async def upload_audio_async(
        self,
        data: bytes,
        file_name: str,
        *,
        audio_type: str = "combined",
        content_type: str | None = None,
    ) -> UploadResult:
        return await asyncio.to_thread(
            self.upload_audio,
            data,
            file_name,
            audio_type=audio_type,
            content_type=content_type,
        )
