"""
S3-compatible storage service for ReelStage.

Wraps the boto3 operations the staging pipeline and the read path need:

- Uploading a processed video file under a storage key with its content type
- Generating short-lived presigned GET URLs for playback
- Deleting an object that was uploaded but never got referenced by a record

Video records never hold URLs; they hold a storage reference of the form
``bucket,key`` built by ``build_storage_reference`` and resolved back by
``parse_storage_reference`` whenever a signed URL is needed.

Compatible with both MinIO (development) and AWS S3 (production). All boto3
calls are blocking, so every operation is async-wrapped onto a worker thread.
"""

import asyncio
import logging

from collections.abc import Callable
from functools import wraps
from typing import Any, TypeVar

import boto3

from boto3.exceptions import S3UploadFailedError
from botocore.client import Config
from botocore.exceptions import BotoCoreError, ClientError, NoCredentialsError

from app.config import Settings


logger = logging.getLogger(__name__)

T = TypeVar("T")

# Default presigned URL expiration time (5 minutes)
DEFAULT_PRESIGNED_URL_EXPIRATION = 300
MIN_PRESIGNED_URL_EXPIRATION = 60
MAX_PRESIGNED_URL_EXPIRATION = 86400

# Separator between bucket and key in a stored video reference
STORAGE_REFERENCE_SEPARATOR = ","


def async_wrap(func: Callable[..., T]) -> Callable[..., "asyncio.Future[T]"]:
    """
    Decorator to run a blocking boto3 call on a worker thread.

    Cancelling the awaiting task does not stop the thread; callers that must
    know when a transfer has really finished should shield the awaitable.
    """

    @wraps(func)
    async def wrapper(*args: Any, **kwargs: Any) -> T:
        return await asyncio.to_thread(func, *args, **kwargs)

    return wrapper


# =============================================================================
# Exceptions
# =============================================================================


class StorageServiceError(Exception):
    """Base exception for storage service errors."""


class StorageConnectionError(StorageServiceError):
    """Raised when the S3 client cannot be created."""


class StorageCredentialsError(StorageServiceError):
    """Raised when storage credentials are missing or invalid."""


class StorageOperationError(StorageServiceError):
    """Raised when a storage operation fails."""


class InvalidStorageReferenceError(StorageServiceError):
    """Raised when a stored video reference is not of the form ``bucket,key``."""


# =============================================================================
# Storage References
# =============================================================================


def build_storage_reference(bucket: str, key: str) -> str:
    """
    Build the value persisted in a video record's ``video_url`` field.

    Example:
        >>> build_storage_reference("reelstage-videos", "landscape/abc.mp4")
        'reelstage-videos,landscape/abc.mp4'
    """
    if not bucket or not key:
        raise InvalidStorageReferenceError("Bucket and key must both be non-empty")
    if STORAGE_REFERENCE_SEPARATOR in bucket:
        raise InvalidStorageReferenceError(f"Bucket name cannot contain ',': {bucket!r}")
    return f"{bucket}{STORAGE_REFERENCE_SEPARATOR}{key}"


def parse_storage_reference(reference: str) -> tuple[str, str]:
    """
    Split a stored ``bucket,key`` reference.

    Only the first comma separates; S3 bucket names cannot contain one, so any
    later comma belongs to the key.

    Raises:
        InvalidStorageReferenceError: If either part is missing.
    """
    bucket, separator, key = reference.partition(STORAGE_REFERENCE_SEPARATOR)
    if not separator or not bucket or not key:
        raise InvalidStorageReferenceError(f"Invalid storage reference: {reference!r}")
    return bucket, key


# =============================================================================
# Storage Service
# =============================================================================


class StorageService:
    """
    S3-compatible storage service for processed video files.

    Attributes:
        bucket_name: Default bucket for uploads
        endpoint_url: S3-compatible endpoint URL (MinIO or AWS S3 when None)
        region_name: AWS region name

    Example:
        >>> service = StorageService(
        ...     bucket_name="reelstage-videos",
        ...     endpoint_url="http://localhost:9000",  # MinIO
        ...     access_key="minioadmin",
        ...     secret_key="minioadmin",
        ... )
        >>> await service.upload_file("landscape/abc.mp4", "/tmp/x.mp4", "video/mp4")
    """

    def __init__(
        self,
        bucket_name: str,
        endpoint_url: str | None = None,
        access_key: str | None = None,
        secret_key: str | None = None,
        region_name: str = "us-east-1",
    ) -> None:
        """
        Create the boto3 S3 client.

        Raises:
            StorageCredentialsError: If credentials are missing or invalid
            StorageConnectionError: If the client cannot be configured
        """
        self.bucket_name = bucket_name
        self.endpoint_url = endpoint_url
        self.region_name = region_name

        client_config = Config(
            signature_version="s3v4",
            s3={"addressing_style": "path"},  # path-style for MinIO
            retries={"max_attempts": 3, "mode": "standard"},
        )

        client_kwargs: dict[str, Any] = {
            "region_name": region_name,
            "config": client_config,
        }
        if endpoint_url:
            client_kwargs["endpoint_url"] = endpoint_url
        # Without explicit keys boto3 falls back to environment/IAM role credentials
        if access_key and secret_key:
            client_kwargs["aws_access_key_id"] = access_key
            client_kwargs["aws_secret_access_key"] = secret_key

        try:
            self._client = boto3.client("s3", **client_kwargs)
        except NoCredentialsError as e:
            logger.exception("S3 credentials not found")
            raise StorageCredentialsError(
                "S3 credentials not found. Configure S3_ACCESS_KEY_ID and S3_SECRET_ACCESS_KEY "
                "or provide an IAM role."
            ) from e
        except BotoCoreError as e:
            logger.exception("Failed to initialize S3 client")
            raise StorageConnectionError(f"Failed to initialize S3 client: {e}") from e

        logger.info(
            "StorageService S3 client initialized",
            extra={
                "bucket": bucket_name,
                "region": region_name,
                "endpoint": endpoint_url or "AWS S3 (default)",
            },
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "StorageService":
        """Create a service from application settings."""
        return cls(
            bucket_name=settings.s3_bucket_name,
            endpoint_url=settings.s3_endpoint_url,
            access_key=settings.s3_access_key_id,
            secret_key=settings.s3_secret_access_key,
            region_name=settings.s3_region,
        )

    async def upload_file(
        self,
        object_key: str,
        file_path: str,
        content_type: str,
        bucket_name: str | None = None,
    ) -> dict[str, Any]:
        """
        Upload a local file to ``object_key`` with the given Content-Type.

        boto3's managed transfer switches to multipart for large files; the
        object only becomes visible once the transfer completes.

        Returns:
            Dictionary containing:
                - success: True
                - object_key: The S3 object key
                - bucket: The bucket name

        Raises:
            StorageOperationError: If the upload fails
        """
        target_bucket = bucket_name or self.bucket_name

        logger.info(
            "Uploading file to storage",
            extra={"object_key": object_key, "bucket": target_bucket, "content_type": content_type},
        )

        @async_wrap
        def _upload_file() -> None:
            self._client.upload_file(
                file_path,
                target_bucket,
                object_key,
                ExtraArgs={"ContentType": content_type},
            )

        try:
            await _upload_file()
        except (ClientError, S3UploadFailedError) as e:
            logger.exception("Failed to upload %s to bucket %s", object_key, target_bucket)
            raise StorageOperationError(f"Failed to upload file: {e}") from e
        except BotoCoreError as e:
            logger.exception("Storage error while uploading %s", object_key)
            raise StorageOperationError(f"Storage operation error during file upload: {e}") from e
        except OSError as e:
            logger.exception("File system error while uploading %s", file_path)
            raise StorageOperationError(f"File system error during upload: {e}") from e

        logger.info("Successfully uploaded file to %s", object_key)

        return {
            "success": True,
            "object_key": object_key,
            "bucket": target_bucket,
        }

    async def generate_presigned_download_url(
        self,
        object_key: str,
        expiration: int = DEFAULT_PRESIGNED_URL_EXPIRATION,
        bucket_name: str | None = None,
    ) -> dict[str, Any]:
        """
        Generate a presigned GET URL for an object.

        Args:
            object_key: The S3 object key
            expiration: URL lifetime in seconds (60 to 86400, default 300)
            bucket_name: Bucket the object lives in (defaults to service bucket)

        Returns:
            Dictionary containing:
                - url: The presigned GET URL
                - object_key: The S3 object key
                - bucket: The bucket name
                - expiration_seconds: Time until URL expires
                - method: HTTP method (GET)

        Raises:
            ValueError: If expiration is out of range
            StorageOperationError: If URL generation fails
        """
        if not MIN_PRESIGNED_URL_EXPIRATION <= expiration <= MAX_PRESIGNED_URL_EXPIRATION:
            raise ValueError(
                f"Expiration must be between {MIN_PRESIGNED_URL_EXPIRATION} and "
                f"{MAX_PRESIGNED_URL_EXPIRATION} seconds, got {expiration}"
            )

        target_bucket = bucket_name or self.bucket_name

        @async_wrap
        def _generate() -> str:
            return self._client.generate_presigned_url(
                ClientMethod="get_object",
                Params={"Bucket": target_bucket, "Key": object_key},
                ExpiresIn=expiration,
                HttpMethod="GET",
            )

        try:
            presigned_url = await _generate()
        except ClientError as e:
            logger.exception("Failed to generate presigned download URL for %s", object_key)
            raise StorageOperationError(
                f"Failed to generate presigned download URL: {e.response['Error']['Message']}"
            ) from e
        except BotoCoreError as e:
            logger.exception("Storage error while presigning %s", object_key)
            raise StorageOperationError(
                f"Storage operation error during presigned URL generation: {e}"
            ) from e

        logger.debug(
            "Generated presigned download URL",
            extra={"object_key": object_key, "bucket": target_bucket, "expiration": expiration},
        )

        return {
            "url": presigned_url,
            "object_key": object_key,
            "bucket": target_bucket,
            "expiration_seconds": expiration,
            "method": "GET",
        }

    async def delete_file(
        self,
        object_key: str,
        bucket_name: str | None = None,
    ) -> dict[str, Any]:
        """
        Delete an object. S3 reports success even if the object does not exist.

        Raises:
            StorageOperationError: If the delete call fails
        """
        target_bucket = bucket_name or self.bucket_name

        logger.info(
            "Deleting file from storage",
            extra={"object_key": object_key, "bucket": target_bucket},
        )

        @async_wrap
        def _delete() -> dict[str, Any]:
            return self._client.delete_object(Bucket=target_bucket, Key=object_key)

        try:
            await _delete()
        except ClientError as e:
            logger.exception("Failed to delete %s", object_key)
            raise StorageOperationError(
                f"Failed to delete file: {e.response['Error']['Message']}"
            ) from e
        except BotoCoreError as e:
            logger.exception("Storage error while deleting %s", object_key)
            raise StorageOperationError(f"Storage operation error during file deletion: {e}") from e

        return {
            "success": True,
            "object_key": object_key,
            "bucket": target_bucket,
        }
