"""
Tests for the S3 storage service and storage references.

boto3 is patched at the module boundary so no network access happens; the
tests assert on the calls the service makes against the client.
"""

from unittest.mock import MagicMock, patch

import pytest

from boto3.exceptions import S3UploadFailedError
from botocore.exceptions import ClientError

from app.services.storage_service import (
    DEFAULT_PRESIGNED_URL_EXPIRATION,
    InvalidStorageReferenceError,
    StorageOperationError,
    StorageService,
    build_storage_reference,
    parse_storage_reference,
)


def _client_error(operation: str, message: str = "Access Denied") -> ClientError:
    return ClientError(
        error_response={"Error": {"Code": "AccessDenied", "Message": message}},
        operation_name=operation,
    )


@pytest.fixture
def s3_client() -> MagicMock:
    client = MagicMock()
    client.generate_presigned_url.return_value = (
        "https://localhost:9000/test-bucket/landscape/abc.mp4?X-Amz-Signature=abc123"
    )
    return client


@pytest.fixture
def storage(test_settings, s3_client) -> StorageService:
    with patch("app.services.storage_service.boto3.client", return_value=s3_client):
        return StorageService.from_settings(test_settings)


class TestStorageReference:
    """The ``bucket,key`` value persisted on video records."""

    def test_build_reference(self):
        assert build_storage_reference("test-bucket", "portrait/x.mp4") == "test-bucket,portrait/x.mp4"

    def test_parse_reference(self):
        assert parse_storage_reference("test-bucket,landscape/abc.mp4") == (
            "test-bucket",
            "landscape/abc.mp4",
        )

    def test_parse_splits_on_first_comma_only(self):
        assert parse_storage_reference("bucket,other/a,b.mp4") == ("bucket", "other/a,b.mp4")

    def test_built_reference_parses_back(self):
        reference = build_storage_reference("reelstage-videos", "other/Zm9v.mp4")
        assert parse_storage_reference(reference) == ("reelstage-videos", "other/Zm9v.mp4")

    @pytest.mark.parametrize(
        "reference",
        ["", "no-separator", ",key-only", "bucket-only,", "https://example.com/video.mp4"],
    )
    def test_parse_rejects_malformed_reference(self, reference):
        with pytest.raises(InvalidStorageReferenceError):
            parse_storage_reference(reference)

    @pytest.mark.parametrize(("bucket", "key"), [("", "k"), ("b", ""), ("a,b", "k")])
    def test_build_rejects_invalid_parts(self, bucket, key):
        with pytest.raises(InvalidStorageReferenceError):
            build_storage_reference(bucket, key)


class TestClientConfiguration:
    def test_from_settings_configures_endpoint_and_credentials(self, test_settings, s3_client):
        with patch(
            "app.services.storage_service.boto3.client", return_value=s3_client
        ) as client_factory:
            service = StorageService.from_settings(test_settings)

        args, kwargs = client_factory.call_args
        assert args == ("s3",)
        assert kwargs["endpoint_url"] == "http://localhost:9000"
        assert kwargs["aws_access_key_id"] == "test-access-key"
        assert kwargs["aws_secret_access_key"] == "test-secret-key"
        assert kwargs["region_name"] == "us-east-1"
        assert service.bucket_name == "test-bucket"

    def test_missing_credentials_fall_back_to_environment(self, s3_client):
        with patch(
            "app.services.storage_service.boto3.client", return_value=s3_client
        ) as client_factory:
            StorageService(bucket_name="b")

        _, kwargs = client_factory.call_args
        assert "aws_access_key_id" not in kwargs
        assert "endpoint_url" not in kwargs


class TestUploadFile:
    async def test_upload_sets_content_type(self, storage, s3_client):
        result = await storage.upload_file("landscape/abc.mp4", "/tmp/upload.mp4.processing", "video/mp4")

        s3_client.upload_file.assert_called_once_with(
            "/tmp/upload.mp4.processing",
            "test-bucket",
            "landscape/abc.mp4",
            ExtraArgs={"ContentType": "video/mp4"},
        )
        assert result == {"success": True, "object_key": "landscape/abc.mp4", "bucket": "test-bucket"}

    async def test_client_error_raises_operation_error(self, storage, s3_client):
        s3_client.upload_file.side_effect = _client_error("PutObject")

        with pytest.raises(StorageOperationError):
            await storage.upload_file("k.mp4", "/tmp/f", "video/mp4")

    async def test_transfer_failure_raises_operation_error(self, storage, s3_client):
        s3_client.upload_file.side_effect = S3UploadFailedError("Failed to upload")

        with pytest.raises(StorageOperationError):
            await storage.upload_file("k.mp4", "/tmp/f", "video/mp4")

    async def test_missing_local_file_raises_operation_error(self, storage, s3_client):
        s3_client.upload_file.side_effect = FileNotFoundError("/tmp/f")

        with pytest.raises(StorageOperationError):
            await storage.upload_file("k.mp4", "/tmp/f", "video/mp4")


class TestPresignedDownloadUrl:
    async def test_default_expiration_is_five_minutes(self, storage, s3_client):
        result = await storage.generate_presigned_download_url("landscape/abc.mp4")

        assert DEFAULT_PRESIGNED_URL_EXPIRATION == 300
        s3_client.generate_presigned_url.assert_called_once_with(
            ClientMethod="get_object",
            Params={"Bucket": "test-bucket", "Key": "landscape/abc.mp4"},
            ExpiresIn=300,
            HttpMethod="GET",
        )
        assert result["url"].startswith("https://")
        assert result["expiration_seconds"] == 300
        assert result["method"] == "GET"

    async def test_bucket_override(self, storage, s3_client):
        result = await storage.generate_presigned_download_url(
            "portrait/x.mp4", expiration=600, bucket_name="archive-bucket"
        )

        _, kwargs = s3_client.generate_presigned_url.call_args
        assert kwargs["Params"] == {"Bucket": "archive-bucket", "Key": "portrait/x.mp4"}
        assert kwargs["ExpiresIn"] == 600
        assert result["bucket"] == "archive-bucket"

    @pytest.mark.parametrize("expiration", [0, 59, 86401])
    async def test_expiration_out_of_range(self, storage, expiration):
        with pytest.raises(ValueError, match="Expiration"):
            await storage.generate_presigned_download_url("k", expiration=expiration)

    async def test_client_error_raises_operation_error(self, storage, s3_client):
        s3_client.generate_presigned_url.side_effect = _client_error("GetObject")

        with pytest.raises(StorageOperationError, match="Access Denied"):
            await storage.generate_presigned_download_url("k")


class TestDeleteFile:
    async def test_delete_calls_delete_object(self, storage, s3_client):
        result = await storage.delete_file("other/x.mp4")

        s3_client.delete_object.assert_called_once_with(Bucket="test-bucket", Key="other/x.mp4")
        assert result["success"] is True

    async def test_delete_failure_raises_operation_error(self, storage, s3_client):
        s3_client.delete_object.side_effect = _client_error("DeleteObject")

        with pytest.raises(StorageOperationError):
            await storage.delete_file("other/x.mp4")
